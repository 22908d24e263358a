"""Ride request repository with compare-and-set state writes."""

import json
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from ...core.exceptions import NotFoundError
from ...pubsub.channels import RideChange
from ...ride import (
    ACTIVE_STATUSES,
    RIDE_VARIANTS,
    TERMINAL_STATUSES,
    RideRequest,
    RideStatus,
    SearchingRide,
    VehicleCategory,
)
from ..schema import RideRow
from ..transaction import RIDE_CHANGES_KEY
from ..utils import utc_now

_LOCATION_FIELDS = {"pickup_location", "drop_location", "preferences", "declined_drivers"}
_IMMUTABLE_COLUMNS = {"id", "rider_id", "created_at", "version", "otp"}
_COLUMN_NAMES = {c.name for c in RideRow.__table__.columns}


class RideRepository:
    """Repository for ride request reads and guarded writes.

    Every state change is a conditional UPDATE: it applies only if the row is
    still in the status (and version) the caller read, so a concurrent writer
    that got there first makes the update affect zero rows.
    """

    def __init__(self, session: Session):
        self.session = session

    def create(self, ride: SearchingRide) -> None:
        """Insert a new SEARCHING request."""
        row = RideRow(**self._to_values(ride))
        self.session.add(row)
        self.session.flush()
        self._record_change(row, previous_status=None)

    def get(self, ride_id: str) -> RideRequest | None:
        """Get ride by ID, returning domain model."""
        row = self.session.get(RideRow, ride_id, populate_existing=True)
        if row is None:
            return None
        return self._to_domain(row)

    def require(self, ride_id: str) -> RideRequest:
        ride = self.get(ride_id)
        if ride is None:
            raise NotFoundError(f"Ride {ride_id} not found", details={"ride_id": ride_id})
        return ride

    def compare_and_set(self, current: RideRequest, updated: RideRequest) -> RideRequest | None:
        """Write ``updated`` if the row still matches ``current``'s status and version.

        Returns the stored record (with its bumped version) or None when the
        row moved on in the meantime.
        """
        values = {
            k: v for k, v in self._to_values(updated).items() if k not in _IMMUTABLE_COLUMNS
        }
        stmt = (
            update(RideRow)
            .where(
                RideRow.id == current.id,
                RideRow.status == current.status.value,
                RideRow.version == current.version,
            )
            .values(**values, version=RideRow.version + 1, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        if self.session.execute(stmt).rowcount != 1:
            return None
        return self._reload(current.id, previous_status=current.status)

    def claim(self, ride_id: str, driver_id: str, at: datetime) -> RideRequest | None:
        """Assign the driver if the request is still unclaimed.

        Single statement: succeeds only while status is SEARCHING, no driver
        is set, and the request is either untargeted or targeted at this driver.
        """
        stmt = (
            update(RideRow)
            .where(
                RideRow.id == ride_id,
                RideRow.status == RideStatus.SEARCHING.value,
                RideRow.driver_id.is_(None),
                or_(RideRow.target_driver_id.is_(None), RideRow.target_driver_id == driver_id),
            )
            .values(
                status=RideStatus.ACCEPTED.value,
                driver_id=driver_id,
                accepted_at=at,
                version=RideRow.version + 1,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        if self.session.execute(stmt).rowcount != 1:
            return None
        return self._reload(ride_id, previous_status=RideStatus.SEARCHING)

    def list_searching(self, vehicle_type: VehicleCategory | None = None) -> list[SearchingRide]:
        """List SEARCHING requests, oldest first."""
        stmt = select(RideRow).where(RideRow.status == RideStatus.SEARCHING.value)
        if vehicle_type is not None:
            stmt = stmt.where(RideRow.vehicle_type == vehicle_type.value)
        stmt = stmt.order_by(RideRow.created_at)
        rows = self.session.execute(stmt).scalars().all()
        return [self._to_domain(r) for r in rows]  # type: ignore[misc]

    def list_stale_searching(self, created_before: datetime) -> list[SearchingRide]:
        stmt = (
            select(RideRow)
            .where(
                RideRow.status == RideStatus.SEARCHING.value,
                RideRow.created_at < created_before,
            )
            .order_by(RideRow.created_at)
        )
        rows = self.session.execute(stmt).scalars().all()
        return [self._to_domain(r) for r in rows]  # type: ignore[misc]

    def find_active_for(self, account_id: str) -> RideRequest | None:
        """The account's ongoing trip, as rider or as driver."""
        stmt = (
            select(RideRow)
            .where(
                RideRow.status.in_([s.value for s in ACTIVE_STATUSES]),
                or_(RideRow.rider_id == account_id, RideRow.driver_id == account_id),
            )
            .order_by(RideRow.created_at.desc())
            .limit(1)
        )
        row = self.session.execute(stmt).scalars().first()
        return self._to_domain(row) if row else None

    def find_active_for_driver(self, driver_id: str) -> RideRequest | None:
        stmt = (
            select(RideRow)
            .where(
                RideRow.status.in_([s.value for s in ACTIVE_STATUSES]),
                RideRow.driver_id == driver_id,
            )
            .limit(1)
        )
        row = self.session.execute(stmt).scalars().first()
        return self._to_domain(row) if row else None

    def find_open_for_rider(self, rider_id: str) -> RideRequest | None:
        """The rider's request that has not reached a terminal state, if any."""
        stmt = (
            select(RideRow)
            .where(
                RideRow.rider_id == rider_id,
                RideRow.status.notin_([s.value for s in TERMINAL_STATUSES]),
            )
            .limit(1)
        )
        row = self.session.execute(stmt).scalars().first()
        return self._to_domain(row) if row else None

    def list_completed_for(self, account_id: str, as_driver: bool) -> list[RideRequest]:
        column = RideRow.driver_id if as_driver else RideRow.rider_id
        stmt = (
            select(RideRow)
            .where(column == account_id, RideRow.status == RideStatus.COMPLETED.value)
            .order_by(RideRow.completed_at.desc())
        )
        return [self._to_domain(r) for r in self.session.execute(stmt).scalars().all()]

    def count_searching_by_category(self) -> dict[VehicleCategory, int]:
        stmt = (
            select(RideRow.vehicle_type, func.count())
            .where(RideRow.status == RideStatus.SEARCHING.value)
            .group_by(RideRow.vehicle_type)
        )
        return {VehicleCategory(v): n for v, n in self.session.execute(stmt).all()}

    def _reload(self, ride_id: str, previous_status: RideStatus | None) -> RideRequest:
        row = self.session.get(RideRow, ride_id, populate_existing=True)
        if row is None:
            raise NotFoundError(f"Ride {ride_id} not found", details={"ride_id": ride_id})
        self._record_change(row, previous_status)
        return self._to_domain(row)

    def _record_change(self, row: RideRow, previous_status: RideStatus | None) -> None:
        """Queue a change record; the store publishes it after commit."""
        self.session.info.setdefault(RIDE_CHANGES_KEY, []).append(
            RideChange(
                ride_id=row.id,
                status=RideStatus(row.status),
                previous_status=previous_status,
                rider_id=row.rider_id,
                driver_id=row.driver_id,
                target_driver_id=row.target_driver_id,
                vehicle_type=VehicleCategory(row.vehicle_type),
                version=row.version,
                timestamp=utc_now().isoformat(),
            )
        )

    def _to_values(self, ride: RideRequest) -> dict[str, Any]:
        """Convert domain model to column values."""
        data = ride.model_dump(exclude=_LOCATION_FIELDS)
        values = {
            k: (v.value if isinstance(v, Enum) else v)
            for k, v in data.items()
            if k in _COLUMN_NAMES
        }
        values.update(
            pickup_lat=ride.pickup_location.lat,
            pickup_lng=ride.pickup_location.lng,
            drop_lat=ride.drop_location.lat,
            drop_lng=ride.drop_location.lng,
            preferences_json=ride.preferences.model_dump_json(),
            declined_drivers_json=json.dumps(ride.declined_drivers),
        )
        return values

    def _to_domain(self, row: RideRow) -> RideRequest:
        """Convert ORM model to the status-specific domain model."""
        status = RideStatus(row.status)
        variant = RIDE_VARIANTS[status]
        data: dict[str, Any] = {
            name: getattr(row, name) for name in variant.model_fields if name in _COLUMN_NAMES
        }
        data.update(
            status=status,
            pickup_location={"lat": row.pickup_lat, "lng": row.pickup_lng},
            drop_location={"lat": row.drop_lat, "lng": row.drop_lng},
            preferences=json.loads(row.preferences_json),
            declined_drivers=json.loads(row.declined_drivers_json),
        )
        return variant(**data)  # type: ignore[return-value]
