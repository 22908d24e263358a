"""Account repository: profiles, availability, location and settlement counters."""

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from ...account import Account, Gender, Role
from ...core.exceptions import NotFoundError
from ...ride import Coordinates, VehicleCategory
from ..schema import AccountRow
from ..utils import utc_now


class AccountRepository:
    """Repository for account CRUD operations."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, account: Account) -> None:
        location = account.current_location
        row = AccountRow(
            id=account.id,
            display_name=account.display_name,
            phone=account.phone,
            roles=",".join(sorted(r.value for r in account.roles)),
            gender=account.gender.value if account.gender else None,
            vehicle_type=account.vehicle_type.value if account.vehicle_type else None,
            is_approved=account.is_approved,
            is_kyc_completed=account.is_kyc_completed,
            is_active=account.is_active,
            is_online=account.is_online,
            current_lat=location.lat if location else None,
            current_lng=location.lng if location else None,
            location_sequence=account.location_sequence,
            wallet_balance=account.wallet_balance,
            rating=account.rating,
            rating_count=account.rating_count,
            total_rides=account.total_rides,
        )
        self.session.add(row)
        self.session.flush()

    def exists(self, account_id: str) -> bool:
        return self.session.get(AccountRow, account_id) is not None

    def get(self, account_id: str) -> Account | None:
        row = self.session.get(AccountRow, account_id, populate_existing=True)
        if row is None:
            return None
        return self._to_domain(row)

    def require(self, account_id: str) -> Account:
        account = self.get(account_id)
        if account is None:
            raise NotFoundError(
                f"Account {account_id} not found", details={"account_id": account_id}
            )
        return account

    def lock(self, account_id: str) -> AccountRow:
        """Read the row for update; the lock is held until the transaction ends."""
        stmt = (
            select(AccountRow)
            .where(AccountRow.id == account_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        row = self.session.execute(stmt).scalars().first()
        if row is None:
            raise NotFoundError(
                f"Account {account_id} not found", details={"account_id": account_id}
            )
        return row

    def set_online(self, account_id: str, online: bool) -> None:
        self.lock(account_id).is_online = online

    def update_location(self, account_id: str, location: Coordinates, sequence: int) -> bool:
        """Apply a location fix unless a newer one was already stored."""
        stmt = (
            update(AccountRow)
            .where(AccountRow.id == account_id, AccountRow.location_sequence < sequence)
            .values(
                current_lat=location.lat,
                current_lng=location.lng,
                location_sequence=sequence,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1

    def set_approval(self, account_id: str, approved: bool) -> None:
        row = self.lock(account_id)
        row.is_approved = approved
        if not approved:
            row.is_online = False

    def set_kyc_completed(self, account_id: str, completed: bool) -> None:
        self.lock(account_id).is_kyc_completed = completed

    def deactivate(self, account_id: str) -> None:
        row = self.lock(account_id)
        row.is_active = False
        row.is_online = False

    def record_completed_trip(self, driver_id: str, fare: int) -> None:
        """Credit the fare and count the trip in one statement."""
        stmt = (
            update(AccountRow)
            .where(AccountRow.id == driver_id)
            .values(
                wallet_balance=AccountRow.wallet_balance + fare,
                total_rides=AccountRow.total_rides + 1,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        if self.session.execute(stmt).rowcount != 1:
            raise NotFoundError(
                f"Driver {driver_id} not found", details={"account_id": driver_id}
            )

    def update_rating(self, account_id: str, new_rating: float, rating_count: int) -> None:
        row = self.lock(account_id)
        row.rating = new_rating
        row.rating_count = rating_count

    def list_online_drivers(self) -> list[Account]:
        stmt = select(AccountRow).where(
            AccountRow.is_online.is_(True),
            AccountRow.is_active.is_(True),
            AccountRow.vehicle_type.is_not(None),
        )
        return [self._to_domain(r) for r in self.session.execute(stmt).scalars().all()]

    def count_online_by_category(self) -> dict[VehicleCategory, int]:
        stmt = (
            select(AccountRow.vehicle_type, func.count())
            .where(
                AccountRow.is_online.is_(True),
                AccountRow.is_active.is_(True),
                AccountRow.vehicle_type.is_not(None),
            )
            .group_by(AccountRow.vehicle_type)
        )
        return {VehicleCategory(v): n for v, n in self.session.execute(stmt).all()}

    def _to_domain(self, row: AccountRow) -> Account:
        """Convert ORM model to domain model."""
        location = None
        if row.current_lat is not None and row.current_lng is not None:
            location = Coordinates(lat=row.current_lat, lng=row.current_lng)

        return Account(
            id=row.id,
            display_name=row.display_name,
            phone=row.phone,
            roles={Role(r) for r in row.roles.split(",") if r},
            gender=Gender(row.gender) if row.gender else None,
            vehicle_type=VehicleCategory(row.vehicle_type) if row.vehicle_type else None,
            is_approved=row.is_approved,
            is_kyc_completed=row.is_kyc_completed,
            is_active=row.is_active,
            is_online=row.is_online,
            current_location=location,
            location_sequence=row.location_sequence,
            wallet_balance=row.wallet_balance,
            rating=row.rating,
            rating_count=row.rating_count,
            total_rides=row.total_rides,
            created_at=row.created_at,
        )
