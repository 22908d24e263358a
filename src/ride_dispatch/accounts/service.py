"""Account lifecycle, driver availability and the nearby-driver index."""

import logging

from pydantic import Field, model_validator

from ..account import Account, Gender, Role
from ..core.exceptions import ConflictError, PermissionDeniedError, ValidationError
from ..db.repositories.wallet_repository import WalletTransaction
from ..matching.driver_geospatial_index import DriverGeospatialIndex
from ..metrics.prometheus_exporter import dispatch_drivers_indexed
from ..ride import Coordinates, RideRequest, VehicleCategory, WireModel
from ..store import RideStore, UnitOfWork
from ..utils.ids import new_account_id

logger = logging.getLogger(__name__)


class Registration(WireModel):
    """Signup details. Approval, KYC and money fields are never set here."""

    id: str | None = None
    display_name: str = Field(default="", max_length=120)
    phone: str | None = None
    roles: set[Role] = Field(default_factory=lambda: {Role.RIDER})
    gender: Gender | None = None
    vehicle_type: VehicleCategory | None = None

    @model_validator(mode="after")
    def validate_roles(self) -> "Registration":
        if not self.roles:
            raise ValueError("At least one role is required")
        if Role.ADMIN in self.roles:
            raise ValueError("Administrator accounts cannot be self-registered")
        if Role.DRIVER in self.roles and self.vehicle_type is None:
            raise ValueError("Drivers must register a vehicle type")
        return self


class NearbyDriver(WireModel):
    driver_id: str
    distance_km: float


class AccountService:
    def __init__(self, store: RideStore, index: DriverGeospatialIndex, nearby_radius_km: float = 5.0):
        self._store = store
        self._index = index
        self._nearby_radius_km = nearby_radius_km

    async def register(self, registration: Registration) -> Account:
        account = Account(
            id=registration.id or new_account_id(),
            display_name=registration.display_name,
            phone=registration.phone,
            roles=registration.roles,
            gender=registration.gender,
            vehicle_type=registration.vehicle_type,
        )

        def _register(uow: UnitOfWork) -> Account:
            if uow.accounts.exists(account.id):
                raise ConflictError(
                    f"Account {account.id} already exists", details={"account_id": account.id}
                )
            uow.accounts.create(account)
            return uow.accounts.require(account.id)

        created = await self._store.run(_register, "register")
        logger.info(f"Registered account {created.id} ({', '.join(sorted(created.roles))})")
        return created

    async def get(self, account_id: str) -> Account:
        return await self._store.run(lambda uow: uow.accounts.require(account_id), "get_account")

    async def set_online(
        self, driver_id: str, online: bool, location: Coordinates | None = None
    ) -> Account:
        """Go online (eligible drivers only) or offline, keeping the index in step."""

        def _toggle(uow: UnitOfWork) -> Account:
            driver = uow.accounts.require(driver_id)
            if online and not driver.is_eligible_driver:
                raise PermissionDeniedError(
                    f"Driver {driver_id} is not approved to go online",
                    details={"account_id": driver_id},
                )
            uow.accounts.set_online(driver_id, online)
            if location is not None:
                uow.accounts.update_location(
                    driver_id, location.normalized(), driver.location_sequence + 1
                )
            return uow.accounts.require(driver_id)

        driver = await self._store.run(_toggle, "set_online")
        if online and driver.current_location is not None and driver.vehicle_type is not None:
            loc = driver.current_location
            self._index.add_driver(driver.id, loc.lat, loc.lng, driver.vehicle_type)
        elif not online:
            self._index.remove_driver(driver.id)
        dispatch_drivers_indexed.set(len(self._index))
        logger.info(f"Driver {driver_id} is now {'online' if online else 'offline'}")
        return driver

    async def update_location(
        self, account_id: str, location: Coordinates, sequence: int
    ) -> bool:
        """Apply a location fix; fixes older than the stored one are ignored."""
        normalized = location.normalized()

        def _locate(uow: UnitOfWork) -> tuple[bool, Account]:
            applied = uow.accounts.update_location(account_id, normalized, sequence)
            return applied, uow.accounts.require(account_id)

        applied, account = await self._store.run(_locate, "update_location")
        if not applied:
            logger.debug(f"Ignoring stale location for {account_id} (sequence {sequence})")
            return False

        if account.is_online and account.vehicle_type is not None:
            if self._index.contains(account_id):
                self._index.update_driver_location(account_id, normalized.lat, normalized.lng)
            else:
                self._index.add_driver(
                    account_id, normalized.lat, normalized.lng, account.vehicle_type
                )
                dispatch_drivers_indexed.set(len(self._index))
        return True

    def nearby_drivers(
        self,
        location: Coordinates,
        category: VehicleCategory | None = None,
        radius_km: float | None = None,
    ) -> list[NearbyDriver]:
        radius = radius_km or self._nearby_radius_km
        return [
            NearbyDriver(driver_id=driver_id, distance_km=round(distance, 3))
            for driver_id, distance in self._index.find_nearest_drivers(
                location.lat, location.lng, radius_km=radius, category=category
            )
        ]

    async def approve_driver(
        self,
        admin_id: str,
        driver_id: str,
        approved: bool,
        kyc_completed: bool | None = None,
        reason: str | None = None,
    ) -> Account:
        def _approve(uow: UnitOfWork) -> Account:
            self._require_admin(uow, admin_id)
            driver = uow.accounts.require(driver_id)
            if not driver.has_role(Role.DRIVER):
                raise ValidationError(f"Account {driver_id} is not a driver")
            uow.accounts.set_approval(driver_id, approved)
            if kyc_completed is not None:
                uow.accounts.set_kyc_completed(driver_id, kyc_completed)
            return uow.accounts.require(driver_id)

        driver = await self._store.run(_approve, "approve_driver")
        if not approved:
            self._index.remove_driver(driver_id)
        logger.info(
            f"Driver {driver_id} {'approved' if approved else 'unapproved'} by {admin_id}"
            + (f": {reason}" if reason else "")
        )
        return driver

    async def deactivate(self, admin_id: str, account_id: str) -> Account:
        """Accounts are never deleted, only switched off."""

        def _deactivate(uow: UnitOfWork) -> Account:
            self._require_admin(uow, admin_id)
            uow.accounts.deactivate(account_id)
            return uow.accounts.require(account_id)

        account = await self._store.run(_deactivate, "deactivate")
        self._index.remove_driver(account_id)
        logger.info(f"Account {account_id} deactivated by {admin_id}")
        return account

    async def wallet_transactions(self, account_id: str) -> list[WalletTransaction]:
        return await self._store.run(lambda uow: uow.wallet.list_for(account_id), "wallet")

    async def ride_history(self, account_id: str, as_driver: bool = False) -> list[RideRequest]:
        return await self._store.run(
            lambda uow: uow.rides.list_completed_for(account_id, as_driver), "ride_history"
        )

    async def load_index(self) -> int:
        """Rebuild the in-memory index from drivers the store says are online."""
        drivers = await self._store.run(
            lambda uow: uow.accounts.list_online_drivers(), "load_driver_index"
        )
        self._index.clear()
        for driver in drivers:
            if driver.current_location is not None and driver.vehicle_type is not None:
                loc = driver.current_location
                self._index.add_driver(driver.id, loc.lat, loc.lng, driver.vehicle_type)
        dispatch_drivers_indexed.set(len(self._index))
        return len(self._index)

    async def require_admin(self, admin_id: str) -> None:
        await self._store.run(lambda uow: self._require_admin(uow, admin_id), "require_admin")

    @staticmethod
    def _require_admin(uow: UnitOfWork, admin_id: str) -> None:
        admin = uow.accounts.get(admin_id)
        if admin is None or not admin.has_role(Role.ADMIN) or not admin.is_active:
            raise PermissionDeniedError(
                "Administrator role required", details={"account_id": admin_id}
            )
