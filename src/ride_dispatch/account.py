"""Account model shared by riders, drivers and administrators."""

from datetime import datetime
from enum import Enum

from pydantic import Field

from .ride import Coordinates, VehicleCategory, WireModel


class Role(str, Enum):
    RIDER = "RIDER"
    DRIVER = "DRIVER"
    ADMIN = "ADMIN"


class Gender(str, Enum):
    FEMALE = "FEMALE"
    MALE = "MALE"
    OTHER = "OTHER"


class Account(WireModel):
    """A person on the platform; one account may hold rider and driver roles."""

    id: str
    display_name: str = ""
    phone: str | None = None
    roles: set[Role] = Field(default_factory=lambda: {Role.RIDER})
    gender: Gender | None = None
    vehicle_type: VehicleCategory | None = None
    is_approved: bool = False
    is_kyc_completed: bool = False
    is_active: bool = True
    is_online: bool = False
    current_location: Coordinates | None = None
    location_sequence: int = 0
    wallet_balance: int = 0
    rating: float = Field(default=5.0, ge=0.0, le=5.0)
    rating_count: int = Field(default=0, ge=0)
    total_rides: int = Field(default=0, ge=0)
    created_at: datetime | None = None

    def has_role(self, role: Role) -> bool:
        return role in self.roles

    @property
    def is_eligible_driver(self) -> bool:
        """Driver role, approved, KYC done and not deactivated."""
        return (
            self.has_role(Role.DRIVER)
            and self.is_approved
            and self.is_kyc_completed
            and self.is_active
            and self.vehicle_type is not None
        )

    @property
    def is_available_driver(self) -> bool:
        """Eligible and online: the drivers pending requests are surfaced to."""
        return self.is_eligible_driver and self.is_online

    def serves(self, category: VehicleCategory) -> bool:
        if self.vehicle_type != category:
            return False
        if category == VehicleCategory.PINK:
            return self.gender == Gender.FEMALE
        return True
