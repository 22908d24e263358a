"""Pub/sub channel definitions and message schemas for ride change notifications."""

from pydantic import BaseModel

from ..ride import RideStatus, VehicleCategory

# Channel names
CHANNEL_RIDE_UPDATES = "ride-updates"

ALL_CHANNELS = [CHANNEL_RIDE_UPDATES]


class RideChange(BaseModel):
    """A committed write to a ride request.

    Carries only what watchers need to decide whether to re-query; the
    authoritative record is always read back from the store.
    """

    ride_id: str
    status: RideStatus
    previous_status: RideStatus | None = None
    rider_id: str
    driver_id: str | None = None
    target_driver_id: str | None = None
    vehicle_type: VehicleCategory
    version: int
    timestamp: str

    def concerns(self, account_id: str) -> bool:
        return account_id in (self.rider_id, self.driver_id)
