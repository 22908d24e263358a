import threading

import h3

from ..geo.distance import haversine_distance_km
from ..ride import VehicleCategory


class DriverGeospatialIndex:
    """Spatial index of online drivers using H3 hexagonal cells.

    Holds each driver's last accepted location and vehicle category; the
    store stays the source of truth and the index is rebuilt from it at startup.
    """

    def __init__(self, h3_resolution: int = 9):
        self._h3_resolution = h3_resolution
        self._edge_km = h3.average_hexagon_edge_length(h3_resolution, unit="km")
        self._h3_cells: dict[str, set[str]] = {}
        self._driver_locations: dict[str, tuple[float, float, str]] = {}
        self._driver_category: dict[str, VehicleCategory] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._driver_locations)

    def add_driver(
        self, driver_id: str, lat: float, lon: float, category: VehicleCategory
    ) -> None:
        with self._lock:
            if driver_id in self._driver_locations:
                self._discard_from_cell(driver_id)
            cell = self._get_h3_cell(lat, lon)
            self._h3_cells.setdefault(cell, set()).add(driver_id)
            self._driver_locations[driver_id] = (lat, lon, cell)
            self._driver_category[driver_id] = category

    def update_driver_location(self, driver_id: str, lat: float, lon: float) -> None:
        with self._lock:
            if driver_id not in self._driver_locations:
                return

            _, _, old_cell = self._driver_locations[driver_id]
            new_cell = self._get_h3_cell(lat, lon)

            if old_cell != new_cell:
                self._discard_from_cell(driver_id)
                self._h3_cells.setdefault(new_cell, set()).add(driver_id)

            self._driver_locations[driver_id] = (lat, lon, new_cell)

    def remove_driver(self, driver_id: str) -> None:
        with self._lock:
            if driver_id not in self._driver_locations:
                return
            self._discard_from_cell(driver_id)
            del self._driver_locations[driver_id]
            del self._driver_category[driver_id]

    def contains(self, driver_id: str) -> bool:
        with self._lock:
            return driver_id in self._driver_locations

    def find_nearest_drivers(
        self,
        lat: float,
        lon: float,
        radius_km: float = 5.0,
        category: VehicleCategory | None = None,
    ) -> list[tuple[str, float]]:
        """Drivers within ``radius_km``, nearest first, as (driver_id, km) pairs."""
        with self._lock:
            if not self._driver_locations:
                return []

            center_cell = self._get_h3_cell(lat, lon)
            # Rings needed to cover the radius at this resolution's edge length
            max_k = max(1, int(radius_km / self._edge_km) + 1)

            candidates: list[tuple[str, float]] = []
            for cell in h3.grid_disk(center_cell, max_k):
                for driver_id in self._h3_cells.get(cell, ()):
                    if category is not None and self._driver_category[driver_id] != category:
                        continue
                    driver_lat, driver_lon, _ = self._driver_locations[driver_id]
                    distance = haversine_distance_km(lat, lon, driver_lat, driver_lon)
                    if distance <= radius_km:
                        candidates.append((driver_id, distance))

            candidates.sort(key=lambda x: x[1])
            return candidates

    def _discard_from_cell(self, driver_id: str) -> None:
        _, _, cell = self._driver_locations[driver_id]
        if cell in self._h3_cells:
            self._h3_cells[cell].discard(driver_id)
            if not self._h3_cells[cell]:
                del self._h3_cells[cell]

    def _get_h3_cell(self, lat: float, lon: float) -> str:
        return h3.latlng_to_cell(lat, lon, self._h3_resolution)

    def clear(self) -> None:
        with self._lock:
            self._h3_cells.clear()
            self._driver_locations.clear()
            self._driver_category.clear()
