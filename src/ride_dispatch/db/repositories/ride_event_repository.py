"""Audit trail of ride side events (declines, pickup changes, SOS)."""

import json
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..schema import RideEventRow
from ..utils import utc_now


class RideEventRepository:
    def __init__(self, session: Session):
        self.session = session

    def append(
        self, ride_id: str, event_type: str, actor_id: str | None, **payload: Any
    ) -> None:
        self.session.add(
            RideEventRow(
                ride_id=ride_id,
                event_type=event_type,
                actor_id=actor_id,
                payload_json=json.dumps(payload, default=str),
                created_at=utc_now(),
            )
        )

    def list_for(self, ride_id: str) -> list[dict[str, Any]]:
        stmt = (
            select(RideEventRow)
            .where(RideEventRow.ride_id == ride_id)
            .order_by(RideEventRow.id)
        )
        return [
            {
                "event_type": row.event_type,
                "actor_id": row.actor_id,
                "payload": json.loads(row.payload_json),
                "timestamp": row.created_at.isoformat(),
            }
            for row in self.session.execute(stmt).scalars().all()
        ]
