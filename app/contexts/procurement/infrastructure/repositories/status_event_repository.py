from __future__ import annotations

from app.infrastructure.repositories.base import BaseRepository


class StatusEventRepository(BaseRepository):
    table = "status_events"
    columns = ("id", "entity", "entity_id", "action", "from_status", "to_status", "reason", "actor", "occurred_at")
    default_sort = (("occurred_at", "ASC"),)

    def add_event(
        self,
        db,
        *,
        entity: str,
        entity_id: str,
        action: str,
        from_status: str | None,
        to_status: str,
        reason: str | None = None,
        actor: str | None = None,
        occurred_at: str,
    ) -> None:
        db.execute(
            """
            INSERT INTO status_events (entity, entity_id, action, from_status, to_status, reason, actor, occurred_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (entity, str(entity_id), action, from_status, to_status, reason, actor, occurred_at),
        )

    def list_for_entity(self, db, *, entity: str, entity_id: str, limit: int = 120) -> list[dict]:
        return self.find_many(db, {"entity": entity, "entity_id": str(entity_id)}, limit=limit)
