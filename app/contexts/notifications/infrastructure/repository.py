from __future__ import annotations

from typing import Iterable

from app.infrastructure.repositories.base import BaseRepository


class NotificationRepository(BaseRepository):
    table = "notifications"
    columns = (
        "id",
        "uniq_key",
        "to_username",
        "to_role",
        "type",
        "title",
        "message",
        "request_id",
        "meta_json",
        "read",
        "created_at",
    )
    json_fields = ("meta",)
    bool_fields = ("read",)

    def insert_once(self, db, document: dict) -> bool:
        """Insert unless another row already holds the same ``uniq_key``; True when a row was written."""
        row = self.to_row(document)
        columns = list(row.keys())
        cursor = db.execute(
            f"""
            INSERT INTO notifications ({', '.join(columns)})
            VALUES ({', '.join('?' for _ in columns)})
            ON CONFLICT (uniq_key) DO NOTHING
            """,
            [row[column] for column in columns],
        )
        return int(cursor.rowcount or 0) > 0

    def list_for_recipient(
        self,
        db,
        *,
        username: str | None,
        roles: Iterable[str],
        unread_only: bool = False,
        limit: int = 50,
    ) -> list[dict]:
        where, params = self.recipient_clause(username, roles)
        if unread_only:
            where = f"({where}) AND read = 0"
        return self.find_many(
            db,
            sort=(("created_at", "DESC"),),
            limit=limit,
            extra_where=where,
            extra_params=params,
        )

    @staticmethod
    def recipient_clause(username: str | None, roles: Iterable[str]) -> tuple[str, list]:
        clauses = []
        params: list = []
        if username:
            clauses.append("to_username = ?")
            params.append(username)
        role_values = [str(getattr(role, "value", role)) for role in roles]
        if role_values:
            clauses.append(f"to_role IN ({', '.join('?' for _ in role_values)})")
            params.extend(role_values)
        if not clauses:
            return "1 = 0", []
        return " OR ".join(clauses), params
