from __future__ import annotations

from typing import Dict, Iterable

from app.infrastructure.repositories.base import BaseRepository


class OfferRepository(BaseRepository):
    table = "offers"
    columns = (
        "id",
        "request_id",
        "submitted_by",
        "provider_name",
        "price",
        "currency",
        "delivery_days",
        "roles_provided_json",
        "notes",
        "status",
        "created_at",
        "updated_at",
    )
    json_fields = ("roles_provided",)
    default_sort = (("created_at", "ASC"),)

    def list_for_request(self, db, request_id: str, *, submitted_by: str | None = None) -> list[dict]:
        filters = {"request_id": str(request_id)}
        if submitted_by is not None:
            filters["submitted_by"] = submitted_by
        return self.find_many(db, filters)

    def count_for_request(self, db, request_id: str) -> int:
        return self.count(db, {"request_id": str(request_id)})

    def counts_by_request(self, db, request_ids: Iterable[str]) -> Dict[str, int]:
        ids = [str(item) for item in request_ids]
        if not ids:
            return {}
        rows = db.execute(
            f"""
            SELECT request_id, COUNT(*) AS total
            FROM offers
            WHERE request_id IN ({', '.join('?' for _ in ids)})
            GROUP BY request_id
            """,
            ids,
        ).fetchall()
        return {str(row["request_id"]): int(row["total"]) for row in rows}

    def set_status(self, db, offer_id: str, status, updated_at: str) -> int:
        return self.update(db, offer_id, {"status": getattr(status, "value", status), "updated_at": updated_at})

    def set_status_where(self, db, request_id: str, from_status, to_status, updated_at: str, *, exclude_id: str | None = None) -> int:
        sql = "UPDATE offers SET status = ?, updated_at = ? WHERE request_id = ? AND status = ?"
        params = [getattr(to_status, "value", to_status), updated_at, str(request_id), getattr(from_status, "value", from_status)]
        if exclude_id:
            sql += " AND id <> ?"
            params.append(str(exclude_id))
        cursor = db.execute(sql, params)
        return int(cursor.rowcount or 0)
