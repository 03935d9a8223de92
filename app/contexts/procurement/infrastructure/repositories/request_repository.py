from __future__ import annotations

from typing import Any, Dict

from app.infrastructure.repositories.base import BaseRepository


class RequestRepository(BaseRepository):
    table = "requests"
    columns = (
        "id",
        "title",
        "status",
        "payload_json",
        "max_offers",
        "bidding_cycle_days",
        "created_by",
        "submitted_at",
        "submitted_by",
        "review_approved_at",
        "review_approved_by",
        "rejected_at",
        "rejected_by",
        "reject_reason",
        "bidding_started_at",
        "bidding_started_by",
        "bid_evaluation_at",
        "shortlisted_offer_ids_json",
        "recommended_at",
        "recommended_by",
        "recommended_offer_id",
        "sent_to_ordering_at",
        "sent_to_ordering_by",
        "ordered_at",
        "ordered_by",
        "ordered_offer_id",
        "order_id",
        "expired_at",
        "reactivated_at",
        "reactivated_by",
        "created_at",
        "updated_at",
    )
    json_fields = ("payload", "shortlisted_offer_ids")

    def to_document(self, row: Any) -> Dict[str, Any]:
        document = super().to_document(row)
        if document.get("payload") is None:
            document["payload"] = {}
        return document

    @staticmethod
    def search_clause(query: str | None) -> tuple[str | None, list]:
        term = str(query or "").strip().lower()
        if not term:
            return None, []
        like = f"%{term}%"
        return "LOWER(title) LIKE ? OR LOWER(payload_json) LIKE ?", [like, like]

    def delete_in_status(self, db, document_id: str, expected_status) -> int:
        cursor = db.execute(
            "DELETE FROM requests WHERE id = ? AND status = ?",
            (str(document_id), getattr(expected_status, "value", expected_status)),
        )
        return int(cursor.rowcount or 0)

    def count_by_status(self, db) -> dict[str, int]:
        rows = db.execute("SELECT status, COUNT(*) AS total FROM requests GROUP BY status").fetchall()
        return {str(row["status"]): int(row["total"]) for row in rows}
