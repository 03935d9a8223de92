from __future__ import annotations

from app.infrastructure.repositories.base import BaseRepository


class PurchaseOrderRepository(BaseRepository):
    table = "purchase_orders"
    columns = (
        "id",
        "request_id",
        "offer_id",
        "ordered_by",
        "ordered_at",
        "total_price",
        "currency",
        "provider_username",
        "provider_name",
        "roles_provided_json",
        "delivery_days",
        "snapshot_json",
        "created_at",
    )
    json_fields = ("roles_provided", "snapshot")

    def get_by_request(self, db, request_id: str) -> dict | None:
        rows = self.find_many(db, {"request_id": str(request_id)}, limit=1)
        return rows[0] if rows else None
