from __future__ import annotations

from typing import Any, Dict, Mapping

from app.infrastructure.repositories.base import BaseRepository


class EvaluationRepository(BaseRepository):
    table = "evaluations"
    columns = (
        "id",
        "request_id",
        "evaluated_by",
        "weights_json",
        "offers_json",
        "comment",
        "recommended_offer_id",
        "created_at",
        "updated_at",
    )
    json_fields = ("weights", "offers")

    def get_by_request(self, db, request_id: str) -> Dict[str, Any] | None:
        rows = self.find_many(db, {"request_id": str(request_id)}, limit=1)
        return rows[0] if rows else None

    def upsert(self, db, document: Mapping[str, Any]) -> None:
        """One row per request: a second save keeps ``id`` and ``created_at`` and replaces the rest."""
        row = self.to_row(document)
        columns = list(row.keys())
        replaced = [column for column in columns if column not in ("id", "request_id", "created_at")]
        db.execute(
            f"""
            INSERT INTO evaluations ({', '.join(columns)})
            VALUES ({', '.join('?' for _ in columns)})
            ON CONFLICT (request_id) DO UPDATE SET
            {', '.join(f'{column} = excluded.{column}' for column in replaced)}
            """,
            [row[column] for column in columns],
        )
