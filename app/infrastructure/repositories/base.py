from __future__ import annotations

import json
from typing import Any, Dict, Iterable, Mapping, Sequence, Tuple


class UnknownColumnError(ValueError):
    """Raised when a filter, sort or patch names a column the table does not have."""


class BaseRepository:
    """Document-style access over one SQL table.

    Rows come back as plain dicts. Columns listed in ``json_fields`` are stored
    as JSON text under ``<field>_json`` and exposed under ``<field>``.
    """

    table: str = ""
    columns: Tuple[str, ...] = ()
    json_fields: Tuple[str, ...] = ()
    bool_fields: Tuple[str, ...] = ()
    default_sort: Tuple[Tuple[str, str], ...] = (("created_at", "DESC"),)

    def _column(self, name: str) -> str:
        if name in self.json_fields:
            name = f"{name}_json"
        if name not in self.columns:
            raise UnknownColumnError(f"{self.table}.{name}")
        return name

    def to_document(self, row: Any) -> Dict[str, Any]:
        data = dict(row)
        for field_name in self.json_fields:
            raw = data.pop(f"{field_name}_json", None)
            data[field_name] = json.loads(raw) if raw else None
        for field_name in self.bool_fields:
            if field_name in data:
                data[field_name] = bool(data[field_name])
        return data

    def to_row(self, document: Mapping[str, Any]) -> Dict[str, Any]:
        row: Dict[str, Any] = {}
        for key, value in document.items():
            column = self._column(key)
            if key in self.json_fields:
                value = None if value is None else json.dumps(value, ensure_ascii=False, sort_keys=True)
            elif key in self.bool_fields:
                value = 1 if value else 0
            row[column] = value
        return row

    def build_where(self, filters: Mapping[str, Any] | None) -> Tuple[str, list]:
        clauses = []
        params: list = []
        for key, value in (filters or {}).items():
            column = self._column(key)
            if value is None:
                clauses.append(f"{column} IS NULL")
            elif isinstance(value, (list, tuple, set, frozenset)):
                values = [getattr(item, "value", item) for item in value]
                if not values:
                    clauses.append("1 = 0")
                    continue
                clauses.append(f"{column} IN ({', '.join('?' for _ in values)})")
                params.extend(values)
            else:
                clauses.append(f"{column} = ?")
                params.append(getattr(value, "value", value))
        if not clauses:
            return "", params
        return " WHERE " + " AND ".join(clauses), params

    def build_order_by(self, sort: Sequence[Tuple[str, str]] | None) -> str:
        parts = []
        for key, direction in sort or self.default_sort:
            direction = "ASC" if str(direction).upper() == "ASC" else "DESC"
            parts.append(f"{self._column(key)} {direction}")
        parts.append("id ASC")
        return " ORDER BY " + ", ".join(parts)

    def find_one(self, db, document_id: str) -> Dict[str, Any] | None:
        row = db.execute(
            f"SELECT * FROM {self.table} WHERE id = ? LIMIT 1",
            (str(document_id),),
        ).fetchone()
        return self.to_document(row) if row else None

    def find_many(
        self,
        db,
        filters: Mapping[str, Any] | None = None,
        *,
        sort: Sequence[Tuple[str, str]] | None = None,
        limit: int | None = None,
        offset: int = 0,
        extra_where: str | None = None,
        extra_params: Iterable[Any] = (),
    ) -> list[Dict[str, Any]]:
        where, params = self._combined_where(filters, extra_where, extra_params)
        sql = f"SELECT * FROM {self.table}{where}{self.build_order_by(sort)}"
        if limit is not None:
            sql += " LIMIT ? OFFSET ?"
            params.extend([int(limit), max(0, int(offset))])
        rows = db.execute(sql, params).fetchall()
        return [self.to_document(row) for row in rows]

    def count(
        self,
        db,
        filters: Mapping[str, Any] | None = None,
        *,
        extra_where: str | None = None,
        extra_params: Iterable[Any] = (),
    ) -> int:
        where, params = self._combined_where(filters, extra_where, extra_params)
        row = db.execute(f"SELECT COUNT(*) AS total FROM {self.table}{where}", params).fetchone()
        if row is None:
            return 0
        return int(row["total"])

    def insert(self, db, document: Mapping[str, Any]) -> Dict[str, Any]:
        row = self.to_row(document)
        columns = list(row.keys())
        db.execute(
            f"INSERT INTO {self.table} ({', '.join(columns)}) VALUES ({', '.join('?' for _ in columns)})",
            [row[column] for column in columns],
        )
        return dict(document)

    def update(self, db, document_id: str, patch: Mapping[str, Any]) -> int:
        return self._update(db, document_id, patch, expected_status=None)

    def conditional_update(self, db, document_id: str, expected_status: Any, patch: Mapping[str, Any]) -> int:
        """Apply ``patch`` only while ``status`` still equals ``expected_status``; returns rows affected."""
        return self._update(db, document_id, patch, expected_status=getattr(expected_status, "value", expected_status))

    def _update(self, db, document_id: str, patch: Mapping[str, Any], *, expected_status: Any) -> int:
        row = self.to_row(patch)
        if not row:
            return 0
        assignments = ", ".join(f"{column} = ?" for column in row)
        params = list(row.values()) + [str(document_id)]
        sql = f"UPDATE {self.table} SET {assignments} WHERE id = ?"
        if expected_status is not None:
            sql += " AND status = ?"
            params.append(expected_status)
        cursor = db.execute(sql, params)
        return int(cursor.rowcount or 0)

    def _combined_where(
        self,
        filters: Mapping[str, Any] | None,
        extra_where: str | None,
        extra_params: Iterable[Any],
    ) -> Tuple[str, list]:
        where, params = self.build_where(filters)
        if extra_where:
            where = f"{where} AND ({extra_where})" if where else f" WHERE ({extra_where})"
            params.extend(extra_params)
        return where, params
