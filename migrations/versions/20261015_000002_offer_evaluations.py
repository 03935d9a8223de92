"""Add per-request offer evaluations

Revision ID: 20261015_000002
Revises: 20261001_000001
Create Date: 2026-10-15 00:00:02
"""

from __future__ import annotations

from typing import Sequence, Union

from alembic import op

from app.db import _evaluation_statements


# revision identifiers, used by Alembic.
revision: str = "20261015_000002"
down_revision: Union[str, Sequence[str], None] = "20261001_000001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    connection = op.get_bind()
    for statement in _evaluation_statements():
        connection.exec_driver_sql(statement)


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS evaluations")
