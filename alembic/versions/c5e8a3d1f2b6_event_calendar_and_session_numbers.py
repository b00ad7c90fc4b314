"""event_calendar_and_session_numbers

Revision ID: c5e8a3d1f2b6
Revises: a1c4e2f7b9d0
Create Date: 2026-10-19 09:30:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = 'c5e8a3d1f2b6'
down_revision: Union[str, Sequence[str], None] = 'a1c4e2f7b9d0'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Events are deleted from the calendar they were created in
    op.add_column('appointments', sa.Column('external_calendar_id', sa.String(), nullable=True))

    op.create_unique_constraint('uq_sessions_package_number', 'sessions', ['package_id', 'session_number'])


def downgrade() -> None:
    op.drop_constraint('uq_sessions_package_number', 'sessions', type_='unique')
    op.drop_column('appointments', 'external_calendar_id')
