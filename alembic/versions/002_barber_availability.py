"""barber weekly availability

Revision ID: 002
Revises: 001
Create Date: 2026-10-17 15:00:00.000000
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '002'
down_revision: Union[str, None] = '001'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'barber_availability',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            'barber_id', postgresql.UUID(as_uuid=True),
            sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False,
        ),
        sa.Column('weekday', sa.Integer(), nullable=False),
        sa.Column('starts_at', sa.String(5), nullable=False),
        sa.Column('ends_at', sa.String(5), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('barber_id', 'weekday', 'starts_at', 'ends_at', name='uq_barber_availability_range'),
    )
    op.create_index('ix_barber_availability_barber_id', 'barber_availability', ['barber_id'])


def downgrade() -> None:
    op.drop_index('ix_barber_availability_barber_id', table_name='barber_availability')
    op.drop_table('barber_availability')
