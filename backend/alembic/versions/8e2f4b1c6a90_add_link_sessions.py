"""add link sessions

Revision ID: 8e2f4b1c6a90
Revises: 3a7c91e4d2b6
Create Date: 2026-10-19 09:40:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8e2f4b1c6a90'
down_revision: Union[str, Sequence[str], None] = '3a7c91e4d2b6'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('link_sessions',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('user_id', sa.String(), nullable=False),
    sa.Column('link_token', sa.String(), nullable=False),
    sa.Column('link_session_id', sa.String(), nullable=True),
    sa.Column('status', sa.Enum('pending', 'active', 'completed', 'failed', name='link_session_status', native_enum=False), nullable=False),
    sa.Column('items_added', sa.Integer(), nullable=False),
    sa.Column('created_at', sa.DateTime(), nullable=True),
    sa.Column('completed_at', sa.DateTime(), nullable=True),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_link_sessions_link_token'), 'link_sessions', ['link_token'], unique=True)
    op.create_index(op.f('ix_link_sessions_user_id'), 'link_sessions', ['user_id'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index(op.f('ix_link_sessions_user_id'), table_name='link_sessions')
    op.drop_index(op.f('ix_link_sessions_link_token'), table_name='link_sessions')
    op.drop_table('link_sessions')
