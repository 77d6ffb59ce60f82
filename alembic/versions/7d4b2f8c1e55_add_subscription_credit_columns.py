"""add_subscription_credit_columns

Revision ID: 7d4b2f8c1e55
Revises: 1c0a6e3f9b21
Create Date: 2026-04-18 16:41:27.093117

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '7d4b2f8c1e55'
down_revision: Union[str, None] = '1c0a6e3f9b21'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add dedicated credit counters, schema version and event ordering to subscriptions."""
    from sqlalchemy import inspect

    # Check if columns already exist (idempotent migration)
    bind = op.get_bind()
    inspector = inspect(bind)
    columns = [col['name'] for col in inspector.get_columns('subscriptions')]

    with op.batch_alter_table('subscriptions') as batch_op:
        if 'available_credits' not in columns:
            batch_op.add_column(sa.Column('available_credits', sa.Integer(), nullable=True))
        if 'total_credits' not in columns:
            batch_op.add_column(sa.Column('total_credits', sa.Integer(), nullable=True))
        if 'credits_reset_at' not in columns:
            batch_op.add_column(sa.Column('credits_reset_at', sa.DateTime(timezone=True), nullable=True))
        # Rows written before this migration keep credits in metadata.messageCredits
        if 'schema_version' not in columns:
            batch_op.add_column(sa.Column('schema_version', sa.Integer(), nullable=False, server_default='1'))
        if 'last_event_at' not in columns:
            batch_op.add_column(sa.Column('last_event_at', sa.Integer(), nullable=True))


def downgrade() -> None:
    """Remove credit columns from subscriptions."""
    with op.batch_alter_table('subscriptions') as batch_op:
        batch_op.drop_column('last_event_at')
        batch_op.drop_column('schema_version')
        batch_op.drop_column('credits_reset_at')
        batch_op.drop_column('total_credits')
        batch_op.drop_column('available_credits')
