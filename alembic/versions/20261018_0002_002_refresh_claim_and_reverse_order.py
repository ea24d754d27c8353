"""refresh_claim_and_reverse_order

Revision ID: 002
Revises: 001
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '002'
down_revision: Union[str, None] = '001'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Refresh lease and per-podcast listing order
    with op.batch_alter_table('podcasts') as batch_op:
        batch_op.add_column(
            sa.Column('refresh_claimed_until', sa.BigInteger(), nullable=False, server_default='0')
        )
        batch_op.add_column(
            sa.Column('reverse_order', sa.Boolean(), nullable=False, server_default=sa.false())
        )

    # Feed GUIDs have no length limit
    with op.batch_alter_table('episodes') as batch_op:
        batch_op.alter_column(
            'guid',
            existing_type=sa.String(2048),
            type_=sa.Text(),
            existing_nullable=False,
        )


def downgrade() -> None:
    with op.batch_alter_table('episodes') as batch_op:
        batch_op.alter_column(
            'guid',
            existing_type=sa.Text(),
            type_=sa.String(2048),
            existing_nullable=False,
        )

    with op.batch_alter_table('podcasts') as batch_op:
        batch_op.drop_column('reverse_order')
        batch_op.drop_column('refresh_claimed_until')
