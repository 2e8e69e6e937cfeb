"""Add graded counts to user metrics

Revision ID: 7b3e90c1d5a2
Revises: 1f4c2a9d7e10
Create Date: 2026-10-19 10:04:17.220981

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '7b3e90c1d5a2'
down_revision: Union[str, None] = '1f4c2a9d7e10'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.add_column('user_metrics', sa.Column('assignments_graded', sa.Integer(), nullable=False, server_default='0'))
    op.add_column('user_metrics', sa.Column('quizzes_graded', sa.Integer(), nullable=False, server_default='0'))


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_column('user_metrics', 'quizzes_graded')
    op.drop_column('user_metrics', 'assignments_graded')
