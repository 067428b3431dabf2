"""create goals and goal_fundings tables

Revision ID: create_goals_tables
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'create_goals_tables'
down_revision = None
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        'goals',
        sa.Column('id', sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('target_amount', sa.Numeric(20, 6), nullable=False),
        sa.Column('current_funded_amount', sa.Numeric(20, 6), nullable=False, server_default='0'),
        sa.Column('vault_address', sa.String(42), nullable=False),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('user_id', 'title', name='uq_goals_user_id_title'),
    )
    op.create_index('ix_goals_user_id', 'goals', ['user_id'])

    # One row per credited deposit; tx_hash makes funding updates idempotent
    op.create_table(
        'goal_fundings',
        sa.Column('id', sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('goal_id', sa.dialects.postgresql.UUID(as_uuid=True), sa.ForeignKey('goals.id', ondelete='CASCADE'), nullable=False),
        sa.Column('amount', sa.Numeric(20, 6), nullable=False),
        sa.Column('tx_hash', sa.String(66), nullable=True, unique=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_goal_fundings_goal_id', 'goal_fundings', ['goal_id'])

def downgrade():
    op.drop_index('ix_goal_fundings_goal_id', table_name='goal_fundings')
    op.drop_table('goal_fundings')
    op.drop_index('ix_goals_user_id', table_name='goals')
    op.drop_table('goals')
