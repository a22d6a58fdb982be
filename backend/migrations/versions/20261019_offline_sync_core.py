"""Offline sync core: entity snapshots, mutation log, sync cursor

Revision ID: 20261019_sync_core
Revises:
Create Date: 2026-10-19

This migration adds:
1. entity_snapshots (optimistic local view plus server shadow per entity)
2. mutation_records (durable replay log, ordered by seq)
3. sync_cursors (highest pulled revision and last sync time)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_sync_core'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. ENTITY SNAPSHOTS
    # ==========================================================================
    op.create_table('entity_snapshots',
        sa.Column('entity_id', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('server_payload', sa.JSON(), nullable=True),
        sa.Column('revision', sa.Integer(), nullable=True),
        sa.Column('dirty', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('deleted', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('entity_id')
    )
    op.create_index('ix_entity_snapshots_entity_type', 'entity_snapshots', ['entity_type'])
    op.create_index('ix_entity_snapshots_type_deleted', 'entity_snapshots', ['entity_type', 'deleted'])

    # ==========================================================================
    # 2. MUTATION RECORDS
    # ==========================================================================
    op.create_table('mutation_records',
        sa.Column('seq', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('entity_id', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('kind', sa.String(length=16), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('client_timestamp', sa.DateTime(), nullable=False),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('next_attempt_at', sa.DateTime(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('seq'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_mutation_records_id', 'mutation_records', ['id'], unique=True)
    op.create_index('ix_mutation_records_entity_seq', 'mutation_records', ['entity_id', 'seq'])

    # ==========================================================================
    # 3. SYNC CURSORS
    # ==========================================================================
    op.create_table('sync_cursors',
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('revision', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_synced_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('name')
    )


def downgrade():
    op.drop_table('sync_cursors')
    op.drop_index('ix_mutation_records_entity_seq', table_name='mutation_records')
    op.drop_index('ix_mutation_records_id', table_name='mutation_records')
    op.drop_table('mutation_records')
    op.drop_index('ix_entity_snapshots_type_deleted', table_name='entity_snapshots')
    op.drop_index('ix_entity_snapshots_entity_type', table_name='entity_snapshots')
    op.drop_table('entity_snapshots')
