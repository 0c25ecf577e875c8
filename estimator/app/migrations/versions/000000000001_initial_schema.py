"""initial_schema

Revision ID: 000000000001
Revises: 
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '000000000001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ENUMS
    sa.Enum('IMPORT_CLASSIFY', 'GENERATE_SNAPSHOT', name='job_type_enum').create(op.get_bind())
    sa.Enum('PENDING', 'RUNNING', 'FAILED', 'COMPLETED', name='job_status_enum').create(op.get_bind())
    sa.Enum('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED', name='import_status_enum').create(op.get_bind())

    # 1. reference tables
    op.create_table('work_types',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_table('measurement_units',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('symbol', sa.String(length=32), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_table('normative_rates',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('code', sa.String(length=255), nullable=False),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('resource_type', sa.String(length=32), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_normative_rates_code', 'normative_rates', ['code'], unique=True)

    # 2. estimates
    op.create_table('estimates',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('organization_id', sa.Integer(), nullable=True),
        sa.Column('name', sa.String(length=500), nullable=False),
        sa.Column('structure_cache_path', sa.String(length=1024), nullable=True),
        sa.Column('snapshot_generated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    # 3. estimate_sections
    op.create_table('estimate_sections',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('estimate_id', sa.Integer(), nullable=False),
        sa.Column('parent_section_id', sa.Integer(), nullable=True),
        sa.Column('section_number', sa.String(length=255), nullable=False),
        sa.Column('sort_order', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=1000), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['estimate_id'], ['estimates.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['parent_section_id'], ['estimate_sections.id'], ondelete='CASCADE')
    )
    op.create_index(
        'ix_estimate_sections_scope', 'estimate_sections',
        ['estimate_id', 'parent_section_id', 'sort_order'], unique=False
    )

    # 4. estimate_items
    op.create_table('estimate_items',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('estimate_id', sa.Integer(), nullable=False),
        sa.Column('section_id', sa.Integer(), nullable=True),
        sa.Column('parent_item_id', sa.Integer(), nullable=True),
        sa.Column('position_number', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=255), nullable=True),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('unit', sa.String(length=64), nullable=True),
        sa.Column('quantity', sa.Numeric(precision=18, scale=6), nullable=False),
        sa.Column('unit_price', sa.Numeric(precision=18, scale=2), nullable=True),
        sa.Column('work_type_id', sa.Integer(), nullable=True),
        sa.Column('measurement_unit_id', sa.Integer(), nullable=True),
        sa.Column('classification_label', sa.String(length=32), nullable=False),
        sa.Column('classification_confidence', sa.Float(), nullable=False),
        sa.Column('classification_source', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['estimate_id'], ['estimates.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['section_id'], ['estimate_sections.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['parent_item_id'], ['estimate_items.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['work_type_id'], ['work_types.id'], ),
        sa.ForeignKeyConstraint(['measurement_unit_id'], ['measurement_units.id'], )
    )
    op.create_index('ix_estimate_items_estimate', 'estimate_items', ['estimate_id', 'position_number'], unique=False)
    op.create_index('ix_estimate_items_section', 'estimate_items', ['section_id'], unique=False)
    op.create_index('ix_estimate_items_parent', 'estimate_items', ['parent_item_id'], unique=False)

    # 5. item satellites
    op.create_table('estimate_item_resources',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('resource_type', sa.String(length=32), nullable=False),
        sa.Column('code', sa.String(length=255), nullable=True),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('unit', sa.String(length=64), nullable=True),
        sa.Column('quantity', sa.Numeric(precision=18, scale=6), nullable=False),
        sa.Column('unit_price', sa.Numeric(precision=18, scale=2), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['item_id'], ['estimate_items.id'], ondelete='CASCADE')
    )
    op.create_index('ix_estimate_item_resources_item_id', 'estimate_item_resources', ['item_id'], unique=False)

    op.create_table('estimate_item_totals',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('kind', sa.String(length=64), nullable=False),
        sa.Column('amount', sa.Numeric(precision=18, scale=2), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['item_id'], ['estimate_items.id'], ondelete='CASCADE')
    )
    op.create_index('ix_estimate_item_totals_item_id', 'estimate_item_totals', ['item_id'], unique=False)

    op.create_table('estimate_item_works',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('sort_order', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['item_id'], ['estimate_items.id'], ondelete='CASCADE')
    )
    op.create_index('ix_estimate_item_works_item_id', 'estimate_item_works', ['item_id'], unique=False)

    # 6. estimate_import_sessions
    op.create_table('estimate_import_sessions',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('estimate_id', sa.Integer(), nullable=False),
        sa.Column('file_name', sa.String(length=500), nullable=False),
        sa.Column('source_path', sa.String(length=1024), nullable=False),
        sa.Column('status', postgresql.ENUM('PENDING', 'PROCESSING', 'COMPLETED', 'FAILED', name='import_status_enum', create_type=False), nullable=False),
        sa.Column('stats', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['estimate_id'], ['estimates.id'], ondelete='CASCADE')
    )
    op.create_index('ix_estimate_import_sessions_estimate', 'estimate_import_sessions', ['estimate_id'], unique=False)

    # 7. jobs
    op.create_table('jobs',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('job_type', postgresql.ENUM('IMPORT_CLASSIFY', 'GENERATE_SNAPSHOT', name='job_type_enum', create_type=False), nullable=False),
        sa.Column('status', postgresql.ENUM('PENDING', 'RUNNING', 'FAILED', 'COMPLETED', name='job_status_enum', create_type=False), nullable=False),
        sa.Column('estimate_id', sa.Integer(), nullable=True),
        sa.Column('payload', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('result', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('max_attempts', sa.Integer(), nullable=False),
        sa.Column('worker_id', sa.String(length=255), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_jobs_status', 'jobs', ['status'], unique=False)
    op.create_index('ix_jobs_status_created', 'jobs', ['status', 'created_at'], unique=False)
    op.create_index('ix_jobs_type_estimate_status', 'jobs', ['job_type', 'estimate_id', 'status'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_jobs_type_estimate_status', table_name='jobs')
    op.drop_index('ix_jobs_status_created', table_name='jobs')
    op.drop_index('ix_jobs_status', table_name='jobs')
    op.drop_table('jobs')

    op.drop_index('ix_estimate_import_sessions_estimate', table_name='estimate_import_sessions')
    op.drop_table('estimate_import_sessions')

    op.drop_index('ix_estimate_item_works_item_id', table_name='estimate_item_works')
    op.drop_table('estimate_item_works')
    op.drop_index('ix_estimate_item_totals_item_id', table_name='estimate_item_totals')
    op.drop_table('estimate_item_totals')
    op.drop_index('ix_estimate_item_resources_item_id', table_name='estimate_item_resources')
    op.drop_table('estimate_item_resources')

    op.drop_index('ix_estimate_items_parent', table_name='estimate_items')
    op.drop_index('ix_estimate_items_section', table_name='estimate_items')
    op.drop_index('ix_estimate_items_estimate', table_name='estimate_items')
    op.drop_table('estimate_items')

    op.drop_index('ix_estimate_sections_scope', table_name='estimate_sections')
    op.drop_table('estimate_sections')
    op.drop_table('estimates')

    op.drop_index('ix_normative_rates_code', table_name='normative_rates')
    op.drop_table('normative_rates')
    op.drop_table('measurement_units')
    op.drop_table('work_types')

    sa.Enum(name='import_status_enum').drop(op.get_bind())
    sa.Enum(name='job_status_enum').drop(op.get_bind())
    sa.Enum(name='job_type_enum').drop(op.get_bind())
