"""add global duplicate detection tables and generate_property_fingerprint

Revision ID: add_global_duplicates
Revises: 
Create Date: 2025-07-19 17:58:25.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'add_global_duplicates'
down_revision = None
branch_labels = None
depends_on = None


FINGERPRINT_FUNCTION = """
CREATE OR REPLACE FUNCTION generate_property_fingerprint(
  p_title TEXT,
  p_street_name TEXT,
  p_street_number TEXT,
  p_zip_code TEXT,
  p_city TEXT,
  p_monthly_rent NUMERIC,
  p_bedrooms INTEGER,
  p_square_meters NUMERIC
) RETURNS TEXT
LANGUAGE SQL
IMMUTABLE
AS $$
  SELECT md5(
    COALESCE(lower(trim(p_title)), '') || '|' ||
    COALESCE(lower(trim(p_street_name)), '') || '|' ||
    COALESCE(lower(trim(p_street_number)), '') || '|' ||
    COALESCE(lower(trim(p_zip_code)), '') || '|' ||
    COALESCE(lower(trim(p_city)), '') || '|' ||
    COALESCE(p_monthly_rent::text, '0') || '|' ||
    COALESCE(p_bedrooms::text, '0') || '|' ||
    COALESCE(p_square_meters::text, '0')
  )
$$;
"""


def upgrade():
    # 重複候補グループ
    op.create_table(
        'global_duplicate_groups',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('confidence_score', sa.Float(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('pair_key', sa.String(200)),
        sa.Column('reviewed_by', sa.String(100)),
        sa.Column('reviewed_at', sa.DateTime()),
        sa.Column('merge_target_property_id', sa.Integer(),
                  sa.ForeignKey('properties.id', ondelete='SET NULL')),
        sa.Column('notes', sa.Text()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index('idx_global_duplicate_groups_status', 'global_duplicate_groups', ['status'])
    op.create_index('idx_global_duplicate_groups_confidence', 'global_duplicate_groups', ['confidence_score'])
    op.create_index('idx_global_duplicate_groups_pair_key', 'global_duplicate_groups', ['pair_key'])

    # グループのメンバー
    op.create_table(
        'global_duplicate_properties',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('duplicate_group_id', sa.Integer(),
                  sa.ForeignKey('global_duplicate_groups.id', ondelete='CASCADE'), nullable=False),
        sa.Column('property_id', sa.Integer(),
                  sa.ForeignKey('properties.id', ondelete='CASCADE'), nullable=False),
        sa.Column('similarity_reasons', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.UniqueConstraint('duplicate_group_id', 'property_id', name='unique_duplicate_group_property'),
    )
    op.create_index('idx_global_duplicate_properties_group', 'global_duplicate_properties', ['duplicate_group_id'])

    # 統合済み物件の追跡（再インポート防止）
    op.create_table(
        'merged_properties_tracking',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('original_property_id', sa.Integer(), nullable=False),
        sa.Column('target_property_id', sa.Integer(), nullable=False),
        sa.Column('merged_by', sa.String(100), nullable=False),
        sa.Column('merge_date', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('original_data', sa.JSON(), nullable=False),
        sa.Column('merge_reason', sa.Text()),
        sa.Column('fingerprint', sa.String(64), nullable=False),
    )
    op.create_index('idx_merged_properties_fingerprint', 'merged_properties_tracking', ['fingerprint'])
    op.create_index('idx_merged_properties_original', 'merged_properties_tracking', ['original_property_id'])
    op.create_index('idx_merged_properties_target', 'merged_properties_tracking', ['target_property_id'])

    # 監査ログ
    op.create_table(
        'duplicate_detection_log',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('action_type', sa.String(20), nullable=False),
        sa.Column('duplicate_group_id', sa.Integer(), sa.ForeignKey('global_duplicate_groups.id')),
        sa.Column('admin_user_id', sa.String(100), nullable=False),
        sa.Column('affected_properties', sa.JSON(), nullable=False),
        sa.Column('details', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index('idx_duplicate_detection_log_admin', 'duplicate_detection_log', ['admin_user_id'])
    op.create_index('idx_duplicate_detection_log_created', 'duplicate_detection_log', ['created_at'])

    # フィンガープリント関数（PostgreSQLのみ）
    if op.get_bind().dialect.name == 'postgresql':
        op.execute(FINGERPRINT_FUNCTION)


def downgrade():
    if op.get_bind().dialect.name == 'postgresql':
        op.execute(
            "DROP FUNCTION IF EXISTS generate_property_fingerprint"
            "(TEXT, TEXT, TEXT, TEXT, TEXT, NUMERIC, INTEGER, NUMERIC)"
        )
    op.drop_table('duplicate_detection_log')
    op.drop_table('merged_properties_tracking')
    op.drop_table('global_duplicate_properties')
    op.drop_table('global_duplicate_groups')
