"""Create pricing tables

Revision ID: 001_pricing_tables
Revises:
Create Date: 2026-10-17

Tables:
- margin_rules: markup rules by scope, soft-deactivated only
- special_offers: scoped discounts with an optional validity window
- product_variants: one row per SKU with engine-owned pricing columns
- pricing_audit_logs: append-only mutation history

Seeds the catch-all default margin rule (30%).
"""
from typing import Sequence, Union
import uuid

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_pricing_tables'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    """Create the four pricing tables and the default rule."""

    # ==================== margin_rules ====================
    margin_rules = op.create_table(
        'margin_rules',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('rule_type', sa.String(30), nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False),
        sa.Column('sku_code', sa.String(100), nullable=True),
        sa.Column('brand', sa.String(200), nullable=True),
        sa.Column('product_type', sa.String(200), nullable=True),
        sa.Column('category', sa.String(200), nullable=True),
        sa.Column('margin_percent', sa.Numeric(8, 2), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_by', sa.String(100), nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_margin_rules_rule_type', 'margin_rules', ['rule_type'])
    op.create_index('ix_margin_rules_priority', 'margin_rules', ['priority'])
    op.create_index('ix_margin_rules_is_active', 'margin_rules', ['is_active'])

    # ==================== special_offers ====================
    op.create_table(
        'special_offers',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('discount_percent', sa.Numeric(5, 2), nullable=False),
        sa.Column('rule_type', sa.String(30), nullable=False),
        sa.Column('sku_code', sa.String(100), nullable=True),
        sa.Column('brand', sa.String(200), nullable=True),
        sa.Column('product_type', sa.String(200), nullable=True),
        sa.Column('category', sa.String(200), nullable=True),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_by', sa.String(100), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('discount_percent >= 0 AND discount_percent <= 100', name='ck_special_offers_discount'),
    )
    op.create_index('ix_special_offers_is_active', 'special_offers', ['is_active'])

    # ==================== product_variants ====================
    op.create_table(
        'product_variants',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('sku_code', sa.String(100), nullable=False),
        sa.Column('style_code', sa.String(100), nullable=False),
        sa.Column('style_name', sa.String(255), nullable=True),
        sa.Column('brand', sa.String(200), nullable=False),
        sa.Column('product_type', sa.String(200), nullable=False),
        sa.Column('category', sa.String(1000), nullable=True),
        sa.Column('colour_name', sa.String(100), nullable=True),
        sa.Column('size_name', sa.String(50), nullable=True),
        sa.Column('cost', sa.Numeric(12, 2), nullable=True),
        sa.Column('margin_percent', sa.Numeric(8, 2), nullable=True),
        sa.Column('calculated_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('is_offer_active', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('offer_discount_percent', sa.Numeric(5, 2), nullable=True),
        sa.Column('final_price', sa.Numeric(12, 2), nullable=True),
        sa.Column(
            'applied_rule_id', sa.Uuid(),
            sa.ForeignKey('margin_rules.id', ondelete='SET NULL'),
            nullable=True,
        ),
        *_timestamps(),
    )
    op.create_index('ix_product_variants_sku_code', 'product_variants', ['sku_code'], unique=True)
    op.create_index('ix_product_variants_applied_rule_id', 'product_variants', ['applied_rule_id'])
    op.create_index('idx_product_variants_brand_type', 'product_variants', ['brand', 'product_type'])
    op.create_index('idx_product_variants_style', 'product_variants', ['style_code'])

    # ==================== pricing_audit_logs ====================
    op.create_table(
        'pricing_audit_logs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('affected_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('performed_by', sa.String(100), nullable=True),
        sa.Column('rule_id', sa.Uuid(), nullable=True),
        sa.Column('rule_snapshot', sa.JSON(), nullable=False),
        sa.Column('rollback_data', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_pricing_audit_logs_action', 'pricing_audit_logs', ['action'])
    op.create_index('ix_pricing_audit_logs_rule_id', 'pricing_audit_logs', ['rule_id'])
    op.create_index('ix_pricing_audit_logs_created_at', 'pricing_audit_logs', ['created_at'])

    # ==================== Seed ====================
    op.bulk_insert(margin_rules, [
        {
            'id': uuid.uuid4(),
            'name': 'Default margin',
            'rule_type': 'default',
            'priority': 6,
            'margin_percent': 30,
            'is_active': True,
            'created_by': 'system',
        },
    ])


def downgrade() -> None:
    """Drop pricing tables."""
    op.drop_table('pricing_audit_logs')
    op.drop_table('product_variants')
    op.drop_table('special_offers')
    op.drop_table('margin_rules')
