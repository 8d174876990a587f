"""initial_enrollment_schema

Revision ID: 5b1e0c9d2a47
Revises:
Create Date: 2026-10-17 10:12:41.208113

Creates the enrollment schema:
- Organizations and their people (clients, coaches, admins)
- Programs with cohorts, and the squads members are placed into
- Enrollments with their pricing snapshot
- Discount codes and their usage audit
- 1:1 coaching relationships
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '5b1e0c9d2a47'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def _organization_id(table_name: str):
    return sa.Column(
        'organization_id',
        sa.String(36),
        sa.ForeignKey('organizations.id', name=f'fk_{table_name}_organization_id_organizations'),
        nullable=False,
    )


def upgrade() -> None:
    """Create enrollment tables."""
    op.create_table(
        'organizations',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('slug', sa.String(255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('alumni_discount_enabled', sa.Boolean(), nullable=False),
        sa.Column('alumni_discount_type', sa.String(10), nullable=True),
        sa.Column('alumni_discount_value', sa.Numeric(10, 2), nullable=True),
        sa.Column('stripe_connect_account_id', sa.String(255), nullable=True),
        sa.Column('platform_fee_percent', sa.Numeric(5, 2), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_organizations'),
        sa.UniqueConstraint('slug', name='uq_organizations_slug'),
    )
    op.create_index('ix_organizations_is_active', 'organizations', ['is_active'])

    op.create_table(
        'users',
        sa.Column('id', sa.String(36), nullable=False),
        _organization_id('users'),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=False),
        sa.Column('image_url', sa.String(500), nullable=True),
        sa.Column('role', sa.String(10), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('is_alumni', sa.Boolean(), nullable=False),
        sa.Column('coach_id', sa.String(36), nullable=True),
        sa.Column('is_coaching_client', sa.Boolean(), nullable=False),
        sa.Column('coaching_status', sa.String(20), nullable=True),
        sa.Column('stripe_connected_customer_ids', sa.JSON(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_users'),
    )
    op.create_index('ix_users_organization_id', 'users', ['organization_id'])
    op.create_index('ix_users_organization_email', 'users', ['organization_id', 'email'], unique=True)

    op.create_table(
        'programs',
        sa.Column('id', sa.String(36), nullable=False),
        _organization_id('programs'),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('program_type', sa.String(10), nullable=False),
        sa.Column('length_days', sa.Integer(), nullable=False),
        sa.Column('cover_image_url', sa.String(500), nullable=True),
        sa.Column('price_cents', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('squad_capacity', sa.Integer(), nullable=False),
        sa.Column('assigned_coach_ids', sa.JSON(), nullable=True),
        sa.Column('coach_in_squads', sa.Boolean(), nullable=False),
        sa.Column('client_community_squad_id', sa.String(36), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('is_published', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_programs'),
    )
    op.create_index('ix_programs_organization_id', 'programs', ['organization_id'])

    op.create_table(
        'cohorts',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column(
            'program_id', sa.String(36),
            sa.ForeignKey('programs.id', name='fk_cohorts_program_id_programs', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('enrollment_open', sa.Boolean(), nullable=False),
        sa.Column('max_enrollment', sa.Integer(), nullable=True),
        sa.Column('current_enrollment', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_cohorts'),
    )
    op.create_index('ix_cohorts_program_id', 'cohorts', ['program_id'])

    op.create_table(
        'squads',
        sa.Column('id', sa.String(36), nullable=False),
        _organization_id('squads'),
        sa.Column('name', sa.String(300), nullable=False),
        sa.Column(
            'program_id', sa.String(36),
            sa.ForeignKey('programs.id', name='fk_squads_program_id_programs', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column(
            'cohort_id', sa.String(36),
            sa.ForeignKey('cohorts.id', name='fk_squads_cohort_id_cohorts', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('squad_number', sa.Integer(), nullable=True),
        sa.Column('member_ids', sa.JSON(), nullable=False),
        sa.Column('member_count', sa.Integer(), nullable=False),
        sa.Column('capacity', sa.Integer(), nullable=False),
        sa.Column('revision', sa.Integer(), nullable=False),
        sa.Column('coach_id', sa.String(36), nullable=True),
        sa.Column('is_auto_created', sa.Boolean(), nullable=False),
        sa.Column('chat_channel_id', sa.String(255), nullable=True),
        sa.Column('invite_code', sa.String(20), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_squads'),
        # One squad per ordinal within a cohort
        sa.UniqueConstraint('cohort_id', 'squad_number', name='uq_squads_cohort_number'),
    )
    op.create_index('ix_squads_organization_id', 'squads', ['organization_id'])
    op.create_index('ix_squads_program_id', 'squads', ['program_id'])
    op.create_index('ix_squads_cohort_id', 'squads', ['cohort_id'])

    op.create_table(
        'discount_codes',
        sa.Column('id', sa.String(36), nullable=False),
        _organization_id('discount_codes'),
        sa.Column('code', sa.String(50), nullable=False),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('discount_type', sa.String(10), nullable=False),
        sa.Column('discount_value', sa.Numeric(10, 2), nullable=False),
        sa.Column('starts_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('max_uses', sa.Integer(), nullable=True),
        sa.Column('use_count', sa.Integer(), nullable=False),
        sa.Column('max_uses_per_user', sa.Integer(), nullable=True),
        sa.Column('applicable_to', sa.String(10), nullable=False),
        sa.Column('program_ids', sa.JSON(), nullable=True),
        sa.Column('squad_ids', sa.JSON(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column(
            'created_by_id', sa.String(36),
            sa.ForeignKey('users.id', name='fk_discount_codes_created_by_id_users', ondelete='SET NULL'),
            nullable=True,
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_discount_codes'),
        sa.UniqueConstraint('organization_id', 'code', name='uq_discount_codes_organization_code'),
    )
    op.create_index('ix_discount_codes_organization_id', 'discount_codes', ['organization_id'])

    op.create_table(
        'discount_code_usage',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column(
            'discount_code_id', sa.String(36),
            sa.ForeignKey(
                'discount_codes.id',
                name='fk_discount_code_usage_discount_code_id_discount_codes',
                ondelete='CASCADE',
            ),
            nullable=False,
        ),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('organization_id', sa.String(36), nullable=False),
        sa.Column('program_id', sa.String(36), nullable=True),
        sa.Column('squad_id', sa.String(36), nullable=True),
        sa.Column('enrollment_id', sa.String(36), nullable=True),
        sa.Column('original_amount', sa.Integer(), nullable=False),
        sa.Column('discount_amount', sa.Integer(), nullable=False),
        sa.Column('final_amount', sa.Integer(), nullable=False),
        sa.Column('used_at', sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_discount_code_usage'),
    )
    op.create_index('ix_discount_code_usage_discount_code_id', 'discount_code_usage', ['discount_code_id'])
    op.create_index('ix_discount_code_usage_user_id', 'discount_code_usage', ['user_id'])
    op.create_index('ix_discount_code_usage_organization_id', 'discount_code_usage', ['organization_id'])

    op.create_table(
        'enrollments',
        sa.Column('id', sa.String(36), nullable=False),
        _organization_id('enrollments'),
        sa.Column(
            'user_id', sa.String(36),
            sa.ForeignKey('users.id', name='fk_enrollments_user_id_users'),
            nullable=False,
        ),
        sa.Column(
            'program_id', sa.String(36),
            sa.ForeignKey('programs.id', name='fk_enrollments_program_id_programs'),
            nullable=False,
        ),
        sa.Column(
            'cohort_id', sa.String(36),
            sa.ForeignKey('cohorts.id', name='fk_enrollments_cohort_id_cohorts'),
            nullable=True,
        ),
        sa.Column(
            'squad_id', sa.String(36),
            sa.ForeignKey('squads.id', name='fk_enrollments_squad_id_squads', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('status', sa.String(10), nullable=False),
        sa.Column('started_at', sa.Date(), nullable=False),
        sa.Column('last_assigned_day_index', sa.Integer(), nullable=False),
        sa.Column('joined_community', sa.Boolean(), nullable=False),
        sa.Column('amount_paid', sa.Integer(), nullable=False),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            'discount_code_id', sa.String(36),
            sa.ForeignKey(
                'discount_codes.id',
                name='fk_enrollments_discount_code_id_discount_codes',
                ondelete='SET NULL',
            ),
            nullable=True,
        ),
        sa.Column('discount_amount', sa.Integer(), nullable=False),
        sa.Column('stripe_checkout_session_id', sa.String(255), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_enrollments'),
        # Webhook replays resolve to the same enrollment
        sa.UniqueConstraint('stripe_checkout_session_id', name='uq_enrollments_stripe_checkout_session_id'),
    )
    op.create_index('ix_enrollments_organization_id', 'enrollments', ['organization_id'])
    op.create_index('ix_enrollments_user_id', 'enrollments', ['user_id'])
    op.create_index('ix_enrollments_program_id', 'enrollments', ['program_id'])
    op.create_index('ix_enrollments_cohort_id', 'enrollments', ['cohort_id'])
    op.create_index('ix_enrollments_status', 'enrollments', ['status'])

    op.create_table(
        'coaching_relationships',
        sa.Column('id', sa.String(36), nullable=False),
        _organization_id('coaching_relationships'),
        sa.Column('user_id', sa.String(36), nullable=False),
        sa.Column('coach_id', sa.String(36), nullable=False),
        sa.Column('program_id', sa.String(36), nullable=True),
        sa.Column('coaching_plan', sa.String(50), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('focus_areas', sa.JSON(), nullable=False),
        sa.Column('action_items', sa.JSON(), nullable=False),
        sa.Column('session_history', sa.JSON(), nullable=False),
        sa.Column('resources', sa.JSON(), nullable=False),
        sa.Column('private_notes', sa.JSON(), nullable=False),
        sa.Column('next_call', sa.JSON(), nullable=False),
        sa.Column('chat_channel_id', sa.String(255), nullable=True),
        sa.Column('client_name', sa.String(255), nullable=True),
        sa.Column('client_email', sa.String(255), nullable=True),
        sa.Column('client_image_url', sa.String(500), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id', name='pk_coaching_relationships'),
        sa.UniqueConstraint('organization_id', 'user_id', name='uq_coaching_organization_user'),
    )
    op.create_index('ix_coaching_relationships_organization_id', 'coaching_relationships', ['organization_id'])
    op.create_index('ix_coaching_relationships_user_id', 'coaching_relationships', ['user_id'])
    op.create_index('ix_coaching_relationships_coach_id', 'coaching_relationships', ['coach_id'])


def downgrade() -> None:
    """Drop enrollment tables."""
    op.drop_table('coaching_relationships')
    op.drop_table('enrollments')
    op.drop_table('discount_code_usage')
    op.drop_table('discount_codes')
    op.drop_table('squads')
    op.drop_table('cohorts')
    op.drop_table('programs')
    op.drop_table('users')
    op.drop_table('organizations')
