"""initial catalog: users, clubs, carnivals, sync logs, audit log

Revision ID: 0001_initial_catalog
Revises:
Create Date: 2025-07-01 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '0001_initial_catalog'
down_revision = None
branch_labels = None
depends_on = None


def _json_type(bind):
    return postgresql.JSONB() if bind.dialect.name == 'postgresql' else sa.JSON()


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade():
    bind = op.get_bind()
    json_type = _json_type(bind)

    op.create_table(
        'club',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('club_name', sa.String(length=100), nullable=False),
        sa.Column('state', sa.String(length=3), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_by_proxy', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_by_user_id', sa.String(length=36), nullable=True),
        sa.Column('invite_email', sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('club_name', name='uq_club_club_name'),
    )

    op.create_table(
        'user',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=True),
        sa.Column('first_name', sa.String(length=100), nullable=True),
        sa.Column('last_name', sa.String(length=100), nullable=True),
        sa.Column('is_admin', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('club_id', sa.String(length=36), sa.ForeignKey('club.id', ondelete='SET NULL'), nullable=True),
        sa.Column('is_primary_delegate', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.UniqueConstraint('email', name='uq_user_email'),
    )
    op.create_index('ix_user_club_id', 'user', ['club_id'], unique=False)

    if bind.dialect.name != 'sqlite':
        op.create_foreign_key(
            'fk_club_created_by_user', 'club', 'user',
            ['created_by_user_id'], ['id'], ondelete='SET NULL',
        )

    op.create_table(
        'club_alternate_name',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('club_id', sa.String(length=36), sa.ForeignKey('club.id', ondelete='CASCADE'), nullable=False),
        sa.Column('alternate_name', sa.String(length=100), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.UniqueConstraint('club_id', 'alternate_name', name='uq_club_alternate_name'),
    )
    op.create_index('ix_club_alternate_name_club_id', 'club_alternate_name', ['club_id'], unique=False)

    op.create_table(
        'carnival',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('my_sideline_id', sa.String(length=64), nullable=True),
        sa.Column('my_sideline_title', sa.String(length=255), nullable=True),
        sa.Column('date', sa.Date(), nullable=True),
        sa.Column('location_address', sa.String(length=500), nullable=True),
        sa.Column('state', sa.String(length=3), nullable=True),
        sa.Column('organiser_contact_email', sa.String(length=255), nullable=True),
        sa.Column('original_my_sideline_contact_email', sa.String(length=255), nullable=True),
        sa.Column('registration_link', sa.String(length=1024), nullable=True),
        sa.Column('club_logo_url', sa.String(length=1024), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_by_user_id', sa.String(length=36), sa.ForeignKey('user.id'), nullable=False),
        sa.Column('club_id', sa.String(length=36), sa.ForeignKey('club.id', ondelete='SET NULL'), nullable=True),
        sa.Column('is_manually_entered', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_my_sideline_sync', sa.DateTime(timezone=True), nullable=True),
        sa.Column('admin_notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('my_sideline_id', name='uq_carnival_my_sideline_id'),
    )
    op.create_index('ix_carnival_created_by_user_id', 'carnival', ['created_by_user_id'], unique=False)
    op.create_index('ix_carnival_club_id', 'carnival', ['club_id'], unique=False)

    op.create_table(
        'sync_logs',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('syncType', sa.String(length=50), nullable=False),
        sa.Column('status', sa.String(length=9), nullable=False),
        sa.Column('startedAt', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completedAt', sa.DateTime(timezone=True), nullable=True),
        sa.Column('eventsProcessed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('eventsCreated', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('eventsUpdated', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('errorMessage', sa.Text(), nullable=True),
        sa.Column('metadata', json_type, nullable=True),
        sa.CheckConstraint("status IN ('running', 'completed', 'failed')", name='sync_status'),
    )
    op.create_index('ix_sync_logs_type_started', 'sync_logs', ['syncType', sa.text('"startedAt" DESC')], unique=False)
    op.create_index('ix_sync_logs_type_status', 'sync_logs', ['syncType', 'status'], unique=False)
    op.create_index(
        'uq_sync_logs_one_running',
        'sync_logs',
        ['syncType'],
        unique=True,
        sqlite_where=sa.text("status = 'running'"),
        postgresql_where=sa.text("status = 'running'"),
    )

    op.create_table(
        'audit_log',
        sa.Column('id', sa.String(length=36), primary_key=True),
        sa.Column('user_id', sa.String(length=36), sa.ForeignKey('user.id', ondelete='SET NULL'), nullable=True),
        sa.Column('action', sa.String(length=128), nullable=False),
        sa.Column('entity_type', sa.String(length=128), nullable=False),
        sa.Column('entity_id', sa.String(length=36), nullable=True),
        sa.Column('meta', json_type, nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_audit_log_user_id', 'audit_log', ['user_id'], unique=False)


def downgrade():
    op.drop_index('ix_audit_log_user_id', table_name='audit_log')
    op.drop_table('audit_log')
    op.drop_index('uq_sync_logs_one_running', table_name='sync_logs')
    op.drop_index('ix_sync_logs_type_status', table_name='sync_logs')
    op.drop_index('ix_sync_logs_type_started', table_name='sync_logs')
    op.drop_table('sync_logs')
    op.drop_index('ix_carnival_club_id', table_name='carnival')
    op.drop_index('ix_carnival_created_by_user_id', table_name='carnival')
    op.drop_table('carnival')
    op.drop_index('ix_club_alternate_name_club_id', table_name='club_alternate_name')
    op.drop_table('club_alternate_name')
    if op.get_bind().dialect.name != 'sqlite':
        op.drop_constraint('fk_club_created_by_user', 'club', type_='foreignkey')
    op.drop_index('ix_user_club_id', table_name='user')
    op.drop_table('user')
    op.drop_table('club')
