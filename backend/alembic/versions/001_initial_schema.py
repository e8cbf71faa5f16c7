"""initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Detect database type
    bind = op.get_bind()
    is_sqlite = bind.dialect.name == 'sqlite'

    # Choose appropriate JSON type
    json_type = sa.JSON() if is_sqlite else postgresql.JSONB(astext_type=sa.Text())

    # Choose appropriate timestamp default
    timestamp_default = sa.text("(datetime('now'))") if is_sqlite else sa.text('now()')

    # AUTOINCREMENT on SQLite so deleted ids are never handed out again
    autoincrement = {'sqlite_autoincrement': True} if is_sqlite else {}

    # Create users table
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False, server_default='user'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=timestamp_default),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=timestamp_default),
        sa.PrimaryKeyConstraint('id'),
        **autoincrement
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    # Create devices table
    op.create_table(
        'devices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('type', sa.String(length=20), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='inactive'),
        sa.Column('owner_id', sa.Integer(), nullable=False),
        sa.Column('last_active_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=timestamp_default),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=timestamp_default),
        sa.ForeignKeyConstraint(['owner_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        **autoincrement
    )
    op.create_index('ix_devices_owner_id', 'devices', ['owner_id'])
    op.create_index('ix_devices_status', 'devices', ['status'])
    op.create_index('ix_devices_last_active_at', 'devices', ['last_active_at'])

    # Create device_logs table
    op.create_table(
        'device_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('device_id', sa.Integer(), nullable=False),
        sa.Column('event', sa.String(length=255), nullable=False),
        sa.Column('value', sa.Float(), nullable=False),
        sa.Column('timestamp', sa.DateTime(), nullable=False, server_default=timestamp_default),
        sa.ForeignKeyConstraint(['device_id'], ['devices.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        **autoincrement
    )
    op.create_index('ix_device_logs_device_id', 'device_logs', ['device_id'])
    op.create_index('ix_device_logs_event', 'device_logs', ['event'])
    op.create_index('ix_device_logs_timestamp', 'device_logs', ['timestamp'])
    op.create_index('ix_device_logs_device_id_timestamp', 'device_logs', ['device_id', 'timestamp'])

    # Create blacklist_tokens table
    op.create_table(
        'blacklist_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('jti', sa.String(length=64), nullable=False),
        sa.Column('token_type', sa.String(length=10), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=timestamp_default),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('jti', 'token_type', name='uq_blacklist_tokens_jti_type')
    )
    op.create_index('ix_blacklist_tokens_jti', 'blacklist_tokens', ['jti'])
    op.create_index('ix_blacklist_tokens_user_id', 'blacklist_tokens', ['user_id'])
    op.create_index('ix_blacklist_tokens_expires_at', 'blacklist_tokens', ['expires_at'])

    # Create export_jobs table
    op.create_table(
        'export_jobs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('job_id', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('device_id', sa.Integer(), nullable=False),
        sa.Column('start_date', sa.String(length=64), nullable=False),
        sa.Column('end_date', sa.String(length=64), nullable=False),
        sa.Column('format', sa.String(length=10), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='accepted'),
        sa.Column('file_url', sa.Text(), nullable=True),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=timestamp_default),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=timestamp_default),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_export_jobs_job_id', 'export_jobs', ['job_id'], unique=True)
    op.create_index('ix_export_jobs_user_id', 'export_jobs', ['user_id'])
    op.create_index('ix_export_jobs_status', 'export_jobs', ['status'])

    # Create job_steps table
    op.create_table(
        'job_steps',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('run_id', sa.String(length=255), nullable=False),
        sa.Column('step_id', sa.String(length=255), nullable=False),
        sa.Column('output', json_type, nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=timestamp_default),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('run_id', 'step_id', name='uq_job_steps_run_step')
    )
    op.create_index('ix_job_steps_run_id', 'job_steps', ['run_id'])


def downgrade() -> None:
    op.drop_table('job_steps')
    op.drop_table('export_jobs')
    op.drop_table('blacklist_tokens')
    op.drop_table('device_logs')
    op.drop_table('devices')
    op.drop_table('users')
