"""Initial schema: organization, users, tasks, auction bids, point ledger and history.

Revision ID: 001
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Enum types are shared between tables, so they are created once up front
role_enum = postgresql.ENUM('admin', 'director', 'manager', 'senior', 'employee', name='role', create_type=False)
grade_enum = postgresql.ENUM('D', 'C', 'B', 'A', name='grade', create_type=False)
task_type_enum = postgresql.ENUM('INDIVIDUAL', 'UNIT', 'DEPARTMENT', name='tasktype', create_type=False)
mode_enum = postgresql.ENUM('MONEY', 'TIME', name='auctionmode', create_type=False)
status_enum = postgresql.ENUM('backlog', 'in_progress', 'under_review', 'done', name='taskstatus', create_type=False)
point_type_enum = postgresql.ENUM('task_completion', 'overdue_penalty', 'position_assigned', name='pointtransactiontype', create_type=False)
change_type_enum = postgresql.ENUM('created', 'status_changed', 'auction_opened', 'auction_extended', 'auction_closed', name='taskchangetype', create_type=False)

ALL_ENUMS = [role_enum, grade_enum, task_type_enum, mode_enum, status_enum, point_type_enum, change_type_enum]


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in ALL_ENUMS:
        enum_type.create(bind, checkfirst=True)

    # Organization structure
    op.create_table(
        'departments',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('leader_id', sa.Uuid, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        'managements',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('department_id', sa.Uuid, sa.ForeignKey('departments.id', ondelete='CASCADE'), nullable=False),
        sa.Column('leader_id', sa.Uuid, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_managements_department_id', 'managements', ['department_id'])

    op.create_table(
        'divisions',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('management_id', sa.Uuid, sa.ForeignKey('managements.id', ondelete='CASCADE'), nullable=False),
        sa.Column('department_id', sa.Uuid, sa.ForeignKey('departments.id', ondelete='CASCADE'), nullable=False),
        sa.Column('leader_id', sa.Uuid, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_divisions_management_id', 'divisions', ['management_id'])
    op.create_index('ix_divisions_department_id', 'divisions', ['department_id'])

    # Users
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('username', sa.String(100), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('role', role_enum, nullable=False, server_default='employee'),
        sa.Column('department_id', sa.Uuid, sa.ForeignKey('departments.id', ondelete='SET NULL'), nullable=True),
        sa.Column('management_id', sa.Uuid, sa.ForeignKey('managements.id', ondelete='SET NULL'), nullable=True),
        sa.Column('division_id', sa.Uuid, sa.ForeignKey('divisions.id', ondelete='SET NULL'), nullable=True),
        sa.Column('grade', grade_enum, nullable=True),
        sa.Column('points', sa.Integer, nullable=False, server_default='0'),
        sa.Column('rating', sa.Numeric(3, 2), nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_users_username', 'users', ['username'], unique=True)
    op.create_index('ix_users_department_id', 'users', ['department_id'])
    op.create_index('ix_users_division_id', 'users', ['division_id'])

    # Tasks
    op.create_table(
        'tasks',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('task_type', task_type_enum, nullable=False),
        sa.Column('mode', mode_enum, nullable=False, server_default='MONEY'),
        sa.Column('status', status_enum, nullable=False, server_default='backlog'),
        sa.Column('department_id', sa.Uuid, sa.ForeignKey('departments.id', ondelete='CASCADE'), nullable=False),
        sa.Column('management_id', sa.Uuid, sa.ForeignKey('managements.id', ondelete='SET NULL'), nullable=True),
        sa.Column('division_id', sa.Uuid, sa.ForeignKey('divisions.id', ondelete='SET NULL'), nullable=True),
        sa.Column('creator_id', sa.Uuid, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('creator_name', sa.String(255), nullable=False),
        sa.Column('assignee_id', sa.Uuid, sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('assignee_name', sa.String(255), nullable=True),
        sa.Column('minimum_grade', grade_enum, nullable=False, server_default='D'),
        sa.Column('deadline', sa.DateTime, nullable=True),
        sa.Column('done_at', sa.DateTime, nullable=True),
        sa.Column('auction_start_at', sa.DateTime, nullable=True),
        sa.Column('auction_planned_end_at', sa.DateTime, nullable=True),
        sa.Column('auction_end_at', sa.DateTime, nullable=True),
        sa.Column('auction_extended_from_at', sa.DateTime, nullable=True),
        sa.Column('base_price', sa.Numeric(14, 2), nullable=True),
        sa.Column('current_price', sa.Numeric(14, 2), nullable=True),
        sa.Column('base_time_minutes', sa.Integer, nullable=True),
        sa.Column('current_time_minutes', sa.Integer, nullable=True),
        sa.Column('auction_has_bids', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('auction_leader_id', sa.Uuid, nullable=True),
        sa.Column('auction_leader_name', sa.String(255), nullable=True),
        sa.Column('auction_winner_id', sa.Uuid, nullable=True),
        sa.Column('auction_winner_name', sa.String(255), nullable=True),
        sa.Column('version', sa.Integer, nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('base_price IS NULL OR base_price > 0', name='positive_base_price'),
        sa.CheckConstraint('base_time_minutes IS NULL OR base_time_minutes > 0', name='positive_base_time'),
    )
    op.create_index('ix_tasks_status', 'tasks', ['status'])
    op.create_index('ix_tasks_department_id', 'tasks', ['department_id'])
    op.create_index('ix_tasks_creator_id', 'tasks', ['creator_id'])
    op.create_index('ix_tasks_assignee_id', 'tasks', ['assignee_id'])
    op.create_index('ix_tasks_deadline', 'tasks', ['deadline'])
    op.create_index('ix_tasks_auction_planned_end_at', 'tasks', ['auction_planned_end_at'])
    op.create_index('ix_tasks_created_at', 'tasks', ['created_at'])

    # Auction bids
    op.create_table(
        'auction_bids',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('task_id', sa.Uuid, sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('bidder_id', sa.Uuid, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('bidder_name', sa.String(255), nullable=False),
        sa.Column('bidder_grade', grade_enum, nullable=False),
        sa.Column('bidder_rating', sa.Numeric(3, 2), nullable=True),
        sa.Column('bidder_points', sa.Integer, nullable=False, server_default='0'),
        sa.Column('value_money', sa.Numeric(14, 2), nullable=True),
        sa.Column('value_time_minutes', sa.Integer, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            "(value_money IS NOT NULL AND value_time_minutes IS NULL) OR "
            "(value_money IS NULL AND value_time_minutes IS NOT NULL)",
            name='exactly_one_bid_value'
        ),
    )
    op.create_index('ix_auction_bids_task_id', 'auction_bids', ['task_id'])
    op.create_index('ix_auction_bids_bidder_id', 'auction_bids', ['bidder_id'])
    op.create_index('ix_auction_bids_created_at', 'auction_bids', ['created_at'])

    # Point ledger
    op.create_table(
        'point_transactions',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('user_id', sa.Uuid, sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('amount', sa.Integer, nullable=False),
        sa.Column('type', point_type_enum, nullable=False),
        sa.Column('task_id', sa.Uuid, sa.ForeignKey('tasks.id', ondelete='SET NULL'), nullable=True),
        sa.Column('task_title', sa.String(200), nullable=True),
        sa.Column('comment', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_point_transactions_user_id', 'point_transactions', ['user_id'])
    op.create_index('ix_point_transactions_created_at', 'point_transactions', ['created_at'])

    # Task history
    op.create_table(
        'task_history',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('task_id', sa.Uuid, sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('change_type', change_type_enum, nullable=False),
        sa.Column('field_name', sa.String(50), nullable=True),
        sa.Column('old_value', sa.Text, nullable=True),
        sa.Column('new_value', sa.Text, nullable=True),
        sa.Column('comment', sa.Text, nullable=True),
        sa.Column('changed_by', sa.Uuid, sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('changed_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_task_history_task_id', 'task_history', ['task_id'])
    op.create_index('ix_task_history_changed_at', 'task_history', ['changed_at'])


def downgrade() -> None:
    # Drop tables
    op.drop_table('task_history')
    op.drop_table('point_transactions')
    op.drop_table('auction_bids')
    op.drop_table('tasks')
    op.drop_table('users')
    op.drop_table('divisions')
    op.drop_table('managements')
    op.drop_table('departments')

    # Drop enums
    bind = op.get_bind()
    for enum_type in reversed(ALL_ENUMS):
        enum_type.drop(bind, checkfirst=True)
