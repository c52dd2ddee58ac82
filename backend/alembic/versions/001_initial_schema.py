"""Initial orchestrator schema

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-18

Creates all tables for:
- Phase lifecycle (projects, teams, team_members, phases, deliverables)
- Escalations (escalations)
- Audit sinks (agent_messages, notifications, activity_logs)
- Outbox (outbound_effects)
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial_schema'
down_revision = None
branch_labels = None
depends_on = None


PROJECT_STATUS = ('active', 'completed')
PHASE_STATUS = ('pending', 'active', 'review', 'completed')
TEAM_STATUS = ('inactive', 'active')
TEAM_MEMBER_ROLE = ('manager', 'lead', 'member')
TEAM_MEMBER_STATUS = ('idle', 'working', 'reviewing', 'active')
DELIVERABLE_STATUS = ('pending', 'in_progress', 'review', 'revision_requested', 'approved')
HANDLER_TYPE = ('manager', 'senior_agent', 'human')
ESCALATION_STATUS = ('open', 'in_progress', 'pending_human', 'resolved')
EFFECT_KIND = ('trigger_work', 'send_notification', 'send_email')
EFFECT_STATUS = ('pending', 'sending', 'delivered', 'failed')


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    # ==========================================================================
    # Phase Lifecycle Tables
    # ==========================================================================

    # Projects table
    op.create_table(
        'projects',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.String(length=100), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=True),
        sa.Column('current_phase', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('status', sa.Enum(*PROJECT_STATUS, name='projectstatus'), nullable=False, server_default='active'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_projects_user_id', 'projects', ['user_id'], unique=False)

    # Teams table
    op.create_table(
        'teams',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('project_id', sa.Uuid(), nullable=False),
        sa.Column('division', sa.String(length=50), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('activation_phase', sa.Integer(), nullable=False),
        sa.Column('status', sa.Enum(*TEAM_STATUS, name='teamstatus'), nullable=False, server_default='inactive'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_teams_project_id', 'teams', ['project_id'], unique=False)

    # Team members table
    op.create_table(
        'team_members',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('team_id', sa.Uuid(), nullable=False),
        sa.Column('agent_id', sa.String(length=100), nullable=False),
        sa.Column('agent_name', sa.String(length=255), nullable=False),
        sa.Column('role', sa.Enum(*TEAM_MEMBER_ROLE, name='teammemberrole'), nullable=False, server_default='member'),
        sa.Column('status', sa.Enum(*TEAM_MEMBER_STATUS, name='teammemberstatus'), nullable=False, server_default='idle'),
        sa.Column('current_task', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['team_id'], ['teams.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_team_members_team_id', 'team_members', ['team_id'], unique=False)

    # Phases table
    op.create_table(
        'phases',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('project_id', sa.Uuid(), nullable=False),
        sa.Column('phase_number', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('status', sa.Enum(*PHASE_STATUS, name='phasestatus'), nullable=False, server_default='pending'),
        sa.Column('team_id', sa.Uuid(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['team_id'], ['teams.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('project_id', 'phase_number', name='uq_phase_project_number'),
    )
    op.create_index('ix_phases_project_id', 'phases', ['project_id'], unique=False)
    op.create_index('ix_phases_status', 'phases', ['status'], unique=False)

    # Deliverables table
    op.create_table(
        'deliverables',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('phase_id', sa.Uuid(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('deliverable_type', sa.String(length=50), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.Enum(*DELIVERABLE_STATUS, name='deliverablestatus'), nullable=False, server_default='pending'),
        sa.Column('assigned_agent_id', sa.String(length=100), nullable=True),
        sa.Column('content', sa.JSON(), nullable=True),
        sa.Column('authority_approved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('human_approved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('approved_by', sa.String(length=100), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('feedback_history', sa.JSON(), nullable=False, server_default='[]'),
        sa.Column('version', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['phase_id'], ['phases.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_deliverables_phase_id', 'deliverables', ['phase_id'], unique=False)

    # ==========================================================================
    # Escalation Tables
    # ==========================================================================

    op.create_table(
        'escalations',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.String(length=100), nullable=True),
        sa.Column('project_id', sa.Uuid(), nullable=False),
        sa.Column('created_by_agent_id', sa.String(length=100), nullable=False),
        sa.Column('created_by_agent_name', sa.String(length=255), nullable=True),
        sa.Column('escalation_level', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('current_handler_type', sa.Enum(*HANDLER_TYPE, name='handlertype'), nullable=False, server_default='manager'),
        sa.Column('current_handler_id', sa.String(length=100), nullable=True),
        sa.Column('status', sa.Enum(*ESCALATION_STATUS, name='escalationstatus'), nullable=False, server_default='open'),
        sa.Column('issue_type', sa.String(length=100), nullable=False),
        sa.Column('issue_description', sa.Text(), nullable=False),
        sa.Column('context', sa.JSON(), nullable=False, server_default='{}'),
        sa.Column('task_id', sa.String(length=100), nullable=True),
        sa.Column('deliverable_id', sa.String(length=100), nullable=True),
        sa.Column('team_id', sa.String(length=100), nullable=True),
        sa.Column('attempted_solutions', sa.JSON(), nullable=False, server_default='[]'),
        sa.Column('escalated_to_manager_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('escalated_to_ceo_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('escalated_to_human_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolution', sa.Text(), nullable=True),
        sa.Column('resolution_type', sa.String(length=50), nullable=True),
        sa.Column('resolved_by', sa.String(length=100), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_escalations_project_id', 'escalations', ['project_id'], unique=False)
    op.create_index('ix_escalations_escalation_level', 'escalations', ['escalation_level'], unique=False)
    op.create_index('ix_escalations_status', 'escalations', ['status'], unique=False)

    # ==========================================================================
    # Audit Tables
    # ==========================================================================

    op.create_table(
        'agent_messages',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.String(length=100), nullable=True),
        sa.Column('project_id', sa.Uuid(), nullable=True),
        sa.Column('from_agent_id', sa.String(length=100), nullable=False),
        sa.Column('from_agent_name', sa.String(length=255), nullable=True),
        sa.Column('to_agent_id', sa.String(length=100), nullable=True),
        sa.Column('to_agent_name', sa.String(length=255), nullable=True),
        sa.Column('team_id', sa.String(length=100), nullable=True),
        sa.Column('message_type', sa.String(length=50), nullable=False),
        sa.Column('subject', sa.String(length=500), nullable=False),
        sa.Column('content', sa.Text(), nullable=True),
        sa.Column('context', sa.JSON(), nullable=False, server_default='{}'),
        sa.Column('priority', sa.String(length=20), nullable=False, server_default='normal'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_agent_messages_project_id', 'agent_messages', ['project_id'], unique=False)

    op.create_table(
        'notifications',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.String(length=100), nullable=True),
        sa.Column('project_id', sa.Uuid(), nullable=True),
        sa.Column('type', sa.String(length=50), nullable=False),
        sa.Column('title', sa.String(length=500), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('priority', sa.String(length=20), nullable=False, server_default='normal'),
        sa.Column('notification_metadata', sa.JSON(), nullable=False, server_default='{}'),
        sa.Column('read', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.ForeignKeyConstraint(['project_id'], ['projects.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'], unique=False)
    op.create_index('ix_notifications_project_id', 'notifications', ['project_id'], unique=False)

    op.create_table(
        'activity_logs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('agent_id', sa.String(length=100), nullable=False),
        sa.Column('agent_name', sa.String(length=255), nullable=True),
        sa.Column('action', sa.String(length=255), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='completed'),
        sa.Column('details', sa.JSON(), nullable=False, server_default='{}'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )

    # ==========================================================================
    # Outbox
    # ==========================================================================

    op.create_table(
        'outbound_effects',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('kind', sa.Enum(*EFFECT_KIND, name='effectkind'), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=False, server_default='{}'),
        sa.Column('status', sa.Enum(*EFFECT_STATUS, name='effectstatus'), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_outbound_effects_status', 'outbound_effects', ['status'], unique=False)


def downgrade() -> None:
    # Drop tables in reverse order
    op.drop_table('outbound_effects')
    op.drop_table('activity_logs')
    op.drop_table('notifications')
    op.drop_table('agent_messages')
    op.drop_table('escalations')
    op.drop_table('deliverables')
    op.drop_table('phases')
    op.drop_table('team_members')
    op.drop_table('teams')
    op.drop_table('projects')

    # Drop enums (PostgreSQL only)
    if op.get_bind().dialect.name == 'postgresql':
        for name in (
            'effectstatus', 'effectkind', 'escalationstatus', 'handlertype',
            'deliverablestatus', 'phasestatus', 'teammemberstatus',
            'teammemberrole', 'teamstatus', 'projectstatus',
        ):
            op.execute(f"DROP TYPE IF EXISTS {name}")
