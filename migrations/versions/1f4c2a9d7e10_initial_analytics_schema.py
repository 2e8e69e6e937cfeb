"""Initial analytics schema

Revision ID: 1f4c2a9d7e10
Revises:
Create Date: 2026-10-05 09:12:41.508233

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '1f4c2a9d7e10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('admin_settings',
        sa.Column('key', sa.String(length=100), nullable=False),
        sa.Column('value', sa.String(length=1000), nullable=False),
        sa.Column('description', sa.String(length=500), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('updated_by', sa.String(length=100), nullable=True),
        sa.PrimaryKeyConstraint('key')
    )

    op.create_table('schools',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('school_code', sa.String(length=50), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('status', sa.String(length=30), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('school_type', sa.String(length=100), nullable=True),
        sa.Column('province', sa.String(length=100), nullable=True),
        sa.Column('district', sa.String(length=100), nullable=True),
        sa.Column('sector', sa.String(length=100), nullable=True),
        sa.Column('has_tvet', sa.Boolean(), nullable=False),
        sa.Column('hierarchy', sa.JSON(), nullable=True),
        sa.Column('last_synced', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_schools_school_code'), 'schools', ['school_code'], unique=True)
    op.create_index(op.f('ix_schools_last_synced'), 'schools', ['last_synced'], unique=False)

    op.create_table('linked_identities',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('external_code', sa.String(length=50), nullable=False),
        sa.Column('entity_type', sa.String(length=20), nullable=False),
        sa.Column('school_id', sa.Integer(), nullable=True),
        sa.Column('sync_status', sa.String(length=20), nullable=False),
        sa.Column('sync_error', sa.Text(), nullable=True),
        sa.Column('last_synced', sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_linked_identities_user_id'), 'linked_identities', ['user_id'], unique=True)
    op.create_index(op.f('ix_linked_identities_external_code'), 'linked_identities', ['external_code'], unique=False)
    op.create_index(op.f('ix_linked_identities_entity_type'), 'linked_identities', ['entity_type'], unique=False)
    op.create_index(op.f('ix_linked_identities_school_id'), 'linked_identities', ['school_id'], unique=False)
    op.create_index(op.f('ix_linked_identities_sync_status'), 'linked_identities', ['sync_status'], unique=False)
    op.create_index(op.f('ix_linked_identities_last_synced'), 'linked_identities', ['last_synced'], unique=False)

    op.create_table('student_profiles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('student_code', sa.String(length=50), nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=True),
        sa.Column('last_name', sa.String(length=100), nullable=True),
        sa.Column('gender', sa.String(length=10), nullable=True),
        sa.Column('date_of_birth', sa.Date(), nullable=True),
        sa.Column('program', sa.String(length=255), nullable=True),
        sa.Column('program_code', sa.String(length=50), nullable=True),
        sa.Column('level_number', sa.Integer(), nullable=True),
        sa.Column('class_grade', sa.String(length=50), nullable=True),
        sa.Column('class_group', sa.String(length=50), nullable=True),
        sa.Column('academic_year', sa.String(length=20), nullable=True),
        sa.Column('registration_date', sa.Date(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_student_profiles_user_id'), 'student_profiles', ['user_id'], unique=True)

    op.create_table('staff_profiles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('staff_number', sa.String(length=50), nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=True),
        sa.Column('last_name', sa.String(length=100), nullable=True),
        sa.Column('gender', sa.String(length=10), nullable=True),
        sa.Column('position', sa.String(length=100), nullable=True),
        sa.Column('qualification', sa.String(length=100), nullable=True),
        sa.Column('employment_status', sa.String(length=50), nullable=True),
        sa.Column('subjects', sa.JSON(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_staff_profiles_user_id'), 'staff_profiles', ['user_id'], unique=True)

    op.create_table('sync_log',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sync_type', sa.String(length=20), nullable=False),
        sa.Column('entity_id', sa.String(length=100), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('operation', sa.String(length=20), nullable=False),
        sa.Column('request_url', sa.String(length=500), nullable=True),
        sa.Column('response_code', sa.Integer(), nullable=True),
        sa.Column('response_time_ms', sa.Integer(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('details', sa.Text(), nullable=True),
        sa.Column('triggered_by', sa.String(length=20), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_sync_log_sync_type'), 'sync_log', ['sync_type'], unique=False)
    op.create_index(op.f('ix_sync_log_entity_id'), 'sync_log', ['entity_id'], unique=False)
    op.create_index(op.f('ix_sync_log_user_id'), 'sync_log', ['user_id'], unique=False)
    op.create_index(op.f('ix_sync_log_operation'), 'sync_log', ['operation'], unique=False)
    op.create_index(op.f('ix_sync_log_created_at'), 'sync_log', ['created_at'], unique=False)

    op.create_table('processed_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_id', sa.String(length=100), nullable=False),
        sa.Column('event_type', sa.String(length=50), nullable=False),
        sa.Column('processed_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('event_id', name='uix_processed_event_id')
    )
    op.create_index(op.f('ix_processed_events_processed_at'), 'processed_events', ['processed_at'], unique=False)

    op.create_table('user_metrics',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('course_id', sa.Integer(), nullable=False),
        sa.Column('period_start', sa.DateTime(), nullable=False),
        sa.Column('period_end', sa.DateTime(), nullable=False),
        sa.Column('period_type', sa.String(length=10), nullable=False),
        sa.Column('total_actions', sa.Integer(), nullable=False),
        sa.Column('active_days', sa.Integer(), nullable=False),
        sa.Column('first_access', sa.DateTime(), nullable=True),
        sa.Column('last_access', sa.DateTime(), nullable=True),
        sa.Column('time_spent_seconds', sa.Integer(), nullable=False),
        sa.Column('resources_viewed', sa.Integer(), nullable=False),
        sa.Column('resources_unique', sa.Integer(), nullable=False),
        sa.Column('pages_viewed', sa.Integer(), nullable=False),
        sa.Column('files_downloaded', sa.Integer(), nullable=False),
        sa.Column('videos_started', sa.Integer(), nullable=False),
        sa.Column('forum_views', sa.Integer(), nullable=False),
        sa.Column('forum_posts', sa.Integer(), nullable=False),
        sa.Column('forum_replies', sa.Integer(), nullable=False),
        sa.Column('chat_messages', sa.Integer(), nullable=False),
        sa.Column('assignments_viewed', sa.Integer(), nullable=False),
        sa.Column('assignments_submitted', sa.Integer(), nullable=False),
        sa.Column('assignments_avg_score', sa.Float(), nullable=True),
        sa.Column('quizzes_attempted', sa.Integer(), nullable=False),
        sa.Column('quizzes_avg_score', sa.Float(), nullable=True),
        sa.Column('activities_completed', sa.Integer(), nullable=False),
        sa.Column('activities_total', sa.Integer(), nullable=False),
        sa.Column('course_progress', sa.Float(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'course_id', 'period_start', 'period_type', name='uix_user_metrics_period')
    )
    op.create_index(op.f('ix_user_metrics_user_id'), 'user_metrics', ['user_id'], unique=False)
    op.create_index(op.f('ix_user_metrics_course_id'), 'user_metrics', ['course_id'], unique=False)
    op.create_index(op.f('ix_user_metrics_period_start'), 'user_metrics', ['period_start'], unique=False)

    op.create_table('school_metrics',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('school_id', sa.Integer(), nullable=False),
        sa.Column('course_id', sa.Integer(), nullable=False),
        sa.Column('period_start', sa.DateTime(), nullable=False),
        sa.Column('period_end', sa.DateTime(), nullable=False),
        sa.Column('period_type', sa.String(length=10), nullable=False),
        sa.Column('total_enrolled', sa.Integer(), nullable=False),
        sa.Column('total_active', sa.Integer(), nullable=False),
        sa.Column('total_inactive', sa.Integer(), nullable=False),
        sa.Column('new_enrollments', sa.Integer(), nullable=False),
        sa.Column('avg_actions_per_student', sa.Float(), nullable=True),
        sa.Column('avg_active_days', sa.Float(), nullable=True),
        sa.Column('avg_time_spent_minutes', sa.Float(), nullable=True),
        sa.Column('total_resource_views', sa.Integer(), nullable=False),
        sa.Column('avg_resources_per_student', sa.Float(), nullable=True),
        sa.Column('total_submissions', sa.Integer(), nullable=False),
        sa.Column('total_quiz_attempts', sa.Integer(), nullable=False),
        sa.Column('avg_assignment_score', sa.Float(), nullable=True),
        sa.Column('avg_quiz_score', sa.Float(), nullable=True),
        sa.Column('avg_course_progress', sa.Float(), nullable=True),
        sa.Column('completion_rate', sa.Float(), nullable=True),
        sa.Column('submission_rate', sa.Float(), nullable=True),
        sa.Column('high_engagement_count', sa.Integer(), nullable=False),
        sa.Column('medium_engagement_count', sa.Integer(), nullable=False),
        sa.Column('low_engagement_count', sa.Integer(), nullable=False),
        sa.Column('at_risk_count', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('school_id', 'course_id', 'period_start', 'period_type', name='uix_school_metrics_period')
    )
    op.create_index(op.f('ix_school_metrics_school_id'), 'school_metrics', ['school_id'], unique=False)
    op.create_index(op.f('ix_school_metrics_course_id'), 'school_metrics', ['course_id'], unique=False)
    op.create_index(op.f('ix_school_metrics_period_start'), 'school_metrics', ['period_start'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    for table in (
        'school_metrics',
        'user_metrics',
        'processed_events',
        'sync_log',
        'staff_profiles',
        'student_profiles',
        'linked_identities',
        'schools',
        'admin_settings',
    ):
        op.drop_table(table)
