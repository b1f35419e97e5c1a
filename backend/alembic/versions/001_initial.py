"""Initial migration

Revision ID: 001_initial
Revises: 
Create Date: 2026-10-17

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB, 'postgresql')

ROLE = sa.Enum('ADMIN', 'TRAINER', 'STUDENT', 'PRINCIPAL', name='role')
DOUBT_TYPE = sa.Enum('TRAINER', 'AI', name='doubttype')
DOUBT_STATUS = sa.Enum('PENDING', 'IN_PROGRESS', 'RESOLVED', 'CLOSED', 'CANCELLED', name='doubtstatus')
SENDER_ROLE = sa.Enum('STUDENT', 'TRAINER', 'AI', 'SYSTEM', name='senderrole')
NOTIFICATION_TYPE = sa.Enum('DOUBT_REPLY', name='notificationtype')


def upgrade() -> None:
    # Create schools table
    op.create_table(
        'schools',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('school_name', sa.String(255), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_schools_school_name', 'schools', ['school_name'], unique=True)

    # Create users table
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('password_hash', sa.String(255), nullable=False),
        sa.Column('role', ROLE, nullable=False),
        sa.Column('profile_picture', sa.String(1024), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('school', sa.String(255), nullable=True),
        sa.Column('grade', sa.Integer(), nullable=True),
        sa.Column('subject', sa.String(255), nullable=True),
        sa.Column('assigned_schools', JSON_TYPE, nullable=True),
        sa.Column('assigned_grades', JSON_TYPE, nullable=True),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    # Create topics table
    op.create_table(
        'topics',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('grade', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('topic_name', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_topics_grade', 'topics', ['grade'])

    # Create doubt_sessions table (trainer and ai variants share it)
    op.create_table(
        'doubt_sessions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('doubt_type', DOUBT_TYPE, nullable=False),
        sa.Column('student_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('grade', sa.Integer(), nullable=False),
        sa.Column('school_id', sa.Uuid(), sa.ForeignKey('schools.id'), nullable=False),
        sa.Column('initial_doubt_text', sa.Text(), nullable=False),
        sa.Column('status', DOUBT_STATUS, nullable=False),
        sa.Column('last_message_at', sa.DateTime(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.Column('trainer_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('topic_id', sa.Uuid(), sa.ForeignKey('topics.id'), nullable=True),
        sa.Column('ai_helpful', sa.Boolean(), nullable=True),
        sa.Column('ai_feedback_text', sa.Text(), nullable=True),
    )
    op.create_index('ix_doubt_sessions_student_status', 'doubt_sessions', ['student_id', 'status'])
    op.create_index('ix_doubt_sessions_trainer_status', 'doubt_sessions', ['trainer_id', 'status'])
    op.create_index('ix_doubt_sessions_type_status', 'doubt_sessions', ['doubt_type', 'status'])

    # Create chat_messages table
    op.create_table(
        'chat_messages',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('doubt_session_id', sa.Uuid(), sa.ForeignKey('doubt_sessions.id'), nullable=False),
        sa.Column('sender_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('sender_role', SENDER_ROLE, nullable=False),
        sa.Column('message_text', sa.Text(), nullable=True),
        sa.Column('attachment_url', sa.String(2048), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_chat_messages_session_created', 'chat_messages', ['doubt_session_id', 'created_at'])

    # Create notifications table
    op.create_table(
        'notifications',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('type', NOTIFICATION_TYPE, nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('related_data', JSON_TYPE, nullable=True),
        sa.Column('read', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])


def downgrade() -> None:
    op.drop_index('ix_notifications_user_id', table_name='notifications')
    op.drop_table('notifications')
    op.drop_index('ix_chat_messages_session_created', table_name='chat_messages')
    op.drop_table('chat_messages')
    op.drop_index('ix_doubt_sessions_type_status', table_name='doubt_sessions')
    op.drop_index('ix_doubt_sessions_trainer_status', table_name='doubt_sessions')
    op.drop_index('ix_doubt_sessions_student_status', table_name='doubt_sessions')
    op.drop_table('doubt_sessions')
    op.drop_index('ix_topics_grade', table_name='topics')
    op.drop_table('topics')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
    op.drop_index('ix_schools_school_name', table_name='schools')
    op.drop_table('schools')

    bind = op.get_bind()
    for enum_type in (NOTIFICATION_TYPE, SENDER_ROLE, DOUBT_STATUS, DOUBT_TYPE, ROLE):
        enum_type.drop(bind, checkfirst=True)
