import enum
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Enum, Text, Integer, JSON, Uuid, Index
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship, validates
from datetime import datetime
import uuid
from eduhub.db import Base

# JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB, "postgresql")


class Role(str, enum.Enum):
    ADMIN = "admin"
    TRAINER = "trainer"
    STUDENT = "student"
    PRINCIPAL = "principal"


class DoubtType(str, enum.Enum):
    TRAINER = "trainer"
    AI = "ai"


class DoubtStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"
    CANCELLED = "cancelled"


class SenderRole(str, enum.Enum):
    STUDENT = "student"
    TRAINER = "trainer"
    AI = "ai"
    SYSTEM = "system"


class NotificationType(str, enum.Enum):
    DOUBT_REPLY = "doubt_reply"


class School(Base):
    __tablename__ = "schools"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    school_name = Column(String(255), unique=True, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(Enum(Role), nullable=False)
    profile_picture = Column(String(1024), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Student profile: school is stored by name, resolved to School.id on demand
    school = Column(String(255), nullable=True)
    grade = Column(Integer, nullable=True)

    # Trainer profile
    subject = Column(String(255), nullable=True)
    assigned_schools = Column(JSONType, default=list)  # ["Green View High School", ...]
    assigned_grades = Column(JSONType, default=list)  # [6, 7, 8]

    notifications = relationship("Notification", back_populates="user", cascade="all, delete-orphan")


class Topic(Base):
    """One entry of a grade's curriculum; doubts raised to a trainer reference it."""
    __tablename__ = "topics"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    grade = Column(Integer, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    topic_name = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class DoubtSession(Base):
    """
    A help-request thread. Stored in one table and mapped as a tagged variant:
    TrainerDoubt (trainer + topic required) or AiDoubt (feedback fields).
    """
    __tablename__ = "doubt_sessions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    doubt_type = Column(Enum(DoubtType), nullable=False)
    student_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    grade = Column(Integer, nullable=False)
    school_id = Column(Uuid, ForeignKey("schools.id"), nullable=False)
    initial_doubt_text = Column(Text, nullable=False)
    status = Column(Enum(DoubtStatus), nullable=False, default=DoubtStatus.PENDING)
    last_message_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # TrainerDoubt columns
    trainer_id = Column(Uuid, ForeignKey("users.id"), nullable=True)
    topic_id = Column(Uuid, ForeignKey("topics.id"), nullable=True)

    # AiDoubt columns
    ai_helpful = Column(Boolean, nullable=True)
    ai_feedback_text = Column(Text, nullable=True)

    student = relationship("User", foreign_keys=[student_id])
    trainer = relationship("User", foreign_keys=[trainer_id])
    school = relationship("School")
    topic = relationship("Topic")
    messages = relationship(
        "ChatMessage",
        back_populates="doubt_session",
        order_by="ChatMessage.created_at",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {
        "polymorphic_on": doubt_type,
        "version_id_col": version,
    }

    __table_args__ = (
        Index("ix_doubt_sessions_student_status", "student_id", "status"),
        Index("ix_doubt_sessions_trainer_status", "trainer_id", "status"),
        Index("ix_doubt_sessions_type_status", "doubt_type", "status"),
    )

    @validates("student_id")
    def _student_is_immutable(self, key, value):
        if self.student_id is not None and value != self.student_id:
            raise ValueError("student of a doubt session cannot be changed")
        return value

    def is_participant(self, user_id) -> bool:
        return user_id == self.student_id or (self.trainer_id is not None and user_id == self.trainer_id)


class TrainerDoubt(DoubtSession):
    __mapper_args__ = {"polymorphic_identity": DoubtType.TRAINER}

    def __init__(self, **kwargs):
        if kwargs.get("trainer_id") is None or kwargs.get("topic_id") is None:
            raise ValueError("trainer doubts require trainer_id and topic_id")
        kwargs.setdefault("status", DoubtStatus.PENDING)
        super().__init__(**kwargs)


class AiDoubt(DoubtSession):
    __mapper_args__ = {"polymorphic_identity": DoubtType.AI}

    def __init__(self, **kwargs):
        kwargs.setdefault("status", DoubtStatus.IN_PROGRESS)
        super().__init__(**kwargs)


class ChatMessage(Base):
    __tablename__ = "chat_messages"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    doubt_session_id = Column(Uuid, ForeignKey("doubt_sessions.id"), nullable=False)
    sender_id = Column(Uuid, ForeignKey("users.id"), nullable=True)  # null for ai/system
    sender_role = Column(Enum(SenderRole), nullable=False)
    message_text = Column(Text, nullable=True)
    attachment_url = Column(String(2048), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    doubt_session = relationship("DoubtSession", back_populates="messages")
    sender = relationship("User")

    __table_args__ = (
        Index("ix_chat_messages_session_created", "doubt_session_id", "created_at"),
    )

    def __init__(self, **kwargs):
        text = (kwargs.get("message_text") or "").strip()
        url = (kwargs.get("attachment_url") or "").strip()
        if not text and not url:
            raise ValueError("a chat message needs message_text or attachment_url")
        kwargs["message_text"] = text or None
        kwargs["attachment_url"] = url or None
        super().__init__(**kwargs)


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(Enum(NotificationType), nullable=False)
    message = Column(Text, nullable=False)
    related_data = Column(JSONType, default=dict)
    read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="notifications")
