from pydantic import BaseModel, ConfigDict, Field, StrictBool, field_validator, model_validator
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from datetime import datetime
from uuid import UUID
from eduhub.models import ChatMessage, DoubtSession, DoubtStatus, DoubtType, NotificationType, SenderRole


def _strip_or_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


# ============= Doubt Initiation =============
class _DoubtRequestBase(BaseModel):
    initial_doubt_text: str = Field(..., max_length=5000, description="The student's question")
    attachment_url: Optional[str] = Field(None, max_length=2048)

    @field_validator("initial_doubt_text")
    @classmethod
    def validate_text(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Initial doubt text cannot be empty")
        return v.strip()

    @field_validator("attachment_url")
    @classmethod
    def validate_attachment(cls, v: Optional[str]) -> Optional[str]:
        return _strip_or_none(v)


class TrainerDoubtRequest(_DoubtRequestBase):
    doubt_type: Literal["trainer"]
    trainer_id: UUID
    topic_id: UUID


class AiDoubtRequest(_DoubtRequestBase):
    doubt_type: Literal["ai"]


InitiateDoubtRequest = Annotated[
    Union[TrainerDoubtRequest, AiDoubtRequest],
    Field(discriminator="doubt_type"),
]


# ============= Messages =============
class MessageCreate(BaseModel):
    message_text: Optional[str] = Field(None, max_length=5000)
    attachment_url: Optional[str] = Field(None, max_length=2048)

    @model_validator(mode="after")
    def require_text_or_attachment(self):
        self.message_text = _strip_or_none(self.message_text)
        self.attachment_url = _strip_or_none(self.attachment_url)
        if not self.message_text and not self.attachment_url:
            raise ValueError("Message text or attachment URL is required.")
        return self


class ChatMessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    doubt_session_id: UUID
    sender_id: Optional[UUID] = None
    sender_role: SenderRole
    sender_name: Optional[str] = None
    sender_avatar: Optional[str] = None
    message_text: Optional[str] = None
    attachment_url: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_message(cls, message: ChatMessage) -> "ChatMessageResponse":
        sender = message.sender
        return cls(
            id=message.id,
            doubt_session_id=message.doubt_session_id,
            sender_id=message.sender_id,
            sender_role=message.sender_role,
            sender_name=sender.name if sender else None,
            sender_avatar=sender.profile_picture if sender else None,
            message_text=message.message_text,
            attachment_url=message.attachment_url,
            created_at=message.created_at,
        )


# ============= Doubt Sessions =============
class DoubtSessionResponse(BaseModel):
    id: UUID
    doubt_type: DoubtType
    status: DoubtStatus
    student_id: UUID
    student_name: Optional[str] = None
    trainer_id: Optional[UUID] = None
    trainer_name: Optional[str] = None
    grade: int
    school_id: UUID
    school_name: Optional[str] = None
    topic_id: Optional[UUID] = None
    topic_name: Optional[str] = None
    initial_doubt_text: str
    last_message_at: datetime
    created_at: datetime
    ai_helpful: Optional[bool] = None
    ai_feedback_text: Optional[str] = None

    @classmethod
    def from_session(cls, doubt: DoubtSession) -> "DoubtSessionResponse":
        topic = doubt.topic
        return cls(
            id=doubt.id,
            doubt_type=doubt.doubt_type,
            status=doubt.status,
            student_id=doubt.student_id,
            student_name=doubt.student.name if doubt.student else None,
            trainer_id=doubt.trainer_id,
            trainer_name=doubt.trainer.name if doubt.trainer else None,
            grade=doubt.grade,
            school_id=doubt.school_id,
            school_name=doubt.school.school_name if doubt.school else None,
            topic_id=doubt.topic_id,
            topic_name=(topic.topic_name or topic.name) if topic else None,
            initial_doubt_text=doubt.initial_doubt_text,
            last_message_at=doubt.last_message_at,
            created_at=doubt.created_at,
            ai_helpful=doubt.ai_helpful,
            ai_feedback_text=doubt.ai_feedback_text,
        )


class InitiateDoubtResponse(BaseModel):
    message: str
    doubt_session: DoubtSessionResponse
    initial_message: ChatMessageResponse
    ai_initial_response: Optional[str] = None


class DoubtSessionActionResponse(BaseModel):
    message: str
    doubt_session: DoubtSessionResponse


class AiFeedbackRequest(BaseModel):
    helpful: StrictBool
    feedback_text: Optional[str] = Field(None, max_length=2000)


# ============= Directory =============
class TrainerSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    profile_picture: Optional[str] = None
    subject: Optional[str] = None


class TopicResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    grade: int
    name: str
    topic_name: Optional[str] = None


# ============= Notifications =============
class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    type: NotificationType
    message: str
    related_data: Dict[str, Any] = Field(default_factory=dict)
    read: bool
    created_at: datetime


class NotificationListResponse(BaseModel):
    notifications: List[NotificationResponse]
    unread_count: int
