"""
Doubt-session lifecycle: initiate, append messages, close/resolve/cancel,
and the read models behind the doubt routes.

Preconditions are checked before anything is written; a failed operation
leaves no partial session or message behind. Status changes go through the
state machine and are guarded by the session's version counter.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional, Tuple, Union
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload
from sqlalchemy.orm.exc import StaleDataError

from eduhub.exceptions import AuthorizationError, ConflictError, InternalFailureError, NotFoundError, ValidationError
from eduhub.lifecycle.state_machine import (
    ACTIVE_STATUSES,
    can_reopen,
    is_terminal,
    transition_status,
)
from eduhub.models import (
    AiDoubt,
    ChatMessage,
    DoubtSession,
    DoubtStatus,
    DoubtType,
    Notification,
    NotificationType,
    Role,
    SenderRole,
    Topic,
    TrainerDoubt,
    User,
)
from eduhub.schemas import AiDoubtRequest, TrainerDoubtRequest
from eduhub.services import directory_service
from eduhub.services.ai_responder import SimulatedResponder
from eduhub.services.authorization import load_session_for
from eduhub.services.message_relay import MessageRelay

logger = logging.getLogger(__name__)

AI_PLACEHOLDER_RESPONSE = "I'm processing your doubt..."


class DoubtService:
    def __init__(self, db: Session, relay: MessageRelay, responder: SimulatedResponder):
        self.db = db
        self.relay = relay
        self.responder = responder

    # ------------------------------------------------------------------ helpers

    def _commit(self) -> None:
        try:
            self.db.commit()
        except StaleDataError:
            self.db.rollback()
            raise ConflictError("Doubt session was changed by someone else. Reload and try again.")
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Failed to persist doubt session change")
            raise InternalFailureError("Could not save the doubt session.") from e

    def _touch(self, doubt_session_id: UUID, at: datetime) -> None:
        """
        Bump last_message_at without the version check: concurrent appends to
        one session must not conflict with each other.
        """
        self.db.query(DoubtSession).filter(DoubtSession.id == doubt_session_id).update(
            {DoubtSession.last_message_at: at}, synchronize_session=False
        )

    @staticmethod
    def _require_profile(student: User) -> None:
        if not student.school:
            raise ValidationError(
                "Your student profile is missing assigned school information. Please contact support.",
                details={"field": "school"},
            )
        if student.grade is None:
            raise ValidationError(
                "Your student profile is missing a grade. Please contact support.",
                details={"field": "grade"},
            )

    @staticmethod
    def _sender_role_for(doubt: DoubtSession, sender: User) -> SenderRole:
        if sender.id == doubt.student_id:
            return SenderRole.STUDENT
        if doubt.trainer_id is not None and sender.id == doubt.trainer_id:
            return SenderRole.TRAINER
        # admins are the only non-participants past the session guard
        return SenderRole.SYSTEM

    # --------------------------------------------------------------- lifecycle

    def initiate(
        self,
        student: User,
        request: Union[TrainerDoubtRequest, AiDoubtRequest],
    ) -> Tuple[DoubtSession, ChatMessage]:
        if student.role != Role.STUDENT:
            raise AuthorizationError("Only students can raise doubts.")
        self._require_profile(student)
        school = directory_service.resolve_school(self.db, student.school)

        now = datetime.utcnow()
        common = dict(
            student_id=student.id,
            grade=student.grade,
            school_id=school.id,
            initial_doubt_text=request.initial_doubt_text,
            last_message_at=now,
        )

        trainer: Optional[User] = None
        if isinstance(request, TrainerDoubtRequest):
            trainer = directory_service.get_trainer(self.db, request.trainer_id)
            topic = directory_service.get_topic(self.db, request.topic_id)
            doubt: DoubtSession = TrainerDoubt(trainer_id=trainer.id, topic_id=topic.id, **common)
        else:
            doubt = AiDoubt(**common)

        self.db.add(doubt)
        self.db.flush()
        message = ChatMessage(
            doubt_session_id=doubt.id,
            sender_id=student.id,
            sender_role=SenderRole.STUDENT,
            message_text=request.initial_doubt_text,
            attachment_url=request.attachment_url,
            created_at=now,
        )
        self.db.add(message)
        self._commit()
        self.db.refresh(doubt)
        self.db.refresh(message)

        logger.info(
            "Doubt session initiated (%s)", doubt.doubt_type.value,
            extra={"doubt_session_id": str(doubt.id), "user_id": str(student.id), "status": doubt.status.value},
        )

        if trainer is not None:
            self.relay.new_doubt_assigned(doubt, student, school_name=student.school)
        else:
            self.responder.schedule_answer(doubt.id, doubt.initial_doubt_text, student.name)
        return doubt, message

    def append_message(
        self,
        doubt_session_id: UUID,
        sender: User,
        message_text: Optional[str] = None,
        attachment_url: Optional[str] = None,
    ) -> ChatMessage:
        doubt = load_session_for(self.db, doubt_session_id, sender)
        sender_role = self._sender_role_for(doubt, sender)

        if not (message_text or "").strip() and not (attachment_url or "").strip():
            raise ValidationError("Message text or attachment URL is required.")

        if is_terminal(doubt.status) or doubt.status == DoubtStatus.RESOLVED:
            if sender_role == SenderRole.STUDENT and can_reopen(doubt):
                transition_status(doubt, DoubtStatus.IN_PROGRESS, reason="student follow-up")
            else:
                raise ConflictError(
                    f"Cannot send messages to a {doubt.status.value} doubt session.",
                    details={"doubt_session_id": str(doubt.id), "status": doubt.status.value},
                )

        if sender_role == SenderRole.TRAINER and doubt.status == DoubtStatus.PENDING:
            transition_status(doubt, DoubtStatus.IN_PROGRESS, reason="trainer replied")

        message = ChatMessage(
            doubt_session_id=doubt.id,
            sender_id=sender.id,
            sender_role=sender_role,
            message_text=message_text,
            attachment_url=attachment_url,
        )
        self.db.add(message)

        notification: Optional[Notification] = None
        if sender_role == SenderRole.TRAINER:
            notification = Notification(
                user_id=doubt.student_id,
                type=NotificationType.DOUBT_REPLY,
                message=f"You have a new reply from {sender.name}",
                related_data={"doubt_session_id": str(doubt.id)},
            )
            self.db.add(notification)

        self.db.flush()
        self._touch(doubt.id, message.created_at)
        self._commit()
        self.db.refresh(message)

        logger.info(
            "Message appended by %s", sender_role.value,
            extra={"doubt_session_id": str(doubt_session_id), "user_id": str(sender.id)},
        )

        self.relay.new_message(message, sender)
        if notification is not None:
            self.db.refresh(notification)
            self.relay.doubt_reply(doubt, notification)

        if doubt.doubt_type == DoubtType.AI and sender_role == SenderRole.STUDENT:
            self.responder.schedule_answer(
                doubt.id,
                message.message_text or message.attachment_url,
                sender.name,
                follow_up=True,
            )
        return message

    def close(self, doubt_session_id: UUID, actor: User) -> DoubtSession:
        doubt = load_session_for(self.db, doubt_session_id, actor)
        if is_terminal(doubt.status):
            raise ConflictError(
                f"Doubt session is already {doubt.status.value}.",
                details={"doubt_session_id": str(doubt.id), "status": doubt.status.value},
            )
        transition_status(doubt, DoubtStatus.CLOSED, reason=f"closed by {actor.role.value}")
        self._commit()
        self.responder.cancel_pending(doubt.id)
        self.relay.doubt_closed(doubt, actor)
        return doubt

    def resolve(self, doubt_session_id: UUID, actor: User) -> DoubtSession:
        """Explicit resolution by the assigned trainer or an admin."""
        doubt = load_session_for(self.db, doubt_session_id, actor)
        if actor.role != Role.ADMIN and actor.id != doubt.trainer_id:
            raise AuthorizationError("Only the assigned trainer or an admin can resolve this doubt.")
        transition_status(doubt, DoubtStatus.RESOLVED, reason=f"resolved by {actor.role.value}")
        self._commit()
        return doubt

    def cancel(self, doubt_session_id: UUID, actor: User) -> DoubtSession:
        """The student abandons a doubt that has not been answered."""
        doubt = load_session_for(self.db, doubt_session_id, actor)
        if actor.role != Role.ADMIN and actor.id != doubt.student_id:
            raise AuthorizationError("Only the student who raised the doubt or an admin can cancel it.")
        if is_terminal(doubt.status):
            raise ConflictError(
                f"Doubt session is already {doubt.status.value}.",
                details={"doubt_session_id": str(doubt.id), "status": doubt.status.value},
            )
        transition_status(doubt, DoubtStatus.CANCELLED, reason=f"cancelled by {actor.role.value}")
        self._commit()
        self.responder.cancel_pending(doubt.id)
        self.relay.doubt_closed(doubt, actor)
        return doubt

    def submit_ai_feedback(
        self,
        doubt_session_id: UUID,
        student: User,
        helpful: bool,
        feedback_text: Optional[str] = None,
    ) -> DoubtSession:
        doubt = (
            self.db.query(DoubtSession)
            .filter(
                DoubtSession.id == doubt_session_id,
                DoubtSession.student_id == student.id,
                DoubtSession.doubt_type == DoubtType.AI,
            )
            .first()
        )
        if not doubt:
            raise NotFoundError("AI doubt session", str(doubt_session_id))
        doubt.ai_helpful = helpful
        doubt.ai_feedback_text = (feedback_text or "").strip() or None
        self._commit()
        return doubt

    # ------------------------------------------------------------------- reads

    def get_messages(self, doubt_session_id: UUID, actor: User) -> List[ChatMessage]:
        load_session_for(self.db, doubt_session_id, actor)
        return (
            self.db.query(ChatMessage)
            .options(joinedload(ChatMessage.sender))
            .filter(ChatMessage.doubt_session_id == doubt_session_id)
            .order_by(ChatMessage.created_at.asc(), ChatMessage.id.asc())
            .all()
        )

    def _session_query(self):
        return self.db.query(DoubtSession).options(
            joinedload(DoubtSession.student),
            joinedload(DoubtSession.trainer),
            joinedload(DoubtSession.school),
            joinedload(DoubtSession.topic),
        )

    def list_for_student(self, student: User, active_only: bool = False) -> List[DoubtSession]:
        query = self._session_query().filter(DoubtSession.student_id == student.id)
        if active_only:
            query = query.filter(DoubtSession.status.in_(ACTIVE_STATUSES))
        return query.order_by(DoubtSession.last_message_at.desc()).all()

    def list_for_trainer(self, user: User) -> List[DoubtSession]:
        """Open trainer doubts; admins see every trainer's queue."""
        query = self._session_query().filter(
            DoubtSession.doubt_type == DoubtType.TRAINER,
            DoubtSession.status.in_(ACTIVE_STATUSES),
        )
        if user.role != Role.ADMIN:
            query = query.filter(DoubtSession.trainer_id == user.id)
        return query.order_by(DoubtSession.updated_at.desc()).all()

    def list_all(self) -> List[DoubtSession]:
        return self._session_query().order_by(DoubtSession.last_message_at.desc()).all()

    def available_trainers(self, student: User) -> List[User]:
        self._require_profile(student)
        return directory_service.trainers_for(self.db, student.school, student.grade)

    def topics_for_grade(self, grade: int) -> List[Topic]:
        return directory_service.topics_for_grade(self.db, grade)
