"""
Simulated AI responder for ai-type doubt sessions.

Answers are produced on a delayed background task. A real inference backend
plugs in as an AnswerGenerator; the default one fabricates a canned reply.
"""
from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Callable, Dict, List, Optional, Protocol
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from eduhub.config import settings
from eduhub.db import SessionLocal
from eduhub.exceptions import ConflictError
from eduhub.lifecycle.state_machine import can_transition, is_terminal, transition_status
from eduhub.models import ChatMessage, DoubtSession, DoubtStatus, SenderRole
from eduhub.services.message_relay import MessageRelay
from eduhub.services.scheduler import ScheduledTask, TaskScheduler

logger = logging.getLogger(__name__)

AI_ERROR_MESSAGE = "AI encountered an error. Please try again later or contact a trainer."
AI_FOLLOWUP_ERROR_MESSAGE = "AI encountered an error processing your follow-up. Please try again."


class AnswerUnavailable(Exception):
    """The answer backend could not produce a reply."""


class AnswerGenerator(Protocol):
    def answer(self, question: str, student_name: str, follow_up: bool) -> str:
        ...


class SimulatedAnswerGenerator:
    def __init__(self, enabled: bool = True):
        self.enabled = enabled

    def answer(self, question: str, student_name: str, follow_up: bool) -> str:
        if not self.enabled:
            raise AnswerUnavailable("AI answers are disabled")
        if follow_up:
            return f'(AI follow-up to "{question}") Here is more clarification: ... [Simulated AI Answer].'
        return (
            f"Hello {student_name}, I'm the AI assistant! Regarding your doubt: \"{question}\", "
            "here's what I found... [Simulated AI Answer based on your query]. "
            "Please provide feedback if this was helpful."
        )


class SimulatedResponder:
    """
    Schedules delayed answers and keeps the live handles per doubt session so
    closing or cancelling a session can revoke answers that have not fired.
    """

    def __init__(
        self,
        relay: MessageRelay,
        scheduler: TaskScheduler,
        session_factory: Callable[[], Session] = SessionLocal,
        generator: Optional[AnswerGenerator] = None,
        initial_delay: Optional[float] = None,
        followup_delay: Optional[float] = None,
    ):
        self.relay = relay
        self.scheduler = scheduler
        self.session_factory = session_factory
        self.generator = generator or SimulatedAnswerGenerator(enabled=settings.ai_enabled)
        self.initial_delay = settings.AI_RESPONSE_DELAY_SECONDS if initial_delay is None else initial_delay
        self.followup_delay = settings.AI_FOLLOWUP_DELAY_SECONDS if followup_delay is None else followup_delay
        self._pending: Dict[UUID, List[ScheduledTask]] = {}
        self._lock = threading.Lock()

    def schedule_answer(
        self,
        doubt_session_id: UUID,
        question: str,
        student_name: str,
        follow_up: bool = False,
    ) -> ScheduledTask:
        delay = self.followup_delay if follow_up else self.initial_delay
        state: Dict[str, object] = {}

        def fire():
            state["done"] = True
            try:
                self.respond(doubt_session_id, question, student_name, follow_up)
            finally:
                self._forget(doubt_session_id, state.get("task"))

        task = self.scheduler.schedule(delay, fire, name=f"ai-answer-{doubt_session_id}")
        state["task"] = task
        with self._lock:
            if not state.get("done"):
                self._pending.setdefault(doubt_session_id, []).append(task)

        logger.info(
            "Scheduled %s answer in %.1fs", "follow-up" if follow_up else "initial", delay,
            extra={"doubt_session_id": str(doubt_session_id)},
        )
        return task

    def cancel_pending(self, doubt_session_id: UUID) -> int:
        """Revoke answers for a session that have not fired. Returns how many were revoked."""
        with self._lock:
            tasks = self._pending.pop(doubt_session_id, [])
        revoked = sum(1 for task in tasks if task.cancel())
        if revoked:
            logger.info(
                "Revoked %d pending AI answer(s)", revoked,
                extra={"doubt_session_id": str(doubt_session_id)},
            )
        return revoked

    def pending_count(self, doubt_session_id: UUID) -> int:
        with self._lock:
            return len(self._pending.get(doubt_session_id, []))

    def _forget(self, doubt_session_id: UUID, task) -> None:
        with self._lock:
            tasks = self._pending.get(doubt_session_id)
            if not tasks:
                return
            if task in tasks:
                tasks.remove(task)
            if not tasks:
                del self._pending[doubt_session_id]

    def respond(self, doubt_session_id: UUID, question: str, student_name: str, follow_up: bool = False) -> None:
        """Body of the delayed task. Never raises."""
        db = self.session_factory()
        try:
            doubt = db.get(DoubtSession, doubt_session_id)
            if doubt is None:
                logger.warning("Doubt session vanished before AI answer", extra={"doubt_session_id": str(doubt_session_id)})
                return
            if is_terminal(doubt.status):
                logger.info(
                    "Skipping AI answer for %s session", doubt.status.value,
                    extra={"doubt_session_id": str(doubt_session_id)},
                )
                return

            try:
                answer = self.generator.answer(question, student_name, follow_up)
            except Exception:
                logger.exception("AI answer generation failed", extra={"doubt_session_id": str(doubt_session_id)})
                self._record_failure(db, doubt, follow_up)
                return

            message = ChatMessage(
                doubt_session_id=doubt.id,
                sender_id=None,
                sender_role=SenderRole.AI,
                message_text=answer,
            )
            db.add(message)
            transition_status(doubt, DoubtStatus.RESOLVED, reason="ai answered")
            doubt.last_message_at = datetime.utcnow()
            db.commit()
            db.refresh(message)
            self.relay.new_message(message)
        except (StaleDataError, ConflictError):
            db.rollback()
            logger.warning(
                "Doubt session changed while answering; dropping AI answer",
                extra={"doubt_session_id": str(doubt_session_id)},
            )
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to store AI answer", extra={"doubt_session_id": str(doubt_session_id)})
        finally:
            db.close()

    def _record_failure(self, db: Session, doubt: DoubtSession, follow_up: bool) -> None:
        message = ChatMessage(
            doubt_session_id=doubt.id,
            sender_id=None,
            sender_role=SenderRole.SYSTEM,
            message_text=AI_FOLLOWUP_ERROR_MESSAGE if follow_up else AI_ERROR_MESSAGE,
        )
        db.add(message)
        if can_transition(doubt.status, DoubtStatus.CANCELLED, doubt.doubt_type):
            transition_status(doubt, DoubtStatus.CANCELLED, reason="ai failure")
        doubt.last_message_at = datetime.utcnow()
        db.commit()
        db.refresh(message)
        self.relay.new_message(message)
