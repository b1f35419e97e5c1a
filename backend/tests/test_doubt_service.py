"""
Integration tests for the doubt-session lifecycle against an in-memory database.
"""
import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from eduhub.exceptions import (
    AuthorizationError,
    ConflictError,
    InternalFailureError,
    InvalidReferenceError,
    NotFoundError,
    ValidationError,
)
from eduhub.models import (
    ChatMessage,
    DoubtSession,
    DoubtStatus,
    DoubtType,
    Notification,
    NotificationType,
    SenderRole,
)
from eduhub.schemas import AiDoubtRequest, TrainerDoubtRequest
from eduhub.services.doubt_service import DoubtService
from eduhub.websocket.events import personal_room, session_room

from conftest import TestingSessionLocal


def _trainer_request(trainer, topic, text="How do I solve 2x + 3 = 7?", attachment_url=None):
    return TrainerDoubtRequest(
        doubt_type="trainer",
        trainer_id=trainer.id,
        topic_id=topic.id,
        initial_doubt_text=text,
        attachment_url=attachment_url,
    )


def _ai_request(text="What is photosynthesis?"):
    return AiDoubtRequest(doubt_type="ai", initial_doubt_text=text)


@pytest.mark.integration
class TestInitiate:
    def test_trainer_doubt_starts_pending_and_notifies_trainer(self, service, transport, student, trainer, topic, school):
        doubt, message = service.initiate(student, _trainer_request(trainer, topic))

        assert doubt.doubt_type == DoubtType.TRAINER
        assert doubt.status == DoubtStatus.PENDING
        assert doubt.trainer_id == trainer.id
        assert doubt.topic_id == topic.id
        assert doubt.school_id == school.id
        assert doubt.grade == 9
        assert message.sender_role == SenderRole.STUDENT
        assert message.sender_id == student.id
        assert message.message_text == "How do I solve 2x + 3 = 7?"

        events = transport.for_room(personal_room(trainer.id))
        assert [e["type"] for e in events] == ["newDoubtSession"]
        assert events[0]["data"]["doubt_session_id"] == str(doubt.id)
        assert events[0]["data"]["student_name"] == "Student Test"
        assert events[0]["data"]["school_name"] == "Greenwood High"

    def test_trainer_event_carries_truncated_excerpt(self, service, transport, student, trainer, topic, school):
        service.initiate(student, _trainer_request(trainer, topic, text="x" * 150))
        data = transport.for_room(personal_room(trainer.id))[0]["data"]
        assert data["excerpt"] == "x" * 100 + "..."

    def test_ai_doubt_starts_in_progress_and_schedules_answer(self, service, scheduler, transport, student, school):
        doubt, message = service.initiate(student, _ai_request())

        assert doubt.doubt_type == DoubtType.AI
        assert doubt.status == DoubtStatus.IN_PROGRESS
        assert doubt.trainer_id is None
        assert len(scheduler.pending()) == 1
        assert transport.events == []

    def test_initiate_keeps_attachment_on_first_message(self, service, student, trainer, topic, school):
        _, message = service.initiate(
            student, _trainer_request(trainer, topic, attachment_url="https://files.test/q1.png")
        )
        assert message.attachment_url == "https://files.test/q1.png"

    def test_unknown_trainer_is_invalid_reference(self, service, db_session, student, topic, school):
        request = TrainerDoubtRequest(
            doubt_type="trainer", trainer_id=student.id, topic_id=topic.id, initial_doubt_text="Help"
        )
        with pytest.raises(InvalidReferenceError) as exc:
            service.initiate(student, request)
        assert exc.value.details == {"field": "trainer_id"}
        assert db_session.query(DoubtSession).count() == 0
        assert db_session.query(ChatMessage).count() == 0

    def test_unknown_topic_is_invalid_reference(self, service, db_session, student, trainer, school):
        request = TrainerDoubtRequest(
            doubt_type="trainer", trainer_id=trainer.id, topic_id=trainer.id, initial_doubt_text="Help"
        )
        with pytest.raises(InvalidReferenceError):
            service.initiate(student, request)
        assert db_session.query(DoubtSession).count() == 0

    def test_student_without_school_is_rejected(self, service, db_session, student, school):
        student.school = None
        db_session.commit()
        with pytest.raises(ValidationError):
            service.initiate(student, _ai_request())
        assert db_session.query(DoubtSession).count() == 0

    def test_school_missing_from_directory(self, service, db_session, student, trainer, topic, school):
        student.school = "Lakeside"
        db_session.commit()
        with pytest.raises(NotFoundError):
            service.initiate(student, _trainer_request(trainer, topic))
        assert db_session.query(DoubtSession).count() == 0

    def test_only_students_can_initiate(self, service, trainer, school):
        with pytest.raises(AuthorizationError):
            service.initiate(trainer, _ai_request())


@pytest.mark.integration
class TestAppendMessage:
    def test_trainer_reply_moves_pending_to_in_progress_and_notifies(
        self, service, db_session, transport, student, trainer, topic, school
    ):
        doubt, _ = service.initiate(student, _trainer_request(trainer, topic))
        transport.clear()

        message = service.append_message(doubt.id, trainer, "Subtract 3 from both sides.")

        assert message.sender_role == SenderRole.TRAINER
        assert doubt.status == DoubtStatus.IN_PROGRESS

        notification = db_session.query(Notification).filter(Notification.user_id == student.id).one()
        assert notification.type == NotificationType.DOUBT_REPLY
        assert notification.message == "You have a new reply from Trainer Test"
        assert notification.related_data == {"doubt_session_id": str(doubt.id)}
        assert notification.read is False

        assert transport.types(session_room(doubt.id)) == ["newMessage"]
        personal = transport.for_room(personal_room(student.id))
        assert [e["type"] for e in personal] == ["newNotification"]
        assert personal[0]["data"]["doubt_session_id"] == str(doubt.id)
        assert personal[0]["data"]["read"] is False

    def test_student_message_does_not_change_pending(self, service, db_session, student, trainer, topic, school):
        doubt, _ = service.initiate(student, _trainer_request(trainer, topic))
        service.append_message(doubt.id, student, "Any update?")
        assert doubt.status == DoubtStatus.PENDING
        assert db_session.query(Notification).count() == 0

    def test_message_updates_last_message_at(self, service, db_session, student, trainer, topic, school):
        doubt, first = service.initiate(student, _trainer_request(trainer, topic))
        message = service.append_message(doubt.id, trainer, "Let's work through it.")
        db_session.expire_all()
        assert doubt.last_message_at == message.created_at
        assert doubt.last_message_at >= first.created_at

    def test_history_is_ordered_oldest_first(self, service, student, trainer, topic, school):
        doubt, _ = service.initiate(student, _trainer_request(trainer, topic))
        service.append_message(doubt.id, trainer, "first reply")
        service.append_message(doubt.id, student, "follow up")

        messages = service.get_messages(doubt.id, student)
        assert [m.message_text for m in messages] == [
            "How do I solve 2x + 3 = 7?", "first reply", "follow up"
        ]
        assert [m.created_at for m in messages] == sorted(m.created_at for m in messages)

    def test_attachment_only_message(self, service, student, trainer, topic, school):
        doubt, _ = service.initiate(student, _trainer_request(trainer, topic))
        message = service.append_message(doubt.id, student, None, "https://files.test/work.jpg")
        assert message.message_text is None
        assert message.attachment_url == "https://files.test/work.jpg"

    def test_empty_message_is_rejected(self, service, db_session, student, trainer, topic, school):
        doubt, _ = service.initiate(student, _trainer_request(trainer, topic))
        with pytest.raises(ValidationError):
            service.append_message(doubt.id, student, "   ", None)
        assert db_session.query(ChatMessage).count() == 1

    def test_outsiders_cannot_post_or_read(self, service, db_session, student, other_student, trainer, other_trainer, topic, school):
        doubt, _ = service.initiate(student, _trainer_request(trainer, topic))

        with pytest.raises(AuthorizationError):
            service.append_message(doubt.id, other_student, "let me in")
        with pytest.raises(AuthorizationError):
            service.append_message(doubt.id, other_trainer, "I can help")
        with pytest.raises(AuthorizationError):
            service.get_messages(doubt.id, other_student)
        assert db_session.query(ChatMessage).count() == 1

    def test_admin_posts_as_system(self, service, student, trainer, admin_user, topic, school):
        doubt, _ = service.initiate(student, _trainer_request(trainer, topic))
        message = service.append_message(doubt.id, admin_user, "Moderator note")
        assert message.sender_role == SenderRole.SYSTEM
        assert message.sender_id == admin_user.id
        assert len(service.get_messages(doubt.id, admin_user)) == 2

    def test_unknown_session_is_not_found(self, service, student, school):
        doubt_id = student.id
        with pytest.raises(NotFoundError):
            service.append_message(doubt_id, student, "hello")

    def test_closed_session_rejects_messages(self, service, student, trainer, topic, school):
        doubt, _ = service.initiate(student, _trainer_request(trainer, topic))
        service.close(doubt.id, student)
        with pytest.raises(ConflictError):
            service.append_message(doubt.id, student, "one more thing")
        with pytest.raises(ConflictError):
            service.append_message(doubt.id, trainer, "answer")

    def test_resolved_trainer_session_rejects_messages(self, service, student, trainer, topic, school):
        doubt, _ = service.initiate(student, _trainer_request(trainer, topic))
        service.append_message(doubt.id, trainer, "x = 2")
        service.resolve(doubt.id, trainer)
        with pytest.raises(ConflictError):
            service.append_message(doubt.id, student, "still confused")


@pytest.mark.integration
class TestAiSessions:
    def test_answer_resolves_session(self, service, db_session, scheduler, transport, student, school):
        doubt, _ = service.initiate(student, _ai_request())
        assert scheduler.run_pending() == 1
        db_session.expire_all()

        assert doubt.status == DoubtStatus.RESOLVED
        messages = service.get_messages(doubt.id, student)
        assert [m.sender_role for m in messages] == [SenderRole.STUDENT, SenderRole.AI]
        assert "What is photosynthesis?" in messages[1].message_text
        assert messages[1].sender_id is None
        assert transport.types(session_room(doubt.id)) == ["newMessage"]

    def test_follow_up_reopens_and_is_answered(self, service, db_session, scheduler, student, school):
        doubt, _ = service.initiate(student, _ai_request())
        scheduler.run_pending()
        db_session.expire_all()

        service.append_message(doubt.id, student, "Can you explain chlorophyll?")
        assert doubt.status == DoubtStatus.IN_PROGRESS
        assert len(scheduler.pending()) == 1

        scheduler.run_pending()
        db_session.expire_all()
        assert doubt.status == DoubtStatus.RESOLVED
        roles = [m.sender_role for m in service.get_messages(doubt.id, student)]
        assert roles == [SenderRole.STUDENT, SenderRole.AI, SenderRole.STUDENT, SenderRole.AI]

    def test_close_revokes_pending_answer(self, service, db_session, scheduler, responder, transport, student, school):
        doubt, _ = service.initiate(student, _ai_request())
        assert responder.pending_count(doubt.id) == 1

        service.close(doubt.id, student)

        assert responder.pending_count(doubt.id) == 0
        assert scheduler.run_pending() == 0
        db_session.expire_all()
        assert doubt.status == DoubtStatus.CLOSED
        assert len(service.get_messages(doubt.id, student)) == 1
        assert transport.types(session_room(doubt.id)) == ["doubtSessionClosed"]

    def test_feedback_on_ai_session(self, service, student, school):
        doubt, _ = service.initiate(student, _ai_request())
        updated = service.submit_ai_feedback(doubt.id, student, True, "  Very clear  ")
        assert updated.ai_helpful is True
        assert updated.ai_feedback_text == "Very clear"

    def test_feedback_requires_own_ai_session(self, service, student, other_student, trainer, topic, school):
        ai_doubt, _ = service.initiate(student, _ai_request())
        trainer_doubt, _ = service.initiate(student, _trainer_request(trainer, topic))
        with pytest.raises(NotFoundError):
            service.submit_ai_feedback(trainer_doubt.id, student, False)
        with pytest.raises(NotFoundError):
            service.submit_ai_feedback(ai_doubt.id, other_student, True)


@pytest.mark.integration
class TestCloseResolveCancel:
    def test_close_broadcasts_to_session_room(self, service, transport, student, trainer, topic, school):
        doubt, _ = service.initiate(student, _trainer_request(trainer, topic))
        service.close(doubt.id, trainer)

        assert doubt.status == DoubtStatus.CLOSED
        event = transport.for_room(session_room(doubt.id))[-1]
        assert event["type"] == "doubtSessionClosed"
        assert event["data"]["closed_by_name"] == "Trainer Test"
        assert event["data"]["status"] == "closed"

    def test_admin_close_then_student_append_conflicts(self, service, student, trainer, admin_user, topic, school):
        doubt, _ = service.initiate(student, _trainer_request(trainer, topic))
        service.close(doubt.id, admin_user)
        assert doubt.status == DoubtStatus.CLOSED
        with pytest.raises(ConflictError):
            service.append_message(doubt.id, student, "Are you there?")

    def test_close_twice_conflicts(self, service, student, trainer, topic, school):
        doubt, _ = service.initiate(student, _trainer_request(trainer, topic))
        service.close(doubt.id, student)
        with pytest.raises(ConflictError):
            service.close(doubt.id, student)

    def test_outsider_cannot_close(self, service, student, other_student, trainer, topic, school):
        doubt, _ = service.initiate(student, _trainer_request(trainer, topic))
        with pytest.raises(AuthorizationError):
            service.close(doubt.id, other_student)
        assert doubt.status == DoubtStatus.PENDING

    def test_resolve_requires_assigned_trainer_or_admin(self, service, student, trainer, admin_user, topic, school):
        doubt, _ = service.initiate(student, _trainer_request(trainer, topic))
        service.append_message(doubt.id, trainer, "x = 2")
        with pytest.raises(AuthorizationError):
            service.resolve(doubt.id, student)
        service.resolve(doubt.id, admin_user)
        assert doubt.status == DoubtStatus.RESOLVED

    def test_resolve_pending_session_conflicts(self, service, student, trainer, topic, school):
        doubt, _ = service.initiate(student, _trainer_request(trainer, topic))
        with pytest.raises(ConflictError):
            service.resolve(doubt.id, trainer)

    def test_cancel_by_student(self, service, transport, student, trainer, topic, school):
        doubt, _ = service.initiate(student, _trainer_request(trainer, topic))
        service.cancel(doubt.id, student)

        assert doubt.status == DoubtStatus.CANCELLED
        event = transport.for_room(session_room(doubt.id))[-1]
        assert event["data"]["status"] == "cancelled"

    def test_trainer_cannot_cancel(self, service, student, trainer, topic, school):
        doubt, _ = service.initiate(student, _trainer_request(trainer, topic))
        with pytest.raises(AuthorizationError):
            service.cancel(doubt.id, trainer)

    def test_stale_status_change_conflicts(self, service, db_session, student, trainer, topic, school):
        doubt, _ = service.initiate(student, _trainer_request(trainer, topic))

        other = TestingSessionLocal()
        table = DoubtSession.__table__
        other.execute(
            update(table).where(table.c.id == doubt.id).values(version=table.c.version + 1)
        )
        other.commit()
        other.close()

        with pytest.raises(ConflictError):
            service.close(doubt.id, student)
        db_session.expire_all()
        assert doubt.status == DoubtStatus.PENDING

    def test_concurrent_appends_do_not_conflict(self, service, db_session, relay, responder, student, trainer, topic, school):
        doubt, _ = service.initiate(student, _trainer_request(trainer, topic))

        other_db = TestingSessionLocal()
        try:
            DoubtService(other_db, relay=relay, responder=responder).append_message(
                doubt.id, trainer, "Working on it"
            )
        finally:
            other_db.close()

        # db_session still holds the pre-reply version of the session
        service.append_message(doubt.id, student, "Thanks!")

        replay = service.get_messages(doubt.id, student)
        assert [m.message_text for m in replay] == ["How do I solve 2x + 3 = 7?", "Working on it", "Thanks!"]


@pytest.mark.integration
class TestReadModels:
    def test_listings(self, service, student, trainer, other_trainer, admin_user, topic, school):
        trainer_doubt, _ = service.initiate(student, _trainer_request(trainer, topic))
        ai_doubt, _ = service.initiate(student, _ai_request())
        service.close(ai_doubt.id, student)

        assert {d.id for d in service.list_for_student(student)} == {trainer_doubt.id, ai_doubt.id}
        assert [d.id for d in service.list_for_student(student, active_only=True)] == [trainer_doubt.id]
        assert [d.id for d in service.list_for_trainer(trainer)] == [trainer_doubt.id]
        assert service.list_for_trainer(other_trainer) == []
        assert [d.id for d in service.list_for_trainer(admin_user)] == [trainer_doubt.id]
        assert len(service.list_all()) == 2

    def test_available_trainers_match_school_and_grade(self, service, student, trainer, other_trainer, school):
        assert [t.id for t in service.available_trainers(student)] == [trainer.id]

    def test_topics_for_grade(self, service, topic):
        assert [t.id for t in service.topics_for_grade(9)] == [topic.id]
        with pytest.raises(NotFoundError):
            service.topics_for_grade(12)


@pytest.mark.integration
class TestStorageFaults:
    def test_student_of_session_cannot_be_reassigned(self, service, student, other_student, trainer, topic, school):
        doubt, _ = service.initiate(student, _trainer_request(trainer, topic))
        with pytest.raises(ValueError, match="cannot be changed"):
            doubt.student_id = other_student.id
        assert doubt.student_id == student.id

    def test_failed_commit_leaves_nothing_behind(
        self, service, db_session, monkeypatch, transport, scheduler, student, school
    ):
        def failing_commit():
            raise OperationalError("INSERT INTO doubt_sessions", {}, Exception("disk I/O error"))

        monkeypatch.setattr(db_session, "commit", failing_commit)

        with pytest.raises(InternalFailureError) as exc_info:
            service.initiate(student, _ai_request())
        assert exc_info.value.status_code == 500
        assert exc_info.value.error_code == "INTERNAL_FAILURE"

        monkeypatch.undo()
        assert db_session.query(DoubtSession).count() == 0
        assert db_session.query(ChatMessage).count() == 0
        assert transport.events == []
        assert scheduler.pending() == []
