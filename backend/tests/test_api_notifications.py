"""
Tests for the /notifications routes.
"""
import pytest
from fastapi import status

from eduhub.models import Notification, NotificationType


def _notify(db_session, user, message="You have a new reply from Trainer Test", read=False):
    notification = Notification(
        user_id=user.id,
        type=NotificationType.DOUBT_REPLY,
        message=message,
        related_data={"doubt_session_id": "d-1"},
        read=read,
    )
    db_session.add(notification)
    db_session.commit()
    db_session.refresh(notification)
    return notification


@pytest.mark.integration
class TestNotifications:
    def test_list_with_unread_count(self, client, db_session, student, student_headers, trainer):
        _notify(db_session, student)
        _notify(db_session, student, read=True)
        _notify(db_session, trainer)

        response = client.get("/notifications", headers=student_headers)
        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert len(data["notifications"]) == 2
        assert data["unread_count"] == 1
        assert data["notifications"][0]["type"] == "doubt_reply"
        assert data["notifications"][0]["related_data"] == {"doubt_session_id": "d-1"}

    def test_mark_read(self, client, db_session, student, student_headers):
        notification = _notify(db_session, student)
        response = client.put(f"/notifications/{notification.id}/read", headers=student_headers)
        assert response.status_code == status.HTTP_200_OK
        db_session.expire_all()
        assert notification.read is True

    def test_cannot_mark_someone_elses(self, client, db_session, trainer, student_headers):
        notification = _notify(db_session, trainer)
        response = client.put(f"/notifications/{notification.id}/read", headers=student_headers)
        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["error_code"] == "NOT_FOUND"

    def test_read_all_and_clear_all(self, client, db_session, student, student_headers, trainer):
        _notify(db_session, student)
        _notify(db_session, student)
        _notify(db_session, trainer)

        response = client.put("/notifications/read-all", headers=student_headers)
        assert response.json() == {"success": True, "updated": 2}
        assert client.get("/notifications", headers=student_headers).json()["unread_count"] == 0

        response = client.delete("/notifications/clear-all", headers=student_headers)
        assert response.json() == {"success": True, "deleted": 2}
        assert db_session.query(Notification).count() == 1

    def test_trainer_reply_creates_notification(self, client, student_headers, trainer_headers, trainer, topic, school):
        doubt_id = client.post(
            "/doubts/initiate",
            json={
                "doubt_type": "trainer",
                "trainer_id": str(trainer.id),
                "topic_id": str(topic.id),
                "initial_doubt_text": "What is a prime?",
            },
            headers=student_headers,
        ).json()["doubt_session"]["id"]
        client.post(f"/doubts/{doubt_id}/messages", json={"message_text": "Divisible by 1 and itself"}, headers=trainer_headers)

        data = client.get("/notifications", headers=student_headers).json()
        assert data["unread_count"] == 1
        assert data["notifications"][0]["message"] == "You have a new reply from Trainer Test"
        assert data["notifications"][0]["related_data"] == {"doubt_session_id": doubt_id}
