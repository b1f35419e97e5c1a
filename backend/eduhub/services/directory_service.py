"""
Lookups against the user directory, school directory and topic catalog.
"""
from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from eduhub.exceptions import InvalidReferenceError, NotFoundError
from eduhub.models import Role, School, Topic, User


def get_user(db: Session, user_id: UUID) -> User:
    user = db.get(User, user_id)
    if not user:
        raise NotFoundError("User", str(user_id))
    return user


def find_school_by_name(db: Session, school_name: str) -> Optional[School]:
    return db.query(School).filter(School.school_name == school_name).first()


def resolve_school(db: Session, school_name: str) -> School:
    """Profiles store the school by name; doubt sessions reference it by id."""
    school = find_school_by_name(db, school_name)
    if not school:
        raise NotFoundError("School", school_name)
    return school


def get_trainer(db: Session, trainer_id: UUID) -> User:
    trainer = db.get(User, trainer_id)
    if not trainer or trainer.role != Role.TRAINER:
        raise InvalidReferenceError("Invalid trainer selected.", field="trainer_id")
    return trainer


def get_topic(db: Session, topic_id: UUID) -> Topic:
    topic = db.get(Topic, topic_id)
    if not topic:
        raise InvalidReferenceError("Invalid session topic selected.", field="topic_id")
    return topic


def trainers_for(db: Session, school_name: str, grade: int) -> List[User]:
    """Active trainers assigned to both the school and the grade."""
    trainers = (
        db.query(User)
        .filter(User.role == Role.TRAINER, User.is_active == True)  # noqa: E712
        .order_by(User.name)
        .all()
    )
    return [
        t for t in trainers
        if school_name in (t.assigned_schools or []) and grade in (t.assigned_grades or [])
    ]


def topics_for_grade(db: Session, grade: int) -> List[Topic]:
    topics = db.query(Topic).filter(Topic.grade == grade).order_by(Topic.name).all()
    if not topics:
        raise NotFoundError("Topics for grade", str(grade))
    return topics
