from fastapi import APIRouter, Depends, Request, status
from eduhub.models import User, DoubtType
from eduhub.schemas import (
    AiFeedbackRequest,
    ChatMessageResponse,
    DoubtSessionActionResponse,
    DoubtSessionResponse,
    InitiateDoubtRequest,
    InitiateDoubtResponse,
    MessageCreate,
    TopicResponse,
    TrainerSummary,
)
from eduhub.deps import get_current_active_user, get_doubt_service
from eduhub.rbac import require_student, require_admin, require_trainer_or_admin
from eduhub.rate_limit import limiter, INITIATE_RATE_LIMIT, MESSAGE_RATE_LIMIT
from eduhub.services.doubt_service import DoubtService, AI_PLACEHOLDER_RESPONSE
from typing import List
from uuid import UUID

router = APIRouter(prefix="/doubts", tags=["doubts"])


# ============= Student directory =============

@router.get("/trainers", response_model=List[TrainerSummary])
def list_available_trainers(
    current_user: User = Depends(require_student),
    service: DoubtService = Depends(get_doubt_service)
):
    """Trainers assigned to the student's school and grade"""
    return service.available_trainers(current_user)


@router.get("/topics/{grade}", response_model=List[TopicResponse])
def list_topics_for_grade(
    grade: int,
    current_user: User = Depends(require_student),
    service: DoubtService = Depends(get_doubt_service)
):
    return service.topics_for_grade(grade)


# ============= Student doubts =============

@router.post("/initiate", response_model=InitiateDoubtResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(INITIATE_RATE_LIMIT)
def initiate_doubt(
    request: Request,
    data: InitiateDoubtRequest,
    current_user: User = Depends(require_student),
    service: DoubtService = Depends(get_doubt_service)
):
    """
    Start a doubt session with a trainer or with the AI.
    - trainer: trainer_id and topic_id are required; the trainer is notified
    - ai: an answer is posted into the session shortly after
    """
    doubt, message = service.initiate(current_user, data)
    return InitiateDoubtResponse(
        message="Doubt session initiated successfully",
        doubt_session=DoubtSessionResponse.from_session(doubt),
        initial_message=ChatMessageResponse.from_message(message),
        ai_initial_response=AI_PLACEHOLDER_RESPONSE if doubt.doubt_type == DoubtType.AI else None,
    )


@router.get("/my-doubts", response_model=List[DoubtSessionResponse])
def get_my_doubts(
    current_user: User = Depends(require_student),
    service: DoubtService = Depends(get_doubt_service)
):
    """All of the student's doubt sessions, most recently active first"""
    return [DoubtSessionResponse.from_session(d) for d in service.list_for_student(current_user)]


@router.get("/student/active", response_model=List[DoubtSessionResponse])
def get_active_doubts(
    current_user: User = Depends(require_student),
    service: DoubtService = Depends(get_doubt_service)
):
    doubts = service.list_for_student(current_user, active_only=True)
    return [DoubtSessionResponse.from_session(d) for d in doubts]


@router.post("/{doubt_session_id}/feedback/ai", response_model=DoubtSessionActionResponse)
def submit_ai_feedback(
    doubt_session_id: UUID,
    data: AiFeedbackRequest,
    current_user: User = Depends(require_student),
    service: DoubtService = Depends(get_doubt_service)
):
    doubt = service.submit_ai_feedback(doubt_session_id, current_user, data.helpful, data.feedback_text)
    return DoubtSessionActionResponse(
        message="Feedback submitted successfully",
        doubt_session=DoubtSessionResponse.from_session(doubt),
    )


# ============= Trainer / Admin queues =============

@router.get("/trainer/my-doubts", response_model=List[DoubtSessionResponse])
def get_trainer_doubts(
    current_user: User = Depends(require_trainer_or_admin),
    service: DoubtService = Depends(get_doubt_service)
):
    """Open trainer doubts assigned to the caller (admins see every queue)"""
    return [DoubtSessionResponse.from_session(d) for d in service.list_for_trainer(current_user)]


@router.get("/admin/all-doubts", response_model=List[DoubtSessionResponse])
def get_all_doubts(
    current_user: User = Depends(require_admin),
    service: DoubtService = Depends(get_doubt_service)
):
    return [DoubtSessionResponse.from_session(d) for d in service.list_all()]


# ============= Session chat =============

@router.get("/{doubt_session_id}/messages", response_model=List[ChatMessageResponse])
def get_messages(
    doubt_session_id: UUID,
    current_user: User = Depends(get_current_active_user),
    service: DoubtService = Depends(get_doubt_service)
):
    """Chat history, oldest first (participants and admins)"""
    messages = service.get_messages(doubt_session_id, current_user)
    return [ChatMessageResponse.from_message(m) for m in messages]


@router.post("/{doubt_session_id}/messages", response_model=ChatMessageResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(MESSAGE_RATE_LIMIT)
def send_message(
    request: Request,
    doubt_session_id: UUID,
    data: MessageCreate,
    current_user: User = Depends(get_current_active_user),
    service: DoubtService = Depends(get_doubt_service)
):
    message = service.append_message(
        doubt_session_id, current_user, data.message_text, data.attachment_url
    )
    return ChatMessageResponse.from_message(message)


@router.put("/{doubt_session_id}/close", response_model=DoubtSessionActionResponse)
def close_doubt(
    doubt_session_id: UUID,
    current_user: User = Depends(get_current_active_user),
    service: DoubtService = Depends(get_doubt_service)
):
    doubt = service.close(doubt_session_id, current_user)
    return DoubtSessionActionResponse(
        message="Doubt session closed successfully",
        doubt_session=DoubtSessionResponse.from_session(doubt),
    )


@router.put("/{doubt_session_id}/resolve", response_model=DoubtSessionActionResponse)
def resolve_doubt(
    doubt_session_id: UUID,
    current_user: User = Depends(get_current_active_user),
    service: DoubtService = Depends(get_doubt_service)
):
    doubt = service.resolve(doubt_session_id, current_user)
    return DoubtSessionActionResponse(
        message="Doubt session marked as resolved",
        doubt_session=DoubtSessionResponse.from_session(doubt),
    )


@router.put("/{doubt_session_id}/cancel", response_model=DoubtSessionActionResponse)
def cancel_doubt(
    doubt_session_id: UUID,
    current_user: User = Depends(get_current_active_user),
    service: DoubtService = Depends(get_doubt_service)
):
    doubt = service.cancel(doubt_session_id, current_user)
    return DoubtSessionActionResponse(
        message="Doubt session cancelled",
        doubt_session=DoubtSessionResponse.from_session(doubt),
    )
