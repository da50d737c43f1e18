from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from tutor_quiz.api.deps import get_current_user
from tutor_quiz.db.models import User
from tutor_quiz.db.session import get_db
from tutor_quiz.schemas.attempt import (
    FinalizeRequest,
    FinalizeResponse,
    QuestionView,
    ReviewResponse,
    SaveAnswerRequest,
    SaveAnswerResponse,
    StartAttemptResponse,
)
from tutor_quiz.services import quiz_engine

router = APIRouter(prefix="/quizzes/{quiz_id}/attempt", tags=["Quiz Attempts"])


def parse_display_number(raw: Optional[str]) -> int:
    """Lenient integer parse; anything unreadable means the first question."""
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        return 1


@router.post("/start", response_model=StartAttemptResponse)
def start_attempt(
    quiz_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return quiz_engine.start_or_resume_attempt(db, current_user, quiz_id)


@router.get("/questions", response_model=QuestionView)
def get_question(
    quiz_id: UUID,
    q_number: Optional[str] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return quiz_engine.get_question(db, current_user, quiz_id, parse_display_number(q_number))


@router.post("/answers", response_model=SaveAnswerResponse)
def save_answer(
    quiz_id: UUID,
    payload: SaveAnswerRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return quiz_engine.save_answer(db, current_user, quiz_id, payload.position, payload.option_label)


@router.post("/finish", response_model=FinalizeResponse)
def finish_attempt(
    quiz_id: UUID,
    payload: Optional[FinalizeRequest] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    answers = payload.answers if payload is not None else []
    return quiz_engine.finalize_attempt(db, current_user, quiz_id, answers)


@router.get("/review", response_model=ReviewResponse)
def get_review(
    quiz_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    return quiz_engine.get_review(db, current_user, quiz_id)
