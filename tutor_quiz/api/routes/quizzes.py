from datetime import datetime, timezone
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from tutor_quiz.api.deps import get_current_teacher, get_current_user
from tutor_quiz.crud import crud_quiz
from tutor_quiz.db.models import QuizAttempt, User
from tutor_quiz.db.session import get_db
from tutor_quiz.schemas.quiz import QuizCreate, QuizListItem, QuizResponse
from tutor_quiz.services.quiz_engine import effective_state

router = APIRouter(prefix="/quizzes", tags=["Quizzes"])


@router.post("", response_model=QuizResponse, status_code=status.HTTP_201_CREATED)
def create_quiz(
    payload: QuizCreate,
    db: Session = Depends(get_db),
    teacher: User = Depends(get_current_teacher)
):
    return crud_quiz.create_quiz(db, teacher.id, payload)


@router.get("", response_model=List[QuizListItem])
def list_quizzes(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    """
    Open quizzes of the caller's grade with the caller's attempt status.
    """
    quizzes = crud_quiz.list_open_quizzes(db, current_user.grade)
    attempts = {
        a.quiz_id: a
        for a in db.query(QuizAttempt).filter(QuizAttempt.user_id == current_user.id).all()
    }
    now = datetime.now(timezone.utc)

    items = []
    for quiz in quizzes:
        attempt = attempts.get(quiz.id)
        state = effective_state(attempt, now)
        items.append(QuizListItem(
            id=quiz.id,
            name=quiz.name,
            duration_minutes=quiz.duration_minutes,
            questions_to_show=quiz.questions_to_show,
            is_prepaid=quiz.is_prepaid,
            price=quiz.price,
            attempt_status=state.value,
            score=attempt.score if attempt is not None and attempt.is_entered else None,
        ))
    return items
