from uuid import UUID
import uuid

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from tutor_quiz.db.models import Quiz, QuizPurchase, QuizQuestion
from tutor_quiz.schemas.quiz import QuizCreate


def get_quiz(db: Session, quiz_id: UUID):
    """
    Get a quiz definition with its question pool loaded.
    """
    result = db.execute(
        select(Quiz).options(selectinload(Quiz.questions)).where(Quiz.id == quiz_id)
    )
    return result.scalar_one_or_none()


def list_open_quizzes(db: Session, grade: str):
    """
    Active and visible quizzes for one grade, oldest first.
    """
    return (
        db.query(Quiz)
        .options(selectinload(Quiz.questions))
        .filter(Quiz.grade == grade, Quiz.is_active.is_(True), Quiz.is_visible.is_(True))
        .order_by(Quiz.created_at)
        .all()
    )


def create_quiz(db: Session, creator_id: UUID, data: QuizCreate) -> Quiz:
    quiz = Quiz(
        id=uuid.uuid4(),
        name=data.name,
        grade=data.grade,
        duration_minutes=data.duration_minutes,
        questions_to_show=data.questions_to_show,
        is_active=data.is_active,
        is_visible=data.is_visible,
        is_prepaid=data.is_prepaid,
        price=data.price,
        show_answers_after_completion=data.show_answers_after_completion,
        created_by=creator_id,
    )
    db.add(quiz)
    db.flush()  # So we get quiz.id

    for idx, q in enumerate(data.questions):
        db.add(QuizQuestion(
            id=uuid.uuid4(),
            quiz_id=quiz.id,
            position=idx,
            prompt=q.prompt,
            image=q.image,
            option_1=q.options[0],
            option_2=q.options[1],
            option_3=q.options[2],
            option_4=q.options[3],
            correct_option=q.correct_option,
        ))

    db.commit()
    db.refresh(quiz)
    return quiz


def has_purchase(db: Session, user_id: UUID, quiz_id: UUID) -> bool:
    return db.query(QuizPurchase.id).filter(
        QuizPurchase.user_id == user_id,
        QuizPurchase.quiz_id == quiz_id,
    ).first() is not None
