"""Keyed persistence primitives for the attempt aggregate.

Nothing here commits; the quiz engine owns transaction boundaries.
"""
import uuid
from datetime import datetime
from typing import Dict, Mapping, Optional, Sequence
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from tutor_quiz.db.models import AttemptAnswer, AttemptState, QuizAttempt, User

_UPSERT_DIALECTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


def get_attempt(db: Session, user_id: UUID, quiz_id: UUID) -> Optional[QuizAttempt]:
    result = db.execute(
        select(QuizAttempt).where(QuizAttempt.user_id == user_id, QuizAttempt.quiz_id == quiz_id)
    )
    return result.scalar_one_or_none()


def create_attempt(
    db: Session,
    user_id: UUID,
    quiz_id: UUID,
    selected_indices: Sequence[int],
    start_time: datetime,
    end_time: datetime,
    access_granted: bool = True,
) -> QuizAttempt:
    attempt = QuizAttempt(
        id=uuid.uuid4(),
        user_id=user_id,
        quiz_id=quiz_id,
        state=AttemptState.IN_PROGRESS,
        selected_indices=list(selected_indices),
        start_time=start_time,
        end_time=end_time,
        score=0,
        access_granted=access_granted,
    )
    db.add(attempt)
    db.flush()
    return attempt


def open_window(
    db: Session,
    attempt: QuizAttempt,
    selected_indices: Sequence[int],
    start_time: datetime,
    end_time: datetime,
) -> QuizAttempt:
    """Start a fresh window on an existing record, wiping earlier answers."""
    db.execute(delete(AttemptAnswer).where(AttemptAnswer.attempt_id == attempt.id))
    attempt.state = AttemptState.IN_PROGRESS
    attempt.selected_indices = list(selected_indices)
    attempt.start_time = start_time
    attempt.end_time = end_time
    attempt.score = 0
    attempt.completed_at = None
    attempt.access_granted = True
    db.flush()
    return attempt


def get_answer_map(db: Session, attempt_id: UUID) -> Dict[int, str]:
    rows = db.execute(
        select(AttemptAnswer.position, AttemptAnswer.selected_option).where(
            AttemptAnswer.attempt_id == attempt_id
        )
    ).all()
    return {position: option for position, option in rows}


def get_answer(db: Session, attempt_id: UUID, position: int) -> Optional[str]:
    return db.execute(
        select(AttemptAnswer.selected_option).where(
            AttemptAnswer.attempt_id == attempt_id, AttemptAnswer.position == position
        )
    ).scalar_one_or_none()


def upsert_answer(
    db: Session,
    attempt_id: UUID,
    position: int,
    option_label: str,
    answered_at: datetime,
    question_id: Optional[UUID] = None,
) -> None:
    """Insert or replace the answer stored for one position of an attempt."""
    values = dict(
        attempt_id=attempt_id,
        position=position,
        question_id=question_id,
        selected_option=option_label,
        answered_at=answered_at,
    )
    insert = _UPSERT_DIALECTS.get(db.get_bind().dialect.name)
    if insert is not None:
        stmt = insert(AttemptAnswer).values(id=uuid.uuid4(), **values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[AttemptAnswer.attempt_id, AttemptAnswer.position],
            set_={
                "selected_option": stmt.excluded.selected_option,
                "question_id": stmt.excluded.question_id,
                "answered_at": stmt.excluded.answered_at,
            },
        )
        db.execute(stmt)
        return

    existing = db.execute(
        select(AttemptAnswer).where(
            AttemptAnswer.attempt_id == attempt_id, AttemptAnswer.position == position
        )
    ).scalar_one_or_none()
    if existing is None:
        db.add(AttemptAnswer(id=uuid.uuid4(), **values))
    else:
        existing.selected_option = option_label
        existing.question_id = question_id
        existing.answered_at = answered_at
    db.flush()


def add_answers(
    db: Session,
    attempt_id: UUID,
    answers: Mapping[int, str],
    question_ids: Mapping[int, UUID],
    answered_at: datetime,
) -> None:
    """Insert answers for positions that have none; stored answers are kept."""
    rows = [
        dict(
            id=uuid.uuid4(),
            attempt_id=attempt_id,
            position=position,
            question_id=question_ids.get(position),
            selected_option=label,
            answered_at=answered_at,
        )
        for position, label in sorted(answers.items())
    ]
    if not rows:
        return

    insert = _UPSERT_DIALECTS.get(db.get_bind().dialect.name)
    if insert is not None:
        stmt = insert(AttemptAnswer).values(rows).on_conflict_do_nothing(
            index_elements=[AttemptAnswer.attempt_id, AttemptAnswer.position],
        )
        db.execute(stmt)
        return

    taken = set(get_answer_map(db, attempt_id))
    for row in rows:
        if row["position"] not in taken:
            db.add(AttemptAnswer(**row))
    db.flush()


def complete_attempt(
    db: Session,
    attempt_id: UUID,
    user_id: UUID,
    score: int,
    total_questions: int,
    completed_at: datetime,
) -> bool:
    """Mark an in-progress attempt completed and bump the lifetime totals.

    The state check and the write are one conditional UPDATE, so only one
    of several concurrent finalizations can win. Returns False when the
    attempt was no longer in progress; nothing is written in that case.
    """
    result = db.execute(
        update(QuizAttempt)
        .where(QuizAttempt.id == attempt_id, QuizAttempt.state == AttemptState.IN_PROGRESS)
        .values(
            state=AttemptState.COMPLETED,
            score=score,
            end_time=None,
            completed_at=completed_at,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False

    db.execute(
        update(User)
        .where(User.id == user_id)
        .values(
            total_score=User.total_score + score,
            total_questions=User.total_questions + total_questions,
            exams_entered=User.exams_entered + 1,
        )
        .execution_options(synchronize_session=False)
    )
    return True
