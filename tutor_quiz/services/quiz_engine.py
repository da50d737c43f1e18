"""Quiz attempt lifecycle: start, fetch, answer, finish and review.

Expiry is evaluated lazily at the top of every operation: an in-progress
attempt whose window has elapsed is completed from its stored answers the
next time anything touches it. There is no background timer.
"""
import logging
import random
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from tutor_quiz.core.exceptions import (
    AccessDenied,
    AttemptAlreadyCompleted,
    AttemptExpired,
    AttemptNotFound,
    AttemptNotInProgress,
    InvalidAnswer,
    PersistenceError,
    QuizNotFound,
    ReviewUnavailable,
)
from tutor_quiz.crud import crud_attempt, crud_quiz
from tutor_quiz.db.models import OPTION_LABEL_MAX_LENGTH, AttemptState, Quiz, QuizAttempt, User
from tutor_quiz.schemas.attempt import (
    ClientAnswer,
    FinalizeResponse,
    QuestionView,
    ReviewResponse,
    SaveAnswerResponse,
    StartAttemptResponse,
)
from tutor_quiz.services.access import AccessGrant, can_attempt
from tutor_quiz.services.answers import normalize_client_answers, reconcile_answers
from tutor_quiz.services.question_selector import select_question_indices
from tutor_quiz.services.review import build_review
from tutor_quiz.services.scoring import compute_score, escape_special_characters
from tutor_quiz.services.timing import as_utc, attempt_window, has_expired

logger = logging.getLogger(__name__)


def _now(now: Optional[datetime]) -> datetime:
    return as_utc(now) if now is not None else datetime.now(timezone.utc)


def effective_state(attempt: Optional[QuizAttempt], now: datetime) -> AttemptState:
    if attempt is None:
        return AttemptState.NOT_STARTED
    if attempt.state == AttemptState.IN_PROGRESS and has_expired(now, attempt.end_time):
        return AttemptState.EXPIRED
    return attempt.state


def _load_quiz(db: Session, quiz_id: UUID) -> Quiz:
    quiz = crud_quiz.get_quiz(db, quiz_id)
    if quiz is None:
        raise QuizNotFound()
    return quiz


def _check_entitlement(db: Session, user: User, quiz: Quiz) -> AccessGrant:
    if not quiz.is_active or not quiz.is_visible:
        logger.warning("User %s asked for closed quiz %s", user.id, quiz.id)
        raise AccessDenied("Quiz is not available")
    grant = can_attempt(db, user, quiz)
    if grant == AccessGrant.DENIED:
        logger.warning("User %s denied access to quiz %s", user.id, quiz.id)
        raise AccessDenied()
    return grant


def _question_ids(quiz: Quiz, indices: List[int]) -> dict:
    return {
        position: quiz.questions[pool_index].id
        for position, pool_index in enumerate(indices)
        if 0 <= pool_index < quiz.pool_size
    }


def _ensure_selection(quiz: Quiz, attempt: QuizAttempt, rng: Optional[random.Random] = None) -> List[int]:
    """Selected indices of the attempt, generating them if a legacy record has none."""
    if not attempt.selected_indices:
        attempt.selected_indices = select_question_indices(quiz.pool_size, quiz.questions_to_show, rng)
        logger.info("Generated question selection for attempt %s", attempt.id)
    return list(attempt.selected_indices)


def _complete(
    db: Session,
    quiz: Quiz,
    attempt: QuizAttempt,
    user: User,
    now: datetime,
    client_answers: Optional[Iterable[ClientAnswer]] = None,
) -> Tuple[int, int]:
    """Reconcile, score and close the attempt in one transaction.

    Raises AttemptAlreadyCompleted if a concurrent request closed it first.
    """
    indices = _ensure_selection(quiz, attempt)
    total = len(indices)
    stored = crud_attempt.get_answer_map(db, attempt.id)
    client = normalize_client_answers(client_answers or [], total)
    final = reconcile_answers(total, stored, client)
    score = compute_score(indices, final, quiz.questions)
    missing = {position: label for position, label in final.items() if position not in stored}

    try:
        closed = crud_attempt.complete_attempt(db, attempt.id, user.id, score, total, now)
        if not closed:
            db.rollback()
            logger.warning("Duplicate finalize for attempt %s rejected", attempt.id)
            raise AttemptAlreadyCompleted()
        crud_attempt.add_answers(db, attempt.id, missing, _question_ids(quiz, indices), now)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to save results for attempt %s", attempt.id)
        raise PersistenceError()
    return score, total


def _expire(db: Session, quiz: Quiz, attempt: QuizAttempt, user: User, now: datetime) -> Tuple[int, int]:
    score, total = _complete(db, quiz, attempt, user, now)
    logger.info("Attempt %s expired; auto-completed with score %s/%s", attempt.id, score, total)
    return score, total


def _resumed(quiz: Quiz, attempt: QuizAttempt) -> StartAttemptResponse:
    return StartAttemptResponse(
        status="resumed",
        message="Quiz already in progress",
        quiz_id=quiz.id,
        start_time=attempt.start_time,
        end_time=attempt.end_time,
        total_questions=len(attempt.selected_indices or []),
        duration_minutes=quiz.duration_minutes,
    )


def start_or_resume_attempt(
    db: Session,
    user: User,
    quiz_id: UUID,
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
) -> StartAttemptResponse:
    now = _now(now)
    quiz = _load_quiz(db, quiz_id)
    _check_entitlement(db, user, quiz)

    attempt = crud_attempt.get_attempt(db, user.id, quiz.id)
    state = effective_state(attempt, now)

    if state == AttemptState.COMPLETED:
        logger.warning("User %s tried to restart completed quiz %s", user.id, quiz.id)
        raise AttemptAlreadyCompleted()

    if state == AttemptState.EXPIRED:
        score, total = _expire(db, quiz, attempt, user, now)
        return StartAttemptResponse(
            status="expired",
            message="Quiz time has expired",
            quiz_id=quiz.id,
            total_questions=total,
            duration_minutes=quiz.duration_minutes,
            score=score,
        )

    if state == AttemptState.IN_PROGRESS:
        return _resumed(quiz, attempt)

    indices = select_question_indices(quiz.pool_size, quiz.questions_to_show, rng)
    start_time, end_time = attempt_window(now, quiz.duration_minutes)
    try:
        if attempt is None:
            attempt = crud_attempt.create_attempt(db, user.id, quiz.id, indices, start_time, end_time)
        else:
            crud_attempt.open_window(db, attempt, indices, start_time, end_time)
        db.commit()
    except IntegrityError:
        # another request created the record first; treat it as a resume
        db.rollback()
        attempt = crud_attempt.get_attempt(db, user.id, quiz.id)
        if attempt is None or effective_state(attempt, now) != AttemptState.IN_PROGRESS:
            raise PersistenceError("Failed to start quiz")
        return _resumed(quiz, attempt)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to start quiz %s for user %s", quiz.id, user.id)
        raise PersistenceError("Failed to start quiz")

    logger.info("User %s started quiz %s (%s questions)", user.id, quiz.id, len(indices))
    return StartAttemptResponse(
        status="started",
        message="Quiz started successfully",
        quiz_id=quiz.id,
        start_time=start_time,
        end_time=end_time,
        total_questions=len(indices),
        duration_minutes=quiz.duration_minutes,
    )


def clamp_display_number(display_number: Optional[int], total: int) -> int:
    if not display_number or display_number < 1:
        return 1
    return min(display_number, total)


def get_question(
    db: Session,
    user: User,
    quiz_id: UUID,
    display_number: Optional[int] = 1,
    now: Optional[datetime] = None,
) -> QuestionView:
    """Question at a 1-based display number of the caller's running attempt."""
    now = _now(now)
    quiz = _load_quiz(db, quiz_id)
    _check_entitlement(db, user, quiz)

    attempt = crud_attempt.get_attempt(db, user.id, quiz.id)
    state = effective_state(attempt, now)
    if state == AttemptState.COMPLETED:
        raise AttemptAlreadyCompleted()
    if state == AttemptState.EXPIRED:
        score, total = _expire(db, quiz, attempt, user, now)
        raise AttemptExpired(score, total)
    if state != AttemptState.IN_PROGRESS:
        raise AttemptNotInProgress("Quiz not started")

    if not attempt.selected_indices:
        _ensure_selection(quiz, attempt)
        try:
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to store question selection for attempt %s", attempt.id)
            raise PersistenceError()

    indices = list(attempt.selected_indices)
    number = clamp_display_number(display_number, len(indices))
    pool_index = indices[number - 1]
    if not 0 <= pool_index < quiz.pool_size:
        logger.warning("Attempt %s points at missing pool index %s", attempt.id, pool_index)
        raise QuizNotFound("Question not found")

    question = quiz.questions[pool_index]
    return QuestionView(
        quiz_id=quiz.id,
        question_id=question.id,
        display_number=number,
        total_questions=len(indices),
        prompt=escape_special_characters(question.prompt),
        image=question.image or None,
        options=[escape_special_characters(option) for option in question.options],
        saved_answer=crud_attempt.get_answer(db, attempt.id, number - 1),
        end_time=attempt.end_time,
    )


def save_answer(
    db: Session,
    user: User,
    quiz_id: UUID,
    position: int,
    option_label: str,
    now: Optional[datetime] = None,
) -> SaveAnswerResponse:
    """Upsert the answer for one 0-based position; last write wins."""
    now = _now(now)
    quiz = _load_quiz(db, quiz_id)

    attempt = crud_attempt.get_attempt(db, user.id, quiz.id)
    if attempt is None:
        raise AttemptNotFound()
    state = effective_state(attempt, now)
    if state == AttemptState.COMPLETED:
        raise AttemptAlreadyCompleted()
    if state == AttemptState.EXPIRED:
        score, total = _expire(db, quiz, attempt, user, now)
        raise AttemptExpired(score, total)
    if state != AttemptState.IN_PROGRESS:
        raise AttemptNotInProgress("Quiz not started")

    indices = list(attempt.selected_indices or [])
    if not 0 <= position < len(indices):
        raise InvalidAnswer("Question position %s is outside this attempt" % position)
    if not option_label or len(option_label) > OPTION_LABEL_MAX_LENGTH:
        raise InvalidAnswer("Answer must be 1 to %d characters" % OPTION_LABEL_MAX_LENGTH)

    question_id = _question_ids(quiz, indices).get(position)
    try:
        crud_attempt.upsert_answer(db, attempt.id, position, option_label, now, question_id)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to save answer for attempt %s", attempt.id)
        raise PersistenceError("Failed to save answer")

    logger.debug("Saved answer %r at position %s of attempt %s", option_label, position, attempt.id)
    return SaveAnswerResponse(position=position)


def finalize_attempt(
    db: Session,
    user: User,
    quiz_id: UUID,
    client_answers: Optional[Iterable[ClientAnswer]] = None,
    now: Optional[datetime] = None,
) -> FinalizeResponse:
    """Close the attempt and score it on the server.

    Client answers only fill positions the server has nothing for. After
    expiry they are ignored entirely and the stored answers are scored.
    """
    now = _now(now)
    quiz = _load_quiz(db, quiz_id)

    attempt = crud_attempt.get_attempt(db, user.id, quiz.id)
    if attempt is None:
        raise AttemptNotFound()
    state = effective_state(attempt, now)
    if state == AttemptState.COMPLETED:
        logger.warning("User %s finalized completed quiz %s again", user.id, quiz.id)
        raise AttemptAlreadyCompleted()
    if state == AttemptState.NOT_STARTED:
        raise AttemptNotInProgress("Quiz not started")

    expired = state == AttemptState.EXPIRED
    if expired:
        score, total = _expire(db, quiz, attempt, user, now)
    else:
        score, total = _complete(db, quiz, attempt, user, now, client_answers)
        logger.info("User %s finished quiz %s with score %s/%s", user.id, quiz.id, score, total)

    return FinalizeResponse(
        message="Quiz time has expired" if expired else "Quiz completed successfully",
        score=score,
        total_questions=total,
        pool_size=quiz.pool_size,
        max_score=total,
        expired=expired,
    )


def get_review(
    db: Session,
    user: User,
    quiz_id: UUID,
    now: Optional[datetime] = None,
) -> ReviewResponse:
    """Per-question breakdown of a completed attempt; never writes."""
    now = _now(now)
    quiz = _load_quiz(db, quiz_id)
    attempt = crud_attempt.get_attempt(db, user.id, quiz.id)
    if effective_state(attempt, now) != AttemptState.COMPLETED:
        raise ReviewUnavailable("Quiz not completed")
    if not quiz.show_answers_after_completion:
        raise ReviewUnavailable("Answers are hidden for this quiz")
    return build_review(quiz, attempt, crud_attempt.get_answer_map(db, attempt.id))
