from typing import Mapping

from tutor_quiz.db.models import Quiz, QuizAttempt
from tutor_quiz.schemas.attempt import QuestionReview, ReviewResponse
from tutor_quiz.services.answers import reconcile_answers
from tutor_quiz.services.question_selector import sequential_indices
from tutor_quiz.services.scoring import CORRECT, INCORRECT, UNANSWERED, count_outcomes, grade_positions


def review_indices(quiz: Quiz, attempt: QuizAttempt):
    # records written before selections were stored fall back to the
    # first questions_to_show pool positions
    if attempt.selected_indices:
        return list(attempt.selected_indices)
    return sequential_indices(min(quiz.questions_to_show or quiz.pool_size, quiz.pool_size))


def build_review(quiz: Quiz, attempt: QuizAttempt, stored_answers: Mapping[int, str]) -> ReviewResponse:
    """Per-question breakdown of a completed attempt. Reads only."""
    indices = review_indices(quiz, attempt)
    answers = reconcile_answers(len(indices), stored_answers, {})
    outcomes = grade_positions(indices, answers, quiz.questions)

    questions = []
    for outcome in outcomes:
        question = quiz.questions[outcome.pool_index] if 0 <= outcome.pool_index < quiz.pool_size else None
        questions.append(QuestionReview(
            display_number=outcome.position + 1,
            pool_index=outcome.pool_index,
            question_id=question.id if question is not None else None,
            prompt=question.prompt if question is not None else None,
            image=question.image if question is not None else None,
            options=question.options if question is not None else [],
            selected_option=outcome.selected_option,
            selected_index=outcome.selected_index,
            correct_option=outcome.correct_option,
            outcome=outcome.outcome,
        ))

    counts = count_outcomes(outcomes)
    return ReviewResponse(
        quiz_id=quiz.id,
        quiz_name=quiz.name,
        score=attempt.score,
        total_questions=len(indices),
        pool_size=quiz.pool_size,
        correct_count=counts[CORRECT],
        incorrect_count=counts[INCORRECT],
        unanswered_count=counts[UNANSWERED],
        completed_at=attempt.completed_at,
        questions=questions,
    )
