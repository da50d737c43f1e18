import random
import uuid
from datetime import timedelta

import pytest

from conftest import T0
from tutor_quiz.core.exceptions import (
    AccessDenied,
    AttemptAlreadyCompleted,
    AttemptExpired,
    AttemptNotFound,
    AttemptNotInProgress,
    InvalidAnswer,
    QuizNotFound,
)
from tutor_quiz.crud import crud_attempt
from tutor_quiz.db.models import AttemptState, QuizPurchase
from tutor_quiz.schemas.attempt import FinalizeRequest
from tutor_quiz.services import quiz_engine
from tutor_quiz.services.timing import has_expired


def correct_label(quiz, pool_index):
    return "answer%d" % quiz.questions[pool_index].correct_option


def wrong_label(quiz, pool_index):
    return "answer%d" % (quiz.questions[pool_index].correct_option % 4 + 1)


def attempt_of(db, user, quiz):
    db.expire_all()
    return crud_attempt.get_attempt(db, user.id, quiz.id)


def test_has_expired():
    assert not has_expired(T0, None)
    assert not has_expired(T0, T0 + timedelta(seconds=1))
    assert has_expired(T0, T0)
    assert has_expired(T0 + timedelta(minutes=2), T0.replace(tzinfo=None))


def test_scenario_random_subset_scored_out_of_questions_shown(db, student, make_quiz):
    quiz = make_quiz(pool_size=10, questions_to_show=5)

    started = quiz_engine.start_or_resume_attempt(db, student, quiz.id, now=T0, rng=random.Random(11))
    assert started.status == "started"
    assert started.total_questions == 5

    indices = attempt_of(db, student, quiz).selected_indices
    assert len(indices) == 5 and len(set(indices)) == 5
    assert all(0 <= i < 10 for i in indices)

    for position in range(3):
        quiz_engine.save_answer(db, student, quiz.id, position, correct_label(quiz, indices[position]), now=T0)

    result = quiz_engine.finalize_attempt(db, student, quiz.id, [], now=T0 + timedelta(minutes=5))
    assert result.score == 3
    assert result.total_questions == 5
    assert result.max_score == 5
    assert result.pool_size == 10
    assert not result.expired

    db.refresh(student)
    assert student.total_score == 3
    assert student.total_questions == 5
    assert student.exams_entered == 1


def test_scenario_full_pool_is_sequential(db, student, make_quiz):
    quiz = make_quiz(pool_size=8, questions_to_show=8)
    quiz_engine.start_or_resume_attempt(db, student, quiz.id, now=T0)
    assert attempt_of(db, student, quiz).selected_indices == list(range(8))


def test_scenario_lazy_expiry_on_question_fetch(db, student, make_quiz):
    quiz = make_quiz(pool_size=4, duration_minutes=1)
    quiz_engine.start_or_resume_attempt(db, student, quiz.id, now=T0)

    with pytest.raises(AttemptExpired) as excinfo:
        quiz_engine.get_question(db, student, quiz.id, 1, now=T0 + timedelta(minutes=2))
    assert excinfo.value.score == 0
    assert excinfo.value.total_questions == 4

    attempt = attempt_of(db, student, quiz)
    assert attempt.state == AttemptState.COMPLETED
    assert attempt.score == 0
    assert attempt.end_time is None
    assert attempt.is_entered and not attempt.in_progress


def test_lazy_expiry_scores_answers_saved_before_timeout(db, student, make_quiz):
    quiz = make_quiz(pool_size=3, duration_minutes=1)
    quiz_engine.start_or_resume_attempt(db, student, quiz.id, now=T0)
    quiz_engine.save_answer(db, student, quiz.id, 0, correct_label(quiz, 0), now=T0 + timedelta(seconds=30))

    late = FinalizeRequest.model_validate({"answers": [None, correct_label(quiz, 1), correct_label(quiz, 2)]})
    result = quiz_engine.finalize_attempt(db, student, quiz.id, late.answers, now=T0 + timedelta(minutes=3))
    assert result.expired
    assert result.score == 1


def test_scenario_server_answer_beats_client_answer(db, student, make_quiz):
    quiz = make_quiz(pool_size=2, correct=2)
    quiz_engine.start_or_resume_attempt(db, student, quiz.id, now=T0)
    quiz_engine.save_answer(db, student, quiz.id, 0, "answer2", now=T0)

    request = FinalizeRequest.model_validate({"answers": ["answer4"]})
    result = quiz_engine.finalize_attempt(db, student, quiz.id, request.answers, now=T0)
    assert result.score == 1
    assert crud_attempt.get_answer_map(db, attempt_of(db, student, quiz).id) == {0: "answer2"}


def test_client_answers_fill_unsaved_positions(db, student, make_quiz):
    quiz = make_quiz(pool_size=3)
    quiz_engine.start_or_resume_attempt(db, student, quiz.id, now=T0)
    quiz_engine.save_answer(db, student, quiz.id, 0, correct_label(quiz, 0), now=T0)

    request = FinalizeRequest.model_validate({
        "answers": [{"position": 1, "option_label": correct_label(quiz, 1)}, {"position": 2, "option_label": wrong_label(quiz, 2)}]
    })
    result = quiz_engine.finalize_attempt(db, student, quiz.id, request.answers, now=T0)
    assert result.score == 2
    stored = crud_attempt.get_answer_map(db, attempt_of(db, student, quiz).id)
    assert sorted(stored) == [0, 1, 2]


def test_scenario_second_finalize_is_rejected(db, student, make_quiz):
    quiz = make_quiz(pool_size=5)
    quiz_engine.start_or_resume_attempt(db, student, quiz.id, now=T0)
    for position in range(4):
        quiz_engine.save_answer(db, student, quiz.id, position, correct_label(quiz, position), now=T0)

    first = quiz_engine.finalize_attempt(db, student, quiz.id, [], now=T0)
    assert first.score == 4

    retry = FinalizeRequest.model_validate({"answers": [correct_label(quiz, i) for i in range(5)]})
    with pytest.raises(AttemptAlreadyCompleted):
        quiz_engine.finalize_attempt(db, student, quiz.id, retry.answers, now=T0)

    db.refresh(student)
    assert attempt_of(db, student, quiz).score == 4
    assert student.total_score == 4
    assert student.total_questions == 5
    assert student.exams_entered == 1


def test_conditional_completion_only_wins_once(db, student, make_quiz):
    quiz = make_quiz(pool_size=2)
    quiz_engine.start_or_resume_attempt(db, student, quiz.id, now=T0)
    attempt = attempt_of(db, student, quiz)

    assert crud_attempt.complete_attempt(db, attempt.id, student.id, 2, 2, T0)
    assert not crud_attempt.complete_attempt(db, attempt.id, student.id, 2, 2, T0)
    db.commit()

    db.refresh(student)
    assert student.total_score == 2
    assert student.exams_entered == 1


def test_finalize_with_stale_answer_read_loses_cleanly(db, student, make_quiz, monkeypatch):
    quiz = make_quiz(pool_size=3)
    quiz_engine.start_or_resume_attempt(db, student, quiz.id, now=T0)
    attempt = attempt_of(db, student, quiz)
    request = FinalizeRequest.model_validate({"answers": [correct_label(quiz, i) for i in range(3)]})

    first = quiz_engine.finalize_attempt(db, student, quiz.id, request.answers, now=T0)
    assert first.score == 3

    # a second request that read the answers before the first one committed
    monkeypatch.setattr(crud_attempt, "get_answer_map", lambda db, attempt_id: {})
    with pytest.raises(AttemptAlreadyCompleted):
        quiz_engine._complete(db, quiz, attempt, student, T0, request.answers)

    monkeypatch.undo()
    db.refresh(student)
    assert student.total_score == 3
    assert student.exams_entered == 1
    assert len(crud_attempt.get_answer_map(db, attempt.id)) == 3


def test_finalize_keeps_answer_saved_after_its_read(db, student, make_quiz, monkeypatch):
    quiz = make_quiz(pool_size=2)
    quiz_engine.start_or_resume_attempt(db, student, quiz.id, now=T0)
    attempt = attempt_of(db, student, quiz)
    quiz_engine.save_answer(db, student, quiz.id, 0, wrong_label(quiz, 0), now=T0)

    monkeypatch.setattr(crud_attempt, "get_answer_map", lambda db, attempt_id: {})
    request = FinalizeRequest.model_validate({"answers": [correct_label(quiz, 0)]})
    quiz_engine._complete(db, quiz, attempt, student, T0, request.answers)
    monkeypatch.undo()

    assert attempt_of(db, student, quiz).state == AttemptState.COMPLETED
    assert crud_attempt.get_answer_map(db, attempt.id) == {0: wrong_label(quiz, 0)}


def test_start_again_resumes_same_window(db, student, make_quiz):
    quiz = make_quiz(pool_size=10, questions_to_show=4)
    first = quiz_engine.start_or_resume_attempt(db, student, quiz.id, now=T0)
    indices = attempt_of(db, student, quiz).selected_indices

    again = quiz_engine.start_or_resume_attempt(db, student, quiz.id, now=T0 + timedelta(minutes=3))
    assert again.status == "resumed"
    assert again.end_time.replace(tzinfo=None) == first.end_time.replace(tzinfo=None)
    assert attempt_of(db, student, quiz).selected_indices == indices


def test_start_after_completion_is_rejected(db, student, make_quiz):
    quiz = make_quiz(pool_size=2)
    quiz_engine.start_or_resume_attempt(db, student, quiz.id, now=T0)
    quiz_engine.finalize_attempt(db, student, quiz.id, [], now=T0)

    with pytest.raises(AttemptAlreadyCompleted):
        quiz_engine.start_or_resume_attempt(db, student, quiz.id, now=T0)


def test_start_on_expired_attempt_completes_it(db, student, make_quiz):
    quiz = make_quiz(pool_size=2, duration_minutes=10)
    quiz_engine.start_or_resume_attempt(db, student, quiz.id, now=T0)

    result = quiz_engine.start_or_resume_attempt(db, student, quiz.id, now=T0 + timedelta(minutes=10))
    assert result.status == "expired"
    assert result.score == 0
    assert attempt_of(db, student, quiz).state == AttemptState.COMPLETED


def test_not_started_record_gets_fresh_window(db, student, make_quiz):
    quiz = make_quiz(pool_size=6, questions_to_show=3)
    crud_attempt.create_attempt(db, student.id, quiz.id, [], T0, T0)
    attempt = attempt_of(db, student, quiz)
    attempt.state = AttemptState.NOT_STARTED
    attempt.end_time = None
    db.commit()

    result = quiz_engine.start_or_resume_attempt(db, student, quiz.id, now=T0)
    assert result.status == "started"
    assert len(attempt_of(db, student, quiz).selected_indices) == 3


def test_missing_quiz(db, student):
    with pytest.raises(QuizNotFound):
        quiz_engine.start_or_resume_attempt(db, student, uuid.uuid4(), now=T0)


@pytest.mark.parametrize("flags", [{"is_active": False}, {"is_visible": False}])
def test_closed_quiz_cannot_start(db, student, make_quiz, flags):
    quiz = make_quiz(pool_size=2, **flags)
    with pytest.raises(AccessDenied):
        quiz_engine.start_or_resume_attempt(db, student, quiz.id, now=T0)
    assert attempt_of(db, student, quiz) is None


def test_grade_mismatch_is_denied(db, make_user, make_quiz):
    quiz = make_quiz(pool_size=2, grade="G3")
    with pytest.raises(AccessDenied):
        quiz_engine.start_or_resume_attempt(db, make_user(grade="G5"), quiz.id, now=T0)


def test_paid_quiz_needs_purchase_or_general_access(db, make_user, make_quiz):
    quiz = make_quiz(pool_size=2, is_prepaid=True, price=50)

    with pytest.raises(AccessDenied):
        quiz_engine.start_or_resume_attempt(db, make_user(), quiz.id, now=T0)

    general = make_user(general_access=True)
    assert quiz_engine.start_or_resume_attempt(db, general, quiz.id, now=T0).status == "started"

    buyer = make_user()
    db.add(QuizPurchase(user_id=buyer.id, quiz_id=quiz.id, code="ABC123"))
    db.commit()
    assert quiz_engine.start_or_resume_attempt(db, buyer, quiz.id, now=T0).status == "started"


def test_question_fetch_is_stable_and_clamped(db, student, make_quiz):
    quiz = make_quiz(pool_size=10, questions_to_show=4)
    quiz_engine.start_or_resume_attempt(db, student, quiz.id, now=T0)
    indices = attempt_of(db, student, quiz).selected_indices

    first = quiz_engine.get_question(db, student, quiz.id, 2, now=T0)
    second = quiz_engine.get_question(db, student, quiz.id, 2, now=T0)
    assert first.question_id == second.question_id == quiz.questions[indices[1]].id
    assert first.display_number == 2
    assert first.total_questions == 4

    assert quiz_engine.get_question(db, student, quiz.id, 99, now=T0).display_number == 4
    assert quiz_engine.get_question(db, student, quiz.id, 0, now=T0).display_number == 1


def test_question_view_carries_saved_answer(db, student, make_quiz):
    quiz = make_quiz(pool_size=3)
    quiz_engine.start_or_resume_attempt(db, student, quiz.id, now=T0)
    quiz_engine.save_answer(db, student, quiz.id, 1, "answer3", now=T0)

    view = quiz_engine.get_question(db, student, quiz.id, 2, now=T0)
    assert view.saved_answer == "answer3"
    assert view.options == ["one", "two", "three", "four"]
    assert "correct_option" not in view.model_dump()


def test_question_fetch_requires_started_attempt(db, student, make_quiz):
    quiz = make_quiz(pool_size=3)
    with pytest.raises(AttemptNotInProgress):
        quiz_engine.get_question(db, student, quiz.id, 1, now=T0)


def test_save_answer_last_write_wins(db, student, make_quiz):
    quiz = make_quiz(pool_size=3)
    quiz_engine.start_or_resume_attempt(db, student, quiz.id, now=T0)
    quiz_engine.save_answer(db, student, quiz.id, 1, "answer1", now=T0)
    quiz_engine.save_answer(db, student, quiz.id, 1, "answer4", now=T0)
    quiz_engine.save_answer(db, student, quiz.id, 0, "answer2", now=T0)

    stored = crud_attempt.get_answer_map(db, attempt_of(db, student, quiz).id)
    assert stored == {0: "answer2", 1: "answer4"}


def test_save_answer_outside_attempt_is_rejected(db, student, make_quiz):
    quiz = make_quiz(pool_size=3)
    quiz_engine.start_or_resume_attempt(db, student, quiz.id, now=T0)
    with pytest.raises(InvalidAnswer):
        quiz_engine.save_answer(db, student, quiz.id, 3, "answer1", now=T0)


def test_save_answer_rejects_overlong_label(db, student, make_quiz):
    quiz = make_quiz(pool_size=2)
    quiz_engine.start_or_resume_attempt(db, student, quiz.id, now=T0)
    with pytest.raises(InvalidAnswer):
        quiz_engine.save_answer(db, student, quiz.id, 0, "answer1" + "x" * 60, now=T0)
    assert crud_attempt.get_answer_map(db, attempt_of(db, student, quiz).id) == {}


def test_save_answer_before_start(db, student, make_quiz):
    quiz = make_quiz(pool_size=3)
    with pytest.raises(AttemptNotFound):
        quiz_engine.save_answer(db, student, quiz.id, 0, "answer1", now=T0)


def test_save_answer_after_expiry_completes_attempt(db, student, make_quiz):
    quiz = make_quiz(pool_size=3, duration_minutes=5)
    quiz_engine.start_or_resume_attempt(db, student, quiz.id, now=T0)
    with pytest.raises(AttemptExpired):
        quiz_engine.save_answer(db, student, quiz.id, 0, "answer1", now=T0 + timedelta(minutes=6))
    attempt = attempt_of(db, student, quiz)
    assert attempt.state == AttemptState.COMPLETED
    assert crud_attempt.get_answer_map(db, attempt.id) == {}


def test_finalize_before_start(db, student, make_quiz):
    quiz = make_quiz(pool_size=3)
    with pytest.raises(AttemptNotFound):
        quiz_engine.finalize_attempt(db, student, quiz.id, [], now=T0)
