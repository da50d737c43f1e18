import json
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

from tutor_quiz.services.answers import parse_option_label

CORRECT = "correct"
INCORRECT = "incorrect"
UNANSWERED = "unanswered"


@dataclass(frozen=True)
class PositionOutcome:
    position: int
    pool_index: int
    selected_option: Optional[str]
    selected_index: Optional[int]
    correct_option: Optional[int]
    outcome: str


def grade_positions(
    selected_indices: Sequence[int],
    answers: Mapping[int, str],
    pool: Sequence[Any],
) -> List[PositionOutcome]:
    """Compare each reconciled answer with the pool's answer key.

    ``pool`` items only need a ``correct_option`` attribute (1-based).
    A pool index that resolves to nothing can never be correct.
    """
    outcomes = []
    for position, pool_index in enumerate(selected_indices):
        question = pool[pool_index] if 0 <= pool_index < len(pool) else None
        correct = question.correct_option if question is not None else None
        label = answers.get(position)
        chosen = parse_option_label(label)
        if not label:
            outcome = UNANSWERED
        elif correct is not None and chosen == correct:
            outcome = CORRECT
        else:
            outcome = INCORRECT
        outcomes.append(
            PositionOutcome(
                position=position,
                pool_index=pool_index,
                selected_option=label,
                selected_index=chosen,
                correct_option=correct,
                outcome=outcome,
            )
        )
    return outcomes


def compute_score(
    selected_indices: Sequence[int],
    answers: Mapping[int, str],
    pool: Sequence[Any],
) -> int:
    """One point per correct answer; no partial credit, no penalty."""
    return sum(1 for o in grade_positions(selected_indices, answers, pool) if o.outcome == CORRECT)


def count_outcomes(outcomes: Sequence[PositionOutcome]) -> Dict[str, int]:
    counts = {CORRECT: 0, INCORRECT: 0, UNANSWERED: 0}
    for o in outcomes:
        counts[o.outcome] += 1
    return counts


def _reject_constant(value):
    raise ValueError(value)


def _escape_strings(value):
    if isinstance(value, str):
        return value.replace("\\", "\\\\").replace('"', '\\"')
    if isinstance(value, list):
        return [_escape_strings(v) for v in value]
    if isinstance(value, dict):
        return {k: _escape_strings(v) for k, v in value.items()}
    return value


def escape_special_characters(text: Optional[str]) -> Optional[str]:
    """Re-escape text that holds a JSON document; plain text passes through.

    Legacy content was sometimes stored double-encoded. If the field parses
    as JSON, quotes and backslashes inside its strings are escaped again and
    the value re-serialized; otherwise the original text is returned.
    """
    if not text:
        return text
    try:
        parsed = json.loads(text, parse_constant=_reject_constant)
    except ValueError:
        return text
    return json.dumps(_escape_strings(parsed), ensure_ascii=False, separators=(",", ":"))
