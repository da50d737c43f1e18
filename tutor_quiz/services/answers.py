"""Answer normalization and server/client reconciliation."""
import re
from typing import Dict, Iterable, Mapping, Optional

from tutor_quiz.db.models import OPTION_LABEL_MAX_LENGTH
from tutor_quiz.schemas.attempt import ClientAnswer

_LABEL_RE = re.compile(r"^\s*(?:answer)?\s*(-?\d+)")


def parse_option_label(label: Optional[str]) -> Optional[int]:
    """Turn an option label such as ``"answer3"`` into ``3``.

    Bare digits are accepted too. Anything else yields ``None`` and simply
    scores nothing.
    """
    if label is None:
        return None
    match = _LABEL_RE.match(str(label))
    if not match:
        return None
    return int(match.group(1))


def normalize_client_answers(answers: Iterable[ClientAnswer], total: int) -> Dict[int, str]:
    """Fold legacy and structured client answers into ``{position: label}``.

    Positions outside ``[0, total)`` are dropped, as are labels that are
    empty or too long to store. A later entry for the same position
    replaces an earlier one.
    """
    normalized: Dict[int, str] = {}
    for answer in answers:
        if not 0 <= answer.position < total:
            continue
        if answer.option_label and len(answer.option_label) <= OPTION_LABEL_MAX_LENGTH:
            normalized[answer.position] = answer.option_label
    return normalized


def reconcile_answers(
    total: int,
    stored: Mapping[int, str],
    client: Mapping[int, str],
) -> Dict[int, str]:
    """Authoritative answer per position: server-persisted first, then client."""
    final: Dict[int, str] = {}
    for position in range(total):
        if stored.get(position):
            final[position] = stored[position]
        elif client.get(position):
            final[position] = client[position]
    return final
