"""Per-attempt selection of the questions a student sees."""
import logging
import random
from typing import List, Optional

logger = logging.getLogger(__name__)


def select_question_indices(
    pool_size: int,
    questions_to_show: Optional[int],
    rng: Optional[random.Random] = None,
) -> List[int]:
    """Pick the ordered pool positions for one attempt.

    When every question is shown the identity sequence is returned as is.
    Otherwise the full index range is Fisher-Yates shuffled and the first
    ``questions_to_show`` entries are kept in shuffle order, which is also
    the display order for the attempt.
    """
    if not questions_to_show or questions_to_show >= pool_size:
        indices = list(range(pool_size))
    else:
        rng = rng or random.SystemRandom()
        indices = list(range(pool_size))
        for i in range(len(indices) - 1, 0, -1):
            j = rng.randint(0, i)
            indices[i], indices[j] = indices[j], indices[i]
        indices = indices[:questions_to_show]

    if not indices:
        logger.warning(
            "Question selection came back empty (pool=%s, show=%s); using sequential indices",
            pool_size,
            questions_to_show,
        )
        indices = sequential_indices(questions_to_show or pool_size)
    return indices


def sequential_indices(count: int) -> List[int]:
    return list(range(max(count, 0)))
