"""Rating Math: score validation and O(1) running averages.

Invariants:
    - Scores are integers in [MIN_SCORE, MAX_SCORE]
    - Averages come from the raw (sum, count) pair; display rounding never feeds back
    - display_average rounds half-up to one decimal (4.25 -> 4.3, not banker's 4.2)
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from karmafarm.core.errors import ErrorContext, InvalidScoreError

MIN_SCORE: int = 1
MAX_SCORE: int = 5


def check_score(score: int, context: ErrorContext | None = None) -> InvalidScoreError | None:
    if isinstance(score, bool) or not isinstance(score, int):
        return InvalidScoreError(score, context)
    if score < MIN_SCORE or score > MAX_SCORE:
        return InvalidScoreError(score, context)
    return None


@dataclass(frozen=True)
class RatingSummary:
    """Running totals for one ratee."""
    score_sum: int = 0
    rating_count: int = 0

    @property
    def average(self) -> float | None:
        if self.rating_count == 0:
            return None
        return self.score_sum / self.rating_count

    @property
    def display_average(self) -> float | None:
        if self.rating_count == 0:
            return None
        raw = Decimal(self.score_sum) / Decimal(self.rating_count)
        return float(raw.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))
