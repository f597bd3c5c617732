"""
Compatibility Scoring Engine

Pure, deterministic scoring of a candidate travel plan against the
caller's own (reference) plan. No storage, no side effects.

Scoring:
- Destination contributes 0..50 (same place 50, same region 30)
- Date overlap contributes 0..25, relative to the reference plan's length
- Group size contributes 0..15 (diff 0 -> 15, 1 -> 10, 2 -> 5)
- Shared style tags contribute 5 each, up to 15
- Final score clamped to 0..100

The date term is reference-relative, so score(a, b) != score(b, a) in general.
"""

from dataclasses import dataclass, asdict
from datetime import date
from typing import Optional

from travelmate.core.errors import ValidationError
from travelmate.features.matching.regions import RegionAffinity, default_region_affinity
from travelmate.models.plan import TravelPlanSnapshot


@dataclass(frozen=True)
class ScoreBreakdown:
    """Per-factor contributions behind a compatibility score."""

    destination: int = 0
    dates: int = 0
    group_size: int = 0
    styles: int = 0
    overlap_days: int = 0

    def total(self) -> int:
        return self.destination + self.dates + self.group_size + self.styles

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class CompatibilityScore:
    score: int
    breakdown: ScoreBreakdown


class CompatibilityScorer:
    """Weighted, rule-based plan compatibility."""

    DESTINATION_MAX = 50
    REGION_PARTIAL = 30
    DATES_MAX = 25
    GROUP_SIZE_TIERS = (15, 10, 5)  # indexed by absolute size difference
    STYLE_PER_TAG = 5
    STYLES_MAX = 15

    def __init__(self, regions: Optional[RegionAffinity] = None):
        self.regions = regions or default_region_affinity

    def score(self, reference: TravelPlanSnapshot, candidate: TravelPlanSnapshot) -> CompatibilityScore:
        """
        Score candidate against reference.

        Raises:
            ValidationError: either plan has a missing or inverted date range
        """
        self.check_dates(reference)
        self.check_dates(candidate)

        overlap = overlapping_days(
            reference.start_date, reference.end_date,
            candidate.start_date, candidate.end_date,
        )
        breakdown = ScoreBreakdown(
            destination=self._score_destination(reference.destination, candidate.destination),
            dates=self._score_dates(overlap, reference.duration_days),
            group_size=self._score_group_size(reference.target_size, candidate.target_size),
            styles=self._score_styles(reference.style_tags, candidate.style_tags),
            overlap_days=overlap,
        )
        total = max(0, min(100, breakdown.total()))
        return CompatibilityScore(score=total, breakdown=breakdown)

    @staticmethod
    def check_dates(plan: TravelPlanSnapshot) -> None:
        if plan.start_date is None or plan.end_date is None:
            raise ValidationError(f"Plan {plan.plan_id} has no date range")
        if plan.start_date > plan.end_date:
            raise ValidationError(
                f"Plan {plan.plan_id} starts after it ends ({plan.start_date} > {plan.end_date})"
            )

    def _score_destination(self, mine: str, theirs: str) -> int:
        a = (mine or "").strip()
        b = (theirs or "").strip()
        if not a or not b:
            return 0
        a_folded, b_folded = a.casefold(), b.casefold()
        if a_folded == b_folded or a_folded in b_folded or b_folded in a_folded:
            return self.DESTINATION_MAX
        if self.regions.same_region(a, b):
            return self.REGION_PARTIAL
        return 0

    @staticmethod
    def _score_dates(overlap: int, reference_days: int) -> int:
        """Overlap ratio against the reference plan's own duration, 0..25."""
        if overlap <= 0 or reference_days <= 0:
            return 0
        ratio = min(1.0, overlap / reference_days)
        return int(ratio * CompatibilityScorer.DATES_MAX)

    @staticmethod
    def _score_group_size(mine: int, theirs: int) -> int:
        diff = abs(mine - theirs)
        tiers = CompatibilityScorer.GROUP_SIZE_TIERS
        return tiers[diff] if diff < len(tiers) else 0

    @staticmethod
    def _score_styles(mine, theirs) -> int:
        if not mine or not theirs:
            return 0
        shared = {t.casefold() for t in mine} & {t.casefold() for t in theirs}
        return min(len(shared) * CompatibilityScorer.STYLE_PER_TAG, CompatibilityScorer.STYLES_MAX)


def overlapping_days(a_start: date, a_end: date, b_start: date, b_end: date) -> int:
    """Inclusive day count shared by two date ranges; 0 when disjoint."""
    start = max(a_start, b_start)
    end = min(a_end, b_end)
    return max(0, (end - start).days + 1)
