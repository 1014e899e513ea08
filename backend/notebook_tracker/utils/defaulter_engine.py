"""
Rule-based defaulter prediction over notebook submission histories.

Scores are additive points on a 0-100 integer scale. Every function here is
pure: inputs are never mutated and nothing is cached between calls.
"""
import math
from dataclasses import dataclass
from typing import Iterable, List, Sequence, Tuple

from ..schemas import (
    DefaulterPrediction, StudentSubmissionHistory, SubmissionRecord, SubmissionStatus
)

MAX_SCORE = 100

MISSING_POINTS_EACH = 10
MISSING_POINTS_CAP = 30
PREVIOUS_POINTS_EACH = 6
PREVIOUS_POINTS_CAP = 30
LOW_RATE_CUTOFF = 70.0
LOW_RATE_POINTS_CAP = 30
PATTERN_POINTS = 20
LATE_POINTS_EACH = 5
LATE_POINTS_CAP = 15

CONSECUTIVE_PATTERN_MIN = 3
TRAILING_STREAK_MIN = 2
MIN_RECORDS_FOR_LABEL = 3


@dataclass(frozen=True)
class SubmissionStats:
    total_count: int = 0
    submitted_count: int = 0
    returned_count: int = 0
    missing_count: int = 0
    late_count: int = 0
    submission_rate: float = 0.0   # percent of non-missing records


@dataclass(frozen=True)
class ConsecutivePattern:
    has_pattern: bool
    reason: str = ""
    max_consecutive_missing: int = 0
    trailing_missing_streak: int = 0


def _is_late(record: SubmissionRecord) -> bool:
    if record.status == SubmissionStatus.missing:
        return False
    if record.submitted_at is None or record.due_date is None:
        return False
    return record.submitted_at > record.due_date


def calculate_submission_stats(submissions: Iterable[SubmissionRecord]) -> SubmissionStats:
    counts = {s: 0 for s in SubmissionStatus}
    late = 0
    for record in submissions:
        counts[record.status] += 1
        if _is_late(record):
            late += 1
    total = sum(counts.values())
    missing = counts[SubmissionStatus.missing]
    rate = (total - missing) / total * 100 if total else 0.0
    return SubmissionStats(
        total_count=total,
        submitted_count=counts[SubmissionStatus.submitted],
        returned_count=counts[SubmissionStatus.returned],
        missing_count=missing,
        late_count=late,
        submission_rate=rate,
    )


def detect_consecutive_pattern(submissions: Sequence[SubmissionRecord]) -> ConsecutivePattern:
    """Looks for unbroken runs of missing notebooks, oldest cycle first."""
    ordered = sorted(submissions, key=lambda r: r.cycle_start_date)
    streak = 0
    longest = 0
    for record in ordered:
        if record.status == SubmissionStatus.missing:
            streak += 1
            longest = max(longest, streak)
        else:
            streak = 0

    if longest >= CONSECUTIVE_PATTERN_MIN:
        return ConsecutivePattern(
            True, f"Found a pattern of {longest} consecutive missing submissions.", longest, streak
        )
    if streak >= TRAILING_STREAK_MIN:
        return ConsecutivePattern(
            True, f"Currently on a streak of {streak} consecutive missing submissions.", longest, streak
        )
    return ConsecutivePattern(False, "", longest, streak)


def score_default_probability(
    stats: SubmissionStats,
    pattern: ConsecutivePattern,
    previous_missing_count: int,
    threshold: int = 2,
) -> Tuple[int, List[str]]:
    """Returns (score, reasoning); one reasoning line per factor that added points."""
    points = 0.0
    reasoning: List[str] = []

    if stats.missing_count >= threshold:
        points += min(stats.missing_count * MISSING_POINTS_EACH, MISSING_POINTS_CAP)
        reasoning.append(
            f"Has {stats.missing_count} missing submissions, at or above the threshold of {threshold}."
        )

    if previous_missing_count > 0:
        points += min(previous_missing_count * PREVIOUS_POINTS_EACH, PREVIOUS_POINTS_CAP)
        reasoning.append(
            f"Has a history of {previous_missing_count} missing submissions from previous cycles."
        )

    if stats.total_count and stats.submission_rate < LOW_RATE_CUTOFF:
        points += LOW_RATE_POINTS_CAP * (LOW_RATE_CUTOFF - stats.submission_rate) / LOW_RATE_CUTOFF
        reasoning.append(f"Low submission rate ({math.floor(stats.submission_rate)}%).")

    if pattern.has_pattern:
        points += PATTERN_POINTS
        reasoning.append(pattern.reason)

    if stats.late_count > 0:
        points += min(stats.late_count * LATE_POINTS_EACH, LATE_POINTS_CAP)
        reasoning.append(f"Submitted late {stats.late_count} time(s).")

    return int(round(min(points, MAX_SCORE))), reasoning


def describe_history_pattern(
    stats: SubmissionStats, has_pattern: bool, previous_missing_count: int = 0
) -> str:
    if stats.total_count < MIN_RECORDS_FOR_LABEL:
        return "Insufficient data"
    if has_pattern:
        if previous_missing_count > 0:
            return "Consistent pattern of missing submissions across multiple cycles"
        return "Recent pattern of consecutive missing submissions"
    if stats.late_count > stats.total_count * 0.25:
        return "Frequently submits late"
    if stats.submission_rate < 50:
        return "Low submission rate overall"
    if stats.submission_rate >= 90:
        return "Excellent submission record"
    if 1 <= stats.missing_count <= 2:
        return "Occasional missing submissions"
    if stats.missing_count == 0:
        return "Regular submission pattern"
    return "Irregular submission pattern"


def predict_student(history: StudentSubmissionHistory, threshold: int = 2):
    """Prediction for one student, or None when there is nothing to flag."""
    if not history.submissions:
        return None
    stats = calculate_submission_stats(history.submissions)
    if stats.missing_count == 0:
        return None
    pattern = detect_consecutive_pattern(history.submissions)
    score, reasoning = score_default_probability(
        stats, pattern, history.previous_missing_count, threshold
    )
    if score <= 0:
        return None
    return DefaulterPrediction(
        student_id=history.student_id,
        student_name=history.student_name,
        scholar_number=history.scholar_number,
        default_probability=score,
        missing_count=stats.missing_count,
        history_pattern=describe_history_pattern(
            stats, pattern.has_pattern, history.previous_missing_count
        ),
        reasoning=reasoning,
    )


def predict_defaulters(
    histories: Iterable[StudentSubmissionHistory], threshold: int = 2
) -> List[DefaulterPrediction]:
    predictions = []
    for history in histories:
        p = predict_student(history, threshold)
        if p is not None:
            predictions.append(p)
    # stable: ties keep input order
    return sorted(predictions, key=lambda p: p.default_probability, reverse=True)
