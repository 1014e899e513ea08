from datetime import datetime, timedelta, timezone

from notebook_tracker.schemas import StudentSubmissionHistory, SubmissionRecord
from notebook_tracker.utils.defaulter_engine import (
    ConsecutivePattern, SubmissionStats, calculate_submission_stats, describe_history_pattern,
    detect_consecutive_pattern, predict_defaulters, score_default_probability,
)

START = datetime(2026, 1, 5)


def make_records(statuses, student_id="s1", **extra):
    return [
        SubmissionRecord(
            student_id=student_id, subject_id="math", cycle_id=f"c{i}", status=status,
            cycle_start_date=START + timedelta(weeks=i), **extra,
        )
        for i, status in enumerate(statuses)
    ]


def make_history(statuses, student_id="s1", previous=0):
    return StudentSubmissionHistory(
        student_id=student_id, student_name=f"Student {student_id}", scholar_number=f"SCH-{student_id}",
        submissions=make_records(statuses, student_id), previous_missing_count=previous,
    )


def test_stats_counts_and_rate():
    stats = calculate_submission_stats(make_records(["submitted", "returned", "missing", "missing"]))
    assert stats.total_count == 4
    assert stats.submitted_count == 1
    assert stats.returned_count == 1
    assert stats.missing_count == 2
    assert stats.submission_rate == 50.0


def test_stats_empty():
    stats = calculate_submission_stats([])
    assert stats == SubmissionStats()
    assert stats.submission_rate == 0.0


def test_late_requires_due_date():
    due = datetime(2026, 1, 10)
    late = SubmissionRecord(student_id="s", subject_id="x", cycle_id="1", status="submitted",
                            submitted_at=due + timedelta(days=1), due_date=due, cycle_start_date=START)
    no_due = SubmissionRecord(student_id="s", subject_id="x", cycle_id="2", status="submitted",
                              submitted_at=due + timedelta(days=1), cycle_start_date=START)
    on_time = SubmissionRecord(student_id="s", subject_id="x", cycle_id="3", status="returned",
                               submitted_at=due - timedelta(days=1), due_date=due, cycle_start_date=START)
    assert calculate_submission_stats([late, no_due, on_time]).late_count == 1
    assert calculate_submission_stats([no_due]).late_count == 0


def test_pattern_three_consecutive_oldest_first():
    pattern = detect_consecutive_pattern(make_records(["missing", "missing", "missing", "submitted"]))
    assert pattern.has_pattern
    assert pattern.max_consecutive_missing == 3
    assert pattern.trailing_missing_streak == 0
    assert "3 consecutive" in pattern.reason


def test_pattern_sorts_by_cycle_start():
    records = make_records(["missing", "submitted", "missing", "missing"])
    pattern = detect_consecutive_pattern(list(reversed(records)))
    assert pattern.has_pattern
    assert pattern.trailing_missing_streak == 2
    assert pattern.reason.startswith("Currently on a streak of 2")


def test_pattern_two_in_middle_is_not_a_pattern():
    pattern = detect_consecutive_pattern(make_records(["submitted", "missing", "missing", "submitted"]))
    assert pattern == ConsecutivePattern(False, "", 2, 0)


def test_score_is_capped():
    stats = calculate_submission_stats(
        make_records(["missing"] * 10, submitted_at=None)
    )
    pattern = detect_consecutive_pattern(make_records(["missing"] * 10))
    score, reasoning = score_default_probability(stats, pattern, previous_missing_count=20)
    assert score == 100
    assert len(reasoning) == 4


def test_score_monotonic_in_missing_count():
    previous = -1
    for k in range(0, 11):
        records = make_records(["submitted"] * (10 - k) + ["missing"] * k)
        stats = calculate_submission_stats(records)
        score, _ = score_default_probability(stats, detect_consecutive_pattern(records), 1, threshold=2)
        assert score >= previous
        previous = score


def test_score_below_threshold_has_no_missing_reason():
    records = make_records(["submitted"] * 9 + ["missing"])
    stats = calculate_submission_stats(records)
    score, reasoning = score_default_probability(stats, detect_consecutive_pattern(records), 0)
    assert score == 0
    assert reasoning == []


def test_labels_precedence():
    assert describe_history_pattern(SubmissionStats(total_count=2, missing_count=2), True) == "Insufficient data"
    stats = calculate_submission_stats(make_records(["missing"] * 3 + ["submitted"]))
    assert describe_history_pattern(stats, True, 0) == "Recent pattern of consecutive missing submissions"
    assert describe_history_pattern(stats, True, 2).startswith("Consistent pattern")
    assert describe_history_pattern(stats, False) == "Low submission rate overall"
    assert describe_history_pattern(
        SubmissionStats(total_count=4, submitted_count=4, late_count=2, submission_rate=100.0), False
    ) == "Frequently submits late"
    good = calculate_submission_stats(make_records(["submitted"] * 9 + ["missing"]))
    assert describe_history_pattern(good, False) == "Excellent submission record"
    occasional = calculate_submission_stats(make_records(["submitted"] * 3 + ["missing"]))
    assert describe_history_pattern(occasional, False) == "Occasional missing submissions"
    regular = SubmissionStats(total_count=4, submitted_count=3, returned_count=1, submission_rate=75.0)
    assert describe_history_pattern(regular, False) == "Regular submission pattern"
    irregular = calculate_submission_stats(make_records(["submitted"] * 4 + ["missing"] * 3))
    assert describe_history_pattern(irregular, False) == "Irregular submission pattern"


def test_scenario_two_early_misses():
    [p] = predict_defaulters([make_history(["missing", "missing", "submitted", "submitted", "submitted"])], 2)
    assert p.default_probability > 0
    assert p.missing_count == 2
    assert p.history_pattern != "Insufficient data"
    assert any("2 missing submissions" in r for r in p.reasoning)


def test_empty_and_clean_students_are_skipped():
    out = predict_defaulters([
        make_history([], "empty"),
        make_history(["submitted"] * 4, "clean"),
        make_history(["missing", "missing", "missing"], "bad"),
    ])
    assert [p.student_id for p in out] == ["bad"]


def test_output_sorted_descending_and_stable():
    histories = [
        make_history(["submitted", "submitted", "missing", "missing"], "mid"),
        make_history(["missing"] * 5, "worst", previous=5),
        make_history(["submitted", "submitted", "missing", "missing"], "mid2"),
    ]
    out = predict_defaulters(histories)
    assert [p.student_id for p in out] == ["worst", "mid", "mid2"]
    for a, b in zip(out, out[1:]):
        assert a.default_probability >= b.default_probability
    assert out[0].default_probability <= 100


def test_inputs_not_mutated():
    history = make_history(["missing", "submitted", "missing", "missing"])
    order = [r.cycle_id for r in history.submissions]
    predict_defaulters([history])
    assert [r.cycle_id for r in history.submissions] == order


def test_mixed_aware_and_naive_dates():
    aware = SubmissionRecord(student_id="s", subject_id="x", cycle_id="1", status="missing",
                             cycle_start_date=datetime(2026, 1, 5, 5, 30, tzinfo=timezone(timedelta(hours=5, minutes=30))))
    naive = [
        SubmissionRecord(student_id="s", subject_id="x", cycle_id=str(i), status="missing",
                         cycle_start_date=START + timedelta(weeks=i))
        for i in (1, 2)
    ]
    late = SubmissionRecord(student_id="s", subject_id="x", cycle_id="3", status="submitted",
                            submitted_at=datetime(2026, 1, 27, tzinfo=timezone.utc),
                            due_date=datetime(2026, 1, 26), cycle_start_date=START + timedelta(weeks=3))
    assert aware.cycle_start_date == datetime(2026, 1, 5)
    assert aware.cycle_start_date.tzinfo is None

    records = [late, naive[1], aware, naive[0]]
    assert calculate_submission_stats(records).late_count == 1
    pattern = detect_consecutive_pattern(records)
    assert pattern.max_consecutive_missing == 3
    [p] = predict_defaulters([StudentSubmissionHistory(
        student_id="s", student_name="S", scholar_number="1", submissions=records)])
    assert p.missing_count == 3


def test_low_rate_reason_never_shows_cutoff():
    records = make_records(["submitted"] * 23 + ["missing"] * 10)
    stats = calculate_submission_stats(records)
    assert 69.5 < stats.submission_rate < 70
    _, reasoning = score_default_probability(stats, detect_consecutive_pattern(records), 0)
    assert "Low submission rate (69%)." in reasoning
