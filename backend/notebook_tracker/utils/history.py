"""
Builds StudentSubmissionHistory objects for the defaulter engine, either from
the database or from an uploaded CSV frame.
"""
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional

import pandas as pd
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models_db import Student, Submission, SubmissionCycle
from ..schemas import StudentSubmissionHistory, SubmissionRecord, SubmissionStatus

REQUIRED_COLUMNS = [
    "student_id", "student_name", "scholar_number",
    "subject_id", "cycle_id", "status", "cycle_start_date",
]
DATE_COLUMNS = ["submitted_at", "returned_at", "due_date", "cycle_start_date"]


def _cycle_completed(cycle: SubmissionCycle, now: datetime) -> bool:
    return bool(cycle.is_completed) or (cycle.end_date is not None and cycle.end_date < now)


def build_class_histories(
    db: Session, class_id: str, window_start: datetime, now: Optional[datetime] = None
) -> List[StudentSubmissionHistory]:
    """One history per student in the class.

    Cycles starting on/after ``window_start`` feed the submissions list; missing
    notebooks from earlier, completed cycles only bump ``previous_missing_count``.
    """
    now = now or datetime.utcnow()
    students = db.execute(
        select(Student).where(Student.class_id == class_id).order_by(Student.scholar_number)
    ).scalars().all()

    rows = db.execute(
        select(Submission, SubmissionCycle)
        .join(SubmissionCycle, Submission.cycle_id == SubmissionCycle.id)
        .join(Student, Submission.student_id == Student.id)
        .where(Student.class_id == class_id)
    ).all()

    records: Dict[int, List[SubmissionRecord]] = defaultdict(list)
    previous: Dict[int, int] = defaultdict(int)
    for sub, cycle in rows:
        if cycle.start_date >= window_start:
            records[sub.student_id].append(SubmissionRecord(
                student_id=str(sub.student_id),
                subject_id=sub.subject_id,
                cycle_id=str(cycle.id),
                status=SubmissionStatus(sub.status),
                submitted_at=sub.submitted_at,
                returned_at=sub.returned_at,
                due_date=cycle.end_date,
                cycle_start_date=cycle.start_date,
            ))
        elif sub.status == SubmissionStatus.missing.value and _cycle_completed(cycle, now):
            previous[sub.student_id] += 1

    return [
        StudentSubmissionHistory(
            student_id=str(s.id),
            student_name=s.full_name,
            scholar_number=s.scholar_number,
            submissions=records.get(s.id, []),
            previous_missing_count=previous.get(s.id, 0),
        )
        for s in students
    ]


def _to_datetime(value) -> Optional[datetime]:
    if value is None or pd.isna(value):
        return None
    return value.to_pydatetime()


def histories_from_frame(df: pd.DataFrame) -> List[StudentSubmissionHistory]:
    """Groups a flat submissions frame (one row per record) by student."""
    missing = [c for c in REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"missing columns: {missing}")

    df = df.copy()
    for col in DATE_COLUMNS:
        if col in df.columns:
            df[col] = pd.to_datetime(df[col], errors="coerce", utc=True)
    for col in ("student_id", "subject_id", "cycle_id", "scholar_number"):
        df[col] = df[col].astype(str)
    df["status"] = df["status"].astype(str).str.strip().str.lower()

    histories = []
    for student_id, group in df.groupby("student_id", sort=False):
        first = group.iloc[0]
        prev = 0
        if "previous_missing_count" in group.columns:
            prev = int(pd.to_numeric(group["previous_missing_count"], errors="coerce").fillna(0).max())
        submissions = []
        for _, row in group.iterrows():
            start = _to_datetime(row["cycle_start_date"])
            if start is None:
                continue
            submissions.append(SubmissionRecord(
                student_id=student_id,
                subject_id=row["subject_id"],
                cycle_id=row["cycle_id"],
                status=SubmissionStatus(row["status"]),
                submitted_at=_to_datetime(row.get("submitted_at")),
                returned_at=_to_datetime(row.get("returned_at")),
                due_date=_to_datetime(row.get("due_date")),
                cycle_start_date=start,
            ))
        histories.append(StudentSubmissionHistory(
            student_id=student_id,
            student_name=str(first["student_name"]),
            scholar_number=first["scholar_number"],
            submissions=submissions,
            previous_missing_count=prev,
        ))
    return histories
