"""
Parent notifications: renders a stored template for a student, sends it over
SMS (or records a pending email) and keeps a NotificationHistory row per attempt.
"""
import logging
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models_db import NotificationHistory, Student, Submission, SubmissionCycle
from ..schemas import DefaulterPrediction, SubmissionStatus, TemplateVars
from .sms import SmsSender
from .templates import get_template, render_message

log = logging.getLogger("notebook-api.notifications")


def _message_variables(db: Session, student: Student, submission: Optional[Submission],
                       extra: Optional[TemplateVars]) -> TemplateVars:
    variables: TemplateVars = {
        "studentName": student.full_name,
        "scholarNumber": student.scholar_number,
        "parentName": student.parent_name or "Parent",
    }
    if submission is not None:
        cycle = db.get(SubmissionCycle, submission.cycle_id)
        if cycle is not None:
            variables["subjectName"] = cycle.subject_name or cycle.subject_id
            variables["dueDate"] = (
                cycle.end_date.strftime("%d %b %Y") if cycle.end_date else "as soon as possible"
            )
        variables["status"] = submission.status
    variables.update(extra or {})
    return variables


def send_notification(db: Session, sender: SmsSender, student_id: int, template_type: str,
                      submission_id: Optional[int] = None,
                      extra: Optional[TemplateVars] = None) -> bool:
    """True only when an SMS was actually delivered to the parent."""
    student = db.get(Student, student_id)
    if student is None:
        log.warning(f"notification skipped, student not found: {student_id}")
        return False
    template = get_template(db, template_type)
    if template is None:
        log.warning(f"notification skipped, template not found: {template_type}")
        return False
    submission = db.get(Submission, submission_id) if submission_id is not None else None

    try:
        content = render_message(template.template, _message_variables(db, student, submission, extra))
    except ValueError as e:
        log.warning(f"notification skipped, template {template_type} failed: {e}")
        return False

    if student.parent_phone:
        body = f"{template.subject}\n\n{content}" if template.subject else content
        result = sender.send(student.parent_phone, body)
        db.add(NotificationHistory(
            student_id=student.id, submission_id=submission_id, sent=result.success,
            message_type="sms", message_content=content, recipient_number=student.parent_phone,
            status="delivered" if result.success else "failed", error_message=result.error,
        ))
        db.commit()
        return result.success

    if student.parent_email:
        log.info(f"email delivery not available, recording pending notification for {student.parent_email}")
        db.add(NotificationHistory(
            student_id=student.id, submission_id=submission_id, sent=False,
            message_type="email", message_content=content, recipient_email=student.parent_email,
            status="pending", error_message="Email sending not implemented",
        ))
        db.commit()
        return False

    log.warning(f"no contact method for student {student.full_name} ({student.scholar_number})")
    return False


def send_missing_submission_notifications(db: Session, sender: SmsSender, cycle_id: int) -> int:
    pending = db.execute(
        select(Submission).where(
            Submission.cycle_id == cycle_id,
            Submission.status == SubmissionStatus.missing.value,
            Submission.notification_sent.is_(False),
        )
    ).scalars().all()

    count = 0
    for sub in pending:
        if send_notification(db, sender, sub.student_id, "missing_submission", submission_id=sub.id):
            sub.notification_sent = True
            sub.notification_sent_at = datetime.utcnow()
            db.commit()
            count += 1
    return count


def send_defaulter_notifications(db: Session, sender: SmsSender,
                                 predictions: Iterable[DefaulterPrediction],
                                 min_probability: int) -> int:
    count = 0
    for p in predictions:
        if p.default_probability <= min_probability:
            continue
        ok = send_notification(db, sender, int(p.student_id), "defaulter_alert", extra={
            "missingCount": p.missing_count,
            "historyPattern": p.history_pattern,
            "defaultProbability": f"{p.default_probability}%",
        })
        if ok:
            count += 1
    return count
