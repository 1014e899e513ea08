"""
Parent-notification message templates.

Templates use ``{{placeholder}}`` names (studentName, scholarNumber, parentName,
subjectName, dueDate, status, missingCount, historyPattern, defaultProbability)
and are rendered with a sandboxed Jinja2 environment. A placeholder with no
value, dotted or not, is left as-is.
"""
import logging
from typing import Optional

from jinja2 import TemplateError, TemplateSyntaxError, Undefined
from jinja2.sandbox import SandboxedEnvironment
from jinja2.utils import missing
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models_db import NotificationTemplate
from ..schemas import TemplateVars

log = logging.getLogger("notebook-api.templates")


class _KeepPlaceholder(Undefined):
    __slots__ = ()

    def _is_placeholder(self) -> bool:
        return self._undefined_obj is missing and self._undefined_hint is None \
            and self._undefined_name is not None

    def __getattr__(self, name):
        if name[:2] == "__" or not self._is_placeholder():
            return super().__getattr__(name)
        return type(self)(name=f"{self._undefined_name}.{name}")

    def __str__(self):
        if self._undefined_hint is not None:
            return self._fail_with_undefined_error()
        if not self._is_placeholder():
            return ""
        return "{{%s}}" % self._undefined_name


_env = SandboxedEnvironment(undefined=_KeepPlaceholder, autoescape=False, keep_trailing_newline=True)


def validate_template(template: str) -> None:
    """Raises ValueError when the template text does not parse."""
    try:
        _env.parse(template)
    except TemplateSyntaxError as e:
        raise ValueError(f"invalid template syntax (line {e.lineno}): {e.message}") from e


def render_message(template: str, variables: TemplateVars) -> str:
    try:
        return _env.from_string(template).render(**variables)
    except TemplateError as e:
        raise ValueError(f"template could not be rendered: {e}") from e


DEFAULT_TEMPLATES = [
    {
        "name": "Submission Reminder",
        "type": "submission_reminder",
        "subject": "Reminder: Notebook Submission Due",
        "template": (
            "Dear {{parentName}},\n\n"
            "We would like to remind you that {{studentName}}'s {{subjectName}} notebook "
            "submission is due on {{dueDate}}.\n\n"
            "Please ensure that the notebook is submitted on time.\n\n"
            "Regards,\nThe School Administration"
        ),
    },
    {
        "name": "Missing Submission",
        "type": "missing_submission",
        "subject": "Missing Notebook Submission",
        "template": (
            "Dear {{parentName}},\n\n"
            "This is to inform you that {{studentName}} has not submitted their {{subjectName}} "
            "notebook which was due on {{dueDate}}.\n\n"
            "Please ensure that the notebook is submitted as soon as possible.\n\n"
            "Regards,\nThe School Administration"
        ),
    },
    {
        "name": "Potential Defaulter Alert",
        "type": "defaulter_alert",
        "subject": "Important: Consistent Missing Submissions",
        "template": (
            "Dear {{parentName}},\n\n"
            "We are concerned to note that {{studentName}} has consistently failed to submit "
            "notebooks on time.\n\n"
            "Missing submissions: {{missingCount}}\n"
            "Recent pattern: {{historyPattern}}\n\n"
            "Please address this issue urgently and ensure timely submissions going forward.\n\n"
            "Regards,\nThe School Administration"
        ),
    },
]


def get_template(db: Session, template_type: str) -> Optional[NotificationTemplate]:
    return db.execute(
        select(NotificationTemplate).where(NotificationTemplate.type == template_type)
    ).scalars().first()


def upsert_template(db: Session, name: str, type: str, subject: str, template: str,
                    is_default: bool = False) -> NotificationTemplate:
    validate_template(template)
    row = get_template(db, type)
    if row is None:
        row = NotificationTemplate(type=type, is_default=is_default)
        db.add(row)
    row.name = name
    row.subject = subject
    row.template = template
    db.commit()
    db.refresh(row)
    return row


def initialize_default_templates(db: Session) -> None:
    for t in DEFAULT_TEMPLATES:
        if get_template(db, t["type"]) is None:
            upsert_template(db, is_default=True, **t)
            log.info(f"created default template: {t['type']}")
