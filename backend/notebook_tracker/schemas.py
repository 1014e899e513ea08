from datetime import datetime, timezone
from enum import Enum
from pydantic import BaseModel, Field, field_validator
from typing import List, Dict, Optional, Union

class SubmissionStatus(str, Enum):
    submitted = "submitted"
    returned = "returned"     # handed back after being submitted
    missing = "missing"

# ---------------- engine inputs / outputs ----------------
class SubmissionRecord(BaseModel):
    student_id: str
    subject_id: str
    cycle_id: str
    status: SubmissionStatus
    submitted_at: Optional[datetime] = None
    returned_at: Optional[datetime] = None
    due_date: Optional[datetime] = None
    cycle_start_date: datetime

    @field_validator("submitted_at", "returned_at", "due_date", "cycle_start_date")
    @classmethod
    def to_naive_utc(cls, v):
        # aware values are converted to naive UTC so records compare with each other
        if v is not None and v.tzinfo is not None:
            return v.astimezone(timezone.utc).replace(tzinfo=None)
        return v

class StudentSubmissionHistory(BaseModel):
    student_id: str
    student_name: str
    scholar_number: str
    submissions: List[SubmissionRecord] = []
    previous_missing_count: int = 0   # misses from completed cycles before the window

class DefaulterPrediction(BaseModel):
    student_id: str
    student_name: str
    scholar_number: str
    default_probability: int = Field(ge=0, le=100)
    missing_count: int
    history_pattern: str
    reasoning: List[str]

class PredictRequest(BaseModel):
    histories: List[StudentSubmissionHistory]
    threshold: Optional[int] = None   # if None, uses config.DEFAULTER_THRESHOLD

# ---------------- students / cycles / submissions ----------------
class StudentCreate(BaseModel):
    scholar_number: str
    full_name: str
    class_id: str
    parent_name: str = ""
    parent_phone: Optional[str] = None
    parent_email: Optional[str] = None

class StudentOut(StudentCreate):
    id: int

    class Config:
        from_attributes = True

class CycleCreate(BaseModel):
    class_id: str
    subject_id: str
    subject_name: str = ""
    start_date: datetime
    end_date: Optional[datetime] = None
    is_completed: bool = False

class CycleOut(CycleCreate):
    id: int

    class Config:
        from_attributes = True

class SubmissionUpdate(BaseModel):
    student_id: int
    cycle_id: int
    status: SubmissionStatus
    # stamped with the current time when omitted for submitted/returned
    submitted_at: Optional[datetime] = None
    returned_at: Optional[datetime] = None

class SubmissionOut(BaseModel):
    id: int
    student_id: int
    cycle_id: int
    subject_id: str
    status: SubmissionStatus
    submitted_at: Optional[datetime]
    returned_at: Optional[datetime]
    notification_sent: bool

    class Config:
        from_attributes = True

# ---------------- notifications ----------------
class TemplateIn(BaseModel):
    name: str
    type: str = Field(pattern="^(submission_reminder|missing_submission|defaulter_alert)$")
    subject: str = ""
    template: str

class TemplateOut(TemplateIn):
    id: int
    is_default: bool

    class Config:
        from_attributes = True

class NotificationOut(BaseModel):
    id: int
    student_id: int
    submission_id: Optional[int]
    sent: bool
    message_type: str
    message_content: str
    recipient_number: Optional[str]
    recipient_email: Optional[str]
    status: str
    error_message: Optional[str]
    created_at: Optional[datetime]

    class Config:
        from_attributes = True

class NotifyResponse(BaseModel):
    sent: int
    candidates: int

class HealthResponse(BaseModel):
    status: str
    version: str
    sms_enabled: bool

# placeholder name -> value for notification templates
TemplateVars = Dict[str, Union[str, int]]
