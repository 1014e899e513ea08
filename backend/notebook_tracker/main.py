import io
import logging
from datetime import datetime, timedelta
import pandas as pd
from fastapi import FastAPI, UploadFile, File, Depends, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from typing import List, Optional

from .config import get_settings
from .schemas import (
    DefaulterPrediction, PredictRequest, StudentCreate, StudentOut, CycleCreate, CycleOut,
    SubmissionUpdate, SubmissionOut, SubmissionStatus, TemplateIn, TemplateOut,
    NotificationOut, NotifyResponse, HealthResponse
)
from .utils.defaulter_engine import predict_defaulters
from .utils.history import build_class_histories, histories_from_frame
from .utils.notifications import send_defaulter_notifications, send_missing_submission_notifications
from .utils.sms import SmsSender
from .utils.templates import initialize_default_templates, upsert_template
from .database import SessionLocal, init_db
from .models_db import Student, SubmissionCycle, Submission, NotificationTemplate, NotificationHistory, PredictionLog

settings = get_settings()

# ---------------- logging ----------------
logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(message)s")
log = logging.getLogger("notebook-api")

app = FastAPI(title=settings.APP_NAME, version=settings.APP_VERSION)
app.add_middleware(
    CORSMiddleware, allow_origins=["*"], allow_credentials=True, allow_methods=["*"], allow_headers=["*"]
)

# --------------- Dependencies ---------------
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

sms_sender = SmsSender.from_settings(settings)

def get_sms_sender() -> SmsSender:
    return sms_sender

def require_role(*roles: str):
    def checker(x_api_key: Optional[str] = Header(None)) -> str:
        role = get_settings().API_KEYS.get(x_api_key) if x_api_key else None
        if role is None:
            raise HTTPException(401, detail="invalid or missing API key")
        if role not in roles:
            raise HTTPException(403, detail=f"role '{role}' not allowed")
        return role
    return checker

staff = require_role("admin", "teacher")
admin_only = require_role("admin")

# --------------- Bootstrap: DB + templates ---------------
init_db()
with SessionLocal() as _db:
    initialize_default_templates(_db)
if not settings.API_KEYS:
    log.warning("no API_KEYS configured; every protected route will return 401")

def _threshold(value: Optional[int]) -> int:
    return settings.DEFAULTER_THRESHOLD if value is None else value

def _class_predictions(db: Session, class_id: str, threshold: int) -> List[DefaulterPrediction]:
    now = datetime.utcnow()
    window_start = now - timedelta(days=settings.HISTORY_WINDOW_DAYS)
    histories = build_class_histories(db, class_id, window_start, now)
    return predict_defaulters(histories, threshold)

@app.get("/health", response_model=HealthResponse)
def health(sender: SmsSender = Depends(get_sms_sender)):
    return HealthResponse(status="ok", version=settings.APP_VERSION, sms_enabled=sender.is_ready())

# --------------- Predict (JSON) ----------------
@app.post("/predictions", response_model=List[DefaulterPrediction], dependencies=[Depends(staff)])
def predictions(req: PredictRequest):
    return predict_defaulters(req.histories, _threshold(req.threshold))

# --------------- Predict (CSV upload) ----------------
@app.post("/predictions_csv", response_model=List[DefaulterPrediction], dependencies=[Depends(staff)])
async def predictions_csv(file: UploadFile = File(...), threshold: Optional[int] = Query(None)):
    content = await file.read()
    try:
        df = pd.read_csv(io.BytesIO(content))
        histories = histories_from_frame(df)
    except ValueError as e:
        raise HTTPException(400, detail=str(e))
    return predict_defaulters(histories, _threshold(threshold))

# --------------- Class defaulters (DB) ----------------
@app.get("/classes/{class_id}/defaulters", response_model=List[DefaulterPrediction], dependencies=[Depends(staff)])
def class_defaulters(class_id: str, threshold: Optional[int] = Query(None), db: Session = Depends(get_db)):
    preds = _class_predictions(db, class_id, _threshold(threshold))

    # optional logging
    for p in preds:
        try:
            db.add(PredictionLog(
                student_id=p.student_id, class_id=class_id, default_probability=p.default_probability,
                missing_count=p.missing_count, history_pattern=p.history_pattern, reasoning=p.reasoning
            ))
        except Exception as e:
            log.warning(f"log insert failed: {e}")
    db.commit()
    return preds

@app.post("/classes/{class_id}/notify_defaulters", response_model=NotifyResponse, dependencies=[Depends(admin_only)])
def notify_defaulters(class_id: str, threshold: Optional[int] = Query(None), db: Session = Depends(get_db),
                      sender: SmsSender = Depends(get_sms_sender)):
    preds = _class_predictions(db, class_id, _threshold(threshold))
    sent = send_defaulter_notifications(db, sender, preds, settings.NOTIFY_MIN_PROBABILITY)
    candidates = sum(1 for p in preds if p.default_probability > settings.NOTIFY_MIN_PROBABILITY)
    log.info(f"defaulter alerts for class {class_id}: {sent}/{candidates} sent")
    return NotifyResponse(sent=sent, candidates=candidates)

@app.post("/cycles/{cycle_id}/notify_missing", response_model=NotifyResponse, dependencies=[Depends(staff)])
def notify_missing(cycle_id: int, db: Session = Depends(get_db), sender: SmsSender = Depends(get_sms_sender)):
    if db.get(SubmissionCycle, cycle_id) is None:
        raise HTTPException(404, detail="cycle not found")
    candidates = len(db.execute(select(Submission.id).where(
        Submission.cycle_id == cycle_id,
        Submission.status == SubmissionStatus.missing.value,
        Submission.notification_sent.is_(False),
    )).all())
    sent = send_missing_submission_notifications(db, sender, cycle_id)
    return NotifyResponse(sent=sent, candidates=candidates)

# --------------- Students / cycles / submissions ---------------
@app.post("/students", response_model=StudentOut, status_code=201, dependencies=[Depends(admin_only)])
def create_student(payload: StudentCreate, db: Session = Depends(get_db)):
    s = Student(**payload.model_dump())
    db.add(s)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(400, detail="Student with this scholar number already exists")
    db.refresh(s)
    return s

@app.get("/classes/{class_id}/students", response_model=List[StudentOut], dependencies=[Depends(staff)])
def list_students(class_id: str, db: Session = Depends(get_db)):
    return db.execute(
        select(Student).where(Student.class_id == class_id).order_by(Student.scholar_number)
    ).scalars().all()

@app.post("/cycles", response_model=CycleOut, status_code=201, dependencies=[Depends(admin_only)])
def create_cycle(payload: CycleCreate, db: Session = Depends(get_db)):
    c = SubmissionCycle(**payload.model_dump())
    db.add(c); db.commit(); db.refresh(c)
    return c

@app.put("/submissions", response_model=SubmissionOut, dependencies=[Depends(staff)])
def mark_submission(payload: SubmissionUpdate, db: Session = Depends(get_db)):
    student = db.get(Student, payload.student_id)
    if student is None:
        raise HTTPException(404, detail="student not found")
    cycle = db.get(SubmissionCycle, payload.cycle_id)
    if cycle is None:
        raise HTTPException(404, detail="cycle not found")

    sub = db.execute(select(Submission).where(
        Submission.student_id == student.id, Submission.cycle_id == cycle.id
    )).scalars().first()
    if sub is None:
        sub = Submission(student_id=student.id, cycle_id=cycle.id, subject_id=cycle.subject_id)
        db.add(sub)

    now = datetime.utcnow()
    sub.status = payload.status.value
    if payload.status == SubmissionStatus.missing:
        sub.submitted_at = None
        sub.returned_at = None
    else:
        sub.submitted_at = payload.submitted_at or sub.submitted_at or now
        if payload.status == SubmissionStatus.returned:
            sub.returned_at = payload.returned_at or sub.returned_at or now
        else:
            sub.returned_at = None
    db.commit(); db.refresh(sub)
    return sub

@app.get("/students/{student_id}/submissions", response_model=List[SubmissionOut], dependencies=[Depends(staff)])
def student_submissions(student_id: int, db: Session = Depends(get_db)):
    if db.get(Student, student_id) is None:
        raise HTTPException(404, detail="student not found")
    return db.execute(
        select(Submission).join(SubmissionCycle).where(Submission.student_id == student_id)
        .order_by(SubmissionCycle.start_date.desc())
    ).scalars().all()

# --------------- Notification templates / history ---------------
@app.get("/notification_templates", response_model=List[TemplateOut], dependencies=[Depends(staff)])
def list_templates(db: Session = Depends(get_db)):
    return db.execute(select(NotificationTemplate).order_by(NotificationTemplate.id)).scalars().all()

@app.put("/notification_templates", response_model=TemplateOut, dependencies=[Depends(admin_only)])
def save_template(payload: TemplateIn, db: Session = Depends(get_db)):
    try:
        return upsert_template(db, **payload.model_dump())
    except ValueError as e:
        raise HTTPException(400, detail=str(e))

@app.get("/students/{student_id}/notifications", response_model=List[NotificationOut], dependencies=[Depends(staff)])
def student_notifications(student_id: int, db: Session = Depends(get_db)):
    if db.get(Student, student_id) is None:
        raise HTTPException(404, detail="student not found")
    return db.execute(
        select(NotificationHistory).where(NotificationHistory.student_id == student_id)
        .order_by(NotificationHistory.id.desc())
    ).scalars().all()
