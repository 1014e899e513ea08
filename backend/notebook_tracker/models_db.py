from sqlalchemy import Column, Integer, String, Float, JSON, DateTime, Boolean, Text, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from .database import Base

class Student(Base):
    __tablename__ = "students"
    id = Column(Integer, primary_key=True, index=True)
    scholar_number = Column(String, unique=True, index=True, nullable=False)
    full_name = Column(String, nullable=False)
    class_id = Column(String, index=True, nullable=False)
    parent_name = Column(String, default="")
    parent_phone = Column(String, nullable=True)
    parent_email = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    submissions = relationship("Submission", back_populates="student")

class SubmissionCycle(Base):
    __tablename__ = "submission_cycles"
    id = Column(Integer, primary_key=True, index=True)
    class_id = Column(String, index=True, nullable=False)
    subject_id = Column(String, index=True, nullable=False)
    subject_name = Column(String, default="")
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=True)     # due date for the notebook
    is_completed = Column(Boolean, default=False)

    submissions = relationship("Submission", back_populates="cycle")

class Submission(Base):
    __tablename__ = "submissions"
    __table_args__ = (UniqueConstraint("student_id", "cycle_id", name="uq_submission_student_cycle"),)
    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, ForeignKey("students.id"), index=True, nullable=False)
    cycle_id = Column(Integer, ForeignKey("submission_cycles.id"), index=True, nullable=False)
    subject_id = Column(String, index=True, nullable=False)
    status = Column(String, nullable=False)   # submitted | returned | missing
    submitted_at = Column(DateTime, nullable=True)
    returned_at = Column(DateTime, nullable=True)
    notification_sent = Column(Boolean, default=False)
    notification_sent_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    student = relationship("Student", back_populates="submissions")
    cycle = relationship("SubmissionCycle", back_populates="submissions")

class NotificationTemplate(Base):
    __tablename__ = "notification_templates"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    type = Column(String, unique=True, index=True, nullable=False)   # submission_reminder | missing_submission | defaulter_alert
    subject = Column(String, default="")
    template = Column(Text, nullable=False)
    is_default = Column(Boolean, default=False)

class NotificationHistory(Base):
    __tablename__ = "notification_history"
    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(Integer, index=True)
    submission_id = Column(Integer, nullable=True)
    sent = Column(Boolean, default=False)
    message_type = Column(String)        # sms | email
    message_content = Column(Text)
    recipient_number = Column(String, nullable=True)
    recipient_email = Column(String, nullable=True)
    status = Column(String)              # delivered | failed | pending
    error_message = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

class PredictionLog(Base):
    __tablename__ = "prediction_logs"
    id = Column(Integer, primary_key=True, index=True)
    student_id = Column(String, index=True)
    class_id = Column(String, index=True)
    default_probability = Column(Float)
    missing_count = Column(Integer)
    history_pattern = Column(String)
    reasoning = Column(JSON)       # list of explanation strings
    created_at = Column(DateTime(timezone=True), server_default=func.now())
