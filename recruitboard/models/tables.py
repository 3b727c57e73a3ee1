from sqlalchemy import Column, String, Float, Integer, DateTime, JSON, ForeignKey, UniqueConstraint
from datetime import datetime
from recruitboard.db.base import Base


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String, primary_key=True, index=True)
    name = Column(String, nullable=False)
    username = Column(String, nullable=False, index=True)
    email = Column(String, nullable=False, default="")
    role = Column(String, nullable=False, default="participant")  # participant, mentor, admin
    mentor_id = Column(String, ForeignKey("profiles.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ScoringMetric(Base):
    __tablename__ = "scoring_metrics"

    id = Column(String, primary_key=True, index=True)
    name = Column(String, nullable=False, unique=True)
    description = Column(String, nullable=False, default="")
    max_points = Column(Integer, nullable=False, default=100)
    created_at = Column(DateTime, default=datetime.utcnow)


class Task(Base):
    __tablename__ = "tasks"

    id = Column(String, primary_key=True, index=True)
    title = Column(String, nullable=False)
    description = Column(String, nullable=False, default="")
    due_date = Column(String, nullable=True)
    max_score = Column(Integer, nullable=False, default=100)
    # Either a list of scoring_metrics names or a {name: max_points} mapping
    metrics = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class TaskSubmission(Base):
    __tablename__ = "task_submissions"
    __table_args__ = (UniqueConstraint("participant_id", "task_id", name="uq_task_submissions_participant_task"),)

    id = Column(String, primary_key=True, index=True)  # UUID
    participant_id = Column(String, ForeignKey("profiles.id"), nullable=False, index=True)
    task_id = Column(String, ForeignKey("tasks.id"), nullable=False, index=True)
    scores = Column(JSON, nullable=False, default=dict)
    total_score = Column(Float, nullable=False, default=0)
    status = Column(String, nullable=False, default="pending", index=True)  # pending, graded
    graded_by = Column(String, ForeignKey("profiles.id"), nullable=True)
    graded_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
