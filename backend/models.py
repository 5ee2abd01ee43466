# backend/models.py
from flask_sqlalchemy import SQLAlchemy
from datetime import datetime
from flask_login import UserMixin

db = SQLAlchemy()

PRIORITIES = ("high", "medium", "low")


def _iso(value):
    return value.isoformat() if value else None


def _hhmm(value):
    return value.strftime("%H:%M") if value else None


class User(UserMixin, db.Model):
    __tablename__ = "users"
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(80), unique=True, nullable=False)
    email = db.Column(db.String(200), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    first_name = db.Column(db.String(120), nullable=True)
    last_name = db.Column(db.String(120), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    subjects = db.relationship("Subject", backref="user", cascade="all, delete-orphan")
    tasks = db.relationship("Task", backref="user", cascade="all, delete-orphan")
    study_sessions = db.relationship("StudySession", backref="user", cascade="all, delete-orphan")
    records = db.relationship("StudyTimeRecord", backref="user", cascade="all, delete-orphan")
    settings = db.relationship("UserSettings", backref="user", uselist=False, cascade="all, delete-orphan")

    def get_id(self):
        return str(self.id)

    def to_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "firstName": self.first_name or "",
            "lastName": self.last_name or "",
        }


class Subject(db.Model):
    __tablename__ = "subjects"
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    name = db.Column(db.String(120), nullable=False)
    color = db.Column(db.String(30), nullable=False, default="blue")   # UI theme label
    description = db.Column(db.Text, nullable=True)

    __table_args__ = (
        db.UniqueConstraint("user_id", "name", name="uq_subjects_user_name"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "name": self.name,
            "color": self.color,
            "description": self.description or "",
        }


class Task(db.Model):
    __tablename__ = "tasks"
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    subject_id = db.Column(db.Integer, db.ForeignKey("subjects.id"), nullable=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    priority = db.Column(db.String(10), nullable=False, default="medium")
    due_date = db.Column(db.Date, nullable=True)
    estimated_time = db.Column(db.Integer, nullable=True)     # minutes
    completed = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    subject = db.relationship("Subject")

    __table_args__ = (
        db.Index("idx_tasks_user", "user_id"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "subjectId": self.subject_id,
            "title": self.title,
            "description": self.description or "",
            "priority": self.priority,
            "dueDate": _iso(self.due_date),
            "estimatedTime": self.estimated_time,
            "completed": self.completed,
        }


class StudySession(db.Model):
    """
    A scheduled (or already held) block of study time on a given day.
    """
    __tablename__ = "study_sessions"
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    subject_id = db.Column(db.Integer, db.ForeignKey("subjects.id"), nullable=True)
    title = db.Column(db.String(200), nullable=False)
    date = db.Column(db.Date, nullable=False)
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)
    description = db.Column(db.Text, nullable=True)
    completed = db.Column(db.Boolean, nullable=False, default=False)
    location = db.Column(db.String(200), nullable=True)
    participants = db.Column(db.Integer, nullable=False, default=1)

    subject = db.relationship("Subject")

    __table_args__ = (
        db.UniqueConstraint("user_id", "title", "date", "start_time", name="uq_sessions_natural_key"),
        db.Index("idx_sessions_user_date", "user_id", "date"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "subjectId": self.subject_id,
            "title": self.title,
            "date": _iso(self.date),
            "startTime": _hhmm(self.start_time),
            "endTime": _hhmm(self.end_time),
            "description": self.description or "",
            "completed": self.completed,
            "location": self.location or "",
            "participants": self.participants,
        }


class StudyTimeRecord(db.Model):
    """
    Minutes studied for one subject (and optionally one task) on one day.
    These rows feed the weekly progress chart and the dashboard stats.
    """
    __tablename__ = "study_time_records"
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    subject_id = db.Column(db.Integer, db.ForeignKey("subjects.id"), nullable=False)
    task_id = db.Column(db.Integer, db.ForeignKey("tasks.id"), nullable=True)
    date = db.Column(db.Date, nullable=False)
    duration = db.Column(db.Integer, nullable=False)        # minutes
    focus_score = db.Column(db.Integer, nullable=True)      # 0-100

    subject = db.relationship("Subject")
    task = db.relationship("Task")

    __table_args__ = (
        db.UniqueConstraint("user_id", "date", "subject_id", "task_id", name="uq_records_natural_key"),
        db.Index("idx_records_user_date", "user_id", "date"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "userId": self.user_id,
            "subjectId": self.subject_id,
            "taskId": self.task_id,
            "date": _iso(self.date),
            "duration": self.duration,
            "focusScore": self.focus_score,
        }


class UserSettings(db.Model):
    __tablename__ = "user_settings"
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), unique=True, nullable=False)
    dark_mode = db.Column(db.Boolean, nullable=False, default=False)
    notifications = db.Column(db.Boolean, nullable=False, default=True)
    show_completed = db.Column(db.Boolean, nullable=False, default=True)
    auto_break = db.Column(db.Boolean, nullable=False, default=True)
    focus_duration = db.Column(db.Integer, nullable=False, default=25)
    short_break_duration = db.Column(db.Integer, nullable=False, default=5)
    long_break_duration = db.Column(db.Integer, nullable=False, default=15)
    sessions_before_long_break = db.Column(db.Integer, nullable=False, default=4)

    def to_dict(self):
        return {
            "darkMode": self.dark_mode,
            "notifications": self.notifications,
            "showCompleted": self.show_completed,
            "autoBreak": self.auto_break,
            "focusDuration": self.focus_duration,
            "shortBreakDuration": self.short_break_duration,
            "longBreakDuration": self.long_break_duration,
            "sessionsBeforeLongBreak": self.sessions_before_long_break,
        }
