"""
CRUD storage over the planner's tables.

Every read is scoped by ``user_id`` and every write checks that the rows it
points at (user, subject, task) exist and belong to the same user. The
module-level ``storage`` instance is what the routes, the seeder and the
page-state helpers use.
"""
from datetime import date as date_cls

from flask import current_app
from sqlalchemy.exc import IntegrityError
from werkzeug.security import generate_password_hash

from models import db, User, Subject, Task, StudySession, StudyTimeRecord, UserSettings


class StorageError(Exception):
    pass


class NotFoundError(StorageError):
    pass


class InvalidReferenceError(StorageError):
    pass


class DuplicateError(StorageError):
    pass


UPDATABLE = {
    User: ("username", "email", "first_name", "last_name"),
    Subject: ("name", "color", "description"),
    Task: ("subject_id", "title", "description", "priority", "due_date", "estimated_time", "completed"),
    StudySession: ("subject_id", "title", "date", "start_time", "end_time", "description",
                   "completed", "location", "participants"),
    StudyTimeRecord: ("subject_id", "task_id", "date", "duration", "focus_score"),
    UserSettings: ("dark_mode", "notifications", "show_completed", "auto_break", "focus_duration",
                   "short_break_duration", "long_break_duration", "sessions_before_long_break"),
}


class Storage:

    def __init__(self, db):
        self.db = db

    @property
    def session(self):
        return self.db.session

    # -------------------------------------------------
    # generic helpers
    # -------------------------------------------------
    def _get(self, model, obj_id):
        if obj_id is None:
            return None
        return self.session.get(model, int(obj_id))

    def _require(self, model, obj_id):
        obj = self._get(model, obj_id)
        if obj is None:
            raise NotFoundError(f"{model.__name__} {obj_id} not found")
        return obj

    def _check_refs(self, user_id, values):
        if self._get(User, user_id) is None:
            raise InvalidReferenceError(f"user {user_id} does not exist")
        subject_id = values.get("subject_id")
        if subject_id is not None:
            subject = self._get(Subject, subject_id)
            if subject is None or subject.user_id != user_id:
                raise InvalidReferenceError(f"subject {subject_id} does not belong to user {user_id}")
        task_id = values.get("task_id")
        if task_id is not None:
            task = self._get(Task, task_id)
            if task is None or task.user_id != user_id:
                raise InvalidReferenceError(f"task {task_id} does not belong to user {user_id}")

    def _create(self, model, data):
        values = {k: v for k, v in data.items() if k in UPDATABLE[model]}
        user_id = data.get("user_id")
        self._check_refs(user_id, values)
        obj = model(user_id=user_id, **values)
        self.session.add(obj)
        self.session.commit()
        return obj

    def _update(self, model, obj_id, partial):
        obj = self._require(model, obj_id)
        values = {k: v for k, v in partial.items() if k in UPDATABLE[model]}
        self._check_refs(obj.user_id, values)
        for key, value in values.items():
            setattr(obj, key, value)
        self.session.commit()
        return obj

    def _ensure(self, model, key, data):
        """
        Insert-if-absent on a natural key. Returns (row, created).
        A concurrent insert of the same key surfaces as IntegrityError on the
        tables that carry a unique constraint; the existing row is re-read.
        """
        existing = model.query.filter_by(**key).first()
        if existing is not None:
            return existing, False
        try:
            return self._create(model, {**data, **key}), True
        except IntegrityError:
            self.session.rollback()
            existing = model.query.filter_by(**key).first()
            if existing is None:
                raise
            current_app.logger.info("%s %s inserted concurrently, reusing row %s",
                                    model.__name__, key, existing.id)
            return existing, False

    # -------------------------------------------------
    # users
    # -------------------------------------------------
    def get_user(self, user_id):
        return self._get(User, user_id)

    def get_user_by_username(self, username):
        return User.query.filter_by(username=username).first()

    def get_user_by_email(self, email):
        return User.query.filter_by(email=email).first()

    def create_user(self, data):
        user = User(
            username=data["username"],
            email=data["email"].strip().lower(),
            password_hash=generate_password_hash(data["password"]),
            first_name=data.get("first_name"),
            last_name=data.get("last_name"),
        )
        self.session.add(user)
        self.session.commit()
        return user

    def update_user(self, user_id, partial):
        user = self._require(User, user_id)
        for key in UPDATABLE[User]:
            if key in partial:
                setattr(user, key, partial[key])
        if partial.get("password"):
            user.password_hash = generate_password_hash(partial["password"])
        self.session.commit()
        return user

    def delete_user(self, user_id):
        user = self._require(User, user_id)
        self.session.delete(user)
        self.session.commit()

    # -------------------------------------------------
    # subjects
    # -------------------------------------------------
    def get_subjects(self, user_id):
        return Subject.query.filter_by(user_id=user_id).order_by(Subject.id).all()

    def get_subject(self, subject_id):
        return self._get(Subject, subject_id)

    def create_subject(self, data):
        return self._create(Subject, data)

    def update_subject(self, subject_id, partial):
        return self._update(Subject, subject_id, partial)

    def delete_subject(self, subject_id):
        """
        Tasks and sessions keep existing without a subject; the subject's
        study-time records are removed since they cannot exist without one.
        """
        subject = self._require(Subject, subject_id)
        Task.query.filter_by(subject_id=subject.id).update({"subject_id": None})
        StudySession.query.filter_by(subject_id=subject.id).update({"subject_id": None})
        StudyTimeRecord.query.filter_by(subject_id=subject.id).delete()
        self.session.delete(subject)
        self.session.commit()

    def ensure_subject(self, data):
        return self._ensure(Subject, {"user_id": data["user_id"], "name": data["name"]}, data)

    # -------------------------------------------------
    # tasks
    # -------------------------------------------------
    def get_tasks(self, user_id):
        return Task.query.filter_by(user_id=user_id).order_by(Task.id).all()

    def get_task(self, task_id):
        return self._get(Task, task_id)

    def create_task(self, data):
        return self._create(Task, data)

    def update_task(self, task_id, partial):
        return self._update(Task, task_id, partial)

    def delete_task(self, task_id):
        task = self._require(Task, task_id)
        StudyTimeRecord.query.filter_by(task_id=task.id).update({"task_id": None})
        self.session.delete(task)
        self.session.commit()

    def ensure_task(self, data):
        return self._ensure(Task, {"user_id": data["user_id"], "title": data["title"]}, data)

    # -------------------------------------------------
    # study sessions
    # -------------------------------------------------
    def get_study_sessions(self, user_id):
        return (StudySession.query.filter_by(user_id=user_id)
                .order_by(StudySession.date, StudySession.start_time, StudySession.id).all())

    def get_study_session(self, session_id):
        return self._get(StudySession, session_id)

    def create_study_session(self, data):
        return self._create(StudySession, data)

    def update_study_session(self, session_id, partial):
        return self._update(StudySession, session_id, partial)

    def delete_study_session(self, session_id):
        self.session.delete(self._require(StudySession, session_id))
        self.session.commit()

    def ensure_study_session(self, data):
        key = {
            "user_id": data["user_id"],
            "title": data["title"],
            "date": data["date"],
            "start_time": data["start_time"],
        }
        return self._ensure(StudySession, key, data)

    # -------------------------------------------------
    # study-time records
    # -------------------------------------------------
    def get_study_time_records(self, user_id):
        return (StudyTimeRecord.query.filter_by(user_id=user_id)
                .order_by(StudyTimeRecord.date, StudyTimeRecord.id).all())

    def get_study_time_record(self, record_id):
        return self._get(StudyTimeRecord, record_id)

    @staticmethod
    def _record_key(data):
        return {
            "user_id": data["user_id"],
            "date": data["date"],
            "subject_id": data["subject_id"],
            "task_id": data.get("task_id"),
        }

    def _check_record_key(self, key, record_id=None):
        # task_id is nullable and NULLs never collide in a unique index
        clash = StudyTimeRecord.query.filter_by(**key).first()
        if clash is not None and clash.id != record_id:
            raise DuplicateError(
                f"study time for subject {key['subject_id']} on {key['date']} is already recorded"
            )

    def create_study_time_record(self, data):
        self._check_record_key(self._record_key(data))
        return self._create(StudyTimeRecord, data)

    def update_study_time_record(self, record_id, partial):
        record = self._require(StudyTimeRecord, record_id)
        merged = {
            "user_id": record.user_id,
            "date": partial.get("date", record.date),
            "subject_id": partial.get("subject_id", record.subject_id),
            "task_id": partial.get("task_id", record.task_id),
        }
        self._check_record_key(merged, record_id=record.id)
        return self._update(StudyTimeRecord, record_id, partial)

    def delete_study_time_record(self, record_id):
        self.session.delete(self._require(StudyTimeRecord, record_id))
        self.session.commit()

    def ensure_study_time_record(self, data):
        return self._ensure(StudyTimeRecord, self._record_key(data), data)

    def log_study_time(self, data):
        """
        Add a finished block of study to the day's record for the same
        subject and task. Focus score becomes the duration-weighted mean.
        """
        data = dict(data)
        data.setdefault("date", date_cls.today())
        record, created = self.ensure_study_time_record(data)
        if created:
            return record
        added = int(data["duration"])
        total = record.duration + added
        score = data.get("focus_score")
        if score is not None:
            if record.focus_score is None:
                record.focus_score = int(score)
            else:
                record.focus_score = round((record.focus_score * record.duration + score * added) / total)
        record.duration = total
        self.session.commit()
        return record

    # -------------------------------------------------
    # settings
    # -------------------------------------------------
    def get_settings(self, user_id):
        settings = UserSettings.query.filter_by(user_id=user_id).first()
        if settings is None:
            self._require(User, user_id)
            settings = UserSettings(user_id=user_id)
            self.session.add(settings)
            self.session.commit()
        return settings

    def update_settings(self, user_id, partial):
        settings = self.get_settings(user_id)
        for key in UPDATABLE[UserSettings]:
            if key in partial:
                setattr(settings, key, partial[key])
        self.session.commit()
        return settings


storage = Storage(db)
