import os
import traceback
from datetime import date, datetime

from flask import Flask, render_template, request, jsonify, redirect, url_for, flash
from flask_login import LoginManager, login_user, logout_user, login_required, current_user
from sqlalchemy.exc import IntegrityError
from werkzeug.security import check_password_hash

from models import db, PRIORITIES
from storage import storage, StorageError, NotFoundError
from forms import (
    validate_form, changes, LoginForm, RegisterForm, ProfileForm, AppSettingsForm,
    PomodoroSettingsForm, SubjectForm, TaskForm, SessionForm, StudyTimeForm, PomodoroCompleteForm,
)
from seed import populate_sample_data
from task_state import TaskState, PRIORITY_FILTERS
from schedule_state import ScheduleState
from stats_state import StatsState, format_minutes
import pomodoro

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.dirname(BASE_DIR)

app = Flask(
    __name__,
    template_folder=os.path.join(PROJECT_ROOT, "frontend", "templates"),
    static_folder=os.path.join(PROJECT_ROOT, "frontend", "static")
)

app.config["SECRET_KEY"] = os.environ.get("SECRET_KEY", "dev-secret-key-please-change")
DB_USER = os.environ.get("DB_USER", "studyuser")
DB_PASS = os.environ.get("DB_PASS", "study_pass")
DB_HOST = os.environ.get("DB_HOST", "localhost")
DB_PORT = os.environ.get("DB_PORT", "3306")
DB_NAME = os.environ.get("DB_NAME", "studydeep")

app.config["SQLALCHEMY_DATABASE_URI"] = os.environ.get(
    "DATABASE_URL",
    f"mysql+pymysql://{DB_USER}:{DB_PASS}@{DB_HOST}:{DB_PORT}/{DB_NAME}"
)
app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
app.logger.setLevel(os.environ.get("LOG_LEVEL", "INFO").upper())

db.init_app(app)

login_manager = LoginManager()
login_manager.init_app(app)
login_manager.login_view = "login"


@login_manager.user_loader
def load_user(user_id):
    return storage.get_user(int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    if request.path.startswith("/api/"):
        return jsonify({"status": "error", "message": "login required"}), 401
    return redirect(url_for("login", next=request.path))


with app.app_context():
    db.create_all()


# -------------------------------------------------
# HELPERS
# -------------------------------------------------
def notify(message, category="success"):
    """Flash a message; informational ones respect the notifications setting."""
    if category != "danger" and current_user.is_authenticated:
        if not storage.get_settings(current_user.id).notifications:
            return
    flash(message, category)


def owned(obj):
    if obj is None or obj.user_id != current_user.id:
        raise NotFoundError("not found")
    return obj


def owned_or_none(obj):
    if obj is None or obj.user_id != current_user.id:
        return None
    return obj


def api_error(message, status=400, errors=None):
    body = {"status": "error", "message": message}
    if errors:
        body["errors"] = errors
    return jsonify(body), status


def back(default="dashboard"):
    target = request.form.get("next") or request.args.get("next")
    if target and target.startswith("/") and not target.startswith("//"):
        return redirect(target)
    return redirect(url_for(default))


def flash_errors(errors):
    for field, message in errors.items():
        flash(f"{field.replace('_', ' ').capitalize()}: {message}", "danger")


def json_body():
    return request.get_json(silent=True) or {}


def pop_id(data, key):
    """Remove the hidden id field from a form submission. Blank means a new row."""
    value = data.pop(key, None)
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        raise NotFoundError(f"{key} {value!r} not found")


@app.errorhandler(StorageError)
def handle_storage_error(e):
    db.session.rollback()
    status = 404 if isinstance(e, NotFoundError) else 400
    app.logger.warning("Rejected %s %s: %s", request.method, request.path, e)
    if request.path.startswith("/api/"):
        return api_error(str(e), status)
    flash(str(e) if status == 400 else "That item no longer exists.", "danger")
    return back()


@app.errorhandler(IntegrityError)
def handle_integrity_error(e):
    db.session.rollback()
    app.logger.warning("Conflicting write on %s %s: %s", request.method, request.path, e.orig)
    if request.path.startswith("/api/"):
        return api_error("conflicts with an existing entry", 400)
    flash("That conflicts with an existing entry.", "danger")
    return back()


@app.errorhandler(404)
def not_found(e):
    if request.path.startswith("/api/"):
        return api_error("not found", 404)
    return render_template("404.html"), 404


@app.context_processor
def inject_layout():
    settings = storage.get_settings(current_user.id) if current_user.is_authenticated else None
    return {
        "app_settings": settings,
        "format_minutes": format_minutes,
        "priorities": PRIORITIES,
    }


# -------------------------------------------------
# AUTH
# -------------------------------------------------
@app.route("/register", methods=["GET", "POST"])
def register():
    if request.method == "GET":
        return render_template("register.html", form={}, errors={})
    data = request.form.to_dict()
    form, errors = validate_form(RegisterForm, data)
    if form is not None:
        if storage.get_user_by_username(form.username):
            errors["username"] = "Username already exists"
        if storage.get_user_by_email(str(form.email).lower()):
            errors["email"] = "Email already registered"
    if errors:
        app.logger.warning("Registration rejected: %s", sorted(errors))
        return render_template("register.html", form=data, errors=errors), 400

    user = storage.create_user({
        "username": form.username,
        "email": str(form.email),
        "password": form.password,
        "first_name": form.first_name,
        "last_name": form.last_name,
    })
    app.logger.info("Registered user %s", user.id)
    flash("Your account has been created successfully. You can now log in.", "success")
    return redirect(url_for("login"))


@app.route("/login", methods=["GET", "POST"])
def login():
    if request.method == "GET":
        return render_template("login.html", form={}, errors={})
    data = request.form.to_dict()
    form, errors = validate_form(LoginForm, data)
    if errors:
        return render_template("login.html", form=data, errors=errors), 400

    user = storage.get_user_by_username(form.username)
    if not user or not check_password_hash(user.password_hash, form.password):
        app.logger.warning("Failed login for %r", form.username)
        flash("Invalid username or password. Please try again.", "danger")
        return redirect(url_for("login"))
    login_user(user)
    app.logger.info("User %s logged in", user.id)
    notify("Welcome back to StudyDeep!")
    return back()


@app.route("/logout")
@login_required
def logout():
    logout_user()
    flash("Logged out", "info")
    return redirect(url_for("login"))


# -------------------------------------------------
# DASHBOARD
# -------------------------------------------------
@app.route("/")
@login_required
def dashboard():
    priority = request.args.get("priority", "all")
    if priority not in PRIORITY_FILTERS:
        priority = "all"
    tasks = TaskState(storage, current_user.id)
    schedule = ScheduleState(storage, current_user.id)
    stats = StatsState(storage, current_user.id)
    editing = tasks.get_task(request.args.get("edit", type=int))
    return render_template(
        "dashboard.html",
        today=date.today(),
        tasks=tasks,
        active_tasks=tasks.filter_active(priority),
        priority=priority,
        priority_filters=PRIORITY_FILTERS,
        schedule=schedule,
        stats=stats,
        editing=editing,
        pomodoro_settings=storage.get_settings(current_user.id),
    )


@app.route("/sample-data", methods=["POST"])
@login_required
def load_sample_data():
    try:
        result = populate_sample_data(storage, current_user.id)
    except Exception as e:
        db.session.rollback()
        app.logger.error("Sample data failed: %s", e)
        app.logger.error(traceback.format_exc())
        flash("Could not load sample data. Please try again.", "danger")
        return redirect(url_for("dashboard"))
    notify(f"Added {result['subjectsCount']} subjects, {result['tasksCount']} tasks, "
           f"and {result['sessionsCount']} study sessions.")
    return redirect(url_for("dashboard"))


# -------------------------------------------------
# TASKS
# -------------------------------------------------
@app.route("/tasks")
@login_required
def tasks_page():
    priority = request.args.get("priority", "all")
    tasks = TaskState(storage, current_user.id)
    settings = storage.get_settings(current_user.id)
    return render_template(
        "tasks.html",
        tasks=tasks,
        visible=tasks.visible(priority, show_completed=settings.show_completed),
        priority=priority if priority in PRIORITY_FILTERS else "all",
        priority_filters=PRIORITY_FILTERS,
        editing=tasks.get_task(request.args.get("edit", type=int)),
        today=date.today(),
    )


@app.route("/tasks/save", methods=["POST"])
@login_required
def save_task():
    """Create a task, or update it when the form carries an existing task id."""
    data = request.form.to_dict()
    task_id = pop_id(data, "task_id")
    state = TaskState(storage, current_user.id)
    existing = state.get_task(task_id) if task_id else None
    if task_id and existing is None:
        raise NotFoundError(f"Task {task_id} not found")

    form, errors = validate_form(TaskForm, data)
    if errors:
        flash_errors(errors)
        return back()
    if existing is not None:
        values = changes(form, data)
        values.setdefault("completed", existing.completed)
        state.update_task(existing.id, values)
        notify("Task has been updated successfully")
    else:
        state.add_task(form.model_dump())
        notify("New task has been added to your list")
    return back()


@app.route("/tasks/<int:task_id>/toggle", methods=["POST"])
@login_required
def toggle_task(task_id):
    state = TaskState(storage, current_user.id)
    task = state.get_task(task_id)
    if task is None:
        raise NotFoundError(f"Task {task_id} not found")
    completed = not task.completed
    state.toggle_task(task_id, completed)
    notify("Great job on completing your task!" if completed else "Task marked as incomplete")
    return back()


@app.route("/tasks/<int:task_id>/delete", methods=["POST"])
@login_required
def delete_task(task_id):
    TaskState(storage, current_user.id).delete_task(task_id)
    app.logger.info("User %s deleted task %s", current_user.id, task_id)
    notify("Task deleted", "info")
    return back()


# -------------------------------------------------
# SCHEDULE
# -------------------------------------------------
@app.route("/schedule")
@login_required
def schedule_page():
    schedule = ScheduleState(storage, current_user.id)
    return render_template(
        "schedule.html",
        schedule=schedule,
        grouped=schedule.sessions_by_date(include_past=request.args.get("past") == "1"),
        subjects=storage.get_subjects(current_user.id),
        editing=owned_or_none(storage.get_study_session(request.args.get("edit", type=int))),
        today=date.today(),
    )


@app.route("/schedule/save", methods=["POST"])
@login_required
def save_session():
    data = request.form.to_dict()
    session_id = pop_id(data, "session_id")
    existing = owned(storage.get_study_session(session_id)) if session_id else None
    form, errors = validate_form(SessionForm, data)
    if errors:
        flash_errors(errors)
        return back("schedule_page")
    if existing is not None:
        values = changes(form, data)
        values.setdefault("completed", existing.completed)
        storage.update_study_session(existing.id, values)
        notify("Study session updated")
    else:
        storage.create_study_session({**form.model_dump(), "user_id": current_user.id})
        notify("Study session scheduled")
    return back("schedule_page")


@app.route("/schedule/<int:session_id>/toggle", methods=["POST"])
@login_required
def toggle_session(session_id):
    study_session = owned(storage.get_study_session(session_id))
    storage.update_study_session(session_id, {"completed": not study_session.completed})
    return back("schedule_page")


@app.route("/schedule/<int:session_id>/delete", methods=["POST"])
@login_required
def delete_session(session_id):
    owned(storage.get_study_session(session_id))
    storage.delete_study_session(session_id)
    notify("Study session removed", "info")
    return back("schedule_page")


@app.route("/sessions/start")
@login_required
def start_session():
    upcoming = ScheduleState(storage, current_user.id).start_study_session(datetime.now())
    if upcoming is None:
        return redirect(url_for("pomodoro_page"))
    return redirect(url_for("pomodoro_page", session=upcoming.id))


# -------------------------------------------------
# POMODORO
# -------------------------------------------------
@app.route("/pomodoro")
@login_required
def pomodoro_page():
    settings = storage.get_settings(current_user.id)
    study_session = owned_or_none(storage.get_study_session(request.args.get("session", type=int)))
    return render_template(
        "pomodoro.html",
        settings=settings,
        cycle=pomodoro.cycle(settings),
        cycle_minutes=pomodoro.cycle_minutes(settings),
        subjects=storage.get_subjects(current_user.id),
        tasks=[t for t in storage.get_tasks(current_user.id) if not t.completed],
        study_session=study_session,
    )


# -------------------------------------------------
# SUBJECTS
# -------------------------------------------------
@app.route("/subjects")
@login_required
def subjects_page():
    subjects = storage.get_subjects(current_user.id)
    tasks = storage.get_tasks(current_user.id)
    open_tasks = {s.id: 0 for s in subjects}
    for t in tasks:
        if t.subject_id in open_tasks and not t.completed:
            open_tasks[t.subject_id] += 1
    return render_template(
        "subjects.html",
        subjects=subjects,
        open_tasks=open_tasks,
        editing=owned_or_none(storage.get_subject(request.args.get("edit", type=int))),
    )


@app.route("/subjects/save", methods=["POST"])
@login_required
def save_subject():
    data = request.form.to_dict()
    subject_id = pop_id(data, "subject_id")
    existing = owned(storage.get_subject(subject_id)) if subject_id else None
    form, errors = validate_form(SubjectForm, data)
    if not errors:
        clash = next((s for s in storage.get_subjects(current_user.id)
                      if s.name == form.name and (existing is None or s.id != existing.id)), None)
        if clash is not None:
            errors["name"] = "A subject with this name already exists"
    if errors:
        flash_errors(errors)
        return back("subjects_page")
    if existing is not None:
        storage.update_subject(existing.id, form.model_dump())
        notify("Subject updated")
    else:
        storage.create_subject({**form.model_dump(), "user_id": current_user.id})
        notify("Subject added")
    return back("subjects_page")


@app.route("/subjects/<int:subject_id>/delete", methods=["POST"])
@login_required
def delete_subject(subject_id):
    owned(storage.get_subject(subject_id))
    storage.delete_subject(subject_id)
    app.logger.info("User %s deleted subject %s", current_user.id, subject_id)
    notify("Subject deleted", "info")
    return back("subjects_page")


# -------------------------------------------------
# PROGRESS
# -------------------------------------------------
@app.route("/progress")
@login_required
def progress_page():
    return render_template("progress.html", stats=StatsState(storage, current_user.id))


# -------------------------------------------------
# SETTINGS
# -------------------------------------------------
SETTINGS_TABS = ("profile", "app", "pomodoro")


@app.route("/settings")
@login_required
def settings_page(tab=None, errors=None, form=None, status=200):
    tab = tab or request.args.get("tab", "profile")
    if tab not in SETTINGS_TABS:
        tab = "profile"
    return render_template(
        "settings.html",
        tab=tab,
        tabs=SETTINGS_TABS,
        settings=storage.get_settings(current_user.id),
        errors=errors or {},
        form=form or {},
    ), status


@app.route("/settings/profile", methods=["POST"])
@login_required
def save_profile():
    data = request.form.to_dict()
    form, errors = validate_form(ProfileForm, data)
    if form is not None:
        other = storage.get_user_by_username(form.username)
        if other is not None and other.id != current_user.id:
            errors["username"] = "Username already exists"
        other = storage.get_user_by_email(str(form.email).lower())
        if other is not None and other.id != current_user.id:
            errors["email"] = "Email already registered"
    if errors:
        return settings_page("profile", errors, data, 400)
    storage.update_user(current_user.id, {
        "username": form.username,
        "email": str(form.email).lower(),
        "first_name": form.first_name,
        "last_name": form.last_name,
    })
    notify("Your profile information has been updated.")
    return redirect(url_for("settings_page", tab="profile"))


@app.route("/settings/app", methods=["POST"])
@login_required
def save_app_settings():
    form, errors = validate_form(AppSettingsForm, request.form.to_dict())
    if errors:
        return settings_page("app", errors, request.form.to_dict(), 400)
    storage.update_settings(current_user.id, form.model_dump())
    notify("Your application settings have been updated.")
    return redirect(url_for("settings_page", tab="app"))


@app.route("/settings/pomodoro", methods=["POST"])
@login_required
def save_pomodoro_settings():
    data = request.form.to_dict()
    form, errors = validate_form(PomodoroSettingsForm, data)
    if errors:
        return settings_page("pomodoro", errors, data, 400)
    storage.update_settings(current_user.id, form.model_dump())
    notify("Your pomodoro timer settings have been updated.")
    return redirect(url_for("settings_page", tab="pomodoro"))


# -------------------------------------------------
# JSON API
# -------------------------------------------------
@app.route("/api/sample-data", methods=["POST"])
@login_required
def api_sample_data():
    try:
        result = populate_sample_data(storage, current_user.id)
    except Exception as e:
        db.session.rollback()
        app.logger.error("Sample data failed: %s", e)
        app.logger.error(traceback.format_exc())
        return api_error("could not load sample data", 500)
    return jsonify(result)


@app.route("/api/user", methods=["GET", "PATCH"])
@login_required
def api_user():
    if request.method == "GET":
        return jsonify(current_user.to_dict())
    body = json_body()
    form, errors = validate_form(ProfileForm, body, current=current_user.to_dict())
    if errors:
        return api_error("invalid profile", 400, errors)
    values = changes(form, body)
    if "email" in values:
        values["email"] = str(values["email"]).lower()
    for field, lookup in (("username", storage.get_user_by_username), ("email", storage.get_user_by_email)):
        other = lookup(values[field]) if field in values else None
        if other is not None and other.id != current_user.id:
            return api_error(f"{field} already taken", 400, {field: "already taken"})
    return jsonify(storage.update_user(current_user.id, values).to_dict())


def _create_owned(form_cls, create):
    body = json_body()
    form, errors = validate_form(form_cls, body)
    if errors:
        return api_error("invalid request", 400, errors)
    obj = create({**form.model_dump(), "user_id": current_user.id})
    return jsonify(obj.to_dict()), 201


def _patch_owned(obj, form_cls, update):
    body = json_body()
    form, errors = validate_form(form_cls, body, current=obj.to_dict())
    if errors:
        return api_error("invalid request", 400, errors)
    return jsonify(update(obj.id, changes(form, body)).to_dict())


@app.route("/api/subjects", methods=["GET", "POST"])
@login_required
def api_subjects():
    if request.method == "GET":
        return jsonify([s.to_dict() for s in storage.get_subjects(current_user.id)])
    name = str(json_body().get("name", "")).strip()
    if any(s.name == name for s in storage.get_subjects(current_user.id)):
        return api_error("subject already exists", 400, {"name": "already exists"})
    return _create_owned(SubjectForm, storage.create_subject)


@app.route("/api/subjects/<int:subject_id>", methods=["GET", "PATCH", "DELETE"])
@login_required
def api_subject(subject_id):
    subject = owned(storage.get_subject(subject_id))
    if request.method == "GET":
        return jsonify(subject.to_dict())
    if request.method == "PATCH":
        return _patch_owned(subject, SubjectForm, storage.update_subject)
    storage.delete_subject(subject_id)
    return jsonify({"status": "ok"})


@app.route("/api/tasks", methods=["GET", "POST"])
@login_required
def api_tasks():
    if request.method == "GET":
        return jsonify([t.to_dict() for t in storage.get_tasks(current_user.id)])
    return _create_owned(TaskForm, storage.create_task)


@app.route("/api/tasks/<int:task_id>", methods=["GET", "PATCH", "DELETE"])
@login_required
def api_task(task_id):
    task = owned(storage.get_task(task_id))
    if request.method == "GET":
        body = task.to_dict()
        subject = TaskState(storage, current_user.id).get_subject_for_task(task_id)
        body["subject"] = subject.to_dict() if subject else None
        return jsonify(body)
    if request.method == "PATCH":
        return _patch_owned(task, TaskForm, storage.update_task)
    storage.delete_task(task_id)
    return jsonify({"status": "ok"})


@app.route("/api/sessions", methods=["GET", "POST"])
@login_required
def api_sessions():
    if request.method == "GET":
        schedule = ScheduleState(storage, current_user.id)
        if request.args.get("today") == "1":
            return jsonify([s.to_dict() for s in schedule.today_sessions])
        return jsonify([s.to_dict() for s in schedule.sessions])
    return _create_owned(SessionForm, storage.create_study_session)


@app.route("/api/sessions/<int:session_id>", methods=["GET", "PATCH", "DELETE"])
@login_required
def api_session(session_id):
    study_session = owned(storage.get_study_session(session_id))
    if request.method == "GET":
        return jsonify(study_session.to_dict())
    if request.method == "PATCH":
        return _patch_owned(study_session, SessionForm, storage.update_study_session)
    storage.delete_study_session(session_id)
    return jsonify({"status": "ok"})


@app.route("/api/deadlines")
@login_required
def api_deadlines():
    schedule = ScheduleState(storage, current_user.id)
    return jsonify([t.to_dict() for t in schedule.upcoming_deadlines])


@app.route("/api/records", methods=["GET", "POST"])
@login_required
def api_records():
    if request.method == "GET":
        return jsonify([r.to_dict() for r in storage.get_study_time_records(current_user.id)])
    body = json_body()
    form, errors = validate_form(StudyTimeForm, body)
    if errors:
        return api_error("invalid request", 400, errors)
    values = form.model_dump()
    values["date"] = values["date"] or date.today()
    record = storage.create_study_time_record({**values, "user_id": current_user.id})
    return jsonify(record.to_dict()), 201


@app.route("/api/records/<int:record_id>", methods=["DELETE"])
@login_required
def api_record(record_id):
    owned(storage.get_study_time_record(record_id))
    storage.delete_study_time_record(record_id)
    return jsonify({"status": "ok"})


@app.route("/api/stats")
@login_required
def api_stats():
    return jsonify(StatsState(storage, current_user.id).to_dict())


@app.route("/api/settings", methods=["GET", "PATCH"])
@login_required
def api_settings():
    settings = storage.get_settings(current_user.id)
    if request.method == "GET":
        return jsonify(settings.to_dict())
    body = json_body()
    values = {}
    for form_cls in (AppSettingsForm, PomodoroSettingsForm):
        form, errors = validate_form(form_cls, body, current=settings.to_dict())
        if errors:
            return api_error("invalid settings", 400, errors)
        values.update(changes(form, body))
    return jsonify(storage.update_settings(current_user.id, values).to_dict())


@app.route("/api/pomodoro/next")
@login_required
def api_pomodoro_next():
    settings = storage.get_settings(current_user.id)
    completed = max(0, request.args.get("completed", 0, type=int))
    after_break = request.args.get("after_break") == "1"
    return jsonify({
        "next": pomodoro.next_phase(completed, after_break, settings).to_dict(),
        "cycle": [p.to_dict() for p in pomodoro.cycle(settings)],
    })


@app.route("/api/pomodoro/complete", methods=["POST"])
@login_required
def api_pomodoro_complete():
    """
    Log a finished focus block. Expected JSON:
    {
      "subjectId": 3,
      "taskId": 12,          (optional)
      "duration": 25,
      "focusScore": 90,      (optional)
      "sessionId": 4         (optional, marks that study session completed)
    }
    """
    body = json_body()
    form, errors = validate_form(PomodoroCompleteForm, body)
    if errors:
        return api_error("invalid request", 400, errors)
    study_session = None
    if form.session_id is not None:
        study_session = owned(storage.get_study_session(form.session_id))

    values = form.model_dump(exclude={"session_id"})
    values["date"] = values["date"] or date.today()
    record = storage.log_study_time({**values, "user_id": current_user.id})
    if study_session is not None:
        storage.update_study_session(study_session.id, {"completed": True})
    app.logger.info("User %s logged %s minutes on subject %s",
                    current_user.id, values["duration"], values["subject_id"])
    return jsonify(record.to_dict())


if __name__ == "__main__":
    app.run(debug=True)
