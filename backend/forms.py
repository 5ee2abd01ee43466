"""
Validation for the HTML forms and the JSON request bodies.

Each form is a pydantic model. ``validate_form`` turns a submission into
either a model instance or a mapping of field name to the first error
message for that field, which the templates show next to the inputs.
"""
import datetime as dt
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, ValidationError, field_validator
from pydantic_core import PydanticCustomError

Priority = Literal["high", "medium", "low"]


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _checkbox(value):
    # HTML checkboxes post "on" when ticked and nothing at all otherwise
    if isinstance(value, str):
        return value.strip().lower() in ("on", "true", "1", "yes")
    return bool(value)


class Form(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class LoginForm(Form):
    username: str = Field(min_length=3)
    password: str = Field(min_length=6)


class RegisterForm(Form):
    username: str = Field(min_length=3)
    email: EmailStr
    password: str = Field(min_length=6)
    confirm_password: str = Field(min_length=6, alias="confirmPassword")
    first_name: Optional[str] = Field(None, alias="firstName")
    last_name: Optional[str] = Field(None, alias="lastName")

    @field_validator("confirm_password")
    @classmethod
    def passwords_match(cls, value, info):
        if "password" in info.data and value != info.data["password"]:
            raise PydanticCustomError("password_mismatch", "Passwords don't match")
        return value


class ProfileForm(Form):
    username: str = Field(min_length=3)
    email: EmailStr
    first_name: Optional[str] = Field(None, alias="firstName")
    last_name: Optional[str] = Field(None, alias="lastName")


class AppSettingsForm(Form):
    dark_mode: bool = Field(False, alias="darkMode")
    notifications: bool = False
    show_completed: bool = Field(False, alias="showCompleted")
    auto_break: bool = Field(False, alias="autoBreak")

    checkbox_fields = field_validator("dark_mode", "notifications", "show_completed", "auto_break",
                                  mode="before")(_checkbox)


class PomodoroSettingsForm(Form):
    focus_duration: int = Field(25, ge=5, le=120, alias="focusDuration")
    short_break_duration: int = Field(5, ge=1, le=30, alias="shortBreakDuration")
    long_break_duration: int = Field(15, ge=5, le=60, alias="longBreakDuration")
    sessions_before_long_break: int = Field(4, ge=1, le=10, alias="sessionsBeforeLongBreak")


class SubjectForm(Form):
    name: str = Field(min_length=1, max_length=120)
    color: str = Field("blue", max_length=30)
    description: Optional[str] = None


class TaskForm(Form):
    title: str = Field(min_length=1, max_length=200)
    subject_id: Optional[int] = Field(None, alias="subjectId")
    description: Optional[str] = None
    priority: Priority = "medium"
    due_date: Optional[dt.date] = Field(None, alias="dueDate")
    estimated_time: Optional[int] = Field(None, ge=0, alias="estimatedTime")
    completed: bool = False

    blank_fields = field_validator("subject_id", "due_date", "estimated_time", "description",
                              mode="before")(_blank_to_none)


class SessionForm(Form):
    title: str = Field(min_length=1, max_length=200)
    subject_id: Optional[int] = Field(None, alias="subjectId")
    date: dt.date
    start_time: dt.time = Field(alias="startTime")
    end_time: dt.time = Field(alias="endTime")
    description: Optional[str] = None
    completed: bool = False
    location: Optional[str] = None
    participants: int = Field(1, ge=1)

    blank_fields = field_validator("subject_id", "description", "location", mode="before")(_blank_to_none)

    @field_validator("end_time")
    @classmethod
    def ends_after_start(cls, value, info):
        start = info.data.get("start_time")
        if start is not None and value <= start:
            raise PydanticCustomError("time_order", "End time must be later than start time")
        return value


class StudyTimeForm(Form):
    subject_id: int = Field(alias="subjectId")
    task_id: Optional[int] = Field(None, alias="taskId")
    date: Optional[dt.date] = None
    duration: int = Field(gt=0, le=24 * 60)
    focus_score: Optional[int] = Field(None, ge=0, le=100, alias="focusScore")

    blank_fields = field_validator("task_id", "date", "focus_score", mode="before")(_blank_to_none)


class PomodoroCompleteForm(StudyTimeForm):
    session_id: Optional[int] = Field(None, alias="sessionId")

    blank_session = field_validator("session_id", mode="before")(_blank_to_none)


def _field_name(model, loc):
    if not loc:
        return "__all__"
    name = str(loc[0])
    for field_name, field in model.model_fields.items():
        if field.alias == name:
            return field_name
    return name


def submitted_fields(model, data):
    """Field names of ``model`` present in ``data`` under their name or alias."""
    return {
        field_name for field_name, field in model.model_fields.items()
        if field_name in data or (field.alias and field.alias in data)
    }


def _by_alias(model, data):
    out = dict(data)
    for field_name, field in model.model_fields.items():
        if field.alias and field_name in out:
            out[field.alias] = out.pop(field_name)
    return out


def validate_form(model, data, current=None):
    """
    Returns (instance, errors). On success errors is empty; on failure the
    instance is None and errors maps field name to message.

    ``current`` holds the stored values of the row being edited; the
    submission is laid over it so a partial update is checked as a whole.
    """
    values = dict(current or {})
    values.update(_by_alias(model, data or {}))
    try:
        return model.model_validate(values), {}
    except ValidationError as e:
        errors = {}
        for err in e.errors():
            errors.setdefault(_field_name(model, err["loc"]), err["msg"])
        return None, errors


def changes(form, data):
    """The validated values of the fields the caller actually sent."""
    return form.model_dump(include=submitted_fields(type(form), data))
