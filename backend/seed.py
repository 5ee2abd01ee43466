import random
import threading
import weakref
from datetime import date, time, timedelta

from flask import current_app

DEFAULT_USER = {
    "username": "student",
    "email": "student@example.com",
    "password": "password",
    "first_name": "Student",
    "last_name": "User",
}

SUBJECTS = [
    {"name": "Mathematics", "color": "blue", "description": "Algebra, Calculus, and Statistics"},
    {"name": "Computer Science", "color": "purple", "description": "Programming, Algorithms, and Data Structures"},
    {"name": "Physics", "color": "green", "description": "Mechanics, Thermodynamics, and Electromagnetism"},
    {"name": "Literature", "color": "red", "description": "Fiction, Poetry, and Literary Analysis"},
    {"name": "History", "color": "amber", "description": "World History and Historical Events"},
]

# (title, subject index, priority, days until due, description, estimated minutes)
TASKS = [
    ("Complete Calculus Assignment", 0, "high", 1, "Solve problems 1-10 in Chapter 4", 120),
    ("Study Algorithm Complexity", 1, "medium", 7, "Review Big O notation and solve example problems", 90),
    ("Physics Lab Report", 2, "high", 1, "Write lab report on the pendulum experiment", 180),
    ("Read Shakespeare's Hamlet", 3, "low", 7, "Read Act 1 and take notes on main themes", 120),
    ("Research Industrial Revolution", 4, "medium", 7, "Gather sources for upcoming history essay", 150),
    ("Prepare for Math Quiz", 0, "high", 1, "Review integration techniques and practice problems", 120),
    ("Code Portfolio Project", 1, "medium", 7, "Implement the frontend design for personal website", 240),
]

# (title, subject index, days from today, start, end, description, location, participants)
SESSIONS = [
    ("Morning Math Session", 0, 0, time(8, 0), time(10, 0),
     "Focus on calculus problems", "Library Study Room 3", 1),
    ("Programming Practice", 1, 0, time(13, 0), time(15, 30),
     "Work on coding challenges and algorithm implementation", "Home Office", 1),
    ("Physics Study Group", 2, 1, time(16, 0), time(18, 0),
     "Group study for upcoming physics exam", "Science Building Room 202", 4),
    ("Literature Analysis", 3, 2, time(10, 0), time(11, 30),
     "Analyze themes in Shakespeare's works", "Campus Coffee Shop", 1),
    ("History Research", 4, 2, time(14, 0), time(16, 0),
     "Library research for history essay", "University Library", 1),
]

RECORD_DAYS = 7
RECORD_PROBABILITY = 0.7

_locks_guard = threading.Lock()
_user_locks = weakref.WeakValueDictionary()


def _lock_for(user_id):
    # an entry lives only while some caller holds its lock
    with _locks_guard:
        lock = _user_locks.get(user_id)
        if lock is None:
            lock = _user_locks[user_id] = threading.Lock()
        return lock


def ensure_default_user(storage):
    user = storage.get_user_by_username(DEFAULT_USER["username"])
    if user is None:
        user = storage.create_user(DEFAULT_USER)
        current_app.logger.info("Seed: created default user %s", user.id)
    return user


def generate_records(subjects, tasks, user_id, today, rng=None):
    """
    Candidate study-time records for the week before ``today``: each
    subject studied on a given day with probability 0.7, 30-149 minutes,
    focus score 60-99. The generator is seeded from (user, day) so that
    repeated calls on one day propose the same rows.
    """
    if rng is None:
        rng = random.Random(f"{user_id}:{today.isoformat()}")
    week_ago = today - timedelta(days=RECORD_DAYS)
    rows = []
    for i in range(RECORD_DAYS):
        day = week_ago + timedelta(days=i)
        for index, subject in enumerate(subjects):
            if rng.random() >= RECORD_PROBABILITY:
                continue
            rows.append({
                "user_id": user_id,
                "subject_id": subject.id,
                "task_id": tasks[index % len(tasks)].id,
                "date": day,
                "duration": rng.randrange(30, 150),
                "focus_score": rng.randrange(60, 100),
            })
    return rows


def populate_sample_data(storage, user_id=None, today=None, rng=None):
    """
    Fill the planner with demonstration subjects, tasks, sessions and a week
    of study-time records. Safe to call repeatedly: every row is looked up by
    its natural key before it is inserted.

    The counts returned are rows that exist for the sample keys once seeding
    is done; ``created`` tells how many of them this call inserted.
    """
    if user_id is None or storage.get_user(user_id) is None:
        user_id = ensure_default_user(storage).id
    today = today or date.today()

    with _lock_for(user_id):
        created = {"subjects": 0, "tasks": 0, "sessions": 0, "records": 0}

        subjects = []
        for s in SUBJECTS:
            subject, is_new = storage.ensure_subject({**s, "user_id": user_id})
            subjects.append(subject)
            created["subjects"] += is_new

        tasks = []
        for title, subj, priority, due_in, description, minutes in TASKS:
            task, is_new = storage.ensure_task({
                "user_id": user_id,
                "subject_id": subjects[subj].id,
                "title": title,
                "priority": priority,
                "due_date": today + timedelta(days=due_in),
                "description": description,
                "estimated_time": minutes,
                "completed": False,
            })
            tasks.append(task)
            created["tasks"] += is_new

        sessions = []
        for title, subj, day_offset, start, end, description, location, participants in SESSIONS:
            study_session, is_new = storage.ensure_study_session({
                "user_id": user_id,
                "subject_id": subjects[subj].id,
                "title": title,
                "date": today + timedelta(days=day_offset),
                "start_time": start,
                "end_time": end,
                "description": description,
                "completed": False,
                "location": location,
                "participants": participants,
            })
            sessions.append(study_session)
            created["sessions"] += is_new

        records = []
        for row in generate_records(subjects, tasks, user_id, today, rng=rng):
            record, is_new = storage.ensure_study_time_record(row)
            records.append(record)
            created["records"] += is_new

    current_app.logger.info("Seed: user %s, inserted %s", user_id, created)
    return {
        "subjectsCount": len(subjects),
        "tasksCount": len(tasks),
        "sessionsCount": len(sessions),
        "recordsCount": len(records),
        "created": created,
    }


if __name__ == "__main__":
    from app import app
    from storage import storage

    with app.app_context():
        print("Seeding sample data...")
        result = populate_sample_data(storage)
        print(f"Subjects: {result['subjectsCount']}, tasks: {result['tasksCount']}, "
              f"sessions: {result['sessionsCount']}, records: {result['recordsCount']}")
        print(f"Inserted this run: {result['created']}")
