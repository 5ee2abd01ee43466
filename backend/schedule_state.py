from collections import OrderedDict
from datetime import date, datetime

UPCOMING_DEADLINE_LIMIT = 5


class ScheduleState:

    def __init__(self, storage, user_id, today=None):
        self.storage = storage
        self.user_id = user_id
        self.today = today or date.today()
        self.sessions = storage.get_study_sessions(user_id)
        self.tasks = storage.get_tasks(user_id)

    @property
    def today_sessions(self):
        return sorted((s for s in self.sessions if s.date == self.today), key=lambda s: s.start_time)

    @property
    def upcoming_deadlines(self):
        pending = [
            t for t in self.tasks
            if not t.completed and t.due_date is not None and t.due_date >= self.today
        ]
        pending.sort(key=lambda t: (t.due_date, t.id))
        return pending[:UPCOMING_DEADLINE_LIMIT]

    def sessions_by_date(self, include_past=False):
        grouped = OrderedDict()
        for s in self.sessions:
            if not include_past and s.date < self.today:
                continue
            grouped.setdefault(s.date, []).append(s)
        return grouped

    def start_study_session(self, now=None):
        """
        The session to start now: the first of today's sessions that is not
        completed and has not already ended. None when nothing is left today.
        """
        now = now or datetime.now()
        current = now.time() if self.today == now.date() else None
        for s in self.today_sessions:
            if s.completed:
                continue
            if current is not None and s.end_time <= current:
                continue
            return s
        return None
