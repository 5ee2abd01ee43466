"""
Study statistics derived from the study-time records: today's total, the
rolling week shown in the progress chart, the daily streak and the average
focus score.
"""
from collections import OrderedDict
from datetime import date, timedelta

WEEK_DAYS = 7


def format_minutes(minutes):
    minutes = int(minutes or 0)
    hours, rest = divmod(minutes, 60)
    if hours == 0:
        return f"{rest}m"
    if rest == 0:
        return f"{hours}h"
    return f"{hours}h {rest}m"


def daily_totals(records):
    totals = {}
    for r in records:
        totals[r.date] = totals.get(r.date, 0) + r.duration
    return totals


def study_streak(records, today):
    """
    Consecutive days with study time, counted back from today. A day with
    nothing logged yet does not break a streak that ran through yesterday.
    """
    studied = {d for d, minutes in daily_totals(records).items() if minutes > 0}
    day = today if today in studied else today - timedelta(days=1)
    streak = 0
    while day in studied:
        streak += 1
        day -= timedelta(days=1)
    return streak


class StatsState:

    def __init__(self, storage, user_id, today=None):
        self.today = today or date.today()
        self.records = storage.get_study_time_records(user_id)
        self.tasks = storage.get_tasks(user_id)
        self.subjects = storage.get_subjects(user_id)

    @property
    def week_start_date(self):
        return self.today - timedelta(days=WEEK_DAYS - 1)

    @property
    def week_end_date(self):
        return self.today

    def _week_records(self):
        return [r for r in self.records if self.week_start_date <= r.date <= self.week_end_date]

    @property
    def weekly_records(self):
        totals = daily_totals(self._week_records())
        week = OrderedDict()
        for i in range(WEEK_DAYS):
            day = self.week_start_date + timedelta(days=i)
            week[day] = totals.get(day, 0)
        return week

    @property
    def today_study_time(self):
        return sum(r.duration for r in self.records if r.date == self.today)

    @property
    def tasks_completed(self):
        return sum(1 for t in self.tasks if t.completed)

    @property
    def streak(self):
        return study_streak(self.records, self.today)

    @property
    def focus_score(self):
        scores = [r.focus_score for r in self._week_records() if r.focus_score is not None]
        if not scores:
            return 0
        return round(sum(scores) / len(scores))

    @property
    def subject_totals(self):
        totals = {s.id: 0 for s in self.subjects}
        for r in self._week_records():
            totals[r.subject_id] = totals.get(r.subject_id, 0) + r.duration
        names = {s.id: s for s in self.subjects}
        return [(names[sid], minutes) for sid, minutes in totals.items() if sid in names]

    @property
    def stats(self):
        return {
            "todayStudyTime": format_minutes(self.today_study_time),
            "tasksCompleted": f"{self.tasks_completed}/{len(self.tasks)}",
            "streak": f"{self.streak} day{'s' if self.streak != 1 else ''}",
            "focusScore": f"{self.focus_score}%",
        }

    def to_dict(self):
        return {
            "stats": self.stats,
            "todayMinutes": self.today_study_time,
            "streakDays": self.streak,
            "focusAverage": self.focus_score,
            "weekStartDate": self.week_start_date.isoformat(),
            "weekEndDate": self.week_end_date.isoformat(),
            "weeklyRecords": {d.isoformat(): m for d, m in self.weekly_records.items()},
        }
