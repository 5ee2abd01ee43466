from models import PRIORITIES
from storage import NotFoundError

PRIORITY_FILTERS = ("all",) + PRIORITIES
DASHBOARD_TASK_LIMIT = 3


def filter_tasks(tasks, priority="all", limit=DASHBOARD_TASK_LIMIT, include_completed=False):
    """
    Active tasks matching the priority filter, in storage order. ``limit``
    of None returns every match.
    """
    if priority not in PRIORITY_FILTERS:
        priority = "all"
    picked = [
        t for t in tasks
        if (include_completed or not t.completed) and (priority == "all" or t.priority == priority)
    ]
    if limit is not None:
        picked = picked[:limit]
    return picked


class TaskState:
    """Tasks and subjects of one user, with the lookups the pages need."""

    def __init__(self, storage, user_id):
        self.storage = storage
        self.user_id = user_id
        self.refresh()

    def refresh(self):
        self.tasks = self.storage.get_tasks(self.user_id)
        self.subjects = self.storage.get_subjects(self.user_id)
        self._subjects_by_id = {s.id: s for s in self.subjects}

    def get_task(self, task_id):
        for t in self.tasks:
            if t.id == task_id:
                return t
        return None

    def get_subject_for_task(self, task_id):
        task = self.get_task(task_id)
        if task is None or task.subject_id is None:
            return None
        return self._subjects_by_id.get(task.subject_id)

    def filter_active(self, priority="all", limit=DASHBOARD_TASK_LIMIT):
        return filter_tasks(self.tasks, priority, limit)

    def visible(self, priority="all", show_completed=True):
        return filter_tasks(self.tasks, priority, limit=None, include_completed=show_completed)

    @property
    def completed_count(self):
        return sum(1 for t in self.tasks if t.completed)

    def add_task(self, data):
        task = self.storage.create_task({**data, "user_id": self.user_id})
        self.refresh()
        return task

    def update_task(self, task_id, partial):
        self._owned(task_id)
        task = self.storage.update_task(task_id, partial)
        self.refresh()
        return task

    def toggle_task(self, task_id, completed):
        return self.update_task(task_id, {"completed": bool(completed)})

    def delete_task(self, task_id):
        self._owned(task_id)
        self.storage.delete_task(task_id)
        self.refresh()

    def _owned(self, task_id):
        if self.get_task(task_id) is None:
            raise NotFoundError(f"Task {task_id} not found")
