import itertools
from types import SimpleNamespace

import pytest

from conftest import make_user
from storage import storage, NotFoundError
from task_state import TaskState, filter_tasks, PRIORITY_FILTERS


def _tasks():
    ids = itertools.count(1)
    return [
        SimpleNamespace(id=next(ids), priority=priority, completed=completed)
        for priority, completed in itertools.product(("high", "medium", "low", "high"), (False, True, False))
    ]


@pytest.mark.parametrize("priority", PRIORITY_FILTERS)
def test_filter_matches_priority_and_caps_at_three(priority):
    tasks = _tasks()
    expected = [t for t in tasks if not t.completed and (priority == "all" or t.priority == priority)]
    picked = filter_tasks(tasks, priority)
    assert picked == expected[:3]
    assert len(picked) <= 3
    assert all(not t.completed for t in picked)


def test_filter_without_limit_can_include_completed():
    tasks = _tasks()
    assert filter_tasks(tasks, "all", limit=None, include_completed=True) == tasks
    assert len(filter_tasks(tasks, "high", limit=None)) == 4


def test_unknown_priority_means_all():
    tasks = _tasks()
    assert filter_tasks(tasks, "urgent") == filter_tasks(tasks, "all")


def test_get_subject_for_task(user):
    subject = storage.create_subject({"user_id": user.id, "name": "Physics", "color": "green"})
    with_subject = storage.create_task({"user_id": user.id, "title": "Lab", "subject_id": subject.id})
    without = storage.create_task({"user_id": user.id, "title": "Free reading"})

    state = TaskState(storage, user.id)
    assert state.get_subject_for_task(with_subject.id).id == subject.id
    assert state.get_subject_for_task(without.id) is None
    assert state.get_subject_for_task(9999) is None


def test_add_update_delete(user):
    state = TaskState(storage, user.id)
    task = state.add_task({"title": "Essay", "priority": "high"})
    assert [t.id for t in state.filter_active("high")] == [task.id]

    state.toggle_task(task.id, True)
    assert state.filter_active("high") == []
    assert state.completed_count == 1

    state.delete_task(task.id)
    assert state.tasks == []


def test_cannot_touch_other_users_tasks(user):
    other = make_user("bob")
    theirs = storage.create_task({"user_id": other.id, "title": "Secret"})
    state = TaskState(storage, user.id)
    with pytest.raises(NotFoundError):
        state.update_task(theirs.id, {"completed": True})
    with pytest.raises(NotFoundError):
        state.delete_task(theirs.id)
    assert storage.get_task(theirs.id).completed is False
