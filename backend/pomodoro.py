from dataclasses import dataclass
from typing import List

FOCUS = "focus"
SHORT_BREAK = "short_break"
LONG_BREAK = "long_break"

LABELS = {
    FOCUS: "Focus",
    SHORT_BREAK: "Short Break",
    LONG_BREAK: "Long Break",
}


@dataclass(frozen=True)
class Phase:
    kind: str
    minutes: int

    @property
    def label(self) -> str:
        return LABELS[self.kind]

    @property
    def seconds(self) -> int:
        return self.minutes * 60

    def to_dict(self):
        return {"kind": self.kind, "label": self.label, "minutes": self.minutes}


def focus_phase(settings) -> Phase:
    return Phase(FOCUS, settings.focus_duration)


def break_after(completed_focus: int, settings) -> Phase:
    """
    The break that follows the ``completed_focus``-th focus block. Every
    ``sessions_before_long_break`` blocks earn a long break.
    """
    every = max(1, settings.sessions_before_long_break)
    if completed_focus > 0 and completed_focus % every == 0:
        return Phase(LONG_BREAK, settings.long_break_duration)
    return Phase(SHORT_BREAK, settings.short_break_duration)


def next_phase(completed_focus: int, on_break: bool, settings) -> Phase:
    if on_break or completed_focus <= 0:
        return focus_phase(settings)
    return break_after(completed_focus, settings)


def cycle(settings) -> List[Phase]:
    """One full round: focus/break pairs up to and including the long break."""
    phases = []
    for n in range(1, max(1, settings.sessions_before_long_break) + 1):
        phases.append(focus_phase(settings))
        phases.append(break_after(n, settings))
    return phases


def cycle_minutes(settings) -> int:
    return sum(p.minutes for p in cycle(settings))
