"""Filtering and derived values used by the dashboard list views."""

import random
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

from schemas import BORDER_COLORS, Doubt, Student, Subject, SubjectProgress, WorkItem

# Time slot -> batch code
TIME_SLOT_BATCHES = {
    "3:00-4:30": "A",
    "4:30-6:00": "B",
    "6:00-8:00": "C",
    "8:00-9:30": "D",
    "10:00-11:30": "E",
    "11:30-1:00": "F",
    "1:00-2:30": "G",
    "2:30-4:00": "H",
}

ALL = "all"


def batch_for_time_slot(time_slot: str) -> str:
    return TIME_SLOT_BATCHES.get(time_slot, "")


def random_border_color() -> str:
    return random.choice(BORDER_COLORS)


def _selected(value: Optional[str]) -> bool:
    # Empty and "all" both mean no filter
    return bool(value) and value != ALL


def _contains(haystack: Optional[str], needle: str) -> bool:
    return bool(haystack) and needle.lower() in haystack.lower()


def filter_students(
    students: Iterable[Student],
    archived: bool = False,
    q: Optional[str] = None,
    board: Optional[str] = None,
    grade: Optional[str] = None,
    batch: Optional[str] = None,
) -> List[Student]:
    """Archived and active students are never listed together."""
    out = []
    for s in students:
        if s.archived != archived:
            continue
        if q and not _contains(s.full_name, q):
            continue
        if _selected(board) and s.board != board:
            continue
        if _selected(grade) and s.grade != grade:
            continue
        if _selected(batch) and s.batch != batch:
            continue
        out.append(s)
    return out


def student_ids(students: Iterable[Student]) -> set:
    return {s.id for s in students}


def filter_doubts(
    doubts: Iterable[Doubt],
    student_id: Optional[str] = None,
    status: Optional[str] = None,
    subject: Optional[str] = None,
    priority: Optional[str] = None,
    q: Optional[str] = None,
) -> List[Doubt]:
    out = []
    for d in doubts:
        if student_id and d.student_id != student_id:
            continue
        if _selected(status) and d.status != status:
            continue
        if _selected(subject) and d.subject != subject:
            continue
        if _selected(priority) and d.priority != priority:
            continue
        if q and not (_contains(d.title, q) or _contains(d.description, q) or _contains(d.subject, q)):
            continue
        out.append(d)
    out.sort(key=lambda d: d.created_at, reverse=True)
    return out


def filter_work_items(
    work_items: Iterable[WorkItem],
    student_id: Optional[str] = None,
    subject: Optional[str] = None,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    student_filter: Optional[set] = None,
) -> List[WorkItem]:
    out = []
    for w in work_items:
        if student_id and w.student_id != student_id:
            continue
        if student_filter is not None and w.student_id not in student_filter:
            continue
        if _selected(subject) and w.subject != subject:
            continue
        if _selected(status) and w.status != status:
            continue
        if _selected(priority) and w.priority != priority:
            continue
        out.append(w)
    return out


def subject_progress(subject: Subject) -> SubjectProgress:
    total = len(subject.chapters)
    done = sum(1 for c in subject.chapters if c.completed)
    percentage = round(done / total * 100) if total else 0
    return SubjectProgress(
        student_id=subject.student_id,
        subject_id=subject.id,
        subject_name=subject.name,
        completed_chapters=done,
        total_chapters=total,
        percentage=percentage,
    )


def daily_doubt_counts(doubts: Iterable[Doubt], days: int = 30, today: Optional[date] = None) -> List[Dict]:
    """Doubts raised per day for the trailing window ending today, oldest first."""
    today = today or datetime.now(timezone.utc).date()
    start = today - timedelta(days=days - 1)
    counts = {start + timedelta(days=i): 0 for i in range(days)}
    for d in doubts:
        day = d.created_at.date()
        if day in counts:
            counts[day] += 1
    return [{"date": day.isoformat(), "doubts": n} for day, n in counts.items()]
