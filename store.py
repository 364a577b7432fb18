"""
Synchronization layer between the dashboard and the document store.

SyncStore mirrors the four collections in memory. Every mutation writes
straight through to the store and returns once the store acknowledges it;
the local mirror only changes when the store's next snapshot for that
collection arrives, at which point the whole collection is replaced.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple, Type

from pydantic import BaseModel, ValidationError

from database import CREATED_TS, DocumentNotFound, DocumentStore, Subscription, utcnow
from filters import batch_for_time_slot, random_border_color
from schemas import (
    STUDENTS, SUBJECTS, DOUBTS, WORK_ITEMS, DONE_STATUSES,
    Student, StudentCreate, StudentUpdate,
    Subject, SubjectCreate, SubjectUpdate,
    Doubt, DoubtCreate, DoubtUpdate,
    WorkItem, WorkItemCreate, WorkItemUpdate,
    normalize_work_status,
)

logger = logging.getLogger(__name__)

# collection -> (record model, ordering field); None means no ordering guarantee
SUBSCRIPTIONS: Dict[str, Tuple[Type[BaseModel], Optional[str]]] = {
    STUDENTS: (Student, CREATED_TS),
    SUBJECTS: (Subject, None),
    DOUBTS: (Doubt, CREATED_TS),
    WORK_ITEMS: (WorkItem, CREATED_TS),
}


def _fields(payload: BaseModel) -> Dict[str, Any]:
    """Fields explicitly present in an update payload."""
    return payload.model_dump(exclude_unset=True)


class SyncStore:
    def __init__(self, remote: DocumentStore):
        self.remote = remote
        self._collections: Dict[str, tuple] = {name: () for name in SUBSCRIPTIONS}
        self._subscriptions: List[Subscription] = []
        self._started = False

    # -------------------- Read side -------------------- #

    @property
    def students(self) -> Tuple[Student, ...]:
        return self._collections[STUDENTS]

    @property
    def subjects(self) -> Tuple[Subject, ...]:
        return self._collections[SUBJECTS]

    @property
    def doubts(self) -> Tuple[Doubt, ...]:
        return self._collections[DOUBTS]

    @property
    def work_items(self) -> Tuple[WorkItem, ...]:
        return self._collections[WORK_ITEMS]

    def find(self, collection: str, record_id: str):
        for record in self._collections[collection]:
            if record.id == record_id:
                return record
        return None

    # -------------------- Subscriptions -------------------- #

    def start(self) -> None:
        """Subscribe once to every collection. Repeated calls are no-ops."""
        if self._started:
            return
        self._started = True
        for name, (model, order_by) in SUBSCRIPTIONS.items():
            sub = self.remote.subscribe(
                name,
                lambda docs, name=name, model=model: self._apply_snapshot(name, model, docs),
                order_by=order_by,
                descending=True,
            )
            self._subscriptions.append(sub)
        logger.info("Subscribed to %d collections on %s store", len(self._subscriptions), self.remote.name)

    def stop(self) -> None:
        for sub in self._subscriptions:
            sub.cancel()
        self._subscriptions.clear()
        self._started = False

    def _apply_snapshot(self, collection: str, model: Type[BaseModel], docs: List[Dict[str, Any]]) -> None:
        rows = []
        for doc in docs:
            try:
                rows.append(model.model_validate(doc))
            except ValidationError as e:
                logger.warning("Skipping malformed %s document %s: %s", collection, doc.get("id"), e)
        self._collections[collection] = tuple(rows)
        logger.debug("Applied %s snapshot (%d records)", collection, len(rows))

    # -------------------- Students -------------------- #

    async def add_student(self, student: StudentCreate) -> str:
        data = student.model_dump()
        if not data.get("batch"):
            data["batch"] = batch_for_time_slot(student.time_slot)
        if not data.get("border_color"):
            data["border_color"] = random_border_color()
        now = utcnow()
        data.update(archived=False, created_at=now, updated_at=now)
        return await self.remote.add(STUDENTS, data)

    async def update_student(self, student_id: str, changes: StudentUpdate) -> None:
        data = _fields(changes)
        data["updated_at"] = utcnow()
        await self.remote.update(STUDENTS, student_id, data)

    async def delete_student(self, student_id: str) -> None:
        # Subjects, doubts and work items keep their student_id
        await self.remote.delete(STUDENTS, student_id)

    async def archive_student(self, student_id: str) -> bool:
        """Toggle the archived flag; returns the new value."""
        current = await self.remote.get(STUDENTS, student_id)
        if current is None:
            raise DocumentNotFound(STUDENTS, student_id)
        archived = not current.get("archived", False)
        await self.remote.update(STUDENTS, student_id, {"archived": archived, "updated_at": utcnow()})
        return archived

    # -------------------- Subjects -------------------- #

    async def add_subject(self, subject: SubjectCreate) -> str:
        data = subject.model_dump()
        subject_id = await self.remote.add(SUBJECTS, data)

        for chapter in subject.chapters:
            if not chapter.name:
                continue
            now = utcnow()
            await self.remote.add(WORK_ITEMS, {
                "student_id": subject.student_id,
                "title": f"Study {subject.name}: {chapter.name}",
                "description": f"Auto task for chapter {chapter.name} in {subject.name}",
                "subject": subject.name,
                "chapter": chapter.name,
                "due_date": now,
                "status": "pending",
                "priority": "medium",
                "links": [],
                "created_at": now,
                "updated_at": now,
            })
        return subject_id

    async def update_subject(self, subject_id: str, changes: SubjectUpdate) -> None:
        data = _fields(changes)
        await self.remote.update(SUBJECTS, subject_id, data)

    async def delete_subject(self, subject_id: str) -> None:
        await self.remote.delete(SUBJECTS, subject_id)

    async def toggle_chapter(self, subject_id: str, chapter_id: str) -> bool:
        """Flip a chapter's completed flag; returns the new value."""
        current = await self.remote.get(SUBJECTS, subject_id)
        if current is None:
            raise DocumentNotFound(SUBJECTS, subject_id)
        chapters = [dict(c) for c in current.get("chapters") or []]
        target = next((c for c in chapters if c.get("id") == chapter_id), None)
        if target is None:
            raise DocumentNotFound(f"{SUBJECTS}/{subject_id}/chapters", chapter_id)

        now = utcnow()
        target["completed"] = not target.get("completed", False)
        if target["completed"]:
            target["completed_at"] = now
            if not target.get("started_at"):
                target["started_at"] = now
        else:
            target["completed_at"] = None
        await self.remote.update(SUBJECTS, subject_id, {"chapters": chapters})
        return target["completed"]

    # -------------------- Doubts -------------------- #

    async def add_doubt(self, doubt: DoubtCreate) -> str:
        data = doubt.model_dump()
        data["title"] = doubt.resolved_title()
        now = utcnow()
        data.update(status="open", created_at=now, updated_at=now, resolved_at=None)
        return await self.remote.add(DOUBTS, data)

    async def update_doubt(self, doubt_id: str, changes: DoubtUpdate) -> None:
        data = _fields(changes)
        now = utcnow()
        data["updated_at"] = now
        if data.get("status") == "resolved" and not data.get("resolved_at"):
            data["resolved_at"] = now
        await self.remote.update(DOUBTS, doubt_id, data)

    async def resolve_doubt(self, doubt_id: str) -> None:
        await self.update_doubt(doubt_id, DoubtUpdate(status="resolved"))

    async def delete_doubt(self, doubt_id: str) -> None:
        await self.remote.delete(DOUBTS, doubt_id)

    # -------------------- Work items -------------------- #

    async def add_work_item(self, work_item: WorkItemCreate) -> str:
        data = work_item.model_dump()
        now = utcnow()
        if data.get("due_date") is None:
            data["due_date"] = now
        data.update(created_at=now, updated_at=now)
        if data["status"] in DONE_STATUSES:
            data["completed_at"] = now
        return await self.remote.add(WORK_ITEMS, data)

    async def update_work_item(self, work_item_id: str, changes: WorkItemUpdate) -> int:
        """Apply changes; returns how many doubts were resolved as a side effect."""
        data = _fields(changes)
        if "status" in data:
            data["status"] = normalize_work_status(data["status"])
        now = utcnow()
        data["updated_at"] = now
        completing = data.get("status") in DONE_STATUSES
        if completing and "completed_at" not in data:
            data["completed_at"] = now

        await self.remote.update(WORK_ITEMS, work_item_id, data)

        if not completing:
            return 0
        current = await self.remote.get(WORK_ITEMS, work_item_id) or {}
        student_id = data.get("student_id") or current.get("student_id")
        subject = data.get("subject") or current.get("subject")
        chapter = data.get("chapter") or current.get("chapter")
        if not (student_id and subject):
            return 0
        return await self._resolve_doubts_for(student_id, subject, chapter)

    async def _resolve_doubts_for(self, student_id: str, subject: str, chapter: Optional[str]) -> int:
        """Resolve open doubts answered by finished work on subject/chapter.

        Not isolated: the query and the per-doubt writes are separate store
        calls, and concurrent writers win by last write.
        """
        matches = await self.remote.query(DOUBTS, {
            "student_id": student_id,
            "subject": subject,
            "status": "open",
        })
        resolved = 0
        for doubt in matches:
            if chapter and doubt.get("chapter") and doubt["chapter"] != chapter:
                continue
            now = utcnow()
            await self.remote.update(DOUBTS, doubt["id"], {
                "status": "resolved",
                "resolved_at": now,
                "updated_at": now,
            })
            resolved += 1
        if resolved:
            logger.info("Resolved %d doubt(s) for student %s on %s/%s", resolved, student_id, subject, chapter or "*")
        return resolved

    async def delete_work_item(self, work_item_id: str) -> None:
        await self.remote.delete(WORK_ITEMS, work_item_id)
