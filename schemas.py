"""
Database Schemas for the Mentor Dashboard

Each record model below maps to a document collection (see COLLECTIONS).
Create payloads validate what the dashboard sends when adding a record;
update payloads have every field optional so that an omitted field leaves
the stored value untouched while an explicit null clears it. Fields that
are required on the stored record can be omitted but never cleared.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import ClassVar, Optional, List, Literal, Tuple
from datetime import datetime

STUDENTS = "students"
SUBJECTS = "subjects"
DOUBTS = "doubts"
WORK_ITEMS = "work_items"

COLLECTIONS = (STUDENTS, SUBJECTS, DOUBTS, WORK_ITEMS)

BorderColor = Literal["orange", "green", "blue", "purple"]
Priority = Literal["low", "medium", "high"]
DoubtStatus = Literal["open", "resolved"]
WorkStatus = Literal["pending", "in-progress", "done"]

BORDER_COLORS = ("orange", "green", "blue", "purple")

# Creation-form vocabulary -> stored vocabulary
WORK_STATUS_ALIASES = {
    "assigned": "pending",
    "completed": "done",
}
DONE_STATUSES = {"done"}

DOUBT_TITLE_LENGTH = 50


def normalize_work_status(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return WORK_STATUS_ALIASES.get(value, value)


class Record(BaseModel):
    """Common base for documents read back from the store."""
    model_config = ConfigDict(extra="ignore")

    id: str


class PartialUpdate(BaseModel):
    """Update payload; fields named in NOT_NULL may be omitted but not set to null."""
    NOT_NULL: ClassVar[Tuple[str, ...]] = ()

    @model_validator(mode="after")
    def _required_fields_not_cleared(self):
        cleared = [f for f in self.NOT_NULL if f in self.model_fields_set and getattr(self, f) is None]
        if cleared:
            raise ValueError(f"cannot clear required field(s): {', '.join(cleared)}")
        return self


# Students
class Student(Record):
    full_name: str
    grade: str
    board: str
    school: str
    batch: str = ""
    time_slot: str
    contact: str = ""
    personal_phone: Optional[str] = None
    father_phone: Optional[str] = None
    mother_phone: Optional[str] = None
    address: Optional[str] = None
    profile_image: Optional[str] = None
    archived: bool = False
    created_at: datetime
    updated_at: Optional[datetime] = None
    border_color: BorderColor = "orange"


class StudentCreate(BaseModel):
    full_name: str = Field(..., min_length=1)
    grade: str = Field(..., min_length=1)
    board: str = Field(..., min_length=1)
    school: str = Field(..., min_length=1)
    time_slot: str = Field(..., min_length=1)
    batch: Optional[str] = Field(None, description="Derived from time_slot when omitted")
    contact: str = ""
    personal_phone: Optional[str] = None
    father_phone: Optional[str] = None
    mother_phone: Optional[str] = None
    address: Optional[str] = None
    profile_image: Optional[str] = None
    border_color: Optional[BorderColor] = Field(None, description="Picked at random when omitted")


class StudentUpdate(PartialUpdate):
    NOT_NULL: ClassVar[Tuple[str, ...]] = (
        "full_name", "grade", "board", "school", "batch", "time_slot", "contact", "border_color",
    )

    full_name: Optional[str] = None
    grade: Optional[str] = None
    board: Optional[str] = None
    school: Optional[str] = None
    batch: Optional[str] = None
    time_slot: Optional[str] = None
    contact: Optional[str] = None
    personal_phone: Optional[str] = None
    father_phone: Optional[str] = None
    mother_phone: Optional[str] = None
    address: Optional[str] = None
    profile_image: Optional[str] = None
    border_color: Optional[BorderColor] = None


# Curriculum
class Chapter(BaseModel):
    id: str
    name: str
    completed: bool = False
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class Subject(Record):
    student_id: str
    name: str
    chapters: List[Chapter] = Field(default_factory=list)


def chapter_ids_unique(chapters: Optional[List[Chapter]]) -> Optional[List[Chapter]]:
    if chapters is None:
        return chapters
    ids = [c.id for c in chapters]
    if len(ids) != len(set(ids)):
        raise ValueError("chapter ids must be unique within a subject")
    return chapters


class SubjectCreate(BaseModel):
    student_id: str
    name: str = Field(..., min_length=1)
    chapters: List[Chapter] = Field(default_factory=list)

    @field_validator("chapters")
    @classmethod
    def _unique_chapter_ids(cls, v):
        return chapter_ids_unique(v)


class SubjectUpdate(PartialUpdate):
    NOT_NULL: ClassVar[Tuple[str, ...]] = ("student_id", "name", "chapters")

    student_id: Optional[str] = None
    name: Optional[str] = None
    chapters: Optional[List[Chapter]] = None

    @field_validator("chapters")
    @classmethod
    def _unique_chapter_ids(cls, v):
        return chapter_ids_unique(v)


# Doubts
class Doubt(Record):
    student_id: str
    title: str
    description: str
    subject: Optional[str] = None
    chapter: Optional[str] = None
    priority: Priority = "medium"
    status: DoubtStatus = "open"
    created_at: datetime
    updated_at: datetime
    resolved_at: Optional[datetime] = None


class DoubtCreate(BaseModel):
    student_id: str
    description: str = Field(..., min_length=1)
    title: Optional[str] = Field(None, description="Defaults to the first 50 characters of the description")
    subject: Optional[str] = None
    chapter: Optional[str] = None
    priority: Priority = "medium"

    def resolved_title(self) -> str:
        return self.title or self.description[:DOUBT_TITLE_LENGTH]


class DoubtUpdate(PartialUpdate):
    NOT_NULL: ClassVar[Tuple[str, ...]] = ("title", "description", "priority", "status")

    title: Optional[str] = None
    description: Optional[str] = None
    subject: Optional[str] = None
    chapter: Optional[str] = None
    priority: Optional[Priority] = None
    # Doubts never move back to open
    status: Optional[Literal["resolved"]] = None
    resolved_at: Optional[datetime] = None


# Work items
class WorkItem(Record):
    student_id: str
    title: str
    description: str
    subject: str
    chapter: Optional[str] = None
    topic: Optional[str] = None
    due_date: datetime
    status: WorkStatus = "pending"
    priority: Priority = "medium"
    links: List[str] = Field(default_factory=list)
    mentor_note: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, v):
        return normalize_work_status(v)


class WorkItemCreate(BaseModel):
    student_id: str
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    subject: str = Field(..., min_length=1)
    chapter: Optional[str] = None
    topic: Optional[str] = None
    due_date: Optional[datetime] = Field(None, description="Defaults to now")
    status: WorkStatus = "pending"
    priority: Priority = "medium"
    links: List[str] = Field(default_factory=list)
    mentor_note: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, v):
        return normalize_work_status(v)


class WorkItemUpdate(PartialUpdate):
    NOT_NULL: ClassVar[Tuple[str, ...]] = (
        "student_id", "title", "description", "subject", "due_date", "status", "priority", "links",
    )

    student_id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    subject: Optional[str] = None
    chapter: Optional[str] = None
    topic: Optional[str] = None
    due_date: Optional[datetime] = None
    status: Optional[WorkStatus] = None
    priority: Optional[Priority] = None
    links: Optional[List[str]] = None
    mentor_note: Optional[str] = None
    completed_at: Optional[datetime] = None

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, v):
        return normalize_work_status(v)


# Views
class SubjectProgress(BaseModel):
    student_id: str
    subject_id: str
    subject_name: str
    completed_chapters: int
    total_chapters: int
    percentage: int
