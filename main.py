import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, HTTPException, Depends, UploadFile, File, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from database import DocumentNotFound, create_store
from filters import (
    TIME_SLOT_BATCHES, daily_doubt_counts, filter_doubts, filter_students,
    filter_work_items, student_ids, subject_progress,
)
from schemas import (
    STUDENTS,
    Student, StudentCreate, StudentUpdate,
    Subject, SubjectCreate, SubjectUpdate,
    Doubt, DoubtCreate, DoubtUpdate,
    WorkItem, WorkItemCreate, WorkItemUpdate,
    SubjectProgress,
)
from store import SyncStore

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    remote = create_store()
    sync = SyncStore(remote)
    sync.start()
    app.state.sync = sync
    try:
        yield
    finally:
        sync.stop()
        await remote.close()
        logger.info("Store subscriptions closed")


app = FastAPI(title="Mentor Dashboard API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_sync(request: Request) -> SyncStore:
    return request.app.state.sync


@app.exception_handler(DocumentNotFound)
async def not_found_handler(request: Request, exc: DocumentNotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


# -------------------- Static files & Uploads -------------------- #
UPLOAD_DIR = os.getenv("UPLOAD_DIR", os.path.join(os.getcwd(), "uploads"))
os.makedirs(UPLOAD_DIR, exist_ok=True)
app.mount("/static", StaticFiles(directory=UPLOAD_DIR), name="static")


# -------------------- Meta endpoints -------------------- #

@app.get("/")
def read_root():
    return {"message": "Mentor Dashboard Backend is running"}


@app.get("/schema")
def get_schema():
    models = [Student, Subject, Doubt, WorkItem]
    return {m.__name__: m.model_json_schema() for m in models}


@app.get("/test")
async def test_database(sync: SyncStore = Depends(get_sync)):
    response = {
        "backend": "Running",
        "database": sync.remote.name,
        "connection_status": "Not Connected",
        "collections": [],
        "mirrored": {
            "students": len(sync.students),
            "subjects": len(sync.subjects),
            "doubts": len(sync.doubts),
            "work_items": len(sync.work_items),
        },
    }
    try:
        response["collections"] = (await sync.remote.collection_names())[:50]
        response["connection_status"] = "Connected"
    except Exception as e:
        logger.warning("Store diagnostics failed: %s", e)
        response["connection_status"] = f"Error: {str(e)[:80]}"
    return response


@app.get("/meta/time-slots")
def list_time_slots():
    return [{"time_slot": slot, "batch": batch} for slot, batch in TIME_SLOT_BATCHES.items()]


# -------------------- Students -------------------- #

@app.post("/students")
async def add_student(payload: StudentCreate, sync: SyncStore = Depends(get_sync)):
    sid = await sync.add_student(payload)
    return {"id": sid}


@app.get("/students", response_model=list[Student])
def list_students(
    archived: bool = False,
    q: Optional[str] = None,
    board: Optional[str] = None,
    grade: Optional[str] = None,
    batch: Optional[str] = None,
    sync: SyncStore = Depends(get_sync),
):
    return filter_students(sync.students, archived=archived, q=q, board=board, grade=grade, batch=batch)


@app.get("/students/{student_id}", response_model=Student)
def get_student(student_id: str, sync: SyncStore = Depends(get_sync)):
    student = sync.find(STUDENTS, student_id)
    if student is None:
        raise HTTPException(status_code=404, detail="Student not found")
    return student


@app.patch("/students/{student_id}")
async def update_student(student_id: str, payload: StudentUpdate, sync: SyncStore = Depends(get_sync)):
    await sync.update_student(student_id, payload)
    return {"status": "updated"}


@app.delete("/students/{student_id}")
async def delete_student(student_id: str, sync: SyncStore = Depends(get_sync)):
    await sync.delete_student(student_id)
    return {"status": "deleted"}


@app.post("/students/{student_id}/archive")
async def archive_student(student_id: str, sync: SyncStore = Depends(get_sync)):
    archived = await sync.archive_student(student_id)
    return {"status": "archived" if archived else "restored", "archived": archived}


@app.post("/students/{student_id}/profile-image")
async def upload_profile_image(student_id: str, file: UploadFile = File(...), sync: SyncStore = Depends(get_sync)):
    if not file.filename:
        raise HTTPException(status_code=400, detail="Filename required")
    name, ext = os.path.splitext(file.filename)
    safe = name.replace(" ", "_").replace("/", "_")[:64]
    ts = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S%f")
    filename = f"{student_id}_{safe}_{ts}{ext}"
    dest = os.path.join(UPLOAD_DIR, filename)
    with open(dest, "wb") as f:
        content = await file.read()
        f.write(content)
    url = f"/static/{filename}"
    await sync.update_student(student_id, StudentUpdate(profile_image=url))
    return {"file_url": url, "filename": filename}


@app.get("/students/{student_id}/progress", response_model=list[SubjectProgress])
def student_progress(student_id: str, sync: SyncStore = Depends(get_sync)):
    return [subject_progress(s) for s in sync.subjects if s.student_id == student_id]


# -------------------- Subjects -------------------- #

@app.post("/subjects")
async def add_subject(payload: SubjectCreate, sync: SyncStore = Depends(get_sync)):
    sid = await sync.add_subject(payload)
    return {"id": sid}


@app.get("/subjects", response_model=list[Subject])
def list_subjects(student_id: Optional[str] = None, sync: SyncStore = Depends(get_sync)):
    return [s for s in sync.subjects if not student_id or s.student_id == student_id]


@app.patch("/subjects/{subject_id}")
async def update_subject(subject_id: str, payload: SubjectUpdate, sync: SyncStore = Depends(get_sync)):
    await sync.update_subject(subject_id, payload)
    return {"status": "updated"}


@app.delete("/subjects/{subject_id}")
async def delete_subject(subject_id: str, sync: SyncStore = Depends(get_sync)):
    await sync.delete_subject(subject_id)
    return {"status": "deleted"}


@app.post("/subjects/{subject_id}/chapters/{chapter_id}/toggle")
async def toggle_chapter(subject_id: str, chapter_id: str, sync: SyncStore = Depends(get_sync)):
    completed = await sync.toggle_chapter(subject_id, chapter_id)
    return {"status": "updated", "completed": completed}


# -------------------- Doubts -------------------- #

@app.post("/doubts")
async def add_doubt(payload: DoubtCreate, sync: SyncStore = Depends(get_sync)):
    did = await sync.add_doubt(payload)
    return {"id": did}


@app.get("/doubts", response_model=list[Doubt])
def list_doubts(
    student_id: Optional[str] = None,
    status: Optional[str] = None,
    subject: Optional[str] = None,
    priority: Optional[str] = None,
    q: Optional[str] = None,
    sync: SyncStore = Depends(get_sync),
):
    return filter_doubts(sync.doubts, student_id=student_id, status=status, subject=subject, priority=priority, q=q)


@app.get("/doubts/daily")
def doubts_per_day(days: int = 30, sync: SyncStore = Depends(get_sync)):
    if days < 1 or days > 366:
        raise HTTPException(status_code=400, detail="days must be between 1 and 366")
    return daily_doubt_counts(sync.doubts, days=days)


@app.patch("/doubts/{doubt_id}")
async def update_doubt(doubt_id: str, payload: DoubtUpdate, sync: SyncStore = Depends(get_sync)):
    await sync.update_doubt(doubt_id, payload)
    return {"status": "updated"}


@app.post("/doubts/{doubt_id}/resolve")
async def resolve_doubt(doubt_id: str, sync: SyncStore = Depends(get_sync)):
    await sync.resolve_doubt(doubt_id)
    return {"status": "resolved"}


@app.delete("/doubts/{doubt_id}")
async def delete_doubt(doubt_id: str, sync: SyncStore = Depends(get_sync)):
    await sync.delete_doubt(doubt_id)
    return {"status": "deleted"}


# -------------------- Work items -------------------- #

@app.post("/work-items")
async def add_work_item(payload: WorkItemCreate, sync: SyncStore = Depends(get_sync)):
    wid = await sync.add_work_item(payload)
    return {"id": wid}


@app.get("/work-items", response_model=list[WorkItem])
def list_work_items(
    student_id: Optional[str] = None,
    subject: Optional[str] = None,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    batch: Optional[str] = None,
    sync: SyncStore = Depends(get_sync),
):
    in_batch = None
    if batch and batch != "all":
        in_batch = student_ids(s for s in sync.students if s.batch == batch)
    return filter_work_items(
        sync.work_items, student_id=student_id, subject=subject,
        status=status, priority=priority, student_filter=in_batch,
    )


@app.patch("/work-items/{work_item_id}")
async def update_work_item(work_item_id: str, payload: WorkItemUpdate, sync: SyncStore = Depends(get_sync)):
    resolved = await sync.update_work_item(work_item_id, payload)
    return {"status": "updated", "resolved_doubts": resolved}


@app.delete("/work-items/{work_item_id}")
async def delete_work_item(work_item_id: str, sync: SyncStore = Depends(get_sync)):
    await sync.delete_work_item(work_item_id)
    return {"status": "deleted"}


# -------------------- Run -------------------- #

if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
