import pytest
from pydantic import ValidationError

from schemas import (
    Chapter, DoubtCreate, DoubtUpdate, StudentCreate, StudentUpdate, SubjectCreate, SubjectUpdate,
    WorkItemCreate, WorkItemUpdate, normalize_work_status,
)


class TestWorkStatus:
    def test_aliases(self):
        assert normalize_work_status("assigned") == "pending"
        assert normalize_work_status("completed") == "done"
        assert normalize_work_status("in-progress") == "in-progress"
        assert normalize_work_status(None) is None

    def test_update_accepts_form_vocabulary(self):
        assert WorkItemUpdate(status="completed").status == "done"

    def test_unknown_status_rejected(self):
        with pytest.raises(ValidationError):
            WorkItemCreate(student_id="s1", title="t", description="d", subject="Science", status="archived")


class TestCreatePayloads:
    def test_student_requires_core_fields(self):
        with pytest.raises(ValidationError):
            StudentCreate(full_name="A", grade="10", board="CBSE", school="")

    def test_doubt_title_defaults_to_description_prefix(self):
        doubt = DoubtCreate(student_id="s1", description="a" * 60)
        assert doubt.resolved_title() == "a" * 50
        assert DoubtCreate(student_id="s1", description="d", title="Own title").resolved_title() == "Own title"

    def test_subject_chapter_ids_unique(self):
        with pytest.raises(ValidationError):
            SubjectCreate(student_id="s1", name="Science", chapters=[
                Chapter(id="1", name="Light"), Chapter(id="1", name="Acids"),
            ])

    def test_work_item_requires_subject(self):
        with pytest.raises(ValidationError):
            WorkItemCreate(student_id="s1", title="t", description="d", subject="")


class TestUpdatePayloads:
    def test_omitted_fields_are_unset(self):
        assert StudentUpdate(grade="9").model_dump(exclude_unset=True) == {"grade": "9"}

    def test_explicit_null_is_kept(self):
        assert StudentUpdate(address=None).model_dump(exclude_unset=True) == {"address": None}

    @pytest.mark.parametrize("field", ["full_name", "grade", "time_slot", "batch", "border_color"])
    def test_student_required_field_cannot_be_cleared(self, field):
        with pytest.raises(ValidationError):
            StudentUpdate(**{field: None})

    @pytest.mark.parametrize("field", ["subject", "status", "due_date", "title", "links"])
    def test_work_item_required_field_cannot_be_cleared(self, field):
        with pytest.raises(ValidationError):
            WorkItemUpdate(**{field: None})

    def test_optional_work_item_fields_can_be_cleared(self):
        update = WorkItemUpdate(chapter=None, mentor_note=None)
        assert update.model_dump(exclude_unset=True) == {"chapter": None, "mentor_note": None}

    def test_subject_update_chapter_ids_unique(self):
        with pytest.raises(ValidationError):
            SubjectUpdate(chapters=[Chapter(id="1", name="Light"), Chapter(id="1", name="Acids")])
        with pytest.raises(ValidationError):
            SubjectUpdate(chapters=None)

    def test_doubt_update_only_resolves(self):
        assert DoubtUpdate(status="resolved").status == "resolved"
        with pytest.raises(ValidationError):
            DoubtUpdate(status="open")
