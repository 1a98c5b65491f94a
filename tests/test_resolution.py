"""Tests for resolving a knowledge gap into a new corpus document."""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from app.core.cluster_assignment import ClusterAssignmentEngine
from app.core.priority import ThresholdMonitor
from app.core.resolution import (
    CLEANUP_WARNING,
    ResolutionError,
    build_response_content,
    resolve_cluster,
    safe_title,
)

SCHOOL = "school-1"
NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine(fake_store):
    return ClusterAssignmentEngine(
        store=fake_store, threshold=0.85, monitor=ThresholdMonitor([5]), clock=lambda: NOW
    )


@pytest.fixture
def cluster_questions(engine, fake_store):
    ids = []
    for text in ("When is the spring concert?", "Spring concert date?", "When is the spring concert?"):
        row = fake_store.insert_question(SCHOOL, text, [1.0, 0.0])
        engine.assign(row["id"], [1.0, 0.0], SCHOOL)
        ids.append(row["id"])
    return ids


@pytest.fixture
def mock_documents():
    with patch("app.core.resolution.get_responses_folder") as mock_get_folder, \
         patch("app.core.resolution.create_responses_folder") as mock_create_folder, \
         patch("app.core.resolution.upload_text_file") as mock_upload, \
         patch("app.core.resolution.remove_stored_file") as mock_remove, \
         patch("app.core.resolution.insert_document") as mock_insert, \
         patch("app.core.resolution.log_admin_action") as mock_audit:
        mock_get_folder.return_value = {"id": "folder-1"}
        mock_insert.return_value = {"id": "doc-1"}
        yield {
            "get_folder": mock_get_folder,
            "create_folder": mock_create_folder,
            "upload": mock_upload,
            "remove": mock_remove,
            "insert": mock_insert,
            "audit": mock_audit,
        }


def test_resolve_creates_document_and_removes_questions(engine, fake_store, cluster_questions, mock_documents):
    pipeline = MagicMock()

    result = resolve_cluster(
        SCHOOL, "Spring concert", "The concert is on May 14 at 6pm.", cluster_questions,
        uploaded_by="admin-1", engine=engine, pipeline=pipeline,
    )

    assert result.document_id == "doc-1"
    assert result.removed_questions == 3
    assert len(result.deleted_clusters) == 1
    assert result.cleanup_failed is False
    assert result.warning is None
    assert fake_store.questions == {}
    assert fake_store.clusters == {}
    pipeline.submit.assert_called_once_with("doc-1", SCHOOL)

    storage_key, content = mock_documents["upload"].call_args.args
    assert storage_key.startswith(f"{SCHOOL}/")
    assert storage_key.endswith("-Spring concert.txt")
    assert content == (
        "Question: When is the spring concert?\n"
        "Question: Spring concert date?\n\n"
        "Answer: The concert is on May 14 at 6pm."
    )

    row = mock_documents["insert"].call_args.args[0]
    assert row["status"] == "processing"
    assert row["tags"] == ["response", "auto-generated"]
    assert row["folder_id"] == "folder-1"
    assert row["file_url"] == storage_key
    assert row["uploaded_by"] == "admin-1"


def test_empty_answer_mutates_nothing(engine, fake_store, cluster_questions, mock_documents):
    before_questions = {k: dict(v) for k, v in fake_store.questions.items()}
    before_clusters = {k: dict(v) for k, v in fake_store.clusters.items()}

    with pytest.raises(ResolutionError, match="Answer cannot be empty"):
        resolve_cluster(SCHOOL, "Spring concert", "   ", cluster_questions, engine=engine, pipeline=MagicMock())

    assert fake_store.questions == before_questions
    assert fake_store.clusters == before_clusters
    mock_documents["upload"].assert_not_called()
    mock_documents["insert"].assert_not_called()


def test_missing_questions_rejected(engine, mock_documents):
    with pytest.raises(ResolutionError):
        resolve_cluster(SCHOOL, "Label", "Answer", [], engine=engine, pipeline=MagicMock())


def test_creates_responses_folder_when_missing(engine, cluster_questions, mock_documents):
    mock_documents["get_folder"].return_value = None
    mock_documents["create_folder"].return_value = {"id": "folder-new"}

    resolve_cluster(SCHOOL, "Spring concert", "May 14", cluster_questions, engine=engine, pipeline=MagicMock())

    mock_documents["create_folder"].assert_called_once_with(SCHOOL)
    assert mock_documents["insert"].call_args.args[0]["folder_id"] == "folder-new"


def test_document_failure_deletes_nothing(engine, fake_store, cluster_questions, mock_documents):
    mock_documents["insert"].side_effect = RuntimeError("insert failed")
    pipeline = MagicMock()

    with pytest.raises(ResolutionError, match="Failed to store response document"):
        resolve_cluster(SCHOOL, "Spring concert", "May 14", cluster_questions, engine=engine, pipeline=pipeline)

    assert len(fake_store.questions) == 3
    assert len(fake_store.clusters) == 1
    pipeline.submit.assert_not_called()


def test_document_failure_removes_uploaded_file(engine, cluster_questions, mock_documents):
    mock_documents["insert"].side_effect = RuntimeError("insert failed")

    with pytest.raises(ResolutionError):
        resolve_cluster(SCHOOL, "Spring concert", "May 14", cluster_questions, engine=engine, pipeline=MagicMock())

    storage_key = mock_documents["upload"].call_args.args[0]
    mock_documents["remove"].assert_called_once_with(storage_key)


def test_failed_upload_removal_still_raises_resolution_error(engine, cluster_questions, mock_documents):
    mock_documents["insert"].side_effect = RuntimeError("insert failed")
    mock_documents["remove"].side_effect = RuntimeError("bucket unavailable")

    with pytest.raises(ResolutionError, match="insert failed"):
        resolve_cluster(SCHOOL, "Spring concert", "May 14", cluster_questions, engine=engine, pipeline=MagicMock())


def test_resolution_is_audited(engine, cluster_questions, mock_documents):
    resolve_cluster(
        SCHOOL, "Spring concert", "May 14", cluster_questions,
        uploaded_by="admin-1", engine=engine, pipeline=MagicMock(),
    )

    mock_documents["audit"].assert_called_once_with(
        "admin-1",
        "answer_unanswered",
        "document",
        "doc-1",
        details={"label": "Spring concert", "question_count": 3},
        school_id=SCHOOL,
    )


def test_audit_failure_is_not_fatal(engine, fake_store, cluster_questions, mock_documents):
    mock_documents["audit"].side_effect = RuntimeError("audit_log missing")

    result = resolve_cluster(
        SCHOOL, "Spring concert", "May 14", cluster_questions,
        uploaded_by="admin-1", engine=engine, pipeline=MagicMock(),
    )

    assert result.removed_questions == 3
    assert fake_store.questions == {}


def test_upload_failure_deletes_nothing(engine, fake_store, cluster_questions, mock_documents):
    mock_documents["upload"].side_effect = RuntimeError("bucket unavailable")

    with pytest.raises(ResolutionError):
        resolve_cluster(SCHOOL, "Spring concert", "May 14", cluster_questions, engine=engine, pipeline=MagicMock())

    assert len(fake_store.questions) == 3
    mock_documents["insert"].assert_not_called()
    mock_documents["remove"].assert_not_called()


def test_pipeline_failure_is_not_fatal(engine, fake_store, cluster_questions, mock_documents):
    pipeline = MagicMock()
    pipeline.submit.side_effect = RuntimeError("processing endpoint down")

    result = resolve_cluster(SCHOOL, "Spring concert", "May 14", cluster_questions, engine=engine, pipeline=pipeline)

    assert result.removed_questions == 3
    assert fake_store.questions == {}


def test_cleanup_failure_is_flagged(engine, fake_store, cluster_questions, mock_documents):
    fake_store.fail_on.add("delete_questions")

    result = resolve_cluster(SCHOOL, "Spring concert", "May 14", cluster_questions, engine=engine, pipeline=MagicMock())

    assert result.document_id == "doc-1"
    assert result.cleanup_failed is True
    assert result.warning == CLEANUP_WARNING
    assert len(fake_store.questions) == 3


def test_other_schools_questions_are_not_removed(engine, fake_store, mock_documents):
    other = fake_store.insert_question("school-2", "Other school question", [1.0, 0.0])

    result = resolve_cluster(SCHOOL, "Label", "Answer", [other["id"]], engine=engine, pipeline=MagicMock())

    assert result.removed_questions == 0
    assert other["id"] in fake_store.questions
    content = mock_documents["upload"].call_args.args[1]
    assert content == "Question: Label\n\nAnswer: Answer"


def test_safe_title_strips_symbols():
    assert safe_title("Field trip: cost & date?") == "Field trip cost  date"
    assert len(safe_title("x" * 200)) == 80


def test_content_falls_back_to_label():
    assert build_response_content([], "Answer", "Label") == "Question: Label\n\nAnswer: Answer"
