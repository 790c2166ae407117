from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime
from pathlib import Path

import pytest

from gallery_importer.domain.errors import JobPayloadError
from gallery_importer.domain.jobs import PayloadSource
from gallery_importer.infrastructure.logs import FileJobLog
from gallery_importer.infrastructure.staging import (
    FileSourceStager,
    JsonPayloadReader,
    parse_document,
)


def test_parse_document_accepts_items_wrapper_list_and_single_record() -> None:
    assert parse_document(b'{"items": [{"title": "A"}]}') == [{"title": "A"}]
    assert parse_document(b'[{"title": "A"}, {"title": "B"}]') == [
        {"title": "A"},
        {"title": "B"},
    ]
    assert parse_document(b'{"title": "Solo"}') == [{"title": "Solo"}]


def test_parse_document_strips_utf8_bom() -> None:
    raw = b"\xef\xbb\xbf" + json.dumps([{"title": "Café"}]).encode("utf-8")

    assert parse_document(raw) == [{"title": "Café"}]


@pytest.mark.parametrize("raw", [b"{not json", b"42", b'"text"', b"\xff\xfe"])
def test_parse_document_rejects_invalid_documents(raw: bytes) -> None:
    with pytest.raises(JobPayloadError, match="Invalid JSON"):
        parse_document(raw)


def test_reader_reads_staged_file_and_reports_missing(tmp_path: Path) -> None:
    reader = JsonPayloadReader()
    staged = tmp_path / "import.json"
    staged.write_bytes(b'{"items": [{"title": "A"}, {"title": "B"}]}')

    items = asyncio.run(reader.read_items(PayloadSource.staged(str(staged))))
    again = asyncio.run(reader.read_items(PayloadSource.staged(str(staged))))

    assert items == again == [{"title": "A"}, {"title": "B"}]
    with pytest.raises(JobPayloadError, match="Source file missing"):
        asyncio.run(reader.read_items(PayloadSource.staged(str(tmp_path / "gone.json"))))
    with pytest.raises(JobPayloadError, match="Source file missing"):
        asyncio.run(reader.read_items(PayloadSource()))


def test_reader_sees_rewritten_file(tmp_path: Path) -> None:
    reader = JsonPayloadReader()
    staged = tmp_path / "import.json"
    staged.write_bytes(b'[{"title": "A"}]')
    asyncio.run(reader.read_items(PayloadSource.staged(str(staged))))

    staged.write_bytes(b'[{"title": "A"}, {"title": "Longer"}]')

    assert len(asyncio.run(reader.read_items(PayloadSource.staged(str(staged))))) == 2


def test_stager_writes_uniquely_named_files(tmp_path: Path) -> None:
    stager = FileSourceStager(tmp_path / "staging")

    first = Path(asyncio.run(stager.stage(b'[{"title": "A"}]')))
    second = Path(asyncio.run(stager.stage(b'[{"title": "B"}]')))

    assert first != second
    assert first.name.startswith("dgi-")
    assert first.suffix == ".json"
    assert first.read_bytes() == b'[{"title": "A"}]'

    asyncio.run(stager.discard(str(first)))
    asyncio.run(stager.discard(str(first)))
    assert not first.exists()
    assert second.exists()


def test_job_log_appends_timestamped_blocks(tmp_path: Path) -> None:
    job_log = FileJobLog(
        tmp_path / "logs",
        url_template="/imports/jobs/{job_id}/log",
        clock=lambda: datetime(2026, 5, 4, 3, 2, 1, tzinfo=UTC),
    )

    asyncio.run(job_log.append("job-1", ["Processing item 0", "Item 0: created gallery 1"]))
    asyncio.run(job_log.append("job-1", []))
    asyncio.run(job_log.append("job-1", ["Done."]))

    assert asyncio.run(job_log.read("job-1")) == (
        "[2026-05-04 03:02:01]\nProcessing item 0\nItem 0: created gallery 1\n\n"
        "[2026-05-04 03:02:01]\nDone.\n\n"
    )
    assert asyncio.run(job_log.read("job-2")) == ""
    assert job_log.log_url("job-1") == "/imports/jobs/job-1/log"


def test_job_log_sanitizes_file_names(tmp_path: Path) -> None:
    job_log = FileJobLog(tmp_path, url_template="/{job_id}")

    asyncio.run(job_log.append("../escape", ["line"]))

    assert (tmp_path / ".._escape.log").exists()
