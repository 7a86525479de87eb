"""
Test Suite for the Pipeline
===========================
End-to-end runs of UnmatchedPagesEngine over generated exports, the roster
loaders, and the click CLI.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import threading
import time

import pytest
from click.testing import CliRunner

from unmatched_pages.cli import cli
from unmatched_pages.engine import (
    PipelineConfig,
    UnmatchedPagesEngine,
    submitter_reports,
)
from unmatched_pages.errors import ArchiveError, RosterMismatchError
from unmatched_pages.models import (
    ErrorKind,
    QuestionNumber,
    ReportError,
    Roster,
    UnmatchedQuestion,
    UnmatchedReport,
    UnmatchedSubmission,
)
from unmatched_pages.normalizer import Strategy
from unmatched_pages.roster import build_roster, load_roster, roster_from_json


FULL = ["Questions assigned to the following page: 1.1 and 1.2"]
ONLY_FIRST = [
    "Question assigned to the following page: 1.1",
    "No questions assigned to the following page.",
]

OUTLINE_JSON = {
    "outline": [
        {
            "type": "QuestionGroup",
            "index": 1,
            "title": "Proofs",
            "children": [
                {"type": "FreeResponseQuestion", "index": 1, "title": "Part A"},
                {"type": "FreeResponseQuestion", "index": 2, "title": "Part B"},
            ],
        },
    ]
}

ROSTER_JSON = {
    "submissions": {
        "1001": [{"name": "Ada Lovelace", "email": "ada@example.edu"}],
        "1002": [{"name": "Alan Turing", "email": "alan@example.edu"}],
    }
}


def question(number: str, title: str) -> UnmatchedQuestion:
    return UnmatchedQuestion(title=title, number=QuestionNumber.parse(number))


def reports_of(items) -> list[UnmatchedReport]:
    return [i for i in items if isinstance(i, UnmatchedReport)]


def errors_of(items) -> list[ReportError]:
    return [i for i in items if isinstance(i, ReportError)]


@pytest.fixture
def engine() -> UnmatchedPagesEngine:
    return UnmatchedPagesEngine(PipelineConfig(max_workers=2, queue_size=2))


@pytest.fixture
def reference_export(zip_export, text_pdf) -> bytes:
    """1001 fully matched, 1002 missing 1.2, plus a metadata file."""
    return zip_export({
        "1001.pdf": text_pdf(FULL),
        "1002.pdf": text_pdf(ONLY_FIRST),
        "submission_metadata.yml": b"1001: {}\n1002: {}\n",
    })


# ═══════════════════════════════════════════════════════════════════════════════
# ENGINE
# ═══════════════════════════════════════════════════════════════════════════════


class TestEngine:
    """Test full pipeline runs."""

    def test_reference_export(self, engine, reference_export, outline, roster):
        items = engine.run(reference_export, outline, roster)

        assert items == [
            UnmatchedReport(
                student_name="Alan Turing",
                student_email="alan@example.edu",
                submission_id="1002",
                questions=[question("1.2", "Part B")],
            )
        ]
        assert engine.stats.entries == 2
        assert engine.stats.submissions == 2
        assert engine.stats.fully_matched == 1
        assert engine.stats.unmatched_submissions == 1
        assert engine.stats.reports == 1
        assert engine.stats.errors == 0

    def test_fully_matched_export_yields_nothing(
        self, engine, zip_export, text_pdf, outline, roster
    ):
        data = zip_export({"1001.pdf": text_pdf(FULL), "1002.pdf": text_pdf(FULL)})
        assert engine.run(data, outline, roster) == []
        assert engine.stats.fully_matched == 2

    def test_corrupt_pdf_is_isolated(
        self, engine, zip_export, text_pdf, outline, roster
    ):
        data = zip_export({
            "1001.pdf": b"%PDF-1.4 this is not really a pdf",
            "1002.pdf": text_pdf(ONLY_FIRST),
        })
        items = engine.run(data, outline, roster)

        errors = errors_of(items)
        assert len(errors) == 1
        assert errors[0].kind == ErrorKind.PARSE_ERROR
        assert errors[0].filename == "1001.pdf"
        assert errors[0].submission_id == "1001"
        assert [r.submission_id for r in reports_of(items)] == ["1002"]

    def test_template_drift_is_anchor_error(
        self, engine, zip_export, text_pdf, outline, roster
    ):
        data = zip_export({"1001.pdf": text_pdf(FULL, total_points=False)})
        items = engine.run(data, outline, roster)
        assert [e.kind for e in errors_of(items)] == [ErrorKind.ANCHOR_NOT_FOUND]

    def test_roster_mismatch(
        self, engine, zip_export, text_pdf, outline, roster, caplog
    ):
        data = zip_export({"9999.pdf": text_pdf(ONLY_FIRST)})
        with caplog.at_level(logging.ERROR, logger="unmatched_pages"):
            items = engine.run(data, outline, roster)

        assert items == [
            ReportError(
                kind=ErrorKind.ROSTER_MISMATCH,
                message="could not find students for submission 9999",
                submission_id="9999",
            )
        ]
        assert "ROSTER MISMATCH" in caplog.text

    def test_group_submission_fans_out(
        self, engine, zip_export, text_pdf, outline, roster
    ):
        data = zip_export({"1003.pdf": text_pdf(ONLY_FIRST)})
        items = engine.run(data, outline, roster)

        assert {r.student_email for r in reports_of(items)} == {
            "grace@example.edu",
            "edsger@example.edu",
        }
        assert all(r.question_numbers == ["1.2"] for r in items)
        assert engine.stats.reports == 2

    def test_many_submissions(self, zip_export, text_pdf, outline):
        submissions = {
            str(n): [{"name": f"Student {n}", "email": f"s{n}@example.edu"}]
            for n in range(2000, 2012)
        }
        roster = Roster.model_validate({"submissions": submissions})
        data = zip_export({
            f"{n}.pdf": text_pdf(ONLY_FIRST if n % 3 == 0 else FULL)
            for n in range(2000, 2012)
        })
        engine = UnmatchedPagesEngine(PipelineConfig(max_workers=3, queue_size=1))

        seen = []
        items = engine.run(data, outline, roster, progress_callback=seen.append)

        assert {r.submission_id for r in reports_of(items)} == {
            "2001", "2004", "2007", "2010",
        }
        assert seen == list(range(1, 13))

    def test_structured_strategy(
        self, zip_export, structured_pdf, outline, roster
    ):
        data = zip_export({
            "1001.pdf": structured_pdf([("1.1", 1), ("1.2", 2)]),
            "1002.pdf": structured_pdf([("1.1", 1), ("1.2", 0)]),
        })
        engine = UnmatchedPagesEngine(
            PipelineConfig(max_workers=2, strategy=Strategy.STRUCTURED)
        )
        items = engine.run(data, outline, roster)
        assert [(r.submission_id, r.question_numbers) for r in items] == [
            ("1002", ["1.2"]),
        ]

    def test_accepts_flattened_questions(
        self, engine, reference_export, outline, roster
    ):
        items = engine.run(reference_export, outline.questions(), roster)
        assert [r.submission_id for r in items] == ["1002"]

    def test_unopenable_archive_is_fatal(self, engine, outline, roster):
        with pytest.raises(ArchiveError):
            engine.run(b"not a zip archive", outline, roster)

    def test_entry_error_item(self, engine, outline, roster, monkeypatch):
        from unmatched_pages import archive
        from unmatched_pages.errors import EntryError

        def fake_entries(source):
            yield EntryError("1001.pdf", "cannot read zip entry file data: bad CRC")

        monkeypatch.setattr(archive, "iter_pdf_entries", fake_entries)
        items = engine.run(b"unused", outline, roster)

        assert [(e.kind, e.filename) for e in items] == [
            (ErrorKind.ENTRY_ERROR, "1001.pdf"),
        ]
        assert engine.stats.entries == 1
        assert engine.stats.errors == 1

    def test_early_close_stops_reader(self, zip_export, text_pdf, outline, roster):
        data = zip_export({f"{n}.pdf": text_pdf(ONLY_FIRST) for n in range(50)})
        roster = Roster.model_validate({
            "submissions": {
                str(n): [{"name": "S", "email": "s@example.edu"}]
                for n in range(50)
            }
        })
        engine = UnmatchedPagesEngine(PipelineConfig(max_workers=2, queue_size=1))

        before = set(threading.enumerate())

        async def first_item():
            stream = engine.stream(data, outline, roster)
            async with contextlib.aclosing(stream):
                async for item in stream:
                    break
            # The reader thread is joined before the stream finishes closing
            readers = [
                t for t in set(threading.enumerate()) - before
                if t.name == "archive-reader"
            ]
            return item, readers

        item, readers = asyncio.run(first_item())
        assert isinstance(item, UnmatchedReport)
        assert readers == []

    def test_bounded_workers_off_the_event_loop(
        self, zip_export, text_pdf, outline, monkeypatch
    ):
        roster = Roster.model_validate({
            "submissions": {
                str(n): [{"name": "S", "email": f"s{n}@example.edu"}]
                for n in range(12)
            }
        })
        data = zip_export({f"{n}.pdf": text_pdf(ONLY_FIRST) for n in range(12)})
        engine = UnmatchedPagesEngine(PipelineConfig(max_workers=3, queue_size=2))

        lock = threading.Lock()
        in_flight = 0
        peak = 0
        worker_threads = set()
        loop_threads = set()
        load = engine.normalizer.load

        def tracked_load(filename, data):
            nonlocal in_flight, peak
            with lock:
                in_flight += 1
                peak = max(peak, in_flight)
                worker_threads.add(threading.get_ident())
            try:
                time.sleep(0.02)
                return load(filename, data)
            finally:
                with lock:
                    in_flight -= 1

        monkeypatch.setattr(engine.normalizer, "load", tracked_load)
        items = engine.run(
            data, outline, roster,
            progress_callback=lambda _: loop_threads.add(threading.get_ident()),
        )

        assert len(items) == 12
        assert 1 <= peak <= 3
        assert len(loop_threads) == 1
        assert not worker_threads & loop_threads


class TestSubmitterReports:
    """Test the roster join."""

    def test_one_report_per_student(self, roster):
        unmatched = UnmatchedSubmission(
            submission_id="1003",
            questions=(question("1.2", "Part B"),),
        )
        reports = submitter_reports(unmatched, roster)
        assert [r.student_name for r in reports] == ["Grace Hopper", "Edsger Dijkstra"]
        assert reports[0].summary() == "1 unmatched question: 1.2: Part B"

    def test_unknown_submission(self, roster):
        unmatched = UnmatchedSubmission(
            submission_id="4242",
            questions=(question("1", "Essay"),),
        )
        with pytest.raises(RosterMismatchError) as exc_info:
            submitter_reports(unmatched, roster)
        assert exc_info.value.submission_id == "4242"


# ═══════════════════════════════════════════════════════════════════════════════
# ROSTER LOADING
# ═══════════════════════════════════════════════════════════════════════════════


MANAGER_PROPS = {
    "assignmentId": 77,
    "students": [
        {"id": 1, "name": "Ada Lovelace", "email": "ada@example.edu"},
        {"id": 2, "name": "Alan Turing", "email": "alan@example.edu"},
    ],
    "submissions": {
        "1001": {"id": 1001, "active_user_ids": [1, 2]},
        "1002": {"id": 1002, "active_user_ids": [3]},
    },
}


class TestRoster:
    """Test both roster JSON shapes."""

    def test_build_roster_from_manager_props(self, caplog):
        with caplog.at_level(logging.WARNING, logger="unmatched_pages"):
            roster = build_roster(MANAGER_PROPS)

        assert "1001" in roster
        assert "1002" not in roster
        assert [s.email for s in roster.students("1001")] == [
            "ada@example.edu",
            "alan@example.edu",
        ]
        assert "Could not find student with id 3" in caplog.text

    def test_mismatching_submission_key(self):
        props = {
            "students": [],
            "submissions": {"1001": {"id": 1002, "active_user_ids": []}},
        }
        with pytest.raises(ValueError):
            build_roster(props)

    def test_plain_mapping_shapes(self):
        wrapped = roster_from_json(ROSTER_JSON)
        bare = roster_from_json(ROSTER_JSON["submissions"])
        assert wrapped == bare
        assert len(wrapped) == 2

    def test_load_roster(self, tmp_path):
        path = tmp_path / "roster.json"
        path.write_text(json.dumps(MANAGER_PROPS), encoding="utf-8")
        assert len(load_roster(path)) == 1


# ═══════════════════════════════════════════════════════════════════════════════
# CLI
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def export_files(tmp_path, reference_export):
    export = tmp_path / "export.zip"
    export.write_bytes(reference_export)
    outline_path = tmp_path / "outline.json"
    outline_path.write_text(json.dumps(OUTLINE_JSON), encoding="utf-8")
    roster_path = tmp_path / "roster.json"
    roster_path.write_text(json.dumps(ROSTER_JSON), encoding="utf-8")
    return export, outline_path, roster_path


def json_lines(output: str) -> list[dict]:
    return [json.loads(line) for line in output.splitlines() if line.startswith("{")]


class TestCli:
    """Test the click commands."""

    def test_scan_json_output(self, export_files):
        export, outline_path, roster_path = export_files
        result = CliRunner().invoke(cli, [
            "scan", str(export),
            "--outline", str(outline_path),
            "--roster", str(roster_path),
            "--workers", "2",
            "--json-output",
        ])

        assert result.exit_code == 0, result.output
        assert json_lines(result.output) == [{
            "type": "report",
            "student_name": "Alan Turing",
            "student_email": "alan@example.edu",
            "submission_id": "1002",
            "questions": [{"title": "Part B", "number": "1.2"}],
            "question_numbers": ["1.2"],
        }]

    def test_scan_table_output(self, export_files):
        export, outline_path, roster_path = export_files
        result = CliRunner().invoke(cli, [
            "scan", str(export),
            "--outline", str(outline_path),
            "--roster", str(roster_path),
            "--log-level", "ERROR",
        ])

        assert result.exit_code == 0, result.output
        assert "Alan Turing" in result.output
        assert "2 submissions scanned" in result.output

    def test_scan_bad_archive(self, tmp_path, export_files):
        _, outline_path, roster_path = export_files
        bogus = tmp_path / "bogus.zip"
        bogus.write_bytes(b"not a zip")
        result = CliRunner().invoke(cli, [
            "scan", str(bogus),
            "--outline", str(outline_path),
            "--roster", str(roster_path),
            "--json-output",
        ])
        assert result.exit_code == 1

    def test_scan_invalid_outline(self, tmp_path, export_files):
        export, _, roster_path = export_files
        outline_path = tmp_path / "dupes.json"
        outline_path.write_text(json.dumps([
            {"type": "FreeResponseQuestion", "index": 1, "title": "A"},
            {"type": "FreeResponseQuestion", "index": 1, "title": "B"},
        ]), encoding="utf-8")
        result = CliRunner().invoke(cli, [
            "scan", str(export),
            "--outline", str(outline_path),
            "--roster", str(roster_path),
        ])
        assert result.exit_code == 1

    def test_inspect(self, tmp_path, structured_pdf):
        pdf = tmp_path / "1001.pdf"
        pdf.write_bytes(structured_pdf([("1.1", 1), ("2", 0)]))
        result = CliRunner().invoke(cli, ["inspect", str(pdf), "-s", "structured"])

        assert result.exit_code == 0, result.output
        assert "question_summary" in result.output
        assert "1001" in result.output

    def test_outline(self, tmp_path):
        path = tmp_path / "outline.json"
        path.write_text(json.dumps(OUTLINE_JSON), encoding="utf-8")
        result = CliRunner().invoke(cli, ["outline", str(path)])

        assert result.exit_code == 0, result.output
        assert "1.1" in result.output and "Part B" in result.output
