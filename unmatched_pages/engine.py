"""
Unmatched Pages Engine
======================
Main orchestrator that combines archive extraction, PDF normalization,
outline diffing, and the roster join into a stream of per-student reports.

Usage:
    engine = UnmatchedPagesEngine(config)
    async for item in engine.stream("export.zip", outline, roster):
        ...
    # or, synchronously
    items = engine.run("export.zip", outline, roster)

Architecture:
    export.zip → ArchiveReader (reader thread) → worker pool
    (PageNormalizer + diff) → roster join → UnmatchedReport | ReportError

Items arrive in completion order, not archive order.
"""

from __future__ import annotations

import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Callable, Optional, Sequence, Union

from .archive import ArchiveEntry, ArchiveReader, ArchiveSource
from .diff import diff_submission
from .errors import EntryError, ParseError, RosterMismatchError
from .models import (
    Outline,
    Question,
    ReportError,
    ReportItem,
    Roster,
    RunStats,
    UnmatchedReport,
    UnmatchedSubmission,
)
from .normalizer import PageNormalizer, Strategy
from .template import DEFAULT_TEMPLATE, TemplateProfile

logger = logging.getLogger(__name__)


@dataclass
class PipelineConfig:
    """Configuration for the unmatched pages engine."""

    # Concurrency
    max_workers: int = 16
    queue_size: int = 32

    # Page analysis
    strategy: Strategy = Strategy.TEXT
    template: TemplateProfile = field(default_factory=lambda: DEFAULT_TEMPLATE)

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None


def submitter_reports(
    unmatched: UnmatchedSubmission,
    roster: Roster,
) -> list[UnmatchedReport]:
    """
    Fan an unmatched submission out to one report per submitter.

    Raises:
        RosterMismatchError: The submission id is not in the roster.
    """
    return [
        UnmatchedReport(
            student_name=student.name,
            student_email=student.email,
            submission_id=unmatched.submission_id,
            questions=list(unmatched.questions),
        )
        for student in roster.students(unmatched.submission_id)
    ]


class UnmatchedPagesEngine:
    """
    Finds unmatched questions across a whole submissions export.

    PDF parsing is CPU-bound, so it runs on a fixed-size thread pool while
    the event loop only coordinates archive reads and results. Outline and
    roster are shared read-only by every worker.
    """

    def __init__(self, config: Optional[PipelineConfig] = None):
        self.config = config or PipelineConfig()
        self.normalizer = PageNormalizer(
            strategy=self.config.strategy,
            template=self.config.template,
        )
        self.stats = RunStats()
        self._setup_logging()

    def _setup_logging(self):
        """Configure logging based on config."""
        log_level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        package_logger = logging.getLogger("unmatched_pages")
        package_logger.setLevel(log_level)

        # Console handler
        if not package_logger.handlers:
            console = logging.StreamHandler()
            console.setLevel(log_level)
            formatter = logging.Formatter(
                "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
            console.setFormatter(formatter)
            package_logger.addHandler(console)

        # File handler
        if self.config.log_file:
            log_dir = Path(self.config.log_file).parent
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(
                self.config.log_file, encoding="utf-8"
            )
            file_handler.setLevel(log_level)
            file_handler.setFormatter(logging.Formatter(
                "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            ))
            package_logger.addHandler(file_handler)

    def run(
        self,
        source: ArchiveSource,
        outline: Union[Outline, Sequence[Question]],
        roster: Roster,
        progress_callback: Optional[Callable[[int], None]] = None,
    ) -> list[ReportItem]:
        """Run the whole pipeline on a fresh event loop and collect every item."""

        async def collect() -> list[ReportItem]:
            return [
                item
                async for item in self.stream(
                    source, outline, roster, progress_callback
                )
            ]

        return asyncio.run(collect())

    async def stream(
        self,
        source: ArchiveSource,
        outline: Union[Outline, Sequence[Question]],
        roster: Roster,
        progress_callback: Optional[Callable[[int], None]] = None,
    ) -> AsyncIterator[ReportItem]:
        """
        Stream reports and per-item errors for every submission in an export.

        Args:
            source: Export zip as a path, bytes, or binary file object.
            outline: Assignment outline, or its already flattened questions.
            roster: Submission-to-students mapping.
            progress_callback: Callback(submissions_processed) per submission.

        Yields:
            UnmatchedReport per (student, unmatched submission), ReportError
            per failed entry, submission, or roster lookup.

        Raises:
            ArchiveError: The export cannot be opened. Ends the stream.
        """
        if isinstance(outline, Outline):
            questions = tuple(outline.questions())
        else:
            questions = tuple(outline)

        stats = RunStats()
        self.stats = stats
        start_time = time.time()

        loop = asyncio.get_running_loop()
        reader = ArchiveReader(source, maxsize=self.config.queue_size)
        executor = ThreadPoolExecutor(
            max_workers=self.config.max_workers,
            thread_name_prefix="unmatched-worker",
        )
        pending: set[asyncio.Future] = set()
        exhausted = False

        logger.info(
            f"Checking submissions against {len(questions)} outline questions "
            f"({self.config.strategy.value} strategy, "
            f"{self.config.max_workers} workers)"
        )

        try:
            reader.start()
            while not exhausted or pending:
                # ── Fill the worker pool up to its bound ──────────────────
                while not exhausted and len(pending) < self.config.max_workers:
                    item = await reader.get()
                    if item is None:
                        exhausted = True
                        break

                    stats.entries += 1
                    if isinstance(item, EntryError):
                        stats.errors += 1
                        yield ReportError.from_exception(item)
                        continue

                    pending.add(loop.run_in_executor(
                        executor, self._analyze, item, questions
                    ))

                if not pending:
                    continue

                # ── Drain whatever finished first ─────────────────────────
                done, pending = await asyncio.wait(
                    pending, return_when=asyncio.FIRST_COMPLETED
                )
                for future in done:
                    stats.submissions += 1
                    for record in self._records(future, roster, stats):
                        yield record
                    if progress_callback:
                        progress_callback(stats.submissions)
        finally:
            for future in pending:
                future.cancel()
            executor.shutdown(wait=False, cancel_futures=True)
            await reader.aclose()

            stats.elapsed_seconds = round(time.time() - start_time, 3)
            logger.info(
                f"Run complete in {stats.elapsed_seconds:.2f}s: "
                f"{stats.submissions} submissions, "
                f"{stats.unmatched_submissions} with unmatched questions, "
                f"{stats.reports} reports, {stats.errors} errors"
            )

    def _analyze(
        self,
        entry: ArchiveEntry,
        questions: Sequence[Question],
    ) -> Optional[UnmatchedSubmission]:
        """Worker-thread body: parse one PDF and diff it against the outline."""
        submission = self.normalizer.load(entry.filename, entry.data)
        return diff_submission(submission, questions)

    def _records(
        self,
        future: asyncio.Future,
        roster: Roster,
        stats: RunStats,
    ) -> list[ReportItem]:
        """Turn one finished analysis into stream items."""
        try:
            unmatched = future.result()
        except ParseError as e:
            logger.warning(f"Could not analyze {e.filename}: {e}")
            stats.errors += 1
            return [ReportError.from_exception(e)]

        if unmatched is None:
            stats.fully_matched += 1
            return []

        stats.unmatched_submissions += 1
        try:
            reports = submitter_reports(unmatched, roster)
        except RosterMismatchError as e:
            logger.error(
                f"ROSTER MISMATCH: submission {e.submission_id} is in the "
                f"export but not in the roster"
            )
            stats.errors += 1
            return [ReportError.from_exception(e)]

        for report in reports:
            logger.debug(
                f"Submission {report.submission_id}: {report.student_email} "
                f"has {len(report.questions)} unmatched questions"
            )
        stats.reports += len(reports)
        return reports
