"""
Page Normalizer
===============
Loads one submission PDF with PyMuPDF (fitz) and derives the question
numbers the grading platform recorded as matched to its pages.

The export carries no structured matching data, so two heuristic strategies
are available, chosen at construction:

    TEXT        Whole-document text extraction, whitespace removed, parsed
                with the question-number grammar. Robust to small template
                drift but has no per-page resolution.
    STRUCTURED  Classifies every page by font presence and by the platform
                logo's pixel size, then reads question numbers off the
                question summary pages. Precise but brittle when the
                template changes.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

import fitz  # PyMuPDF

from .diff import matched_set
from .errors import AnchorNotFoundError, GrammarError, ParseError
from .grammar import QuestionNumberGrammar, compact
from .models import (
    PageInfo,
    PageKind,
    QuestionNumber,
    SubmissionPdf,
    submission_id_from_filename,
)
from .template import DEFAULT_TEMPLATE, TemplateProfile

logger = logging.getLogger(__name__)


class Strategy(str, Enum):
    """How matched question numbers are recovered from a PDF."""
    TEXT = "text"
    STRUCTURED = "structured"


class PageNormalizer:
    """
    Turns a PDF buffer into matched question numbers.

    Holds no per-document state, so one instance can be shared by every
    worker thread of a run.
    """

    def __init__(
        self,
        strategy: Strategy = Strategy.TEXT,
        template: Optional[TemplateProfile] = None,
    ):
        self.strategy = Strategy(strategy)
        self.template = template or DEFAULT_TEMPLATE
        self.grammar = QuestionNumberGrammar(self.template)

    def load(self, filename: str, data: bytes) -> SubmissionPdf:
        """
        Build the matched-question set for one archive member.

        Raises:
            ParseError: The PDF cannot be decoded (also AnchorNotFoundError).
        """
        submission_id = submission_id_from_filename(filename)
        if not submission_id:
            raise ParseError("cannot get PDF filename stem", filename)

        try:
            numbers = self.matched_numbers(data)
        except ParseError as e:
            e.filename = filename
            raise

        return SubmissionPdf(
            submission_id=submission_id,
            matched=tuple(matched_set(numbers)),
        )

    def matched_numbers(self, data: bytes) -> list[QuestionNumber]:
        """Question numbers matched to pages, in document order, with duplicates."""
        if self.strategy is Strategy.STRUCTURED:
            return self._structured_numbers(self.classify_pages(data))
        return self.grammar.parse(self.extract_text(data))

    # ─── Flattened Text ───────────────────────────────────────────────────

    def extract_text(self, data: bytes) -> str:
        """Whole-document text with every whitespace character removed."""
        with _open_pdf(data) as doc:
            try:
                text = "".join(page.get_text() for page in doc)
            except RuntimeError as e:
                raise ParseError(f"could not extract PDF text: {e}") from e
        return compact(text)

    # ─── Structured Pages ─────────────────────────────────────────────────

    def classify_pages(self, data: bytes) -> list[PageInfo]:
        """
        Classify every page of the PDF.

        Leading pages up to and including the first logo page form the
        assignment summary. After that, a page with both logo and fonts is a
        question summary page and anything else is a student submission page.

        Raises:
            AnchorNotFoundError: No logo page, or no "Total Points" in the summary.
            GrammarError: A question summary page does not start with a number.
        """
        pages: list[PageInfo] = []
        summary_text = ""
        in_summary = True

        with _open_pdf(data) as doc:
            try:
                for page in doc:
                    page_number = page.number + 1
                    has_fonts = bool(page.get_fonts())
                    has_logo = self._has_logo(page)

                    if in_summary:
                        summary_text += compact(page.get_text())
                        pages.append(PageInfo(
                            page_number=page_number,
                            kind=PageKind.ASSIGNMENT_SUMMARY,
                            has_fonts=has_fonts,
                            has_logo=has_logo,
                        ))
                        if has_logo:
                            in_summary = False
                    elif has_logo and has_fonts:
                        pages.append(PageInfo(
                            page_number=page_number,
                            kind=PageKind.QUESTION_SUMMARY,
                            has_fonts=True,
                            has_logo=True,
                            question_number=self._first_question_number(page),
                        ))
                    else:
                        pages.append(PageInfo(
                            page_number=page_number,
                            kind=PageKind.STUDENT_SUBMISSION,
                            has_fonts=has_fonts,
                            has_logo=has_logo,
                        ))
            except RuntimeError as e:
                raise ParseError(f"could not read PDF pages: {e}") from e

        if in_summary:
            raise AnchorNotFoundError(
                f"logo image {self.template.logo_width}x{self.template.logo_height}"
            )
        if compact(self.template.total_points_anchor) not in summary_text:
            raise AnchorNotFoundError(self.template.total_points_anchor)

        return pages

    def _has_logo(self, page: fitz.Page) -> bool:
        # get_images(full=True) entries: (xref, smask, width, height, ...)
        return any(
            (img[2], img[3]) == self.template.logo_size
            for img in page.get_images(full=True)
        )

    def _first_question_number(self, page: fitz.Page) -> QuestionNumber:
        words = page.get_text("words", sort=True)
        if not words:
            raise GrammarError(
                f"question summary page {page.number + 1} has no text"
            )
        token = words[0][4]
        try:
            return QuestionNumber.parse(token)
        except ValueError:
            raise GrammarError(
                f"question summary page {page.number + 1} starts with "
                f"{token!r}, not a question number"
            ) from None

    @staticmethod
    def _structured_numbers(pages: list[PageInfo]) -> list[QuestionNumber]:
        """One entry per student page following a question summary page."""
        numbers: list[QuestionNumber] = []
        current: Optional[QuestionNumber] = None
        for info in pages:
            if info.kind == PageKind.QUESTION_SUMMARY:
                current = info.question_number
            elif info.kind == PageKind.STUDENT_SUBMISSION and current is not None:
                numbers.append(current)
        return numbers


def _open_pdf(data: bytes) -> fitz.Document:
    """Open an in-memory PDF, mapping MuPDF failures to ParseError."""
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except (RuntimeError, ValueError) as e:
        raise ParseError(f"could not parse data as PDF: {e}") from e

    if doc.page_count == 0:
        doc.close()
        raise ParseError("PDF has no pages")
    return doc
