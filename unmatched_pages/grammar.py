"""
Question Number Grammar
=======================
Recovers the question numbers the grading platform printed above each
submission page ("Questions assigned to the following page: 1.1, 1.2, and 3").

The export renders every glyph separately, so whitespace in extracted text
is unreliable. The grammar therefore runs over text with all whitespace
removed, and every anchor phrase is compacted the same way before matching:

    document      := skip-to("Total Points") page*
    page          := skip-to(page-label) question-list
    question-list := question (sep question)*
    sep           := ",and" | "," | "and"
    question      := digits ("." digits)*
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from .errors import AnchorNotFoundError, GrammarError
from .models import QuestionNumber
from .template import DEFAULT_TEMPLATE, TemplateProfile

logger = logging.getLogger(__name__)

# ─── Token Patterns ───────────────────────────────────────────────────────────

QUESTION_NUMBER_PATTERN = re.compile(r"[0-9]+(?:\.[0-9]+)*")

# Longest separator first so ",and" is not read as "," followed by "and3"
SEPARATOR_PATTERN = re.compile(r",and|,|and")


def compact(text: str) -> str:
    """Remove every whitespace character."""
    return "".join(text.split())


class QuestionNumberGrammar:
    """
    Parses whitespace-free export text into the ordered list of question
    numbers assigned to its pages. Duplicates are kept: one page may list
    several questions and one question may span several pages.
    """

    def __init__(self, template: Optional[TemplateProfile] = None):
        self.template = template or DEFAULT_TEMPLATE
        self._total_points = compact(self.template.total_points_anchor)
        self._no_questions = compact(self.template.no_questions_label)
        self._label_pattern = re.compile(
            "|".join(
                re.escape(compact(label))
                for label in self.template.page_labels
            )
        )

    def parse(self, text: str) -> list[QuestionNumber]:
        """
        Parse export text into question numbers.

        Args:
            text: Extracted PDF text. Whitespace is removed before parsing.

        Returns:
            Question numbers in document order, duplicates included.

        Raises:
            AnchorNotFoundError: "Total Points" or every page label is missing.
            GrammarError: A listed number cannot be consumed.
        """
        text = compact(text)

        anchor = text.find(self._total_points)
        if anchor < 0:
            raise AnchorNotFoundError(self.template.total_points_anchor)
        pos = anchor + len(self._total_points)

        numbers: list[QuestionNumber] = []
        pages = 0
        while True:
            label = self._label_pattern.search(text, pos)
            if label is None:
                break
            pages += 1
            pos = label.end()

            # "No questions assigned" pages contribute nothing
            if label.group() == self._no_questions:
                continue

            pos, page_numbers = self._question_list(text, pos)
            numbers.extend(page_numbers)

        if pages == 0:
            raise AnchorNotFoundError(self.template.questions_label)

        logger.debug(f"Parsed {len(numbers)} question numbers from {pages} pages")
        return numbers

    def _question_list(
        self, text: str, pos: int
    ) -> tuple[int, list[QuestionNumber]]:
        """Consume a separated list of numbers starting at pos."""
        numbers: list[QuestionNumber] = []

        match = QUESTION_NUMBER_PATTERN.match(text, pos)
        if match is None:
            return pos, numbers
        numbers.append(self._question_number(match))
        pos = match.end()

        while True:
            sep = SEPARATOR_PATTERN.match(text, pos)
            if sep is None:
                break
            match = QUESTION_NUMBER_PATTERN.match(text, sep.end())
            if match is None:
                # Dangling separator belongs to the following page text
                break
            numbers.append(self._question_number(match))
            pos = match.end()

        return pos, numbers

    def _question_number(self, match: re.Match) -> QuestionNumber:
        try:
            return QuestionNumber.parse(match.group())
        except ValueError:
            raise GrammarError(
                f"cannot parse question number {match.group()!r} "
                f"at offset {match.start()}"
            ) from None


_default_grammar = QuestionNumberGrammar()


def parse_matched_numbers(text: str) -> list[QuestionNumber]:
    """Parse with the default template."""
    return _default_grammar.parse(text)
