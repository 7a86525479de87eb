"""
Export Template Profile
=======================
Heuristic constants describing the grading platform's PDF rendering
template. Both page-analysis strategies and the question grammar read their
anchors from here.
"""

from __future__ import annotations

from dataclasses import dataclass

# ─── Anchor Phrases ───────────────────────────────────────────────────────────

# Appears once near the top of every export PDF
TOTAL_POINTS_ANCHOR = "Total Points"

QUESTIONS_LABEL = "Questions assigned to the following page:"
QUESTION_LABEL = "Question assigned to the following page:"
NO_QUESTIONS_LABEL = "No questions assigned to the following page."

# ─── Embedded Image Fingerprint ───────────────────────────────────────────────

# Pixel size of the platform logo stamped on summary pages
LOGO_WIDTH = 300
LOGO_HEIGHT = 72


@dataclass(frozen=True)
class TemplateProfile:
    """Immutable description of one export template version."""

    total_points_anchor: str = TOTAL_POINTS_ANCHOR
    questions_label: str = QUESTIONS_LABEL
    question_label: str = QUESTION_LABEL
    no_questions_label: str = NO_QUESTIONS_LABEL
    logo_width: int = LOGO_WIDTH
    logo_height: int = LOGO_HEIGHT

    @property
    def page_labels(self) -> tuple[str, str, str]:
        return (self.questions_label, self.question_label, self.no_questions_label)

    @property
    def logo_size(self) -> tuple[int, int]:
        return (self.logo_width, self.logo_height)


DEFAULT_TEMPLATE = TemplateProfile()
