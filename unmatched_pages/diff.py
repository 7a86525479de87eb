"""
Unmatched Diff Engine
=====================
Compares an assignment's flattened outline with the question numbers
matched in one submission.
"""

from __future__ import annotations

from bisect import bisect_left
from typing import Iterable, Optional, Sequence

from .models import (
    Question,
    QuestionNumber,
    SubmissionPdf,
    UnmatchedQuestion,
    UnmatchedSubmission,
)


def matched_set(numbers: Iterable[QuestionNumber]) -> list[QuestionNumber]:
    """Deduplicate and sort matched numbers for binary search."""
    return sorted(set(numbers))


def unmatched_questions(
    questions: Sequence[Question],
    matched: Iterable[QuestionNumber],
) -> list[UnmatchedQuestion]:
    """
    Outline questions whose number was never matched, in outline order.

    Args:
        questions: Flattened outline, unique numbers.
        matched: Matched numbers; duplicates and any order are accepted.
    """
    keys = [number.parts for number in matched_set(matched)]

    def is_matched(number: QuestionNumber) -> bool:
        i = bisect_left(keys, number.parts)
        return i < len(keys) and keys[i] == number.parts

    return [
        UnmatchedQuestion(title=q.title, number=q.number)
        for q in questions
        if not is_matched(q.number)
    ]


def diff_submission(
    submission: SubmissionPdf,
    questions: Sequence[Question],
) -> Optional[UnmatchedSubmission]:
    """Return the submission's unmatched questions, or None if all are matched."""
    unmatched = unmatched_questions(questions, submission.matched)
    if not unmatched:
        return None
    return UnmatchedSubmission(
        submission_id=submission.submission_id,
        questions=tuple(unmatched),
    )
