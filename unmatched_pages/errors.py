"""
Error Taxonomy
==============
Exceptions raised while turning a submissions export into unmatched-page
reports.

Only ArchiveError is fatal to a run. Every other error is scoped to a single
archive member or submission and is reported as its own stream item.
"""

from __future__ import annotations

from typing import Optional


class UnmatchedPagesError(Exception):
    """Base class for all engine errors."""


class ArchiveError(UnmatchedPagesError):
    """The export archive could not be opened at all."""


class EntryError(UnmatchedPagesError):
    """One archive member could not be read."""

    def __init__(self, filename: str, message: str):
        super().__init__(f"{filename}: {message}")
        self.filename = filename


class ParseError(UnmatchedPagesError):
    """A submission PDF could not be decoded into question numbers."""

    def __init__(self, message: str, filename: Optional[str] = None):
        super().__init__(message)
        self.filename = filename


class GrammarError(ParseError):
    """Page-label text was found but could not be consumed as a question list."""


class AnchorNotFoundError(ParseError):
    """
    A fixed marker of the export template is missing.

    Usually means the grading platform changed its rendering template and
    the export is an unsupported version.
    """

    def __init__(self, anchor: str, filename: Optional[str] = None):
        super().__init__(f"template anchor not found: {anchor!r}", filename)
        self.anchor = anchor


class RosterMismatchError(UnmatchedPagesError):
    """A submission id from the export has no entry in the roster."""

    def __init__(self, submission_id: str):
        super().__init__(
            f"could not find students for submission {submission_id}"
        )
        self.submission_id = submission_id
