"""
Data Models
===========
Pydantic models for assignment outlines, rosters, and unmatched-page reports.
All report models are serializable to JSON for downstream notifiers.
"""

from __future__ import annotations

from enum import Enum
from functools import total_ordering
from pathlib import PurePosixPath
from typing import Annotated, Any, Iterator, Optional, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    PositiveInt,
    Tag,
    computed_field,
    field_validator,
    model_serializer,
    model_validator,
)

from .errors import (
    AnchorNotFoundError,
    EntryError,
    ParseError,
    RosterMismatchError,
)


# ─── Enums ────────────────────────────────────────────────────────────────────


class ErrorKind(str, Enum):
    """Kind of per-item failure reported alongside successful reports."""
    ENTRY_ERROR = "entry_error"
    PARSE_ERROR = "parse_error"
    ANCHOR_NOT_FOUND = "anchor_not_found"
    ROSTER_MISMATCH = "roster_mismatch"


class PageKind(str, Enum):
    """Role of a page inside an export PDF."""
    ASSIGNMENT_SUMMARY = "assignment_summary"
    QUESTION_SUMMARY = "question_summary"
    STUDENT_SUBMISSION = "student_submission"


# ─── Question Numbers ─────────────────────────────────────────────────────────


@total_ordering
class QuestionNumber(BaseModel):
    """
    Hierarchical question identifier. Part 2 of question 3 is "3.2".

    Orders lexicographically over its components, so a number sorts before
    any of its own sub-parts.
    """
    model_config = ConfigDict(frozen=True)

    parts: tuple[PositiveInt, ...] = Field(min_length=1)

    @model_validator(mode="before")
    @classmethod
    def _coerce(cls, value: Any) -> Any:
        if isinstance(value, str):
            pieces = value.split(".")
            if not all(piece.isascii() and piece.isdigit() for piece in pieces):
                raise ValueError(f"invalid question number: {value!r}")
            return {"parts": tuple(int(piece) for piece in pieces)}
        if isinstance(value, (list, tuple)):
            return {"parts": tuple(value)}
        return value

    @model_serializer
    def _serialize(self) -> str:
        return str(self)

    @classmethod
    def parse(cls, text: str) -> QuestionNumber:
        """Parse a dotted number such as "3.2". Raises ValueError."""
        return cls.model_validate(text)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, QuestionNumber):
            return NotImplemented
        return self.parts < other.parts

    def __str__(self) -> str:
        return ".".join(str(part) for part in self.parts)

    def __repr__(self) -> str:
        return f"QuestionNumber({str(self)!r})"


class Question(BaseModel):
    """A leaf question of an assignment outline."""
    model_config = ConfigDict(frozen=True)

    title: str
    number: QuestionNumber

    def __str__(self) -> str:
        return f"{self.number}: {self.title}"


class UnmatchedQuestion(Question):
    """An outline question with no submission page matched to it."""


# ─── Outline ──────────────────────────────────────────────────────────────────


class OutlineLeaf(BaseModel):
    """A gradable question at the bottom of the outline tree."""
    model_config = ConfigDict(frozen=True)

    index: PositiveInt
    title: str


def _outline_node_tag(value: Any) -> str:
    if isinstance(value, dict):
        # An explicit platform type wins over the shape of the node
        if "type" in value:
            return "group" if value["type"] == "QuestionGroup" else "leaf"
        return "group" if "children" in value else "leaf"
    return "group" if isinstance(value, OutlineGroup) else "leaf"


OutlineNode = Annotated[
    Union[
        Annotated["OutlineGroup", Tag("group")],
        Annotated[OutlineLeaf, Tag("leaf")],
    ],
    Discriminator(_outline_node_tag),
]


class OutlineGroup(BaseModel):
    """A question with parts. Its index prefixes every descendant's number."""
    model_config = ConfigDict(frozen=True)

    index: PositiveInt
    title: str = ""
    children: tuple[OutlineNode, ...] = ()


OutlineGroup.model_rebuild()


class Outline(BaseModel):
    """
    An assignment's question tree as defined by the grading platform.

    Accepts either a bare list of nodes or the platform's
    ``{"outline": [...]}`` payload.
    """
    model_config = ConfigDict(frozen=True)

    nodes: tuple[OutlineNode, ...] = ()

    @model_validator(mode="before")
    @classmethod
    def _unwrap(cls, value: Any) -> Any:
        if isinstance(value, (list, tuple)):
            return {"nodes": value}
        if isinstance(value, dict) and "outline" in value:
            return {"nodes": value["outline"]}
        return value

    @model_validator(mode="after")
    def _check_unique_numbers(self) -> Outline:
        seen: set[QuestionNumber] = set()
        for question in self.iter_questions():
            if question.number in seen:
                raise ValueError(f"duplicate question number {question.number}")
            seen.add(question.number)
        return self

    def iter_questions(self) -> Iterator[Question]:
        """Depth-first traversal yielding leaves with their full numbers."""
        for node in self.nodes:
            yield from _flatten(node, ())

    def questions(self) -> list[Question]:
        return list(self.iter_questions())


def _flatten(
    node: Union[OutlineGroup, OutlineLeaf],
    prefix: tuple[int, ...],
) -> Iterator[Question]:
    parts = prefix + (node.index,)
    if isinstance(node, OutlineGroup):
        for child in node.children:
            yield from _flatten(child, parts)
    else:
        yield Question(title=node.title, number=QuestionNumber(parts=parts))


# ─── Roster ───────────────────────────────────────────────────────────────────


class StudentSubmitter(BaseModel):
    """A student attached to a submission."""
    model_config = ConfigDict(frozen=True)

    name: str
    email: str

    def __str__(self) -> str:
        return f"{self.name} ({self.email})"


class Roster(BaseModel):
    """
    Maps submission ids to their submitters.
    Group submissions carry more than one student.
    """
    model_config = ConfigDict(frozen=True)

    submissions: dict[
        str, Annotated[tuple[StudentSubmitter, ...], Field(min_length=1)]
    ] = Field(default_factory=dict)

    @field_validator("submissions", mode="before")
    @classmethod
    def _stringify_ids(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(key): students for key, students in value.items()}
        return value

    def students(self, submission_id: str) -> tuple[StudentSubmitter, ...]:
        try:
            return self.submissions[submission_id]
        except KeyError:
            raise RosterMismatchError(submission_id) from None

    def __contains__(self, submission_id: object) -> bool:
        return submission_id in self.submissions

    def __len__(self) -> int:
        return len(self.submissions)


# ─── Submissions ──────────────────────────────────────────────────────────────


def submission_id_from_filename(filename: str) -> str:
    """Submission ids are the stem of the PDF's archive member name."""
    return PurePosixPath(filename.replace("\\", "/")).stem


class SubmissionPdf(BaseModel):
    """The matched question numbers recovered from one submission PDF."""
    submission_id: str
    matched: tuple[QuestionNumber, ...] = ()


class UnmatchedSubmission(BaseModel):
    """A submission with at least one unmatched question."""
    submission_id: str
    questions: tuple[UnmatchedQuestion, ...] = Field(min_length=1)


class PageInfo(BaseModel):
    """Classification of a single export page."""
    page_number: int = Field(ge=1)
    kind: PageKind
    has_fonts: bool = False
    has_logo: bool = False
    question_number: Optional[QuestionNumber] = None


# ─── Report Records ───────────────────────────────────────────────────────────


class UnmatchedReport(BaseModel):
    """
    One student's view of an unmatched submission.
    Group submissions fan out into one report per submitter.
    """
    student_name: str
    student_email: str
    submission_id: str
    questions: list[UnmatchedQuestion] = Field(default_factory=list)

    @computed_field
    @property
    def question_numbers(self) -> list[str]:
        return [str(q.number) for q in self.questions]

    def summary(self) -> str:
        count = len(self.questions)
        noun = "question" if count == 1 else "questions"
        listed = "; ".join(str(q) for q in self.questions)
        return f"{count} unmatched {noun}: {listed}"


class ReportError(BaseModel):
    """A per-item failure, reported in parallel with successful reports."""
    kind: ErrorKind
    message: str
    filename: Optional[str] = None
    submission_id: Optional[str] = None

    @classmethod
    def from_exception(cls, exc: Exception) -> ReportError:
        if isinstance(exc, EntryError):
            return cls(
                kind=ErrorKind.ENTRY_ERROR,
                message=str(exc),
                filename=exc.filename,
            )
        if isinstance(exc, ParseError):
            kind = (
                ErrorKind.ANCHOR_NOT_FOUND
                if isinstance(exc, AnchorNotFoundError)
                else ErrorKind.PARSE_ERROR
            )
            return cls(
                kind=kind,
                message=str(exc),
                filename=exc.filename,
                submission_id=(
                    submission_id_from_filename(exc.filename)
                    if exc.filename else None
                ),
            )
        if isinstance(exc, RosterMismatchError):
            return cls(
                kind=ErrorKind.ROSTER_MISMATCH,
                message=str(exc),
                submission_id=exc.submission_id,
            )
        raise TypeError(f"not a per-item error: {exc!r}")


ReportItem = Union[UnmatchedReport, ReportError]


class RunStats(BaseModel):
    """Counters for one pipeline run."""
    entries: int = 0
    submissions: int = 0
    fully_matched: int = 0
    unmatched_submissions: int = 0
    reports: int = 0
    errors: int = 0
    elapsed_seconds: float = 0.0
