"""
Roster Loading
==============
Builds the submission-to-students Roster from JSON.

Two shapes are accepted:
    - the plain mapping: {"submissions": {"<id>": [{"name", "email"}, ...]}}
    - the grading platform's submissions-manager props, which list students
      by id and reference them from each submission's active_user_ids
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Union

from pydantic import BaseModel, Field, field_validator

from .models import Roster, StudentSubmitter

logger = logging.getLogger(__name__)


class ManagerStudent(BaseModel):
    id: str
    name: str
    email: str

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value


class ManagerSubmission(BaseModel):
    id: str
    active_user_ids: list[str] = Field(default_factory=list)

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value

    @field_validator("active_user_ids", mode="before")
    @classmethod
    def _ids_as_str(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [str(v) if isinstance(v, int) else v for v in value]
        return value


class SubmissionsManagerProps(BaseModel):
    """Props the platform embeds in its submissions manager page."""
    students: list[ManagerStudent] = Field(default_factory=list)
    submissions: dict[str, ManagerSubmission] = Field(default_factory=dict)


def build_roster(props: Union[SubmissionsManagerProps, dict]) -> Roster:
    """
    Resolve each submission's active users into submitters.

    Students no longer on the course roster are dropped with a warning; a
    submission left without any students is omitted entirely.

    Raises:
        ValueError: A submission's key disagrees with its embedded id.
    """
    if not isinstance(props, SubmissionsManagerProps):
        props = SubmissionsManagerProps.model_validate(props)

    by_id = {student.id: student for student in props.students}
    submissions: dict[str, list[StudentSubmitter]] = {}

    for key, submission in props.submissions.items():
        if key != submission.id:
            raise ValueError(
                f"submission with key {key!r} has mismatching id {submission.id!r}"
            )

        students = []
        for user_id in submission.active_user_ids:
            student = by_id.get(user_id)
            if student is None:
                logger.warning(
                    f"Could not find student with id {user_id} for submission "
                    f"{key}; they were likely removed from the roster"
                )
                continue
            students.append(StudentSubmitter(name=student.name, email=student.email))

        if not students:
            logger.warning(f"Submission {key} has no remaining students, omitting")
            continue
        submissions[key] = students

    return Roster(submissions=submissions)


def roster_from_json(data: Any) -> Roster:
    """Build a Roster from either accepted JSON shape."""
    if isinstance(data, dict) and "students" in data:
        return build_roster(data)
    if isinstance(data, dict) and "submissions" not in data:
        data = {"submissions": data}
    return Roster.model_validate(data)


def load_roster(path: Union[str, Path]) -> Roster:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    roster = roster_from_json(data)
    logger.info(f"Loaded roster with {len(roster)} submissions from {path}")
    return roster
