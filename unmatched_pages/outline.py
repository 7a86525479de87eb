"""
Outline Loading
===============
Reads an assignment outline exported as JSON.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Union

from .models import Outline

logger = logging.getLogger(__name__)


def load_outline(path: Union[str, Path]) -> Outline:
    """
    Load an outline from a JSON file.

    The file may hold a bare list of outline nodes or the platform's
    {"outline": [...]} payload.

    Raises:
        pydantic.ValidationError: Malformed tree or duplicate question numbers.
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    outline = Outline.model_validate(data)
    logger.info(
        f"Loaded outline with {len(outline.questions())} questions from {path}"
    )
    return outline
