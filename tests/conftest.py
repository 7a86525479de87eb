"""
Shared fixtures: export-template PDFs built with PyMuPDF and zip exports.
"""

from __future__ import annotations

import io
import zipfile

import fitz
import pytest

from unmatched_pages.models import Outline, Roster
from unmatched_pages.template import LOGO_HEIGHT, LOGO_WIDTH


def _insert_image(page: fitz.Page, width: int, height: int, y: float = 700):
    pix = fitz.Pixmap(fitz.csRGB, fitz.IRect(0, 0, width, height), False)
    pix.clear_with(200)
    rect = fitz.Rect(72, y, 72 + width / 4, y + height / 4)
    page.insert_image(rect, pixmap=pix)


def build_text_pdf(labels: list[str], total_points: bool = True) -> bytes:
    """
    Summary page followed by one label page and one blank scan page per label,
    mimicking the flattened text of a real export.
    """
    doc = fitz.open()
    cover = doc.new_page()
    cover.insert_text((72, 72), "Homework 3 Assignment Summary")
    if total_points:
        cover.insert_text((72, 100), "Total Points 20")

    for label in labels:
        page = doc.new_page()
        page.insert_text((72, 72), label)
        scan = doc.new_page()
        _insert_image(scan, 64, 64, y=200)

    data = doc.tobytes()
    doc.close()
    return data


def build_structured_pdf(
    questions: list[tuple[str, int]],
    logo: tuple[int, int] = (LOGO_WIDTH, LOGO_HEIGHT),
    total_points: bool = True,
) -> bytes:
    """
    Summary page with the logo, then per question a summary page (logo + text)
    followed by the given number of scanned student pages (image only).
    """
    doc = fitz.open()
    cover = doc.new_page()
    cover.insert_text((72, 72), "Homework 3")
    if total_points:
        cover.insert_text((72, 100), "Total Points 20")
    _insert_image(cover, *logo)

    for number, student_pages in questions:
        summary = doc.new_page()
        summary.insert_text((72, 72), f"{number} Question Title (5 pts)")
        _insert_image(summary, *logo)
        for _ in range(student_pages):
            scan = doc.new_page()
            _insert_image(scan, 640, 480, y=100)

    data = doc.tobytes()
    doc.close()
    return data


def build_zip(entries: dict[str, bytes]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zf:
        for name, data in entries.items():
            zf.writestr(name, data)
    return buf.getvalue()


@pytest.fixture
def text_pdf():
    return build_text_pdf


@pytest.fixture
def structured_pdf():
    return build_structured_pdf


@pytest.fixture
def zip_export():
    return build_zip


@pytest.fixture
def outline() -> Outline:
    """Question 1 with parts 1.1 and 1.2."""
    return Outline.model_validate({
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
    })


@pytest.fixture
def roster() -> Roster:
    return Roster.model_validate({
        "submissions": {
            "1001": [{"name": "Ada Lovelace", "email": "ada@example.edu"}],
            "1002": [{"name": "Alan Turing", "email": "alan@example.edu"}],
            "1003": [
                {"name": "Grace Hopper", "email": "grace@example.edu"},
                {"name": "Edsger Dijkstra", "email": "edsger@example.edu"},
            ],
        }
    })
