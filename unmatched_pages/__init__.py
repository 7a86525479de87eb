"""
Unmatched Pages Engine
======================
Finds rubric questions that were never matched to any scanned page of a
submission in a grading-platform submissions export.

Architecture:
    - Archive Extractor: Streams PDF members out of the export zip on a reader thread
    - Page Normalizer: Opens each PDF and recovers the matched question numbers
    - Question Grammar: Parses question-number lists out of whitespace-free text
    - Diff Engine: Compares matched numbers against the assignment outline
    - Pipeline: Fans submissions out to a worker pool and joins results with the roster

Version: 1.0.0
"""

__version__ = "1.0.0"
