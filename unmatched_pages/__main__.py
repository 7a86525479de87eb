"""
Module entry point for: python -m unmatched_pages

Allows running the engine directly as a module:
    python -m unmatched_pages scan <export.zip> --outline <json> --roster <json>
    python -m unmatched_pages inspect <submission.pdf>
    python -m unmatched_pages outline <json>
"""

from .cli import cli


def main():
    cli()


if __name__ == "__main__":
    main()
