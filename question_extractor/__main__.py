"""
Module entry point for: python -m question_extractor

    python -m question_extractor parse <pdf_path> [options]
    python -m question_extractor ai-extract <pdf_path> [options]
    python -m question_extractor serve [options]
"""

from .cli import cli


def main():
    cli()


if __name__ == "__main__":
    main()
