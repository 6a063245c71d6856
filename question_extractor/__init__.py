"""
PDF Question Extractor
======================
Turns exam PDFs into structured multiple-choice questions for review.

Architecture:
    - Page Content Extractor: Positioned text runs + images per page
    - Spatial Merger: Drops image shadow-text, merges pages in reading order
    - State Machine: Detects question / option starts via text anchors
    - Validation Engine: Summarises what was (and was not) recovered
    - Remote Extractor: Alternative path through a document-understanding model

Version: 1.0.0
"""

__version__ = "1.0.0"
