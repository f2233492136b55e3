"""
mat-curator: rotating content curation for a BJJ training app.

This package rotates through instructors, searches YouTube for their
instructional videos, filters and scores candidates with an AI evaluator,
and persists approved videos to the knowledge base under a daily API quota.
"""

__version__ = "0.1.0"
__author__ = "mat-curator"
__description__ = "Rotating curation of BJJ instructional videos from YouTube"
