"""Task modules grouped by concern.

Import side effects register Celery tasks once this package is imported.
"""
from . import email  # noqa: F401 to register tasks

__all__ = ["email"]
