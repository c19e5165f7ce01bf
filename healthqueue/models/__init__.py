"""Database models."""

from healthqueue.models.base import metadata
from healthqueue.models.doctors import doctors
from healthqueue.models.queue_entries import queue_entries

__all__ = [
    "doctors",
    "metadata",
    "queue_entries",
]
