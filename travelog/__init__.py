"""Offline-first photo journal with a resumable remote sync engine."""

__version__ = "0.1.0"
