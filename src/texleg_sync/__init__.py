"""Resumable batch synchronizer for Texas Legislature bill history records."""

__version__ = "0.1.0"
