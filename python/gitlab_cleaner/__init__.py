"""Concurrent cleanup of GitLab container registry tags."""

__version__ = "1.0.0"
