"""Local filesystem storage backend."""

from .backend import LocalBackend

__all__ = ["LocalBackend"]
