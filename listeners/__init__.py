"""Collaborators that react to endpoint switch notifications."""

from .status import StatusBoard
from .transport import SessionRebinder

__all__ = ["SessionRebinder", "StatusBoard"]
