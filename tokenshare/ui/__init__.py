"""Terminal rendering for tokenshare."""

from .progress import ConsoleAuthRenderer
from .theme import console

__all__ = ["ConsoleAuthRenderer", "console"]
