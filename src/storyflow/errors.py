"""Exception types for storyflow.

Only configuration and concurrency problems are raised to callers.
Data-integrity findings are collected into reports and logged, and a failed
ranking pass degrades to the input layout instead of raising.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class StoryflowError(Exception):
    """Base class for every error raised by storyflow."""


class IngestionError(StoryflowError, ValueError):
    """The game-data document could not be parsed."""


class LayoutAlgorithmError(StoryflowError):
    """A layout algorithm failed to produce positions."""

    def __init__(self, algorithm: str, message: str):
        super().__init__(f"{algorithm}: {message}")
        self.algorithm = algorithm


class UnknownAlgorithmError(StoryflowError, KeyError):
    """The requested algorithm is not registered."""

    def __init__(self, name: str):
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"Unknown layout algorithm: {self.name}"


class LayoutBusyError(StoryflowError):
    """A layout was requested while another one is still in flight."""


class LayoutCancelledError(StoryflowError):
    """The in-flight layout was cancelled between chunks."""


class DataIntegrityWarning(BaseModel):
    """An advisory finding about the game data.

    These are collected into reports and logged, never raised.
    """
    model_config = ConfigDict(frozen=True)

    category: str
    entity_id: str
    message: str
