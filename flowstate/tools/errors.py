"""
Errors raised by the collaborators that steps call into.
"""


class CollaboratorError(Exception):
    """Base class for failures outside the engine (model calls, templates)."""


class GenerationError(CollaboratorError):
    """A generation request failed or returned an unusable payload."""


class StructuredOutputError(CollaboratorError):
    """A model's structured output did not match the requested schema."""

    def __init__(self, message: str, raw: str = ""):
        self.raw = raw
        super().__init__(message)


class RenderError(CollaboratorError):
    """A template could not be compiled or rendered."""
