"""
Tools package - Collaborators that workflow steps call into.
"""

from flowstate.tools.errors import (
    CollaboratorError,
    GenerationError,
    RenderError,
    StructuredOutputError,
)
from flowstate.tools.images import GeneratedImage, ImageGenerator, ImagenClient
from flowstate.tools.json_schema import infer_json_schema
from flowstate.tools.llm import (
    GeminiTextClient,
    OpenAIChatClient,
    StructuredGenerator,
    TextGenerator,
    validate_structured_output,
)
from flowstate.tools.templates import render_template, validate_template

__all__ = [
    "CollaboratorError",
    "GenerationError",
    "RenderError",
    "StructuredOutputError",
    "GeneratedImage",
    "ImageGenerator",
    "ImagenClient",
    "infer_json_schema",
    "GeminiTextClient",
    "OpenAIChatClient",
    "StructuredGenerator",
    "TextGenerator",
    "validate_structured_output",
    "render_template",
    "validate_template",
]
