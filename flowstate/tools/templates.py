"""
Template rendering for model-authored summary templates.

Templates come from a language model, so they are rendered in Jinja2's
immutable sandbox: they can read the data they are given but cannot call
into arbitrary Python or mutate it.
"""

from typing import Any, Mapping, Optional
import logging

from jinja2 import TemplateError
from jinja2.sandbox import ImmutableSandboxedEnvironment

from flowstate.tools.errors import RenderError


logger = logging.getLogger(__name__)


_environment = ImmutableSandboxedEnvironment(
    autoescape=False,
    trim_blocks=True,
    lstrip_blocks=True,
)


def validate_template(template: str) -> None:
    """
    Check that a template compiles.

    Raises:
        RenderError: On a syntax error
    """
    try:
        _environment.parse(template)
    except TemplateError as e:
        raise RenderError(f"Invalid template: {e}") from e


def render_template(template: str, data: Any, context: Optional[Mapping[str, Any]] = None) -> str:
    """
    Render a template against data.

    Mapping data is exposed as top-level variables; anything else (lists,
    scalars) is available as ``data``. The raw value is always reachable as
    ``data`` too.

    Args:
        template: Jinja2 template source
        data: Value to render
        context: Extra variables

    Returns:
        Rendered text

    Raises:
        RenderError: If the template does not compile or fails while rendering
    """
    variables = dict(data) if isinstance(data, Mapping) else {}
    variables.setdefault("data", data)
    if context:
        variables.update(context)

    try:
        compiled = _environment.from_string(template)
        return compiled.render(**variables)
    except TemplateError as e:
        raise RenderError(f"{type(e).__name__}: {e}") from e
    except (TypeError, ValueError, AttributeError, KeyError, IndexError, ZeroDivisionError) as e:
        logger.debug(f"Template raised while rendering: {e}")
        raise RenderError(f"{type(e).__name__}: {e}") from e
