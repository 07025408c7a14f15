"""
Self-correcting JSON Summarizer Workflow.

Turns a large JSON payload (typically an API response) into a short text
summary without sending the payload itself to the model:
1. Infer the JSON schema of the data
2. Ask the model for a Jinja2 template that summarizes data of that shape
3. Render the template against the data
4. On a render error, loop back to step 2 with the error, until the
   attempt budget runs out

```
prepare_reducer_template → generate_summary ─┬─→ END (SUCCESS)
        ↑                                    ├─→ prepare_reducer_template (RETRY)
        └────────────────────────────────────┘
                                             └─→ handle_max_attempts_error → END (ERROR)
```
"""

from enum import Enum
from textwrap import dedent
from typing import Any, Dict, Mapping, Optional
import json
import logging

from pydantic import BaseModel, Field

from flowstate.config import settings
from flowstate.engine.graph import CompiledGraph, END, Graph
from flowstate.engine.state import FieldSpec, StateSchema
from flowstate.tools.errors import RenderError
from flowstate.tools.json_schema import infer_json_schema
from flowstate.tools.llm import StructuredGenerator
from flowstate.tools.templates import render_template


logger = logging.getLogger(__name__)


MAX_ATTEMPTS_SUMMARY = "Error summarizing the API response: Max attempts reached."


class SummaryRoute(str, Enum):
    SUCCESS = "SUCCESS"
    RETRY = "RETRY"
    ERROR = "ERROR"


class TemplateDraft(BaseModel):
    """Structured output requested from the model."""

    reducer_template: str = Field(
        ...,
        description=(
            "A Jinja2 text template for summarizing the data. "
            "Do not include any other text or explanation."
        ),
    )


def create_json_summarizer_schema() -> StateSchema:
    return StateSchema(
        json=FieldSpec(default=lambda: "", description="The JSON payload to summarize"),
        data=FieldSpec(default=lambda: None, description="The decoded payload"),
        context=FieldSpec(default=lambda: None, description="Conversation context to steer the summary"),
        json_schema=FieldSpec(default=lambda: None, description="Inferred JSON schema of the payload"),
        reducer_template=FieldSpec(default=lambda: "", description="Latest template from the model"),
        error_message=FieldSpec(default=lambda: None, description="Why the latest template failed"),
        attempts=FieldSpec(default=lambda: 0, description="Templates requested so far"),
        summary=FieldSpec(default=lambda: "", description="The rendered summary"),
    )


def build_template_prompt(
    json_schema: str,
    error_message: Optional[str] = None,
    previous_template: str = "",
    context: Optional[str] = None,
) -> str:
    """Build the prompt asking for a summary template."""
    sections = [dedent(f"""\
        # Role
        You are an expert in summarizing large JSON data into a single concise text message.

        # Task
        Create a Jinja2 template that extracts the most important information from data
        described by the JSON schema below.

        ## Template Syntax Instructions [IMPORTANT]
        You MUST ONLY use these constructs:
        - {{{{ value }}}} and {{{{ object.key }}}} to output values
        - {{% if ... %}} ... {{% else %}} ... {{% endif %}}
        - {{% for item in items %}} ... {{% endfor %}}
        The top-level keys of the data are available as variables. If the data is
        not an object, it is available as `data`.

        # JSON Schema of the input data
        ```json
        {json_schema}
        ```

        # Instructions
        - The JSON schema represents the structure of the data that will be passed to the template.
        - Keep important keys such as IDs.

        # Output Field
        - reducer_template: Return ONLY a valid Jinja2 text template using ONLY the allowed constructs.
          Do NOT include any explanations or additional text.
    """)]

    if error_message:
        sections.append(dedent("""\
            # Info
            The previous attempt to create a template failed. Fix the template so it
            correctly summarizes the data.

            # Error Message
            {error}

            # Previous template
            ```
            {template}
            ```
        """).format(error=error_message, template=previous_template))

    if context:
        sections.append(f"# Conversation Context to consider\n{context}\n")

    return "\n".join(sections)


# ============================================================
# Steps
# ============================================================

def make_prepare_reducer_template(llm: StructuredGenerator):
    async def prepare_reducer_template(state: Mapping[str, Any]) -> Dict[str, Any]:
        """Ask the model for a summary template, feeding back the last error."""
        data = json.loads(state["json"])
        json_schema = json.dumps(infer_json_schema(data))

        prompt = build_template_prompt(
            json_schema,
            error_message=state["error_message"],
            previous_template=state["reducer_template"],
            context=state["context"],
        )
        draft = await llm.generate_structured(prompt, TemplateDraft)

        attempts = state["attempts"] + 1
        logger.info(f"Received summary template (attempt {attempts})")
        return {
            "reducer_template": draft.reducer_template,
            "data": data,
            "json_schema": json_schema,
            "attempts": attempts,
        }

    return prepare_reducer_template


def generate_summary(state: Mapping[str, Any]) -> Dict[str, Any]:
    """Render the template; a render failure becomes ``error_message``."""
    try:
        summary = render_template(state["reducer_template"], state["data"])
    except RenderError as e:
        logger.warning(f"Summary template failed to render: {e}")
        return {
            "summary": None,
            "error_message": f"An error occurred while parsing the template: {e}",
        }

    logger.debug(f"Rendered summary: {summary!r}")
    return {"summary": summary, "error_message": None}


def handle_max_attempts_error(state: Mapping[str, Any]) -> Dict[str, Any]:
    return {"summary": MAX_ATTEMPTS_SUMMARY}


def make_check_summary(max_attempts: int):
    def check_summary(state: Mapping[str, Any]) -> SummaryRoute:
        """Route on the render outcome and the attempt budget."""
        if not state["error_message"]:
            return SummaryRoute.SUCCESS
        if state["attempts"] < max_attempts:
            return SummaryRoute.RETRY
        return SummaryRoute.ERROR

    return check_summary


# ============================================================
# Workflow Factory
# ============================================================

def create_json_summarizer_workflow(
    llm: StructuredGenerator,
    max_attempts: Optional[int] = None,
) -> CompiledGraph:
    """
    Create the JSON summarizer graph.

    Args:
        llm: Structured-output generator used to write templates
        max_attempts: Template attempts before giving up
            (defaults to ``settings.SUMMARY_MAX_ATTEMPTS``)

    Returns:
        Compiled graph; run it with ``{"json": "...", "context": "..."}``
    """
    max_attempts = max_attempts if max_attempts is not None else settings.SUMMARY_MAX_ATTEMPTS
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    graph = Graph(
        create_json_summarizer_schema(),
        name="JSON Summarizer",
        description=(
            "Summarizes a JSON payload through a model-written template, "
            f"retrying up to {max_attempts} times on template errors."
        ),
    )

    graph.add_node("prepare_reducer_template", make_prepare_reducer_template(llm))
    graph.add_node("generate_summary", generate_summary)
    graph.add_node("handle_max_attempts_error", handle_max_attempts_error)

    graph.set_entry_point("prepare_reducer_template")
    graph.add_edge("prepare_reducer_template", "generate_summary")
    graph.add_conditional_edges(
        "generate_summary",
        make_check_summary(max_attempts),
        {
            SummaryRoute.SUCCESS: END,
            SummaryRoute.RETRY: "prepare_reducer_template",
            SummaryRoute.ERROR: "handle_max_attempts_error",
        },
    )
    graph.add_edge("handle_max_attempts_error", END)

    return graph.compile()
