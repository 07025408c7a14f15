"""
Workflows package - Built-in workflow implementations.
"""

from typing import Dict, List, Tuple

from flowstate.config import Settings
from flowstate.engine.graph import CompiledGraph
from flowstate.tools.images import ImagenClient
from flowstate.tools.llm import GeminiTextClient, OpenAIChatClient
from flowstate.workflows.json_summarizer import create_json_summarizer_workflow
from flowstate.workflows.tweet_to_image import ArtStyle, create_tweet_to_image_workflow


def create_default_workflows(settings: Settings) -> Tuple[Dict[str, CompiledGraph], List]:
    """
    Compile the built-in workflows with clients built from settings.

    Returns:
        ``(workflows, clients)``; the caller owns the clients and should
        ``aclose()`` them on shutdown
    """
    openai_client = OpenAIChatClient(
        api_key=settings.OPENAI_API_KEY,
        model=settings.OPENAI_MODEL,
        base_url=settings.OPENAI_BASE_URL,
        timeout=settings.REQUEST_TIMEOUT,
    )
    gemini_client = GeminiTextClient(
        api_key=settings.GOOGLE_API_KEY,
        model=settings.GEMINI_MODEL,
        base_url=settings.GOOGLE_BASE_URL,
        timeout=settings.REQUEST_TIMEOUT,
    )
    imagen_client = ImagenClient(
        api_key=settings.GOOGLE_API_KEY,
        model=settings.IMAGEN_MODEL,
        base_url=settings.GOOGLE_BASE_URL,
        timeout=settings.REQUEST_TIMEOUT,
    )

    workflows = {
        "json-summarizer": create_json_summarizer_workflow(
            openai_client, max_attempts=settings.SUMMARY_MAX_ATTEMPTS
        ),
        "tweet-to-image": create_tweet_to_image_workflow(
            rewriter=openai_client,
            rater=openai_client,
            prompt_writer=gemini_client,
            image_generator=imagen_client,
        ),
    }
    return workflows, [openai_client, gemini_client, imagen_client]


__all__ = [
    "ArtStyle",
    "create_default_workflows",
    "create_json_summarizer_workflow",
    "create_tweet_to_image_workflow",
]
