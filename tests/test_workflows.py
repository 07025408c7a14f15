"""
Tests for the built-in workflows, run against fake collaborators.
"""

import pytest
import json
from typing import List

from flowstate.engine.executor import ExecutionStatus, execute_graph
from flowstate.engine.errors import GraphValidationError, StepExecutionError
from flowstate.tools.errors import GenerationError
from flowstate.tools.images import GeneratedImage
from flowstate.workflows import create_default_workflows
from flowstate.workflows.json_summarizer import (
    MAX_ATTEMPTS_SUMMARY,
    SummaryRoute,
    TemplateDraft,
    build_template_prompt,
    create_json_summarizer_workflow,
    make_check_summary,
)
from flowstate.workflows.tweet_to_image import (
    ArtStyle,
    ImageSuitability,
    NEGATIVE_PROMPT,
    can_generate_image,
    create_tweet_to_image_workflow,
    should_remove_branding,
)
from flowstate.config import Settings


# ============================================================
# Fakes
# ============================================================

class FakeTemplateWriter:
    """Returns the given templates in order, repeating the last one."""

    def __init__(self, templates: List[str]):
        self.templates = templates
        self.prompts: List[str] = []

    async def generate_structured(self, prompt, schema):
        self.prompts.append(prompt)
        index = min(len(self.prompts), len(self.templates)) - 1
        return schema(reducer_template=self.templates[index])


class FakeText:
    def __init__(self, reply: str):
        self.reply = reply
        self.prompts: List[str] = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return f"  {self.reply}\n"


class FakeRater:
    def __init__(self, rating: float):
        self.rating = rating

    async def generate_structured(self, prompt, schema):
        return schema(rating=self.rating, rating_explanation="because")


class FakeImages:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []

    async def generate_images(self, prompt, **options):
        self.calls.append((prompt, options))
        if self.fail:
            raise GenerationError("quota exceeded")
        return [GeneratedImage(image="aGVsbG8=", mime_type="image/png")]


GAMES = json.dumps({
    "games": [
        {"id": 1, "home": "Lions", "away": "Bears", "score": [3, 1]},
        {"id": 2, "home": "Hawks", "away": "Owls", "score": [0, 0]},
    ]
})

GOOD_TEMPLATE = "{% for game in games %}#{{ game.id }} {{ game.home }} v {{ game.away }}\n{% endfor %}"
BROKEN_TEMPLATE = "{% for game in games %}{{ game.id }"


# ============================================================
# JSON Summarizer Tests
# ============================================================

class TestJsonSummarizer:
    """Tests for the self-correcting JSON summarizer."""

    @pytest.mark.asyncio
    async def test_summary_on_first_attempt(self):
        llm = FakeTemplateWriter([GOOD_TEMPLATE])
        graph = create_json_summarizer_workflow(llm, max_attempts=5)

        result = await execute_graph(graph, {"json": GAMES, "context": "Who played?"})

        assert result.status == ExecutionStatus.COMPLETED
        assert result.visited == ["prepare_reducer_template", "generate_summary"]
        assert result.final_state["summary"] == "#1 Lions v Bears\n#2 Hawks v Owls\n"
        assert result.final_state["attempts"] == 1
        assert result.final_state["error_message"] is None
        assert "Who played?" in llm.prompts[0]
        assert '"games"' in llm.prompts[0]

    @pytest.mark.asyncio
    async def test_retry_feeds_back_the_error(self):
        llm = FakeTemplateWriter([BROKEN_TEMPLATE, GOOD_TEMPLATE])
        graph = create_json_summarizer_workflow(llm, max_attempts=5)

        result = await execute_graph(graph, {"json": GAMES})

        assert result.succeeded
        assert result.final_state["attempts"] == 2
        assert result.final_state["summary"].startswith("#1 Lions")
        assert "Previous template" not in llm.prompts[0]
        assert "Previous template" in llm.prompts[1]
        assert BROKEN_TEMPLATE in llm.prompts[1]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self):
        llm = FakeTemplateWriter([BROKEN_TEMPLATE])
        graph = create_json_summarizer_workflow(llm, max_attempts=5)

        result = await execute_graph(graph, {"json": GAMES})

        assert result.status == ExecutionStatus.COMPLETED
        assert len(llm.prompts) == 5
        assert result.visited.count("prepare_reducer_template") == 5
        assert result.visited[-1] == "handle_max_attempts_error"
        assert result.final_state["summary"] == MAX_ATTEMPTS_SUMMARY

    @pytest.mark.asyncio
    async def test_invalid_json_fails_the_run(self):
        graph = create_json_summarizer_workflow(FakeTemplateWriter([GOOD_TEMPLATE]))
        result = await execute_graph(graph, {"json": "{not json"})

        assert result.status == ExecutionStatus.FAILED
        assert isinstance(result.error, StepExecutionError)
        assert result.error.step == "prepare_reducer_template"

    def test_check_summary_routes(self):
        check = make_check_summary(3)
        assert check({"error_message": None, "attempts": 1}) == SummaryRoute.SUCCESS
        assert check({"error_message": "bad", "attempts": 2}) == SummaryRoute.RETRY
        assert check({"error_message": "bad", "attempts": 3}) == SummaryRoute.ERROR

    def test_graph_structure(self):
        graph = create_json_summarizer_workflow(FakeTemplateWriter([GOOD_TEMPLATE]))
        assert graph.entry_point == "prepare_reducer_template"
        assert graph.cycles == (("prepare_reducer_template", "generate_summary"),)
        assert set(graph.conditional_edges["generate_summary"].labels) == {
            "SUCCESS", "RETRY", "ERROR"
        }

    def test_invalid_max_attempts(self):
        with pytest.raises(ValueError):
            create_json_summarizer_workflow(FakeTemplateWriter([GOOD_TEMPLATE]), max_attempts=0)

    def test_template_prompt(self):
        prompt = build_template_prompt('{"type": "object"}')
        assert "{{ value }}" in prompt
        assert "{% for item in items %}" in prompt
        assert "Error Message" not in prompt

        retry_prompt = build_template_prompt("{}", error_message="oops", previous_template="{{ x")
        assert "oops" in retry_prompt
        assert "{{ x" in retry_prompt

    def test_template_draft_schema(self):
        assert "reducer_template" in TemplateDraft.model_json_schema()["properties"]


# ============================================================
# Tweet-to-Image Tests
# ============================================================

def tweet_workflow(rating: float = 8, fail_images: bool = False):
    rewriter = FakeText("Just bought some new athletic sneakers!")
    prompt_writer = FakeText("A watercolor of sneakers")
    images = FakeImages(fail=fail_images)
    graph = create_tweet_to_image_workflow(
        rewriter=rewriter,
        rater=FakeRater(rating),
        prompt_writer=prompt_writer,
        image_generator=images,
    )
    return graph, rewriter, prompt_writer, images


TWEET = "Just bought some new Nike sneakers! #Nike"


class TestTweetToImage:
    """Tests for the tweet-to-image workflow."""

    @pytest.mark.asyncio
    async def test_full_path(self):
        graph, rewriter, prompt_writer, images = tweet_workflow(rating=8)

        result = await execute_graph(graph, {
            "tweet": TWEET,
            "art_style": ArtStyle.ANIME.value,
            "aspect_ratio": "16:9",
        })

        assert result.succeeded
        assert result.visited == [
            "check_should_remove_branding",
            "remove_branding",
            "rate_image_suitability",
            "check_can_generate_image",
            "generate_image_prompt",
            "apply_art_style_to_image_prompt",
            "generate_image_from_prompt",
        ]
        state = result.final_state
        assert state["tweet"] == "Just bought some new athletic sneakers!"
        assert state["rating"] == 8
        assert state["prompt"] == "A watercolor of sneakers"
        assert state["images"] == [{"image": "aGVsbG8=", "mime_type": "image/png"}]
        assert images.calls == [("A watercolor of sneakers", {"aspect_ratio": "16:9"})]

        assert TWEET in rewriter.prompts[0]
        assert NEGATIVE_PROMPT in prompt_writer.prompts[0]
        assert "Anime" in prompt_writer.prompts[1]

    @pytest.mark.asyncio
    async def test_keep_branding(self):
        graph, rewriter, prompt_writer, _ = tweet_workflow(rating=9)

        result = await execute_graph(graph, {"tweet": TWEET, "should_remove_branding": False})

        assert "remove_branding" not in result.visited
        assert rewriter.prompts == []
        assert NEGATIVE_PROMPT not in prompt_writer.prompts[0]
        assert result.final_state["tweet"] == TWEET

    @pytest.mark.asyncio
    async def test_low_rating_skips_image(self):
        graph, _, prompt_writer, images = tweet_workflow(rating=5)

        result = await execute_graph(graph, {"tweet": TWEET})

        assert result.succeeded
        assert result.visited[-1] == "check_can_generate_image"
        assert result.execution_log[-1].route_taken == "NO"
        assert prompt_writer.prompts == []
        assert images.calls == []
        assert not result.final_state.get("images")

    @pytest.mark.asyncio
    async def test_image_failure_yields_no_images(self):
        graph, _, _, images = tweet_workflow(rating=7, fail_images=True)

        result = await execute_graph(graph, {"tweet": TWEET})

        assert result.succeeded
        assert len(images.calls) == 1
        assert result.final_state["images"] == []

    def test_routers(self):
        assert should_remove_branding({"should_remove_branding": True}) == "YES"
        assert should_remove_branding({"should_remove_branding": False}) == "NO"
        assert can_generate_image({"rating": 6}) == "YES"
        assert can_generate_image({"rating": 5}) == "NO"
        assert can_generate_image({}) == "NO"

    def test_suitability_model(self):
        rating = ImageSuitability(rating=7.5, rating_explanation="visual")
        assert rating.rating == 7.5


# ============================================================
# Default Workflows
# ============================================================

class TestDefaultWorkflows:
    """Tests for the settings-built workflow registry."""

    @pytest.mark.asyncio
    async def test_builds_both_workflows(self):
        workflows, clients = create_default_workflows(Settings(SUMMARY_MAX_ATTEMPTS=3))
        try:
            assert set(workflows) == {"json-summarizer", "tweet-to-image"}
            assert "retrying up to 3 times" in workflows["json-summarizer"].description
        finally:
            for client in clients:
                await client.aclose()

    @pytest.mark.asyncio
    async def test_unconfigured_keys_fail_the_run(self):
        workflows, clients = create_default_workflows(Settings(OPENAI_API_KEY=None))
        try:
            result = await execute_graph(workflows["json-summarizer"], {"json": GAMES})
            assert result.status == ExecutionStatus.FAILED
            assert isinstance(result.error.cause, GenerationError)
        finally:
            for client in clients:
                await client.aclose()
