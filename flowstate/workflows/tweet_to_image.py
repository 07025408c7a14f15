"""
Tweet-to-Image Workflow.

Decides whether a tweet deserves an image and, if so, generates one:
1. Optionally rewrite the tweet to strip brands, logos and people
2. Rate how much an image would add (1-10)
3. If the rating is above 5, write an image prompt, restyle it for the
   requested art style and generate the image

```
check_should_remove_branding ─┬─(YES)→ remove_branding ─┐
                              └─(NO)──────────────────→ rate_image_suitability
rate_image_suitability → check_can_generate_image ─┬─(NO)→ END
                                                   └─(YES)→ generate_image_prompt
generate_image_prompt → apply_art_style_to_image_prompt → generate_image_from_prompt → END
```
"""

from enum import Enum
from textwrap import dedent
from typing import Any, Dict, Literal, Mapping
import logging

from pydantic import BaseModel, Field

from flowstate.engine.graph import CompiledGraph, END, Graph
from flowstate.engine.node import passthrough
from flowstate.engine.state import FieldSpec, StateSchema
from flowstate.tools.errors import CollaboratorError
from flowstate.tools.images import ImageGenerator
from flowstate.tools.llm import StructuredGenerator, TextGenerator


logger = logging.getLogger(__name__)


MIN_RATING_FOR_IMAGE = 5


class ArtStyle(str, Enum):
    NONE = "NONE"
    SURREALISM = "Surrealism"
    CARTOON = "Cartoon"
    ANIME = "Anime"
    FUTURISTIC = "Futuristic"
    PHOTO_REALISTIC = "Photorealistic"


class ImageSuitability(BaseModel):
    rating: float = Field(..., description="A number between 1 and 10")
    rating_explanation: str = Field(..., description="A string explaining the rating")


def create_tweet_to_image_schema() -> StateSchema:
    return StateSchema(
        tweet=FieldSpec(description="Tweet text (rewritten when branding is removed)"),
        aspect_ratio=FieldSpec(description="Requested image aspect ratio, e.g. '1:1'"),
        art_style=FieldSpec(default=lambda: ArtStyle.NONE.value),
        prompt=FieldSpec(description="Image prompt"),
        rating=FieldSpec(description="How suitable the tweet is for an image (1-10)"),
        rating_explanation=FieldSpec(),
        images=FieldSpec(description="Generated images"),
        should_remove_branding=FieldSpec(default=lambda: True),
    )


# ============================================================
# Prompts
# ============================================================

REMOVE_BRANDING_PROMPT = dedent("""\
    # Role: Content Rewriter for Image Generation

    You are an expert in analyzing and rewriting social media text, particularly tweets, to
    prepare them for image generation workflows. Identify specific real-world entities (brands,
    logos, trademarks, individuals) in the tweet and replace them with generic, contextually
    relevant descriptions that an image generation model can depict. Keep the original meaning,
    intent and tone.

    # Instructions:
    - Identify specific entities (e.g., brands, logos, trademarks, individuals).
    - Replace them with generic descriptions that are visually interpretable.
    - Preserve the meaning and intent of the tweet.
    - Remove all hashtags while keeping the core message intact.
    - Do not modify generic terms already present in the tweet.

    # Tweet Content:
    {tweet}

    # Examples:
    - Input: "Just bought some new Nike sneakers! They look amazing. #Nike"
      Output: "Just bought some new athletic sneakers! They look amazing."
    - Input: "Is Bitcoin going to surge again? What are your thoughts? #Bitcoin"
      Output: "Is a major cryptocurrency going to surge again? What are your thoughts?"

    # Output Format:
    - Provide the rewritten tweet as a single string.
    - Do not include any additional text or explanation.
""")

IMAGE_PROMPT_PROMPT = dedent("""\
    # Role: Image Prompt Generator
    You generate a concise initial image prompt based on the content of a tweet.

    # TWEET CONTENT:
    {tweet}

    # TASK:
    Analyze the tweet and generate a concise image prompt capturing its essence.

    # INSTRUCTIONS:
    - Identify the key subject, context, and potential visual style from the tweet.
    - Use descriptive keywords for the subject, context, lighting, and colors.
    - Consider the overall mood or emotion conveyed.
    {negative_prompt}
    # OUTPUT PROMPT TEMPLATE:
    Generate a [image medium] [artistic style] [subject] in a [context/background], with [lighting]
    and [colors] colors. [Optional: Specific details related to the tweet]. [Optional: Image quality
    modifiers].

    # OUTPUT FORMAT:
    - Provide only the single-sentence image prompt.
    - Do not include any additional text or explanation.
""")

NEGATIVE_PROMPT = dedent("""
    # NEGATIVE PROMPT
    - Logo, Icon, Brand
""")

ART_STYLE_PROMPT = dedent("""\
    # Role:
    Art Style Enhancer for Image Prompts. You enhance a basic image prompt by applying a specific
    artistic style and adding relevant visual details.

    # Artistic style:
    {art_style}

    # Input Image Prompt:
    {prompt}

    # Instructions:
    Refine the image prompt by incorporating the art style and adding relevant visual details.
    Adjust the image medium, subject, context, lighting, and colors to align with the style.

    # ENHANCED IMAGE PROMPT TEMPLATE:
    Generate a [image medium] {art_style} (artistic style) [subject from prompt] in a
    [context/background from prompt], with [lighting adjusted for style] and [colors aligned with
    style]. [Optional: Specific details enhanced by the art style]. [Optional: Image quality
    modifiers relevant to the style].

    # OUTPUT FORMAT:
    - Provide only the single-sentence enhanced image prompt.
    - Do not include any additional text or explanation.
""")

RATE_IMAGE_PROMPT = dedent("""\
    # TASK: RATE HOW NECESSARY IT IS TO GENERATE AN IMAGE FOR THE TWEET BELOW, AND WHY

    # TWEET CONTENT
    {tweet}

    # FACTORS TO CONSIDER
    - Relevance: How directly relevant is an image to the tweet's content?
    - Engagement: Will an image significantly increase engagement?
    - Clarity: Does an image help explain or enhance the tweet's message?
    - Context: Is the tweet part of a visual campaign or theme?
    - Originality: Does the tweet contain creative content that benefits from an image?

    # RATING SCALE
    - 1: Not suitable at all (purely text-based, nothing visual)
    - 2-3: Slightly suitable, but not necessary
    - 4-5: Moderately suitable, could go either way
    - 6-7: Suitable, an image would be beneficial
    - 8-9: Very suitable, an image would significantly enhance the tweet
    - 10: Highly suitable, the message relies on a visual

    # INSTRUCTIONS
    - The "rating" field is a number between 1 and 10.
    - The "rating_explanation" field explains the rating.
""")


# ============================================================
# Steps
# ============================================================

def make_remove_branding(llm: TextGenerator):
    async def remove_branding(state: Mapping[str, Any]) -> Dict[str, Any]:
        tweet = await llm.generate(REMOVE_BRANDING_PROMPT.format(tweet=state["tweet"]))
        return {"tweet": tweet.strip()}

    return remove_branding


def make_rate_image_suitability(llm: StructuredGenerator):
    async def rate_image_suitability(state: Mapping[str, Any]) -> Dict[str, Any]:
        result = await llm.generate_structured(
            RATE_IMAGE_PROMPT.format(tweet=state["tweet"]),
            ImageSuitability,
        )
        logger.info(f"Image suitability rating: {result.rating}")
        return {"rating": result.rating, "rating_explanation": result.rating_explanation}

    return rate_image_suitability


def make_generate_image_prompt(llm: TextGenerator):
    async def generate_image_prompt(state: Mapping[str, Any]) -> Dict[str, Any]:
        prompt = await llm.generate(IMAGE_PROMPT_PROMPT.format(
            tweet=state["tweet"],
            negative_prompt=NEGATIVE_PROMPT if state["should_remove_branding"] else "",
        ))
        return {"prompt": prompt.strip()}

    return generate_image_prompt


def make_apply_art_style(llm: TextGenerator):
    async def apply_art_style_to_image_prompt(state: Mapping[str, Any]) -> Dict[str, Any]:
        prompt = await llm.generate(ART_STYLE_PROMPT.format(
            art_style=getattr(state["art_style"], "value", state["art_style"]),
            prompt=state["prompt"],
        ))
        logger.debug(f"Restyled prompt: {state['prompt']!r} -> {prompt!r}")
        return {"prompt": prompt.strip()}

    return apply_art_style_to_image_prompt


def make_generate_image_from_prompt(image_generator: ImageGenerator):
    async def generate_image_from_prompt(state: Mapping[str, Any]) -> Dict[str, Any]:
        """Generate the image; a failed call yields no images rather than a failed run."""
        options = {}
        if state.get("aspect_ratio"):
            options["aspect_ratio"] = state["aspect_ratio"]

        try:
            images = await image_generator.generate_images(state["prompt"], **options)
        except CollaboratorError as e:
            logger.error(f"Error calling generate_image_from_prompt: {e}")
            return {"images": []}

        return {"images": [image.model_dump() for image in images]}

    return generate_image_from_prompt


# ============================================================
# Routers
# ============================================================

def should_remove_branding(state: Mapping[str, Any]) -> Literal["YES", "NO"]:
    return "YES" if state["should_remove_branding"] else "NO"


def can_generate_image(state: Mapping[str, Any]) -> Literal["YES", "NO"]:
    rating = state.get("rating")
    return "YES" if rating and rating > MIN_RATING_FOR_IMAGE else "NO"


# ============================================================
# Workflow Factory
# ============================================================

def create_tweet_to_image_workflow(
    rewriter: TextGenerator,
    rater: StructuredGenerator,
    prompt_writer: TextGenerator,
    image_generator: ImageGenerator,
) -> CompiledGraph:
    """
    Create the tweet-to-image graph.

    Args:
        rewriter: Removes branding from the tweet
        rater: Rates image suitability (structured output)
        prompt_writer: Writes and restyles the image prompt
        image_generator: Generates the image

    Returns:
        Compiled graph; run it with ``{"tweet": "...", "art_style": "Anime", "aspect_ratio": "1:1"}``
    """
    graph = Graph(
        create_tweet_to_image_schema(),
        name="Tweet to Image",
        description="Rates a tweet's need for an image and generates one in the requested art style.",
    )

    graph.add_node("check_should_remove_branding", passthrough)
    graph.add_node("remove_branding", make_remove_branding(rewriter))
    graph.add_node("rate_image_suitability", make_rate_image_suitability(rater))
    graph.add_node("check_can_generate_image", passthrough)
    graph.add_node("generate_image_prompt", make_generate_image_prompt(prompt_writer))
    graph.add_node("apply_art_style_to_image_prompt", make_apply_art_style(prompt_writer))
    graph.add_node("generate_image_from_prompt", make_generate_image_from_prompt(image_generator))

    graph.set_entry_point("check_should_remove_branding")
    graph.add_conditional_edges(
        "check_should_remove_branding",
        should_remove_branding,
        {"YES": "remove_branding", "NO": "rate_image_suitability"},
    )
    graph.add_edge("remove_branding", "rate_image_suitability")
    graph.add_edge("rate_image_suitability", "check_can_generate_image")
    graph.add_conditional_edges(
        "check_can_generate_image",
        can_generate_image,
        {"YES": "generate_image_prompt", "NO": END},
    )
    graph.add_edge("generate_image_prompt", "apply_art_style_to_image_prompt")
    graph.add_edge("apply_art_style_to_image_prompt", "generate_image_from_prompt")
    graph.add_edge("generate_image_from_prompt", END)

    return graph.compile()
