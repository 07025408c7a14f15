"""
Image generation client (Imagen via the Gemini API).
"""

from typing import Any, Dict, List, Optional, Protocol, runtime_checkable
import base64
import json
import logging

import httpx
from pydantic import BaseModel

from flowstate.tools.errors import GenerationError


logger = logging.getLogger(__name__)


class GeneratedImage(BaseModel):
    """A generated image as base64 data plus its MIME type."""

    image: str
    mime_type: str

    def to_bytes(self) -> bytes:
        return base64.b64decode(self.image)

    @property
    def extension(self) -> str:
        return self.mime_type.split("/")[-1]


@runtime_checkable
class ImageGenerator(Protocol):
    async def generate_images(self, prompt: str, **options: Any) -> List[GeneratedImage]:
        ...


class ImagenClient:
    """
    Calls the Imagen ``predict`` endpoint.

    Options map onto Imagen parameters: ``number_of_images`` (default 1) and
    ``aspect_ratio`` (e.g. "1:1", "16:9").
    """

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "imagen-3.0-generate-002",
        base_url: str = "https://generativelanguage.googleapis.com/v1beta",
        timeout: float = 60.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.client = http_client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    async def generate_images(
        self,
        prompt: str,
        number_of_images: int = 1,
        aspect_ratio: Optional[str] = None,
        **options: Any,
    ) -> List[GeneratedImage]:
        if not self.api_key:
            raise GenerationError("GOOGLE_API_KEY is not configured")

        parameters: Dict[str, Any] = {"sampleCount": number_of_images, **options}
        if aspect_ratio:
            parameters["aspectRatio"] = aspect_ratio

        try:
            response = await self.client.post(
                f"/models/{self.model}:predict",
                params={"key": self.api_key},
                json={"instances": [{"prompt": prompt}], "parameters": parameters},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            logger.error(f"Imagen request failed: {e}")
            raise GenerationError(f"Imagen request failed: {e}") from e
        except json.JSONDecodeError as e:
            raise GenerationError("Imagen returned invalid JSON") from e

        images = []
        for prediction in data.get("predictions") or []:
            image_bytes = prediction.get("bytesBase64Encoded")
            mime_type = prediction.get("mimeType")
            # Filtered predictions carry a reason instead of bytes
            if image_bytes and mime_type:
                images.append(GeneratedImage(image=image_bytes, mime_type=mime_type))

        logger.info(f"Imagen returned {len(images)} image(s)")
        return images

    async def aclose(self) -> None:
        await self.client.aclose()
