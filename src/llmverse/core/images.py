"""Image attachment resolution."""

from __future__ import annotations

import base64

import httpx

from llmverse.config import ModelSettings
from llmverse.core.types import ImagePart
from llmverse.errors import ImageFetchError

DEFAULT_IMAGE_TYPE = "image/png"


class ImageFetcher:
    """Turns attachment URLs into image parts a provider accepts."""

    def __init__(self, http: httpx.AsyncClient) -> None:
        self._http = http

    async def fetch(self, model: ModelSettings, urls: tuple[str, ...]) -> tuple[ImagePart, ...]:
        if model.image_mode == "url":
            return tuple(ImagePart(url) for url in urls)
        return tuple([await self._inline(url) for url in urls])

    async def _inline(self, url: str) -> ImagePart:
        try:
            response = await self._http.get(url)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ImageFetchError(f"cannot download image {url}: {exc}") from exc
        content_type = response.headers.get("content-type", "").split(";")[0].strip()
        if not content_type.startswith("image/"):
            content_type = DEFAULT_IMAGE_TYPE
        encoded = base64.b64encode(response.content).decode("ascii")
        return ImagePart(f"data:{content_type};base64,{encoded}")
