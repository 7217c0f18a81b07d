"""Built-in tool definitions."""

from __future__ import annotations

from dataclasses import dataclass

import httpx
from loguru import logger
from openai import AsyncOpenAI
from pydantic import BaseModel, Field

from llmverse.config import ModelSettings, Settings
from llmverse.errors import ToolExecutionError
from llmverse.tools.registry import ToolDescriptor, ToolRegistry

FRANKFURTER_API_BASE = "https://api.frankfurter.app"
OPENWEATHER_API_URL = "https://api.openweathermap.org/data/2.5/weather"
IMGUR_API_BASE = "https://api.imgur.com/3"
IMAGE_MODEL = "dall-e-3"
IMAGE_SIZE = "1024x1024"


class ExchangeRateInput(BaseModel):
    currency_date: str = Field(
        default="latest",
        description="A date that must always be in YYYY-MM-DD format or the value 'latest' "
        "if a time period is not specified",
    )
    currency_from: str = Field(..., description="The currency to convert from in ISO 4217 format")
    currency_to: str | None = Field(default=None, description="The currency to convert to in ISO 4217 format")


class WeatherInput(BaseModel):
    location: str = Field(
        ...,
        description="The location to get the weather for, formatted as 'City,Country', e.g. 'New York,US', "
        "and the city and country code must be in ISO 3166-1 alpha-2 format",
    )


class ImageInput(BaseModel):
    image_desc: str = Field(..., description="A description of the image to generate")


@dataclass(frozen=True)
class ToolContext:
    """What built-in tools need from the running application."""

    settings: Settings
    model: ModelSettings
    http: httpx.AsyncClient


def create_exchange_rate_tool(context: ToolContext) -> ToolDescriptor:
    async def _handler(params: ExchangeRateInput) -> str:
        query = {"from": params.currency_from.upper()}
        if params.currency_to:
            query["to"] = params.currency_to.upper()
        response = await context.http.get(f"{FRANKFURTER_API_BASE}/{params.currency_date}", params=query)
        response.raise_for_status()
        return response.text

    return ToolDescriptor(
        name="getExchangeRate",
        description="Get the exchange rate for currencies between countries",
        input_model=ExchangeRateInput,
        handler=_handler,
    )


def create_weather_tool(context: ToolContext) -> ToolDescriptor:
    async def _handler(params: WeatherInput) -> str:
        response = await context.http.get(
            OPENWEATHER_API_URL,
            params={"mode": "json", "q": params.location, "appid": context.settings.openweather_key or ""},
        )
        response.raise_for_status()
        return response.text

    return ToolDescriptor(
        name="getWeather",
        description="Get the weather for a specific location based on the following location: {location}",
        input_model=WeatherInput,
        handler=_handler,
    )


def create_image_tool(context: ToolContext, *, client: AsyncOpenAI | None = None) -> ToolDescriptor:
    openai_client = client or AsyncOpenAI(
        api_key=context.model.api_key,
        base_url=context.model.base_url,
        http_client=context.http,
    )

    async def _handler(params: ImageInput) -> str:
        response = await openai_client.images.generate(
            prompt=params.image_desc,
            model=IMAGE_MODEL,
            size=IMAGE_SIZE,
            n=1,
        )
        if not response.data or not response.data[0].url:
            raise ToolExecutionError("image generation returned no url")
        url = response.data[0].url
        if context.settings.imgur_client_id:
            url = await _rehost_on_imgur(context, url, params.image_desc)
        return f"the generated image url is: {url}"

    return ToolDescriptor(
        name="generateImage",
        description="Generate a detailed prompt to generate an image based on the following description: {image_desc}",
        input_model=ImageInput,
        handler=_handler,
    )


async def _rehost_on_imgur(context: ToolContext, url: str, description: str) -> str:
    """Upload a generated image to Imgur, keeping the original url when out of credits."""
    headers = {"Authorization": f"Client-ID {context.settings.imgur_client_id}"}
    quota = await context.http.get(f"{IMGUR_API_BASE}/credits", headers=headers)
    quota.raise_for_status()
    limits = quota.json().get("data", {})
    if limits.get("ClientRemaining", 0) == 0:
        logger.warning("tool.imgur.rate_limited reset_time={}", limits.get("UserReset"))
        return url

    logger.debug("tool.imgur.upload url={}", url)
    upload = await context.http.post(
        f"{IMGUR_API_BASE}/image",
        headers=headers,
        data={"image": url, "type": "url", "description": description},
    )
    upload.raise_for_status()
    link = upload.json().get("data", {}).get("link")
    if not isinstance(link, str) or not link:
        raise ToolExecutionError("imgur upload returned no link")
    return link


def build_tool_registry(context: ToolContext) -> ToolRegistry:
    """Register the tools available to one model."""
    registry = ToolRegistry()
    registry.register(create_exchange_rate_tool(context))
    if context.settings.openweather_key:
        registry.register(create_weather_tool(context))
    if context.model.has_image_generation:
        registry.register(create_image_tool(context))
    return registry
