"""
Image generation providers.

`MultiProviderImageClient` routes a request to whichever provider registered
the model. Providers expose `async generate_image(prompt, model) -> bytes`.
"""

import asyncio
import base64
import logging
from typing import Optional

import httpx
import litellm
import openai

from chatborg.errors import (
    EmptyOutputError,
    PollingTimeoutError,
    PredictionFailedError,
    ProtocolError,
    ProviderRejectedError,
    ProviderTransientError,
    UnsupportedModelError,
)
from chatborg.llm_util import provider_error

logger = logging.getLogger(__name__)


class MultiProviderImageClient:
    def __init__(self, providers: dict):
        self.providers = dict(providers)

    @property
    def models(self) -> list[str]:
        return list(self.providers)

    async def generate_image(self, prompt: str, model: str) -> bytes:
        provider = self.providers.get(model)
        if provider is None:
            raise UnsupportedModelError(model)
        return await provider.generate_image(prompt, model)

    async def aclose(self):
        # one provider may serve several models
        providers = {id(p): p for p in self.providers.values()}
        for provider in providers.values():
            await provider.aclose()


async def _download(client: httpx.AsyncClient, url: str) -> bytes:
    try:
        response = await client.get(url)
    except httpx.HTTPError as e:
        raise ProviderTransientError(f"failed to download image: {e}") from e
    if response.status_code >= 400:
        error_cls = (
            ProviderTransientError
            if response.status_code >= 500
            else ProviderRejectedError
        )
        raise error_cls(
            f"failed to download image: unexpected status code {response.status_code}",
            status_code=response.status_code,
        )
    return response.content


##
class OpenAIImageProvider:
    """DALL-E models; the image comes back in the same response."""

    def __init__(
        self,
        *,
        api_key: str,
        client: Optional[httpx.AsyncClient] = None,
        size: str = "1024x1024",
        quality: str = "standard",
    ):
        self.api_key = api_key
        self.client = client or httpx.AsyncClient(timeout=60.0)
        self.size = size
        self.quality = quality

    async def generate_image(self, prompt: str, model: str) -> bytes:
        try:
            response = await litellm.aimage_generation(
                prompt=prompt,
                model=model,
                size=self.size,
                quality=self.quality,
                n=1,
                api_key=self.api_key,
            )
        except openai.APIError as e:
            raise provider_error(e, what="image generation failed") from e

        if not response.data:
            raise EmptyOutputError()
        image = response.data[0]
        if getattr(image, "b64_json", None):
            return base64.b64decode(image.b64_json)
        if getattr(image, "url", None):
            return await _download(self.client, image.url)
        raise EmptyOutputError()

    async def aclose(self):
        await self.client.aclose()


##
PREDICTION_STARTING = "starting"
PREDICTION_PROCESSING = "processing"
PREDICTION_SUCCEEDED = "succeeded"
PREDICTION_FAILED = "failed"
PREDICTION_CANCELED = "canceled"

TERMINAL_STATUSES = {PREDICTION_SUCCEEDED, PREDICTION_FAILED, PREDICTION_CANCELED}

REPLICATE_MODELS = {
    "flux-1.1-pro-ultra": "black-forest-labs/flux-1.1-pro-ultra",
}
DEFAULT_ASPECT_RATIO = "3:2"


class ReplicateImageProvider:
    """
    Replicate-hosted models, which run as predictions.

    The prediction is created with `Prefer: wait` so fast models answer in
    one round trip; otherwise it is polled every `poll_interval` seconds until
    it reaches a terminal status. The whole polling loop is bounded by
    `poll_timeout`, and cancelling the caller aborts the in-flight request.
    """

    base_url = "https://api.replicate.com/v1"

    def __init__(
        self,
        *,
        api_token: str,
        client: Optional[httpx.AsyncClient] = None,
        poll_interval: float = 1.0,
        poll_timeout: float = 60.0,
    ):
        if not api_token:
            raise ValueError("Replicate API token cannot be empty")
        self.client = client or httpx.AsyncClient(timeout=60.0)
        self.headers = {"Authorization": f"Bearer {api_token}"}
        self.poll_interval = poll_interval
        self.poll_timeout = poll_timeout

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        headers = {**self.headers, **kwargs.pop("headers", {})}
        try:
            response = await self.client.request(
                method, f"{self.base_url}{path}", headers=headers, **kwargs
            )
        except httpx.HTTPError as e:
            raise ProviderTransientError(f"HTTP request failed: {e}") from e

        if response.status_code >= 500:
            raise ProviderTransientError(
                f"unexpected status code: {response.status_code}, response: {response.text}",
                status_code=response.status_code,
            )
        if response.status_code >= 400:
            raise ProviderRejectedError(
                f"unexpected status code: {response.status_code}, response: {response.text}",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise ProtocolError(f"failed to parse prediction response: {e}") from e

    async def _poll(self, prediction: dict) -> dict:
        prediction_id = prediction.get("id")
        if not prediction_id:
            raise ProtocolError("prediction response has no id")

        try:
            async with asyncio.timeout(self.poll_timeout):
                while prediction.get("status") not in TERMINAL_STATUSES:
                    await asyncio.sleep(self.poll_interval)
                    prediction = await self._request(
                        "GET", f"/predictions/{prediction_id}"
                    )
        except TimeoutError as e:
            raise PollingTimeoutError(
                f"polling timed out after {self.poll_timeout}s"
            ) from e
        return prediction

    async def generate_image(self, prompt: str, model: str) -> bytes:
        replicate_model = REPLICATE_MODELS.get(model)
        if replicate_model is None:
            raise UnsupportedModelError(model)

        prediction = await self._request(
            "POST",
            f"/models/{replicate_model}/predictions",
            json={"input": {"prompt": prompt, "aspect_ratio": DEFAULT_ASPECT_RATIO}},
            headers={"Prefer": "wait"},
        )
        if prediction.get("status") != PREDICTION_SUCCEEDED:
            prediction = await self._poll(prediction)

        status = prediction.get("status")
        if status != PREDICTION_SUCCEEDED:
            raise PredictionFailedError(status, prediction.get("error"))

        output = prediction.get("output")
        if isinstance(output, list):
            output = output[0] if output else None
        if not output:
            raise EmptyOutputError()

        logger.info(f"Replicate prediction {prediction.get('id')} succeeded")
        return await _download(self.client, output)

    async def aclose(self):
        await self.client.aclose()
