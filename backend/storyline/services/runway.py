"""Image-to-video adapter for the Runway REST API."""

from __future__ import annotations

from typing import Any, Optional

import httpx
import structlog

from storyline.core.config import Settings
from storyline.core.errors import ProviderConfigurationError, ProviderError
from storyline.services.providers import VideoJobStatus

logger = structlog.get_logger(__name__)


def extract_output_url(output: Any) -> Optional[str]:
    """Runway reports output as a list of URLs or an object with a video URL key."""
    if isinstance(output, list):
        return output[0] if output and isinstance(output[0], str) else None
    if isinstance(output, dict):
        return output.get("videoUrl") or output.get("video_url")
    return None


def _json_object(response: httpx.Response, what: str) -> dict:
    try:
        data = response.json()
    except ValueError as exc:
        raise ProviderError(f"{what} returned a non-JSON body: {response.text[:200]!r}") from exc
    if not isinstance(data, dict):
        raise ProviderError(f"{what} returned {type(data).__name__}, expected an object")
    return data


class RunwayVideoProvider:
    def __init__(
        self,
        *,
        api_key: str,
        base_url: str,
        api_version: str,
        model: str,
        seed: Optional[int] = None,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "X-Runway-Version": api_version,
        }
        self.model = model
        self.seed = seed
        self._timeout = httpx.Timeout(timeout)
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._headers,
            timeout=self._timeout,
            transport=self._transport,
        )

    async def submit_job(self, image_url: str, prompt: str, duration_seconds: int, ratio: str) -> str:
        payload: dict[str, object] = {
            "model": self.model,
            "promptImage": image_url,
            "promptText": prompt,
            "ratio": ratio,
            "duration": duration_seconds,
        }
        if self.seed is not None:
            payload["seed"] = self.seed

        logger.debug("runway.submit.request", model=self.model, ratio=ratio, duration=duration_seconds)
        async with self._client() as client:
            try:
                response = await client.post("/v1/image_to_video", json=payload)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                raise ProviderError(
                    f"Runway rejected the job ({exc.response.status_code}): {exc.response.text}"
                ) from exc
            except httpx.HTTPError as exc:
                raise ProviderError(f"Runway request failed: {exc}") from exc
            data = _json_object(response, "Runway job submission")

        job_id = data.get("id")
        if not job_id:
            raise ProviderError("Runway response did not include a task id")
        return str(job_id)

    async def get_job_status(self, job_id: str) -> VideoJobStatus:
        async with self._client() as client:
            try:
                response = await client.get(f"/v1/tasks/{job_id}")
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                raise ProviderError(
                    f"Runway status check failed ({exc.response.status_code}): {exc.response.text}"
                ) from exc
            except httpx.HTTPError as exc:
                raise ProviderError(f"Runway status request failed: {exc}") from exc
            data = _json_object(response, "Runway status check")

        return VideoJobStatus(
            status=str(data.get("status", "")).upper(),
            output_url=extract_output_url(data.get("output")),
            failure_reason=data.get("failure") or data.get("failureCode"),
            raw=data,
        )


def build_runway_provider(settings: Settings) -> RunwayVideoProvider:
    if not settings.runway_api_key:
        raise ProviderConfigurationError("RUNWAY_API_KEY is required in environment or .env")
    return RunwayVideoProvider(
        api_key=settings.runway_api_key,
        base_url=settings.runway_base_url,
        api_version=settings.runway_api_version,
        model=settings.runway_model,
        seed=settings.video_seed,
    )
