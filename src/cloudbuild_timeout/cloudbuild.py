from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
import logging
import re
from typing import Any, Callable

import google.auth
import google.auth.exceptions
import google.auth.transport.requests
import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .config import DEFAULT_API_ENDPOINT
from .errors import DeadlineFetchError


logger = logging.getLogger(__name__)

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"

_PROTO_DURATION = re.compile(r"^(-?\d+(?:\.\d{1,9})?)s$")
_FRACTION = re.compile(r"(\.\d{6})\d+")


def parse_proto_duration(raw: str) -> timedelta:
    """Parse the JSON form of ``google.protobuf.Duration`` (e.g. ``"600s"``)."""
    match = _PROTO_DURATION.match(raw.strip())
    if match is None:
        raise ValueError(f"invalid duration {raw!r}")
    try:
        return timedelta(seconds=float(match.group(1)))
    except OverflowError as e:
        raise ValueError(f"duration out of range {raw!r}") from e


class Build(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    status: str | None = None
    start_time: datetime | None = Field(default=None, alias="startTime")
    timeout: timedelta | None = None

    @field_validator("start_time", mode="before")
    @classmethod
    def _truncate_nanoseconds(cls, value: Any) -> Any:
        # RFC 3339 timestamps from the API carry up to nine fractional digits.
        if isinstance(value, str):
            return _FRACTION.sub(r"\1", value)
        return value

    @field_validator("timeout", mode="before")
    @classmethod
    def _parse_timeout(cls, value: Any) -> Any:
        if isinstance(value, str):
            return parse_proto_duration(value)
        return value


def default_token_provider() -> str:
    credentials, _ = google.auth.default(scopes=[CLOUD_PLATFORM_SCOPE])
    credentials.refresh(google.auth.transport.requests.Request())
    return str(credentials.token)


def _error_detail(resp: httpx.Response) -> str:
    try:
        payload = resp.json()
    except ValueError:
        return resp.text.strip() or resp.reason_phrase
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
    return resp.reason_phrase


class CloudBuildClient:
    def __init__(
        self,
        *,
        endpoint: str = DEFAULT_API_ENDPOINT,
        token_provider: Callable[[], str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout_seconds: float = 30.0,
    ):
        self._endpoint = endpoint.rstrip("/")
        self._token_provider = token_provider or default_token_provider
        self._transport = transport
        self._timeout_seconds = timeout_seconds

    async def _token(self) -> str:
        try:
            return await asyncio.to_thread(self._token_provider)
        except google.auth.exceptions.GoogleAuthError as e:
            raise DeadlineFetchError(f"error obtaining Google credentials: {e}") from e

    async def get_build(self, project_id: str, build_id: str) -> Build:
        token = await self._token()
        url = f"{self._endpoint}/v1/projects/{project_id}/builds/{build_id}"

        try:
            async with httpx.AsyncClient(
                transport=self._transport, timeout=self._timeout_seconds
            ) as client:
                resp = await client.get(
                    url,
                    headers={
                        "accept": "application/json",
                        "authorization": f"Bearer {token}",
                    },
                )
        except httpx.HTTPError as e:
            raise DeadlineFetchError(
                f"error getting build from API; check project and build ID: {e}"
            ) from e

        if resp.status_code != 200:
            raise DeadlineFetchError(
                f"error getting build from API; check project and build ID: "
                f"HTTP {resp.status_code}: {_error_detail(resp)}"
            )

        try:
            return Build.model_validate(resp.json())
        except (ValueError, ValidationError) as e:
            raise DeadlineFetchError(f"unexpected build resource from API: {e}") from e

    async def fetch_deadline(self, project_id: str, build_id: str) -> tuple[datetime, timedelta]:
        """Return the build's start time and its total allowed duration."""
        logger.info("Getting build info from Cloud Build API")
        build = await self.get_build(project_id, build_id)

        if build.start_time is None:
            raise DeadlineFetchError(f"build '{build_id[:8]}' has no start time (status {build.status})")
        if build.timeout is None:
            raise DeadlineFetchError(f"build '{build_id[:8]}' has no timeout")
        if build.start_time.tzinfo is None:
            raise DeadlineFetchError(f"build '{build_id[:8]}' start time has no UTC offset")

        logger.info("Cloud Build timeout is %s seconds", int(build.timeout.total_seconds()))
        return build.start_time, build.timeout
