"""Tests for the Cloud Build client against a fake API served in-process."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import google.auth.exceptions
import httpx
import pytest
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from cloudbuild_timeout.cloudbuild import Build, CloudBuildClient, parse_proto_duration
from cloudbuild_timeout.errors import DeadlineFetchError

ENDPOINT = "http://cloudbuild.test"
PROJECT = "my-project"
BUILD_ID = "0f1e2d3c-4b5a-6978-8695-a4b3c2d1e0f9"


def _fake_api(builds: dict[tuple[str, str], dict[str, Any]], seen: list[str | None]) -> FastAPI:
    app = FastAPI()

    @app.get("/v1/projects/{project_id}/builds/{build_id}")
    async def get_build(project_id: str, build_id: str, request: Request) -> Any:
        seen.append(request.headers.get("authorization"))
        build = builds.get((project_id, build_id))
        if build is None:
            return JSONResponse(
                status_code=404,
                content={
                    "error": {
                        "code": 404,
                        "message": "Requested entity was not found.",
                        "status": "NOT_FOUND",
                    }
                },
            )
        return build

    return app


def _client(builds: dict[tuple[str, str], dict[str, Any]], seen: list[str | None]) -> CloudBuildClient:
    return CloudBuildClient(
        endpoint=ENDPOINT,
        token_provider=lambda: "test-token",
        transport=httpx.ASGITransport(app=_fake_api(builds, seen)),
    )


class TestFetchDeadline:
    async def test_returns_start_time_and_timeout(self) -> None:
        seen: list[str | None] = []
        client = _client(
            {
                (PROJECT, BUILD_ID): {
                    "id": BUILD_ID,
                    "status": "WORKING",
                    "startTime": "2026-10-19T12:00:00.123456789Z",
                    "timeout": "600s",
                }
            },
            seen,
        )

        start, allowed = await client.fetch_deadline(PROJECT, BUILD_ID)

        assert start == datetime(2026, 10, 19, 12, 0, 0, 123456, tzinfo=timezone.utc)
        assert allowed == timedelta(minutes=10)
        assert seen == ["Bearer test-token"]

    async def test_not_found_is_a_fetch_error(self) -> None:
        client = _client({}, [])
        with pytest.raises(DeadlineFetchError, match="Requested entity was not found"):
            await client.fetch_deadline(PROJECT, BUILD_ID)

    async def test_build_without_start_time(self) -> None:
        client = _client(
            {(PROJECT, BUILD_ID): {"id": BUILD_ID, "status": "QUEUED", "timeout": "600s"}}, []
        )
        with pytest.raises(DeadlineFetchError, match="no start time"):
            await client.fetch_deadline(PROJECT, BUILD_ID)

    async def test_build_without_timeout(self) -> None:
        client = _client(
            {(PROJECT, BUILD_ID): {"id": BUILD_ID, "startTime": "2026-10-19T12:00:00Z"}}, []
        )
        with pytest.raises(DeadlineFetchError, match="no timeout"):
            await client.fetch_deadline(PROJECT, BUILD_ID)

    async def test_malformed_timeout(self) -> None:
        client = _client(
            {
                (PROJECT, BUILD_ID): {
                    "id": BUILD_ID,
                    "startTime": "2026-10-19T12:00:00Z",
                    "timeout": "ten minutes",
                }
            },
            [],
        )
        with pytest.raises(DeadlineFetchError, match="unexpected build resource"):
            await client.fetch_deadline(PROJECT, BUILD_ID)

    async def test_transport_failure(self) -> None:
        def _refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = CloudBuildClient(
            endpoint=ENDPOINT,
            token_provider=lambda: "test-token",
            transport=httpx.MockTransport(_refuse),
        )
        with pytest.raises(DeadlineFetchError, match="check project and build ID"):
            await client.fetch_deadline(PROJECT, BUILD_ID)

    async def test_credentials_failure(self) -> None:
        def _no_credentials() -> str:
            raise google.auth.exceptions.DefaultCredentialsError("no credentials found")

        client = CloudBuildClient(endpoint=ENDPOINT, token_provider=_no_credentials)
        with pytest.raises(DeadlineFetchError, match="no credentials found"):
            await client.fetch_deadline(PROJECT, BUILD_ID)


class TestBuildModel:
    def test_extra_fields_are_ignored(self) -> None:
        build = Build.model_validate(
            {"id": "x", "steps": [{"name": "gcr.io/cloud-builders/docker"}], "timeout": "3.5s"}
        )
        assert build.timeout == timedelta(seconds=3.5)
        assert build.start_time is None

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("600s", timedelta(seconds=600)), ("0s", timedelta(0)), ("1.000000001s", timedelta(seconds=1))],
    )
    def test_parse_proto_duration(self, raw: str, expected: timedelta) -> None:
        assert parse_proto_duration(raw) == expected

    @pytest.mark.parametrize("raw", ["600", "10m", "s", "", "99999999999999999s"])
    def test_parse_proto_duration_rejects(self, raw: str) -> None:
        with pytest.raises(ValueError):
            parse_proto_duration(raw)
