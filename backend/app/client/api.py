from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import httpx
from pydantic import BaseModel, ValidationError

from app.client.errors import ApiError
from app.core.config import settings
from app.schemas.auth import TokenResponse
from app.schemas.quiz import AttemptOut, QuizOut, SubmitAnswer, SubmitRequest, SubmitResponse

logger = logging.getLogger(__name__)


def _error_from_response(r: httpx.Response) -> ApiError:
    error_code = f"http_{r.status_code}"
    message = r.reason_phrase or "request failed"
    try:
        body = r.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        error_code = str(body.get("error_code") or error_code)
        message = str(body.get("error_message") or body.get("detail") or message)
    return ApiError(r.status_code, error_code, message)


class LmsApiClient:
    """Async client for the quiz endpoints the attempt flow depends on.

    Pass ``transport`` to talk to an in-process app (``httpx.ASGITransport``).
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.token = token
        self._client = httpx.AsyncClient(
            base_url=(base_url or settings.api_base_url).rstrip("/"),
            timeout=float(timeout if timeout is not None else settings.api_timeout_seconds),
            transport=transport,
        )

    async def __aenter__(self) -> "LmsApiClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        if not self.token:
            return {}
        return {"Authorization": f"Bearer {self.token}"}

    async def _request(self, method: str, path: str, *, model: type[BaseModel], **kwargs: Any):
        try:
            r = await self._client.request(method, path, headers=self._headers(), **kwargs)
        except httpx.HTTPError as e:
            logger.warning("%s %s failed: %s", method, path, type(e).__name__)
            raise ApiError(0, "network_error", str(e) or type(e).__name__) from e

        if r.status_code >= 400:
            raise _error_from_response(r)

        try:
            return model.model_validate(r.json())
        except (ValueError, ValidationError) as e:
            raise ApiError(r.status_code, "invalid_response", "unexpected response from server") from e

    async def login(self, email: str, password: str) -> str:
        out = await self._request(
            "POST",
            "/auth/token",
            model=TokenResponse,
            data={"username": email, "password": password},
        )
        self.token = out.access_token
        return out.access_token

    async def get_quiz(self, quiz_id: str) -> QuizOut:
        return await self._request("GET", f"/quizzes/{quiz_id}", model=QuizOut)

    async def start_attempt(self, quiz_id: str) -> AttemptOut:
        return await self._request("POST", f"/quizzes/{quiz_id}/attempts", model=AttemptOut)

    async def submit(self, quiz_id: str, attempt_id: str, answers: Mapping[str, str]) -> SubmitResponse:
        body = SubmitRequest(
            attempt_id=attempt_id,
            answers=[SubmitAnswer(question_id=qid, selected_answer=token) for qid, token in answers.items()],
        )
        return await self._request(
            "POST",
            f"/quizzes/{quiz_id}/submit",
            model=SubmitResponse,
            json=body.model_dump(by_alias=True),
        )
