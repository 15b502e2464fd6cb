"""REST client for the QBox backend.

Every response is a JSON envelope `{"success": bool, "data": ..., "message": str}`.
Failures of any kind (transport, HTTP status, `success: false`) are raised as
ApiError; callers translate them into LoadFailure / ActionFailure.

Environment variables:
    QBOX_API_URL       — base URL of the REST API
    QBOX_API_TOKEN     — optional bearer token for instructor accounts
    QBOX_HTTP_TIMEOUT  — request timeout in seconds (default 90, the backend cold-starts slowly)
"""

import logging
import os
import time
from typing import Any, Optional

import httpx
from dotenv import load_dotenv

from qbox.errors import ApiError

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_API_URL = os.getenv("QBOX_API_URL", "http://localhost:3000/api")
DEFAULT_TIMEOUT = float(os.getenv("QBOX_HTTP_TIMEOUT", "90"))


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return response.reason_phrase


class QBoxClient:
    """Thin async wrapper over the backend's REST endpoints."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        http: Optional[httpx.AsyncClient] = None,
    ):
        token = token if token is not None else os.getenv("QBOX_API_TOKEN", "")
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(
            base_url=base_url or DEFAULT_API_URL,
            timeout=timeout or DEFAULT_TIMEOUT,
            headers=headers,
        )

    async def close(self):
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> "QBoxClient":
        return self

    async def __aexit__(self, *exc):
        await self.close()

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        """Send a request and unwrap the envelope.

        Returns:
            The envelope's `data` member.

        Raises:
            ApiError: On transport errors, non-2xx responses or `success: false`.
        """
        start_time = time.monotonic()
        try:
            response = await self._http.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            message = _error_message(e.response)
            logger.error(f"{method} {path} failed: {status} - {message}")
            raise ApiError(message, status_code=status) from e
        except httpx.HTTPError as e:
            logger.error(f"{method} {path} failed: {e!r}")
            raise ApiError(f"Cannot reach server: {e}") from e

        try:
            body = response.json()
        except ValueError as e:
            raise ApiError("Server returned a non-JSON response", status_code=response.status_code) from e

        if not isinstance(body, dict) or not body.get("success", False):
            message = body.get("message") if isinstance(body, dict) else None
            logger.warning(f"{method} {path} rejected: {message or 'no message'}")
            raise ApiError(message or "Request was not successful", status_code=response.status_code)

        elapsed = time.monotonic() - start_time
        logger.debug(f"{method} {path} -> {response.status_code} in {elapsed:.2f}s")
        return body.get("data")

    # --- Questions ---

    async def get_questions(
        self,
        room_id: str,
        author_tag: Optional[str] = None,
        include_rejected: bool = False,
    ) -> list[dict]:
        params: dict = {}
        if author_tag:
            params["studentTag"] = author_tag
        if include_rejected:
            params["includeRejected"] = "true"
        data = await self._request("GET", f"/questions/room/{room_id}", params=params)
        if not isinstance(data, list):
            raise ApiError("Question list missing from response")
        return data

    async def ask_question(self, text: str, room_id: str, author_tag: str) -> dict:
        return await self._request("POST", "/questions", json={
            "questionText": text,
            "roomId": room_id,
            "studentTag": author_tag,
        })

    async def upvote_question(self, question_id: str, author_tag: Optional[str] = None) -> dict:
        return await self._request("PUT", f"/questions/{question_id}/upvote", json={"studentTag": author_tag})

    async def report_question(self, question_id: str, author_tag: Optional[str], reason: str) -> dict:
        return await self._request("PUT", f"/questions/{question_id}/report", json={
            "studentTag": author_tag,
            "reason": reason,
        })

    async def answer_question(self, question_id: str, answer_text: Optional[str] = None) -> dict:
        body = {"answer": answer_text} if answer_text else None
        return await self._request("PUT", f"/questions/{question_id}/answer", json=body)

    async def delete_question(self, question_id: str) -> dict:
        return await self._request("DELETE", f"/questions/{question_id}")

    async def restore_question(self, question_id: str) -> dict:
        return await self._request("PUT", f"/questions/{question_id}/restore")

    async def purge_question(self, question_id: str) -> dict:
        return await self._request("DELETE", f"/questions/{question_id}/permanent")

    # --- Rooms ---

    async def get_room(self, room_id: str) -> dict:
        return await self._request("GET", f"/rooms/{room_id}")

    async def join_room(self, room_code: str) -> dict:
        return await self._request("POST", "/rooms/join", json={"roomCode": room_code})

    async def toggle_visibility(self, room_id: str) -> dict:
        return await self._request("PUT", f"/rooms/{room_id}/toggle-visibility")

    async def close_room(self, room_id: str) -> dict:
        return await self._request("PUT", f"/rooms/{room_id}/close")
