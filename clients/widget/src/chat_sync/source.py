"""Remote message source: the collaborator interface and its aiohttp transport."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol

import aiohttp

from .errors import DEFAULT_SEND_ERROR, ReadAckFailure, ResolutionFailure, SendFailure, TransientFetchError
from .models import (
    ROLE_INITIATOR,
    ROLE_RESPONDER,
    Message,
    conversation_key,
    normalize_message,
    normalize_messages,
    split_conversation_key,
)

logger = logging.getLogger(__name__)


class MessageSource(Protocol):
    async def fetch_messages(self, participant_id: str, role: str) -> List[Message]: ...

    async def append_message(
        self,
        conversation_key: str,
        direction: str,
        body: str,
        metadata: Mapping[str, Any],
    ) -> Optional[Message]: ...

    async def mark_read(self, message_id: str) -> None: ...

    async def resolve_counterpart(self, conversation_key: str) -> str: ...

    async def get_eligibility(self, conversation_keys: List[str]) -> Dict[str, bool]: ...


class HttpStatusError(Exception):
    def __init__(self, status: int, message: str) -> None:
        self.status = status
        self.message = message
        super().__init__(f"http_{status}: {message}")


_TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, HttpStatusError, ValueError)


def _progress(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _id_of(value: Any) -> str:
    if isinstance(value, dict):
        value = value.get("_id", value.get("id"))
    return "" if value is None else str(value).strip()


def _enrollment_open(entry: Mapping[str, Any]) -> bool:
    status = entry.get("status")
    status_allowed = status in (None, "", "active")
    return status_allowed and _progress(entry.get("progress")) < 100


def _student_open(entry: Mapping[str, Any]) -> bool:
    if entry.get("isCompleted"):
        return False
    return _progress(entry.get("progress")) < 100


class HttpMessageSource:
    """REST client for the course messaging backend.

    ``base_url`` includes the API prefix, e.g. ``https://host/api``.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        role: str,
        *,
        session: aiohttp.ClientSession | None = None,
        timeout_s: float = 10,
    ) -> None:
        if role not in (ROLE_RESPONDER, ROLE_INITIATOR):
            raise ValueError(f"unknown role {role!r}")
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.role = role
        self.timeout_s = timeout_s
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "HttpMessageSource":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout_s))
            self._owns_session = True
        return self._session

    async def _request(self, method: str, path: str, payload: Dict[str, Any] | None = None) -> Dict[str, Any]:
        session = self._ensure_session()
        async with session.request(method, self._url(path), json=payload, headers=self._headers()) as response:
            raw = await response.text()
            if response.status >= 400:
                raise HttpStatusError(response.status, _server_message(raw))
        if not raw:
            return {}
        parsed = json.loads(raw)
        return parsed if isinstance(parsed, dict) else {}

    async def fetch_messages(self, participant_id: str, role: str) -> List[Message]:
        path = "/messages/student/messages" if role == ROLE_RESPONDER else "/messages/teacher/messages"
        try:
            payload = await self._request("GET", path)
        except _TRANSPORT_ERRORS as exc:
            raise TransientFetchError(f"fetch messages for {participant_id}: {exc}") from exc
        records = payload.get("messages")
        if not isinstance(records, list):
            raise TransientFetchError("fetch messages returned invalid payload")
        return normalize_messages(records, role)

    async def append_message(
        self,
        conversation_key: str,
        direction: str,
        body: str,
        metadata: Mapping[str, Any],
    ) -> Optional[Message]:
        course_id, participant_id = split_conversation_key(conversation_key)
        counterpart_id = str(metadata.get("counterpart_id", ""))
        if self.role == ROLE_RESPONDER:
            path = "/messages/student/send"
            payload: Dict[str, Any] = {"courseId": course_id, "teacherId": counterpart_id, "message": body}
        else:
            path = "/messages/teacher/send"
            payload = {
                "courseId": course_id,
                "studentIds": [counterpart_id or participant_id],
                "message": body,
                "messageType": "info",
            }
        try:
            response = await self._request("POST", path, payload)
        except HttpStatusError as exc:
            raise SendFailure(str(exc), user_message=exc.message or DEFAULT_SEND_ERROR) from exc
        except _TRANSPORT_ERRORS as exc:
            raise SendFailure(str(exc)) from exc

        record = response.get("messageData")
        if not isinstance(record, dict):
            created = response.get("messages")
            record = created[0] if isinstance(created, list) and created and isinstance(created[0], dict) else None
        if record is None:
            return None
        return normalize_message(record, self.role)

    async def mark_read(self, message_id: str) -> None:
        try:
            await self._request("PUT", f"/messages/{message_id}/read", {})
        except _TRANSPORT_ERRORS as exc:
            raise ReadAckFailure(message_id, str(exc)) from exc

    async def resolve_counterpart(self, conversation_key: str) -> str:
        course_id, participant_id = split_conversation_key(conversation_key)
        if self.role == ROLE_RESPONDER:
            try:
                payload = await self._request("GET", f"/course/{course_id}/instructor")
            except _TRANSPORT_ERRORS as exc:
                raise ResolutionFailure(conversation_key, str(exc)) from exc
            instructor_id = _id_of(payload.get("instructor"))
            if not instructor_id:
                raise ResolutionFailure(
                    conversation_key,
                    "course has no instructor",
                    user_message="Unable to find the instructor for this course. Please contact support or try again later.",
                )
            return instructor_id

        try:
            students = await self._course_students(course_id)
        except _TRANSPORT_ERRORS as exc:
            raise ResolutionFailure(conversation_key, str(exc)) from exc
        for student in students:
            if _id_of(student.get("_id", student.get("studentId"))) != participant_id:
                continue
            if not _student_open(student):
                raise ResolutionFailure(
                    conversation_key,
                    "student completed the course",
                    user_message="This student has completed the course. Messaging is no longer available.",
                )
            return participant_id
        raise ResolutionFailure(
            conversation_key,
            "student not enrolled",
            user_message="Student not found in course enrollment. Please refresh and try again.",
        )

    async def _course_students(self, course_id: str) -> List[Dict[str, Any]]:
        payload = await self._request("GET", f"/teacher/courses/{course_id}/students")
        students = payload.get("students")
        if not isinstance(students, list):
            return []
        return [student for student in students if isinstance(student, dict)]

    async def get_eligibility(self, conversation_keys: List[str]) -> Dict[str, bool]:
        if not conversation_keys:
            return {}
        try:
            if self.role == ROLE_RESPONDER:
                open_keys = await self._open_responder_keys()
            else:
                open_keys = await self._open_initiator_keys(conversation_keys)
        except _TRANSPORT_ERRORS as exc:
            raise TransientFetchError(f"eligibility lookup failed: {exc}") from exc
        return {key: key in open_keys for key in conversation_keys}

    async def _open_responder_keys(self) -> set[str]:
        payload = await self._request("GET", "/student/enrollments")
        enrollments = payload.get("enrollments")
        if not isinstance(enrollments, list):
            raise ValueError("enrollments payload is not a list")
        return {
            conversation_key(ROLE_RESPONDER, _id_of(entry.get("courseId")))
            for entry in enrollments
            if isinstance(entry, dict) and _id_of(entry.get("courseId")) and _enrollment_open(entry)
        }

    async def _open_initiator_keys(self, conversation_keys: Iterable[str]) -> set[str]:
        course_ids = sorted({split_conversation_key(key)[0] for key in conversation_keys})
        rosters = await asyncio.gather(*(self._course_students(course_id) for course_id in course_ids))
        open_keys: set[str] = set()
        for course_id, students in zip(course_ids, rosters):
            for student in students:
                student_id = _id_of(student.get("_id", student.get("studentId")))
                if student_id and _student_open(student):
                    open_keys.add(conversation_key(ROLE_INITIATOR, course_id, student_id))
        return open_keys


def _server_message(raw: str) -> str:
    try:
        payload = json.loads(raw) if raw else {}
    except ValueError:
        return raw.strip()[:200]
    if isinstance(payload, dict) and isinstance(payload.get("message"), str):
        return payload["message"]
    return ""
