# chat_backend/services/openai_client.py
# Purpose: Single place for OpenAI Responses calls. One request per infer(),
# raced against a fixed timeout, with every failure mapped onto a small typed
# error taxonomy so routes can translate them into stable HTTP errors.
# Notes:
# - Accepts an already-configured OpenAI client (see build_inference_client).
# - No retries here: the SDK client is built with max_retries=0.
# - Response objects may be SDK models or plain dicts (tests use both).

from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Dict, List, Optional, Sequence, Tuple

import openai
from pydantic import ValidationError

from ..config import DEFAULT_MODEL, INFERENCE_TIMEOUT
from ..schemas import Message, validate_message


# ---- Error taxonomy --------------------------------------------------------------


class InferenceError(Exception):
    """Base class for every failure surfaced by InferenceClient.infer()."""

    code = "OPENAI_API_ERROR"
    default_message = "OpenAI API error"
    default_status: Optional[int] = None

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        self.message = message or self.default_message
        if code:
            self.code = code
        self.status_code = status_code if status_code is not None else self.default_status
        super().__init__(self.message)


class InvalidCredentialsError(InferenceError):
    code = "INVALID_CREDENTIALS"
    default_message = "Invalid OpenAI API credentials"
    default_status = 401


class ServiceUnavailableError(InferenceError):
    code = "SERVICE_UNAVAILABLE"
    default_message = "OpenAI service cannot be reached"
    default_status = 503


class InferenceTimeoutError(InferenceError):
    code = "TIMEOUT"
    default_message = "Request timed out"


class TokenLimitExceededError(InferenceError):
    code = "TOKEN_LIMIT_EXCEEDED"
    default_message = "Token limit exceeded"
    default_status = 400


class InvalidModelError(InferenceError):
    code = "INVALID_MODEL"
    default_message = "Invalid model version"
    default_status = 400


class UpstreamError(InferenceError):
    """Generic upstream failure; keeps the upstream code/message/status."""


class IncompleteResponseError(InferenceError):
    code = "INCOMPLETE"
    default_message = "Response is incomplete"

    def __init__(self, incomplete_details: Any, message: Optional[str] = None) -> None:
        super().__init__(message)
        self.incomplete_details = incomplete_details


class IncompleteOutputItemError(InferenceError):
    code = "INCOMPLETE_OUTPUT"

    def __init__(self, status: str) -> None:
        super().__init__(f"Output item status is not completed: {status}")
        self.status = status


class MalformedResponseError(InferenceError):
    code = "INVALID_RESPONSE"
    default_message = "Invalid response format: missing output array"


class EmptyResponseError(InferenceError):
    code = "NO_MESSAGES"
    default_message = "No messages found in response output"


class UnknownInferenceError(InferenceError):
    code = "UNKNOWN_ERROR"
    default_message = "Unknown error occurred"


# ---- Classification ----------------------------------------------------------------

_TIMEOUT_CODES = ("ETIMEDOUT", "ECONNABORTED")
_UNAVAILABLE_STATUSES = (502, 503, 504)
_NETWORK_HINTS = ("fetch", "network", "connection")


def _error_status(exc: BaseException) -> Optional[int]:
    for attr in ("status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    return None


def _error_message(exc: BaseException) -> str:
    message = getattr(exc, "message", None)
    if isinstance(message, str) and message:
        return message
    return str(exc)


def _classify_status_error(
    status: int, message: str, code: Optional[str]
) -> InferenceError:
    lowered = message.lower()
    if status == 401 or "authentication" in lowered or "invalid api key" in lowered:
        return InvalidCredentialsError()
    if status in _UNAVAILABLE_STATUSES:
        return ServiceUnavailableError()
    if code in _TIMEOUT_CODES or "timeout" in lowered:
        return InferenceTimeoutError()
    if status == 400 and ("token" in lowered or "context_length" in lowered):
        return TokenLimitExceededError(message)
    if status == 400 and "model" in lowered:
        return InvalidModelError(message)
    return UpstreamError(message or None, code=code, status_code=status)


def classify_error(exc: BaseException) -> InferenceError:
    """Map an exception raised by the SDK call onto the inference taxonomy.

    Deterministic in (status code, message, error code); typed errors pass
    through unchanged.
    """
    if isinstance(exc, InferenceError):
        return exc

    message = _error_message(exc)
    code = getattr(exc, "code", None)
    if not isinstance(code, str):
        code = None

    status = _error_status(exc)
    if status is not None:
        return _classify_status_error(status, message, code)

    if isinstance(exc, (openai.APITimeoutError, TimeoutError)):
        return InferenceTimeoutError()
    if isinstance(exc, openai.APIConnectionError):
        return ServiceUnavailableError(message or None)
    if any(hint in message.lower() for hint in _NETWORK_HINTS):
        return ServiceUnavailableError(message)
    return UnknownInferenceError(message or None)


# ---- Response parsing --------------------------------------------------------------


def _field(obj: Any, name: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def parse_output(output: Sequence[Any]) -> List[Message]:
    """Turn Responses API output items into Messages.

    Only "message" items with a role and content contribute; list content is
    reduced to the space-joined text of its output_text parts.
    """
    messages: List[Message] = []
    for item in output:
        if _field(item, "type") != "message":
            continue
        role = _field(item, "role")
        content = _field(item, "content")
        if not role or not content:
            continue

        if isinstance(content, (list, tuple)):
            parts = [
                _field(part, "text")
                for part in content
                if _field(part, "type") == "output_text" and _field(part, "text")
            ]
            text = " ".join(parts)
        elif isinstance(content, str):
            text = content
        else:
            continue

        try:
            messages.append(validate_message({"role": role, "content": text}))
        except ValidationError as exc:
            raise MalformedResponseError(f"Invalid message in response output: {exc}") from exc
    return messages


def validate_response(response: Any) -> List[Message]:
    """Check a Responses API result in order and return the parsed messages."""
    error = _field(response, "error")
    if error:
        raise UpstreamError(
            _field(error, "message") or "OpenAI API returned an error",
            code=_field(error, "code") or "UNKNOWN_ERROR",
            status_code=_field(error, "status"),
        )

    incomplete = _field(response, "incomplete_details")
    if incomplete:
        raise IncompleteResponseError(incomplete)

    output = _field(response, "output")
    if not isinstance(output, (list, tuple)):
        raise MalformedResponseError()

    for item in output:
        if _field(item, "type") != "message":
            continue
        status = _field(item, "status")
        if status and status != "completed":
            raise IncompleteOutputItemError(status)

    messages = parse_output(output)
    if not messages:
        raise EmptyResponseError()
    return messages


# ---- Client ------------------------------------------------------------------------


class InferenceClient:
    """Typed façade around the OpenAI Responses API.

    Stateless apart from configuration; safe to share across requests.
    """

    def __init__(
        self,
        client: Any,  # OpenAI() instance, or None when no API key is configured
        logger: Optional[logging.Logger] = None,
        *,
        model: Optional[str] = None,
        timeout: float = INFERENCE_TIMEOUT,
    ) -> None:
        self._client = client
        self._logger = logger
        self._model = model or DEFAULT_MODEL
        self._timeout = timeout

    @property
    def model(self) -> str:
        return self._model

    @property
    def timeout(self) -> float:
        return self._timeout

    # ---- Public API --------------------------------------------------------------

    def infer(self, messages: Sequence[Message]) -> List[Message]:
        """Send the conversation upstream and return the model's reply messages.

        Raises ValueError for an empty or content-less conversation, and an
        InferenceError subclass for every upstream failure.
        """
        payload = self._build_input(messages)
        try:
            if self._client is None:
                raise InvalidCredentialsError("OpenAI API key is not configured")
            response = self._race(payload)
            replies = validate_response(response)
        except Exception as exc:  # noqa: BLE001
            err = classify_error(exc)
            if self._logger:
                self._logger.warning(
                    "openai responses error",
                    extra={
                        "event": "openai.responses.error",
                        "model": self._model,
                        "error_code": err.code,
                        "error": err.message,
                    },
                )
            if err is exc:
                raise
            raise err from exc

        if self._logger:
            extra: Dict[str, Any] = {
                "event": "openai.responses.complete",
                "model": self._model,
                "messages": len(replies),
            }
            usage = _field(response, "usage")
            if usage:
                extra.update(
                    {
                        "input_tokens": _field(usage, "input_tokens"),
                        "output_tokens": _field(usage, "output_tokens"),
                        "total_tokens": _field(usage, "total_tokens"),
                    }
                )
            self._logger.info("openai responses complete", extra=extra)
        return replies

    def close(self) -> None:
        close = getattr(self._client, "close", None)
        if callable(close):
            close()

    # ---- Internals ---------------------------------------------------------------

    def _build_input(self, messages: Sequence[Message]) -> List[Dict[str, Any]]:
        if not messages:
            raise ValueError("messages must not be empty")
        payload: List[Dict[str, Any]] = []
        for candidate in messages:
            message = validate_message(candidate)
            if not message.has_content():
                raise ValueError("message content must not be empty")
            if message.role != "user" and not isinstance(message.content, str):
                # input_text parts are only accepted on user turns
                payload.append({"role": message.role, "content": message.text()})
            else:
                payload.append(message.model_dump(mode="json"))
        return payload

    def _race(self, payload: List[Dict[str, Any]]) -> Any:
        # The worker is never cancelled; after a timeout its result is dropped.
        slot: "queue.Queue[Tuple[bool, Any]]" = queue.Queue(maxsize=1)

        def _worker() -> None:
            try:
                slot.put((True, self._client.responses.create(model=self._model, input=payload)))
            except Exception as exc:  # noqa: BLE001
                slot.put((False, exc))

        threading.Thread(target=_worker, name="openai-infer", daemon=True).start()
        try:
            ok, value = slot.get(timeout=self._timeout)
        except queue.Empty:
            raise InferenceTimeoutError(f"Request timed out after {self._timeout:g}s") from None
        if not ok:
            raise value
        return value


def build_inference_client(
    api_key: Optional[str],
    logger: Optional[logging.Logger] = None,
    *,
    model: Optional[str] = None,
    timeout: float = INFERENCE_TIMEOUT,
) -> InferenceClient:
    """Construct the SDK client once at startup and wrap it."""
    client = None
    if api_key:
        client = openai.OpenAI(api_key=api_key, max_retries=0, timeout=timeout)
    elif logger:
        logger.warning(
            "openai api key missing; inference disabled",
            extra={"event": "openai.config.missing_key"},
        )
    return InferenceClient(client, logger, model=model, timeout=timeout)
