# chat_backend/tests/test_openai_client.py
# Purpose: InferenceClient behaviour against a fake SDK client.
# Covers response validation order, output parsing, error classification and
# the timeout race. No network, no Flask app.

import time

import httpx
import openai
import pytest

from chat_backend.schemas import InputTextItem, Message
from chat_backend.services.openai_client import (
    EmptyResponseError,
    IncompleteOutputItemError,
    IncompleteResponseError,
    InferenceClient,
    InferenceTimeoutError,
    InvalidCredentialsError,
    InvalidModelError,
    MalformedResponseError,
    ServiceUnavailableError,
    TokenLimitExceededError,
    UnknownInferenceError,
    UpstreamError,
    classify_error,
)

from .fakes import FakeAPIError, fake_client, make_response, output_message, output_text

HELLO = [Message(role="user", content="Hello")]


@pytest.fixture
def sdk():
    client = fake_client()
    yield client
    client.responses.release.set()


def _client(sdk, **kwargs):
    kwargs.setdefault("timeout", 5.0)
    return InferenceClient(sdk, **kwargs)


# ---------------------------
# Happy paths
# ---------------------------

def test_plain_string_reply(sdk):
    sdk.responses.result = make_response(output_message("Hi there"))
    result = _client(sdk).infer(HELLO)
    assert result == [Message(role="assistant", content="Hi there")]


def test_output_text_parts_are_space_joined(sdk):
    sdk.responses.result = make_response(
        output_message([output_text("Hello"), {"type": "refusal", "refusal": "no"}, output_text("world")])
    )
    result = _client(sdk).infer(HELLO)
    assert len(result) == 1
    assert result[0].content == "Hello world"


def test_non_message_items_are_skipped(sdk):
    sdk.responses.result = make_response(
        {"type": "reasoning", "id": "rs_1", "summary": []},
        {"type": "message", "role": "assistant", "content": None},
        output_message("kept"),
    )
    result = _client(sdk).infer(HELLO)
    assert [m.content for m in result] == ["kept"]


def test_sends_one_request_with_model_and_input(sdk):
    sdk.responses.result = make_response(output_message("ok"))
    conversation = [
        Message(role="system", content="Be brief."),
        Message(role="user", content=[InputTextItem(text="Hi")]),
        Message(role="assistant", content=[InputTextItem(text="Hello"), InputTextItem(text="again")]),
        Message(role="user", content="How are you?"),
    ]
    _client(sdk, model="gpt-test").infer(conversation)

    assert len(sdk.responses.calls) == 1
    call = sdk.responses.calls[0]
    assert call["model"] == "gpt-test"
    assert call["input"][0] == {"role": "system", "content": "Be brief."}
    assert call["input"][1] == {"role": "user", "content": [{"type": "input_text", "text": "Hi"}]}
    # non-user turns go up as plain text
    assert call["input"][2] == {"role": "assistant", "content": "Hello again"}
    assert call["input"][3] == {"role": "user", "content": "How are you?"}


def test_default_model_when_unset(sdk):
    sdk.responses.result = make_response(output_message("ok"))
    _client(sdk).infer(HELLO)
    assert sdk.responses.calls[0]["model"] == "gpt-4"


def test_sdk_style_objects_are_parsed(sdk):
    import types

    part = types.SimpleNamespace(type="output_text", text="from objects")
    item = types.SimpleNamespace(type="message", role="assistant", content=[part], status="completed")
    sdk.responses.result = make_response(item)
    assert _client(sdk).infer(HELLO)[0].content == "from objects"


# ---------------------------
# Preconditions
# ---------------------------

def test_empty_conversation_rejected_without_calling_upstream(sdk):
    with pytest.raises(ValueError):
        _client(sdk).infer([])
    assert sdk.responses.calls == []


def test_empty_content_rejected_without_calling_upstream(sdk):
    with pytest.raises(ValueError):
        _client(sdk).infer([Message(role="user", content="   ")])
    assert sdk.responses.calls == []


def test_missing_sdk_client_is_a_credentials_error():
    with pytest.raises(InvalidCredentialsError):
        InferenceClient(None).infer(HELLO)


# ---------------------------
# Response validation (in order)
# ---------------------------

def test_error_payload_becomes_upstream_error(sdk):
    sdk.responses.result = make_response(
        output_message("ignored"),
        error={"message": "server_error happened", "code": "server_error"},
    )
    with pytest.raises(UpstreamError) as exc_info:
        _client(sdk).infer(HELLO)
    assert exc_info.value.code == "server_error"
    assert exc_info.value.message == "server_error happened"


def test_incomplete_details_wins_over_valid_output(sdk):
    details = {"reason": "max_output_tokens"}
    sdk.responses.result = make_response(output_message("partial"), incomplete_details=details)
    with pytest.raises(IncompleteResponseError) as exc_info:
        _client(sdk).infer(HELLO)
    assert exc_info.value.incomplete_details == details
    assert exc_info.value.code == "INCOMPLETE"


@pytest.mark.parametrize("output", [None, "not-a-list", {"type": "message"}])
def test_missing_or_non_list_output_is_malformed(sdk, output):
    resp = make_response()
    resp.output = output
    sdk.responses.result = resp
    with pytest.raises(MalformedResponseError):
        _client(sdk).infer(HELLO)


def test_non_completed_message_item(sdk):
    sdk.responses.result = make_response(output_message("ok"), output_message("cut", status="in_progress"))
    with pytest.raises(IncompleteOutputItemError) as exc_info:
        _client(sdk).infer(HELLO)
    assert exc_info.value.status == "in_progress"
    assert "in_progress" in str(exc_info.value)


def test_all_items_skipped_is_empty_response(sdk):
    sdk.responses.result = make_response({"type": "reasoning", "summary": []})
    with pytest.raises(EmptyResponseError):
        _client(sdk).infer(HELLO)


def test_no_output_items_is_empty_response(sdk):
    sdk.responses.result = make_response()
    with pytest.raises(EmptyResponseError):
        _client(sdk).infer(HELLO)


def test_unknown_role_in_output_is_malformed(sdk):
    sdk.responses.result = make_response(output_message("hi", role="narrator"))
    with pytest.raises(MalformedResponseError):
        _client(sdk).infer(HELLO)


# ---------------------------
# Error classification
# ---------------------------

@pytest.mark.parametrize(
    "exc, expected",
    [
        (FakeAPIError("whatever", status=401), InvalidCredentialsError),
        (FakeAPIError("Invalid API key provided", status=403), InvalidCredentialsError),
        (FakeAPIError("authentication failed", status=400), InvalidCredentialsError),
        (FakeAPIError("bad gateway", status=502), ServiceUnavailableError),
        (FakeAPIError("", status=503), ServiceUnavailableError),
        (FakeAPIError("gateway timeout", status=504), ServiceUnavailableError),
        (FakeAPIError("upstream timeout", status=500), InferenceTimeoutError),
        (FakeAPIError("socket hang up", status=500, code="ETIMEDOUT"), InferenceTimeoutError),
        (FakeAPIError("Too many tokens in request", status=400), TokenLimitExceededError),
        (FakeAPIError("maximum context_length is 8192", status=400), TokenLimitExceededError),
        (FakeAPIError("The model `gpt-9` does not exist", status=400), InvalidModelError),
        (FakeAPIError("Rate limit reached", status=429, code="rate_limit_exceeded"), UpstreamError),
        (Exception("fetch failed"), ServiceUnavailableError),
        (Exception("network is unreachable"), ServiceUnavailableError),
        (TimeoutError(), InferenceTimeoutError),
        (Exception("boom"), UnknownInferenceError),
    ],
)
def test_classify_error_table(exc, expected):
    assert type(classify_error(exc)) is expected


def test_classification_is_deterministic():
    exc = FakeAPIError("token budget", status=400)
    assert type(classify_error(exc)) is type(classify_error(exc)) is TokenLimitExceededError


def test_generic_upstream_error_keeps_details():
    err = classify_error(FakeAPIError("Rate limit reached", status=429, code="rate_limit_exceeded"))
    assert err.message == "Rate limit reached"
    assert err.code == "rate_limit_exceeded"
    assert err.status_code == 429


def test_typed_errors_pass_through_unchanged():
    original = EmptyResponseError()
    assert classify_error(original) is original


def test_real_sdk_exceptions_are_classified():
    request = httpx.Request("POST", "https://api.openai.com/v1/responses")
    auth = openai.AuthenticationError(
        "Incorrect API key provided", response=httpx.Response(401, request=request), body=None
    )
    assert isinstance(classify_error(auth), InvalidCredentialsError)
    assert isinstance(classify_error(openai.APITimeoutError(request=request)), InferenceTimeoutError)
    assert isinstance(classify_error(openai.APIConnectionError(request=request)), ServiceUnavailableError)


def test_thrown_401_surfaces_as_invalid_credentials(sdk):
    sdk.responses.exc = FakeAPIError("Unauthorized", status=401)
    with pytest.raises(InvalidCredentialsError) as exc_info:
        _client(sdk).infer(HELLO)
    assert isinstance(exc_info.value.__cause__, FakeAPIError)
    assert len(sdk.responses.calls) == 1


# ---------------------------
# Timeout race
# ---------------------------

def test_slow_upstream_times_out_at_configured_limit(sdk):
    sdk.responses.result = make_response(output_message("too late"))
    sdk.responses.delay = 2.0  # upstream would answer after 2s
    client = _client(sdk, timeout=0.2)

    start = time.monotonic()
    with pytest.raises(InferenceTimeoutError):
        client.infer(HELLO)
    elapsed = time.monotonic() - start

    assert elapsed < 1.5
    assert len(sdk.responses.calls) == 1


def test_late_result_is_discarded(sdk):
    sdk.responses.result = make_response(output_message("late"))
    sdk.responses.delay = 0.5
    client = _client(sdk, timeout=0.1)
    with pytest.raises(InferenceTimeoutError):
        client.infer(HELLO)

    # let the abandoned worker finish; the next call is unaffected by it
    sdk.responses.release.set()
    time.sleep(0.05)
    sdk.responses.delay = None
    sdk.responses.result = make_response(output_message("fresh"))
    assert client.infer(HELLO)[0].content == "fresh"


def test_fast_upstream_beats_timeout(sdk):
    sdk.responses.result = make_response(output_message("quick"))
    assert _client(sdk, timeout=1.0).infer(HELLO)[0].content == "quick"


def test_close_releases_sdk_client():
    closed = []

    class _Closable:
        def close(self):
            closed.append(True)

    InferenceClient(_Closable()).close()
    assert closed == [True]
