import json

import httpx
import pytest

from deepshell.errors import ErrorKind, ModelCallFailed, ModelCallTimeout
from deepshell.providers.deepseek_provider import DEFAULT_DEEPSEEK_URL, DeepSeekProvider


def provider_for(handler) -> DeepSeekProvider:
    return DeepSeekProvider(api_key="sk-test", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_chat_success() -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "model": "deepseek-coder",
                "choices": [{"message": {"role": "assistant", "content": ">>> ls <<<"}, "finish_reason": "stop"}],
                "usage": {"total_tokens": 12},
            },
        )

    response = await provider_for(handler).chat(
        [{"role": "user", "content": "list", "timestamp": "2024-01-01T00:00:00"}]
    )

    assert response.content == ">>> ls <<<"
    assert response.usage == {"total_tokens": 12}
    assert seen["url"] == DEFAULT_DEEPSEEK_URL
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["model"] == "deepseek-coder"
    assert seen["body"]["max_tokens"] == 1000
    assert seen["body"]["temperature"] == 0.1
    assert seen["body"]["messages"] == [{"role": "user", "content": "list"}]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "message"),
    [
        (401, "HTTP 401: Unauthorized. Check your DEEPSEEK_API_KEY."),
        (500, "HTTP 500: Internal Server Error"),
    ],
)
async def test_http_errors(status: int, message: str) -> None:
    provider = provider_for(lambda request: httpx.Response(status, text="nope"))

    with pytest.raises(ModelCallFailed) as exc_info:
        await provider.chat([{"role": "user", "content": "x"}])

    assert str(exc_info.value) == message
    assert exc_info.value.kind == ErrorKind.MODEL_CALL_FAILED


@pytest.mark.asyncio
async def test_payload_error() -> None:
    provider = provider_for(
        lambda request: httpx.Response(200, json={"error": {"message": "Insufficient Balance"}})
    )

    with pytest.raises(ModelCallFailed, match="API Error: Insufficient Balance"):
        await provider.chat([{"role": "user", "content": "x"}])


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [{}, {"choices": []}, {"choices": ["bad"]}])
async def test_invalid_payload(payload: dict) -> None:
    provider = provider_for(lambda request: httpx.Response(200, json=payload))

    with pytest.raises(ModelCallFailed, match="Invalid response format from API"):
        await provider.chat([{"role": "user", "content": "x"}])


@pytest.mark.asyncio
async def test_timeout() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(ModelCallTimeout) as exc_info:
        await provider_for(handler).chat([{"role": "user", "content": "x"}])

    assert exc_info.value.kind == ErrorKind.MODEL_CALL_TIMEOUT
    assert str(exc_info.value) == "Request timed out after 30s"


@pytest.mark.asyncio
async def test_connection_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(ModelCallFailed, match="Connection error"):
        await provider_for(handler).chat([{"role": "user", "content": "x"}])
