# FILE: tests/test_gateway.py
"""
Tests for atelier/llm/gateway.py
Provider error classification, HTTP gateway and scripted gateway.
"""

import sys
import json
import asyncio
from pathlib import Path

_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

import httpx
import pytest


def _request(provider_id="grok", **kwargs):
    from atelier.llm.schemas import GenerationRequest
    return GenerationRequest(prompt="hello", provider_id=provider_id, **kwargs)


class TestErrorClassification:
    """Exceptions, status codes and text → ErrorKind."""

    def test_provider_error_kind(self):
        from atelier.llm.gateway import ProviderError, classify_exception
        from atelier.llm.schemas import ErrorKind

        assert classify_exception(ProviderError(ErrorKind.QUOTA_EXCEEDED)) == ErrorKind.QUOTA_EXCEEDED

    def test_non_provider_kind_coerced(self):
        from atelier.llm.gateway import ProviderError
        from atelier.llm.schemas import ErrorKind

        assert ProviderError(ErrorKind.DECODE_FAILURE, "x").kind == ErrorKind.UNKNOWN

    @pytest.mark.parametrize("status,body,expected", [
        (413, "", "prompt_too_large"),
        (402, "", "quota_exceeded"),
        (429, "", "quota_exceeded"),
        (503, "", "unavailable"),
        (400, "maximum context length exceeded", "prompt_too_large"),
        (400, "bad request", "unknown"),
        (500, "Insufficient credits", "quota_exceeded"),
    ])
    def test_classify_status(self, status, body, expected):
        from atelier.llm.gateway import classify_status

        assert classify_status(status, body).value == expected

    def test_transport_and_timeouts_unavailable(self):
        from atelier.llm.gateway import classify_exception
        from atelier.llm.schemas import ErrorKind

        assert classify_exception(httpx.ConnectError("refused")) == ErrorKind.UNAVAILABLE
        assert classify_exception(httpx.ReadTimeout("slow")) == ErrorKind.UNAVAILABLE
        assert classify_exception(asyncio.TimeoutError()) == ErrorKind.UNAVAILABLE

    def test_text_heuristic(self):
        from atelier.llm.gateway import classify_error_text
        from atelier.llm.schemas import ErrorKind

        assert classify_error_text("OpenRouter Credits Insufficient") == ErrorKind.QUOTA_EXCEEDED
        assert classify_error_text("prompt is too long") == ErrorKind.PROMPT_TOO_LARGE
        assert classify_error_text("model overloaded") == ErrorKind.UNAVAILABLE
        assert classify_error_text("something odd") == ErrorKind.UNKNOWN


class TestHttpGateway:
    """HTTP gateway against a mock transport."""

    @pytest.mark.asyncio
    async def test_posts_payload_and_reads_text(self):
        from atelier.llm.gateway import HttpProviderGateway
        from atelier.llm.schemas import Message, Mode, Role

        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = json.loads(request.content)
            seen["auth"] = request.headers.get("authorization")
            return httpx.Response(200, json={"text": "<p>generated</p>"})

        gateway = HttpProviderGateway(
            url="http://backend.test/generate",
            api_key="secret",
            transport=httpx.MockTransport(handler),
        )
        history = (Message(id=1, role=Role.ASSISTANT, content="prev", code="<b/>"),)
        text = await gateway.generate(_request(mode=Mode.BUILDER, history=history))

        assert text == "<p>generated</p>"
        assert seen["auth"] == "Bearer secret"
        assert seen["body"]["provider"] == "grok"
        assert seen["body"]["mode"] == "builder"
        assert seen["body"]["history"][0]["role"] == "model"
        assert "Code Generated:" in seen["body"]["history"][0]["text"]

    @pytest.mark.asyncio
    async def test_plain_text_body(self):
        from atelier.llm.gateway import HttpProviderGateway

        transport = httpx.MockTransport(lambda r: httpx.Response(200, text="just text"))
        gateway = HttpProviderGateway(url="http://backend.test/generate", transport=transport)
        assert await gateway.generate(_request()) == "just text"

    @pytest.mark.asyncio
    async def test_structured_json_passed_through(self):
        from atelier.llm.gateway import HttpProviderGateway

        project = {"files": [{"path": "index.html", "content": "<p/>"}]}
        transport = httpx.MockTransport(lambda r: httpx.Response(200, json=project))
        gateway = HttpProviderGateway(url="http://backend.test/generate", transport=transport)
        assert json.loads(await gateway.generate(_request())) == project

    @pytest.mark.asyncio
    async def test_status_becomes_provider_error(self):
        from atelier.llm.gateway import HttpProviderGateway, ProviderError
        from atelier.llm.schemas import ErrorKind

        transport = httpx.MockTransport(lambda r: httpx.Response(429, text="rate limit"))
        gateway = HttpProviderGateway(url="http://backend.test/generate", transport=transport)
        with pytest.raises(ProviderError) as exc_info:
            await gateway.generate(_request())
        assert exc_info.value.kind == ErrorKind.QUOTA_EXCEEDED

    @pytest.mark.asyncio
    async def test_transport_error_unavailable(self):
        from atelier.llm.gateway import HttpProviderGateway, ProviderError
        from atelier.llm.schemas import ErrorKind

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        gateway = HttpProviderGateway(url="http://backend.test/generate", transport=httpx.MockTransport(handler))
        with pytest.raises(ProviderError) as exc_info:
            await gateway.generate(_request())
        assert exc_info.value.kind == ErrorKind.UNAVAILABLE

    def test_implements_protocol(self):
        from atelier.llm.gateway import HttpProviderGateway, ProviderGateway, ScriptedGateway

        assert isinstance(HttpProviderGateway(), ProviderGateway)
        assert isinstance(ScriptedGateway([]), ProviderGateway)


class TestScriptedGateway:
    """Canned responses for tests and demos."""

    @pytest.mark.asyncio
    async def test_sequence_script(self):
        from atelier.llm.gateway import ProviderError, ScriptedGateway
        from atelier.llm.schemas import ErrorKind

        gateway = ScriptedGateway([ProviderError(ErrorKind.QUOTA_EXCEEDED), "second"])
        with pytest.raises(ProviderError):
            await gateway.generate(_request("grok"))
        assert await gateway.generate(_request("groq")) == "second"
        assert gateway.providers_called == ["grok", "groq"]

    @pytest.mark.asyncio
    async def test_per_provider_script(self):
        from atelier.llm.gateway import ProviderError, ScriptedGateway
        from atelier.llm.schemas import ErrorKind

        gateway = ScriptedGateway({"groq": ["from groq"]})
        assert await gateway.generate(_request("groq")) == "from groq"
        with pytest.raises(ProviderError) as exc_info:
            await gateway.generate(_request("grok"))
        assert exc_info.value.kind == ErrorKind.UNAVAILABLE


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
