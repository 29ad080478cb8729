# tests/test_analysis_service.py
import json

import httpx
import pytest

from core import analysis_service
from core.analysis_service import (
    AnalysisError,
    AnalysisService,
    extract_json_object,
    truncate_text_by_tokens,
)


@pytest.fixture(autouse=True)
def no_tokenizer(monkeypatch):
    monkeypatch.setattr(analysis_service, "_get_tokenizer", lambda _name: None)


def _service(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AnalysisService(
        api_base="http://llm.test/v1/", api_key="k", model="m", client=client
    )


def _reply(content):
    return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


def test_extract_json_object_variants():
    assert extract_json_object('{"a": 1}') == {"a": 1}
    assert extract_json_object('```json\n{"a": 2}\n```') == {"a": 2}
    assert extract_json_object('<think>hmm {"no": 1}</think> Result: {"a": 3} done') == {
        "a": 3
    }


def test_extract_json_object_rejects_non_objects():
    for text in ["", "no json here", "[1, 2]", '{"a": }']:
        with pytest.raises(AnalysisError):
            extract_json_object(text)


def test_truncate_without_tokenizer_uses_characters():
    assert truncate_text_by_tokens("short", 10) == "short"
    cut = truncate_text_by_tokens("x" * 100, 10, truncation_marker="…")
    assert len(cut) == 40
    assert cut.endswith("…")


@pytest.mark.asyncio
async def test_analyze_posts_prompt_and_parses_delta():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return _reply('```json\n{"characters": [{"name": "Lâm", "level": 2}]}\n```')

    service = _service(handler)
    delta = await service.analyze("Chương 2 ...", {"characters": [{"name": "Lâm"}]})
    await service.aclose()

    assert delta == {"characters": [{"name": "Lâm", "level": 2}]}
    assert seen["url"] == "http://llm.test/v1/chat/completions"
    assert seen["auth"] == "Bearer k"
    prompt = seen["body"]["messages"][0]["content"]
    assert '"name": "Lâm"' in prompt
    assert "Chương 2 ..." in prompt
    assert service.request_count == 1


@pytest.mark.asyncio
async def test_http_error_raises_analysis_error_without_retry():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(503, text="overloaded")

    service = _service(handler)
    with pytest.raises(AnalysisError, match="503"):
        await service.analyze("text", {})
    assert len(calls) == 1


@pytest.mark.asyncio
async def test_transport_error_raises_analysis_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(AnalysisError):
        await _service(handler).analyze("text", None)


@pytest.mark.asyncio
async def test_missing_choices_raises_analysis_error():
    service = _service(lambda request: httpx.Response(200, json={"error": "x"}))
    with pytest.raises(AnalysisError):
        await service.analyze("text", {})


@pytest.mark.asyncio
async def test_empty_chapter_is_rejected():
    service = _service(lambda request: _reply("{}"))
    with pytest.raises(AnalysisError):
        await service.analyze("   ", {})
    assert service.request_count == 0
