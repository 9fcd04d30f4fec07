import pytest
import requests

from jarvis.assistant.conversation import Conversation
from jarvis.llm.ai_service import FALLBACK_RESPONSE, AIService, AIServiceError


class FakeResponse:
    def __init__(self, status_code: int, lines: list[str] | None = None, payload=None):
        self.status_code = status_code
        self._lines = lines or []
        self._payload = payload
        self.encoding = None
        self.closed = False

    def iter_lines(self, decode_unicode: bool = True):
        for line in self._lines:
            yield line

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            err = requests.HTTPError(f"HTTP {self.status_code}")
            err.response = self
            raise err

    def close(self) -> None:
        self.closed = True


def _sse(*chunks: str) -> list[str]:
    lines = [f'data: {{"model":"test-model","choices":[{{"delta":{{"content":"{c}"}}}}]}}' for c in chunks]
    return [": keep-alive", *lines, "data: [DONE]"]


def _service(monkeypatch, **overrides) -> AIService:
    monkeypatch.setenv("A4F_API_KEY", "test-key")
    config = {
        "model": "test-model",
        "apiBase": "https://api.example.test/v1/",
        "maxTokens": 32,
        "temperature": 0.1,
        "systemPrompt": "be brief",
        "enableMemory": True,
        "timeoutMs": 1000,
        "maxRetries": 2,
        "retryBaseDelayMs": 10,
    }
    config.update(overrides)
    service = AIService(config)
    service.initialize()
    monkeypatch.setattr("jarvis.llm.ai_service.time.sleep", lambda *_: None)
    return service


def test_initialize_requires_api_key(monkeypatch) -> None:
    monkeypatch.delenv("A4F_API_KEY", raising=False)
    service = AIService({"model": "test-model"})

    with pytest.raises(AIServiceError, match="A4F_API_KEY"):
        service.initialize()
    assert not service.is_initialized()


def test_chat_collects_streamed_text(monkeypatch) -> None:
    service = _service(monkeypatch)
    seen = {}

    def _post(url, headers, json, stream, timeout):
        seen.update(url=url, headers=headers, json=json, stream=stream)
        return FakeResponse(200, _sse("It is ", "noon."))

    monkeypatch.setattr("jarvis.llm.ai_service.requests.post", _post)

    out = service.chat([{"role": "user", "content": "hi"}])

    assert out["text"] == "It is noon."
    assert out["model"] == "test-model"
    assert seen["url"] == "https://api.example.test/v1/chat/completions"
    assert seen["headers"]["Authorization"] == "Bearer test-key"
    assert seen["json"]["stream"] is True
    assert seen["stream"] is True


def test_retries_on_timeout_then_succeeds(monkeypatch) -> None:
    service = _service(monkeypatch)
    calls = {"n": 0}

    def _post(*args, **kwargs):
        calls["n"] += 1
        if calls["n"] == 1:
            raise requests.Timeout("temporary timeout")
        return FakeResponse(200, _sse("hello"))

    monkeypatch.setattr("jarvis.llm.ai_service.requests.post", _post)

    assert service.chat([{"role": "user", "content": "hi"}])["text"] == "hello"
    assert calls["n"] == 2


def test_retries_on_503_until_exhausted(monkeypatch) -> None:
    service = _service(monkeypatch)
    responses = []

    def _post(*args, **kwargs):
        responses.append(FakeResponse(503))
        return responses[-1]

    monkeypatch.setattr("jarvis.llm.ai_service.requests.post", _post)

    with pytest.raises(requests.HTTPError):
        service.chat([{"role": "user", "content": "hi"}])
    assert len(responses) == 3
    assert all(r.closed for r in responses)


def test_does_not_retry_on_401(monkeypatch) -> None:
    service = _service(monkeypatch)
    calls = {"n": 0}

    def _post(*args, **kwargs):
        calls["n"] += 1
        return FakeResponse(401)

    monkeypatch.setattr("jarvis.llm.ai_service.requests.post", _post)

    with pytest.raises(requests.HTTPError):
        service.chat([{"role": "user", "content": "hi"}])
    assert calls["n"] == 1


def test_process_command_records_exchange(monkeypatch) -> None:
    service = _service(monkeypatch)
    sent = []

    def _post(url, headers, json, stream, timeout):
        sent.append(json["messages"])
        return FakeResponse(200, _sse("Four."))

    monkeypatch.setattr("jarvis.llm.ai_service.requests.post", _post)
    conversation = Conversation(retention=5)

    first = service.process_command("what is two plus two", {"isActive": True}, conversation)
    service.process_command("and three plus one", None, conversation)

    assert first == "Four."
    assert len(conversation) == 4
    assert sent[0][0] == {"role": "system", "content": "be brief"}
    assert sent[0][-1]["content"].startswith("Context: ")
    # second request carries the first exchange as history
    assert sent[1][1] == {"role": "user", "content": "what is two plus two"}
    assert sent[1][2] == {"role": "assistant", "content": "Four."}


def test_process_command_without_memory_sends_no_history(monkeypatch) -> None:
    service = _service(monkeypatch, enableMemory=False)
    sent = []

    def _post(url, headers, json, stream, timeout):
        sent.append(json["messages"])
        return FakeResponse(200, _sse("ok"))

    monkeypatch.setattr("jarvis.llm.ai_service.requests.post", _post)
    conversation = Conversation()
    conversation.add_exchange("old", "older")

    service.process_command("hello", None, conversation)

    assert [m["content"] for m in sent[0]] == ["be brief", "hello"]
    assert len(conversation) == 2


def test_process_command_never_raises(monkeypatch) -> None:
    service = _service(monkeypatch, maxRetries=0)

    def _post(*args, **kwargs):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr("jarvis.llm.ai_service.requests.post", _post)
    conversation = Conversation()

    assert service.process_command("hello", None, conversation) == FALLBACK_RESPONSE
    assert len(conversation) == 0


def test_process_command_before_initialize_falls_back() -> None:
    service = AIService({"model": "test-model"})

    assert service.process_command("hello") == FALLBACK_RESPONSE


def test_search_web_orders_by_rank(monkeypatch) -> None:
    service = _service(monkeypatch, searchPath="/search")
    seen = {}

    def _post(url, headers, json, stream, timeout):
        seen["url"] = url
        return FakeResponse(200, payload={"results": [
            {"url": "https://b.test", "name": "B", "snippet": "b", "rank": 2},
            {"name": "no url"},
            {"url": "https://a.test", "name": "A", "snippet": "a", "rank": 1},
        ]})

    monkeypatch.setattr("jarvis.llm.ai_service.requests.post", _post)

    results = service.search_web("python", num_results=5)

    assert seen["url"] == "https://api.example.test/v1/search"
    assert [r.url for r in results] == ["https://a.test", "https://b.test"]


def test_generate_image_requires_data(monkeypatch) -> None:
    service = _service(monkeypatch)
    monkeypatch.setattr(
        "jarvis.llm.ai_service.requests.post",
        lambda *a, **kw: FakeResponse(200, payload={"data": []}),
    )

    with pytest.raises(AIServiceError):
        service.generate_image("a cat")

    monkeypatch.setattr(
        "jarvis.llm.ai_service.requests.post",
        lambda *a, **kw: FakeResponse(200, payload={"data": [{"b64_json": "aGVsbG8="}]}),
    )
    assert service.generate_image("a cat") == "aGVsbG8="


def test_analyze_text_wraps_request_errors(monkeypatch) -> None:
    service = _service(monkeypatch, maxRetries=0)

    def _post(*args, **kwargs):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr("jarvis.llm.ai_service.requests.post", _post)

    with pytest.raises(AIServiceError):
        service.analyze_text("some text", "sentiment")
