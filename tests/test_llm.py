from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from linear_agent.activities import ResponseActivity, ThoughtActivity
from linear_agent.config import AgentSettings
from linear_agent.llm import BackendError, ChatCompletionBackend, ProviderConfig, Responder, resolve_provider
from linear_agent.llm.responder import describe_context
from linear_agent.session.models import SessionComment, SessionContext


class StubBackend:
    def __init__(self, reply: str) -> None:
        self.reply = reply
        self.calls: list[tuple[str, str]] = []

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        self.calls.append((system_prompt, user_prompt))
        return self.reply


def make_settings(**values) -> AgentSettings:
    return AgentSettings(_env_file=None, **values)


def test_resolve_provider_variants() -> None:
    deepseek = resolve_provider(make_settings(OPENCODE_MODEL="deepseek/deepseek-chat", DEEPSEEK_API_KEY="k1"))
    assert (deepseek.name, deepseek.model, deepseek.api_key) == ("deepseek", "deepseek-chat", "k1")

    groq = resolve_provider(make_settings(OPENCODE_MODEL="groq/llama-3.1-70b", GROQ_API_KEY="k2"))
    assert groq.name == "groq"
    assert groq.model == "llama-3.1-70b"

    local = resolve_provider(make_settings(OPENCODE_MODEL="local", OLLAMA_URL="http://ollama:11434/"))
    assert local.url == "http://ollama:11434/api/chat"
    assert local.model == "llama3.2"
    assert local.dialect == "ollama"


def test_resolve_provider_errors() -> None:
    with pytest.raises(BackendError, match="DEEPSEEK_API_KEY"):
        resolve_provider(make_settings(OPENCODE_MODEL="deepseek/deepseek-chat", DEEPSEEK_API_KEY=None))
    with pytest.raises(BackendError, match="Unsupported"):
        resolve_provider(make_settings(OPENCODE_MODEL="mystery-model"))


def test_openai_style_completion() -> None:
    seen: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append({"body": json.loads(request.content), "auth": request.headers.get("Authorization")})
        return httpx.Response(200, json={"choices": [{"message": {"content": "RESPONSE: hi"}}]})

    backend = ChatCompletionBackend(
        ProviderConfig(name="groq", url="https://groq.test/chat", model="llama", api_key="secret"),
        transport=httpx.MockTransport(handler),
    )

    assert asyncio.run(backend.complete("system", "user")) == "RESPONSE: hi"
    assert seen[0]["auth"] == "Bearer secret"
    assert seen[0]["body"]["messages"][0] == {"role": "system", "content": "system"}
    assert seen[0]["body"]["max_tokens"] == 2000


def test_ollama_completion() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert body["stream"] is False
        return httpx.Response(200, json={"message": {"content": "THINKING: local"}})

    backend = ChatCompletionBackend(
        ProviderConfig(name="ollama", url="http://ollama.test/api/chat", model="llama3.2", dialect="ollama"),
        transport=httpx.MockTransport(handler),
    )

    assert asyncio.run(backend.complete("s", "u")) == "THINKING: local"


def test_backend_errors() -> None:
    provider = ProviderConfig(name="deepseek", url="https://deepseek.test", model="m", api_key="k")
    failing = ChatCompletionBackend(
        provider, transport=httpx.MockTransport(lambda request: httpx.Response(503, json={}))
    )
    malformed = ChatCompletionBackend(
        provider, transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"choices": []}))
    )

    with pytest.raises(BackendError, match="503"):
        asyncio.run(failing.complete("s", "u"))
    with pytest.raises(BackendError, match="response shape"):
        asyncio.run(malformed.complete("s", "u"))


def test_describe_context_includes_history() -> None:
    context = SessionContext(
        issue_title="Login broken",
        issue_description="500 on submit",
        previous_comments=(SessionComment(body="Seen since Monday", createdAt="2025-01-06"),),
        labels=("bug",),
        priority=1,
    ).with_prompt("any update?")

    text = describe_context(context)

    assert "Issue: Login broken" in text
    assert "User prompt: any update?" in text
    assert "- Seen since Monday (2025-01-06)" in text
    assert "Priority: Urgent" in text


def test_process_request_parses_reply() -> None:
    backend = StubBackend("THINKING: checking the logs")
    activity = asyncio.run(Responder(backend).process_request(SessionContext(issue_title="Slow page")))

    assert isinstance(activity, ThoughtActivity)
    assert "activity format rules" in backend.calls[0][1]


def test_answer_question_without_prefix_is_response() -> None:
    activity = asyncio.run(Responder(StubBackend("Use the cache.")).answer_question(SessionContext()))
    assert isinstance(activity, ResponseActivity)
    assert activity.body == "Use the cache."


def test_processing_steps_add_complexity_action() -> None:
    responder = Responder(StubBackend(""))

    simple = responder.processing_steps(SessionContext(issue_title="Typo in footer"))
    complex_steps = responder.processing_steps(SessionContext(issue_title="Refactor the billing architecture"))

    assert [step.kind for step in simple] == ["thought"]
    assert [step.kind for step in complex_steps] == ["thought", "action"]
    assert complex_steps[1].tool == "analyze_complexity"
    assert complex_steps[1].delay == 0.5


def test_extract_task_details_from_fenced_json() -> None:
    reply = 'Here you go:\n```json\n{"title": "Add export", "description": "CSV", "priority": 1}\n```'
    details = asyncio.run(Responder(StubBackend(reply)).extract_task_details(SessionContext()))

    assert details.title == "Add export"
    assert details.priority == 1


def test_extract_task_details_falls_back_to_context() -> None:
    context = SessionContext(issue_title="Export data", issue_description="As CSV", labels=("feature",), priority=2)
    details = asyncio.run(Responder(StubBackend("I cannot do JSON")).extract_task_details(context))

    assert (details.title, details.description, details.labels, details.priority) == (
        "Export data",
        "As CSV",
        ["feature"],
        2,
    )


def test_analyze_bug_need_info() -> None:
    analysis = asyncio.run(Responder(StubBackend("NEED_INFO:")).analyze_bug(SessionContext()))

    assert analysis.needs_more_info
    assert analysis.question == "Could you provide more details about when this bug occurs?"
    assert analysis.options


def test_code_review_carries_actions() -> None:
    review = asyncio.run(Responder(StubBackend("  Looks fine.  ")).perform_code_review(SessionContext()))

    assert review.content == "Looks fine."
    assert [action.command for action in review.actions] == ["/apply", "/changes"]
