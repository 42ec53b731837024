"""Shared fixtures for the meeting analysis test suite.

Provides:
- FakeAsyncOpenAI: in-memory stand-in with the `chat.completions.create` shape,
  replaying scripted replies (or a responder callable) and recording requests
- App configuration with instant retries and heuristic token counting
- An LLMClient wired to the fake
- Template factories
"""

from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace
from typing import Any, Callable

import pytest

from meeting_analysis.config import AnalysisConfig, AppConfig, LLMConfig, reset_config
from meeting_analysis.llm_client import LLMClient, reset_llm_client
from meeting_analysis.models import Template, TemplateSection


HANG = object()


class Reply:
    """One scripted completion."""

    def __init__(self, content: Any = "", finish_reason: str = "stop", usage: tuple = (100, 50)):
        self.content = content if isinstance(content, str) else json.dumps(content)
        self.finish_reason = finish_reason
        self.usage = usage


class FakeCompletions:
    def __init__(self) -> None:
        self.script: list = []
        self.responder: Callable[[dict], Any] | None = None
        self.calls: list[dict] = []

    async def create(self, **params: Any) -> SimpleNamespace:
        self.calls.append(params)
        if self.responder is not None:
            item = self.responder(params)
        elif self.script:
            item = self.script.pop(0)
        else:
            raise AssertionError("FakeAsyncOpenAI received an unscripted request")

        if item is HANG:
            await asyncio.sleep(3600)
        if isinstance(item, BaseException):
            raise item
        if not isinstance(item, Reply):
            item = Reply(item)

        prompt_tokens, completion_tokens = item.usage
        return SimpleNamespace(
            choices=[
                SimpleNamespace(
                    message=SimpleNamespace(content=item.content),
                    finish_reason=item.finish_reason,
                )
            ],
            usage=SimpleNamespace(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
        )


class FakeAsyncOpenAI:
    """Minimal AsyncOpenAI look-alike."""

    def __init__(self) -> None:
        self.completions = FakeCompletions()
        self.chat = SimpleNamespace(completions=self.completions)

    def queue(self, *items: Any) -> None:
        self.completions.script.extend(items)

    def respond_with(self, responder: Callable[[dict], Any]) -> None:
        self.completions.responder = responder

    @property
    def calls(self) -> list[dict]:
        return self.completions.calls

    def user_prompts(self) -> list[str]:
        return [call["messages"][-1]["content"] for call in self.calls]


# -- Fixtures -------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_globals():
    """Keep process-wide singletons from leaking between tests."""
    reset_config()
    reset_llm_client()
    yield
    reset_config()
    reset_llm_client()


@pytest.fixture
def config() -> AppConfig:
    return AppConfig(
        llm=LLMConfig(
            api_key="test-key",
            model="test-model",
            encoding_name=None,
            retry_delay=0,
            max_retries=3,
        ),
        analysis=AnalysisConfig(run_evaluation=False),
    )


@pytest.fixture
def fake_openai() -> FakeAsyncOpenAI:
    return FakeAsyncOpenAI()


@pytest.fixture
def llm_client(config: AppConfig, fake_openai: FakeAsyncOpenAI) -> LLMClient:
    return LLMClient(config.llm, async_client=fake_openai)


@pytest.fixture
def make_section() -> Callable[..., TemplateSection]:
    def _make(section_id: str, name: str | None = None, deps: list[str] | None = None,
              output_format: str = "bullet_points", prompt: str | None = None) -> TemplateSection:
        return TemplateSection(
            id=section_id,
            name=name or section_id.replace("-", " ").title(),
            prompt=prompt or f"Describe the {section_id.replace('-', ' ')} from the meeting.",
            output_format=output_format,
            dependencies=deps or [],
        )
    return _make


@pytest.fixture
def make_template(make_section) -> Callable[..., Template]:
    def _make(sections: list, outputs: list[str] | None = None, name: str = "Test Template") -> Template:
        built = [s if isinstance(s, TemplateSection) else make_section(*s) for s in sections]
        return Template(name=name, sections=built, outputs=outputs or [])
    return _make


@pytest.fixture
def minutes_template(make_template) -> Template:
    """agenda-items -> decisions-made -> action-items chain."""
    return make_template(
        [
            ("agenda-items", "Agenda Items"),
            ("decisions-made", "Decisions Made", ["agenda-items"]),
            ("action-items", "Action Items", ["decisions-made"]),
        ],
        outputs=["summary", "decisions", "action_items"],
        name="Minutes",
    )


@pytest.fixture
def transcript() -> str:
    return (
        "[00:00:05] Alice: Welcome everyone, first item is the Q3 budget.\n"
        "[00:01:10] Bob: We agreed to cut the travel budget by twenty percent.\n"
        "[00:02:30] Carol: I will circulate the revised budget spreadsheet by Friday.\n"
        "[00:03:45] Alice: Second item is the hiring plan for the platform team.\n"
    )
