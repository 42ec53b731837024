"""Tests for the basic, batched and cascading execution strategies."""

from __future__ import annotations

import httpx
import openai
import pytest

from conftest import Reply
from meeting_analysis.errors import (
    CircularDependencyError,
    InvalidJSONError,
    ResponseShapeError,
    RetriesExhaustedError,
)
from meeting_analysis.strategies import (
    BasicStrategy,
    BatchedStrategy,
    CascadingStrategy,
    get_strategy,
)

SECTION_REPLIES = {
    "Agenda Items": {
        "content": "- Q3 budget\n- Hiring plan",
        "summary": "Budget and hiring review.",
        "agendaItems": [
            {"id": "agenda-q3-budget", "topic": "Q3 budget", "timestamp": 5},
            {"id": "agenda-hiring", "topic": "Hiring plan", "timestamp": 225},
        ],
    },
    "Decisions Made": {
        "content": "- Travel budget cut by 20%",
        "decisions": [
            {"id": "dec-travel-cut", "decision": "Cut travel budget by 20%",
             "agendaItemIds": ["agenda-q3-budget"]},
        ],
    },
    "Action Items": {
        "content": "- Carol circulates the spreadsheet",
        "actionItems": [
            {"id": "act-spreadsheet", "task": "Circulate revised budget spreadsheet", "owner": "Carol",
             "decisionIds": ["dec-travel-cut"]},
        ],
    },
}


def _section_responder(params: dict) -> Reply:
    prompt = params["messages"][-1]["content"]
    for name, reply in SECTION_REPLIES.items():
        if f"## Section: {name}" in prompt:
            return Reply(reply)
    raise AssertionError("prompt names no known section")


def _everything_responder(params: dict) -> Reply:
    names = list(SECTION_REPLIES)
    return Reply({
        "sections": [{"name": n, "content": f"{n} content"} for n in names],
        "content": "section content",
    })


class TestBasicStrategy:
    @pytest.mark.asyncio
    async def test_single_call_produces_all_sections(self, llm_client, fake_openai, config,
                                                     minutes_template, transcript):
        fake_openai.queue(Reply({
            "summary": "Budget review.",
            "sections": [{"name": n, "content": "x"} for n in reversed(list(SECTION_REPLIES))],
            "decisions": [{"id": "decision-1", "decision": "Cut travel"}],
        }))
        run = await BasicStrategy(llm_client=llm_client, config=config).execute(minutes_template, transcript)

        assert run.api_calls == 1
        assert run.results.section_names() == ["Agenda Items", "Decisions Made", "Action Items"]
        assert run.results.summary == "Budget review."
        assert len(run.prompts_used) == 1
        assert run.token_usage.total_tokens == 150

    @pytest.mark.asyncio
    async def test_missing_section_fails_the_run(self, llm_client, fake_openai, config,
                                                 minutes_template, transcript):
        fake_openai.queue(Reply({"sections": [{"name": "Agenda Items", "content": "x"}]}))
        with pytest.raises(ResponseShapeError, match="Decisions Made"):
            await BasicStrategy(llm_client=llm_client, config=config).execute(minutes_template, transcript)


class TestBatchedStrategy:
    @pytest.mark.asyncio
    async def test_phases_run_in_order_and_merge_in_order(self, llm_client, fake_openai, config,
                                                          minutes_template, transcript):
        fake_openai.queue(
            Reply({"sections": [{"name": "Agenda Items", "content": "A"}], **{
                k: v for k, v in SECTION_REPLIES["Agenda Items"].items() if k != "content"}}),
            Reply({"sections": [{"name": "Decisions Made", "content": "B"}],
                   "decisions": SECTION_REPLIES["Decisions Made"]["decisions"]}),
            Reply({"sections": [{"name": "Action Items", "content": "C"}],
                   "actionItems": SECTION_REPLIES["Action Items"]["actionItems"]}),
        )
        run = await BatchedStrategy(llm_client=llm_client, config=config).execute(minutes_template, transcript)

        assert [s.content for s in run.results.sections] == ["A", "B", "C"]
        assert run.api_calls == 3
        prompts = fake_openai.user_prompts()
        assert "Foundation Phase (batch 1 of 3)" in prompts[0]
        assert "Action Phase (batch 3 of 3)" in prompts[2]
        # Later batches see ids extracted earlier
        assert "agenda-q3-budget" in prompts[1]
        assert "dec-travel-cut" in prompts[2]
        assert "dec-travel-cut" not in prompts[1]
        assert run.warnings == []

    @pytest.mark.asyncio
    async def test_failure_names_the_batch(self, llm_client, fake_openai, config,
                                           minutes_template, transcript):
        fake_openai.queue(
            Reply({"sections": [{"name": "Agenda Items", "content": "A"}]}),
            Reply({"sections": []}),
        )
        with pytest.raises(ResponseShapeError, match="discussion batch"):
            await BatchedStrategy(llm_client=llm_client, config=config).execute(minutes_template, transcript)
        assert len(fake_openai.calls) == 2

    def test_legacy_name_resolves(self, llm_client, config):
        assert isinstance(get_strategy("hybrid", llm_client, config), BatchedStrategy)
        assert isinstance(get_strategy("advanced", llm_client, config), CascadingStrategy)


class TestCascadingStrategy:
    @pytest.mark.asyncio
    async def test_dependency_order_and_context_flow(self, llm_client, fake_openai, config,
                                                     make_template, transcript):
        # Declared in reverse; dependencies decide the call order
        template = make_template(
            [
                ("action-items", "Action Items", ["decisions-made"]),
                ("decisions-made", "Decisions Made", ["agenda-items"]),
                ("agenda-items", "Agenda Items"),
            ],
            outputs=["summary", "decisions", "action_items"],
        )
        fake_openai.respond_with(_section_responder)
        run = await CascadingStrategy(llm_client=llm_client, config=config).execute(template, transcript)

        prompts = fake_openai.user_prompts()
        assert len(prompts) == 3
        assert "## Section: Agenda Items" in prompts[0]
        assert "## Section: Decisions Made" in prompts[1]
        assert "## Section: Action Items" in prompts[2]
        assert "agenda-q3-budget" in prompts[1]
        assert "dec-travel-cut" in prompts[2]
        assert "dec-travel-cut" not in prompts[0]

        assert run.results.section_names() == ["Agenda Items", "Decisions Made", "Action Items"]
        assert run.results.action_items[0].decision_ids == ["dec-travel-cut"]
        assert run.results.summary == "Budget and hiring review."
        assert run.warnings == []
        assert run.api_calls == 3
        assert run.token_usage.total_tokens == 450

    @pytest.mark.asyncio
    async def test_invalid_section_response_is_prefixed(self, llm_client, fake_openai, config,
                                                        minutes_template, transcript):
        fake_openai.queue(Reply(SECTION_REPLIES["Agenda Items"]), Reply("this is not json"))
        with pytest.raises(InvalidJSONError) as exc_info:
            await CascadingStrategy(llm_client=llm_client, config=config).execute(minutes_template, transcript)
        assert str(exc_info.value).startswith('Failed to analyze section "Decisions Made": ')
        assert len(fake_openai.calls) == 2

    @pytest.mark.asyncio
    async def test_exhausted_retries_are_prefixed(self, llm_client, fake_openai, config,
                                                  minutes_template, transcript):
        request = httpx.Request("POST", "https://api.test/v1/chat/completions")
        fake_openai.queue(*(openai.APIConnectionError(request=request) for _ in range(3)))
        with pytest.raises(RetriesExhaustedError) as exc_info:
            await CascadingStrategy(llm_client=llm_client, config=config).execute(minutes_template, transcript)
        assert str(exc_info.value).startswith('Failed to analyze section "Agenda Items": ')
        assert exc_info.value.attempts == 3

    @pytest.mark.asyncio
    async def test_cycle_fails_before_any_call(self, llm_client, fake_openai, config,
                                               make_template, transcript):
        template = make_template([("a", "A", ["b"]), ("b", "B", ["a"])])
        with pytest.raises(CircularDependencyError):
            await CascadingStrategy(llm_client=llm_client, config=config).execute(template, transcript)
        assert fake_openai.calls == []


class TestSharedBehaviour:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("strategy_cls", [BasicStrategy, BatchedStrategy, CascadingStrategy])
    async def test_every_section_exactly_once(self, strategy_cls, llm_client, fake_openai, config,
                                              minutes_template, transcript):
        fake_openai.respond_with(_everything_responder)
        run = await strategy_cls(llm_client=llm_client, config=config).execute(minutes_template, transcript)
        assert sorted(run.results.section_names()) == sorted(s.name for s in minutes_template.sections)

    @pytest.mark.asyncio
    async def test_progress_reported_once_per_call(self, llm_client, fake_openai, config,
                                                   minutes_template, transcript):
        fake_openai.respond_with(_section_responder)
        seen = []
        await CascadingStrategy(llm_client=llm_client, config=config).execute(
            minutes_template, transcript, progress_callback=lambda c, t, label: seen.append((c, t, label))
        )
        assert [(c, t) for c, t, _ in seen] == [(1, 3), (2, 3), (3, 3)]
        assert seen[0][2] == "Analyzing section: Agenda Items"

    @pytest.mark.asyncio
    async def test_failing_progress_callback_does_not_abort(self, llm_client, fake_openai, config,
                                                            minutes_template, transcript):
        fake_openai.respond_with(_everything_responder)

        def broken(current, total, label):
            raise RuntimeError("display went away")

        run = await BasicStrategy(llm_client=llm_client, config=config).execute(
            minutes_template, transcript, progress_callback=broken
        )
        assert run.api_calls == 1

    @pytest.mark.asyncio
    async def test_duplicate_ids_across_calls_are_remapped(self, llm_client, fake_openai, config,
                                                           minutes_template, transcript):
        decision = {"id": "decision-1", "decision": "x"}
        fake_openai.queue(
            Reply({"sections": [{"name": "Agenda Items", "content": "A"}], "decisions": [decision]}),
            Reply({"sections": [{"name": "Decisions Made", "content": "B"}], "decisions": [decision]}),
            Reply({"sections": [{"name": "Action Items", "content": "C"}]}),
        )
        run = await BatchedStrategy(llm_client=llm_client, config=config).execute(minutes_template, transcript)
        ids = [d.id for d in run.results.decisions]
        assert ids[0] == "decision-1" and len(set(ids)) == 2
        assert len(run.remappings) == 1
        assert run.remappings[0].to_payload()["originalId"] == "decision-1"
