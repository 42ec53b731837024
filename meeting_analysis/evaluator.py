"""
Self-evaluation pass: one review call that may revise the draft.

Any failure degrades to returning the draft with a zero-score evaluation.
"""

import asyncio
from itertools import zip_longest
from numbers import Real
from typing import Any, Dict, List, Optional, Sequence, Tuple

from loguru import logger
from pydantic import BaseModel, Field, ValidationError

from meeting_analysis.config import AppConfig, get_config
from meeting_analysis.errors import AnalysisCancelledError, ResponseShapeError, TokenBudgetExceededError
from meeting_analysis.llm_client import LLMClient, get_llm_client
from meeting_analysis.models import (
    AnalysisResults,
    EvaluationResults,
    IdRemapping,
    OrphanedItems,
    ResultComparison,
    Template,
    TokenUsage,
)
from meeting_analysis.post_processor import find_orphaned_items, post_process_results
from meeting_analysis.prompt_builder import EVALUATOR_SYSTEM_PROMPT, build_evaluation_prompt
from meeting_analysis.response_parser import parse_results_payload

EVALUATION_LABEL = "self-evaluation"

TOKEN_LIMIT_REASONING = "Evaluation skipped due to token limit constraints"
TOKEN_LIMIT_WARNING = "Transcript too long for evaluation pass - returning draft as-is"
FAILURE_WARNING = "Evaluation pass failed - returning draft results as-is"


class EvaluationOutcome(BaseModel):
    evaluation: EvaluationResults
    final_results: AnalysisResults
    succeeded: bool = False
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    api_calls: int = 0
    remappings: List[IdRemapping] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


def quality_band(score: float) -> str:
    if score >= 9:
        return "EXCELLENT"
    if score >= 7:
        return "GOOD"
    if score >= 5:
        return "FAIR"
    return "POOR"


def _fallback(draft: AnalysisResults, reasoning: str, warning: str, api_calls: int = 0) -> EvaluationOutcome:
    logger.warning(f"Evaluation fallback: {reasoning}")
    evaluation = EvaluationResults(
        improvements=[],
        additions=[],
        quality_score=0,
        reasoning=reasoning,
        warnings=[warning],
        orphaned_items=find_orphaned_items(draft),
    )
    return EvaluationOutcome(evaluation=evaluation, final_results=draft, succeeded=False, api_calls=api_calls)


def _string_list(data: Dict[str, Any], key: str, required: bool) -> Optional[List[str]]:
    value = data.get(key)
    if value is None and not required:
        return None
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ResponseShapeError(f'"{key}" in {EVALUATION_LABEL} must be an array of strings', EVALUATION_LABEL)
    return value


def validate_evaluation_response(data: Dict[str, Any],
                                 expected_sections: Optional[Sequence[str]] = None
                                 ) -> Tuple[EvaluationResults, AnalysisResults]:
    """
    Validate the review response.

    Returns:
        (evaluation report, final results before post-processing)

    Raises:
        ResponseShapeError: on any missing or mistyped field
    """
    improvements = _string_list(data, "improvements", required=True)
    additions = _string_list(data, "additions", required=True)
    warnings = _string_list(data, "warnings", required=False)

    score = data.get("qualityScore")
    if isinstance(score, bool) or not isinstance(score, Real) or not 0 <= score <= 10:
        raise ResponseShapeError(
            f'"qualityScore" in {EVALUATION_LABEL} must be a number between 0 and 10, got {score!r}',
            EVALUATION_LABEL,
        )
    reasoning = data.get("reasoning")
    if not isinstance(reasoning, str) or not reasoning.strip():
        raise ResponseShapeError(f'"reasoning" in {EVALUATION_LABEL} must be a non-empty string', EVALUATION_LABEL)

    orphaned = None
    if data.get("orphanedItems") is not None:
        try:
            orphaned = OrphanedItems(**data["orphanedItems"]) if isinstance(data["orphanedItems"], dict) else None
        except ValidationError as e:
            raise ResponseShapeError(f'Invalid "orphanedItems" in {EVALUATION_LABEL}: {e}', EVALUATION_LABEL) from e
        if orphaned is None:
            raise ResponseShapeError(f'"orphanedItems" in {EVALUATION_LABEL} must be an object', EVALUATION_LABEL)

    final = parse_results_payload(data.get("finalResults"), "finalResults", expected_sections)

    evaluation = EvaluationResults(
        improvements=improvements,
        additions=additions,
        quality_score=float(score),
        reasoning=reasoning.strip(),
        warnings=warnings,
        orphaned_items=orphaned,
    )
    return evaluation, final


async def run_evaluation_pass(
    template: Template,
    transcript: str,
    draft: AnalysisResults,
    strategy: str,
    prompts_used: Sequence[str] = (),
    llm_client: Optional[LLMClient] = None,
    config: Optional[AppConfig] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> EvaluationOutcome:
    """
    Review the post-processed draft and return the improved result.

    Never raises for evaluation failures; only caller cancellation propagates.
    """
    config = config or get_config()
    llm_client = llm_client or get_llm_client()
    include_prompts = config.analysis.include_prompts_in_evaluation and bool(prompts_used)

    def _build(with_prompts: bool) -> str:
        return build_evaluation_prompt(
            template, transcript, draft, strategy,
            prompts_used if with_prompts else None,
            config.prompts,
        )

    prompt = _build(include_prompts)
    try:
        try:
            llm_client.check_token_budget(prompt, transcript, EVALUATION_LABEL)
        except TokenBudgetExceededError:
            if not include_prompts:
                raise
            logger.warning("Evaluation prompt over budget; retrying without the prompts used for the draft")
            prompt = _build(False)
            llm_client.check_token_budget(prompt, transcript, EVALUATION_LABEL)
    except TokenBudgetExceededError:
        return _fallback(draft, TOKEN_LIMIT_REASONING, TOKEN_LIMIT_WARNING)

    logger.info(f"Running self-evaluation of {strategy} draft ({len(draft.sections)} sections)")
    try:
        data, usage = await llm_client.complete_json(
            prompt,
            EVALUATOR_SYSTEM_PROMPT,
            EVALUATION_LABEL,
            transcript=transcript,
            temperature=config.analysis.temperature_for("evaluation"),
            cancel_event=cancel_event,
        )
        evaluation, final = validate_evaluation_response(data, draft.section_names())
    except AnalysisCancelledError:
        raise
    except Exception as e:
        logger.error(f"Evaluation pass failed: {e}")
        return _fallback(draft, f"Evaluation failed: {e}", FAILURE_WARNING, api_calls=1)

    report = post_process_results(final)
    logger.info({
        "evt": "evaluation_completed",
        "strategy": strategy,
        "quality_score": evaluation.quality_score,
        "band": quality_band(evaluation.quality_score),
        "improvements": len(evaluation.improvements),
        "additions": len(evaluation.additions),
    })
    return EvaluationOutcome(
        evaluation=evaluation,
        final_results=report.results,
        succeeded=True,
        token_usage=usage,
        api_calls=1,
        remappings=report.remappings,
        warnings=report.warnings,
    )


def _link_count(results: AnalysisResults) -> int:
    decisions = sum(len(d.agenda_item_ids or []) for d in results.decisions or [])
    actions = sum(
        len(a.agenda_item_ids or []) + len(a.decision_ids or []) for a in results.action_items or []
    )
    return decisions + actions


def compare_results(draft: AnalysisResults, final: AnalysisResults) -> ResultComparison:
    """Summarise what the evaluation pass changed."""
    # finalResults sections are validated into draft order, so compare by position
    sections_changed = sum(
        1 for before, after in zip_longest(draft.sections, final.sections)
        if before is None or after is None or (before.name, before.content) != (after.name, after.content)
    )
    return ResultComparison(
        sections_changed=sections_changed,
        agenda_items_added=max(0, len(final.agenda_items or []) - len(draft.agenda_items or [])),
        decisions_added=max(0, len(final.decisions or []) - len(draft.decisions or [])),
        action_items_added=max(0, len(final.action_items or []) - len(draft.action_items or [])),
        relationships_added=max(0, _link_count(final) - _link_count(draft)),
    )
