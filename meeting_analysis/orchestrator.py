"""
Analysis orchestrator: validates the template, picks a strategy, runs it,
and optionally hands the draft to the self-evaluation pass.
"""

import asyncio
import time
from typing import Dict, Optional, Tuple, Union

from loguru import logger

from meeting_analysis.config import AnalysisConfig, AppConfig, get_config
from meeting_analysis.dependency_resolver import validate_template
from meeting_analysis.errors import AnalysisError
from meeting_analysis.evaluator import compare_results, run_evaluation_pass
from meeting_analysis.llm_client import LLMClient, get_llm_client
from meeting_analysis.models import (
    STRATEGY_AUTO,
    AnalysisExecutionResult,
    AnalysisStrategy,
    ProgressCallback,
    StrategyMetadata,
    StrategyRecommendation,
    Template,
)
from meeting_analysis.strategies import STRATEGY_CLASSES, get_strategy


def select_strategy(requested: Optional[Union[str, AnalysisStrategy]], estimated_tokens: int,
                    analysis_config: Optional[AnalysisConfig] = None) -> Tuple[AnalysisStrategy, bool]:
    """
    Resolve the strategy to run.

    Returns:
        (strategy, was_auto_selected)
    """
    analysis_config = analysis_config or get_config().analysis
    if requested is None:
        requested = analysis_config.default_strategy
    if isinstance(requested, str) and requested.strip().lower() == STRATEGY_AUTO:
        if estimated_tokens <= analysis_config.basic_max_tokens:
            return AnalysisStrategy.BASIC, True
        if estimated_tokens <= analysis_config.batched_max_tokens:
            return AnalysisStrategy.BATCHED, True
        return AnalysisStrategy.CASCADING, True
    return AnalysisStrategy.parse(requested), False


def get_strategy_recommendation(transcript: str, llm_client: Optional[LLMClient] = None,
                                config: Optional[AppConfig] = None) -> StrategyRecommendation:
    """Recommend a strategy for `transcript`, with a one-line reason per strategy."""
    config = config or get_config()
    llm_client = llm_client or get_llm_client()
    tokens = llm_client.count_tokens(transcript)
    strategy, _ = select_strategy(STRATEGY_AUTO, tokens, config.analysis)

    basic_limit = config.analysis.basic_max_tokens
    batched_limit = config.analysis.batched_max_tokens
    reasons: Dict[str, str] = {
        AnalysisStrategy.BASIC.value: (
            f"Fits in one call (~{tokens} tokens, limit {basic_limit})"
            if tokens <= basic_limit
            else f"Transcript (~{tokens} tokens) is long for a single call; cross-references may be thin"
        ),
        AnalysisStrategy.BATCHED.value: (
            "Three phase calls balance cost against cross-referencing"
            if tokens <= batched_limit
            else f"Transcript (~{tokens} tokens) exceeds the batched sweet spot of {batched_limit}"
        ),
        AnalysisStrategy.CASCADING.value: (
            "One call per section with full context; slowest, most thorough"
            if tokens > batched_limit
            else "Most thorough, but more calls than this transcript needs"
        ),
    }
    logger.info(f"Recommended {strategy.value} strategy for ~{tokens} token transcript")
    return StrategyRecommendation(strategy=strategy, estimated_tokens=tokens, reasons=reasons)


class AnalysisOrchestrator:
    """Entry point for running a template against a transcript."""

    def __init__(self, llm_client: Optional[LLMClient] = None, config: Optional[AppConfig] = None):
        self.config = config or get_config()
        self.llm_client = llm_client or LLMClient(self.config.llm)

    async def analyze(
        self,
        template: Template,
        transcript: str,
        strategy: Optional[Union[str, AnalysisStrategy]] = None,
        run_evaluation: Optional[bool] = None,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AnalysisExecutionResult:
        """
        Run one analysis.

        Args:
            template: Template to apply; never mutated
            transcript: Full transcript text
            strategy: basic | batched | cascading | auto (config default when None)
            run_evaluation: Override for the self-evaluation pass
            progress_callback: Advisory (current, total, label) callback
            cancel_event: Set to abort the in-flight call and stop the run

        Returns:
            AnalysisExecutionResult with final results and run metadata

        Raises:
            TemplateConfigurationError: before any call when the template is invalid
            GenerationError / ResponseFormatError: when a strategy call fails
            AnalysisCancelledError: when `cancel_event` fires
        """
        start_time = time.time()
        validate_template(template)
        if not transcript or not transcript.strip():
            raise AnalysisError("Transcript is empty")

        estimated_tokens = self.llm_client.count_tokens(transcript)
        chosen, was_auto = select_strategy(strategy, estimated_tokens, self.config.analysis)
        if run_evaluation is None:
            run_evaluation = self.config.analysis.run_evaluation

        logger.info({
            "evt": "analysis_started",
            "template": template.name,
            "strategy": chosen.value,
            "auto_selected": was_auto,
            "sections": len(template.sections),
            "estimated_tokens": estimated_tokens,
            "evaluation": run_evaluation,
        })

        runner = get_strategy(chosen, self.llm_client, self.config)
        draft = await runner.execute(template, transcript, progress_callback, cancel_event)

        results = draft.results
        token_usage = draft.token_usage
        api_calls = draft.api_calls
        warnings = draft.warnings
        remappings = list(draft.remappings)
        evaluation = None
        changes = None

        if run_evaluation:
            outcome = await run_evaluation_pass(
                template,
                transcript,
                draft.results,
                chosen.value,
                draft.prompts_used,
                self.llm_client,
                self.config,
                cancel_event,
            )
            evaluation = outcome.evaluation
            results = outcome.final_results
            token_usage = token_usage.add(outcome.token_usage)
            api_calls += outcome.api_calls
            if outcome.succeeded:
                warnings = outcome.warnings
                remappings.extend(outcome.remappings)
                changes = compare_results(draft.results, outcome.final_results)

        processing_time = time.time() - start_time
        metadata = StrategyMetadata(
            estimated_duration=runner.estimated_duration,
            api_calls=runner.api_calls,
            quality=runner.quality,
            actual_api_calls=api_calls,
            actual_tokens=token_usage.total_tokens,
            estimated_input_tokens=estimated_tokens,
            was_auto_selected=was_auto,
            processing_time=processing_time,
            token_usage=token_usage,
            changes=changes,
        )
        logger.info({
            "evt": "analysis_completed",
            "template": template.name,
            "strategy": chosen.value,
            "api_calls": api_calls,
            "total_tokens": token_usage.total_tokens,
            "integrity_warnings": len(warnings),
            "processing_time": round(processing_time, 2),
        })
        return AnalysisExecutionResult(
            strategy=chosen,
            results=results,
            draft_results=draft.results if run_evaluation else None,
            evaluation=evaluation,
            prompts_used=draft.prompts_used,
            integrity_warnings=warnings,
            id_remappings=remappings,
            metadata=metadata,
        )

    def analyze_sync(self, template: Template, transcript: str, **kwargs) -> AnalysisExecutionResult:
        """Blocking wrapper around `analyze` for sync callers."""
        return asyncio.run(self.analyze(template, transcript, **kwargs))

    @staticmethod
    def strategy_metadata(strategy: Union[str, AnalysisStrategy]) -> Dict[str, str]:
        """Descriptive metadata for a strategy, without running it."""
        cls = STRATEGY_CLASSES[AnalysisStrategy.parse(strategy)]
        return {
            "estimatedDuration": cls.estimated_duration,
            "apiCalls": cls.api_calls,
            "quality": cls.quality,
        }


async def execute_analysis(
    template: Template,
    transcript: str,
    strategy: Optional[Union[str, AnalysisStrategy]] = None,
    run_evaluation: Optional[bool] = None,
    progress_callback: Optional[ProgressCallback] = None,
    cancel_event: Optional[asyncio.Event] = None,
    llm_client: Optional[LLMClient] = None,
    config: Optional[AppConfig] = None,
) -> AnalysisExecutionResult:
    """Convenience function: build an orchestrator and run once."""
    orchestrator = AnalysisOrchestrator(llm_client=llm_client or get_llm_client(), config=config)
    return await orchestrator.analyze(
        template,
        transcript,
        strategy=strategy,
        run_evaluation=run_evaluation,
        progress_callback=progress_callback,
        cancel_event=cancel_event,
    )
