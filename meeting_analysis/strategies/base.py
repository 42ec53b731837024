"""
Base class for analysis execution strategies.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from loguru import logger
from pydantic import BaseModel, Field

from meeting_analysis.config import AppConfig, get_config
from meeting_analysis.llm_client import DEFAULT_TRUNCATION_HINT, LLMClient, get_llm_client
from meeting_analysis.merger import ResultAccumulator
from meeting_analysis.models import (
    AnalysisResults,
    AnalysisStrategy,
    IdRemapping,
    ProgressCallback,
    Template,
    TokenUsage,
)
from meeting_analysis.post_processor import post_process_results
from meeting_analysis.prompt_builder import ANALYST_SYSTEM_PROMPT


class StrategyRun(BaseModel):
    """Post-processed draft produced by one strategy execution."""
    results: AnalysisResults
    prompts_used: List[str] = Field(default_factory=list)
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    api_calls: int = 0
    remappings: List[IdRemapping] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    processing_time: float = 0.0


class RunContext:
    """Per-run bookkeeping; never shared between runs."""

    def __init__(self, progress_callback: Optional[ProgressCallback] = None,
                 cancel_event: Optional[asyncio.Event] = None):
        self.progress_callback = progress_callback
        self.cancel_event = cancel_event
        self.prompts_used: List[str] = []
        self.token_usage = TokenUsage()
        self.api_calls = 0


class BaseStrategy(ABC):
    """Abstract base class for all execution strategies."""

    strategy: AnalysisStrategy
    system_prompt: str = ANALYST_SYSTEM_PROMPT
    truncation_hint: str = DEFAULT_TRUNCATION_HINT
    # Descriptive metadata surfaced to callers
    estimated_duration: str = ""
    api_calls: str = ""
    quality: str = ""

    def __init__(self, llm_client: Optional[LLMClient] = None, config: Optional[AppConfig] = None):
        self.config = config or get_config()
        self.llm_client = llm_client or get_llm_client()

    @property
    def name(self) -> str:
        return self.strategy.value

    @property
    def temperature(self) -> Optional[float]:
        return self.config.analysis.temperature_for(self.strategy.value)

    async def execute(
        self,
        template: Template,
        transcript: str,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> StrategyRun:
        """
        Run the strategy and post-process its merged output.

        Args:
            template: Validated template
            transcript: Full transcript text
            progress_callback: Called with (current, total, label) once per call
            cancel_event: Set by the caller to abort the run

        Returns:
            StrategyRun holding the post-processed draft
        """
        start_time = time.time()
        logger.info(
            f"Starting {self.name} analysis of '{template.name}' ({len(template.sections)} sections)"
        )
        ctx = RunContext(progress_callback, cancel_event)
        accumulator = ResultAccumulator()

        await self._run(template, transcript, accumulator, ctx)

        report = post_process_results(accumulator.snapshot())
        elapsed = time.time() - start_time
        logger.info(
            f"{self.name} analysis finished: {len(report.results.sections)} sections, "
            f"{ctx.api_calls} call(s), {ctx.token_usage.total_tokens} tokens in {elapsed:.1f}s"
        )
        return StrategyRun(
            results=report.results,
            prompts_used=ctx.prompts_used,
            token_usage=ctx.token_usage,
            api_calls=ctx.api_calls,
            remappings=report.remappings,
            warnings=report.warnings,
            processing_time=elapsed,
        )

    @abstractmethod
    async def _run(self, template: Template, transcript: str,
                   accumulator: ResultAccumulator, ctx: RunContext) -> None:
        """Issue this strategy's generation calls, merging each into `accumulator`."""

    async def _call(self, prompt: str, transcript: str, label: str, ctx: RunContext) -> Dict[str, Any]:
        """Issue one JSON generation call and record its prompt and usage."""
        ctx.prompts_used.append(prompt)
        data, usage = await self.llm_client.complete_json(
            prompt,
            self.system_prompt,
            label,
            transcript=transcript,
            temperature=self.temperature,
            cancel_event=ctx.cancel_event,
            truncation_hint=self.truncation_hint,
        )
        ctx.api_calls += 1
        ctx.token_usage = ctx.token_usage.add(usage)
        return data

    def _report_progress(self, ctx: RunContext, current: int, total: int, label: str) -> None:
        logger.info(f"[{self.name}] Step {current}/{total}: {label}")
        if ctx.progress_callback is None:
            return
        try:
            ctx.progress_callback(current, total, label)
        except Exception as e:
            # Progress reporting is advisory
            logger.warning(f"Progress callback failed: {e}")
