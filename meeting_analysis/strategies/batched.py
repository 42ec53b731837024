"""
Batched strategy: up to three phase calls (foundation, discussion, action).
"""

from loguru import logger

from meeting_analysis.batch_planner import plan_batches
from meeting_analysis.extraction_plan import plan_for_batches
from meeting_analysis.merger import ResultAccumulator
from meeting_analysis.models import AnalysisStrategy, Template
from meeting_analysis.prompt_builder import build_batch_prompt
from meeting_analysis.response_parser import parse_sections_response
from meeting_analysis.strategies.base import BaseStrategy, RunContext


class BatchedStrategy(BaseStrategy):
    """Phase-grouped calls; each batch sees everything earlier batches extracted."""

    strategy = AnalysisStrategy.BATCHED
    estimated_duration = "1-2 minutes"
    api_calls = "2-3"
    quality = "Better; phase-aware context"

    async def _run(self, template: Template, transcript: str,
                   accumulator: ResultAccumulator, ctx: RunContext) -> None:
        batches = plan_batches(template.sections)
        plans = plan_for_batches(template, batches)
        logger.info(
            "Batch plan: "
            + ", ".join(f"{b.phase.value}={[s.id for s in b.sections]}" for b in batches)
        )

        for index, batch in enumerate(batches, start=1):
            names = [s.name for s in batch.sections]
            self._report_progress(
                ctx, index, len(batches), f"{batch.phase.display_name} phase: {', '.join(names)}"
            )
            prompt = build_batch_prompt(
                batch.sections,
                template,
                transcript,
                accumulator.snapshot(),
                plans[batch.phase],
                batch.phase.display_name,
                batch_index=index,
                batch_count=len(batches),
                limits=self.config.prompts,
            )
            data = await self._call(prompt, transcript, batch.label, ctx)
            accumulator.merge(parse_sections_response(data, batch.label, names), batch.label)
