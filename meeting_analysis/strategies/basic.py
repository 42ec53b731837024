"""
Basic strategy: the whole template in one generation call.
"""

from meeting_analysis.merger import ResultAccumulator
from meeting_analysis.models import AnalysisStrategy, Template
from meeting_analysis.prompt_builder import build_monolithic_prompt
from meeting_analysis.response_parser import parse_sections_response
from meeting_analysis.strategies.base import BaseStrategy, RunContext


class BasicStrategy(BaseStrategy):
    """Single monolithic call; suited to short transcripts."""

    strategy = AnalysisStrategy.BASIC
    estimated_duration = "30-60 seconds"
    api_calls = "1"
    quality = "Good; single-pass extraction"

    async def _run(self, template: Template, transcript: str,
                   accumulator: ResultAccumulator, ctx: RunContext) -> None:
        label = "basic analysis"
        self._report_progress(ctx, 1, 1, f"Analyzing all {len(template.sections)} sections")

        prompt = build_monolithic_prompt(template, transcript, self.config.prompts)
        data = await self._call(prompt, transcript, label, ctx)
        accumulator.merge(
            parse_sections_response(data, label, [s.name for s in template.sections]),
            label,
        )
