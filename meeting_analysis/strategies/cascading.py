"""
Cascading strategy: one call per section in dependency order.
"""

from meeting_analysis.dependency_resolver import resolve_processing_order
from meeting_analysis.errors import AnalysisCancelledError, AnalysisError, with_section_context
from meeting_analysis.extraction_plan import plan_for_sections
from meeting_analysis.merger import ResultAccumulator
from meeting_analysis.models import AnalysisStrategy, Template
from meeting_analysis.prompt_builder import CASCADING_SYSTEM_PROMPT, build_section_prompt
from meeting_analysis.response_parser import parse_section_response
from meeting_analysis.strategies.base import BaseStrategy, RunContext


class CascadingStrategy(BaseStrategy):
    """Per-section calls with full cross-referencing; suited to long transcripts."""

    strategy = AnalysisStrategy.CASCADING
    system_prompt = CASCADING_SYSTEM_PROMPT
    truncation_hint = (
        "Consider using the basic or batched strategy, which produce shorter per-call output, "
        "or reduce the number of template sections."
    )
    estimated_duration = "2-5 minutes"
    api_calls = "1 per section"
    quality = "Best; full dependency-aware cross-referencing"

    async def _run(self, template: Template, transcript: str,
                   accumulator: ResultAccumulator, ctx: RunContext) -> None:
        # Raises before any call when the graph is invalid
        ordered = resolve_processing_order(template.sections)
        plans = plan_for_sections(template, ordered)
        names_by_id = {s.id: s.name for s in template.sections}

        for index, section in enumerate(ordered, start=1):
            self._report_progress(ctx, index, len(ordered), f"Analyzing section: {section.name}")
            label = f'section "{section.name}"'
            try:
                prompt = build_section_prompt(
                    section,
                    template,
                    transcript,
                    accumulator.snapshot(),
                    plans[section.id],
                    dependency_names=[names_by_id[dep] for dep in section.dependencies],
                    limits=self.config.prompts,
                )
                data = await self._call(prompt, transcript, label, ctx)
                partial = parse_section_response(data, section.name, label)
            except AnalysisCancelledError:
                raise
            except AnalysisError as e:
                raise with_section_context(e, section.name) from e
            accumulator.merge(partial, label)
