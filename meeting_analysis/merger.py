"""
Accumulation of per-call partial results into one running result.
"""

from typing import List, Optional

from loguru import logger

from meeting_analysis.models import AnalysisResults
from meeting_analysis.response_parser import ENTITY_FIELDS


class ResultAccumulator:
    """
    Running result for a single analysis run.

    Sections and entities are appended in call-issue order. The first
    non-empty summary wins; later summaries are discarded.
    """

    def __init__(self) -> None:
        self._results = AnalysisResults()
        self._summary_source: Optional[str] = None
        self.merged_calls: List[str] = []

    def merge(self, partial: AnalysisResults, source: str) -> None:
        """Fold one call's validated result into the running result."""
        self._results.sections.extend(partial.sections)

        for _, attr in ENTITY_FIELDS.values():
            incoming = getattr(partial, attr)
            if incoming is None:
                continue
            current = getattr(self._results, attr)
            setattr(self._results, attr, (current or []) + list(incoming))

        if partial.summary:
            if self._results.summary is None:
                self._results.summary = partial.summary
                self._summary_source = source
            else:
                logger.debug(f"Discarding summary from {source}; already set by {self._summary_source}")

        self.merged_calls.append(source)
        logger.debug(
            f"Merged {source}: {len(partial.sections)} section(s), "
            f"{len(self._results.sections)} total"
        )

    def snapshot(self) -> AnalysisResults:
        """Independent copy of the running result, safe to hand to a prompt builder."""
        return AnalysisResults(**self._results.dict())

    @property
    def summary_source(self) -> Optional[str]:
        return self._summary_source
