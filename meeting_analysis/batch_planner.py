"""
Three-phase batch planning for the batched strategy.
"""

from enum import Enum
from typing import Dict, List, Sequence, Tuple

from pydantic import BaseModel

from meeting_analysis.models import TemplateSection


class BatchPhase(str, Enum):
    FOUNDATION = "foundation"
    DISCUSSION = "discussion"
    ACTION = "action"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()


PHASE_ORDER: Tuple[BatchPhase, ...] = (BatchPhase.FOUNDATION, BatchPhase.DISCUSSION, BatchPhase.ACTION)

# Checked in this order; first match wins
PHASE_KEYWORDS: Tuple[Tuple[BatchPhase, Tuple[str, ...]], ...] = (
    (BatchPhase.FOUNDATION, ("attendee", "participant", "agenda", "summary")),
    (BatchPhase.DISCUSSION, ("discussion", "decision", "key point", "topic")),
    (BatchPhase.ACTION, ("action", "next step", "follow-up", "follow up")),
)


class SectionBatch(BaseModel):
    phase: BatchPhase
    sections: List[TemplateSection]

    @property
    def label(self) -> str:
        return f"{self.phase.value} batch"


def classify_section(section: TemplateSection) -> BatchPhase:
    """Case-insensitive name match; unmatched sections default to foundation."""
    name = section.name.lower()
    for phase, keywords in PHASE_KEYWORDS:
        if any(keyword in name for keyword in keywords):
            return phase
    return BatchPhase.FOUNDATION


def plan_batches(sections: Sequence[TemplateSection]) -> List[SectionBatch]:
    """Group sections into non-empty batches in foundation → discussion → action order.

    Template order is preserved inside each batch.
    """
    grouped: Dict[BatchPhase, List[TemplateSection]] = {phase: [] for phase in PHASE_ORDER}
    for section in sections:
        grouped[classify_section(section)].append(section)
    return [
        SectionBatch(phase=phase, sections=grouped[phase])
        for phase in PHASE_ORDER
        if grouped[phase]
    ]
