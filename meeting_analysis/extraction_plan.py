"""
Decides which structured outputs each generation call is responsible for.
"""

from typing import Dict, List, Sequence, Set

from pydantic import BaseModel

from meeting_analysis.batch_planner import BatchPhase, SectionBatch
from meeting_analysis.models import OutputType, Template, TemplateSection


class ExtractionPlan(BaseModel):
    """Structured outputs one call is expected to produce."""
    summary: bool = False
    agenda_items: bool = False
    decisions: bool = False
    action_items: bool = False
    quotes: bool = False

    def any(self) -> bool:
        return any((self.summary, self.agenda_items, self.decisions, self.action_items, self.quotes))


# Name keywords that make a cascading section own an entity type
_SECTION_ENTITY_KEYWORDS = {
    "agenda_items": ("agenda",),
    "decisions": ("decision", "conclusion"),
    "action_items": ("action", "task"),
    "quotes": ("quote",),
    "summary": ("summary",),
}


def section_entity_kinds(name: str) -> Set[str]:
    """Entity types a section name suggests it should extract."""
    lowered = name.lower()
    return {
        kind for kind, keywords in _SECTION_ENTITY_KEYWORDS.items()
        if any(keyword in lowered for keyword in keywords)
    }


def plan_monolithic(template: Template) -> ExtractionPlan:
    return ExtractionPlan(
        summary=template.wants(OutputType.SUMMARY),
        agenda_items=template.has_agenda,
        decisions=template.wants(OutputType.DECISIONS),
        action_items=template.wants(OutputType.ACTION_ITEMS),
        quotes=template.wants(OutputType.QUOTES),
    )


def plan_for_batches(template: Template, batches: Sequence[SectionBatch]) -> Dict[BatchPhase, ExtractionPlan]:
    """
    Assign every requested output to exactly one batch.

    Summary and agenda belong to the foundation batch, decisions and quotes to
    discussion, action items to action. When the owning phase has no sections,
    summary falls back to the first batch and the rest to the last batch.
    """
    phases = [batch.phase for batch in batches]
    plans = {phase: ExtractionPlan() for phase in phases}
    if not phases:
        return plans

    def owner(preferred: BatchPhase, fallback: BatchPhase) -> BatchPhase:
        return preferred if preferred in plans else fallback

    if template.wants(OutputType.SUMMARY):
        plans[owner(BatchPhase.FOUNDATION, phases[0])].summary = True
    if template.has_agenda:
        plans[owner(BatchPhase.FOUNDATION, phases[0])].agenda_items = True
    if template.wants(OutputType.DECISIONS):
        plans[owner(BatchPhase.DISCUSSION, phases[-1])].decisions = True
    if template.wants(OutputType.QUOTES):
        plans[owner(BatchPhase.DISCUSSION, phases[-1])].quotes = True
    if template.wants(OutputType.ACTION_ITEMS):
        plans[owner(BatchPhase.ACTION, phases[-1])].action_items = True
    return plans


def plan_for_sections(template: Template, ordered: Sequence[TemplateSection]) -> Dict[str, ExtractionPlan]:
    """
    Assign structured outputs to cascading sections by name.

    Agenda items come only from agenda-named sections. A requested output that
    no section name claims goes to the first section (summary) or the last
    section in processing order (decisions, action items, quotes).
    """
    plans = {section.id: ExtractionPlan() for section in ordered}
    if not ordered:
        return plans

    wanted = {
        "summary": template.wants(OutputType.SUMMARY),
        "decisions": template.wants(OutputType.DECISIONS),
        "action_items": template.wants(OutputType.ACTION_ITEMS),
        "quotes": template.wants(OutputType.QUOTES),
    }
    claimed: Set[str] = set()
    for section in ordered:
        kinds = section_entity_kinds(section.name)
        plan = plans[section.id]
        if "agenda_items" in kinds:
            plan.agenda_items = True
        for kind, requested in wanted.items():
            if requested and kind in kinds:
                setattr(plan, kind, True)
                claimed.add(kind)

    unclaimed: List[str] = [kind for kind, requested in wanted.items() if requested and kind not in claimed]
    for kind in unclaimed:
        target = ordered[0] if kind == "summary" else ordered[-1]
        setattr(plans[target.id], kind, True)
    return plans
