"""
Identifier reconciliation and referential checks applied to every result.
"""

from typing import Dict, List, Optional, Sequence, Set, Tuple, TypeVar

from loguru import logger
from pydantic import BaseModel, Field

from meeting_analysis.models import (
    AnalysisResults,
    IdRemapping,
    OrphanedItems,
)

T = TypeVar("T", bound=BaseModel)

# AnalysisResults attribute -> id prefix for regenerated ids
ID_PREFIXES: Dict[str, str] = {
    "agenda_items": "agenda",
    "decisions": "decision",
    "action_items": "action",
}


class PostProcessReport(BaseModel):
    results: AnalysisResults
    remappings: List[IdRemapping] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


def canonical_ids(claimed: Sequence[str], prefix: str) -> Tuple[List[str], Dict[int, str]]:
    """
    Map claimed ids to canonical ids in one pass.

    The first holder of an id keeps it. Each repeat gets `<prefix>-<n>`, with
    `n` counting up from 1 past every id already claimed anywhere in the list
    or handed out earlier.

    Returns:
        (canonical id per position, {position: new id} for the remapped ones)
    """
    taken: Set[str] = set(claimed)
    seen: Set[str] = set()
    counter = 1
    result: List[str] = []
    remapped: Dict[int, str] = {}
    for index, claimed_id in enumerate(claimed):
        if claimed_id not in seen:
            seen.add(claimed_id)
            result.append(claimed_id)
            continue
        while f"{prefix}-{counter}" in taken:
            counter += 1
        new_id = f"{prefix}-{counter}"
        taken.add(new_id)
        seen.add(new_id)
        result.append(new_id)
        remapped[index] = new_id
    return result, remapped


def ensure_unique_ids(items: Optional[Sequence[T]], prefix: str,
                      entity: str) -> Tuple[Optional[List[T]], List[IdRemapping]]:
    """Return a copy of `items` with duplicate ids replaced; unique ids are untouched."""
    if items is None:
        return None, []
    ids, remapped = canonical_ids([item.id for item in items], prefix)
    out: List[T] = []
    remappings: List[IdRemapping] = []
    for index, item in enumerate(items):
        if index not in remapped:
            out.append(item)
            continue
        out.append(type(item)(**{**item.dict(), "id": ids[index]}))
        remappings.append(IdRemapping(entity=entity, index=index, original_id=item.id, new_id=ids[index]))
        logger.warning(f'[ID Deduplication] Duplicate {entity} id "{item.id}" changed to "{ids[index]}"')
    return out, remappings


def validate_relationship_ids(results: AnalysisResults) -> List[str]:
    """
    Check every cross-reference against the ids present in `results`.

    Dangling references are reported, never removed.
    """
    agenda_ids = {item.id for item in results.agenda_items or []}
    decision_ids = {item.id for item in results.decisions or []}
    warnings: List[str] = []

    for decision in results.decisions or []:
        for agenda_id in decision.agenda_item_ids or []:
            if agenda_id not in agenda_ids:
                warnings.append(f'Decision "{decision.id}" references non-existent agenda item "{agenda_id}"')

    for action in results.action_items or []:
        for agenda_id in action.agenda_item_ids or []:
            if agenda_id not in agenda_ids:
                warnings.append(f'Action "{action.id}" references non-existent agenda item "{agenda_id}"')
        for decision_id in action.decision_ids or []:
            if decision_id not in decision_ids:
                warnings.append(f'Action "{action.id}" references non-existent decision "{decision_id}"')

    warnings = list(dict.fromkeys(warnings))
    for warning in warnings:
        logger.warning(f"[Relationship Validation] {warning}")
    return warnings


def find_orphaned_items(results: AnalysisResults) -> OrphanedItems:
    """Entities missing their expected cross-reference; informational only."""
    decisions = results.decisions or []
    linked_agenda = {aid for d in decisions for aid in d.agenda_item_ids or []}
    return OrphanedItems(
        decisions_without_agenda=[d.id for d in decisions if not d.agenda_item_ids],
        action_items_without_decisions=[a.id for a in results.action_items or [] if not a.decision_ids],
        agenda_items_without_decisions=[a.id for a in results.agenda_items or [] if a.id not in linked_agenda],
    )


def post_process_results(results: AnalysisResults) -> PostProcessReport:
    """Deduplicate entity ids, then validate references against the deduplicated sets."""
    updates = {}
    remappings: List[IdRemapping] = []
    for attr, prefix in ID_PREFIXES.items():
        items, entity_remaps = ensure_unique_ids(getattr(results, attr), prefix, attr)
        updates[attr] = items
        remappings.extend(entity_remaps)

    processed = AnalysisResults(
        summary=results.summary,
        sections=list(results.sections),
        quotes=list(results.quotes) if results.quotes is not None else None,
        **updates,
    )
    warnings = validate_relationship_ids(processed)

    if remappings or warnings:
        logger.info(f"Post-processing: {len(remappings)} id remapping(s), {len(warnings)} relationship warning(s)")
    return PostProcessReport(results=processed, remappings=remappings, warnings=warnings)
