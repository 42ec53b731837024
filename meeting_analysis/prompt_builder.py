"""
Prompt construction for every execution mode.

Builders are pure: the same inputs always render the same prompt, and every
analysis prompt embeds the full transcript text.
"""

import json
from typing import Any, Dict, List, Optional, Sequence

import jinja2

from meeting_analysis.config import PromptConfig
from meeting_analysis.extraction_plan import ExtractionPlan, plan_monolithic
from meeting_analysis.models import (
    ActionItem,
    AgendaItem,
    AnalysisResults,
    Decision,
    OutputFormat,
    Template,
    TemplateSection,
)
from meeting_analysis.utils.timestamps import format_timestamp

ANALYST_SYSTEM_PROMPT = (
    "You are an expert meeting analyst. You provide structured, accurate analysis of meeting "
    "transcripts with clear relationship mapping between agenda items, decisions, and action items. "
    "Always respond with valid JSON."
)

CASCADING_SYSTEM_PROMPT = (
    ANALYST_SYSTEM_PROMPT
    + " Maintain consistency with previously extracted information and reuse the ids it already carries."
)

EVALUATOR_SYSTEM_PROMPT = (
    "You are a senior analyst reviewing meeting analysis for accuracy and completeness. "
    "You correct errors, fill gaps, and return the complete improved analysis. "
    "Always respond with valid JSON."
)

SECTION_TEXT_SYSTEM_PROMPT = (
    "You are an expert meeting analyst. Answer with the requested section content only, "
    "grounded in the transcript."
)

_env = jinja2.Environment(
    loader=jinja2.PackageLoader("meeting_analysis", "prompts"),
    undefined=jinja2.StrictUndefined,
    trim_blocks=True,
    lstrip_blocks=True,
    autoescape=False,
)


def _render(name: str, **context: Any) -> str:
    return _env.get_template(name).render(**context)


def _limits(limits: Optional[PromptConfig]) -> PromptConfig:
    return limits or PromptConfig()


def format_instructions(output_format: OutputFormat, limits: Optional[PromptConfig] = None) -> str:
    """One-line description of a section's output format."""
    limits = _limits(limits)
    if output_format == OutputFormat.BULLET_POINTS:
        return (
            'Bulleted list (MUST use "-" character ONLY, NOT numbered lists like 1. 2. 3.; '
            f"max {limits.max_bullet_points} items, {limits.max_bullet_words} words each)"
        )
    if output_format == OutputFormat.PARAGRAPH:
        return (
            f"Paragraph format (continuous prose, "
            f"{limits.min_paragraph_words}-{limits.max_paragraph_words} words)"
        )
    return "Table format (use markdown table syntax if needed, or structured bullets)"


def render_requirements(limits: Optional[PromptConfig] = None) -> str:
    """Formatting rules shared by every execution mode."""
    return _render("requirements.j2", limits=_limits(limits))


def _section_specs(sections: Sequence[TemplateSection], limits: PromptConfig) -> List[Dict[str, str]]:
    return [
        {
            "name": s.name,
            "prompt": s.prompt.strip(),
            "format_instructions": format_instructions(s.output_format, limits),
        }
        for s in sections
    ]


def structured_output_lines(plan: ExtractionPlan) -> List[str]:
    lines = []
    if plan.summary:
        lines.append('"summary": a concise 3-5 sentence overview of the whole meeting')
    if plan.agenda_items:
        lines.append('"agendaItems": every agenda topic with its id, topic, timestamp and short context')
    if plan.decisions:
        lines.append('"decisions": every concrete decision with its id, wording, timestamp and context')
    if plan.action_items:
        lines.append('"actionItems": every concrete task with its id, owner and deadline when stated')
    if plan.quotes:
        lines.append('"quotes": notable verbatim quotes with speaker and timestamp')
    return lines


def build_json_example(
    plan: ExtractionPlan,
    section_names: Optional[Sequence[str]] = None,
    link_agenda: bool = False,
    link_decisions: bool = False,
) -> Dict[str, Any]:
    """
    JSON shape requested from the model, holding only the keys this call produces.

    Args:
        plan: Structured outputs owned by the call
        section_names: Names for a `sections` array; None asks for a single `content` string
        link_agenda: Include `agendaItemIds` on decisions and action items
        link_decisions: Include `decisionIds` on action items
    """
    example: Dict[str, Any] = {}
    if section_names is None:
        example["content"] = "Formatted section content"
    else:
        example["sections"] = [{"name": name, "content": "Formatted section content"} for name in section_names]
    if plan.summary:
        example["summary"] = "Concise overview of the meeting"
    if plan.agenda_items:
        example["agendaItems"] = [
            {"id": "agenda-1", "topic": "Topic discussed", "timestamp": 120, "context": "Why it came up"}
        ]
    if plan.decisions:
        decision: Dict[str, Any] = {
            "id": "decision-1",
            "decision": "What was decided",
            "timestamp": 240,
            "context": "Reasoning or conditions",
        }
        if link_agenda:
            decision["agendaItemIds"] = ["agenda-1"]
        example["decisions"] = [decision]
    if plan.action_items:
        action: Dict[str, Any] = {
            "id": "action-1",
            "task": "Specific task",
            "owner": "Person responsible",
            "deadline": "Due date if mentioned",
            "timestamp": 300,
        }
        if link_agenda:
            action["agendaItemIds"] = ["agenda-1"]
        if link_decisions:
            action["decisionIds"] = ["decision-1"]
        example["actionItems"] = [action]
    if plan.quotes:
        example["quotes"] = [{"text": "Exact words spoken", "speaker": "Speaker name", "timestamp": 360}]
    return example


def _json_block(example: Dict[str, Any]) -> str:
    return json.dumps(example, indent=2, ensure_ascii=False)


def relationship_rules(plan: ExtractionPlan, agenda_known: bool, decisions_known: bool,
                       previous: Optional[AnalysisResults] = None) -> List[str]:
    """
    Id and linking rules for the entity types this call produces.

    Link requirements are only added when the referenced entity type exists,
    either in the context or in the same response.
    """
    rules: List[str] = []
    if plan.agenda_items:
        rules.append('Give every agenda item a unique id of the form "agenda-1", "agenda-2", ...')
    if plan.decisions:
        rules.append('Give every decision a unique id of the form "decision-1", "decision-2", ...')
        if agenda_known:
            rules.append('Link each decision to the agenda items it resolves with "agendaItemIds".')
    if plan.action_items:
        rules.append('Give every action item a unique id of the form "action-1", "action-2", ...')
        if agenda_known:
            rules.append('Link each action item to its agenda items with "agendaItemIds".')
        if decisions_known:
            rules.append('Link each action item that implements a decision with "decisionIds".')
    if previous is not None and rules:
        taken = [
            kind for kind, items in (
                ("agenda items", previous.agenda_items),
                ("decisions", previous.decisions),
                ("action items", previous.action_items),
            ) if items
        ]
        if taken:
            rules.append(
                f"Ids of existing {', '.join(taken)} are listed in the context; "
                "number new items after them instead of reusing an id."
            )
    if rules and (agenda_known or decisions_known):
        rules.append(
            "Only reference ids that exist. Leave a link list empty when nothing matches; "
            "unlinked items are reported as orphans, not rejected."
        )
    return rules


def format_agenda_line(item: AgendaItem) -> str:
    line = f"[{item.id}] {item.topic}"
    if item.timestamp is not None:
        line += f" (at {format_timestamp(item.timestamp)})"
    if item.context:
        line += f" - {item.context}"
    return line


def format_decision_line(item: Decision) -> str:
    line = f"[{item.id}] {item.decision}"
    if item.agenda_item_ids:
        line += f" (relates to: {', '.join(item.agenda_item_ids)})"
    return line


def format_action_line(item: ActionItem) -> str:
    line = f"[{item.id}] {item.task}"
    details = []
    if item.owner:
        details.append(f"owner: {item.owner}")
    links = (item.decision_ids or []) + (item.agenda_item_ids or [])
    if links:
        details.append(f"relates to: {', '.join(links)}")
    if details:
        line += f" ({'; '.join(details)})"
    return line


def build_context_block(previous: Optional[AnalysisResults]) -> str:
    """Serialise already-extracted results; empty string when there is nothing yet."""
    if previous is None:
        return ""
    has_content = previous.summary or previous.sections or previous.agenda_items \
        or previous.decisions or previous.action_items
    if not has_content:
        return ""
    return _render(
        "context.j2",
        summary=previous.summary,
        sections=previous.sections,
        agenda_lines=[format_agenda_line(i) for i in previous.agenda_items or []],
        decision_lines=[format_decision_line(i) for i in previous.decisions or []],
        action_lines=[format_action_line(i) for i in previous.action_items or []],
    )


def build_monolithic_prompt(template: Template, transcript: str,
                            limits: Optional[PromptConfig] = None) -> str:
    """Single prompt covering every section and every requested structured output."""
    limits = _limits(limits)
    plan = plan_monolithic(template)
    example = build_json_example(
        plan,
        section_names=[s.name for s in template.sections],
        link_agenda=plan.agenda_items,
        link_decisions=plan.decisions,
    )
    return _render(
        "basic.j2",
        template_name=template.name,
        requirements=render_requirements(limits),
        sections=_section_specs(template.sections, limits),
        relationship_rules=relationship_rules(plan, plan.agenda_items, plan.decisions),
        structured_outputs=structured_output_lines(plan),
        json_example=_json_block(example),
        transcript=transcript,
    )


def build_batch_prompt(
    sections: Sequence[TemplateSection],
    template: Template,
    transcript: str,
    previous: AnalysisResults,
    plan: ExtractionPlan,
    phase_name: str,
    batch_index: int = 1,
    batch_count: int = 1,
    limits: Optional[PromptConfig] = None,
) -> str:
    """Prompt for one batch, carrying the results of all earlier batches."""
    limits = _limits(limits)
    agenda_known = bool(previous.agenda_items) or plan.agenda_items
    decisions_known = bool(previous.decisions) or plan.decisions
    example = build_json_example(
        plan,
        section_names=[s.name for s in sections],
        link_agenda=agenda_known,
        link_decisions=decisions_known,
    )
    return _render(
        "batch.j2",
        template_name=template.name,
        phase_name=phase_name,
        batch_index=batch_index,
        batch_count=batch_count,
        context_block=build_context_block(previous),
        requirements=render_requirements(limits),
        sections=_section_specs(sections, limits),
        relationship_rules=relationship_rules(plan, agenda_known, decisions_known, previous),
        structured_outputs=structured_output_lines(plan),
        json_example=_json_block(example),
        transcript=transcript,
    )


def build_section_prompt(
    section: TemplateSection,
    template: Template,
    transcript: str,
    previous: AnalysisResults,
    plan: ExtractionPlan,
    dependency_names: Sequence[str] = (),
    limits: Optional[PromptConfig] = None,
) -> str:
    """Prompt for one cascading section, carrying everything extracted so far."""
    limits = _limits(limits)
    agenda_known = bool(previous.agenda_items) or plan.agenda_items
    decisions_known = bool(previous.decisions) or plan.decisions
    example = build_json_example(plan, link_agenda=agenda_known, link_decisions=decisions_known)
    return _render(
        "section.j2",
        template_name=template.name,
        section=_section_specs([section], limits)[0],
        dependency_names=list(dependency_names),
        context_block=build_context_block(previous),
        requirements=render_requirements(limits),
        relationship_rules=relationship_rules(plan, agenda_known, decisions_known, previous),
        structured_outputs=structured_output_lines(plan),
        json_example=_json_block(example),
        transcript=transcript,
    )


def build_evaluation_prompt(
    template: Template,
    transcript: str,
    draft: AnalysisResults,
    strategy: str,
    prompts_used: Optional[Sequence[str]] = None,
    limits: Optional[PromptConfig] = None,
) -> str:
    """Review prompt for the self-evaluation pass; pass no prompts to get the reduced variant."""
    limits = _limits(limits)
    plan = plan_monolithic(template)
    final_example = build_json_example(
        plan,
        section_names=[s.name for s in template.sections],
        link_agenda=plan.agenda_items,
        link_decisions=plan.decisions,
    )
    example = {
        "improvements": ["Specific correction made to the draft"],
        "additions": ["Item that was missing from the draft"],
        "qualityScore": 8,
        "reasoning": "Why the draft earned this score",
        "warnings": ["Anything the reader should double-check"],
        "orphanedItems": {
            "decisionsWithoutAgenda": ["decision-3"],
            "actionItemsWithoutDecisions": ["action-2"],
            "agendaItemsWithoutDecisions": ["agenda-4"],
        },
        "finalResults": final_example,
    }
    sections = [
        {
            "name": s.name,
            "output_format": s.output_format.value,
            "prompt_preview": " ".join(s.prompt.split())[:200],
        }
        for s in template.sections
    ]
    return _render(
        "evaluation.j2",
        template_name=template.name,
        strategy=strategy,
        sections=sections,
        requested_outputs=[o.value for o in template.outputs],
        requirements=render_requirements(limits),
        draft_json=json.dumps(draft.to_payload(), indent=2, ensure_ascii=False),
        prompts_used=list(prompts_used or []),
        json_example=_json_block(example),
        transcript=transcript,
    )


def build_evidence_section_prompt(
    section: TemplateSection,
    transcript: str,
    evidence_lines: Sequence[str] = (),
    limits: Optional[PromptConfig] = None,
) -> str:
    """Plain-text prompt for the single-section path, with excerpts placed first."""
    limits = _limits(limits)
    return _render(
        "evidence_section.j2",
        section=section,
        format_instructions=format_instructions(section.output_format, limits),
        evidence_lines=list(evidence_lines),
        requirements=render_requirements(limits),
        transcript=transcript,
    )
