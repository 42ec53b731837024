"""
Evidence extraction and the single-section analysis path.

Segments are ranked against a section's keywords with TF-IDF blended with a
plain keyword-coverage score; the best excerpts are fed to the model ahead of
the section instructions and returned alongside the generated content.
"""

import asyncio
import math
import re
from collections import Counter
from typing import Dict, List, Optional, Sequence, Tuple

from loguru import logger

from meeting_analysis.config import AppConfig, PromptConfig, get_config
from meeting_analysis.llm_client import LLMClient, get_llm_client
from meeting_analysis.models import (
    AnalysisSection,
    Evidence,
    Quote,
    TemplateSection,
    TokenUsage,
    TranscriptSegment,
)
from meeting_analysis.prompt_builder import SECTION_TEXT_SYSTEM_PROMPT, build_evidence_section_prompt
from meeting_analysis.utils.timestamps import format_timestamp

STOP_WORDS = frozenset({
    'a', 'an', 'and', 'are', 'as', 'at', 'be', 'by', 'for', 'from',
    'has', 'he', 'in', 'is', 'it', 'its', 'of', 'on', 'that', 'the',
    'to', 'was', 'will', 'with', 'we', 'you', 'your', 'this', 'they',
    'but', 'or', 'if', 'not', 'what', 'when', 'where', 'who', 'why',
    'how', 'can', 'could', 'should', 'would', 'do', 'does', 'did',
    'our', 'their', 'there', 'them', 'have', 'had', 'been', 'were',
})

# Words common to section instructions that say nothing about the topic
INSTRUCTION_WORDS = frozenset({
    'list', 'identify', 'summarize', 'summarise', 'describe', 'extract', 'provide',
    'include', 'including', 'each', 'any', 'all', 'key', 'main', 'discussed', 'meeting',
})

TFIDF_WEIGHT = 0.7
COVERAGE_WEIGHT = 0.3

_PUNCT_RE = re.compile(r"[^\w\s]")
_QUOTED_RE = re.compile(r'"([^"]+)"')


def extract_keywords(text: str) -> List[str]:
    """Unique lowercase words longer than two characters, stop-words removed, in first-seen order."""
    words = _PUNCT_RE.sub(" ", (text or "").lower()).split()
    seen: Dict[str, None] = {}
    for word in words:
        if len(word) > 2 and word not in STOP_WORDS:
            seen.setdefault(word, None)
    return list(seen)


def extract_prompt_keywords(prompt: str) -> List[str]:
    """Quoted phrases from a section prompt followed by its topical keywords."""
    phrases = [p.strip() for p in _QUOTED_RE.findall(prompt or "") if p.strip()]
    keywords = [k for k in extract_keywords(prompt) if k not in INSTRUCTION_WORDS]
    return list(dict.fromkeys(phrases + keywords))


def _inverse_document_frequency(segments: Sequence[TranscriptSegment]) -> Dict[str, float]:
    doc_freq: Counter = Counter()
    for segment in segments:
        doc_freq.update(set(extract_keywords(segment.text)))
    total = len(segments)
    return {term: math.log(total / count) for term, count in doc_freq.items()}


def _tfidf_score(segment: TranscriptSegment, query: Sequence[str], idf: Dict[str, float]) -> float:
    # Term frequency counts repeats, so tokenize without the uniqueness pass
    terms = [w for w in _PUNCT_RE.sub(" ", segment.text.lower()).split()
             if len(w) > 2 and w not in STOP_WORDS]
    if not terms:
        return 0.0
    counts = Counter(terms)
    return sum((counts[k] / len(terms)) * idf.get(k, 0.0) for k in query)


def _coverage_score(segment: TranscriptSegment, keywords: Sequence[str]) -> float:
    text = segment.text.lower()
    hits = sum(text.count(k.lower()) for k in keywords if k)
    return hits / max(len(segment.text.split()), 1)


def score_segments(segments: Sequence[TranscriptSegment],
                   keywords: Sequence[str]) -> List[Tuple[TranscriptSegment, float]]:
    """Raw blended score for every segment, in segment order."""
    query = [term for k in keywords for term in extract_keywords(k)]
    if not segments or not query:
        return []
    idf = _inverse_document_frequency(segments)
    return [
        (seg, TFIDF_WEIGHT * _tfidf_score(seg, query, idf) + COVERAGE_WEIGHT * _coverage_score(seg, keywords))
        for seg in segments
    ]


def extract_evidence(
    segments: Sequence[TranscriptSegment],
    keywords: Sequence[str],
    max_evidence: int = 5,
    min_relevance: float = 0.0,
) -> List[Evidence]:
    """
    Rank segments against `keywords` and return the strongest excerpts.

    Relevance is normalised against the best score, so the top excerpt is 1.0.
    """
    scored = [(seg, score) for seg, score in score_segments(segments, keywords) if score > 0]
    if not scored:
        return []
    scored.sort(key=lambda pair: pair[1], reverse=True)
    top = scored[:max_evidence]
    best = top[0][1]

    evidence = []
    for seg, score in top:
        relevance = min(score / best, 1.0)
        if relevance < min_relevance:
            continue
        evidence.append(Evidence(text=seg.text, start=seg.start, end=seg.end, relevance=round(relevance, 4)))
    return evidence


def _normalise_for_match(text: str) -> str:
    return " ".join(_PUNCT_RE.sub("", (text or "").lower()).split())


def find_matching_segment(text: str, segments: Sequence[TranscriptSegment],
                          threshold: float = 0.6) -> Optional[TranscriptSegment]:
    """
    Locate the segment a quote came from.

    A normalised substring hit wins outright; otherwise the segment with the
    highest share of matching words (longer than three characters) above
    `threshold` is returned.
    """
    needle = _normalise_for_match(text)
    if len(needle) < 5 or not segments:
        return None

    words = needle.split()
    best: Optional[TranscriptSegment] = None
    best_score = 0.0
    for seg in segments:
        haystack = _normalise_for_match(seg.text)
        if needle in haystack:
            return seg
        matched = sum(1 for w in words if len(w) > 3 and w in haystack)
        score = matched / len(words)
        if score > threshold and score > best_score:
            best, best_score = seg, score
    return best


def ground_quotes(quotes: Sequence[Quote], segments: Sequence[TranscriptSegment],
                  threshold: float = 0.6) -> List[Quote]:
    """Copies of `quotes` with timestamp and missing speaker taken from the matching segment."""
    grounded = []
    for quote in quotes:
        seg = find_matching_segment(quote.text, segments, threshold)
        if seg is None:
            grounded.append(Quote(**quote.dict()))
            continue
        grounded.append(Quote(text=quote.text, speaker=quote.speaker or seg.speaker, timestamp=seg.start))
    return grounded


def format_evidence_line(evidence: Evidence) -> str:
    return f"[{format_timestamp(evidence.start)}] {evidence.text}"


def generate_section_prompt(section: TemplateSection, transcript: str, evidence: Sequence[Evidence],
                            limits: Optional[PromptConfig] = None) -> str:
    return build_evidence_section_prompt(
        section, transcript, [format_evidence_line(e) for e in evidence], limits
    )


async def analyze_section(
    section: TemplateSection,
    transcript: str,
    segments: Sequence[TranscriptSegment] = (),
    llm_client: Optional[LLMClient] = None,
    config: Optional[AppConfig] = None,
    cancel_event: Optional[asyncio.Event] = None,
) -> Tuple[AnalysisSection, TokenUsage]:
    """
    Analyze one section outside the orchestrated strategies.

    Evidence is only gathered when the section asks for it and segments
    are available.
    """
    config = config or get_config()
    llm_client = llm_client or get_llm_client()

    evidence: List[Evidence] = []
    if section.extract_evidence and segments:
        keywords = extract_prompt_keywords(section.prompt) + extract_keywords(section.name)
        evidence = extract_evidence(
            segments, keywords, config.evidence.max_evidence, config.evidence.min_relevance
        )
        logger.info(f'Section "{section.name}": {len(evidence)} evidence excerpt(s) from {len(segments)} segments')

    prompt = generate_section_prompt(section, transcript, evidence, config.prompts)
    content, usage = await llm_client.complete_text(
        prompt,
        SECTION_TEXT_SYSTEM_PROMPT,
        f'section "{section.name}"',
        transcript=transcript,
        temperature=config.analysis.temperature_for("basic"),
        cancel_event=cancel_event,
    )
    return AnalysisSection(name=section.name, content=content, evidence=evidence), usage
