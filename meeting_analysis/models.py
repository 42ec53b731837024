"""
Data models for the meeting analysis engine.
"""

from typing import Callable, Dict, List, Optional, Union
from enum import Enum
from pydantic import BaseModel, Field, validator
from pydantic.alias_generators import to_camel


# Seconds from the start of the recording, or a clock string the model chose to emit
Timestamp = Union[float, str]

# (current_step, total_steps, label)
ProgressCallback = Callable[[int, int, str], None]


class OutputFormat(str, Enum):
    """Rendering format requested for a template section."""
    BULLET_POINTS = "bullet_points"
    PARAGRAPH = "paragraph"
    TABLE = "table"


class OutputType(str, Enum):
    """Structured outputs a template can request."""
    SUMMARY = "summary"
    ACTION_ITEMS = "action_items"
    DECISIONS = "decisions"
    QUOTES = "quotes"


class AnalysisStrategy(str, Enum):
    """Execution modes for an analysis run."""
    BASIC = "basic"
    BATCHED = "batched"
    CASCADING = "cascading"

    @classmethod
    def parse(cls, value: Union[str, "AnalysisStrategy"]) -> "AnalysisStrategy":
        """Resolve a strategy name, accepting the legacy `hybrid`/`advanced` names."""
        if isinstance(value, cls):
            return value
        name = (value or "").strip().lower()
        aliases = {"hybrid": cls.BATCHED, "advanced": cls.CASCADING}
        if name in aliases:
            return aliases[name]
        try:
            return cls(name)
        except ValueError:
            raise ValueError(f"Unknown analysis strategy: {value!r}") from None


STRATEGY_AUTO = "auto"


class FinishReason(str, Enum):
    """Three-way completion signal from the generation service."""
    OK = "ok"
    CONTENT_FILTERED = "content_filtered"
    LENGTH_TRUNCATED = "length_truncated"


class CamelModel(BaseModel):
    """Base model serialised with camelCase keys on the wire."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        extra = 'ignore'

    def to_payload(self) -> Dict:
        """JSON-ready dict with camelCase keys and unset optionals dropped."""
        return self.dict(by_alias=True, exclude_none=True)


class TokenUsage(BaseModel):
    """Token usage tracking for LLM calls."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    # Echo the max output limit used for this completion (for display/telemetry)
    max_tokens: Optional[int] = None

    def add(self, other: 'TokenUsage') -> 'TokenUsage':
        """Add token usage from another instance."""
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens
        )


class Generation(BaseModel):
    """One completed request to the generation service."""
    text: str = ""
    finish_reason: FinishReason = FinishReason.OK
    token_usage: TokenUsage = Field(default_factory=TokenUsage)


# ---------------------------------------------------------------------------
# Template input
# ---------------------------------------------------------------------------

class TemplateSection(CamelModel):
    """One named unit of a template."""
    id: str
    name: str
    prompt: str
    output_format: OutputFormat = OutputFormat.BULLET_POINTS
    dependencies: List[str] = Field(default_factory=list)
    extract_evidence: bool = False

    @validator('id', 'name')
    def not_blank(cls, v):
        if not v or not v.strip():
            raise ValueError('Section id and name cannot be empty')
        return v


class Template(CamelModel):
    """Ordered set of sections plus the structured outputs requested."""
    name: str
    description: Optional[str] = None
    sections: List[TemplateSection] = Field(default_factory=list)
    outputs: List[OutputType] = Field(default_factory=list)

    def wants(self, output: OutputType) -> bool:
        return output in self.outputs

    @property
    def has_agenda(self) -> bool:
        """True when any section is about the agenda."""
        return any("agenda" in s.name.lower() for s in self.sections)


# ---------------------------------------------------------------------------
# Extracted entities
# ---------------------------------------------------------------------------

class AgendaItem(CamelModel):
    id: str
    topic: str
    timestamp: Optional[Timestamp] = None
    context: Optional[str] = None


class Decision(CamelModel):
    id: str
    decision: str
    timestamp: Timestamp = 0
    context: Optional[str] = None
    agenda_item_ids: Optional[List[str]] = None


class ActionItem(CamelModel):
    id: str
    task: str
    owner: Optional[str] = None
    deadline: Optional[str] = None
    timestamp: Optional[Timestamp] = None
    agenda_item_ids: Optional[List[str]] = None
    decision_ids: Optional[List[str]] = None


class Quote(CamelModel):
    """Notable quote; carries no id and is never cross-referenced."""
    text: str
    speaker: Optional[str] = None
    timestamp: Timestamp = 0


class Evidence(CamelModel):
    """Transcript excerpt supporting a section."""
    text: str
    start: float
    end: float
    relevance: float = Field(ge=0.0, le=1.0)


class AnalysisSection(CamelModel):
    name: str
    content: str
    evidence: List[Evidence] = Field(default_factory=list)


class AnalysisResults(CamelModel):
    """Aggregate result of one analysis run."""
    summary: Optional[str] = None
    sections: List[AnalysisSection] = Field(default_factory=list)
    agenda_items: Optional[List[AgendaItem]] = None
    action_items: Optional[List[ActionItem]] = None
    decisions: Optional[List[Decision]] = None
    quotes: Optional[List[Quote]] = None

    def section_names(self) -> List[str]:
        return [s.name for s in self.sections]


class OrphanedItems(CamelModel):
    decisions_without_agenda: List[str] = Field(default_factory=list)
    action_items_without_decisions: List[str] = Field(default_factory=list)
    agenda_items_without_decisions: List[str] = Field(default_factory=list)


class EvaluationResults(CamelModel):
    """Quality report produced by the self-evaluation pass."""
    improvements: List[str] = Field(default_factory=list)
    additions: List[str] = Field(default_factory=list)
    quality_score: float = Field(ge=0.0, le=10.0)
    reasoning: str
    warnings: Optional[List[str]] = None
    orphaned_items: Optional[OrphanedItems] = None


# ---------------------------------------------------------------------------
# Transcript input
# ---------------------------------------------------------------------------

class TranscriptSegment(CamelModel):
    """A time-aligned segment of the transcript."""
    index: int = 0
    start: float = 0.0
    end: float = 0.0
    text: str
    speaker: Optional[str] = None

    @validator('text')
    def text_not_empty(cls, v):
        if not v or not v.strip():
            raise ValueError('Segment text cannot be empty')
        return v.strip()


class Speaker(BaseModel):
    """Speaker information extracted from transcript."""
    id: str
    name: Optional[str] = None
    segments_count: int = 0
    total_words: int = 0


class ProcessedTranscript(BaseModel):
    """Transcript text plus the segments recovered from it."""
    text: str
    segments: List[TranscriptSegment] = Field(default_factory=list)
    speakers: List[Speaker] = Field(default_factory=list)
    has_speaker_names: bool = False
    has_timestamps: bool = False

    @property
    def duration(self) -> float:
        """Seconds covered by the timestamped segments."""
        if not self.segments:
            return 0.0
        return max(seg.end for seg in self.segments)


# ---------------------------------------------------------------------------
# Run metadata
# ---------------------------------------------------------------------------

class IdRemapping(CamelModel):
    """Record of one duplicate id replaced during post-processing."""
    entity: str
    index: int
    original_id: str
    new_id: str


class ResultComparison(CamelModel):
    """Differences between the draft and the evaluated result."""
    sections_changed: int = 0
    agenda_items_added: int = 0
    decisions_added: int = 0
    action_items_added: int = 0
    relationships_added: int = 0


class StrategyMetadata(CamelModel):
    estimated_duration: str
    api_calls: str
    quality: str
    actual_api_calls: int = 0
    actual_tokens: int = 0
    estimated_input_tokens: int = 0
    was_auto_selected: bool = False
    processing_time: float = 0.0
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    changes: Optional[ResultComparison] = None


class StrategyRecommendation(CamelModel):
    strategy: AnalysisStrategy
    estimated_tokens: int
    reasons: Dict[str, str] = Field(default_factory=dict)


class AnalysisExecutionResult(CamelModel):
    """Everything handed back to the caller after a run."""
    strategy: AnalysisStrategy
    results: AnalysisResults
    draft_results: Optional[AnalysisResults] = None
    evaluation: Optional[EvaluationResults] = None
    prompts_used: List[str] = Field(default_factory=list)
    integrity_warnings: List[str] = Field(default_factory=list)
    id_remappings: List[IdRemapping] = Field(default_factory=list)
    metadata: StrategyMetadata
