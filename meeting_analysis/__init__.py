"""
Meeting Analysis Engine - template-driven transcript analysis.
"""

from meeting_analysis.models import *
from meeting_analysis.config import get_config, set_config, reset_config
from meeting_analysis.llm_client import LLMClient, get_llm_client, reset_llm_client
from meeting_analysis.orchestrator import (
    AnalysisOrchestrator,
    execute_analysis,
    get_strategy_recommendation,
    select_strategy,
)
from meeting_analysis.transcript_processor import get_transcript_processor, reset_transcript_processor

__version__ = "1.0.0"
__all__ = [
    "get_config",
    "set_config",
    "reset_config",
    "LLMClient",
    "get_llm_client",
    "reset_llm_client",
    "AnalysisOrchestrator",
    "execute_analysis",
    "get_strategy_recommendation",
    "select_strategy",
    "get_transcript_processor",
    "reset_transcript_processor",
]
