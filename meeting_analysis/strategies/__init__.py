"""
Execution strategies and their registry.
"""

from typing import Dict, Optional, Type, Union

from meeting_analysis.config import AppConfig
from meeting_analysis.llm_client import LLMClient
from meeting_analysis.models import AnalysisStrategy
from meeting_analysis.strategies.base import BaseStrategy, StrategyRun
from meeting_analysis.strategies.basic import BasicStrategy
from meeting_analysis.strategies.batched import BatchedStrategy
from meeting_analysis.strategies.cascading import CascadingStrategy

STRATEGY_CLASSES: Dict[AnalysisStrategy, Type[BaseStrategy]] = {
    AnalysisStrategy.BASIC: BasicStrategy,
    AnalysisStrategy.BATCHED: BatchedStrategy,
    AnalysisStrategy.CASCADING: CascadingStrategy,
}


def get_strategy(strategy: Union[str, AnalysisStrategy], llm_client: Optional[LLMClient] = None,
                 config: Optional[AppConfig] = None) -> BaseStrategy:
    """Instantiate the strategy registered under `strategy` (aliases accepted)."""
    return STRATEGY_CLASSES[AnalysisStrategy.parse(strategy)](llm_client=llm_client, config=config)


__all__ = [
    "BaseStrategy",
    "BasicStrategy",
    "BatchedStrategy",
    "CascadingStrategy",
    "StrategyRun",
    "STRATEGY_CLASSES",
    "get_strategy",
]
