"""
Configuration management for the meeting analysis engine.
"""

import os
from typing import Dict, Any, Optional
from pathlib import Path
from pydantic import BaseModel, Field, validator
from pydantic_settings import BaseSettings
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


class LLMConfig(BaseModel):
    """Configuration for the text-generation service."""
    provider: str = "openai"  # openai | azure
    model: str = Field(default="gpt-4o-mini")
    api_key: Optional[str] = None
    api_base: Optional[str] = None
    api_version: str = "2024-10-21"  # Azure only
    max_completion_tokens: int = 32000
    timeout: int = 300
    max_retries: int = 3
    retry_delay: float = 2.0  # First backoff; doubles on each attempt
    token_warning_threshold: int = 200000
    token_hard_limit: int = 250000
    encoding_name: Optional[str] = "cl100k_base"  # None disables tiktoken fallback lookup

    @validator('api_key', always=True)
    def validate_api_key(cls, v, values):
        # Defer hard validation to the first generation call so the app can boot without a key
        if v:
            return v
        if values.get('provider') == 'azure':
            return os.getenv('AZURE_OPENAI_API_KEY') or None
        return os.getenv('OPENAI_API_KEY') or None

    @validator('model')
    def validate_model(cls, v):
        if not v:
            v = os.getenv('OPENAI_MODEL', 'gpt-4o-mini')
        return v

    @validator('token_hard_limit')
    def hard_limit_above_warning(cls, v, values):
        warning = values.get('token_warning_threshold')
        if warning is not None and v < warning:
            raise ValueError('token_hard_limit must be >= token_warning_threshold')
        return v


class AnalysisConfig(BaseModel):
    """Configuration for strategy selection and the evaluation pass."""
    default_strategy: str = "auto"
    run_evaluation: bool = True
    # Auto-selection thresholds (estimated transcript tokens)
    basic_max_tokens: int = 15000
    batched_max_tokens: int = 50000
    # Sampling temperature per execution mode; None leaves the provider default
    basic_temperature: Optional[float] = 0.3
    batched_temperature: Optional[float] = 0.3
    cascading_temperature: Optional[float] = 0.2
    evaluation_temperature: Optional[float] = 0.3
    include_prompts_in_evaluation: bool = True

    def temperature_for(self, mode: str) -> Optional[float]:
        """Temperature configured for an execution mode or the evaluation pass."""
        return getattr(self, f"{mode}_temperature", None)


class PromptConfig(BaseModel):
    """Formatting limits shared by every prompt builder."""
    max_bullet_points: int = 10
    max_bullet_words: int = 15
    min_paragraph_words: int = 100
    max_paragraph_words: int = 200
    audience: str = "General professional audience; plain language at an 8th grade reading level"


class EvidenceConfig(BaseModel):
    """Configuration for evidence extraction on the single-section path."""
    max_evidence: int = 5
    min_relevance: float = 0.1
    match_threshold: float = 0.6


class WebConfig(BaseModel):
    """Configuration for the HTTP surface."""
    host: str = "0.0.0.0"
    port: int = 5000
    debug: bool = False
    max_content_length: int = 10 * 1024 * 1024  # 10MB


class AppConfig(BaseSettings):
    """Main application configuration."""
    llm: LLMConfig = Field(default_factory=LLMConfig)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    prompts: PromptConfig = Field(default_factory=PromptConfig)
    evidence: EvidenceConfig = Field(default_factory=EvidenceConfig)
    web: WebConfig = Field(default_factory=WebConfig)

    class Config:
        env_file = '.env'
        env_file_encoding = 'utf-8'
        env_prefix = 'MEETING_ANALYSIS_'
        extra = 'ignore'

    @classmethod
    def from_env(cls) -> 'AppConfig':
        """Create configuration from environment variables."""
        config = cls()

        if os.getenv('OPENAI_API_KEY') and config.llm.provider == 'openai':
            config.llm.api_key = os.getenv('OPENAI_API_KEY')

        if os.getenv('OPENAI_MODEL'):
            config.llm.model = os.getenv('OPENAI_MODEL')

        if os.getenv('MEETING_ANALYSIS_PROVIDER'):
            config.llm.provider = os.getenv('MEETING_ANALYSIS_PROVIDER').lower()

        if os.getenv('AZURE_OPENAI_ENDPOINT'):
            config.llm.api_base = os.getenv('AZURE_OPENAI_ENDPOINT')
            if config.llm.provider == 'azure' and os.getenv('AZURE_OPENAI_API_KEY'):
                config.llm.api_key = os.getenv('AZURE_OPENAI_API_KEY')

        if os.getenv('AZURE_OPENAI_API_VERSION'):
            config.llm.api_version = os.getenv('AZURE_OPENAI_API_VERSION')

        if os.getenv('MEETING_ANALYSIS_MAX_COMPLETION_TOKENS'):
            config.llm.max_completion_tokens = int(os.getenv('MEETING_ANALYSIS_MAX_COMPLETION_TOKENS'))

        if os.getenv('MEETING_ANALYSIS_STRATEGY'):
            config.analysis.default_strategy = os.getenv('MEETING_ANALYSIS_STRATEGY').lower()

        if os.getenv('MEETING_ANALYSIS_RUN_EVALUATION'):
            config.analysis.run_evaluation = os.getenv('MEETING_ANALYSIS_RUN_EVALUATION').lower() == 'true'

        return config

    @classmethod
    def from_yaml(cls, path: Path) -> 'AppConfig':
        """Create configuration from YAML file."""
        import yaml

        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return {
            'llm': {**self.llm.dict(), 'api_key': '***' if self.llm.api_key else None},
            'analysis': self.analysis.dict(),
            'prompts': self.prompts.dict(),
            'evidence': self.evidence.dict(),
            'web': self.web.dict(),
        }


# Global configuration instance
_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AppConfig.from_env()
    return _config


def set_config(config: AppConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config


def reset_config() -> None:
    """Reset the global configuration instance."""
    global _config
    _config = None
