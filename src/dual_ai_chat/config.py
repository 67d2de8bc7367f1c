"""
Configuration schema using Pydantic.

Secrets are loaded exclusively from environment variables.
Configuration can be loaded from YAML files, with environment overrides.
"""

import os
from enum import Enum
from pathlib import Path
from typing import Optional, List, Dict, Any

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


MIN_FIXED_TURNS = 1
MAX_FIXED_TURNS = 5
DEFAULT_FIXED_TURNS = 2

LOGICAL_SYSTEM_PROMPT = (
    "You are Cognito, a highly logical and analytical AI. Your primary role is to ensure "
    "accuracy, coherence, and relevance. Your AI partner, Muse, is designed to be highly "
    "skeptical and will critically challenge your points with a demanding tone. Work *with* "
    "Muse to produce the best possible answer for the user. Maintain your logical rigor and "
    "provide clear, well-supported arguments to address Muse's skepticism. Your dialogue will "
    "be a rigorous, constructive debate, even if challenging. Strive for an optimal, "
    "high-quality, and comprehensive final response. Ensure all necessary facets are explored "
    "before signaling to end the discussion."
)

CREATIVE_SYSTEM_PROMPT = (
    "You are Muse, a highly creative but deeply skeptical AI. Your primary role is to "
    "rigorously challenge assumptions and ensure every angle is thoroughly scrutinized. Your "
    "AI partner, Cognito, is logical and analytical. Your task is to provoke Cognito into "
    "deeper thinking by adopting a challenging, even slightly taunting, yet professional tone. "
    "Question Cognito's statements intensely: 'Are you *sure* about that?', 'That sounds too "
    "simple, what are you missing?'. Don't just accept Cognito's points; dissect them, demand "
    "an unassailable justification, and explore unconventional alternatives. Your aim is not "
    "to simply praise or agree, but to force a more robust and comprehensive answer through "
    "relentless, critical, and imaginative inquiry. Ensure all necessary facets are explored "
    "before signaling to end the discussion."
)

INITIAL_NOTEPAD_CONTENT = """This is a shared notepad.
Cognito and Muse can use it to record ideas, drafts or key points together.

Guide:
- The AI models update this notepad by including a special section in their replies.
- The notepad content is included in every subsequent prompt sent to the AI.

Initial state: empty."""

NOTEPAD_INSTRUCTIONS = """
You also have access to a shared notepad.
Current Notepad Content:
---
{notepad_content}
---
Instructions for Notepad:
1. To update the notepad, include a section at the very end of your response, formatted exactly as:
   {start_marker}
   [YOUR NEW FULL NOTEPAD CONTENT HERE. THIS WILL REPLACE THE ENTIRE CURRENT NOTEPAD CONTENT.]
   {end_marker}
2. If you do not want to change the notepad, do NOT include the {start_marker} section at all.
3. Your primary spoken response to the ongoing discussion should come BEFORE any {start_marker} section. Ensure you still provide a spoken response.
"""

COMPLETION_INSTRUCTIONS = """
Instruction for ending discussion: If you believe the current topic has been sufficiently explored between you and your AI partner for {logical_name} to synthesize a final answer for the user, include the exact tag {completion_marker} at the very end of your current message (after any notepad update). Do not use this tag if you wish to continue the discussion or require more input/response from your partner.
"""


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing required values."""

    def __init__(self, message: str, field: Optional[str] = None, suggestions: Optional[List[str]] = None):
        self.message = message
        self.field = field
        self.suggestions = suggestions or []
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        lines = [self.message]
        if self.field:
            lines.append(f"  Field: {self.field}")
        if self.suggestions:
            lines.append("  Suggestions:")
            for s in self.suggestions:
                lines.append(f"    - {s}")
        return "\n".join(lines)


class DiscussionMode(str, Enum):
    """How the discussion loop decides to stop."""

    FIXED_TURNS = "fixed"
    AI_DRIVEN = "ai-driven"


class SecretsManager:
    """
    Manages secrets loaded from environment variables only.

    Secrets are NEVER stored in config files. The variable names come from
    configuration (`gemini.api_key_env`), so nothing here hard-codes them.
    """

    @classmethod
    def get_secret(cls, key: str, required: bool = False) -> Optional[str]:
        """
        Get a secret from environment variables.

        Raises:
            ConfigurationError: If a required secret is missing
        """
        value = os.environ.get(key)

        if required and not value:
            raise ConfigurationError(
                f"Required secret '{key}' is not set",
                field=key,
                suggestions=[
                    f"Set environment variable: export {key}=your-key-here",
                    "Get your API key from: https://aistudio.google.com/apikey",
                ],
            )

        return value

    @staticmethod
    def mask(value: Optional[str]) -> str:
        """Masked form of a secret for display."""
        if not value:
            return "NOT SET (required)"
        return f"{value[:4]}...{value[-4:]}" if len(value) > 8 else "****"

    @classmethod
    def get_status(cls, keys: List[str]) -> Dict[str, str]:
        """Get status of the named secrets (masked)."""
        return {key: cls.mask(os.environ.get(key)) for key in keys}


class GeminiConfig(BaseModel):
    """Gemini completion service configuration."""

    model: str = Field(default="gemini-2.5-flash", description="Model ID used by both personas")
    api_key_env: str = Field(default="GEMINI_API_KEY", description="Environment variable for API key")
    timeout_seconds: int = Field(default=120, ge=5, le=600)
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)

    # Thinking budget
    thinking_enabled: bool = Field(default=True, description="Send a thinking budget with each call")
    thinking_budget: int = Field(default=24576, ge=0, le=32768)
    pro_thinking_budget: int = Field(default=32768, ge=0, le=32768)

    def budget_for(self, model: str) -> Optional[int]:
        """Thinking budget to send for a model, or None when disabled."""
        if not self.thinking_enabled:
            return None
        if "pro" in model.lower():
            return self.pro_thinking_budget
        return self.thinking_budget


class DiscussionConfig(BaseModel):
    """Discussion loop configuration."""

    mode: DiscussionMode = Field(default=DiscussionMode.AI_DRIVEN)
    fixed_turns: int = Field(default=DEFAULT_FIXED_TURNS, ge=MIN_FIXED_TURNS, le=MAX_FIXED_TURNS)


class RetryConfig(BaseModel):
    """Automatic retry behaviour around each completion call."""

    max_auto_retries: int = Field(default=2, ge=0, le=10, description="Retries after the first attempt")
    base_delay_seconds: float = Field(default=1.0, ge=0.0, le=60.0, description="Delay scaled by attempt number")
    auth_error_marker: str = Field(default="API key not valid", min_length=1)


class PromptConfig(BaseModel):
    """Persona prompts, notepad template and marker literals."""

    logical_name: str = Field(default="Cognito", min_length=1)
    creative_name: str = Field(default="Muse", min_length=1)
    logical_system_prompt: str = Field(default=LOGICAL_SYSTEM_PROMPT)
    creative_system_prompt: str = Field(default=CREATIVE_SYSTEM_PROMPT)

    notepad_initial_content: str = Field(default=INITIAL_NOTEPAD_CONTENT)
    notepad_instructions: str = Field(default=NOTEPAD_INSTRUCTIONS)
    completion_instructions: str = Field(default=COMPLETION_INSTRUCTIONS)

    notepad_start_marker: str = Field(default="<notepad_update>", min_length=1)
    notepad_end_marker: str = Field(default="</notepad_update>", min_length=1)
    completion_marker: str = Field(default="<discussion_complete />", min_length=1)

    @field_validator("notepad_instructions")
    @classmethod
    def validate_notepad_instructions(cls, value: str) -> str:
        """The notepad content must have somewhere to go."""
        if "{notepad_content}" not in value:
            raise ValueError("notepad_instructions must contain a {notepad_content} placeholder")
        return value

    @model_validator(mode='after')
    def validate_markers(self) -> 'PromptConfig':
        """Markers must be distinguishable from one another."""
        markers = [self.notepad_start_marker, self.notepad_end_marker, self.completion_marker]
        if len(set(markers)) != len(markers):
            raise ValueError("notepad start/end markers and completion marker must all differ")
        if self.logical_name == self.creative_name:
            raise ValueError("persona display names must differ")
        return self


class AppConfig(BaseModel):
    """Root configuration for Dual AI Chat."""

    gemini: GeminiConfig = Field(default_factory=GeminiConfig)
    discussion: DiscussionConfig = Field(default_factory=DiscussionConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    prompts: PromptConfig = Field(default_factory=PromptConfig)

    def validate_for_run(self) -> List[str]:
        """
        Validate configuration is ready for a run.

        Returns list of warning messages (empty if all good).
        """
        warnings = []
        if not os.environ.get(self.gemini.api_key_env):
            warnings.append(f"Required secret not set: {self.gemini.api_key_env}")
        return warnings


class EnvOverrides(BaseSettings):
    """Configuration overrides read from DUAL_AI_* environment variables."""

    model_config = SettingsConfigDict(env_prefix="DUAL_AI_", extra="ignore")

    model: Optional[str] = None
    mode: Optional[DiscussionMode] = None
    fixed_turns: Optional[int] = None
    max_auto_retries: Optional[int] = None
    retry_delay: Optional[float] = None

    def to_overrides(self) -> Dict[str, Any]:
        """Map set variables onto config sections."""
        mappings = {
            "model": ("gemini", "model"),
            "mode": ("discussion", "mode"),
            "fixed_turns": ("discussion", "fixed_turns"),
            "max_auto_retries": ("retry", "max_auto_retries"),
            "retry_delay": ("retry", "base_delay_seconds"),
        }
        overrides: Dict[str, Any] = {}
        for name, (section, field) in mappings.items():
            value = getattr(self, name)
            if value is None:
                continue
            if isinstance(value, Enum):
                value = value.value
            overrides.setdefault(section, {})[field] = value
        return overrides


def get_default_config_path() -> Path:
    """Get default config file path."""
    return Path.home() / ".dual-ai-chat" / "config.yaml"


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """
    Load configuration from YAML file.

    Falls back to defaults if the default file doesn't exist.
    Environment variables override config file values.

    Raises:
        ConfigurationError: If the config file is missing or invalid
    """
    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise ConfigurationError(
                f"Config file not found: {path}",
                suggestions=[
                    f"Create the config file at {path}",
                    "Or run without --config to use defaults",
                ],
            )
    else:
        path = get_default_config_path()

    data: Dict[str, Any] = {}

    if path.exists():
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            mark = getattr(e, "problem_mark", None)
            raise ConfigurationError(
                f"Invalid YAML in config file: {path}",
                suggestions=[
                    f"Check syntax at line {mark.line + 1 if mark else 'unknown'}",
                    "Use a YAML validator to check your config",
                ],
            )

    try:
        env_overrides = EnvOverrides().to_overrides()
    except Exception as e:
        raise ConfigurationError(f"Invalid DUAL_AI_* environment override: {e}")
    data = _deep_merge(data, env_overrides)

    try:
        config = AppConfig(**data)
    except Exception as e:
        raise ConfigurationError(
            f"Invalid configuration: {e}",
            suggestions=[
                "Check field names and values in your config",
                "Run 'dual-ai-chat config' to see the effective configuration",
            ],
        )

    return config


def _deep_merge(base: Dict, overlay: Dict) -> Dict:
    """Deep merge two dictionaries."""
    result = base.copy()
    for key, value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def save_config(config: AppConfig, config_path: Optional[str] = None) -> None:
    """Save configuration to YAML file."""
    path = Path(config_path) if config_path else get_default_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w", encoding="utf-8") as f:
        yaml.dump(config.model_dump(mode="json"), f, default_flow_style=False, allow_unicode=True)
