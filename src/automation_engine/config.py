"""Configuration for the automation engine.

Configuration is loaded from:
- environment variables (prefixed with ``AUTOMATION_``)
- and a local `.env` file (if present)

Durations follow the workflow data model and are expressed in milliseconds.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """Settings for the workflow automation engine.

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `EngineSettings(_env_file=path_to_env)`.
    """

    storage_path: Path = Field(
        default=Path("workflows"),
        description="Directory where workflows.json and intents.json are persisted",
    )
    log_level: str = Field(
        default="INFO",
        description="Root logging level",
    )

    scheduler_period_ms: int = Field(
        default=60000,
        gt=0,
        description="Period of the schedule-trigger tick",
    )
    proactive_period_ms: int = Field(
        default=60000,
        gt=0,
        description="Period of the proactive intent tick",
    )

    default_step_timeout_ms: int = Field(
        default=60000,
        gt=0,
        description="Timeout applied to steps that do not set their own",
    )
    agent_task_timeout_ms: int = Field(
        default=300000,
        gt=0,
        description="How long an agent step waits for its task completion event",
    )
    max_step_transitions: int = Field(
        default=1000,
        gt=0,
        description="Upper bound on steps entered by a single run (guards graph cycles)",
    )

    intent_initial_confidence: float = Field(default=0.6, ge=0.0, le=1.0)
    intent_reinforcement: float = Field(default=0.1, ge=0.0, le=1.0)
    intent_reinforce_overlap: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Share of a new utterance's keywords that must already be known to reinforce",
    )
    intent_match_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    intent_fire_confidence: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Confidence an intent must exceed before it fires proactively",
    )
    intent_cooldown_ms: int = Field(
        default=3600000,
        ge=0,
        description="Minimum time between two proactive firings of the same intent",
    )

    model_config = SettingsConfigDict(
        env_prefix="AUTOMATION_",
        env_file=".env",
        extra="ignore",
    )

    @property
    def workflows_file(self) -> Path:
        """Path where workflow definitions are persisted."""

        return self.storage_path / "workflows.json"

    @property
    def intents_file(self) -> Path:
        """Path where learned intents are persisted."""

        return self.storage_path / "intents.json"
