"""
Configuration management using Pydantic models loaded from YAML.
"""

from pathlib import Path
from typing import List, Optional

import pendulum
import yaml
from pydantic import BaseModel, Field, field_validator

ALLOWED_GRANULARITIES = (5, 10, 15, 20, 30, 60)


def _validate_granularity(value: int) -> int:
    if value not in ALLOWED_GRANULARITIES:
        allowed = ", ".join(str(v) for v in ALLOWED_GRANULARITIES)
        raise ValueError(
            f"Slot granularity must be one of: {allowed} (must be a divisor of 60), got {value}"
        )
    return value


def _validate_timezone(value: str) -> str:
    try:
        pendulum.timezone(value)
    except (ValueError, KeyError) as exc:
        raise ValueError(f"Unknown timezone: {value!r}") from exc
    return value


class SchedulingDefaults(BaseModel):
    """Engine-wide defaults for slot search and booking."""
    slot_granularity_minutes: int = 15
    past_tolerance_minutes: int = 5
    lookup_timeout_seconds: float = 5.0
    max_concurrent_lookups: int = 8
    transaction_timeout_seconds: float = 10.0
    # 0 allows cancelling up to the start
    min_cancel_notice_minutes: int = 0

    @field_validator("slot_granularity_minutes")
    @classmethod
    def validate_granularity(cls, value: int) -> int:
        """Ensure the grid divides an hour."""
        return _validate_granularity(value)

    @field_validator("past_tolerance_minutes", "min_cancel_notice_minutes")
    @classmethod
    def validate_minutes(cls, value: int) -> int:
        if value < 0:
            raise ValueError("Minute settings must not be negative")
        return value

    @field_validator("lookup_timeout_seconds", "transaction_timeout_seconds")
    @classmethod
    def validate_timeouts(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Timeouts must be greater than zero")
        return value

    @field_validator("max_concurrent_lookups")
    @classmethod
    def validate_concurrency(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_concurrent_lookups must be at least 1")
        return value


class BranchConfig(BaseModel):
    """Branch (physical location) settings."""
    id: str
    name: str = ""
    timezone: str = "America/Sao_Paulo"
    slot_granularity_minutes: Optional[int] = None

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        return _validate_timezone(value)

    @field_validator("slot_granularity_minutes")
    @classmethod
    def validate_granularity(cls, value: Optional[int]) -> Optional[int]:
        if value is None:
            return value
        return _validate_granularity(value)

    def display_name(self) -> str:
        return self.name or self.id


class RosterApiConfig(BaseModel):
    """Connection settings for the roster administration API."""
    base_url: str
    token: str = ""
    timeout_seconds: float = 10.0

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"base_url must be an http(s) URL, got {value!r}")
        return value.rstrip("/")


class AppConfig(BaseModel):
    """Application configuration."""
    timezone: str = "America/Sao_Paulo"
    defaults: SchedulingDefaults = Field(default_factory=SchedulingDefaults)
    branches: List[BranchConfig] = Field(default_factory=list)
    roster_api: Optional[RosterApiConfig] = None
    fixture_path: Optional[Path] = None

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        return _validate_timezone(value)

    @field_validator("branches")
    @classmethod
    def validate_branches(cls, value: List[BranchConfig]) -> List[BranchConfig]:
        """Ensure branch ids are unique."""
        seen: set[str] = set()
        for branch in value:
            if branch.id in seen:
                raise ValueError(f"Duplicate branch id detected: {branch.id}")
            seen.add(branch.id)
        return value

    @classmethod
    def load_from_yaml(cls, config_path: Path) -> "AppConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to the YAML config file

        Returns:
            AppConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Please create a config.yaml file. See config.example.yaml for reference."
            )

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError("Config file must contain a mapping at the root level.")

        config = cls(**data)

        # Relative fixture paths are resolved against the config file.
        if config.fixture_path is not None and not config.fixture_path.is_absolute():
            config.fixture_path = config_path.parent / config.fixture_path

        return config

    def get_branch(self, branch_id: str) -> BranchConfig | None:
        """Find a branch by id."""
        for branch in self.branches:
            if branch.id == branch_id:
                return branch
        return None

    def granularity_for(self, branch_id: str) -> int:
        """Branch slot granularity, falling back to the engine default."""
        branch = self.get_branch(branch_id)
        if branch and branch.slot_granularity_minutes:
            return branch.slot_granularity_minutes
        return self.defaults.slot_granularity_minutes

    def timezone_for(self, branch_id: str) -> str:
        """Branch timezone, falling back to the configured default."""
        branch = self.get_branch(branch_id)
        if branch:
            return branch.timezone
        return self.timezone


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    # Look for config.yaml in current directory
    current_dir = Path.cwd()
    config_path = current_dir / "config.yaml"

    if not config_path.exists():
        # Try in the project root (parent of the package)
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config.yaml"

    return config_path
