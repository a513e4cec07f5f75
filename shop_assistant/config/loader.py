"""
Configuration management and loading.

Loads assistant settings from an optional YAML file and applies
environment variable overrides on top. Everything is fixed at process
start.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

import yaml

from ..core.pricing import to_money

ENV_PREFIX = "SHOP_ASSISTANT_"


class ProviderKind(Enum):
    """Supported generation providers."""
    OPENAI = "openai"
    MOCK = "mock"


@dataclass(frozen=True)
class BudgetConfig:
    """Global spend ceiling and provider rates (dollars per 1K tokens)."""
    ceiling: Decimal = Decimal("5.00")
    input_rate_per_1k: Decimal = Decimal("0.0005")
    output_rate_per_1k: Decimal = Decimal("0.0015")

    def __post_init__(self):
        """Validate budget values."""
        if self.ceiling <= 0:
            raise ValueError("budget ceiling must be > 0")
        if self.input_rate_per_1k < 0:
            raise ValueError("input_rate_per_1k must be >= 0")
        if self.output_rate_per_1k < 0:
            raise ValueError("output_rate_per_1k must be >= 0")


@dataclass(frozen=True)
class GenerationConfig:
    """Text-generation provider settings."""
    provider: ProviderKind = ProviderKind.OPENAI
    model: str = "gpt-3.5-turbo"
    timeout_seconds: float = 15.0
    max_completion_tokens: int = 500
    temperature: float = 0.7

    def __post_init__(self):
        """Validate generation values."""
        if not self.model or not self.model.strip():
            raise ValueError("model cannot be empty")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        if self.max_completion_tokens <= 0:
            raise ValueError("max_completion_tokens must be > 0")
        if not 0 <= self.temperature <= 2:
            raise ValueError("temperature must be between 0 and 2")


@dataclass(frozen=True)
class SessionConfig:
    """Conversation history and idle-expiry settings."""
    history_window: int = 20
    ttl_seconds: float = 30 * 60
    sweep_interval_seconds: float = 60.0

    def __post_init__(self):
        """Validate session values."""
        if self.history_window <= 0:
            raise ValueError("history_window must be > 0")
        if self.ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0")
        if self.sweep_interval_seconds <= 0:
            raise ValueError("sweep_interval_seconds must be > 0")


@dataclass(frozen=True)
class RetrievalConfig:
    """Catalog retrieval settings."""
    k: int = 3
    catalog_path: Optional[str] = None

    def __post_init__(self):
        """Validate retrieval values."""
        if self.k <= 0:
            raise ValueError("retrieval k must be > 0")


@dataclass(frozen=True)
class AssistantConfig:
    """Complete assistant configuration."""
    budget: BudgetConfig = field(default_factory=BudgetConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    sessions: SessionConfig = field(default_factory=SessionConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    usage_db_path: Optional[str] = None
    admin_token: Optional[str] = None


def _as_decimal(value: Any, path: str) -> Decimal:
    if isinstance(value, bool):
        raise ValueError(f"'{path}' must be a number")
    try:
        return to_money(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValueError(f"'{path}' must be a number")


def _as_int(value: Any, path: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"'{path}' must be an integer")
    try:
        result = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"'{path}' must be an integer")
    if isinstance(value, float) and value != result:
        raise ValueError(f"'{path}' must be an integer")
    return result


def _as_float(value: Any, path: str) -> float:
    if isinstance(value, bool):
        raise ValueError(f"'{path}' must be a number")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"'{path}' must be a number")


def _as_str(value: Any, path: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"'{path}' must be a string")
    return value


def _as_provider(value: Any, path: str) -> ProviderKind:
    if not isinstance(value, str):
        raise ValueError(f"'{path}' must be a string")
    try:
        return ProviderKind(value.lower())
    except ValueError:
        valid = [kind.value for kind in ProviderKind]
        raise ValueError(f"'{path}' must be one of: {valid}")


# section -> key -> converter
_SCHEMA: Dict[str, Dict[str, Callable[[Any, str], Any]]] = {
    "budget": {
        "ceiling": _as_decimal,
        "input_rate_per_1k": _as_decimal,
        "output_rate_per_1k": _as_decimal,
    },
    "generation": {
        "provider": _as_provider,
        "model": _as_str,
        "timeout_seconds": _as_float,
        "max_completion_tokens": _as_int,
        "temperature": _as_float,
    },
    "sessions": {
        "history_window": _as_int,
        "ttl_seconds": _as_float,
        "sweep_interval_seconds": _as_float,
    },
    "retrieval": {
        "k": _as_int,
        "catalog_path": _as_str,
    },
    "storage": {
        "usage_db_path": _as_str,
    },
    "admin": {
        "token": _as_str,
    },
}

# env var suffix -> (section, key)
ENV_OVERRIDES: Dict[str, tuple] = {
    "BUDGET_CEILING": ("budget", "ceiling"),
    "INPUT_RATE": ("budget", "input_rate_per_1k"),
    "OUTPUT_RATE": ("budget", "output_rate_per_1k"),
    "PROVIDER": ("generation", "provider"),
    "MODEL": ("generation", "model"),
    "GENERATION_TIMEOUT": ("generation", "timeout_seconds"),
    "MAX_COMPLETION_TOKENS": ("generation", "max_completion_tokens"),
    "HISTORY_WINDOW": ("sessions", "history_window"),
    "SESSION_TTL": ("sessions", "ttl_seconds"),
    "RETRIEVAL_K": ("retrieval", "k"),
    "CATALOG_PATH": ("retrieval", "catalog_path"),
    "USAGE_DB_PATH": ("storage", "usage_db_path"),
    "ADMIN_TOKEN": ("admin", "token"),
}


def _parse_sections(raw_config: Mapping[str, Any]) -> Dict[str, Dict[str, Any]]:
    """Validate raw YAML structure and convert every value.

    Raises:
        ValueError: On unknown sections/keys or badly typed values
    """
    unknown_keys = set(raw_config.keys()) - set(_SCHEMA.keys())
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    parsed: Dict[str, Dict[str, Any]] = {}
    for section, data in raw_config.items():
        if data is None:
            continue
        if not isinstance(data, dict):
            raise ValueError(f"'{section}' must be a dictionary")
        schema = _SCHEMA[section]
        unknown_section_keys = set(data.keys()) - set(schema.keys())
        if unknown_section_keys:
            raise ValueError(f"Unknown keys in {section}: {unknown_section_keys}")
        parsed[section] = {
            key: schema[key](value, f"{section}.{key}")
            for key, value in data.items()
        }
    return parsed


def _env_sections(env: Mapping[str, str]) -> Dict[str, Dict[str, Any]]:
    """Collect overrides from ``SHOP_ASSISTANT_*`` environment variables."""
    parsed: Dict[str, Dict[str, Any]] = {}
    for suffix, (section, key) in ENV_OVERRIDES.items():
        name = ENV_PREFIX + suffix
        value = env.get(name)
        if value is None or value == "":
            continue
        converter = _SCHEMA[section][key]
        parsed.setdefault(section, {})[key] = converter(value, name)
    return parsed


def build_config(sections: Mapping[str, Mapping[str, Any]]) -> AssistantConfig:
    """Build an AssistantConfig from already-converted section values."""
    storage = sections.get("storage", {})
    admin = sections.get("admin", {})
    return AssistantConfig(
        budget=BudgetConfig(**sections.get("budget", {})),
        generation=GenerationConfig(**sections.get("generation", {})),
        sessions=SessionConfig(**sections.get("sessions", {})),
        retrieval=RetrievalConfig(**sections.get("retrieval", {})),
        usage_db_path=storage.get("usage_db_path"),
        admin_token=admin.get("token") or None
    )


def load_config(
    path: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None
) -> AssistantConfig:
    """Load and validate assistant configuration.

    Strict validation ensures no silent misconfigurations that could
    lead to unexpected spend.

    Args:
        path: Optional path to a YAML configuration file
        env: Environment mapping for overrides (defaults to ``os.environ``)

    Returns:
        Validated AssistantConfig object

    Raises:
        FileNotFoundError: If a config path is given but doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    sections: Dict[str, Dict[str, Any]] = {}

    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Assistant config file not found: {path}")

        with open(config_path, 'r', encoding='utf-8') as f:
            try:
                raw_config = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

        if raw_config is not None:
            if not isinstance(raw_config, dict):
                raise ValueError("Configuration file must contain a mapping")
            sections = _parse_sections(raw_config)

    overrides = _env_sections(os.environ if env is None else env)
    for section, values in overrides.items():
        sections.setdefault(section, {}).update(values)

    return build_config(sections)

