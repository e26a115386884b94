"""Environment-backed application configuration."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_MODEL = "gpt-5.1-chat"
DEFAULT_SYSTEM_PROMPT = "Be precise and concise."


class ConfigError(ValueError):
    """Raised when required settings are missing or inconsistent."""


def _to_bool(value: str | None, default: bool = False) -> bool:
    """Convert common env var truthy/falsy values into booleans."""
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


@dataclass(slots=True)
class AppConfig:
    """Runtime settings loaded from environment variables and config files."""

    endpoint: str | None
    api_key: str | None
    model: str
    available_models: list[str] = field(default_factory=list)
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    log_dir: str | None = "logs"
    shell: str | None = None
    command_timeout: float = 30.0
    request_timeout: float = 120.0
    max_rounds: int = 20
    auto_allow_reads: bool = True
    allow_dangerous: bool = False
    working_directory: str | None = None

    @classmethod
    def from_env(cls) -> AppConfig:
        file_config = _load_preferred_file_config()
        azure_from_file = file_config.get("azure")
        azure_config = azure_from_file if isinstance(azure_from_file, dict) else {}

        available_models = _to_model_list(
            os.getenv("AZURE_OPENAI_MODELS") or azure_config.get("models")
        )
        model = (
            os.getenv("AZUREAI_MODEL")
            or _to_optional_string(file_config.get("default_model"))
            or (available_models[0] if available_models else DEFAULT_MODEL)
        )

        return cls(
            endpoint=(
                _to_optional_string(os.getenv("AZURE_OPENAI_ENDPOINT"))
                or _to_optional_string(azure_config.get("endpoint"))
            ),
            api_key=(
                _to_optional_string(os.getenv("AZURE_OPENAI_API_KEY"))
                or _to_optional_string(azure_config.get("api_key"))
            ),
            model=model,
            available_models=available_models,
            system_prompt=(
                os.getenv("AZUREAI_SYSTEM_PROMPT")
                or _to_optional_string(file_config.get("system_prompt"))
                or DEFAULT_SYSTEM_PROMPT
            ),
            log_dir=(
                os.getenv("AZUREAI_LOG_DIR")
                or _to_optional_string(file_config.get("log_dir"))
                or "logs"
            ),
            shell=(
                os.getenv("AZUREAI_SHELL")
                or _to_optional_string(file_config.get("shell"))
            ),
            command_timeout=_to_positive_float(
                os.getenv("AZUREAI_COMMAND_TIMEOUT") or file_config.get("command_timeout"),
                default=30.0,
            ),
            request_timeout=_to_positive_float(
                os.getenv("AZUREAI_REQUEST_TIMEOUT") or file_config.get("request_timeout"),
                default=120.0,
            ),
            max_rounds=_to_positive_int(
                os.getenv("AZUREAI_MAX_ROUNDS") or file_config.get("max_rounds"),
                default=20,
            ),
            auto_allow_reads=_to_bool(
                os.getenv("AZUREAI_AUTO_ALLOW_READS"),
                default=bool(file_config.get("auto_allow_reads", True)),
            ),
            allow_dangerous=_to_bool(
                os.getenv("AZUREAI_ALLOW_DANGEROUS"),
                default=bool(file_config.get("allow_dangerous", False)),
            ),
            working_directory=(
                os.getenv("AZUREAI_CWD")
                or _to_optional_string(file_config.get("cwd"))
            ),
        )

    @property
    def api_url(self) -> str:
        endpoint = (self.endpoint or "").rstrip("/")
        return f"{endpoint}/openai/v1/chat/completions"

    def validate(self) -> None:
        if not self.endpoint:
            raise ConfigError(
                "Azure endpoint not found. Set AZURE_OPENAI_ENDPOINT environment variable"
            )
        if not self.api_key:
            raise ConfigError(
                "Azure API key not found. Set AZURE_OPENAI_API_KEY environment variable"
            )
        if not self.is_known_model(self.model):
            raise ConfigError(
                f"invalid model specified: {self.model}. "
                f"Available: {self.available_models_display()}"
            )

    def is_known_model(self, model: str) -> bool:
        if not self.available_models:
            return True
        return model in self.available_models

    def available_models_display(self) -> str:
        if not self.available_models:
            return "(not configured - set AZURE_OPENAI_MODELS)"
        return ", ".join(self.available_models)


def _to_optional_string(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _to_model_list(value: object) -> list[str]:
    if isinstance(value, str):
        items: list[object] = list(value.split(","))
    elif isinstance(value, list):
        items = value
    else:
        return []
    return [item.strip() for item in items if isinstance(item, str) and item.strip()]


def _load_file_config(path_value: str) -> dict[str, object]:
    path = Path(path_value)
    if not path.exists() or not path.is_file():
        return {}
    try:
        with path.open("r", encoding="utf-8") as fh:
            parsed = json.load(fh)
    except (OSError, json.JSONDecodeError):
        return {}
    if isinstance(parsed, dict):
        return parsed
    return {}


def _load_preferred_file_config() -> dict[str, object]:
    explicit_path = os.getenv("AZUREAI_CONFIG_FILE")
    if explicit_path:
        return _load_file_config(explicit_path)

    shared_config = _load_file_config("azureai.config.json")
    local_override = _load_file_config("azureai.config.local.json")
    return _merge_dicts(shared_config, local_override)


def _merge_dicts(base: dict[str, object], override: dict[str, object]) -> dict[str, object]:
    merged: dict[str, object] = dict(base)
    for key, value in override.items():
        base_value = merged.get(key)
        if isinstance(base_value, dict) and isinstance(value, dict):
            merged[key] = _merge_dicts(base_value, value)
        else:
            merged[key] = value
    return merged


def _to_positive_int(value: object, *, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value if value > 0 else default
    if isinstance(value, str):
        try:
            parsed = int(value.strip())
        except ValueError:
            return default
        return parsed if parsed > 0 else default
    return default


def _to_positive_float(value: object, *, default: float) -> float:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return float(value) if value > 0 else default
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return default
        return parsed if parsed > 0 else default
    return default
