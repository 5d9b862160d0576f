"""Configuration loader for Janus."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List
import os
import yaml

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent.parent / "config" / "default.yaml"
USER_CONFIG_PATH = Path.home() / ".config" / "janus" / "config.yaml"

PROVIDER_KEY_ENV = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "gemini": "GEMINI_API_KEY",
}

EXECUTOR_INT_ENV = {
    "max_actions": "JANUS_EXECUTOR_MAX_ACTIONS",
    "max_command_ms": "JANUS_EXECUTOR_MAX_COMMAND_MS",
    "max_file_bytes": "JANUS_EXECUTOR_MAX_FILE_BYTES",
}

EXECUTOR_LIST_ENV = {
    "allowed_commands": "JANUS_EXECUTOR_ALLOW_CMDS",
    "allowed_git_subcommands": "JANUS_EXECUTOR_ALLOW_GIT_SUBCMDS",
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _flag(value: str) -> bool:
    return value.strip().lower() not in ("false", "0", "no", "off")


def _split_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def apply_env_overrides(data: Dict[str, Any], env: Dict[str, str]) -> Dict[str, Any]:
    """Fold environment variables into a raw config dict."""
    data = dict(data)

    context_path = env.get("JANUS_CONTEXT_PATH")
    if context_path:
        data["context_path"] = context_path

    monthly = env.get("JANUS_BUDGET_MONTHLY")
    if monthly:
        try:
            data.setdefault("budget", {})["monthly_usd"] = float(monthly)
        except ValueError:
            pass

    cost_opt = env.get("ENABLE_COST_OPTIMIZATION")
    if cost_opt is not None:
        data.setdefault("router", {})["cost_optimization"] = _flag(cost_opt)

    for provider, var in PROVIDER_KEY_ENV.items():
        key = env.get(var)
        if key:
            providers = data.setdefault("providers", {})
            providers.setdefault(provider, {})["api_key"] = key

    for field_name, var in EXECUTOR_INT_ENV.items():
        raw = env.get(var)
        if raw:
            try:
                data.setdefault("executor", {})[field_name] = int(raw)
            except ValueError:
                pass

    for field_name, var in EXECUTOR_LIST_ENV.items():
        raw = env.get(var)
        if raw:
            data.setdefault("executor", {})[field_name] = _split_list(raw)

    peer = env.get("ENABLE_MODEL_PEER_RATINGS")
    if peer is not None:
        data.setdefault("feedback", {})["peer_ratings"] = _flag(peer)

    oracle_model = env.get("JANUS_ORACLE_MODEL")
    if oracle_model:
        data.setdefault("freshness", {})["oracle_model"] = oracle_model

    oracle_timeout = env.get("JANUS_ORACLE_TIMEOUT_SECONDS")
    if oracle_timeout:
        try:
            data.setdefault("freshness", {})["oracle_timeout_seconds"] = int(oracle_timeout)
        except ValueError:
            pass

    log_level = env.get("JANUS_LOG_LEVEL")
    if log_level:
        data.setdefault("logging", {})["level"] = log_level.upper()

    return data


def load_config() -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    if DEFAULT_CONFIG_PATH.exists():
        data = yaml.safe_load(DEFAULT_CONFIG_PATH.read_text()) or {}
    if USER_CONFIG_PATH.exists():
        override = yaml.safe_load(USER_CONFIG_PATH.read_text()) or {}
        data = _deep_merge(data, override)
    return apply_env_overrides(data, dict(os.environ))


@dataclass
class Config:
    raw: Dict[str, Any]

    @property
    def context_path(self) -> Path:
        return Path(self.raw.get("context_path", "./janus-context"))

    @property
    def budget(self) -> Dict[str, Any]:
        return self.raw.get("budget", {}) or {}

    @property
    def monthly_budget_usd(self) -> float:
        return float(self.budget.get("monthly_usd", 150.0))

    @property
    def router(self) -> Dict[str, Any]:
        return self.raw.get("router", {}) or {}

    @property
    def providers(self) -> Dict[str, Any]:
        return self.raw.get("providers", {}) or {}

    @property
    def provider_keys(self) -> Dict[str, str]:
        keys: Dict[str, str] = {}
        for name in PROVIDER_KEY_ENV:
            entry = self.providers.get(name) or {}
            if isinstance(entry, dict) and entry.get("api_key"):
                keys[name] = str(entry["api_key"])
        return keys

    @property
    def provider_timeout_seconds(self) -> float:
        """Transport timeout for provider HTTP calls. Default 2 minutes."""
        return float(self.providers.get("timeout_seconds", 120))

    @property
    def council(self) -> Dict[str, Any]:
        return self.raw.get("council", {}) or {}

    @property
    def executor(self) -> Dict[str, Any]:
        return self.raw.get("executor", {}) or {}

    @property
    def feedback(self) -> Dict[str, Any]:
        return self.raw.get("feedback", {}) or {}

    @property
    def freshness(self) -> Dict[str, Any]:
        return self.raw.get("freshness", {}) or {}

    @property
    def log_level(self) -> str:
        return str((self.raw.get("logging", {}) or {}).get("level", "INFO")).upper()


def get_config() -> Config:
    return Config(load_config())
