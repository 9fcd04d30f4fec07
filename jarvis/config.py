"""Configuration loading with environment overrides.

The file is JSON (PyYAML parses it, so a YAML file works as well). Values are
deep-merged over ``DEFAULT_CONFIG``, overridden from the environment and then
frozen: sections become read-only mappings and lists become tuples.
"""

import copy
import logging
import os
from pathlib import Path
from types import MappingProxyType
from collections.abc import Mapping
from typing import Any

import yaml

log = logging.getLogger(__name__)

Config = Mapping[str, Any]

DEFAULT_CONFIG: dict = {
    "jarvis": {
        "name": "JARVIS",
        "wakeWord": "jarvis",
        "wakeWordSensitivity": 0.5,
        "listeningTimeout": 5000,
        "responseTimeout": 30000,
        "maxResponseLength": 500,
        "language": "en-US",
    },
    "audio": {
        "sampleRate": 16000,
        "channels": 1,
        "bitDepth": 16,
        "encoding": "signed-integer",
        "silenceThreshold": 0.5,
        "silenceDuration": 1.0,
        "blocksize": 1600,
        "ringBufferSeconds": 10,
    },
    "system": {
        "logLevel": "info",
        "enableSystemAccess": False,
        "allowedCommands": ["date", "uptime", "whoami", "hostname", "pwd", "ls"],
        "maxCommandLength": 200,
    },
    "ai": {
        "model": "provider-3/gpt-4o-mini",
        "temperature": 0.7,
        "maxTokens": 1000,
        "systemPrompt": (
            "You are JARVIS, a helpful and concise voice assistant. "
            "Your responses will be spoken aloud, so answer in plain sentences "
            "without markdown, lists or links."
        ),
        "enableMemory": True,
        "memoryRetention": 10,
        "apiBase": "https://api.a4f.co/v1",
        "apiKeyEnv": "A4F_API_KEY",
        "timeoutMs": 30000,
        "maxRetries": 2,
        "retryBaseDelayMs": 250,
        "searchPath": "/functions/web_search",
        "imageModel": "provider-4/imagen-3",
    },
    "logging": {
        "level": "info",
        "maxFiles": 5,
        "maxSize": "10m",
        "logToFile": True,
        "logToConsole": True,
        "logDir": "./logs",
    },
    "wake": {
        "engine": "energy",
        "sampleDurationMs": 2000,
        "pollDelayMs": 100,
        "errorBackoffMs": 1000,
        "modelName": "hey_jarvis",
        "threshold": 0.5,
    },
    "speech": {
        "stt": {
            "engine": "simulated",
            "delayMs": 1000,
            "text": "what time is it",
            "modelSize": "base.en",
            "device": "cpu",
            "computeType": "int8",
        },
        "tts": {
            "engine": "simulated",
            "delayMs": 500,
            "bufferBytes": 1000,
            "modelDir": "models/piper",
            "piperVoice": "en_US-lessac-medium",
        },
    },
    "service": {
        "shutdownTimeoutMs": 30000,
        "commandTimeoutGraceMs": 500,
        "earcons": True,
        "earconVolume": 0.3,
    },
    "metrics": {
        "enabled": True,
        "file": "logs/metrics.jsonl",
        "flushInterval": 10,
        "logTranscripts": False,
        "logResponses": False,
    },
}

_INT_ENV_OVERRIDES = {
    "AUDIO_SAMPLE_RATE": ("audio", "sampleRate"),
    "AUDIO_CHANNELS": ("audio", "channels"),
    "MAX_COMMAND_LENGTH": ("system", "maxCommandLength"),
}

_STR_ENV_OVERRIDES = {
    "LOG_LEVEL": ("logging", "level"),
    "LOG_DIR": ("logging", "logDir"),
}


class ConfigError(ValueError):
    """Raised when the configuration cannot be loaded or is invalid."""


def default_config_path(environ: Mapping[str, str] | None = None) -> Path:
    environ = os.environ if environ is None else environ
    if environ.get("JARVIS_CONFIG"):
        return Path(environ["JARVIS_CONFIG"])
    return Path.cwd() / "config" / "jarvis.json"


def _deep_merge(base: dict, override: Mapping) -> dict:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def apply_env_overrides(config: dict, environ: Mapping[str, str]) -> dict:
    """Apply the supported environment variable overrides in place."""
    for var, (section, key) in _INT_ENV_OVERRIDES.items():
        raw = environ.get(var)
        if not raw:
            continue
        try:
            config[section][key] = int(raw)
        except ValueError:
            raise ConfigError(f"{var} must be an integer, got {raw!r}") from None

    raw = environ.get("ENABLE_SYSTEM_ACCESS")
    if raw:
        config["system"]["enableSystemAccess"] = raw == "true"

    for var, (section, key) in _STR_ENV_OVERRIDES.items():
        raw = environ.get(var)
        if raw:
            config[section][key] = raw

    return config


def validate_config(config: Mapping) -> None:
    audio = config["audio"]
    if audio["sampleRate"] <= 0:
        raise ConfigError(f"audio.sampleRate must be positive, got {audio['sampleRate']}")
    if audio["channels"] not in (1, 2):
        raise ConfigError(f"audio.channels must be 1 or 2, got {audio['channels']}")
    if audio["bitDepth"] != 16:
        raise ConfigError(f"audio.bitDepth must be 16, got {audio['bitDepth']}")

    jarvis = config["jarvis"]
    if jarvis["listeningTimeout"] <= 0:
        raise ConfigError("jarvis.listeningTimeout must be positive")
    if jarvis["wakeWordSensitivity"] < 0:
        raise ConfigError("jarvis.wakeWordSensitivity must not be negative")

    if config["ai"]["memoryRetention"] < 0:
        raise ConfigError("ai.memoryRetention must not be negative")

    allowed = config["system"]["allowedCommands"]
    if not isinstance(allowed, (list, tuple)) or not all(isinstance(c, str) for c in allowed):
        raise ConfigError("system.allowedCommands must be a list of strings")


def freeze(value: Any) -> Any:
    """Return a read-only deep copy of *value*."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(v) for v in value)
    return value


def thaw(value: Any) -> Any:
    """Return a mutable deep copy of a frozen config (for tests and overrides)."""
    if isinstance(value, Mapping):
        return {k: thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [thaw(v) for v in value]
    return value


def build_config(overrides: Mapping | None = None, environ: Mapping[str, str] | None = None) -> Config:
    """Merge *overrides* over the defaults, apply env overrides and freeze."""
    merged = _deep_merge(DEFAULT_CONFIG, overrides or {})
    apply_env_overrides(merged, {} if environ is None else environ)
    validate_config(merged)
    return freeze(merged)


def load_config(path: str | Path | None = None, environ: Mapping[str, str] | None = None) -> Config:
    """Load the config file at *path* (default: ``config/jarvis.json``)."""
    environ = os.environ if environ is None else environ
    config_path = Path(path) if path is not None else default_config_path(environ)
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to load configuration from {config_path}: {e}") from e

    if not isinstance(data, Mapping):
        raise ConfigError(f"Configuration root must be an object: {config_path}")

    log.debug("Loaded configuration from %s", config_path)
    return build_config(data, environ)


class ConfigManager:
    """Holds the current configuration; ``reload()`` produces a new instance."""

    def __init__(self, path: str | Path | None = None, environ: Mapping[str, str] | None = None):
        self._path = path
        self._environ = environ
        self._config: Config | None = None

    def load(self) -> Config:
        self._config = load_config(self._path, self._environ)
        return self._config

    def get_config(self) -> Config:
        if self._config is None:
            raise ConfigError("Configuration not loaded")
        return self._config

    def reload(self) -> Config:
        return self.load()
