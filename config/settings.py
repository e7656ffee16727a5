"""
Configuration loader for the voice picking system.
Reads settings from YAML file with environment variable substitution.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


@dataclass
class VoiceConfig:
    language: str = "en"                # "en" | "ja"
    min_confidence: float = 0.6         # utterances below this are never applied
    engine: str = "speech_recognition"  # "speech_recognition" | "scripted"
    speech_rate: float = 0.9            # relative to the engine's default rate
    volume: float = 0.8
    phrase_time_limit: float = 5.0


@dataclass
class PickingConfig:
    zero_quantity_policy: str = "reject"   # "reject" | "skip"
    enforce_stock_check: bool = False


@dataclass
class GatewayConfig:
    backend: str = "memory"             # "memory" | "file" | "rest"
    data_dir: str = "./data"            # directory for file backend
    latency_ms: int = 0                 # simulated latency for memory/file backends
    seed_demo_data: bool = True
    base_url: str = ""
    auth_type: str = "bearer"
    auth_credentials: dict[str, Any] = field(default_factory=dict)
    endpoints: dict[str, str] = field(default_factory=dict)
    timeout_s: float = 10.0
    connect_retries: int = 0            # extra attempts on connection failure only


@dataclass
class Settings:
    app_name: str = "VoicePick"
    debug: bool = False
    warehouse_id: str = "1"
    worker_id: str = "1"
    voice: VoiceConfig = field(default_factory=VoiceConfig)
    picking: PickingConfig = field(default_factory=PickingConfig)
    gateway: GatewayConfig = field(default_factory=GatewayConfig)


_settings: Optional[Settings] = None


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    pattern = re.compile(r'\$\{(\w+)\}')
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))
    return pattern.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "VOICEPICK_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = raw.get("debug", settings.debug)
        settings.warehouse_id = str(raw.get("warehouse_id", settings.warehouse_id))
        settings.worker_id = str(raw.get("worker_id", settings.worker_id))

        if "voice" in raw:
            v = raw["voice"]
            settings.voice = VoiceConfig(
                language=v.get("language", "en"),
                min_confidence=float(v.get("min_confidence", 0.6)),
                engine=v.get("engine", "speech_recognition"),
                speech_rate=float(v.get("speech_rate", 0.9)),
                volume=float(v.get("volume", 0.8)),
                phrase_time_limit=float(v.get("phrase_time_limit", 5.0)),
            )

        if "picking" in raw:
            p = raw["picking"]
            settings.picking = PickingConfig(
                zero_quantity_policy=p.get("zero_quantity_policy", "reject"),
                enforce_stock_check=bool(p.get("enforce_stock_check", False)),
            )

        if "gateway" in raw:
            gw = raw["gateway"]
            settings.gateway = GatewayConfig(
                backend=gw.get("backend", "memory"),
                data_dir=gw.get("data_dir", "./data"),
                latency_ms=int(gw.get("latency_ms", 0)),
                seed_demo_data=bool(gw.get("seed_demo_data", True)),
                base_url=gw.get("base_url", ""),
                auth_type=gw.get("auth_type", "bearer"),
                auth_credentials=gw.get("auth_credentials", {}),
                endpoints=gw.get("endpoints", {}),
                timeout_s=float(gw.get("timeout_s", 10.0)),
                connect_retries=int(gw.get("connect_retries", 0)),
            )

    if settings.picking.zero_quantity_policy not in ("reject", "skip"):
        raise ValueError(
            f"Invalid zero_quantity_policy '{settings.picking.zero_quantity_policy}'"
        )

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings
