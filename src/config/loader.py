"""YAML configuration loader with environment variable overrides.

Configuration is loaded in layers (later layers override earlier):

  1. config/config.yaml  -- Phase thresholds, retries, splitter tuning
  2. .env file           -- Local developer overrides (not committed)
  3. Environment vars    -- Credentials and log level at deploy time

``load_config`` reads the YAML file first, then deep-merges the
settings-derived values on top.  ``load_iterative_config`` turns the
``iterative`` section into the read-only :class:`IterativeProcessingConfig`
used for the whole run.
"""

from pathlib import Path

import yaml
from pydantic import ValidationError

from src.config.settings import Settings
from src.models.phases import PhaseName
from src.models.processing import (
    DEFAULT_PHASE_CONFIG,
    IterativeProcessingConfig,
    PhaseConfig,
)
from src.utils.errors import ConfigurationError


def load_config(path: str | None = None, settings: Settings | None = None) -> dict:
    """Load YAML config and merge with environment-based Settings.

    Args:
        path: Path to the YAML configuration file. Defaults to
            ``settings.config_path``.
        settings: Settings instance; a fresh one is built when omitted.

    Returns:
        Fully resolved configuration dictionary.

    Raises:
        ConfigurationError: If the file exists but is not valid YAML.
    """
    settings = settings or Settings()
    config_path = Path(path or settings.config_path)
    if config_path.exists():
        try:
            with open(config_path, encoding="utf-8") as f:
                yaml_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {exc}") from exc
    else:
        yaml_config = {}

    env_overrides = {
        "app": {
            "env": settings.app_env,
        },
        "llm": {
            "available_providers": settings.get_available_llm_providers(),
        },
        "music_db": {
            "musicbrainz_app_name": settings.musicbrainz_app_name,
            "musicbrainz_app_version": settings.musicbrainz_app_version,
            "musicbrainz_contact": settings.musicbrainz_contact,
            "discogs_enabled": bool(settings.discogs_user_token),
        },
        "session": {
            "db_path": settings.session_db_path,
        },
        "logging": {
            "level": settings.log_level,
        },
    }

    _deep_merge(yaml_config, env_overrides)
    return yaml_config


def load_iterative_config(config: dict) -> IterativeProcessingConfig:
    """Build the per-phase processing config from the ``iterative`` section.

    Phases missing from the YAML keep their defaults; keys given for a
    phase override only those keys.

    Raises:
        ConfigurationError: On unknown phase names or out-of-range values.
    """
    section = config.get("iterative") or {}
    phases: dict[PhaseName, PhaseConfig] = dict(DEFAULT_PHASE_CONFIG)

    try:
        for raw_name, overrides in (section.get("phases") or {}).items():
            phase = PhaseName(raw_name)
            base = phases.get(phase, PhaseConfig())
            phases[phase] = PhaseConfig.model_validate(
                {**base.model_dump(), **(overrides or {})}
            )

        extra = {
            key: section[key] for key in ("on_low_confidence", "batch_size") if key in section
        }
        return IterativeProcessingConfig(phases=phases, **extra)
    except (ValueError, ValidationError) as exc:
        raise ConfigurationError(f"Invalid iterative processing config: {exc}") from exc


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge overrides into base dict, mutating base in place."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
