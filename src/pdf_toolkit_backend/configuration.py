from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf

DEFAULTS_PATH = Path(__file__).resolve().parent / "config" / "defaults.yaml"

CONFIG_ENV_VAR = "PDF_TOOLKIT_CONFIG"


def _as_list(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def _as_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


# Environment variable -> (dotted config key, parser)
ENV_OVERRIDES: Dict[str, Tuple[str, Callable[[str], Any]]] = {
    "PDF_TOOLKIT_DATA_DIR": ("storage.root", str),
    "PDF_TOOLKIT_DB_PATH": ("storage.database", str),
    "PDF_TOOLKIT_JOB_WORKERS": ("jobs.max_workers", int),
    "PDF_TOOLKIT_WAIT_FOR_JOBS": ("jobs.wait_for_completion", _as_bool),
    "PDF_TOOLKIT_OFFICE_CANDIDATES": ("converters.office.candidates", _as_list),
    "PDF_TOOLKIT_COMPRESSION_CANDIDATES": ("converters.compression.candidates", _as_list),
    "PDF_TOOLKIT_TOOL_TIMEOUT": ("converters.timeout_seconds", int),
    "PDF_TOOLKIT_LOG_LEVEL": ("logging.level", str),
}


@lru_cache(maxsize=1)
def _load_default_config() -> DictConfig:
    if not DEFAULTS_PATH.exists():
        raise FileNotFoundError(f"Default config not found at {DEFAULTS_PATH}")
    return OmegaConf.load(DEFAULTS_PATH)


def _env_overrides(environ: Mapping[str, str]) -> DictConfig:
    overrides = OmegaConf.create({})
    for env_name, (key, parse) in ENV_OVERRIDES.items():
        raw = environ.get(env_name)
        if raw is None or not raw.strip():
            continue
        OmegaConf.update(overrides, key, parse(raw), force_add=True)
    return overrides


def load_settings(
    overrides: Optional[Dict[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> DictConfig:
    """
    Build the runtime configuration.

    Layers, lowest precedence first: packaged defaults, the YAML file named by
    ``PDF_TOOLKIT_CONFIG``, ``PDF_TOOLKIT_*`` environment variables (a ``.env``
    file is loaded first), then explicit ``overrides``.

    Unknown keys are rejected because the merged config is in struct mode.
    """
    if environ is None:
        load_dotenv()
        environ = os.environ

    base_container = OmegaConf.to_container(_load_default_config(), resolve=False)
    base = OmegaConf.create(base_container)
    OmegaConf.set_struct(base, True)

    layers = [base]
    config_file = environ.get(CONFIG_ENV_VAR)
    if config_file:
        layers.append(OmegaConf.load(config_file))
    layers.append(_env_overrides(environ))
    if overrides:
        layers.append(OmegaConf.create(overrides))

    return OmegaConf.merge(*layers)  # type: ignore[return-value]


def settings_to_dict(settings: DictConfig) -> Dict[str, Any]:
    return OmegaConf.to_container(settings, resolve=True)  # type: ignore[return-value]
