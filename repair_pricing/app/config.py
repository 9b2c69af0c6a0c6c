from __future__ import annotations

import json
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml


class AttrDict(dict):
    """Dict with attribute access (x.y)."""
    def __getattr__(self, name: str):
        try:
            return self[name]
        except KeyError as e:
            raise AttributeError(name) from e
    def __setattr__(self, name: str, value: Any) -> None:
        self[name] = value
    def __delattr__(self, name: str) -> None:
        del self[name]


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes", "on"}


DEFAULT_METAL_COMPLEXITY: Dict[str, float] = {
    "gold": 1.0,
    "silver": 0.9,
    "platinum": 1.3,
    "palladium": 1.2,
    "copper": 0.8,
    "brass": 0.7,
    "stainless": 0.8,
    "titanium": 1.4,
    "other": 1.0,
}


# ------------------------------------------------------------------
# DEFAULT_CONFIG with BOTH shapes:
# - Flat, UPPERCASE keys (Flask app.config, database.py)
# - Nested sections (services, scripts)
# ------------------------------------------------------------------
DEFAULT_CONFIG: AttrDict = AttrDict({
    # Flat ---------------------------------
    "DATABASE_URL": os.getenv("DATABASE_URL", "sqlite:///./data/pricing.db"),
    "DATABASE_ECHO": _env_flag("DATABASE_ECHO", "false"),
    "LOG_LEVEL": os.getenv("LOG_LEVEL", "INFO"),
    "CASCADE_MAX_WORKERS": int(os.getenv("CASCADE_MAX_WORKERS", "4")),
    "EXPORT_DIR": os.getenv("EXPORT_DIR", "./data/exports"),
    "SERVER_HOST": os.getenv("SERVER_HOST", "0.0.0.0"),
    "SERVER_PORT": int(os.getenv("SERVER_PORT", "7600")),
    "DEBUG": _env_flag("DEBUG", "false"),
    # Nested -------------------------------
    "server": {
        "host": os.getenv("SERVER_HOST", "0.0.0.0"),
        "port": int(os.getenv("SERVER_PORT", "7600")),
        "debug": _env_flag("DEBUG", "false"),
    },
    "database": {
        "url": os.getenv("DATABASE_URL", "sqlite:///./data/pricing.db"),
        "echo": _env_flag("DATABASE_ECHO", "false"),
    },
    "cascade": {
        "max_workers": int(os.getenv("CASCADE_MAX_WORKERS", "4")),
    },
    # Bootstrap values for the admin settings singleton
    "pricing": {
        "wage": 50.0,
        "materialMarkup": 2.0,
        "administrativeFee": 0.10,
        "businessFee": 0.15,
        "consumablesFee": 0.05,
        "metalComplexityMultipliers": dict(DEFAULT_METAL_COMPLEXITY),
    },
})


def _read_config_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    ext = path.suffix.lower()
    if ext == ".json":
        return json.loads(path.read_text(encoding="utf-8"))
    if ext in {".yml", ".yaml"}:
        return yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if ext == ".toml":
        return tomllib.loads(path.read_text(encoding="utf-8"))
    # Fallback: try JSON
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise RuntimeError(f"Unsupported config format for {path}. {e}") from e


def _deep_merge(dst: Dict[str, Any], src: Dict[str, Any]) -> Dict[str, Any]:
    for k, v in src.items():
        if isinstance(v, dict) and isinstance(dst.get(k), dict):
            _deep_merge(dst[k], v)
        else:
            dst[k] = v
    return dst


_FLAT_TO_NESTED = {
    "DATABASE_URL": ("database", "url"),
    "DATABASE_ECHO": ("database", "echo"),
    "SERVER_HOST": ("server", "host"),
    "SERVER_PORT": ("server", "port"),
    "DEBUG": ("server", "debug"),
    "CASCADE_MAX_WORKERS": ("cascade", "max_workers"),
}


def _ensure_compat_keys(cfg: Dict[str, Any], overrides: Dict[str, Any]) -> None:
    """Keep flat and nested keys in sync.

    A nested value from the config file wins when the file does not also set
    the matching flat key.
    """
    for flat, (section, key) in _FLAT_TO_NESTED.items():
        nested = overrides.get(section)
        if flat not in overrides and isinstance(nested, dict) and key in nested:
            cfg[flat] = nested[key]
        cfg.setdefault(section, {})
        cfg[section][key] = cfg.get(flat)


def load_config(config_path: Optional[str] = None) -> AttrDict:
    """Load the application config.

    - Start from DEFAULT_CONFIG
    - If a config file is provided, deep-merge it on top
    - Ensure both flat and nested keys are present
    - Return an AttrDict for dict+attribute access
    """
    base = json.loads(json.dumps(DEFAULT_CONFIG))
    overrides: Dict[str, Any] = {}
    if config_path:
        p = Path(config_path)
        if p.exists():
            overrides = _read_config_file(p) or {}
            _deep_merge(base, overrides)
    _ensure_compat_keys(base, overrides)
    return AttrDict(base)


@dataclass(frozen=True)
class CascadeSettings:
    max_workers: int = 4


@dataclass(frozen=True)
class DefaultPricing:
    wage: float = 50.0
    material_markup: float = 2.0
    administrative_fee: float = 0.10
    business_fee: float = 0.15
    consumables_fee: float = 0.05
    metal_complexity_multipliers: Mapping[str, float] = field(
        default_factory=lambda: dict(DEFAULT_METAL_COMPLEXITY)
    )

    def as_payload(self) -> Dict[str, Any]:
        return {
            "wage": self.wage,
            "materialMarkup": self.material_markup,
            "administrativeFee": self.administrative_fee,
            "businessFee": self.business_fee,
            "consumablesFee": self.consumables_fee,
            "metalComplexityMultipliers": dict(self.metal_complexity_multipliers),
        }


def get_cascade_settings(cfg: Mapping[str, Any] | None = None) -> CascadeSettings:
    cfg = cfg if cfg is not None else load_config()
    cascade = cfg.get("cascade", {})
    workers = cascade.get("max_workers") or cfg.get("CASCADE_MAX_WORKERS") or 1
    return CascadeSettings(max_workers=max(int(workers), 1))


def get_default_pricing(cfg: Mapping[str, Any] | None = None) -> DefaultPricing:
    cfg = cfg if cfg is not None else load_config()
    pricing = cfg.get("pricing", {})
    return DefaultPricing(
        wage=float(pricing.get("wage", 50.0)),
        material_markup=float(pricing.get("materialMarkup", 2.0)),
        administrative_fee=float(pricing.get("administrativeFee", 0.10)),
        business_fee=float(pricing.get("businessFee", 0.15)),
        consumables_fee=float(pricing.get("consumablesFee", 0.05)),
        metal_complexity_multipliers=dict(
            pricing.get("metalComplexityMultipliers") or DEFAULT_METAL_COMPLEXITY
        ),
    )
