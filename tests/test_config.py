from __future__ import annotations

import json

import pytest

from repair_pricing.app.config import (
    DEFAULT_METAL_COMPLEXITY,
    get_cascade_settings,
    get_default_pricing,
    load_config,
)


def test_defaults_without_file():
    cfg = load_config(None)
    assert cfg.DATABASE_URL == cfg.database["url"]
    assert cfg["SERVER_PORT"] == cfg["server"]["port"]
    assert get_default_pricing(cfg).wage == 50.0
    assert get_default_pricing(cfg).metal_complexity_multipliers == DEFAULT_METAL_COMPLEXITY


def test_flat_keys_override_nested(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"DATABASE_URL": "sqlite:///flat.db", "CASCADE_MAX_WORKERS": 3}))
    cfg = load_config(str(path))
    assert cfg["database"]["url"] == "sqlite:///flat.db"
    assert get_cascade_settings(cfg).max_workers == 3


def test_nested_sections_fill_flat_keys(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text('[database]\nurl = "sqlite:///nested.db"\n\n[cascade]\nmax_workers = 1\n')
    cfg = load_config(str(path))
    assert cfg["DATABASE_URL"] == "sqlite:///nested.db"
    assert get_cascade_settings(cfg).max_workers == 1


def test_pricing_section_is_deep_merged(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("pricing:\n  wage: 65\n  materialMarkup: 1.8\n")
    pricing = get_default_pricing(load_config(str(path)))
    assert pricing.wage == 65.0
    assert pricing.material_markup == 1.8
    assert pricing.business_fee == 0.15
    assert pricing.as_payload()["materialMarkup"] == 1.8


def test_missing_file_keeps_defaults(tmp_path):
    cfg = load_config(str(tmp_path / "absent.json"))
    assert cfg["pricing"]["wage"] == 50.0


def test_attribute_access_raises_attribute_error():
    with pytest.raises(AttributeError):
        load_config(None).NOT_A_KEY
