"""Tests for engine configuration loading and validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from snippet_sandbox.config import CONFIG_ENV_VAR, DEFAULT_CONFIG, EngineConfig, load_config
from snippet_sandbox.core.errors import PolicyValidationError


class TestEngineConfig:
    """Test EngineConfig defaults and validation."""

    def test_default_values(self):
        config = EngineConfig()

        assert config.assets_path is None
        assert config.default_timeouts_ms == {"python": 3000, "javascript": 2000, "typescript": 2000}
        assert config.max_timeout_ms == 60_000
        assert config.fuel_budget == 5_000_000_000
        assert config.memory_bytes == 128_000_000
        assert config.epoch_tick_ms == 10
        assert config.env["PYTHONHASHSEED"] == "0"
        assert config.render_sandbox_flags == ["allow-scripts"]
        assert "https://d3js.org/d3.v7.min.js" in config.render_allowed_origins

    def test_default_timeout_for(self):
        config = EngineConfig()

        assert config.default_timeout_for("python") == 3000
        assert config.default_timeout_for("typescript") == 2000
        assert config.default_timeout_for("lua") == 2000

    def test_defaults_are_not_shared(self):
        first = EngineConfig()
        first.env["EXTRA"] = "1"

        assert "EXTRA" not in EngineConfig().env
        assert "EXTRA" not in DEFAULT_CONFIG["env"]

    def test_invalid_values_raise_domain_error(self):
        with pytest.raises(PolicyValidationError, match="Invalid engine configuration"):
            EngineConfig(fuel_budget=0)

    def test_non_positive_default_timeout(self):
        with pytest.raises(PolicyValidationError):
            EngineConfig(default_timeouts_ms={"python": 0})


class TestLoadConfig:
    """Test load_config() TOML merging."""

    def test_missing_file_returns_defaults(self, tmp_path: Path):
        config = load_config(str(tmp_path / "absent.toml"))

        assert config == EngineConfig()

    def test_shallow_and_deep_merge(self, tmp_path: Path):
        path = tmp_path / "sandbox.toml"
        path.write_text(
            "fuel_budget = 1000\n"
            "[default_timeouts_ms]\n"
            "python = 5000\n"
            "[env]\n"
            "EXTRA = \"yes\"\n"
        )

        config = load_config(str(path))

        assert config.fuel_budget == 1000
        assert config.memory_bytes == DEFAULT_CONFIG["memory_bytes"]
        assert config.default_timeouts_ms["python"] == 5000
        assert config.default_timeouts_ms["javascript"] == 2000
        assert config.env["EXTRA"] == "yes"
        assert config.env["PYTHONUTF8"] == "1"

    def test_env_var_selects_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        path = tmp_path / "custom.toml"
        path.write_text("max_log_lines = 7\n")
        monkeypatch.setenv(CONFIG_ENV_VAR, str(path))

        assert load_config().max_log_lines == 7

    def test_invalid_file_values(self, tmp_path: Path):
        path = tmp_path / "bad.toml"
        path.write_text("memory_bytes = -5\n")

        with pytest.raises(PolicyValidationError):
            load_config(str(path))

    def test_shipped_example_config_loads(self):
        example = Path(__file__).resolve().parent.parent / "config" / "sandbox.toml"

        config = load_config(str(example))

        assert config.default_timeouts_ms["python"] == 3000
        assert config.render_sandbox_flags == ["allow-scripts"]
