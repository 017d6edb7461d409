"""Tests for medic.core.config module."""

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from medic.core.config import CommandConfig, MedicConfig, load_config
from medic.core.errors import ConfigurationError


class TestMedicConfig:
    """Tests for MedicConfig model."""

    def test_defaults(self):
        """Test default values are applied."""
        config = MedicConfig(workspace_path=Path("/ws"))
        assert config.packages_dir == "packages"
        assert config.package_scope == "@workspace"
        assert config.target_health_score == 85
        assert config.default_max_concurrency == 3
        assert config.task_timeout_seconds == 600
        assert config.phase_timeout_seconds == 1800
        assert config.session_timeout_seconds == 7200
        assert config.recovery_assessment_depth == "detailed"
        assert config.logging.level == "INFO"

    def test_default_commands(self):
        """Test the default npm toolchain commands."""
        commands = CommandConfig()
        assert commands.install == "npm install"
        assert commands.clean_install == "rm -rf node_modules package-lock.json"
        assert commands.type_check == "npx tsc --noEmit"
        assert commands.build == "npm run build"
        assert commands.test == "npm test"

    def test_module_path(self):
        """Test module directories resolve under the packages dir."""
        config = MedicConfig(workspace_path=Path("/ws"), packages_dir="libs")
        assert config.module_path("auth") == Path("/ws/libs/auth")

    @pytest.mark.parametrize("scope", ["workspace", "@org/pkg"])
    def test_scope_format(self, scope: str):
        """Test package_scope must be a bare npm scope."""
        with pytest.raises(ValidationError):
            MedicConfig(package_scope=scope)

    @pytest.mark.parametrize("concurrency", [0, 11])
    def test_concurrency_bounds(self, concurrency: int):
        """Test default_max_concurrency stays within 1..10."""
        with pytest.raises(ValidationError):
            MedicConfig(default_max_concurrency=concurrency)

    def test_timeouts_positive(self):
        """Test budgets must be positive."""
        with pytest.raises(ValidationError):
            MedicConfig(task_timeout_seconds=0)

    def test_empty_command_rejected(self):
        """Test a blank command string is rejected."""
        with pytest.raises(ValidationError):
            CommandConfig(build="   ")


class TestLoadConfig:
    """Tests for load_config()."""

    def test_no_file_returns_defaults(self, tmp_path: Path):
        """Test a missing file yields the defaults."""
        config = load_config(tmp_path / "absent.yaml", workspace=tmp_path)
        assert config.workspace_path == tmp_path
        assert config.target_health_score == 85

    def test_none_returns_defaults(self):
        """Test None yields the defaults."""
        assert load_config(None).package_scope == "@workspace"

    def test_loads_yaml(self, tmp_path: Path):
        """Test values are read from a YAML file."""
        config_file = tmp_path / "medic.yaml"
        config_file.write_text(
            yaml.safe_dump({
                "workspace_path": str(tmp_path / "repo"),
                "package_scope": "@acme",
                "target_health_score": 90,
                "commands": {"install": "pnpm install"},
                "logging": {"level": "DEBUG", "format": "json"},
            })
        )

        config = load_config(config_file)

        assert config.workspace_path == tmp_path / "repo"
        assert config.package_scope == "@acme"
        assert config.target_health_score == 90
        assert config.commands.install == "pnpm install"
        assert config.commands.build == "npm run build"
        assert config.logging.format == "json"

    def test_workspace_override(self, tmp_path: Path):
        """Test the workspace argument wins over the file."""
        config_file = tmp_path / "medic.yaml"
        config_file.write_text("workspace_path: /somewhere/else\n")
        config = load_config(config_file, workspace=tmp_path)
        assert config.workspace_path == tmp_path

    def test_empty_file_returns_defaults(self, tmp_path: Path):
        """Test an empty YAML document is treated as no settings."""
        config_file = tmp_path / "medic.yaml"
        config_file.write_text("")
        assert load_config(config_file).default_max_concurrency == 3

    def test_invalid_values(self, tmp_path: Path):
        """Test validation failures become ConfigurationError with field details."""
        config_file = tmp_path / "medic.yaml"
        config_file.write_text("package_scope: acme\n")

        with pytest.raises(ConfigurationError) as exc_info:
            load_config(config_file)

        error = exc_info.value
        assert error.code == "CONFIGURATION_ERROR"
        assert error.http_status == 400
        assert error.details["errors"][0]["field"] == "package_scope"

    def test_unparseable_yaml(self, tmp_path: Path):
        """Test broken YAML raises ConfigurationError."""
        config_file = tmp_path / "medic.yaml"
        config_file.write_text("commands: [unclosed\n")
        with pytest.raises(ConfigurationError) as exc_info:
            load_config(config_file)
        assert exc_info.value.details["config_file"] == str(config_file)

    def test_non_mapping(self, tmp_path: Path):
        """Test a YAML list is rejected."""
        config_file = tmp_path / "medic.yaml"
        config_file.write_text("- auth\n- i18n\n")
        with pytest.raises(ConfigurationError, match="mapping"):
            load_config(config_file)
