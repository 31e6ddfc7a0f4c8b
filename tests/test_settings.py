"""Tests for the YAML settings loader."""
from pathlib import Path

from config.settings import EngineSettings, load_settings


class TestLoadSettings:

    def test_missing_file_gives_defaults(self, tmp_path):
        settings = load_settings(str(tmp_path / "absent.yaml"))
        assert settings == EngineSettings()
        assert settings.executor.dispatch_timeout == 30.0
        assert settings.executor.max_steps == 1000

    def test_values_and_env_substitution(self, tmp_path, monkeypatch):
        monkeypatch.setenv("FLOW_TIMEOUT", "2.5")
        monkeypatch.setenv("FLOW_APP", "orders")
        path = tmp_path / "settings.yaml"
        path.write_text(
            "app_name: ${FLOW_APP}\n"
            "executor:\n"
            "  dispatch_timeout: ${FLOW_TIMEOUT}\n"
            "  max_steps: 20\n"
            "plugins:\n"
            "  packages: [my_plugins]\n"
            "flows:\n"
            "  - flows/orders.yaml\n"
            "  - /abs/other.yaml\n"
        )
        settings = load_settings(str(path))

        assert settings.app_name == "orders"
        assert settings.executor.dispatch_timeout == 2.5
        assert settings.executor.max_steps == 20
        assert settings.plugins.packages == ["my_plugins"]
        assert settings.flows[0] == str(tmp_path / "flows" / "orders.yaml")
        assert Path(settings.flows[1]).is_absolute()

    def test_unset_variable_is_left_verbatim(self, tmp_path, monkeypatch):
        monkeypatch.delenv("NOT_SET_ANYWHERE", raising=False)
        path = tmp_path / "settings.yaml"
        path.write_text("app_name: ${NOT_SET_ANYWHERE}\n")
        assert load_settings(str(path)).app_name == "${NOT_SET_ANYWHERE}"

    def test_config_path_from_environment(self, tmp_path, monkeypatch):
        path = tmp_path / "custom.yaml"
        path.write_text("debug: true\n")
        monkeypatch.setenv("FLOW_ENGINE_CONFIG", str(path))
        assert load_settings().debug is True

    def test_bundled_settings(self):
        import config.settings as settings_module
        path = Path(settings_module.__file__).parent / "settings.yaml"
        settings = load_settings(str(path))
        assert settings.app_name == "EventFlowEngine"
        assert settings.flows and settings.flows[0].endswith("greeting.yaml")
