"""Unit tests for config_manager module."""

import platform
import stat
from pathlib import Path

import pytest

from hvsession.config_manager import ConfigError, ConfigManager, HypervisorSettings


class TestHypervisorSettings:
    """Tests for HypervisorSettings dataclass."""

    def test_default_values(self):
        settings = HypervisorSettings()
        assert settings.binary_path == "VBoxManage"
        assert settings.hypervisor_name == "vbox"
        assert settings.default_timeout == 30
        assert settings.machine_info_timeout == 10
        assert settings.lock_dir is None
        assert settings.config_url is None
        assert settings.extpack_marker == "Oracle VM VirtualBox Extension Pack"

    def test_to_dict_drops_none(self):
        data = HypervisorSettings(config_url=None, lock_dir="/tmp/locks").to_dict()
        assert "config_url" not in data
        assert data["lock_dir"] == "/tmp/locks"

    def test_from_dict_partial(self):
        settings = HypervisorSettings.from_dict({"binary_path": "/opt/vbox/VBoxManage"})
        assert settings.binary_path == "/opt/vbox/VBoxManage"
        assert settings.default_timeout == 30

    def test_from_dict_unknown_key_warns(self, caplog):
        settings = HypervisorSettings.from_dict({"default_region": "westus2"})
        assert not hasattr(settings, "default_region")
        assert "Unknown config key: default_region" in caplog.text

    def test_paths_expand_user(self):
        settings = HypervisorSettings(runtime_dir="~/vm-runtime", lock_dir="~/vm-locks")
        assert settings.runtime_path == Path.home() / "vm-runtime"
        assert settings.lock_path == Path.home() / "vm-locks"

    def test_lock_path_unset(self):
        assert HypervisorSettings().lock_path is None

    def test_elevation_prefix(self):
        assert HypervisorSettings(elevation_command="sudo -n").elevation_prefix == ["sudo", "-n"]
        assert HypervisorSettings(elevation_command="").elevation_prefix == []


class TestConfigManager:
    """Tests for ConfigManager class."""

    def test_get_config_path_default(self, isolate_config_dir):
        assert ConfigManager.get_config_path() == isolate_config_dir / "config.toml"

    def test_get_config_path_custom(self, tmp_path):
        custom_path = tmp_path / "custom.toml"
        custom_path.touch()
        assert ConfigManager.get_config_path(str(custom_path)) == custom_path.resolve()

    def test_get_config_path_custom_not_exists(self, tmp_path):
        with pytest.raises(ConfigError, match="Config file not found"):
            ConfigManager.get_config_path(str(tmp_path / "missing.toml"))

    def test_get_config_path_outside_allowed_dirs(self):
        with pytest.raises(ConfigError, match="outside allowed directories"):
            ConfigManager.get_config_path("/etc/hvsession.toml")

    def test_load_settings_not_exists(self):
        settings = ConfigManager.load_settings()
        assert settings == HypervisorSettings()

    def test_save_and_load_roundtrip(self, tmp_path):
        config_file = tmp_path / "config.toml"
        settings = HypervisorSettings(
            binary_path="/usr/local/bin/VBoxManage",
            default_timeout=45,
            config_url="https://example.org/hypervisor.config",
        )

        ConfigManager.save_settings(settings, str(config_file))
        loaded = ConfigManager.load_settings(str(config_file))

        assert loaded.binary_path == "/usr/local/bin/VBoxManage"
        assert loaded.default_timeout == 45
        assert loaded.config_url == "https://example.org/hypervisor.config"

    @pytest.mark.skipif(platform.system() == "Windows", reason="POSIX permissions")
    def test_save_sets_secure_permissions(self, isolate_config_dir):
        ConfigManager.save_settings(HypervisorSettings())

        config_file = isolate_config_dir / "config.toml"
        assert stat.S_IMODE(config_file.stat().st_mode) == 0o600
        assert stat.S_IMODE(isolate_config_dir.stat().st_mode) == 0o700
        assert not config_file.with_suffix(".tmp").exists()

    def test_save_preserves_comments(self, tmp_path):
        config_file = tmp_path / "config.toml"
        config_file.write_text('# my hypervisor\nbinary_path = "VBoxManage"\n')

        ConfigManager.save_settings(HypervisorSettings(default_timeout=99), str(config_file))

        content = config_file.read_text()
        assert "# my hypervisor" in content
        assert "default_timeout = 99" in content

    @pytest.mark.skipif(platform.system() == "Windows", reason="POSIX permissions")
    def test_load_fixes_insecure_permissions(self, tmp_path, caplog):
        config_file = tmp_path / "config.toml"
        config_file.write_text('default_timeout = 12\n')
        config_file.chmod(0o644)

        settings = ConfigManager.load_settings(str(config_file))

        assert settings.default_timeout == 12
        assert stat.S_IMODE(config_file.stat().st_mode) == 0o600
        assert "insecure permissions" in caplog.text

    def test_load_invalid_toml(self, tmp_path):
        config_file = tmp_path / "config.toml"
        config_file.write_text("this is = = not toml")
        config_file.chmod(0o600)

        with pytest.raises(ConfigError, match="Failed to load config"):
            ConfigManager.load_settings(str(config_file))

    def test_get_binary_path_cli_override(self):
        assert ConfigManager.get_binary_path("/opt/VBoxManage") == "/opt/VBoxManage"

    def test_get_binary_path_from_config(self, tmp_path):
        config_file = tmp_path / "config.toml"
        config_file.write_text('binary_path = "/usr/lib/virtualbox/VBoxManage"\n')
        config_file.chmod(0o600)

        binary = ConfigManager.get_binary_path(None, str(config_file))
        assert binary == "/usr/lib/virtualbox/VBoxManage"
