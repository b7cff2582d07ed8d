"""Tests for the persisted user config and startup scope rules."""

from gcp_tui.settings import (
    UserConfig,
    config_path,
    effective_project,
    effective_zone,
    initial_resource,
    log_path,
)


class TestUserConfig:
    def test_missing_file_gives_defaults(self, tmp_path):
        assert UserConfig.load(tmp_path / "nope.yaml") == UserConfig()

    def test_malformed_file_gives_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("project: [unclosed")
        assert UserConfig.load(path) == UserConfig()

    def test_wrong_shape_gives_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n")
        assert UserConfig.load(path) == UserConfig()

    def test_saved_values_are_read_back(self, tmp_path):
        path = tmp_path / "nested" / "config.yaml"
        config = UserConfig(project="p1", zone="us-east1-b", last_resource="disks")

        assert config.save(path)
        assert UserConfig.load(path) == config
        assert "zone: us-east1-b" in path.read_text()

    def test_save_failure_is_not_fatal(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")
        assert not UserConfig(project="p").save(blocker / "config.yaml")


class TestPaths:
    def test_xdg_config_home(self, tmp_path):
        environ = {"XDG_CONFIG_HOME": str(tmp_path)}
        assert config_path(environ) == tmp_path / "tgcp" / "config.yaml"
        assert log_path(environ) == tmp_path / "tgcp" / "tgcp.log"


class TestEffectiveScope:
    config = UserConfig(project="saved-project", zone="asia-east1-a", last_resource="disks")

    def test_cli_project_wins(self):
        environ = {"GCP_PROJECT": "env-project"}
        assert effective_project("cli-project", self.config, environ) == "cli-project"

    def test_env_project_order(self):
        environ = {"GCLOUD_PROJECT": "third", "GOOGLE_CLOUD_PROJECT": "second"}
        assert effective_project(None, self.config, environ) == "second"

    def test_saved_project(self):
        assert effective_project(None, self.config, {}) == "saved-project"

    def test_no_project_anywhere(self):
        assert effective_project(None, UserConfig(), {}) is None

    def test_zone_order(self):
        environ = {"CLOUDSDK_COMPUTE_ZONE": "env-zone"}
        assert effective_zone("cli-zone", self.config, environ) == "cli-zone"
        assert effective_zone(None, self.config, environ) == "env-zone"
        assert effective_zone(None, self.config, {}) == "asia-east1-a"
        assert effective_zone(None, UserConfig(), {}) == "us-central1-a"

    def test_initial_resource(self):
        assert initial_resource(self.config, {"disks", "vm-instances"}) == "disks"
        assert initial_resource(self.config, {"vm-instances"}) == "vm-instances"
        assert initial_resource(UserConfig(), {"disks"}) == "vm-instances"
