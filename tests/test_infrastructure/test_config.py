"""Tests for configuration."""

from groupcron.infrastructure import config
from groupcron.infrastructure.config import TimeoutConfig, read_env_file
from groupcron.groups.repository import ContainerConfig, RegisteredGroup


class TestReadEnvFile:
    def test_reads_env_values(self, tmp_path, monkeypatch):
        (tmp_path / ".env").write_text("KEY1=value1\nKEY2=value2\n")
        monkeypatch.chdir(tmp_path)

        assert read_env_file(["KEY1", "KEY2"]) == {"KEY1": "value1", "KEY2": "value2"}

    def test_strips_quotes(self, tmp_path, monkeypatch):
        (tmp_path / ".env").write_text('KEY1="quoted"\nKEY2=\'single\'\n')
        monkeypatch.chdir(tmp_path)

        result = read_env_file(["KEY1", "KEY2"])
        assert result["KEY1"] == "quoted"
        assert result["KEY2"] == "single"

    def test_skips_comments_and_blank_lines(self, tmp_path, monkeypatch):
        (tmp_path / ".env").write_text("# comment\n\nKEY1=value1\nnot a pair\n")
        monkeypatch.chdir(tmp_path)

        assert read_env_file(["KEY1"]) == {"KEY1": "value1"}

    def test_only_requested_keys(self, tmp_path, monkeypatch):
        (tmp_path / ".env").write_text("KEY1=value1\nKEY2=value2\n")
        monkeypatch.chdir(tmp_path)

        assert "KEY2" not in read_env_file(["KEY1"])

    def test_missing_file_returns_empty(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert read_env_file(["KEY1"]) == {}

    def test_empty_values_skipped(self, tmp_path, monkeypatch):
        (tmp_path / ".env").write_text("KEY1=\n")
        monkeypatch.chdir(tmp_path)

        assert "KEY1" not in read_env_file(["KEY1"])


class TestTimezone:
    def test_env_tz_wins(self, monkeypatch):
        monkeypatch.setenv("TZ", "Asia/Seoul")
        assert config._resolve_timezone() == "Asia/Seoul"

    def test_unknown_zone_falls_back_to_utc(self, monkeypatch):
        monkeypatch.setenv("TZ", "Mars/Olympus_Mons")
        assert config._resolve_timezone() == "UTC"

    def test_no_zone_falls_back_to_utc(self, monkeypatch):
        monkeypatch.delenv("TZ", raising=False)
        monkeypatch.setattr(config, "_system_timezone", lambda: "")
        assert config._resolve_timezone() == "UTC"


class TestTimeoutConfig:
    def test_defaults(self):
        timeouts = TimeoutConfig()
        assert timeouts.container_timeout > 0
        assert timeouts.idle_timeout > 0

    def test_hard_timeout_at_least_idle_plus_buffer(self):
        timeouts = TimeoutConfig(container_timeout=60000, idle_timeout=60000)
        assert timeouts.hard_timeout_s == 90

    def test_hard_timeout_at_least_container_timeout(self):
        timeouts = TimeoutConfig(container_timeout=3600000, idle_timeout=60000)
        assert timeouts.hard_timeout_s == 3600

    def test_group_override(self):
        group = RegisteredGroup(
            name="Team", folder="team", trigger="", added_at="", container_config=ContainerConfig(timeout=5000)
        )
        timeouts = TimeoutConfig(container_timeout=60000, idle_timeout=1000).for_group(group)
        assert timeouts.container_timeout == 5000
        assert timeouts.idle_timeout == 1000

    def test_group_without_override(self):
        group = RegisteredGroup(name="Team", folder="team", trigger="", added_at="")
        assert TimeoutConfig(container_timeout=60000).for_group(group).container_timeout == 60000

    def test_group_override_leaves_base_untouched(self):
        base = TimeoutConfig(container_timeout=60000)
        group = RegisteredGroup(
            name="Team", folder="team", trigger="", added_at="", container_config=ContainerConfig(timeout=5000)
        )
        base.for_group(group)
        assert base.container_timeout == 60000


def test_scheduler_defaults():
    assert config.TASK_CLOSE_DELAY > 0
    assert config.GROUP_RETRY_DELAY > 0
    assert config.MAX_CONCURRENT_CONTAINERS >= 1


class TestReadEnvFileEdgeCases:
    def test_value_may_contain_equals(self, tmp_path, monkeypatch):
        (tmp_path / ".env").write_text("ISSUE_API_URL=https://issues.test/api?team=ops\n")
        monkeypatch.chdir(tmp_path)

        assert read_env_file(["ISSUE_API_URL"]) == {"ISSUE_API_URL": "https://issues.test/api?team=ops"}

    def test_mismatched_quotes_kept(self, tmp_path, monkeypatch):
        (tmp_path / ".env").write_text("KEY1=\"half'\n")
        monkeypatch.chdir(tmp_path)

        assert read_env_file(["KEY1"]) == {"KEY1": "\"half'"}
