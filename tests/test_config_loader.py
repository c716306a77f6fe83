"""Tests for config loading, merging and the schema's validation."""

import pytest

from update_pr.config_loader import _deep_merge, load_config
from update_pr.config_schema import SyncSettings, UpdatePrConfig
from update_pr.errors import ConfigError


@pytest.fixture
def home(monkeypatch, tmp_path):
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    return home


@pytest.fixture
def project(tmp_path):
    path = tmp_path / "project"
    path.mkdir()
    return path


def write_config(root, content):
    config_dir = root / ".update-pr"
    config_dir.mkdir(exist_ok=True)
    (config_dir / "config.toml").write_text(content)


def test_defaults(home, project):
    config = load_config(project)
    assert config.sync.remote == "origin"
    assert config.sync.branch == "main"
    assert config.sync.delay is None
    assert config.sync.delay_seconds is None
    assert config.git.ssh_key == ""
    assert config.git.ssh_user == "git"


def test_project_config_overrides_user_config(home, project):
    write_config(home, '[sync]\nremote = "upstream"\nbranch = "develop"\n')
    write_config(project, '[sync]\nbranch = "trunk"\n')

    config = load_config(project)

    assert config.sync.remote == "upstream"
    assert config.sync.branch == "trunk"


def test_env_overrides_files(home, project, monkeypatch):
    write_config(project, '[sync]\ndelay = "5m"\n')
    monkeypatch.setenv("UPDATE_PR_DELAY", "30s")
    monkeypatch.setenv("UPDATE_PR_SSH_USER", "deploy")

    config = load_config(project)

    assert config.sync.delay_seconds == 30.0
    assert config.git.ssh_user == "deploy"


def test_skip_env(home, project, monkeypatch):
    monkeypatch.setenv("UPDATE_PR_REMOTE", "elsewhere")
    assert load_config(project, skip_env=True).sync.remote == "origin"


def test_overrides_win_over_env(home, project, monkeypatch):
    monkeypatch.setenv("UPDATE_PR_BRANCH", "develop")

    config = load_config(project, overrides={"sync": {"branch": "release"}})

    assert config.sync.branch == "release"


def test_numeric_delay_is_seconds(home, project):
    write_config(project, "[sync]\ndelay = 90\n")
    config = load_config(project)
    assert config.sync.delay == "90"
    assert config.sync.delay_seconds == 90.0


@pytest.mark.parametrize("delay", ["0s", "-5", "soon"])
def test_invalid_delay_rejected(home, project, delay):
    with pytest.raises(ConfigError):
        load_config(project, overrides={"sync": {"delay": delay}})


def test_branch_with_whitespace_rejected(home, project):
    with pytest.raises(ConfigError, match="Config validation failed"):
        load_config(project, overrides={"sync": {"branch": "my branch"}})


def test_invalid_user_config_is_skipped_with_warning(home, project):
    write_config(home, "this is not toml [")

    with pytest.warns(UserWarning, match="Skipping invalid user config"):
        config = load_config(project)
    assert config.sync.remote == "origin"


def test_invalid_project_config_raises(home, project):
    write_config(project, "this is not toml [")

    with pytest.raises(ConfigError, match="Invalid project config"):
        load_config(project)


def test_missing_ssh_key_warns(tmp_path):
    with pytest.warns(UserWarning, match="SSH key path does not exist"):
        UpdatePrConfig.model_validate({"git": {"ssh_key": str(tmp_path / "nope")}})


def test_empty_delay_means_run_once():
    assert SyncSettings(delay="").delay is None


def test_deep_merge_nested():
    base = {"sync": {"remote": "origin", "branch": "main"}, "git": {"ssh_user": "git"}}
    override = {"sync": {"branch": "develop"}}

    merged = _deep_merge(base, override)

    assert merged == {"sync": {"remote": "origin", "branch": "develop"}, "git": {"ssh_user": "git"}}
    assert base["sync"]["branch"] == "main"
