from __future__ import annotations

import io
import os
import shutil
import sys
from pathlib import Path

import pytest


def pytest_sessionstart(session):  # type: ignore[override]
    root = Path(__file__).resolve().parents[1]
    src = root / "src"
    if str(src) not in sys.path:
        sys.path.insert(0, str(src))
    # Ensure console scripts load in editable style as well
    os.environ.setdefault("PYTHONPATH", str(src))
    # Keep test runs out of ~/.update-pr/logs
    os.environ.setdefault("UPDATE_PR_LOG_DISABLE_FILE", "1")


@pytest.fixture(autouse=True)
def git_identity(monkeypatch, tmp_path):
    """Give every git process a fixed identity and an isolated global config."""
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Sync Tester")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "sync@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Sync Tester")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "sync@example.com")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(tmp_path / "gitconfig"))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    for name in ("UPDATE_PR_REMOTE", "UPDATE_PR_BRANCH", "UPDATE_PR_DELAY", "UPDATE_PR_SSH_KEY", "UPDATE_PR_SSH_USER"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def console():
    from rich.console import Console

    return Console(file=io.StringIO(), force_terminal=False, width=120)


def init_remote_repo(remote_path: Path):
    from git import Repo

    remote_path.mkdir(parents=True, exist_ok=True)
    return Repo.init(remote_path, bare=True, initial_branch="main")


def seed_remote_with_main(remote_path: Path) -> None:
    """Create a bare remote with a seeded main branch."""
    from git import Repo

    init_remote_repo(remote_path)
    workdir = remote_path.parent / "seed"
    repo = Repo.init(workdir)
    (workdir / "README.md").write_text("seed\n")
    repo.index.add(["README.md"])
    repo.index.commit("seed")
    repo.git.branch("-M", "main")
    repo.create_remote("origin", remote_path.as_posix())
    repo.remotes.origin.push("main:main")
    shutil.rmtree(workdir)


def clone(remote_path: Path, dest: Path, branch: str = "main"):
    from git import Repo

    return Repo.clone_from(remote_path.as_posix(), dest, branch=branch)


def commit_file(repo, name: str, content: str, message: str | None = None) -> str:
    """Write ``name`` in ``repo``'s working tree and commit it; returns the sha."""
    path = Path(repo.working_tree_dir) / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    repo.index.add([name])
    return repo.index.commit(message or f"update {name}").hexsha


def push_from_other_clone(remote_path: Path, tmp_path: Path, name: str, content: str, branch: str = "main") -> str:
    """Commit on ``branch`` in a throwaway clone and push it; returns the sha."""
    other = clone(remote_path, tmp_path / f"other-{name.replace('/', '-')}", branch=branch)
    sha = commit_file(other, name, content, f"remote {name}")
    other.remotes.origin.push(f"{branch}:{branch}")
    return sha


def remote_branch_sha(remote_path: Path, branch: str = "main") -> str:
    from git import Repo

    return Repo(remote_path).commit(branch).hexsha
