#!/usr/bin/env python3
"""Walk through one update-pr round against a throwaway remote.

Sets up a bare remote with an initial commit, clones it, pushes a new commit
to main from a second clone, creates a ``pr`` branch with its own commit in
the first clone, then runs a single sync round there and shows the log.
"""

import secrets
import subprocess
import sys
import tempfile
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from git import Repo
from rich.console import Console

from update_pr.app import build_sync_loop
from update_pr.config_schema import UpdatePrConfig

console = Console()
STYLE = "italic cyan"


def say(message: str) -> None:
    console.print(message, style=STYLE)


def create_commit(repo: Repo) -> None:
    workdir = Path(repo.working_tree_dir)
    say(f"Creating commit in [bold]{workdir}[/]")
    name = f"file_{secrets.token_hex(5)}"
    (workdir / name).touch()
    repo.index.add([name])
    repo.index.commit(f"add file {name}")


def clone_remote(prefix: str, remote_dir: Path, temp_dir: Path) -> Repo:
    target = Path(tempfile.mkdtemp(prefix=f"{prefix}_", dir=temp_dir))
    say(f"Cloning remote to [bold]{target}[/]")
    return Repo.clone_from(remote_dir.as_posix(), target)


def setup_remote(remote_dir: Path, temp_dir: Path) -> None:
    say("Setting up remote...")
    Repo.init(remote_dir, bare=True, initial_branch="main")
    init = clone_remote("init", remote_dir, temp_dir)
    create_commit(init)
    init.git.push("origin", "HEAD:refs/heads/main")


def main() -> int:
    with tempfile.TemporaryDirectory(prefix="update-pr-simple_") as tmp:
        temp_dir = Path(tmp)
        remote_dir = Path(tempfile.mkdtemp(prefix="remote_", dir=temp_dir))

        setup_remote(remote_dir, temp_dir)
        local = clone_remote("local", remote_dir, temp_dir)

        say("Creating commit on remote...")
        other = clone_remote("other", remote_dir, temp_dir)
        create_commit(other)
        other.git.push()

        local_dir = Path(local.working_tree_dir)
        say(f"Creating branch [bold]pr[/] in [bold]{local_dir}[/]")
        local.git.checkout("-b", "pr")
        create_commit(local)
        local.git.push("--set-upstream", "origin", "pr")

        say(f"Running update-pr in [bold]{local_dir}[/]")
        exit_code = build_sync_loop(local_dir, UpdatePrConfig()).run()

        say(f"Git log for [bold]{local_dir}[/]")
        subprocess.run(["git", "log", "--oneline"], cwd=local_dir, check=False)
        return exit_code


if __name__ == "__main__":
    sys.exit(main())
