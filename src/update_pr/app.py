"""Wire a repository, its configuration and the sync components together."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from rich.console import Console

from .config_schema import UpdatePrConfig
from .credentials import CredentialProvider, agent_credentials, ssh_key_credentials
from .fetch import Fetcher
from .merge import MergeEngine
from .observability import log_action
from .push import Pusher
from .repository import GitRepository
from .sync import SyncEngine, SyncLoop


def credential_provider(config: UpdatePrConfig) -> CredentialProvider:
    if config.git.ssh_key:
        return ssh_key_credentials(Path(config.git.ssh_key), config.git.ssh_user)
    return agent_credentials(config.git.ssh_user)


def build_sync_loop(
    working_dir: Path,
    config: UpdatePrConfig,
    *,
    console: Optional[Console] = None,
    error_console: Optional[Console] = None,
) -> SyncLoop:
    """Open the repository at ``working_dir`` and assemble the sync loop.

    Fails before any round runs if the directory is not a working copy or the
    configured remote is missing.

    Raises:
        GitEngineError: on open failure or missing remote
    """
    repo = GitRepository.open(working_dir)
    repo.find_remote(config.sync.remote)

    credentials = credential_provider(config)
    engine = SyncEngine(
        repo,
        Fetcher(repo, credentials, console),
        MergeEngine(repo, console),
        Pusher(repo, credentials, console),
        remote_name=config.sync.remote,
        remote_branch=config.sync.branch,
    )
    log_action(
        "app.start",
        working_dir=str(repo.path),
        remote=config.sync.remote,
        branch=config.sync.branch,
        delay=config.sync.delay,
    )
    return SyncLoop(engine, config.sync.delay_seconds, console=console, error_console=error_console)
