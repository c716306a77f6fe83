"""Push local refs to a remote."""

from __future__ import annotations

from typing import Optional, Sequence

from git import Remote
from rich.console import Console
from rich.markup import escape

from .credentials import CredentialProvider, ssh_agent_credentials, transport_environment
from .observability import timeit
from .progress import PushProgress, get_console
from .repository import GitRepository

TRUCK = "\N{DELIVERY TRUCK}  "


class Pusher:
    """Pushes refspecs with progress reporting.

    Unlike fetching, nothing is swallowed here: a push that did not happen
    must be visible to whoever runs the loop.
    """

    def __init__(
        self,
        repo: GitRepository,
        credentials: CredentialProvider = ssh_agent_credentials,
        console: Optional[Console] = None,
    ):
        self.repo = repo
        self.credentials = credentials
        self.console = console or get_console()

    def push(self, refspecs: Sequence[str], remote: Remote) -> None:
        refspecs = list(refspecs)
        if not refspecs:
            raise ValueError("push requires at least one refspec")

        env = transport_environment(self.repo.remote_url(remote), self.credentials)

        with PushProgress(self.console) as progress:
            progress.println(f"{TRUCK}Pushing [italic bold]{escape(remote.name)}[/] for repo...")
            with timeit("git.push", remote=remote.name, refs=refspecs):
                self.repo.push(remote, refspecs, progress=progress, env=env)
