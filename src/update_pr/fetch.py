"""Fetch refs from a remote and resolve the result to an annotated commit."""

from __future__ import annotations

from typing import Optional, Sequence, Union

from git import Remote
from rich.console import Console
from rich.markup import escape

from .credentials import CredentialProvider, ssh_agent_credentials, transport_environment
from .errors import GitEngineError
from .observability import log_warning, timeit
from .progress import FetchProgress, get_console
from .repository import AnnotatedCommit, GitRepository, tracking_refname

LOOKING_GLASS = "\N{LEFT-POINTING MAGNIFYING GLASS}  "


class Fetcher:
    """Downloads refs (and all tags) and picks the commit to merge.

    Network failures are logged and swallowed: resolution then falls back to
    whatever the local refs already say, which may be stale. Any other
    failure propagates.
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

    def fetch(self, refs: Union[str, Sequence[str]], remote: Remote) -> AnnotatedCommit:
        refspecs = [refs] if isinstance(refs, str) else list(refs)
        if not refspecs:
            raise ValueError("fetch requires at least one ref")

        env = transport_environment(self.repo.remote_url(remote), self.credentials)

        with FetchProgress(self.console) as progress:
            progress.println(
                f"{LOOKING_GLASS}Fetching [italic dim blue]{escape(', '.join(refspecs))}[/] "
                f"for repo from [italic bold green]{escape(remote.name)}[/]..."
            )
            try:
                with timeit("git.fetch", remote=remote.name, refs=refspecs):
                    self.repo.fetch(remote, refspecs, progress=progress, env=env)
            except GitEngineError as exc:
                if not exc.is_network:
                    raise
                log_warning("fetch failed with a network error; using existing refs", error=str(exc))
                progress.println(f"Error: {escape(str(exc))}")

        return self.resolve(refspecs, remote)

    def resolve(self, refspecs: Sequence[str], remote: Remote) -> AnnotatedCommit:
        """Pick the annotated commit a fetch of ``refspecs`` produced.

        A single fully qualified name resolves to its local counterpart (the
        remote-tracking ref for a branch) when that exists; everything else
        resolves ``FETCH_HEAD``.
        """
        if len(refspecs) == 1 and _is_concrete_refname(refspecs[0]):
            refname = refspecs[0]
            local = tracking_refname(remote.name, refname) or refname
            if self.repo.reference_exists(local):
                return self.repo.resolve_reference(local)
        return self.repo.resolve_fetch_head()


def _is_concrete_refname(name: str) -> bool:
    return name.startswith("refs/") and not any(ch in name for ch in "*:?[")
