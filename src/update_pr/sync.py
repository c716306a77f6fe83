"""The pull, merge-main, push-if-moved cycle and the loop that repeats it.

Architecture:
- Pull the current branch (fetch HEAD's branch, merge it into itself)
- Fetch the integration branch and merge it into HEAD's branch
- Push HEAD's branch only when that merge moved its tip
- Repeat after a delay, or stop after one round when no delay is set

Fetcher, merge engine and pusher are injected so they can be replaced by
fakes in tests.
"""

from __future__ import annotations

from typing import Any, Callable, Optional, Protocol, Sequence, Union

from git import Remote
from rich.console import Console
from rich.markup import escape

from .constants import REMOTE_BRANCH, REMOTE_NAME
from .duration import format_duration
from .errors import UpdatePrError
from .observability import log_action, log_error, log_info
from .progress import get_console, wait
from .repository import AnnotatedCommit, GitRepository


class FetchStrategy(Protocol):
    def fetch(self, refs: Union[str, Sequence[str]], remote: Remote) -> AnnotatedCommit: ...


class MergeStrategy(Protocol):
    def merge(self, remote_branch: str, fetch_commit: AnnotatedCommit) -> Any: ...


class PushStrategy(Protocol):
    def push(self, refspecs: Sequence[str], remote: Remote) -> None: ...


class SyncEngine:
    """One synchronization round against a single repository.

    Remotes, refs and commits are looked up fresh on every call; only the
    repository handle is kept between rounds.
    """

    def __init__(
        self,
        repo: GitRepository,
        fetcher: FetchStrategy,
        merger: MergeStrategy,
        pusher: PushStrategy,
        *,
        remote_name: str = REMOTE_NAME,
        remote_branch: str = REMOTE_BRANCH,
    ):
        self.repo = repo
        self.fetcher = fetcher
        self.merger = merger
        self.pusher = pusher
        self.remote_name = remote_name
        self.remote_branch = remote_branch

    def run_once(self) -> bool:
        """Run pull, merge and conditional push.

        Returns:
            True if the integration merge moved HEAD and the branch was pushed.
        """
        self.pull_current_branch()
        if self.merge_main():
            self.push_current_branch()
            return True
        return False

    def pull_current_branch(self) -> None:
        remote = self.repo.find_remote(self.remote_name)
        current_ref = self.repo.head_ref_name()

        fetch_commit = self.fetcher.fetch(current_ref, remote)
        self.merger.merge(current_ref, fetch_commit)

    def merge_main(self) -> bool:
        """Merge the integration branch; True when HEAD moved because of it."""
        remote = self.repo.find_remote(self.remote_name)
        fetch_commit = self.fetcher.fetch(self.remote_branch, remote)

        current_ref = self.repo.head_ref_name()
        current_oid = self.repo.head_id()

        self.merger.merge(current_ref, fetch_commit)

        new_oid = self.repo.head_id()
        log_info("integration merge", branch=current_ref, before=current_oid, after=new_oid)
        return new_oid != current_oid

    def push_current_branch(self) -> None:
        remote = self.repo.find_remote(self.remote_name)
        current_ref = self.repo.head_ref_name()

        self.pusher.push([current_ref], remote)


class SyncLoop:
    """Repeats ``SyncEngine.run_once`` and turns the first failure into an exit code.

    Without a delay the loop stops after one successful round. A failed round
    ends the loop immediately; there is no wait and no retry after a failure.
    """

    def __init__(
        self,
        engine: SyncEngine,
        delay: Optional[float] = None,
        *,
        waiter: Optional[Callable[[float], None]] = None,
        console: Optional[Console] = None,
        error_console: Optional[Console] = None,
    ):
        self.engine = engine
        self.delay = delay
        self.console = console or get_console()
        self.error_console = error_console or get_console(stderr=True)
        self.waiter = waiter or (lambda seconds: wait(seconds, self.console))
        self.iterations = 0

    def run(self) -> int:
        exit_code = 0

        while True:
            self.iterations += 1
            try:
                pushed = self.engine.run_once()
            except UpdatePrError as e:
                self.error_console.print(f"Error: {escape(str(e))}")
                exit_code = e.exit_code
                log_error("sync iteration failed", iteration=self.iterations, error=str(e), exit_code=exit_code)
                break
            log_action("sync.iteration", iteration=self.iterations, pushed=pushed)

            if self.delay is None:
                break
            log_info("waiting before next iteration", delay=format_duration(self.delay))
            self.waiter(self.delay)

        return exit_code
