"""Merge a fetched commit into a branch: fast-forward, three-way, or nothing."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from rich.console import Console
from rich.markup import escape

from .observability import log_action, timeit
from .progress import get_console
from .repository import AnnotatedCommit, GitRepository, MergeAnalysis, branch_refname


class MergeOutcome(str, Enum):
    NOTHING_TO_DO = "nothing-to-do"
    FAST_FORWARD = "fast-forward"
    MERGED = "merged"
    CONFLICTED = "conflicted"


class MergeEngine:
    """Decides how to bring a fetched commit into a branch and does it.

    Conflicts are not errors: the conflicted index is checked out for the
    operator to resolve and nothing is committed. Every engine failure
    propagates as-is; nothing is retried here.
    """

    def __init__(self, repo: GitRepository, console: Optional[Console] = None):
        self.repo = repo
        self.console = console or get_console()

    def merge(self, remote_branch: str, fetch_commit: AnnotatedCommit) -> MergeOutcome:
        """Merge ``fetch_commit`` into the branch named ``remote_branch``.

        Args:
            remote_branch: Branch the result lands on, short (``main``) or
                fully qualified (``refs/heads/main``)
            fetch_commit: The commit to merge
        """
        with timeit("git.merge", target=remote_branch, commit=fetch_commit.id) as info:
            analysis = self.repo.merge_analysis(fetch_commit)
            info["analysis"] = analysis.value

            if analysis in (MergeAnalysis.FAST_FORWARD, MergeAnalysis.UNBORN):
                self.console.print("Doing a fast forward")
                refname = branch_refname(remote_branch)
                if self.repo.reference_exists(refname):
                    self.fast_forward(refname, fetch_commit)
                else:
                    # Nothing to move yet, usually a pull into an empty repository
                    self.repo.create_reference(
                        refname,
                        fetch_commit.id,
                        f"Setting {remote_branch} to {fetch_commit.id}",
                    )
                    self.repo.set_head(refname)
                    self.repo.checkout_head(force=True)
                outcome = MergeOutcome.FAST_FORWARD
            elif analysis is MergeAnalysis.NORMAL:
                head_commit = self.repo.head_annotated_commit()
                outcome = self.normal_merge(head_commit, fetch_commit)
            else:
                self.console.print("Nothing to do...")
                outcome = MergeOutcome.NOTHING_TO_DO

            info["merge"] = outcome.value
        return outcome

    def normal_merge(self, local: AnnotatedCommit, remote: AnnotatedCommit) -> MergeOutcome:
        repo = self.repo

        base = repo.merge_base(local.id, remote.id)
        index = repo.merge_trees(base, local.id, remote.id)

        msg = f"Merge '{get_name(remote)}' into {get_name(local)}"

        if index.has_conflicts:
            self.console.print("Merge conflicts detected...")
            repo.checkout_index(index)
            repo.record_merge_state(remote.id, msg)
            log_action(
                "git.merge.conflict",
                outcome="conflict",
                paths=index.conflicted_paths,
                local=local.id,
                remote=remote.id,
            )
            for path in index.conflicted_paths:
                self.console.print(f"  [red]both modified:[/] {escape(path)}")
            return MergeOutcome.CONFLICTED

        result_tree = repo.write_tree(index)
        # Parents in order: what we had, then what we fetched
        repo.create_commit(result_tree, msg, [local.id, remote.id])
        repo.checkout_head(previous=local.id)
        return MergeOutcome.MERGED

    def fast_forward(self, refname: str, commit: AnnotatedCommit) -> None:
        msg = f"Fast-Forward: Setting {refname} to id: {commit.id}"
        self.console.print(escape(msg))
        self.repo.set_reference_target(refname, commit.id, msg)
        self.repo.set_head(refname)
        # Forced so the working tree really follows the moved branch
        self.repo.checkout_head(force=True)


def get_name(commit: AnnotatedCommit) -> str:
    return commit.name
