"""GitPython adapter exposing the git capabilities the sync engine relies on.

``GitRepository`` is the only place that talks to GitPython. Every
``GitCommandError`` leaving it is wrapped into a classified
``GitEngineError`` so the layers above can apply their error policy without
parsing git output themselves.
"""

from __future__ import annotations

import re
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from git import (
    Blob,
    Commit,
    GitCommandError,
    InvalidGitRepositoryError,
    NoSuchPathError,
    PushInfo,
    Reference,
    Remote,
    RemoteProgress,
    Repo,
)
from git.exc import BadName, BadObject
from git.index.typ import BaseIndexEntry, IndexEntry

from .constants import (
    BRANCH_PREFIX,
    FETCH_HEAD,
    MERGE_BASE_OPTION_VERSION,
    MIN_GIT_VERSION,
    REMOTES_PREFIX,
)
from .errors import ErrorClass, GitEngineError
from .observability import log_debug
from .progress import TransferReporter

# "branch 'main' of <url>", "tag 'v1' of <url>", "'refs/x/y' of <url>"
_FETCH_HEAD_SOURCE = re.compile(r"^(?:(?:remote-tracking )?branch |tag )?'(?P<name>[^']+)' of ")


class MergeAnalysis(str, Enum):
    """What kind of merge bringing a commit into HEAD requires."""

    UP_TO_DATE = "up-to-date"
    FAST_FORWARD = "fast-forward"
    NORMAL = "normal"
    UNBORN = "unborn"


@dataclass(frozen=True)
class AnnotatedCommit:
    """A commit id plus where it came from.

    Two annotated commits are equal when their ids are, whatever their
    provenance.
    """

    id: str
    refname: Optional[str] = field(default=None, compare=False)
    description: Optional[str] = field(default=None, compare=False)

    @property
    def name(self) -> str:
        """Short label used in merge messages.

        ``FETCH_HEAD`` commits are named after the ref they were fetched
        from, not after the description line git wrote for them.
        """
        if self.refname and self.refname != FETCH_HEAD:
            return self.refname
        if self.description:
            match = _FETCH_HEAD_SOURCE.match(self.description)
            return match.group("name") if match else self.description
        return self.refname or self.id


@dataclass(frozen=True)
class ConflictEntry:
    """One stage of a conflicted path, as reported by ``git merge-tree``."""

    mode: int
    oid: str
    stage: int
    path: str


@dataclass(frozen=True)
class MergeIndex:
    """Result of a three-way tree merge.

    ``tree_id`` always names a written tree; for conflicted paths it holds the
    file with conflict markers.
    """

    tree_id: str
    conflicts: Tuple[ConflictEntry, ...] = ()

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)

    @property
    def conflicted_paths(self) -> List[str]:
        return sorted({entry.path for entry in self.conflicts})


@contextmanager
def engine_errors(action: str, klass: Optional[ErrorClass] = None) -> Iterator[None]:
    """Translate GitPython failures raised inside the block."""
    try:
        yield
    except GitCommandError as exc:
        raise GitEngineError.from_command_error(action, exc, klass) from exc
    except (ValueError, BadName, BadObject) as exc:
        # GitPython raises these for missing refs/remotes/objects
        raise GitEngineError(f"{action} failed: {exc}", klass=klass or ErrorClass.REFERENCE) from exc
    except OSError as exc:
        raise GitEngineError(f"{action} failed: {exc}", klass=klass or ErrorClass.OTHER) from exc


@contextmanager
def transfer_errors(
    action: str,
    progress: RemoteProgress,
    klass: Optional[ErrorClass] = None,
) -> Iterator[None]:
    """Like ``engine_errors``, but classifies on all of git's stderr.

    GitPython only keeps the lines from the first ``fatal:``/``error:`` on in
    the exception; the ones before it are in ``progress.other_lines``.
    """
    try:
        yield
    except GitCommandError as exc:
        raise GitEngineError.from_command_error(
            action, exc, klass, output=list(progress.other_lines)
        ) from exc


def check_git_version(version: Sequence[int]) -> None:
    """Raise unless ``version`` can run ``merge-tree --write-tree``."""
    if tuple(version[:2]) < MIN_GIT_VERSION:
        found = ".".join(str(part) for part in version) or "unknown"
        required = ".".join(str(part) for part in MIN_GIT_VERSION)
        raise GitEngineError(
            f"git {required} or newer is required; found {found}",
            klass=ErrorClass.REPOSITORY,
        )


class GitRepository:
    """An opened working copy.

    Attributes:
        repo: Underlying GitPython ``Repo``
        path: Working tree root
        git_version: Version of the git executable GitPython runs
    """

    def __init__(self, repo: Repo):
        self.repo = repo
        self.path = Path(repo.working_tree_dir or repo.git_dir)
        self.git_version: Tuple[int, ...] = tuple(repo.git.version_info)

    @classmethod
    def open(cls, path: Path | str) -> "GitRepository":
        """Open an existing, non-bare repository at ``path``.

        Raises:
            GitEngineError: if ``path`` does not exist, is not a git working
                copy, or the installed git is too old.
        """
        try:
            repo = Repo(Path(path))
        except (InvalidGitRepositoryError, NoSuchPathError) as exc:
            raise GitEngineError(
                f"Not a git repository: {path}", klass=ErrorClass.REPOSITORY
            ) from exc
        if repo.bare:
            raise GitEngineError(
                f"Repository at {path} is bare; a working tree is required",
                klass=ErrorClass.REPOSITORY,
            )
        opened = cls(repo)
        check_git_version(opened.git_version)
        return opened

    # ------------------------------------------------------------------
    # HEAD and references
    # ------------------------------------------------------------------

    def head_ref_name(self) -> str:
        """Full name of the branch HEAD points at, e.g. ``refs/heads/main``."""
        try:
            return self.repo.git.symbolic_ref("-q", "HEAD")
        except GitCommandError as exc:
            raise GitEngineError(
                "HEAD is detached; check out a branch to sync",
                klass=ErrorClass.REFERENCE,
                status=exc.status if isinstance(exc.status, int) else None,
            ) from exc

    def head_id(self) -> Optional[str]:
        """Commit id HEAD resolves to, or None while the branch is unborn."""
        if not self.repo.head.is_valid():
            return None
        return self.repo.head.commit.hexsha

    def head_annotated_commit(self) -> AnnotatedCommit:
        head_id = self.head_id()
        if head_id is None:
            raise GitEngineError("HEAD has no commits yet", klass=ErrorClass.REFERENCE)
        return AnnotatedCommit(id=head_id, refname=self.head_ref_name())

    def reference_exists(self, refname: str) -> bool:
        return Reference(self.repo, refname).is_valid()

    def resolve_reference(self, refname: str) -> AnnotatedCommit:
        """Annotated commit for an existing reference."""
        with engine_errors(f"resolve {refname}", ErrorClass.REFERENCE):
            commit = Reference(self.repo, refname).commit
        return AnnotatedCommit(id=commit.hexsha, refname=refname)

    def resolve_fetch_head(self) -> AnnotatedCommit:
        """Annotated commit for the first entry of ``FETCH_HEAD``."""
        with engine_errors(f"resolve {FETCH_HEAD}", ErrorClass.REFERENCE):
            commit_id = self.repo.git.rev_parse("--verify", f"{FETCH_HEAD}^{{commit}}")
        return AnnotatedCommit(
            id=commit_id,
            refname=FETCH_HEAD,
            description=self._fetch_head_description(commit_id),
        )

    def _fetch_head_description(self, commit_id: str) -> Optional[str]:
        fetch_head = Path(self.repo.git_dir) / FETCH_HEAD
        try:
            lines = fetch_head.read_text(encoding="utf-8").splitlines()
        except OSError:
            return None
        for line in lines:
            # "<sha>\t[not-for-merge]\tbranch 'main' of <url>"
            parts = line.split("\t")
            if len(parts) == 3 and parts[0] == commit_id and parts[2]:
                return parts[2]
        return None

    def set_reference_target(self, refname: str, commit_id: str, message: str) -> None:
        with engine_errors(f"update {refname}"):
            Reference(self.repo, refname).set_object(self.repo.commit(commit_id), logmsg=message)

    def create_reference(self, refname: str, commit_id: str, message: str) -> None:
        with engine_errors(f"create {refname}"):
            Reference.create(self.repo, refname, commit_id, logmsg=message, force=True)

    def set_head(self, refname: str) -> None:
        with engine_errors(f"set HEAD to {refname}"):
            self.repo.head.set_reference(Reference(self.repo, refname), logmsg=f"checkout: moving to {refname}")

    # ------------------------------------------------------------------
    # Remotes
    # ------------------------------------------------------------------

    def find_remote(self, name: str) -> Remote:
        """Look up a configured remote by name."""
        remote = Remote(self.repo, name)
        if not remote.exists():
            raise GitEngineError(f"Remote '{name}' does not exist", klass=ErrorClass.CONFIG)
        return remote

    def remote_url(self, remote: Remote) -> str:
        with engine_errors(f"read url of remote {remote.name}", ErrorClass.CONFIG):
            return next(remote.urls, "")

    def fetch(
        self,
        remote: Remote,
        refspecs: Sequence[str],
        *,
        progress: Optional[TransferReporter] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> None:
        """Fetch ``refspecs`` from ``remote``, downloading all tags."""
        progress = progress or RemoteProgress()
        with transfer_errors(f"fetch {', '.join(refspecs)} from {remote.name}", progress):
            with self.repo.git.custom_environment(**(env or {})):
                remote.fetch(refspec=list(refspecs), progress=progress, tags=True)

    def push(
        self,
        remote: Remote,
        refspecs: Sequence[str],
        *,
        progress: Optional[TransferReporter] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> List[PushInfo]:
        """Push ``refspecs`` to ``remote``; any rejected ref is an error."""
        action = f"push {', '.join(refspecs)} to {remote.name}"
        progress = progress or RemoteProgress()
        with engine_errors(action, ErrorClass.PUSH), transfer_errors(action, progress, ErrorClass.PUSH):
            with self.repo.git.custom_environment(**(env or {})):
                infos = remote.push(refspec=list(refspecs), progress=progress)
            infos.raise_if_error()
        failed = PushInfo.ERROR | PushInfo.REJECTED | PushInfo.REMOTE_REJECTED | PushInfo.REMOTE_FAILURE
        for info in infos:
            if info.flags & failed:
                raise GitEngineError(
                    f"{action} failed: {info.remote_ref_string} {info.summary.strip()}",
                    klass=ErrorClass.PUSH,
                )
        return list(infos)

    # ------------------------------------------------------------------
    # Merging
    # ------------------------------------------------------------------

    def merge_analysis(self, commit: AnnotatedCommit) -> MergeAnalysis:
        """Classify what merging ``commit`` into HEAD requires."""
        head_id = self.head_id()
        if head_id is None:
            return MergeAnalysis.UNBORN
        with engine_errors(f"analyse merge of {commit.id}", ErrorClass.MERGE):
            if head_id == commit.id or self.repo.is_ancestor(commit.id, head_id):
                return MergeAnalysis.UP_TO_DATE
            if self.repo.is_ancestor(head_id, commit.id):
                return MergeAnalysis.FAST_FORWARD
        return MergeAnalysis.NORMAL

    def merge_base(self, one: str, two: str) -> str:
        with engine_errors(f"find merge base of {one} and {two}", ErrorClass.MERGE):
            bases = self.repo.merge_base(one, two)
        if not bases:
            raise GitEngineError(f"No merge base found for {one} and {two}", klass=ErrorClass.MERGE)
        return bases[0].hexsha

    def merge_trees(self, base_id: str, ours_id: str, theirs_id: str) -> MergeIndex:
        """Three-way merge of two commits, writing the result tree.

        Uses ``git merge-tree --write-tree``: exit status 0 means a clean
        merge, 1 means conflicts; anything else is a failure. ``base_id`` is
        passed as ``--merge-base`` where git supports it (2.40+); older git
        computes the same base from the two commits itself.
        """
        args = ["--write-tree", "--no-messages"]
        if tuple(self.git_version[:2]) >= MERGE_BASE_OPTION_VERSION:
            args.append(f"--merge-base={base_id}")
        status, stdout, stderr = self.repo.git.merge_tree(
            *args,
            ours_id,
            theirs_id,
            with_extended_output=True,
            with_exceptions=False,
        )
        if status not in (0, 1):
            raise GitEngineError.from_command_error(
                "merge trees",
                GitCommandError(["git", "merge-tree"], status, stderr),
                ErrorClass.MERGE,
            )
        lines = stdout.splitlines()
        if not lines:
            raise GitEngineError("merge trees failed: no tree written", klass=ErrorClass.MERGE)
        conflicts = tuple(_parse_conflict_line(line) for line in lines[1:] if line.strip())
        log_debug("merge-tree", status=status, tree=lines[0], conflicts=len(conflicts))
        return MergeIndex(tree_id=lines[0].strip(), conflicts=conflicts)

    def write_tree(self, index: MergeIndex) -> str:
        if index.has_conflicts:
            raise GitEngineError("Cannot write a tree from a conflicted index", klass=ErrorClass.MERGE)
        return index.tree_id

    def create_commit(self, tree_id: str, message: str, parents: Sequence[str]) -> str:
        """Create a commit and advance HEAD's branch to it."""
        with engine_errors("create merge commit", ErrorClass.MERGE):
            commit = Commit.create_from_tree(
                self.repo,
                self.repo.tree(tree_id),
                message,
                parent_commits=[self.repo.commit(parent) for parent in parents],
                head=False,
            )
            self.repo.head.set_commit(commit, logmsg=f"commit (merge): {message}")
        return commit.hexsha

    # ------------------------------------------------------------------
    # Working tree
    # ------------------------------------------------------------------

    def checkout_head(self, *, force: bool = False, previous: Optional[str] = None) -> None:
        """Make the index and working tree match HEAD.

        A forced checkout discards local differences. A safe checkout moves
        from ``previous`` to HEAD and refuses to overwrite local changes.
        """
        with engine_errors("checkout HEAD", ErrorClass.CHECKOUT):
            if force or previous is None:
                self.repo.head.reset(index=True, working_tree=True)
            else:
                self.repo.git.read_tree("-m", "-u", previous, "HEAD")

    def checkout_index(self, index: MergeIndex) -> None:
        """Write a merge result, conflicts included, into index and working tree.

        Clean paths land at stage 0; each conflicted path is recorded with its
        ancestor/ours/theirs stages and its working file carries conflict
        markers. HEAD does not move.
        """
        head_id = self.head_id()
        with engine_errors("checkout conflicted index", ErrorClass.CHECKOUT):
            if head_id is None:
                self.repo.git.read_tree("--reset", "-u", index.tree_id)
            else:
                self.repo.git.read_tree("-m", "-u", head_id, index.tree_id)
            git_index = self.repo.index
            for path in index.conflicted_paths:
                git_index.entries.pop((path, 0), None)
            for entry in index.conflicts:
                blob = Blob(self.repo, bytes.fromhex(entry.oid), entry.mode, entry.path)
                base = BaseIndexEntry.from_blob(blob, stage=entry.stage)
                git_index.entries[(entry.path, entry.stage)] = IndexEntry.from_base(base)
            git_index.write(ignore_extension_data=True)

    def record_merge_state(self, their_id: str, message: str) -> None:
        """Leave MERGE_HEAD/MERGE_MSG so a manual ``git commit`` concludes the merge."""
        git_dir = Path(self.repo.git_dir)
        with engine_errors("record merge state", ErrorClass.MERGE):
            (git_dir / "MERGE_HEAD").write_text(f"{their_id}\n", encoding="utf-8")
            (git_dir / "MERGE_MSG").write_text(f"{message}\n", encoding="utf-8")


def _parse_conflict_line(line: str) -> ConflictEntry:
    # "<mode> <object> <stage>\t<path>"
    meta, _, path = line.partition("\t")
    mode, oid, stage = meta.split()
    if path.startswith('"') and path.endswith('"'):
        path = path[1:-1].encode("latin-1").decode("unicode_escape").encode("latin-1").decode("utf-8")
    return ConflictEntry(mode=int(mode, 8), oid=oid, stage=int(stage), path=path)


def branch_refname(name: str) -> str:
    """Qualify a short branch name; fully qualified names pass through."""
    if name.startswith("refs/"):
        return name
    return f"{BRANCH_PREFIX}{name}"


def tracking_refname(remote_name: str, refname: str) -> Optional[str]:
    """Remote-tracking counterpart of ``refs/heads/<branch>`` on ``remote_name``."""
    if refname.startswith(BRANCH_PREFIX):
        return f"{REMOTES_PREFIX}{remote_name}/{refname[len(BRANCH_PREFIX):]}"
    return None
