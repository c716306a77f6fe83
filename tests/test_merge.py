from pathlib import Path

import pytest
from git import Git, Repo

from conftest import clone, commit_file, push_from_other_clone, seed_remote_with_main

from update_pr.merge import MergeEngine, MergeOutcome
from update_pr.errors import ErrorClass, GitEngineError
from update_pr.repository import AnnotatedCommit, GitRepository, MergeAnalysis, check_git_version


@pytest.fixture
def remote(tmp_path):
    path = tmp_path / "remote.git"
    seed_remote_with_main(path)
    return path


@pytest.fixture
def local(remote, tmp_path):
    return clone(remote, tmp_path / "local")


def fetched_main(repo: GitRepository):
    repo.repo.remotes.origin.fetch()
    return repo.resolve_reference("refs/remotes/origin/main")


def test_fast_forward_moves_branch_without_new_commit(remote, local, tmp_path, console):
    remote_sha = push_from_other_clone(remote, tmp_path, "remote.txt", "from remote\n")
    repo = GitRepository(local)
    fetched = fetched_main(repo)

    assert repo.merge_analysis(fetched) is MergeAnalysis.FAST_FORWARD
    outcome = MergeEngine(repo, console).merge("refs/heads/main", fetched)

    assert outcome is MergeOutcome.FAST_FORWARD
    assert local.head.commit.hexsha == remote_sha
    assert local.head.reference.name == "main"
    assert (Path(local.working_tree_dir) / "remote.txt").read_text() == "from remote\n"
    assert repo.merge_analysis(fetched) is MergeAnalysis.UP_TO_DATE

    out = console.file.getvalue()
    assert "Doing a fast forward" in out
    assert f"Fast-Forward: Setting refs/heads/main to id: {remote_sha}" in out


def test_short_branch_name_is_qualified(remote, local, tmp_path, console):
    remote_sha = push_from_other_clone(remote, tmp_path, "remote.txt", "x\n")
    repo = GitRepository(local)

    MergeEngine(repo, console).merge("main", fetched_main(repo))

    assert local.commit("refs/heads/main").hexsha == remote_sha
    assert not repo.reference_exists("refs/heads/refs/heads/main")


def test_normal_merge_creates_commit_with_both_parents(remote, local, tmp_path, console):
    local_sha = commit_file(local, "local.txt", "mine\n")
    remote_sha = push_from_other_clone(remote, tmp_path, "remote.txt", "theirs\n")
    repo = GitRepository(local)
    fetched = fetched_main(repo)

    assert repo.merge_analysis(fetched) is MergeAnalysis.NORMAL
    outcome = MergeEngine(repo, console).merge("refs/heads/main", fetched)

    assert outcome is MergeOutcome.MERGED
    head = local.head.commit
    assert [p.hexsha for p in head.parents] == [local_sha, remote_sha]
    assert head.message == "Merge 'refs/remotes/origin/main' into refs/heads/main"
    workdir = Path(local.working_tree_dir)
    assert (workdir / "local.txt").read_text() == "mine\n"
    assert (workdir / "remote.txt").read_text() == "theirs\n"
    assert not local.is_dirty(untracked_files=True)
    assert repo.merge_analysis(fetched) is MergeAnalysis.UP_TO_DATE


def test_conflicting_merge_leaves_markers_and_no_commit(remote, local, tmp_path, console):
    local_sha = commit_file(local, "README.md", "local line\n")
    remote_sha = push_from_other_clone(remote, tmp_path, "README.md", "remote line\n")
    repo = GitRepository(local)
    fetched = fetched_main(repo)

    outcome = MergeEngine(repo, console).merge("refs/heads/main", fetched)

    assert outcome is MergeOutcome.CONFLICTED
    assert local.head.commit.hexsha == local_sha
    content = (Path(local.working_tree_dir) / "README.md").read_text()
    assert "<<<<<<<" in content and ">>>>>>>" in content
    assert "local line" in content and "remote line" in content

    unmerged = Repo(local.working_tree_dir).index.unmerged_blobs()
    assert sorted(stage for stage, _ in unmerged["README.md"]) == [1, 2, 3]
    merge_head = Path(local.git_dir) / "MERGE_HEAD"
    assert merge_head.read_text().strip() == remote_sha

    out = console.file.getvalue()
    assert "Merge conflicts detected..." in out
    assert "README.md" in out


def test_up_to_date_is_a_no_op(remote, local, console):
    repo = GitRepository(local)
    before = local.head.commit.hexsha

    outcome = MergeEngine(repo, console).merge("refs/heads/main", fetched_main(repo))

    assert outcome is MergeOutcome.NOTHING_TO_DO
    assert local.head.commit.hexsha == before
    assert "Nothing to do..." in console.file.getvalue()


def test_local_ahead_is_up_to_date(remote, local, console):
    ahead = commit_file(local, "local.txt", "ahead\n")
    repo = GitRepository(local)

    outcome = MergeEngine(repo, console).merge("refs/heads/main", fetched_main(repo))

    assert outcome is MergeOutcome.NOTHING_TO_DO
    assert local.head.commit.hexsha == ahead


def test_unborn_branch_is_created_at_fetched_commit(remote, tmp_path, console):
    workdir = tmp_path / "empty"
    empty = Repo.init(workdir, initial_branch="main")
    empty.create_remote("origin", remote.as_posix())
    repo = GitRepository(empty)
    fetched = fetched_main(repo)

    assert repo.head_id() is None
    assert repo.merge_analysis(fetched) is MergeAnalysis.UNBORN
    outcome = MergeEngine(repo, console).merge("main", fetched)

    assert outcome is MergeOutcome.FAST_FORWARD
    assert repo.head_id() == fetched.id
    assert repo.head_ref_name() == "refs/heads/main"
    assert (workdir / "README.md").read_text() == "seed\n"


def test_merge_trees_passes_commits_and_base_when_supported(local, monkeypatch):
    calls = []

    def fake_merge_tree(self, *args, **kwargs):  # type: ignore[no-untyped-def]
        calls.append(args)
        return 0, "f" * 40 + "\n", ""

    monkeypatch.setattr(Git, "merge_tree", fake_merge_tree, raising=False)
    repo = GitRepository(local)
    base, ours, theirs = "a" * 40, "b" * 40, "c" * 40

    repo.git_version = (2, 45, 1)
    assert repo.merge_trees(base, ours, theirs).tree_id == "f" * 40
    repo.git_version = (2, 39, 5)
    repo.merge_trees(base, ours, theirs)

    assert calls == [
        ("--write-tree", "--no-messages", f"--merge-base={base}", ours, theirs),
        ("--write-tree", "--no-messages", ours, theirs),
    ]


def test_merge_trees_failure_is_a_merge_error(local, monkeypatch):
    def fake_merge_tree(self, *args, **kwargs):  # type: ignore[no-untyped-def]
        return 129, "", "error: unknown option"

    monkeypatch.setattr(Git, "merge_tree", fake_merge_tree, raising=False)

    with pytest.raises(GitEngineError) as exc_info:
        GitRepository(local).merge_trees("a" * 40, "b" * 40, "c" * 40)
    assert exc_info.value.klass is ErrorClass.MERGE
    assert exc_info.value.exit_code == 129


@pytest.mark.parametrize("version", [(2, 38, 0), (2, 39, 5), (2, 40, 0), (2, 45, 2), (3, 0)])
def test_supported_git_versions(version):
    check_git_version(version)


@pytest.mark.parametrize("version", [(2, 37, 9), (1, 9), ()])
def test_old_git_versions_rejected(version):
    with pytest.raises(GitEngineError) as exc_info:
        check_git_version(version)
    assert exc_info.value.klass is ErrorClass.REPOSITORY
    assert "git 2.38 or newer is required" in str(exc_info.value)


def test_open_rejects_old_git(local, monkeypatch):
    monkeypatch.setattr(Git, "version_info", property(lambda self: (2, 30, 1)))

    with pytest.raises(GitEngineError, match=r"found 2\.30\.1"):
        GitRepository.open(local.working_tree_dir)


def test_merge_state_write_failure_is_an_engine_error(local):
    repo = GitRepository(local)
    (Path(local.git_dir) / "MERGE_HEAD").mkdir()

    with pytest.raises(GitEngineError) as exc_info:
        repo.record_merge_state("a" * 40, "Merge 'main' into refs/heads/main")
    assert exc_info.value.klass is ErrorClass.MERGE


def test_unknown_parent_is_an_engine_error(local):
    repo = GitRepository(local)

    with pytest.raises(GitEngineError) as exc_info:
        repo.create_commit(local.head.commit.tree.hexsha, "m", ["no-such-revision"])
    assert exc_info.value.klass is ErrorClass.MERGE


@pytest.mark.parametrize(
    "commit,name",
    [
        (AnnotatedCommit("abc", "FETCH_HEAD", "branch 'main' of /srv/remote.git"), "main"),
        (AnnotatedCommit("abc", "FETCH_HEAD", "tag 'v1.0' of https://example.com/r.git"), "v1.0"),
        (AnnotatedCommit("abc", "FETCH_HEAD", "'refs/pull/1/head' of https://example.com/r.git"), "refs/pull/1/head"),
        (AnnotatedCommit("abc", "refs/remotes/origin/main"), "refs/remotes/origin/main"),
        (AnnotatedCommit("abc", "FETCH_HEAD"), "FETCH_HEAD"),
        (AnnotatedCommit("abc"), "abc"),
    ],
)
def test_annotated_commit_name(commit, name):
    assert commit.name == name


def test_merge_of_fetch_head_names_the_branch(remote, local, tmp_path, console):
    commit_file(local, "local.txt", "mine\n")
    push_from_other_clone(remote, tmp_path, "remote.txt", "theirs\n")
    repo = GitRepository(local)
    local.remotes.origin.fetch("main")

    MergeEngine(repo, console).merge("refs/heads/main", repo.resolve_fetch_head())

    assert local.head.commit.message == "Merge 'main' into refs/heads/main"
