"""Constants shared across update-pr."""

from __future__ import annotations

# Remote the branch is synced with and the integration branch merged into it.
# Both are defaults; config files, UPDATE_PR_REMOTE/UPDATE_PR_BRANCH and the
# --remote/--branch flags override them.
REMOTE_NAME = "origin"
REMOTE_BRANCH = "main"

# Fallback SSH user when the remote URL does not carry one
DEFAULT_SSH_USER = "git"

BRANCH_PREFIX = "refs/heads/"
REMOTES_PREFIX = "refs/remotes/"
FETCH_HEAD = "FETCH_HEAD"

# Environment variables consulted for HTTPS tokens, in priority order
TOKEN_ENV_VARS = ("UPDATE_PR_GITHUB_TOKEN", "GITHUB_TOKEN", "GH_TOKEN")

# Polling interval while waiting between iterations
WAIT_TICK_SECONDS = 0.1

# Oldest git with `merge-tree --write-tree`; `--merge-base` needs 2.40
MIN_GIT_VERSION = (2, 38)
MERGE_BASE_OPTION_VERSION = (2, 40)
