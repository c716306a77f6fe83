"""Exception types for update-pr.

Every failure that should stop the sync loop is an ``UpdatePrError``. Git
failures are wrapped once, at the repository adapter boundary, into a
``GitEngineError`` that remembers which class of failure it was and the exit
status git reported.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional, Sequence

from git import GitCommandError


class ErrorClass(str, Enum):
    """Coarse classification of a git engine failure."""

    NET = "net"
    AUTH = "auth"
    REFERENCE = "reference"
    REPOSITORY = "repository"
    CONFIG = "config"
    CHECKOUT = "checkout"
    MERGE = "merge"
    PUSH = "push"
    OTHER = "other"


# Checked before the network tokens: ssh reports auth failures as
# "Permission denied ... Could not read from remote repository".
AUTH_TOKENS = (
    "permission denied",
    "authentication failed",
    "could not read username",
    "could not read password",
    "terminal prompts disabled",
    "invalid username or password",
    "host key verification failed",
    "returned error: 401",
    "returned error: 403",
)

NETWORK_TOKENS = (
    "could not resolve host",
    "could not resolve hostname",
    "unable to look up",
    "unable to connect to",
    "name or service not known",
    "temporary failure in name resolution",
    "no route to host",
    "network is unreachable",
    "failed to connect to",
    "connection refused",
    "connection timed out",
    "operation timed out",
    "connection reset",
    "ssl certificate problem",
    "ssl_connect",
    "ssl_error",
    "tls connection",
    "gnutls_handshake",
    "early eof",
    "the remote end hung up unexpectedly",
)

REFERENCE_TOKENS = (
    "couldn't find remote ref",
    "could not find remote ref",
    "does not match any",
    "unknown revision",
    "needed a single revision",
    "not a valid ref",
    "bad revision",
)

PUSH_TOKENS = (
    "[rejected]",
    "[remote rejected]",
    "failed to push some refs",
    "non-fast-forward",
)

CHECKOUT_TOKENS = (
    "would be overwritten",
    "you need to resolve your current index first",
    "not uptodate. cannot merge",
    "unable to unlink",
)


def classify_text(text: str) -> ErrorClass:
    """Classify git stderr output into an ``ErrorClass``."""
    lowered = (text or "").lower()
    for tokens, klass in (
        (AUTH_TOKENS, ErrorClass.AUTH),
        (NETWORK_TOKENS, ErrorClass.NET),
        (REFERENCE_TOKENS, ErrorClass.REFERENCE),
        (PUSH_TOKENS, ErrorClass.PUSH),
        (CHECKOUT_TOKENS, ErrorClass.CHECKOUT),
    ):
        if any(token in lowered for token in tokens):
            return klass
    return ErrorClass.OTHER


class UpdatePrError(Exception):
    """Base exception for update-pr."""

    exit_code: int = 1


class ConfigError(UpdatePrError):
    """Configuration loading or validation error."""

    exit_code = 2


class CredentialError(UpdatePrError):
    """The credential provider could not supply authentication material."""


class GitEngineError(UpdatePrError):
    """A git operation failed.

    Attributes:
        klass: Failure classification, used by the fetch layer to tell
            transient network problems from everything else.
        status: Exit status reported by git, when there was a git process.
    """

    def __init__(
        self,
        message: str,
        *,
        klass: ErrorClass = ErrorClass.OTHER,
        status: Optional[int] = None,
    ):
        super().__init__(message)
        self.klass = klass
        self.status = status

    @property
    def exit_code(self) -> int:  # type: ignore[override]
        if isinstance(self.status, int) and self.status > 0:
            return self.status
        return 1

    @property
    def is_network(self) -> bool:
        return self.klass is ErrorClass.NET

    @classmethod
    def from_command_error(
        cls,
        action: str,
        error: GitCommandError,
        klass: Optional[ErrorClass] = None,
        output: Sequence[str] = (),
    ) -> "GitEngineError":
        """Wrap ``error``.

        ``output`` is whatever else git printed to stderr; transports report
        the actual cause (``ssh: Could not resolve hostname ...``) before the
        ``fatal:`` line that ends up in ``error.stderr``.
        """
        stderr = _clean_stream((error.stderr or "").strip())
        lines = [line.strip() for line in output if line.strip()]
        status = error.status if isinstance(error.status, int) else None
        detail = "\n".join(dict.fromkeys([*lines, stderr] if stderr else lines)) or str(error)
        return cls(
            f"{action} failed: {detail}",
            klass=klass or classify_text(detail),
            status=status,
        )


def _clean_stream(text: str) -> str:
    # GitCommandError renders streams as "\n  stderr: '...'"
    cleaned = text.strip()
    if cleaned.startswith("stderr:"):
        cleaned = cleaned[len("stderr:"):].strip()
    return cleaned.strip("'").strip()
