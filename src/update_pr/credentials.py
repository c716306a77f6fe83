"""Credential providers for remote operations.

A credential provider is any callable ``(url, username_from_url, allowed)``
returning a ``Credential``. The git engine never calls back into Python while
a transfer is running, so the provider is consulted once per fetch/push and
its answer is translated into the environment git runs with
(``GIT_SSH_COMMAND``, a credential helper for tokens, and settings that make
git fail fast instead of prompting).
"""

from __future__ import annotations

import os
import re
import shlex
from dataclasses import dataclass
from enum import Flag, auto
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional, Tuple
from urllib.parse import urlparse

from .constants import DEFAULT_SSH_USER, TOKEN_ENV_VARS
from .errors import CredentialError
from .observability import log_debug, log_warning

# Environment variable git's credential helper reads the token from, so the
# token never appears on a command line.
TOKEN_HELPER_ENV = "UPDATE_PR_GIT_TOKEN"
TOKEN_USERNAME = "x-access-token"

_SCP_LIKE = re.compile(r"^(?:(?P<user>[^@/]+)@)?(?P<host>[^:/]+):(?!//)")


class CredentialKind(Flag):
    """Kinds of credential a transport can accept."""

    DEFAULT = auto()
    SSH_KEY = auto()
    USERPASS_PLAINTEXT = auto()


@dataclass(frozen=True)
class Credential:
    """Authentication material for one remote operation."""

    kind: str  # "default", "ssh-agent", "ssh-key", "token"
    username: Optional[str] = None
    key_path: Optional[Path] = None
    token: Optional[str] = None

    @classmethod
    def default(cls) -> "Credential":
        return cls(kind="default")

    @classmethod
    def ssh_agent(cls, username: str) -> "Credential":
        return cls(kind="ssh-agent", username=username)

    @classmethod
    def ssh_key(cls, username: str, key_path: Path) -> "Credential":
        return cls(kind="ssh-key", username=username, key_path=key_path)

    @classmethod
    def from_token(cls, token: str, username: Optional[str] = None) -> "Credential":
        return cls(kind="token", username=username or TOKEN_USERNAME, token=token)

    def __repr__(self) -> str:
        # Keep tokens out of logs and tracebacks
        token = "***" if self.token else None
        return (
            f"Credential(kind={self.kind!r}, username={self.username!r}, "
            f"key_path={self.key_path!r}, token={token!r})"
        )


CredentialProvider = Callable[[str, Optional[str], CredentialKind], Credential]


def describe_url(url: str) -> Tuple[Optional[str], CredentialKind]:
    """Return the username embedded in ``url`` and the credential kinds its
    transport accepts."""
    if "://" not in url:
        # scp-like "[user@]host:path"; a one-letter host is a Windows drive
        match = _SCP_LIKE.match(url)
        if match and len(match.group("host")) > 1 and not os.path.exists(url):
            return match.group("user"), CredentialKind.SSH_KEY
        return None, CredentialKind.DEFAULT

    parsed = urlparse(url)
    scheme = parsed.scheme.lower()
    if scheme in ("ssh", "git+ssh", "ssh+git"):
        return parsed.username, CredentialKind.SSH_KEY
    if scheme in ("http", "https"):
        return parsed.username, CredentialKind.USERPASS_PLAINTEXT
    return None, CredentialKind.DEFAULT


def token_from_env(env: Optional[Mapping[str, str]] = None) -> Optional[str]:
    env = os.environ if env is None else env
    for name in TOKEN_ENV_VARS:
        value = env.get(name)
        if value:
            return value
    return None


def ssh_agent_credentials(
    url: str,
    username_from_url: Optional[str],
    allowed: CredentialKind,
) -> Credential:
    """Default provider: SSH agent for ssh remotes, env token for HTTPS."""
    if CredentialKind.SSH_KEY in allowed:
        return Credential.ssh_agent(username_from_url or DEFAULT_SSH_USER)
    if CredentialKind.USERPASS_PLAINTEXT in allowed:
        token = token_from_env()
        if token:
            return Credential.from_token(token, username_from_url)
    return Credential.default()


def ssh_key_credentials(key_path: Path, ssh_user: str = DEFAULT_SSH_USER) -> CredentialProvider:
    """Build a provider that authenticates ssh remotes with ``key_path``."""
    key_path = Path(key_path).expanduser()

    def provider(url: str, username_from_url: Optional[str], allowed: CredentialKind) -> Credential:
        if CredentialKind.SSH_KEY in allowed:
            return Credential.ssh_key(username_from_url or ssh_user, key_path)
        return ssh_agent_credentials(url, username_from_url, allowed)

    return provider


def agent_credentials(ssh_user: str = DEFAULT_SSH_USER) -> CredentialProvider:
    """Build an agent provider with a custom fallback username."""

    def provider(url: str, username_from_url: Optional[str], allowed: CredentialKind) -> Credential:
        return ssh_agent_credentials(url, username_from_url or ssh_user, allowed)

    return provider


def transport_environment(url: str, provider: CredentialProvider) -> Dict[str, str]:
    """Ask ``provider`` for a credential and translate it into git's environment.

    Raises:
        CredentialError: if the credential refers to material that does not exist.
    """
    username, allowed = describe_url(url)
    credential = provider(url, username, allowed)
    log_debug("credential resolved", url=url, kind=credential.kind, username=credential.username)

    env: Dict[str, str] = {
        # Fail fast instead of hanging on a prompt nobody will answer
        "GIT_TERMINAL_PROMPT": "0",
        "GCM_INTERACTIVE": "never",
    }

    if credential.kind == "ssh-agent":
        if not os.environ.get("SSH_AUTH_SOCK"):
            log_warning("SSH_AUTH_SOCK is not set; ssh will fall back to default identities", url=url)
        env["GIT_SSH_COMMAND"] = (
            f"ssh -o BatchMode=yes -l {shlex.quote(credential.username or DEFAULT_SSH_USER)}"
        )
    elif credential.kind == "ssh-key":
        key_path = credential.key_path
        if key_path is None or not key_path.is_file():
            raise CredentialError(f"SSH key not found: {key_path}")
        env["GIT_SSH_COMMAND"] = (
            f"ssh -i {shlex.quote(str(key_path))} -o IdentitiesOnly=yes -o BatchMode=yes"
            f" -l {shlex.quote(credential.username or DEFAULT_SSH_USER)}"
        )
    elif credential.kind == "token":
        if not credential.token:
            raise CredentialError("Token credential without a token")
        env[TOKEN_HELPER_ENV] = credential.token
        env["GIT_CONFIG_COUNT"] = "1"
        env["GIT_CONFIG_KEY_0"] = "credential.helper"
        env["GIT_CONFIG_VALUE_0"] = (
            f"!f() {{ echo username={credential.username}; "
            f'echo "password=${TOKEN_HELPER_ENV}"; }}; f'
        )
    return env
