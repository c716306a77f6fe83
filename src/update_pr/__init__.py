"""update-pr: keep a working branch merged with its integration branch."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("update-pr")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"  # Fallback for editable installs without metadata

from .sync import SyncEngine, SyncLoop  # noqa: F401

__all__ = [
    "SyncEngine",
    "SyncLoop",
    "__version__",
]
