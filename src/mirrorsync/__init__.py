"""mirrorsync: mirror branches and tags between Git repositories, Gerrit aware."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("mirrorsync")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"  # Fallback for source checkouts without metadata

from .divergence import DivergenceClassifier, DivergenceVerdict  # noqa: F401
from .errors import DivergedBranchError, MirrorError  # noqa: F401
from .mirror import MirrorSync, SyncResult  # noqa: F401
from .push import RepositoryKind  # noqa: F401

__all__ = [
    "DivergenceClassifier",
    "DivergenceVerdict",
    "DivergedBranchError",
    "MirrorError",
    "MirrorSync",
    "RepositoryKind",
    "SyncResult",
    "__version__",
]
