"""GitSocial: git-native social feeds over repository mirrors."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("gitsocial-sync")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"  # Fallback for editable installs without metadata

from .errors import ErrorCode, Result  # noqa: F401
from .feed import Feed, FetchSummary, collect_notifications  # noqa: F401
from .materializer import MaterializedPosts, PostGraphBuilder, construct_post, process_post  # noqa: F401
from .models import Notification  # noqa: F401
from .refs import PostRef  # noqa: F401
from .storage import RepositoryStore  # noqa: F401
from .thread import build_context, truncate_context  # noqa: F401

__all__ = [
    "ErrorCode",
    "Result",
    "Feed",
    "FetchSummary",
    "collect_notifications",
    "Notification",
    "MaterializedPosts",
    "PostGraphBuilder",
    "construct_post",
    "process_post",
    "PostRef",
    "RepositoryStore",
    "build_context",
    "truncate_context",
    "__version__",
]
