"""Post references and repository URL handling.

A post is addressed by the commit that carries it. Inside the workspace that
authored it the commit is referenced as ``#commit:<hash>`` (relative); from
anywhere else it is ``<repository url>#commit:<hash>`` (absolute). Internally
both forms are a single ``PostRef`` value; the string forms only exist at the
edges (commit trailers, serialized output, CLI arguments).
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from typing import Optional

HASH_LENGTH = 12

_HEX_PATTERN = re.compile(r"^[0-9a-fA-F]+$")
_COMMIT_REF_PATTERN = re.compile(r"^(?P<repo>[^#]*)#commit:(?P<hash>[^#\s]+)$")
_SCP_PATTERN = re.compile(r"^git@([^:]+):")
_SCHEME_PATTERN = re.compile(r"^(\w+://)([^/]+)(.*)$")
_SANITIZE_PATTERN = re.compile(r"[^A-Za-z0-9._-]+")


class InvalidReferenceError(ValueError):
    """Raised when a string cannot be read as a commit reference."""


def normalize_hash(value: str) -> str:
    """Lower-case and truncate a commit hash to 12 characters."""
    value = (value or "").strip()
    if not value or not _HEX_PATTERN.match(value):
        raise InvalidReferenceError(f"Invalid commit hash format: {value!r}")
    return value.lower()[:HASH_LENGTH]


def normalize_url(url: str) -> str:
    """Canonical repository URL: https form, no ``.git`` suffix, lower-case host.

    ``git@github.com:org/repo.git`` and ``https://GitHub.com/org/repo`` both
    become ``https://github.com/org/repo``. Paths keep their case. Local paths
    pass through apart from the suffix strip.
    """
    if not url:
        return url
    normalized = url.strip()
    normalized = _SCP_PATTERN.sub(r"https://\1/", normalized)
    if normalized.endswith(".git"):
        normalized = normalized[: -len(".git")]
    normalized = normalized.rstrip("/")
    match = _SCHEME_PATTERN.match(normalized)
    if match:
        normalized = match.group(1).lower() + match.group(2).lower() + match.group(3)
    return normalized


def storage_dir_name(url: str, branch: Optional[str] = None) -> str:
    """Directory name for a mirror of ``url``.

    Readable sanitized prefix plus a short digest of the normalized URL and
    branch, so two URLs that sanitize to the same text never share a mirror.
    """
    normalized = normalize_url(url)
    readable = re.sub(r"^\w+://", "", normalized)
    readable = _SANITIZE_PATTERN.sub("-", readable).strip("-._") or "repository"
    key = normalized if branch is None else f"{normalized}#branch:{branch}"
    digest = hashlib.sha256(key.encode("utf-8")).hexdigest()[:8]
    return f"{readable[:80]}-{digest}"


def display_name(url: str) -> str:
    """Short ``owner/repo`` style label for a repository URL."""
    if not url:
        return "workspace"
    normalized = normalize_url(url)
    path = re.sub(r"^\w+://[^/]+", "", normalized).strip("/")
    parts = [p for p in path.split("/") if p]
    if len(parts) >= 2:
        return "/".join(parts[-2:])
    return parts[-1] if parts else normalized


def commit_url(repository: str, commit_hash: str) -> Optional[str]:
    """Web link for a commit on the common hosts, ``None`` when unknown."""
    if not repository or not repository.startswith("http"):
        return None
    normalized = normalize_url(repository)
    if "gitlab" in normalized:
        return f"{normalized}/-/commit/{commit_hash}"
    if "bitbucket" in normalized:
        return f"{normalized}/commits/{commit_hash}"
    return f"{normalized}/commit/{commit_hash}"


@dataclass(frozen=True)
class PostRef:
    """Reference to a post commit.

    ``repository is None`` means relative (the workspace's own history).
    """

    hash: str
    repository: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "hash", normalize_hash(self.hash))
        if self.repository is not None:
            repository = normalize_url(self.repository)
            object.__setattr__(self, "repository", repository or None)

    @classmethod
    def parse(cls, value: str) -> "PostRef":
        match = _COMMIT_REF_PATTERN.match((value or "").strip())
        if not match:
            raise InvalidReferenceError(f"Not a commit reference: {value!r}")
        repo = match.group("repo").strip()
        return cls(hash=match.group("hash"), repository=repo or None)

    @classmethod
    def try_parse(cls, value: Optional[str]) -> Optional["PostRef"]:
        if not value:
            return None
        try:
            return cls.parse(value)
        except InvalidReferenceError:
            return None

    @property
    def kind(self) -> str:
        return "relative" if self.repository is None else "absolute"

    @property
    def is_relative(self) -> bool:
        return self.repository is None

    def relative(self) -> "PostRef":
        if self.repository is None:
            return self
        return PostRef(self.hash)

    def absolute(self, repository: str) -> "PostRef":
        return PostRef(self.hash, repository)

    def qualify(self, repository: Optional[str]) -> "PostRef":
        """Absolute form in ``repository`` if relative; absolute refs stay."""
        if self.repository is None and repository:
            return PostRef(self.hash, repository)
        return self

    def localize(self, origin_url: Optional[str]) -> "PostRef":
        """Relative form if this ref points into ``origin_url``."""
        if origin_url and self.repository == normalize_url(origin_url):
            return PostRef(self.hash)
        return self

    def same_commit(self, other: Optional["PostRef"]) -> bool:
        """True when both name the same commit.

        Two absolute refs must agree on the repository; a relative ref
        matches any repository.
        """
        if other is None or self.hash != other.hash:
            return False
        if self.repository is None or other.repository is None:
            return True
        return self.repository == other.repository

    def __str__(self) -> str:
        return f"{self.repository or ''}#commit:{self.hash}"
