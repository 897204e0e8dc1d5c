"""Core data types shared by the store, materializer and thread builder."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from .gitmsg import GitMsgMessage
from .ranges import FetchRange
from .refs import PostRef


@dataclass(frozen=True)
class ExternalSource:
    """Marks a commit that was read from a mirror of a followed repository."""

    repo_url: str
    storage_dir: str
    branch: str


@dataclass(frozen=True)
class RawCommit:
    hash: str
    author: str
    email: str
    timestamp: datetime
    message: str
    refname: Optional[str] = None
    external: Optional[ExternalSource] = None


@dataclass(frozen=True)
class VirtualCommit:
    """An embedded ``GitMsg-Ref`` section promoted to a stand-alone post."""

    body: str
    ref: PostRef
    ext: str = "social"
    fields: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class CommitContext:
    """Workspace facts ``construct_post`` needs for a real commit."""

    workdir: str = ""
    branch: Optional[str] = None
    repository_url: Optional[str] = None
    has_origin_remote: bool = False
    unpushed: Optional[frozenset] = None


@dataclass(frozen=True)
class Author:
    name: str
    email: str


@dataclass
class Interactions:
    comments: int = 0
    reposts: int = 0
    quotes: int = 0

    def bump(self, post_type: str) -> None:
        if post_type == "comment":
            self.comments += 1
        elif post_type == "repost":
            self.reposts += 1
        elif post_type == "quote":
            self.quotes += 1


@dataclass
class PostDisplay:
    repository_name: str
    commit_hash: str
    commit_url: Optional[str] = None
    total_reposts: int = 0
    is_empty: bool = False
    is_unpushed: bool = False
    is_origin: bool = False
    is_workspace_post: bool = False


@dataclass
class Post:
    id: PostRef
    repository: str
    author: Author
    timestamp: datetime
    content: str
    clean_content: str
    type: str
    source: str
    display: PostDisplay
    commit: RawCommit
    branch: Optional[str] = None
    original_post_id: Optional[PostRef] = None
    parent_comment_id: Optional[PostRef] = None
    is_workspace_post: bool = False
    is_virtual: bool = False
    interactions: Interactions = field(default_factory=Interactions)
    gitmsg: Optional[GitMsgMessage] = None
    remote: Optional[str] = None

    @property
    def is_real(self) -> bool:
        return not self.is_virtual

    def parent_ref(self) -> Optional[PostRef]:
        """Immediate thread parent: reply target first, then the original."""
        if self.parent_comment_id is not None:
            return self.parent_comment_id
        if self.type != "quote":
            return self.original_post_id
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id),
            "repository": self.repository,
            "branch": self.branch,
            "author": {"name": self.author.name, "email": self.author.email},
            "timestamp": self.timestamp.isoformat(),
            "content": self.content,
            "cleanContent": self.clean_content,
            "type": self.type,
            "source": self.source,
            "originalPostId": str(self.original_post_id) if self.original_post_id else None,
            "parentCommentId": str(self.parent_comment_id) if self.parent_comment_id else None,
            "isWorkspacePost": self.is_workspace_post,
            "isVirtual": self.is_virtual,
            "interactions": {
                "comments": self.interactions.comments,
                "reposts": self.interactions.reposts,
                "quotes": self.interactions.quotes,
            },
            "display": {
                "repositoryName": self.display.repository_name,
                "commitHash": self.display.commit_hash,
                "commitUrl": self.display.commit_url,
                "totalReposts": self.display.total_reposts,
                "isEmpty": self.display.is_empty,
                "isUnpushed": self.display.is_unpushed,
                "isOrigin": self.display.is_origin,
                "isWorkspacePost": self.display.is_workspace_post,
            },
            "remote": self.remote,
        }


@dataclass(frozen=True)
class Notification:
    """Someone else's comment, repost or quote on a workspace post."""

    type: str
    post_id: PostRef
    target_id: PostRef
    repository: str
    author: Author
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "postId": str(self.post_id),
            "targetId": str(self.target_id),
            "repository": self.repository,
            "author": {"name": self.author.name, "email": self.author.email},
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class RepositoryDescriptor:
    url: str
    branch: str
    name: str
    type: str = "other"
    social_enabled: bool = True
    lists: Tuple[str, ...] = ()
    fetched_ranges: Tuple[FetchRange, ...] = ()
    last_fetch: Optional[datetime] = None
    path: Optional[str] = None
    remote_name: str = "upstream"
    followed_at: Optional[datetime] = None


@dataclass(frozen=True)
class RepositoryConfig:
    """State persisted in a mirror's git config under ``gitsocial.*``."""

    url: str
    branch: str
    is_persistent: bool
    created_at: Optional[datetime]
    last_fetch: Optional[datetime]
    version: str
    fetched_ranges: Tuple[FetchRange, ...] = ()


@dataclass(frozen=True)
class FetchOutcome:
    skipped: bool
    range: Optional[FetchRange] = None
    strategy: Optional[str] = None


@dataclass(frozen=True)
class CleanupSummary:
    deleted: Tuple[str, ...] = ()
    kept: int = 0
    errors: Tuple[str, ...] = ()


@dataclass(frozen=True)
class StorageStats:
    total_repositories: int
    disk_usage: int
    persistent: int
    temporary: int


@dataclass(frozen=True)
class ClearSummary:
    deleted_count: int
    disk_space_freed: int
    errors: Tuple[str, ...] = ()


@dataclass
class ThreadContext:
    anchor_post: Post
    parent_posts: List[Post]
    child_posts: List[Post]
    thread_root_id: PostRef
    has_more_parents: bool = False
    has_more_children: bool = False


@dataclass(frozen=True)
class ThreadItem:
    type: str
    key: str
    data: Post
    depth: int
    has_children: bool = False
