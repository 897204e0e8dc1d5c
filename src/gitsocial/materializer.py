"""Turn commits into canonical, deduplicated posts.

The same commit can reach the materializer twice: once from the workspace's
own history (relative id ``#commit:<hash>``) and once from a mirror of the
workspace's origin (absolute id ``<origin>#commit:<hash>``). It can also show
up a third time as a *virtual* post, rebuilt from a ``GitMsg-Ref`` section
embedded in some other post. ``process_post`` folds all of these into one
entry keyed by the workspace identity and keeps an index from absolute ids
to the canonical key.

Replacement policy on id collision:
- a real post replaces a virtual one, a virtual post never replaces a real one
- an explicit (GitMsg-carrying) post replaces an implicit one
- otherwise the first post seen wins
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import AbstractSet, Dict, Iterable, Iterator, List, Optional, Set, Tuple

from . import git_ops
from .gitmsg import (
    POST_TYPES,
    SOCIAL_EXT,
    extract_clean_content,
    format_ref,
    get_post_type,
    is_empty_repost,
    parse_message,
    parse_ref,
)
from .git_ops import GitRunner
from .models import (
    Author,
    CommitContext,
    Interactions,
    Post,
    PostDisplay,
    RawCommit,
    VirtualCommit,
)
from .observability import log_action, log_debug
from .refs import (
    InvalidReferenceError,
    PostRef,
    commit_url,
    display_name,
    normalize_hash,
    normalize_url,
)


@dataclass
class PostIndex:
    """Side tables built while materializing.

    ``absolute`` maps an absolute id to the relative id of the canonical
    workspace post; ``merged`` holds ids whose virtual copy was folded into
    an existing real post.
    """

    absolute: Dict[PostRef, PostRef] = field(default_factory=dict)
    merged: Set[PostRef] = field(default_factory=set)


@dataclass(frozen=True)
class FrozenPostIndex:
    absolute: Mapping[PostRef, PostRef]
    merged: AbstractSet[PostRef]


# ----------------------------------------------------------------------
# Post construction
# ----------------------------------------------------------------------


def _parse_time(value: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _ref_field(value: Optional[str], repository: Optional[str]) -> Optional[PostRef]:
    """Parse a trailer reference, qualifying relative refs with ``repository``."""
    ref = PostRef.try_parse(value)
    if ref is None:
        if value:
            log_debug("Ignoring unparseable reference", value=value)
        return None
    return ref.qualify(repository)


def _remote_of(refname: Optional[str]) -> Optional[str]:
    if refname and refname.startswith("refs/remotes/"):
        return refname[len("refs/remotes/"):].split("/", 1)[0]
    return None


def _is_unpushed(raw: RawCommit, commit_hash: str, context: CommitContext) -> bool:
    if not context.has_origin_remote:
        return False
    if context.unpushed is not None:
        return commit_hash in context.unpushed
    return not (raw.refname or "").startswith("refs/remotes/origin/")


def _from_real(raw: RawCommit, context: CommitContext) -> Optional[Post]:
    try:
        commit_hash = normalize_hash(raw.hash)
    except InvalidReferenceError:
        log_debug("Skipping commit with invalid hash", hash=raw.hash)
        return None

    gitmsg = parse_message(raw.message)
    content = (gitmsg.content if gitmsg and gitmsg.content else raw.message).strip()
    external = raw.external
    is_workspace = external is None

    if external is not None:
        repo_url = normalize_url(external.repo_url)
        branch = external.branch
        post_id = PostRef(commit_hash, repo_url)
        link_repo = repo_url
    else:
        repo_url = context.repository_url or context.workdir
        branch = context.branch
        post_id = PostRef(commit_hash)
        link_repo = context.repository_url or ""

    post_type = get_post_type(gitmsg)
    original = parent = None
    if gitmsg is not None:
        qualifier = None if is_workspace else post_id.repository
        parent = _ref_field(gitmsg.header.fields.get("reply-to"), qualifier)
        original = _ref_field(gitmsg.header.fields.get("original"), qualifier)

    if post_type != "post" and original is None:
        log_debug("Dropping interaction without original", id=str(post_id), type=post_type)
        return None

    return Post(
        id=post_id,
        repository=f"{repo_url}#branch:{branch}" if branch else repo_url,
        branch=branch,
        author=Author(name=raw.author, email=raw.email),
        timestamp=raw.timestamp,
        content=content,
        clean_content=extract_clean_content(raw.message) if gitmsg else content,
        type=post_type,
        source="explicit" if gitmsg else "implicit",
        original_post_id=original,
        parent_comment_id=parent,
        is_workspace_post=is_workspace,
        is_virtual=False,
        display=PostDisplay(
            repository_name=display_name(repo_url),
            commit_hash=commit_hash,
            commit_url=commit_url(link_repo, commit_hash),
            is_empty=is_empty_repost(gitmsg) if gitmsg else False,
            is_unpushed=_is_unpushed(raw, commit_hash, context) if is_workspace else False,
            is_origin=is_workspace,
            is_workspace_post=is_workspace,
        ),
        commit=RawCommit(
            hash=commit_hash,
            author=raw.author,
            email=raw.email,
            timestamp=raw.timestamp,
            message=raw.message,
            refname=raw.refname,
            external=external,
        ),
        gitmsg=gitmsg,
        remote=_remote_of(raw.refname) if is_workspace else None,
    )


def _from_virtual(virtual: VirtualCommit) -> Optional[Post]:
    ref = parse_ref(virtual.body)
    if ref is None:
        log_debug("Virtual commit without a valid GitMsg-Ref header", ref=str(virtual.ref))
        return None
    content = ref.quoted_content()
    timestamp = _parse_time(ref.time)
    if not content or timestamp is None:
        log_debug("Virtual commit missing content or time", ref=str(virtual.ref))
        return None

    post_id = virtual.ref
    post_type = ref.fields.get("type") or virtual.fields.get("type") or "post"
    if post_type not in POST_TYPES:
        post_type = "post"
    original = _ref_field(ref.fields.get("original"), post_id.repository)
    parent = _ref_field(ref.fields.get("reply-to"), post_id.repository)
    if post_type != "post" and original is None:
        log_debug("Dropping virtual interaction without original", id=str(post_id), type=post_type)
        return None

    repo_url = post_id.repository or ""
    return Post(
        id=post_id,
        repository=repo_url,
        branch=None,
        author=Author(name=ref.author, email=ref.email),
        timestamp=timestamp,
        content=content,
        clean_content=content,
        type=post_type,
        source="explicit",
        original_post_id=original,
        parent_comment_id=parent,
        is_workspace_post=post_id.is_relative,
        is_virtual=True,
        display=PostDisplay(
            repository_name=display_name(repo_url),
            commit_hash=post_id.hash,
            commit_url=commit_url(repo_url, post_id.hash),
            is_origin=post_id.is_relative,
            is_workspace_post=post_id.is_relative,
        ),
        commit=RawCommit(
            hash=post_id.hash,
            author=ref.author,
            email=ref.email,
            timestamp=timestamp,
            message=content,
        ),
    )


def construct_post(
    raw_commit: Optional[RawCommit] = None,
    virtual_commit: Optional[VirtualCommit] = None,
    *,
    context: Optional[CommitContext] = None,
) -> Optional[Post]:
    """Build a post from exactly one of a real commit or a virtual commit.

    Returns ``None`` when both or neither are given, and for any commit that
    does not make a valid post (interactions without an ``original``,
    virtual commits missing author, email, time or content).
    """
    if (raw_commit is None) == (virtual_commit is None):
        return None
    if raw_commit is not None:
        return _from_real(raw_commit, context or CommitContext())
    return _from_virtual(virtual_commit)


# ----------------------------------------------------------------------
# Post processing
# ----------------------------------------------------------------------


def _should_replace(existing: Post, incoming: Post) -> bool:
    if existing.is_real != incoming.is_real:
        return incoming.is_real
    return incoming.source == "explicit" and existing.source != "explicit"


def _normalize_references(post: Post, origin: Optional[str]) -> None:
    if not origin:
        return
    if post.is_workspace_post:
        if post.original_post_id is not None:
            post.original_post_id = post.original_post_id.qualify(origin)
        if post.parent_comment_id is not None:
            post.parent_comment_id = post.parent_comment_id.qualify(origin)
    else:
        if post.original_post_id is not None:
            post.original_post_id = post.original_post_id.localize(origin)
        if post.parent_comment_id is not None:
            post.parent_comment_id = post.parent_comment_id.localize(origin)


def _expand_references(
    post: Post,
    posts: Dict[PostRef, Post],
    origin: Optional[str],
    post_index: PostIndex,
) -> None:
    """Add a virtual post for each embedded reference, or merge into a real one."""
    if post.gitmsg is None:
        return
    for ref in post.gitmsg.references:
        if ref.ext != SOCIAL_EXT or not ref.metadata:
            continue
        target = PostRef.try_parse(ref.ref)
        if target is None:
            log_debug("Skipping embedded reference", ref=ref.ref, post=str(post.id))
            continue
        if target.is_relative:
            target = target.qualify(origin if post.id.is_relative else post.id.repository)

        virtual = construct_post(
            virtual_commit=VirtualCommit(body=format_ref(ref), ref=target, ext=ref.ext, fields=dict(ref.fields))
        )
        if virtual is None:
            continue
        if origin:
            if virtual.original_post_id is not None:
                virtual.original_post_id = virtual.original_post_id.localize(origin)
            if virtual.parent_comment_id is not None:
                virtual.parent_comment_id = virtual.parent_comment_id.localize(origin)

        existing = posts.get(target)
        if existing is None and origin and target.repository == origin:
            existing = posts.get(target.relative())
        if existing is not None and not existing.is_virtual:
            if post.original_post_id is not None and target.same_commit(post.original_post_id):
                existing.interactions.bump(post.type)
                existing.display.total_reposts = existing.interactions.reposts + existing.interactions.quotes
            if target != existing.id:
                post_index.absolute[target] = existing.id
            post_index.merged.add(target)
            log_debug("Merged embedded reference", ref=str(target), into=str(existing.id))
            continue

        if target not in posts:
            posts[target] = virtual


def process_post(
    post: Post,
    posts: Dict[PostRef, Post],
    workdir: str,
    origin_url: Optional[str] = None,
    post_index: Optional[PostIndex] = None,
    skip_embedded_references: bool = False,
) -> None:
    """Fold one post into ``posts``.

    Steps: reference normalization, absolute to relative indexing,
    deduplication against the workspace copy, the replacement policy, then
    (unless skipped) expansion of embedded references into virtual posts.
    """
    origin = normalize_url(origin_url) if origin_url else None
    if post_index is None:
        post_index = PostIndex()

    _normalize_references(post, origin)

    if post.is_workspace_post and post.id.is_relative and origin:
        absolute_id = post.id.absolute(origin)
        post_index.absolute[absolute_id] = post.id
        twin = posts.get(absolute_id)
        if twin is not None:
            # The workspace copy arrived after its external twin
            del posts[absolute_id]
            log_debug("Replaced external twin with workspace post", id=str(post.id))

    if not post.is_workspace_post and origin and post.id.repository == origin:
        relative_id = post.id.relative()
        if relative_id in posts:
            post_index.absolute[post.id] = relative_id
            log_debug("Deduplicated external post", external=str(post.id), workspace=str(relative_id))
            return

    existing = posts.get(post.id)
    if existing is None or _should_replace(existing, post):
        posts[post.id] = post

    if not skip_embedded_references:
        _expand_references(post, posts, origin, post_index)


class MaterializedPosts(Mapping):
    """Read-only result of a materialization pass.

    ``get`` also resolves absolute ids of workspace posts through the index.
    """

    def __init__(self, posts: Dict[PostRef, Post], index: PostIndex, origin_url: Optional[str] = None):
        self._posts = MappingProxyType(dict(posts))
        self.index = FrozenPostIndex(
            absolute=MappingProxyType(dict(index.absolute)),
            merged=frozenset(index.merged),
        )
        self.origin_url = normalize_url(origin_url) if origin_url else None

    def __getitem__(self, key: PostRef) -> Post:
        return self._posts[key]

    def __iter__(self) -> Iterator[PostRef]:
        return iter(self._posts)

    def __len__(self) -> int:
        return len(self._posts)

    def get(self, key, default=None):
        post = self.resolve(key)
        return default if post is None else post

    def resolve(self, ref: Optional[PostRef]) -> Optional[Post]:
        if ref is None:
            return None
        post = self._posts.get(ref)
        if post is not None:
            return post
        mapped = self.index.absolute.get(ref)
        if mapped is not None and mapped in self._posts:
            return self._posts[mapped]
        if self.origin_url and ref.repository == self.origin_url:
            return self._posts.get(ref.relative())
        return None

    def posts(self) -> List[Post]:
        return list(self._posts.values())


class PostGraphBuilder:
    """Single-pass builder producing an immutable ``MaterializedPosts``."""

    def __init__(self, workdir: str = "", origin_url: Optional[str] = None):
        self.workdir = workdir
        self.origin_url = normalize_url(origin_url) if origin_url else None
        self._posts: Dict[PostRef, Post] = {}
        self._index = PostIndex()

    def add(self, post: Post, *, skip_embedded_references: bool = False) -> "PostGraphBuilder":
        process_post(
            post,
            self._posts,
            self.workdir,
            origin_url=self.origin_url,
            post_index=self._index,
            skip_embedded_references=skip_embedded_references,
        )
        return self

    def add_all(self, posts: Iterable[Post]) -> "PostGraphBuilder":
        for post in posts:
            self.add(post)
        return self

    def build(self) -> MaterializedPosts:
        return MaterializedPosts(self._posts, self._index, self.origin_url)


def count_interactions(materialized: MaterializedPosts) -> None:
    """Recount interactions from scratch over the complete post set.

    Every comment, repost or quote counts once toward the post named by its
    ``original_post_id``; the same source/target pair is never counted twice.
    """
    for post in materialized.values():
        post.interactions = Interactions()
        post.display.total_reposts = 0

    counted: Set[Tuple[PostRef, PostRef]] = set()
    missing = 0
    for post in materialized.posts():
        if post.type == "post" or post.original_post_id is None:
            continue
        target = materialized.resolve(post.original_post_id)
        if target is None:
            missing += 1
            continue
        source = materialized.resolve(post.id) or post
        key = (source.id, target.id)
        if key in counted:
            continue
        counted.add(key)
        target.interactions.bump(post.type)
        target.display.total_reposts = target.interactions.reposts + target.interactions.quotes

    log_debug("Interaction counts recomputed", posts=len(materialized), counted=len(counted), missing=missing)


# ----------------------------------------------------------------------
# Commit processing
# ----------------------------------------------------------------------


async def process_commits(
    workdir: str,
    commits: Iterable[RawCommit],
    *,
    git: GitRunner,
    social_branch: Optional[str] = None,
    origin_remote: str = "origin",
) -> List[Post]:
    """Posts for the social-branch commits in ``commits``.

    Workspace commits are kept when their ``refname`` is the social branch
    (``refs/heads/<b>``, ``refs/remotes/<origin>/<b>`` or the bare name) or,
    without a refname, when the social branch is checked out. Commits read
    from a mirror are always kept. Each hash is processed once.
    """
    branch = social_branch or await git_ops.get_configured_branch(git, workdir)
    current = await git_ops.get_current_branch(git, workdir)
    remotes = {remote.name: remote.url for remote in await git_ops.list_remotes(git, workdir)}
    has_origin = origin_remote in remotes
    unpushed = None
    if has_origin:
        unpushed = frozenset(
            await git_ops.get_unpushed_commits(git, workdir, branch, remote=origin_remote)
        )
    context = CommitContext(
        workdir=workdir,
        branch=branch,
        repository_url=normalize_url(remotes[origin_remote]) if has_origin else None,
        has_origin_remote=has_origin,
        unpushed=unpushed,
    )

    posts: List[Post] = []
    seen: Set[str] = set()
    skipped = 0
    for commit in commits:
        key = commit.hash.strip().lower()[:12]
        if key in seen:
            continue
        if commit.external is None and not _on_social_branch(commit.refname, branch, current, origin_remote):
            skipped += 1
            continue
        seen.add(key)
        post = construct_post(commit, context=context)
        if post is not None:
            posts.append(post)

    log_action(
        "materializer.process_commits",
        workdir=workdir,
        branch=branch,
        kept=len(seen),
        posts=len(posts),
        skipped=skipped,
    )
    return posts


def _on_social_branch(
    refname: Optional[str],
    branch: str,
    current: Optional[str],
    origin_remote: str,
) -> bool:
    if not refname:
        return current == branch
    if refname.startswith("refs/remotes/"):
        remote, _, name = refname[len("refs/remotes/"):].partition("/")
        return remote == origin_remote and name == branch
    if refname.startswith("refs/heads/"):
        return refname[len("refs/heads/"):] == branch
    return refname == branch
