"""Conversation threads over a materialized post set."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import replace
from typing import Callable, Dict, Iterable, List, Optional, Set, Union

from .errors import ErrorCode, Result
from .models import Post, ThreadContext, ThreadItem
from .observability import log_debug
from .refs import PostRef

SORTS = ("latest", "oldest", "top")

PostsLike = Union[Iterable[Post], Mapping]


def _as_list(all_posts: PostsLike) -> List[Post]:
    if isinstance(all_posts, Mapping):
        return list(all_posts.values())
    return list(all_posts)


def _finder(posts: List[Post]) -> Callable[[Optional[PostRef]], Optional[Post]]:
    """Lookup by exact id, then by commit (real posts preferred over virtual)."""
    by_id: Dict[PostRef, Post] = {}
    by_hash: Dict[str, List[Post]] = {}
    for post in posts:
        by_id.setdefault(post.id, post)
        by_hash.setdefault(post.id.hash, []).append(post)

    def find(ref: Optional[PostRef]) -> Optional[Post]:
        if ref is None:
            return None
        if ref in by_id:
            return by_id[ref]
        candidates = [p for p in by_hash.get(ref.hash, []) if p.id.same_commit(ref)]
        if not candidates:
            return None
        candidates.sort(key=lambda p: p.is_virtual)
        return candidates[0]

    return find


def sort_posts(posts: Iterable[Post], sort: str) -> List[Post]:
    """Order posts: ``latest`` newest first, ``oldest`` oldest first,
    ``top`` most comments first with newer posts winning ties."""
    posts = list(posts)
    if sort == "latest":
        return sorted(posts, key=lambda p: p.timestamp, reverse=True)
    if sort == "oldest":
        return sorted(posts, key=lambda p: p.timestamp)
    if sort == "top":
        return sorted(posts, key=lambda p: (p.interactions.comments, p.timestamp), reverse=True)
    return posts


def build_context(
    anchor_id: Union[PostRef, str],
    all_posts: PostsLike,
    sort: str = "top",
) -> Result[ThreadContext]:
    """Ancestors, anchor and direct children of one post.

    The ancestor walk follows ``parent_comment_id`` when present, otherwise
    ``original_post_id`` (never for quotes). It stops silently at a reference
    that is not in ``all_posts`` and at a cycle. Children are the posts whose
    ``original_post_id`` names the anchor, one level deep.
    """
    if sort not in SORTS:
        return Result.failure(ErrorCode.INVALID_INPUT, f"Unknown sort: {sort}", sort=sort)
    anchor_ref = anchor_id if isinstance(anchor_id, PostRef) else PostRef.try_parse(anchor_id)
    posts = _as_list(all_posts)
    find = _finder(posts)
    anchor = find(anchor_ref)
    if anchor is None:
        return Result.failure(
            ErrorCode.POST_NOT_FOUND,
            f"Anchor post not found: {anchor_id}",
            anchor_id=str(anchor_id),
        )

    parents: List[Post] = []
    seen: Set[PostRef] = {anchor.id}
    current = anchor
    while True:
        parent = find(current.parent_ref())
        if parent is None or parent.id in seen:
            break
        parents.insert(0, parent)
        seen.add(parent.id)
        current = parent

    children = [
        post
        for post in posts
        if post.id != anchor.id
        and post.original_post_id is not None
        and post.original_post_id.same_commit(anchor.id)
    ]

    log_debug(
        "Thread context built",
        anchor=str(anchor.id),
        parents=len(parents),
        children=len(children),
        sort=sort,
    )
    return Result.success(
        ThreadContext(
            anchor_post=anchor,
            parent_posts=parents,
            child_posts=sort_posts(children, sort),
            thread_root_id=parents[0].id if parents else anchor.id,
        )
    )


def _depth_below(post: Post, anchor: Post, find: Callable[[Optional[PostRef]], Optional[Post]]) -> int:
    """Steps from ``post`` up its parent chain to the anchor; 1 if not reached."""
    depth = 0
    current: Optional[Post] = post
    seen: Set[PostRef] = set()
    while current is not None and current.id not in seen:
        seen.add(current.id)
        ref = current.parent_ref()
        depth += 1
        if ref is not None and ref.same_commit(anchor.id):
            return depth
        current = find(ref)
    return 1


def _parent_refs(posts: List[Post]) -> Dict[str, List[PostRef]]:
    refs: Dict[str, List[PostRef]] = {}
    for post in posts:
        if post.type == "repost" and post.parent_comment_id is None:
            continue
        ref = post.parent_ref()
        if ref is not None:
            refs.setdefault(ref.hash, []).append(ref)
    return refs


def truncate_context(context: ThreadContext, *, max_parents: int = 5, max_children: int = 50) -> ThreadContext:
    """Keep the nearest ``max_parents`` ancestors and the first ``max_children`` children.

    ``has_more_parents`` and ``has_more_children`` report whether anything was cut.
    """
    max_parents = max(max_parents, 0)
    max_children = max(max_children, 0)
    parents = context.parent_posts
    return replace(
        context,
        parent_posts=parents[-max_parents:] if max_parents else [],
        child_posts=context.child_posts[:max_children],
        has_more_parents=len(parents) > max_parents,
        has_more_children=len(context.child_posts) > max_children,
    )


def build_thread_items(
    context: ThreadContext,
    all_posts: PostsLike,
    *,
    defer_parents: bool = False,
    max_parents: int = 5,
    max_children: int = 50,
    max_depth: int = 8,
) -> List[ThreadItem]:
    """Flatten a context into display rows with depths.

    Parents get negative depths (-1 next to the anchor), the anchor 0 and
    children their positive distance from the anchor. Depths are clamped to
    ``max_depth`` in both directions.
    """
    posts = _as_list(all_posts)
    find = _finder(posts)
    parent_refs = _parent_refs(posts)
    context = truncate_context(context, max_parents=max_parents, max_children=max_children)

    def has_children(post: Post) -> bool:
        return any(ref.same_commit(post.id) for ref in parent_refs.get(post.id.hash, ()))

    items: List[ThreadItem] = []
    if not defer_parents:
        shown = context.parent_posts
        for offset, post in enumerate(shown):
            depth = max(-max_depth, -(len(shown) - offset))
            items.append(ThreadItem(type="post", key=str(post.id), data=post, depth=depth, has_children=has_children(post)))

    anchor = context.anchor_post
    items.append(ThreadItem(type="anchor", key=str(anchor.id), data=anchor, depth=0, has_children=has_children(anchor)))

    for post in context.child_posts:
        depth = min(max_depth, _depth_below(post, anchor, find))
        items.append(ThreadItem(type="post", key=str(post.id), data=post, depth=depth, has_children=has_children(post)))
    return items


def flatten_context(context: ThreadContext) -> List[Post]:
    return [*context.parent_posts, context.anchor_post, *context.child_posts]
