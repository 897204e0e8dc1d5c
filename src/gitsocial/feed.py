"""Feed composition: fetch followed repositories and materialize their posts.

``Feed`` owns one workspace. It keeps mirrors of followed repositories fresh
through ``RepositoryStore``, memoizes repository lookups in a ``ResultCache``
and runs the workspace history plus every mirror through a single
materialization pass.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple, Union

from . import git_ops
from .cache import ResultCache
from .config_schema import GitSocialConfig
from .errors import ErrorCode, Result
from .git_ops import GitRunner
from .materializer import MaterializedPosts, PostGraphBuilder, count_interactions, process_commits
from .models import Notification, Post, RawCommit, RepositoryDescriptor, ThreadContext
from .observability import log_action, log_warning, timeit
from .ranges import DateLike, to_date
from .refs import PostRef, display_name, normalize_url
from .storage import RepositoryStore
from .thread import build_context

Resolver = Callable[[], Awaitable[List[RepositoryDescriptor]]]

NOTIFICATION_WINDOW_DAYS = 7


@dataclass(frozen=True)
class FetchSummary:
    fetched: int = 0
    skipped: int = 0
    failed: int = 0
    errors: Tuple[str, ...] = ()


class Feed:
    def __init__(
        self,
        workdir: Union[str, Path],
        *,
        config: Optional[GitSocialConfig] = None,
        git: Optional[GitRunner] = None,
        store: Optional[RepositoryStore] = None,
        cache: Optional[ResultCache] = None,
        storage_base: Optional[Union[str, Path]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.workdir = str(workdir)
        self.config = config or GitSocialConfig()
        self.git = git or GitRunner()
        self.store = store or RepositoryStore(self.git, self.config.storage, clock=clock)
        self.cache = cache or ResultCache(self.config.cache, clock=clock)
        self.storage_base = Path(storage_base) if storage_base else self.config.storage.resolved_base()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def social_branch(self) -> str:
        return await git_ops.get_configured_branch(self.git, self.workdir, self.config.social.branch)

    async def origin_url(self) -> Optional[str]:
        url = await git_ops.get_remote_url(self.git, self.workdir, self.config.social.origin_remote)
        return normalize_url(url) if url else None

    async def describe_workspace(self) -> RepositoryDescriptor:
        cached = self.cache.get(self.workdir, "workspace:descriptor")
        if cached is not None:
            return cached
        origin = await self.origin_url()
        descriptor = RepositoryDescriptor(
            url=origin or self.workdir,
            branch=await self.social_branch(),
            name=display_name(origin) if origin else Path(self.workdir).name,
            type="workspace",
            path=self.workdir,
            remote_name=self.config.social.origin_remote,
        )
        self.cache.set(self.workdir, "workspace:descriptor", descriptor)
        return descriptor

    async def repositories(self, scope: str, resolver: Resolver) -> List[RepositoryDescriptor]:
        """Repository list for ``scope``, resolved at most once per TTL."""
        cached = self.cache.get(self.workdir, scope)
        if cached is not None:
            return list(cached)
        resolved = await resolver()
        self.cache.set(self.workdir, scope, tuple(resolved))
        return list(resolved)

    async def fetch_all(
        self,
        repositories: Sequence[RepositoryDescriptor],
        *,
        since: Optional[DateLike] = None,
        until: Optional[DateLike] = None,
    ) -> FetchSummary:
        """Ensure and fetch every followed repository.

        One repository failing never stops the others; outcomes are tallied.
        """
        followed = [repo for repo in repositories if repo.type != "workspace"]

        async def one(repo: RepositoryDescriptor) -> Tuple[str, Optional[str]]:
            ensured = await self.store.ensure(self.storage_base, repo.url, repo.branch)
            if not ensured.ok:
                return "failed", f"{repo.url}: {ensured.error.message}"
            fetched = await self.store.fetch(self.storage_base, repo.url, repo.branch, since=since, until=until)
            if not fetched.ok:
                return "failed", f"{repo.url}: {fetched.error.message}"
            return ("skipped" if fetched.data.skipped else "fetched"), None

        with timeit("feed.fetch_all", repositories=len(followed)) as info:
            outcomes = await asyncio.gather(*(one(repo) for repo in followed))
            summary = FetchSummary(
                fetched=sum(1 for status, _ in outcomes if status == "fetched"),
                skipped=sum(1 for status, _ in outcomes if status == "skipped"),
                failed=sum(1 for status, _ in outcomes if status == "failed"),
                errors=tuple(error for _, error in outcomes if error),
            )
            info.update(fetched=summary.fetched, skipped=summary.skipped, failed=summary.failed)
        for error in summary.errors:
            log_warning("Repository fetch failed", error=error)
        return summary

    async def _external_commits(
        self,
        repositories: Sequence[RepositoryDescriptor],
        since: Optional[DateLike],
        until: Optional[DateLike],
    ) -> List[RawCommit]:
        commits: List[RawCommit] = []
        for repo in repositories:
            if repo.type == "workspace":
                continue
            result = await self.store.get_commits(self.storage_base, repo.url, repo.branch, since=since, until=until)
            if not result.ok:
                log_warning("Skipping repository without mirror", url=repo.url, error=result.error.message)
                continue
            commits.extend(result.data)
        return commits

    async def load_posts(
        self,
        repositories: Sequence[RepositoryDescriptor] = (),
        *,
        since: Optional[DateLike] = None,
        until: Optional[DateLike] = None,
    ) -> Result[MaterializedPosts]:
        """Workspace posts plus posts from every mirrored repository.

        Workspace commits go first so that the workspace copy of a commit is
        the canonical one; interaction counts are recomputed over the result.
        Unparseable or reversed dates fail with ``INVALID_INPUT``.
        """
        try:
            since_day = to_date(since) if since is not None else None
            until_day = to_date(until) if until is not None else None
        except ValueError as exc:
            return Result.failure(ErrorCode.INVALID_INPUT, f"Invalid date: {exc}")
        if since_day is not None and until_day is not None and since_day > until_day:
            return Result.failure(ErrorCode.INVALID_INPUT, f"Range start {since_day} is after end {until_day}")

        branch = await self.social_branch()
        origin = await self.origin_url()
        workspace_commits = await git_ops.get_commits(
            self.git,
            self.workdir,
            all_refs=True,
            since=since_day,
            until=until_day,
            limit=self.config.storage.commit_limit,
        )
        external_commits = await self._external_commits(repositories, since_day, until_day)
        posts = await process_commits(
            self.workdir,
            [*workspace_commits, *external_commits],
            git=self.git,
            social_branch=branch,
            origin_remote=self.config.social.origin_remote,
        )

        materialized = PostGraphBuilder(self.workdir, origin).add_all(posts).build()
        count_interactions(materialized)
        log_action(
            "feed.load_posts",
            workdir=self.workdir,
            posts=len(materialized),
            workspace_commits=len(workspace_commits),
            external_commits=len(external_commits),
        )
        return Result.success(materialized)

    async def thread(
        self,
        anchor_id: Union[PostRef, str],
        repositories: Sequence[RepositoryDescriptor] = (),
        *,
        sort: str = "top",
    ) -> Result[ThreadContext]:
        loaded = await self.load_posts(repositories)
        if not loaded.ok:
            return Result(error=loaded.error)
        return build_context(anchor_id, loaded.data, sort)

    async def notifications(
        self,
        repositories: Sequence[RepositoryDescriptor] = (),
        *,
        since: Optional[DateLike] = None,
        until: Optional[DateLike] = None,
        limit: int = 100,
    ) -> Result[List[Notification]]:
        """Interactions from followed repositories with the workspace's posts.

        Without ``since`` the window starts seven days before today.
        """
        if since is None:
            since = (self._clock() - timedelta(days=NOTIFICATION_WINDOW_DAYS)).date()
        loaded = await self.load_posts(repositories, since=since, until=until)
        if not loaded.ok:
            return Result(error=loaded.error)
        found = collect_notifications(loaded.data, limit=limit)
        log_action("feed.notifications", workdir=self.workdir, notifications=len(found))
        return Result.success(found)


def _interaction_targets(post: Post) -> List[PostRef]:
    if post.type == "comment":
        return [ref for ref in (post.original_post_id, post.parent_comment_id) if ref is not None]
    if post.type in ("repost", "quote") and post.original_post_id is not None:
        return [post.original_post_id]
    return []


def collect_notifications(materialized: MaterializedPosts, *, limit: int = 100) -> List[Notification]:
    """Comments, reposts and quotes by other repositories on workspace posts, newest first.

    A comment counts when either its original or the comment it replies to
    is a workspace post. Virtual posts are stand-ins for referenced commits
    and never notify.
    """
    found: List[Notification] = []
    for post in materialized.posts():
        if post.is_workspace_post or post.is_virtual:
            continue
        for ref in _interaction_targets(post):
            target = materialized.resolve(ref)
            if target is not None and target.is_workspace_post:
                found.append(
                    Notification(
                        type=post.type,
                        post_id=post.id,
                        target_id=target.id,
                        repository=post.repository,
                        author=post.author,
                        timestamp=post.timestamp,
                    )
                )
                break
    found.sort(key=lambda n: n.timestamp, reverse=True)
    return found[: max(limit, 0)]
