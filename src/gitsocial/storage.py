"""On-disk mirrors of followed repositories.

Each followed repository gets a bare mirror under
``<storage base>/repositories/<name>``. The mirror's own git config records
where it came from and which calendar days of history have been fetched
(``gitsocial.*`` keys), so later fetches only ask the remote for days that
are not already covered.

Architecture:
- ``ensure`` creates a mirror once; concurrent callers for the same
  repository and branch share one in-flight task
- ``fetch`` extends a mirror to a requested day range and records the range
- ``cleanup`` / ``get_stats`` / ``clear_cache`` walk every mirror and never
  let one broken entry stop the pass
"""

from __future__ import annotations

import asyncio
import os
import shutil
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar, Union

from . import git_ops
from .config_schema import StorageConfig
from .errors import ErrorCode, Result
from .git_ops import GitResult, GitRunner
from .models import (
    CleanupSummary,
    ClearSummary,
    ExternalSource,
    FetchOutcome,
    RawCommit,
    RepositoryConfig,
    StorageStats,
)
from .observability import log_action, log_debug, log_error, log_warning, timeit
from .ranges import (
    DateLike,
    FetchRange,
    add_range,
    coverage_end,
    current_week_monday,
    dump_ranges,
    is_covered,
    parse_ranges,
    to_date,
)
from .refs import normalize_url, storage_dir_name

T = TypeVar("T")

STORAGE_VERSION = "1.0.0"
REPOSITORIES_DIR = "repositories"
CONFIG_SECTION = "gitsocial"

Clock = Callable[[], datetime]
PathLike = Union[str, Path]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _remove_tree(path: Path) -> None:
    shutil.rmtree(path)


def _dir_size(path: Path) -> int:
    total = 0
    for root, _dirs, files in os.walk(path):
        for name in files:
            try:
                total += os.lstat(os.path.join(root, name)).st_size
            except OSError:
                continue
    return total


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class RepositoryStore:
    """Creates, extends and prunes repository mirrors."""

    def __init__(
        self,
        git: Optional[GitRunner] = None,
        config: Optional[StorageConfig] = None,
        clock: Optional[Clock] = None,
    ):
        self._git = git or GitRunner()
        self._config = config or StorageConfig()
        self._clock = clock or _utcnow
        self._ensuring: Dict[Tuple[str, str, str], asyncio.Future] = {}
        self._fetching: Dict[Tuple[str, str, str, date, date], asyncio.Future] = {}
        self._range_locks: Dict[str, asyncio.Lock] = {}

    # ------------------------------------------------------------------
    # Paths and persisted state
    # ------------------------------------------------------------------

    @property
    def remote_name(self) -> str:
        return self._config.remote_name

    def repository_path(self, storage_base: PathLike, source_url: str) -> Path:
        return Path(storage_base) / REPOSITORIES_DIR / storage_dir_name(source_url)

    def _range_lock(self, path: Path) -> asyncio.Lock:
        key = str(path.resolve())
        lock = self._range_locks.get(key)
        if lock is None:
            lock = self._range_locks[key] = asyncio.Lock()
        return lock

    def _today(self) -> date:
        return self._clock().date()

    async def read_config(self, path: PathLike) -> Optional[RepositoryConfig]:
        """Read a mirror's ``gitsocial.*`` state, ``None`` if absent or unusable."""
        path = Path(path)
        config_file = path / "config"
        if not config_file.is_file():
            return None
        values = await git_ops.read_config_section(
            self._git, path, CONFIG_SECTION, config_file=config_file
        )
        url = values.get("url")
        if not url:
            return None
        return RepositoryConfig(
            url=url,
            branch=values.get("branch", ""),
            is_persistent=values.get("ispersistent", "false").lower() == "true",
            created_at=_parse_datetime(values.get("createdat")),
            last_fetch=_parse_datetime(values.get("lastfetch")),
            version=values.get("version", ""),
            fetched_ranges=tuple(parse_ranges(values.get("fetchedranges"))),
        )

    async def _write_config(self, path: Path, values: Dict[str, str]) -> Optional[GitResult]:
        """Write ``gitsocial.*`` keys; returns the first failing result."""
        config_file = str(path / "config")
        for key, value in values.items():
            result = await self._git.execute(
                path, ["config", "--file", config_file, f"{CONFIG_SECTION}.{key}", value]
            )
            if not result.ok:
                return result
        return None

    def _validate_base(self, storage_base: Optional[PathLike]) -> Optional[Result]:
        if storage_base is None or not str(storage_base).strip():
            return Result.failure(ErrorCode.INVALID_STORAGE_BASE, "Storage base is required")
        base = Path(storage_base)
        if base.exists() and not base.is_dir():
            return Result.failure(
                ErrorCode.INVALID_STORAGE_BASE,
                f"Storage base is not a directory: {base}",
                storage_base=str(base),
            )
        return None

    def _remote_failure(self, result: GitResult, step: str, code: ErrorCode) -> Result:
        if result.is_lock_error:
            return Result.failure(
                ErrorCode.LOCK_FILE_ERROR,
                f"Repository is locked by another git process during {step}",
                step=step,
                stderr=result.stderr.strip(),
            )
        return Result.failure(code, f"git {step} failed: {result.error_text}", step=step)

    async def _guarded(self, action: str, operation: Awaitable[Result[T]], **fields) -> Result[T]:
        """Run one public operation, converting unexpected exceptions to INTERNAL_ERROR."""
        try:
            with timeit(action, **fields) as info:
                result = await operation
                if not result.ok:
                    info["outcome"] = "error"
                    info["code"] = result.error.code.value
                return result
        except Exception as exc:
            log_error(f"{action} failed unexpectedly", error=repr(exc), **fields)
            return Result.failure(ErrorCode.INTERNAL_ERROR, f"{action} failed: {exc}")

    def _refspecs(self, branch: str) -> List[str]:
        remote = self.remote_name
        return [
            f"+refs/heads/{branch}:refs/remotes/{remote}/{branch}",
            f"+refs/gitmsg/social/*:refs/remotes/{remote}/gitmsg/social/*",
        ]

    # ------------------------------------------------------------------
    # ensure
    # ------------------------------------------------------------------

    async def ensure(
        self,
        storage_base: PathLike,
        source_url: str,
        branch: str,
        *,
        force: bool = False,
        is_persistent: bool = True,
    ) -> Result[Path]:
        """Make sure a usable mirror of ``source_url``/``branch`` exists.

        Idempotent. Concurrent calls with the same normalized
        ``(storage_base, url, branch)`` key await one shared task, so the
        clone happens once and every caller gets the same path. A call made
        while another is in flight joins it even when ``force`` is set.
        """
        invalid = self._validate_base(storage_base)
        if invalid is not None:
            return invalid
        if not source_url or not source_url.strip():
            return Result.failure(ErrorCode.INVALID_INPUT, "Repository URL is required")
        if not branch or not branch.strip():
            return Result.failure(ErrorCode.MISSING_BRANCH, "Branch is required", url=source_url)

        key = (str(Path(storage_base).resolve()), normalize_url(source_url), branch)
        task = self._ensuring.get(key)
        if task is None:
            task = asyncio.ensure_future(
                self._guarded(
                    "storage.ensure",
                    self._ensure(Path(storage_base), source_url, branch, force, is_persistent),
                    url=key[1],
                    branch=branch,
                )
            )
            self._ensuring[key] = task
            task.add_done_callback(lambda done, key=key: self._forget(self._ensuring, key, done))
        else:
            log_debug("Joining in-flight ensure", url=key[1], branch=branch)
        return await asyncio.shield(task)

    @staticmethod
    def _forget(table: dict, key, done: asyncio.Future) -> None:
        if table.get(key) is done:
            del table[key]

    async def _ensure(
        self,
        storage_base: Path,
        source_url: str,
        branch: str,
        force: bool,
        is_persistent: bool,
    ) -> Result[Path]:
        path = self.repository_path(storage_base, source_url)

        if not force and path.exists():
            existing = await self.read_config(path)
            max_age = timedelta(
                days=self._config.persistent_max_age_days
                if is_persistent
                else self._config.temporary_max_age_days
            )
            if (
                existing is not None
                and existing.last_fetch is not None
                and self._clock() - existing.last_fetch < max_age
                and existing.branch == branch
                and normalize_url(existing.url) == normalize_url(source_url)
            ):
                log_debug("Reusing existing mirror", path=str(path))
                return Result.success(path)

        if path.exists():
            await asyncio.to_thread(_remove_tree, path)
        path.parent.mkdir(parents=True, exist_ok=True)

        try:
            failure = await self._create_mirror(path, source_url, branch, is_persistent)
        except BaseException:
            await self._discard(path)
            raise
        if failure is not None:
            await self._discard(path)
            return failure
        return Result.success(path)

    async def _discard(self, path: Path) -> None:
        if not path.exists():
            return
        try:
            await asyncio.to_thread(_remove_tree, path)
        except OSError as exc:
            log_warning("Could not remove partial mirror", path=str(path), error=str(exc))

    async def _create_mirror(
        self,
        path: Path,
        source_url: str,
        branch: str,
        is_persistent: bool,
    ) -> Optional[Result[Path]]:
        """Init, configure and first-fetch a mirror. Returns a failure or ``None``."""
        remote = self.remote_name

        result = await self._git.execute(path.parent, ["init", "--bare", str(path)])
        if not result.ok:
            return self._remote_failure(result, "init", ErrorCode.INIT_FAILED)

        result = await self._git.execute(path, ["remote", "add", remote, source_url])
        if not result.ok:
            return self._remote_failure(result, "remote add", ErrorCode.INIT_FAILED)

        if self._config.partial_clone_filter:
            for key, value in (
                (f"remote.{remote}.promisor", "true"),
                (f"remote.{remote}.partialclonefilter", self._config.partial_clone_filter),
                (f"remote.{remote}.pushurl", ""),
            ):
                configured = await self._git.execute(path, ["config", key, value])
                if not configured.ok:
                    log_warning(
                        "Could not configure mirror remote",
                        path=str(path),
                        key=key,
                        error=configured.error_text,
                    )

        today = self._today()
        monday = current_week_monday(today)
        start = monday
        result = await self._git.execute(
            path,
            ["fetch", remote, *self._refspecs(branch), f"--shallow-since={monday.isoformat()}", "--no-tags"],
        )
        if not result.ok:
            if result.is_lock_error:
                return self._remote_failure(result, "fetch", ErrorCode.REMOTE_OPERATION_FAILED)
            log_debug("Date-bounded fetch refused, falling back to depth", error=result.error_text)
            result = await self._git.execute(
                path,
                [
                    "fetch",
                    remote,
                    *self._refspecs(branch),
                    f"--depth={self._config.initial_depth}",
                    "--update-shallow",
                    "--no-tags",
                ],
            )
            if not result.ok:
                return self._remote_failure(result, "fetch", ErrorCode.REMOTE_OPERATION_FAILED)
            start = min(await self._oldest_commit_date(path, branch) or monday, today)

        now = self._clock()
        failed = await self._write_config(
            path,
            {
                "version": STORAGE_VERSION,
                "url": normalize_url(source_url),
                "branch": branch,
                "ispersistent": "true" if is_persistent else "false",
                "createdat": now.isoformat(),
                "lastfetch": now.isoformat(),
                "fetchedranges": dump_ranges([FetchRange(start, today)]),
            },
        )
        if failed is not None:
            return self._remote_failure(failed, "config", ErrorCode.INIT_FAILED)

        log_action("storage.mirror_created", path=str(path), branch=branch, start=start.isoformat())
        return None

    async def _oldest_commit_date(self, path: Path, branch: str) -> Optional[date]:
        result = await self._git.execute(
            path,
            [
                "log",
                f"{self.remote_name}/{branch}",
                "--reverse",
                "--max-parents=0",
                "--format=%cd",
                "--date=short",
            ],
        )
        if not result.ok:
            result = await self._git.execute(
                path, ["log", f"{self.remote_name}/{branch}", "--format=%cd", "--date=short"]
            )
        if not result.ok:
            return None
        lines = [line.strip() for line in result.stdout.splitlines() if line.strip()]
        if not lines:
            return None
        try:
            return min(date.fromisoformat(line) for line in lines)
        except ValueError:
            return None

    # ------------------------------------------------------------------
    # fetch
    # ------------------------------------------------------------------

    async def fetch(
        self,
        storage_base: PathLike,
        source_url: str,
        branch: Optional[str] = None,
        *,
        since: Optional[DateLike] = None,
        until: Optional[DateLike] = None,
    ) -> Result[FetchOutcome]:
        """Extend a mirror to cover ``[since, until]``.

        Without ``since`` the range starts at the later of the current
        coverage end and this week's Monday; without ``until`` it ends today.
        A range the mirror already covers is skipped without contacting the
        remote.
        """
        invalid = self._validate_base(storage_base)
        if invalid is not None:
            return invalid
        try:
            start = to_date(since) if since is not None else None
            end = to_date(until) if until is not None else None
        except ValueError as exc:
            return Result.failure(ErrorCode.INVALID_INPUT, f"Invalid date: {exc}")
        if start is not None and end is not None and start > end:
            return Result.failure(
                ErrorCode.INVALID_INPUT,
                f"Range start {start} is after end {end}",
            )

        path = self.repository_path(storage_base, source_url)
        config = await self.read_config(path) if path.exists() else None
        if config is None:
            return Result.failure(
                ErrorCode.REPOSITORY_NOT_FOUND,
                f"No mirror for {source_url}; call ensure first",
                url=source_url,
            )
        branch = branch or config.branch
        if not branch:
            return Result.failure(ErrorCode.MISSING_BRANCH, "Branch could not be resolved", url=source_url)

        today = self._today()
        stored = list(config.fetched_ranges)
        if end is None:
            end = today
        if start is None:
            covered_to = coverage_end(stored)
            monday = current_week_monday(today)
            start = min(max(covered_to, monday) if covered_to else monday, end)
        if start > end:
            return Result.failure(
                ErrorCode.INVALID_INPUT,
                f"Range start {start} is after end {end}",
                url=source_url,
            )
        requested = FetchRange(start, end)

        if is_covered(stored, requested):
            log_action(
                "storage.fetch",
                outcome="skipped",
                url=config.url,
                branch=branch,
                start=start.isoformat(),
                end=end.isoformat(),
            )
            return Result.success(FetchOutcome(skipped=True, range=requested))

        key = (str(Path(storage_base).resolve()), normalize_url(source_url), branch, start, end)
        task = self._fetching.get(key)
        if task is None:
            task = asyncio.ensure_future(
                self._guarded(
                    "storage.fetch",
                    self._fetch(path, branch, requested, stored),
                    url=config.url,
                    branch=branch,
                    start=start.isoformat(),
                    end=end.isoformat(),
                )
            )
            self._fetching[key] = task
            task.add_done_callback(lambda done, key=key: self._forget(self._fetching, key, done))
        return await asyncio.shield(task)

    async def _fetch(
        self,
        path: Path,
        branch: str,
        requested: FetchRange,
        stored: List[FetchRange],
    ) -> Result[FetchOutcome]:
        remote = self.remote_name
        refspecs = self._refspecs(branch)
        # Never ask for a shallower history than the mirror already has
        bound = min([requested.start, *(r.start for r in stored)])

        attempts = [
            ("shallow-since", [f"--shallow-since={bound.isoformat()}", "--update-shallow"]),
            ("depth", [f"--depth={self._config.initial_depth}", "--update-shallow"]),
            ("unshallow", ["--unshallow"]),
        ]
        result: Optional[GitResult] = None
        strategy = None
        for strategy, extra in attempts:
            result = await self._git.execute(path, ["fetch", remote, *refspecs, *extra, "--no-tags"])
            if result.ok:
                break
            if result.is_lock_error:
                return self._remote_failure(result, "fetch", ErrorCode.REMOTE_OPERATION_FAILED)
            log_debug("Fetch attempt failed", path=str(path), strategy=strategy, error=result.error_text)
        if result is None or not result.ok:
            return self._remote_failure(result, "fetch", ErrorCode.REMOTE_OPERATION_FAILED)

        # Read, merge and write under one lock per mirror; fetches of other ranges
        # may have recorded theirs since this one started
        async with self._range_lock(path):
            latest = await self.read_config(path)
            current = list(latest.fetched_ranges) if latest is not None else stored
            merged = add_range(current, requested)
            failed = await self._write_config(
                path,
                {
                    "fetchedranges": dump_ranges(merged),
                    "lastfetch": self._clock().isoformat(),
                },
            )
        if failed is not None:
            return self._remote_failure(failed, "config", ErrorCode.REMOTE_OPERATION_FAILED)
        return Result.success(FetchOutcome(skipped=False, range=requested, strategy=strategy))

    # ------------------------------------------------------------------
    # Reading mirrors
    # ------------------------------------------------------------------

    async def get_commits(
        self,
        storage_base: PathLike,
        source_url: str,
        branch: Optional[str] = None,
        *,
        since: Optional[DateLike] = None,
        until: Optional[DateLike] = None,
        limit: Optional[int] = None,
    ) -> Result[List[RawCommit]]:
        """Commits of the mirrored branch, tagged with their external source."""
        invalid = self._validate_base(storage_base)
        if invalid is not None:
            return invalid
        path = self.repository_path(storage_base, source_url)
        config = await self.read_config(path) if path.exists() else None
        if config is None:
            return Result.failure(
                ErrorCode.REPOSITORY_NOT_FOUND,
                f"No mirror for {source_url}",
                url=source_url,
            )
        branch = branch or config.branch
        if not branch:
            return Result.failure(ErrorCode.MISSING_BRANCH, "Branch could not be resolved", url=source_url)
        try:
            since_day = to_date(since) if since is not None else None
            until_day = to_date(until) if until is not None else None
        except ValueError as exc:
            return Result.failure(ErrorCode.INVALID_INPUT, f"Invalid date: {exc}")

        commits = await git_ops.get_commits(
            self._git,
            path,
            branch=f"{self.remote_name}/{branch}",
            since=since_day,
            until=until_day,
            limit=limit or self._config.commit_limit,
        )
        source = ExternalSource(repo_url=normalize_url(config.url), storage_dir=str(path), branch=branch)
        return Result.success([replace(commit, external=source) for commit in commits])

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def _mirror_dirs(self, storage_base: PathLike) -> List[Path]:
        root = Path(storage_base) / REPOSITORIES_DIR
        if not root.is_dir():
            return []
        return sorted(entry for entry in root.iterdir() if entry.is_dir())

    async def cleanup(self, storage_base: PathLike) -> Result[CleanupSummary]:
        """Delete expired temporary mirrors and mirrors with unreadable state.

        Persistent mirrors are always kept. Per-mirror failures are collected
        in the summary and the scan continues.
        """
        invalid = self._validate_base(storage_base)
        if invalid is not None:
            return invalid
        return await self._guarded("storage.cleanup", self._cleanup(storage_base))

    async def _cleanup(self, storage_base: PathLike) -> Result[CleanupSummary]:
        retention = timedelta(days=self._config.retention_days)
        now = self._clock()
        deleted: List[str] = []
        errors: List[str] = []
        kept = 0

        for entry in self._mirror_dirs(storage_base):
            config = await self.read_config(entry)
            if config is None:
                reason = "missing or corrupt config"
            elif config.is_persistent:
                kept += 1
                continue
            elif config.last_fetch is None or now - config.last_fetch > retention:
                reason = "expired"
            else:
                kept += 1
                continue

            try:
                await asyncio.to_thread(_remove_tree, entry)
            except OSError as exc:
                log_warning("Failed to remove mirror", path=str(entry), error=str(exc))
                errors.append(f"{entry.name}: {exc}")
                continue
            log_debug("Removed mirror", path=str(entry), reason=reason)
            deleted.append(entry.name)

        return Result.success(CleanupSummary(deleted=tuple(deleted), kept=kept, errors=tuple(errors)))

    async def get_stats(self, storage_base: PathLike) -> Result[StorageStats]:
        invalid = self._validate_base(storage_base)
        if invalid is not None:
            return invalid
        return await self._guarded("storage.stats", self._stats(storage_base))

    async def _stats(self, storage_base: PathLike) -> Result[StorageStats]:
        total = persistent = temporary = disk_usage = 0
        for entry in self._mirror_dirs(storage_base):
            total += 1
            disk_usage += await asyncio.to_thread(_dir_size, entry)
            config = await self.read_config(entry)
            if config is not None and config.is_persistent:
                persistent += 1
            else:
                temporary += 1
        return Result.success(
            StorageStats(
                total_repositories=total,
                disk_usage=disk_usage,
                persistent=persistent,
                temporary=temporary,
            )
        )

    async def clear_cache(self, storage_base: PathLike) -> Result[ClearSummary]:
        """Force-delete every mirror, reporting failures instead of raising."""
        invalid = self._validate_base(storage_base)
        if invalid is not None:
            return invalid
        return await self._guarded("storage.clear_cache", self._clear(storage_base))

    async def _clear(self, storage_base: PathLike) -> Result[ClearSummary]:
        deleted = 0
        freed = 0
        errors: List[str] = []
        for entry in self._mirror_dirs(storage_base):
            size = await asyncio.to_thread(_dir_size, entry)
            try:
                await asyncio.to_thread(_remove_tree, entry)
            except OSError as exc:
                log_warning("Failed to remove mirror", path=str(entry), error=str(exc))
                errors.append(f"{entry.name}: {exc}")
                continue
            deleted += 1
            freed += size
        return Result.success(ClearSummary(deleted_count=deleted, disk_space_freed=freed, errors=tuple(errors)))
