"""Git command layer.

Every git invocation goes through ``GitRunner.execute``, which runs the git
binary via GitPython in a worker thread and returns a ``GitResult`` instead
of raising. Higher-level helpers (commit log parsing, unpushed detection,
branch and remote lookups) are built on top of it.
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set, Union

import git
from git.exc import CommandError

from .models import RawCommit
from .observability import log_debug
from .refs import HASH_LENGTH

RECORD_SEP = "\x1e"
UNIT_SEP = "\x1f"

DEFAULT_COMMIT_LIMIT = 10000
DEFAULT_SOCIAL_BRANCH = "gitsocial"

PathLike = Union[str, Path]


@dataclass(frozen=True)
class GitResult:
    args: tuple
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def error_text(self) -> str:
        return (self.stderr or self.stdout or f"git exited with {self.returncode}").strip()

    @property
    def is_lock_error(self) -> bool:
        """git refused to run because a stale ``.lock`` file exists."""
        text = self.stderr or ""
        return "Unable to create" in text and ".lock" in text


@dataclass(frozen=True)
class Remote:
    name: str
    url: str


def _git_env() -> Dict[str, str]:
    env: Dict[str, str] = {}
    # Fail fast instead of waiting on credential prompts
    env["GIT_TERMINAL_PROMPT"] = os.environ.get("GIT_TERMINAL_PROMPT", "0")
    env["GCM_INTERACTIVE"] = os.environ.get("GCM_INTERACTIVE", "never")
    env["GIT_ASKPASS"] = os.environ.get("GIT_ASKPASS", "echo")
    env["GIT_HTTP_LOW_SPEED_LIMIT"] = os.environ.get("GIT_HTTP_LOW_SPEED_LIMIT", "1")
    env["GIT_HTTP_LOW_SPEED_TIME"] = os.environ.get("GIT_HTTP_LOW_SPEED_TIME", "30")
    env["GIT_SSH_COMMAND"] = os.environ.get("GIT_SSH_COMMAND", "ssh -o BatchMode=yes")
    return env


class GitRunner:
    """Runs git commands without letting failures escape as exceptions."""

    def __init__(self, env: Optional[Dict[str, str]] = None):
        self._env = _git_env()
        if env:
            self._env.update(env)

    async def execute(self, workdir: PathLike, args: Sequence[str]) -> GitResult:
        return await asyncio.to_thread(self._execute_sync, str(workdir), tuple(args))

    def _execute_sync(self, workdir: str, args: tuple) -> GitResult:
        log_debug("git", cwd=workdir, args=list(args))
        try:
            status, stdout, stderr = git.Git(workdir).execute(
                ["git", *args],
                with_extended_output=True,
                with_exceptions=False,
                env=self._env,
            )
        except CommandError as exc:
            stderr = exc.stderr if isinstance(exc.stderr, str) else str(exc)
            return GitResult(args=args, returncode=exc.status if isinstance(exc.status, int) else 1, stderr=stderr)
        except OSError as exc:
            return GitResult(args=args, returncode=127, stderr=str(exc))
        return GitResult(args=args, returncode=int(status), stdout=stdout or "", stderr=stderr or "")


def _parse_timestamp(value: str) -> datetime:
    value = value.strip()
    if not value:
        return datetime.fromtimestamp(0, tz=timezone.utc)
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def parse_log_output(output: str) -> List[RawCommit]:
    commits: List[RawCommit] = []
    for entry in output.split(RECORD_SEP):
        if not entry.strip():
            continue
        parts = entry.split(UNIT_SEP)
        if len(parts) < 6:
            continue
        commit_hash, stamp, author, email, message, refname = parts[:6]
        commits.append(
            RawCommit(
                hash=commit_hash.strip(),
                author=author.strip(),
                email=email.strip(),
                timestamp=_parse_timestamp(stamp),
                message=message.rstrip("\n"),
                refname=refname.strip() or None,
            )
        )
    return commits


async def get_commits(
    runner: GitRunner,
    workdir: PathLike,
    *,
    branch: Optional[str] = None,
    all_refs: bool = False,
    since: Optional[date] = None,
    until: Optional[date] = None,
    limit: int = DEFAULT_COMMIT_LIMIT,
    include_refs: Sequence[str] = (),
) -> List[RawCommit]:
    """Commits reachable from ``branch`` (or every ref with ``all_refs``).

    ``until`` is inclusive: git's ``--until`` cuts at the start of the day,
    so one day is added.
    """
    fmt = f"{RECORD_SEP}%h{UNIT_SEP}%cd{UNIT_SEP}%an{UNIT_SEP}%ae{UNIT_SEP}%B{UNIT_SEP}%S"
    args: List[str] = ["log"]
    if all_refs:
        args += ["--exclude=refs/gitmsg/social/config", "--all"]
    else:
        args.append(branch or "HEAD")
        args.extend(include_refs)
    args += [
        "--source",
        f"--max-count={limit}",
        f"--format={fmt}",
        f"--abbrev={HASH_LENGTH}",
        "--no-merges",
        "--date=iso-strict",
    ]
    if since is not None:
        args.append(f"--since={since.isoformat()}")
    if until is not None:
        args.append(f"--until={(until + timedelta(days=1)).isoformat()}")

    result = await runner.execute(workdir, args)
    if not result.ok:
        log_debug("git log failed", workdir=str(workdir), error=result.error_text)
        return []
    commits = parse_log_output(result.stdout)
    log_debug("git log parsed", workdir=str(workdir), count=len(commits))
    return commits


async def _ref_exists(runner: GitRunner, workdir: PathLike, ref: str) -> bool:
    result = await runner.execute(workdir, ["rev-parse", "--verify", "--quiet", ref])
    return result.ok


async def get_unpushed_commits(
    runner: GitRunner,
    workdir: PathLike,
    branch: str,
    *,
    remote: str = "origin",
) -> Set[str]:
    """Abbreviated hashes on ``branch`` that ``remote`` does not have yet."""
    if await _ref_exists(runner, workdir, f"refs/remotes/{remote}/{branch}"):
        spec = f"{remote}/{branch}..{branch}"
    else:
        spec = branch
    result = await runner.execute(
        workdir,
        ["rev-list", "--abbrev-commit", f"--abbrev={HASH_LENGTH}", spec],
    )
    if not result.ok:
        return set()
    return {line.strip().lower()[:HASH_LENGTH] for line in result.stdout.splitlines() if line.strip()}


async def get_current_branch(runner: GitRunner, workdir: PathLike) -> Optional[str]:
    result = await runner.execute(workdir, ["rev-parse", "--abbrev-ref", "HEAD"])
    if not result.ok:
        # Unborn HEAD in a fresh repository
        result = await runner.execute(workdir, ["symbolic-ref", "--short", "HEAD"])
        if not result.ok:
            return None
    name = result.stdout.strip()
    return name if name and name != "HEAD" else None


async def get_configured_branch(
    runner: GitRunner,
    workdir: PathLike,
    default: str = DEFAULT_SOCIAL_BRANCH,
) -> str:
    """Social branch for a workspace: ``gitsocial.branch`` config, else ``default``."""
    result = await runner.execute(workdir, ["config", "--get", "gitsocial.branch"])
    if result.ok and result.stdout.strip():
        return result.stdout.strip()
    return default


async def list_remotes(runner: GitRunner, workdir: PathLike) -> List[Remote]:
    result = await runner.execute(workdir, ["remote", "-v"])
    if not result.ok:
        return []
    remotes: Dict[str, Remote] = {}
    for line in result.stdout.splitlines():
        parts = line.split()
        if len(parts) >= 2 and parts[0] not in remotes:
            remotes[parts[0]] = Remote(name=parts[0], url=parts[1])
    return list(remotes.values())


async def get_remote_url(runner: GitRunner, workdir: PathLike, name: str = "origin") -> Optional[str]:
    for remote in await list_remotes(runner, workdir):
        if remote.name == name:
            return remote.url
    return None


async def read_config_section(
    runner: GitRunner,
    workdir: PathLike,
    section: str,
    *,
    config_file: Optional[PathLike] = None,
) -> Dict[str, str]:
    """All ``<section>.*`` keys as a flat dict keyed by the name after the dot.

    With ``config_file`` only that file is read, never global or system config.
    """
    args = ["config"]
    if config_file is not None:
        args += ["--file", str(config_file)]
    result = await runner.execute(workdir, [*args, "--get-regexp", f"^{section}\\."])
    values: Dict[str, str] = {}
    if not result.ok:
        return values
    prefix = f"{section}."
    for line in result.stdout.splitlines():
        key, _, value = line.partition(" ")
        if key.startswith(prefix):
            values[key[len(prefix):]] = value
    return values
