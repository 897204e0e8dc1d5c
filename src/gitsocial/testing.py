"""Test helpers: an in-process stand-in for the git binary.

``FakeGitRunner`` records every invocation and answers from scripted rules.
Without a matching rule it emulates just enough of git for mirror
bookkeeping: ``init --bare`` creates the directory with a config file and
``config --file`` reads and writes an in-memory table per file. Everything
else succeeds with empty output.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .git_ops import RECORD_SEP, UNIT_SEP, GitResult, GitRunner, PathLike


@dataclass
class Rule:
    prefix: Tuple[str, ...]
    contains: Optional[str]
    returncode: int
    stdout: str
    stderr: str
    times: Optional[int] = None

    def matches(self, args: Tuple[str, ...]) -> bool:
        if self.times is not None and self.times <= 0:
            return False
        if args[: len(self.prefix)] != self.prefix:
            return False
        if self.contains is not None and not any(arg.startswith(self.contains) for arg in args):
            return False
        return True


class FakeGitRunner(GitRunner):
    def __init__(self, delay: float = 0.0):
        super().__init__()
        self.delay = delay
        self.calls: List[Tuple[str, Tuple[str, ...]]] = []
        self.configs: Dict[str, Dict[str, str]] = {}
        self._rules: List[Rule] = []

    def on(
        self,
        *prefix: str,
        contains: Optional[str] = None,
        stdout: str = "",
        stderr: str = "",
        returncode: int = 0,
        times: Optional[int] = None,
    ) -> "FakeGitRunner":
        """Answer commands starting with ``prefix``; later rules win."""
        self._rules.append(Rule(tuple(prefix), contains, returncode, stdout, stderr, times))
        return self

    def commands(self, name: str) -> List[Tuple[str, ...]]:
        return [args for _, args in self.calls if args and args[0] == name]

    def seed_mirror(self, path: PathLike, **values: str) -> Path:
        """Create a mirror directory whose ``gitsocial.*`` config holds ``values``."""
        path = Path(path)
        path.mkdir(parents=True, exist_ok=True)
        config_file = path / "config"
        config_file.write_text("[core]\n\tbare = true\n")
        table = self.configs.setdefault(str(config_file), {})
        for key, value in values.items():
            table[f"gitsocial.{key.lower()}"] = value
        return path

    async def execute(self, workdir: PathLike, args: Sequence[str]) -> GitResult:
        args = tuple(args)
        self.calls.append((str(workdir), args))
        await asyncio.sleep(self.delay)
        for rule in reversed(self._rules):
            if rule.matches(args):
                if rule.times is not None:
                    rule.times -= 1
                return GitResult(args=args, returncode=rule.returncode, stdout=rule.stdout, stderr=rule.stderr)
        return self._emulate(args)

    def _emulate(self, args: Tuple[str, ...]) -> GitResult:
        if args[:2] == ("init", "--bare") and len(args) > 2:
            path = Path(args[2])
            path.mkdir(parents=True, exist_ok=True)
            (path / "config").write_text("[core]\n\tbare = true\n")
            return GitResult(args=args, returncode=0)
        if args[:2] == ("config", "--file") and len(args) > 3:
            table = self.configs.setdefault(args[2], {})
            rest = args[3:]
            if rest[0] == "--get-regexp" and len(rest) > 1:
                pattern = re.compile(rest[1])
                lines = [f"{key} {value}" for key, value in table.items() if pattern.search(key)]
                if not lines:
                    return GitResult(args=args, returncode=1)
                return GitResult(args=args, returncode=0, stdout="\n".join(lines) + "\n")
            if len(rest) == 2:
                table[rest[0].lower()] = rest[1]
                return GitResult(args=args, returncode=0)
        return GitResult(args=args, returncode=0)


def format_log(entries: Iterable[Tuple[str, datetime, str, str, str, str]]) -> str:
    """Render ``(hash, time, author, email, message, refname)`` tuples as ``git log`` output."""
    records = []
    for commit_hash, stamp, author, email, message, refname in entries:
        fields = [commit_hash, stamp.isoformat(), author, email, message, refname]
        records.append(RECORD_SEP + UNIT_SEP.join(fields) + "\n")
    return "".join(records)
