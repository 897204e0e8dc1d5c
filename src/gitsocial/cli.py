#!/usr/bin/env python3
"""GitSocial CLI - repository mirrors, feeds and threads from the shell."""
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Any, List, Optional

# Fail fast on unsupported interpreter version
if sys.version_info < (3, 10):
    print(f"GitSocial CLI requires Python 3.10+; found {sys.version.split()[0]}", file=sys.stderr)
    sys.exit(1)


def _jsonable(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


def _emit(result) -> None:
    """Print a Result as JSON and exit 0 on success, 1 on failure."""
    if result.ok:
        print(json.dumps(_jsonable(result.data), indent=2, default=str))
        sys.exit(0)
    print(json.dumps({"error": result.error.to_dict()}, indent=2, default=str), file=sys.stderr)
    sys.exit(1)


def _parse_repo(spec: str, default_branch: str):
    """``<url>[#branch:<name>]`` to a followed repository descriptor."""
    from .models import RepositoryDescriptor
    from .refs import display_name, normalize_url

    url, _, branch = spec.partition("#branch:")
    url = normalize_url(url)
    return RepositoryDescriptor(url=url, branch=branch or default_branch, name=display_name(url))


def main(argv: Optional[List[str]] = None) -> None:
    ap = argparse.ArgumentParser(
        prog="gitsocial",
        description="Git-native social feeds: mirror followed repositories and read their posts",
    )
    ap.add_argument("--storage-dir", help="Mirror storage base (default: ~/.gitsocial/storage or config)")

    sub = ap.add_subparsers(dest="cmd")

    p_ensure = sub.add_parser("ensure", help="Create or reuse a mirror of a repository")
    p_ensure.add_argument("url", help="Repository URL")
    p_ensure.add_argument("--branch", help="Branch to mirror (default: configured social branch)")
    p_ensure.add_argument("--force", action="store_true", help="Recreate the mirror even if it is usable")
    p_ensure.add_argument("--temporary", action="store_true", help="Mark the mirror as eligible for cleanup")

    p_fetch = sub.add_parser("fetch", help="Fetch a day range into an existing mirror")
    p_fetch.add_argument("url", help="Repository URL")
    p_fetch.add_argument("--branch", help="Branch (default: the mirror's recorded branch)")
    p_fetch.add_argument("--since", help="First day to cover (YYYY-MM-DD)")
    p_fetch.add_argument("--until", help="Last day to cover (YYYY-MM-DD, default: today)")

    sub.add_parser("cleanup", help="Remove expired temporary mirrors")
    sub.add_parser("stats", help="Show mirror storage statistics")
    sub.add_parser("clear-cache", help="Delete every mirror")

    p_posts = sub.add_parser("posts", help="List posts from the workspace and followed repositories")
    p_posts.add_argument("--workdir", default=".", help="Workspace repository (default: current directory)")
    p_posts.add_argument("--repo", action="append", default=[], help="Followed repository, <url>[#branch:<name>]")
    p_posts.add_argument("--fetch", action="store_true", help="Fetch followed repositories first")
    p_posts.add_argument("--since", help="First day to include (YYYY-MM-DD)")
    p_posts.add_argument("--until", help="Last day to include (YYYY-MM-DD)")
    p_posts.add_argument("--type", dest="post_type", help="Only posts of this type")

    p_thread = sub.add_parser("thread", help="Show the conversation around a post")
    p_thread.add_argument("anchor", help="Post id, #commit:<hash> or <url>#commit:<hash>")
    p_thread.add_argument("--workdir", default=".", help="Workspace repository (default: current directory)")
    p_thread.add_argument("--repo", action="append", default=[], help="Followed repository, <url>[#branch:<name>]")
    p_thread.add_argument("--sort", default="top", help="latest, oldest or top (default: top)")

    p_notes = sub.add_parser("notifications", help="Comments, reposts and quotes on your posts from followed repositories")
    p_notes.add_argument("--workdir", default=".", help="Workspace repository (default: current directory)")
    p_notes.add_argument("--repo", action="append", default=[], help="Followed repository, <url>[#branch:<name>]")
    p_notes.add_argument("--since", help="First day to include (default: seven days ago)")
    p_notes.add_argument("--until", help="Last day to include (YYYY-MM-DD)")
    p_notes.add_argument("--limit", type=int, default=100, help="Maximum notifications (default: 100)")

    p_config = sub.add_parser("config", help="Configuration management")
    config_sub = p_config.add_subparsers(dest="config_cmd")
    p_config_show = config_sub.add_parser("show", help="Show resolved configuration")
    p_config_show.add_argument("--project-path", help="Project directory for config discovery")
    p_config_sources = config_sub.add_parser("sources", help="List config files in precedence order")
    p_config_sources.add_argument("--project-path", help="Project directory for config discovery")

    args = ap.parse_args(argv)

    if not args.cmd:
        ap.print_help()
        sys.exit(0)

    from .config_loader import ConfigError, config_sources, load_config

    if args.cmd == "config":
        if args.config_cmd not in ("show", "sources"):
            print("Usage: gitsocial config {show,sources}")
            sys.exit(0)
        project_path = Path(args.project_path) if args.project_path else None
        if args.config_cmd == "sources":
            print(json.dumps([str(p) for p in config_sources(project_path)], indent=2))
            sys.exit(0)
        try:
            config = load_config(project_path)
        except ConfigError as e:
            print(f"Configuration error: {e}", file=sys.stderr)
            sys.exit(1)
        print(json.dumps(config.model_dump(mode="json"), indent=2))
        sys.exit(0)

    try:
        config = load_config(Path(getattr(args, "workdir", ".")))
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    from .observability import configure_logging
    from .storage import RepositoryStore

    configure_logging(config.logging)

    storage_base = Path(args.storage_dir).expanduser() if args.storage_dir else config.storage.resolved_base()
    store = RepositoryStore(config=config.storage)

    if args.cmd == "ensure":
        result = asyncio.run(
            store.ensure(
                storage_base,
                args.url,
                args.branch or config.social.branch,
                force=args.force,
                is_persistent=not args.temporary,
            )
        )
        _emit(result)

    if args.cmd == "fetch":
        result = asyncio.run(store.fetch(storage_base, args.url, args.branch, since=args.since, until=args.until))
        _emit(result)

    if args.cmd == "cleanup":
        _emit(asyncio.run(store.cleanup(storage_base)))

    if args.cmd == "stats":
        _emit(asyncio.run(store.get_stats(storage_base)))

    if args.cmd == "clear-cache":
        _emit(asyncio.run(store.clear_cache(storage_base)))

    from .errors import Result
    from .feed import Feed

    feed = Feed(Path(args.workdir).resolve(), config=config, store=store, storage_base=storage_base)
    repositories = [_parse_repo(spec, config.social.branch) for spec in args.repo]

    if args.cmd == "posts":

        async def load():
            if args.fetch and repositories:
                summary = await feed.fetch_all(repositories, since=args.since, until=args.until)
                if summary.failed:
                    print(json.dumps({"fetch": asdict(summary)}, default=str), file=sys.stderr)
            return await feed.load_posts(repositories, since=args.since, until=args.until)

        loaded = asyncio.run(load())
        if not loaded.ok:
            _emit(loaded)
        posts = sorted(loaded.data.posts(), key=lambda p: p.timestamp, reverse=True)
        if args.post_type:
            posts = [post for post in posts if post.type == args.post_type]
        _emit(Result.success(posts))

    if args.cmd == "thread":
        result = asyncio.run(feed.thread(args.anchor, repositories, sort=args.sort))
        if result.ok:
            context = result.data
            result = Result.success(
                {
                    "anchor": context.anchor_post.to_dict(),
                    "parents": [post.to_dict() for post in context.parent_posts],
                    "children": [post.to_dict() for post in context.child_posts],
                    "threadRootId": str(context.thread_root_id),
                    "hasMoreParents": context.has_more_parents,
                    "hasMoreChildren": context.has_more_children,
                }
            )
        _emit(result)

    if args.cmd == "notifications":
        _emit(asyncio.run(feed.notifications(repositories, since=args.since, until=args.until, limit=args.limit)))


if __name__ == "__main__":
    main()
