"""End-to-end tests against real git repositories.

A source repository is created with GitPython and mirrored through a
``file://`` URL, so the fetch path exercises the real pack protocol.
"""

from __future__ import annotations

import shutil

import git
import pytest

from gitsocial.config_schema import GitSocialConfig
from gitsocial.feed import Feed
from gitsocial.gitmsg import format_message, social_header
from gitsocial.models import RepositoryDescriptor
from gitsocial.refs import PostRef
from gitsocial.storage import RepositoryStore

pytestmark = pytest.mark.skipif(shutil.which("git") is None, reason="git binary not available")

ALICE = git.Actor("Alice", "alice@example.com")
BOB = git.Actor("Bob", "bob@example.com")


def init_social_repo(path, *commits):
    """Create a repository whose ``gitsocial`` branch holds ``commits`` (actor, message) in order."""
    repo = git.Repo.init(path)
    repo.git.symbolic_ref("HEAD", "refs/heads/gitsocial")
    shas = []
    for actor, message in commits:
        shas.append(repo.index.commit(message, author=actor, committer=actor).hexsha)
    return repo, shas


@pytest.mark.anyio
async def test_mirror_fetch_and_read(tmp_path, storage_base):
    source = tmp_path / "source"
    _, shas = init_social_repo(source, (BOB, "first post"), (BOB, "second post"))
    url = f"file://{source}"
    store = RepositoryStore()

    ensured = await store.ensure(storage_base, url, "gitsocial")
    assert ensured.ok, ensured.error
    assert (ensured.data / "HEAD").exists()

    again = await store.fetch(storage_base, url)
    assert again.ok
    assert again.data.skipped

    commits = (await store.get_commits(storage_base, url)).unwrap()
    assert {c.hash for c in commits} == {sha[:12] for sha in shas}
    assert all(c.external.repo_url == url for c in commits)

    stats = (await store.get_stats(storage_base)).unwrap()
    assert stats.total_repositories == 1
    assert stats.persistent == 1

    cleanup = (await store.cleanup(storage_base)).unwrap()
    assert cleanup.deleted == ()


@pytest.mark.anyio
async def test_feed_over_workspace_and_followed_repository(tmp_path, storage_base):
    workspace = tmp_path / "workspace"
    _, (root_sha,) = init_social_repo(workspace, (ALICE, "hello from alice"))

    source = tmp_path / "bob"
    reply = format_message("hi alice", social_header("comment", original=f"file://{workspace}#commit:{root_sha[:12]}"))
    init_social_repo(source, (BOB, "bob's own post"), (BOB, reply))

    ws_repo = git.Repo(workspace)
    ws_repo.create_remote("origin", f"file://{workspace}")

    feed = Feed(workspace, config=GitSocialConfig(), storage_base=storage_base)
    bob = RepositoryDescriptor(url=f"file://{source}", branch="gitsocial", name="bob")

    summary = await feed.fetch_all([await feed.describe_workspace(), bob])
    assert summary.failed == 0, summary.errors

    materialized = (await feed.load_posts([bob])).unwrap()
    root = materialized[PostRef(root_sha)]
    assert root.is_workspace_post
    assert root.content == "hello from alice"
    assert root.interactions.comments == 1
    assert len(materialized) == 3

    context = (await feed.thread(PostRef(root_sha), [bob])).unwrap()
    assert [post.content for post in context.child_posts] == ["hi alice"]
