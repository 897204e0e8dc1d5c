"""Tests for thread context building."""

from datetime import datetime, timedelta, timezone

from gitsocial.errors import ErrorCode
from gitsocial.gitmsg import format_message, social_header
from gitsocial.materializer import PostGraphBuilder, construct_post, count_interactions
from gitsocial.models import ExternalSource, RawCommit
from gitsocial.refs import PostRef
from gitsocial.thread import build_context, build_thread_items, flatten_context, sort_posts, truncate_context

ALICE = "https://github.com/alice/notes"
BOB = "https://github.com/bob/feed"

BASE = datetime(2025, 1, 6, 12, 0, tzinfo=timezone.utc)


def make(hash_, repo, message, minutes=0):
    return construct_post(
        RawCommit(
            hash=hash_,
            author="Tester",
            email="tester@example.com",
            timestamp=BASE + timedelta(minutes=minutes),
            message=message,
            external=ExternalSource(repo_url=repo, storage_dir="/tmp/m", branch="gitsocial"),
        )
    )


def comment(text, original, reply_to=None):
    return format_message(text, social_header("comment", original=original, reply_to=reply_to))


ROOT = f"{ALICE}#commit:aaaaaaaaaaaa"
FIRST = f"{BOB}#commit:bbbbbbbbbbbb"


def nested_thread():
    root = make("aaaaaaaaaaaa", ALICE, "root post")
    first = make("bbbbbbbbbbbb", BOB, comment("first", ROOT), minutes=1)
    second = make("cccccccccccc", ALICE, comment("second", ROOT, reply_to=FIRST), minutes=2)
    third = make("dddddddddddd", BOB, comment("third", ROOT), minutes=3)
    materialized = PostGraphBuilder().add_all([root, first, second, third]).build()
    count_interactions(materialized)
    return materialized, root, first, second, third


def test_three_level_chain_from_the_leaf():
    posts, root, first, second, _ = nested_thread()

    result = build_context(second.id, posts)

    assert result.ok
    context = result.data
    assert context.anchor_post is second
    assert context.parent_posts == [root, first]
    assert context.thread_root_id == root.id
    assert flatten_context(context)[:3] == [root, first, second]
    assert not context.has_more_parents
    assert not context.has_more_children


def test_children_of_root_with_top_sort():
    posts, root, first, second, third = nested_thread()
    first.interactions.comments = 5

    context = build_context(str(root.id), posts, "top").unwrap()

    assert context.parent_posts == []
    assert context.thread_root_id == root.id
    # Most comments first, then newest
    assert context.child_posts == [first, third, second]
    assert root.interactions.comments == 3


def test_latest_and_oldest_sorts():
    posts, root, first, second, third = nested_thread()
    assert build_context(root.id, posts, "latest").unwrap().child_posts == [third, second, first]
    assert build_context(root.id, posts, "oldest").unwrap().child_posts == [first, second, third]


def test_relative_anchor_matches_by_commit():
    posts, root, *_ = nested_thread()
    context = build_context("#commit:aaaaaaaaaaaa", posts).unwrap()
    assert context.anchor_post is root


def test_missing_anchor_and_bad_sort():
    posts, root, *_ = nested_thread()
    missing = build_context(PostRef("eeeeeeeeeeee", ALICE), posts)
    assert not missing.ok
    assert missing.error.code == ErrorCode.POST_NOT_FOUND
    bad_sort = build_context(root.id, posts, "random")
    assert bad_sort.error.code == ErrorCode.INVALID_INPUT


def test_parent_walk_stops_at_missing_reference():
    orphan = make("bbbbbbbbbbbb", BOB, comment("reply", f"{ALICE}#commit:999999999999"))
    context = build_context(orphan.id, [orphan]).unwrap()
    assert context.parent_posts == []
    assert context.thread_root_id == orphan.id


def test_parent_walk_stops_on_cycle():
    a_ref = f"{ALICE}#commit:aaaaaaaaaaaa"
    b_ref = f"{BOB}#commit:bbbbbbbbbbbb"
    a = make("aaaaaaaaaaaa", ALICE, comment("a", b_ref, reply_to=b_ref))
    b = make("bbbbbbbbbbbb", BOB, comment("b", a_ref, reply_to=a_ref))
    context = build_context(a.id, [a, b]).unwrap()
    assert context.parent_posts == [b]


def test_quote_does_not_walk_to_its_original():
    root = make("aaaaaaaaaaaa", ALICE, "root")
    quoted = make("bbbbbbbbbbbb", BOB, format_message("my take", social_header("quote", original=ROOT)))
    context = build_context(quoted.id, [root, quoted]).unwrap()
    assert context.parent_posts == []


def test_thread_items_depths_and_children_flags():
    posts, root, first, second, third = nested_thread()
    context = build_context(root.id, posts, "oldest").unwrap()

    items = build_thread_items(context, posts)

    assert [(item.type, item.key, item.depth) for item in items] == [
        ("anchor", str(root.id), 0),
        ("post", str(first.id), 1),
        ("post", str(second.id), 2),
        ("post", str(third.id), 1),
    ]
    flags = {item.key: item.has_children for item in items}
    assert flags[str(root.id)]
    assert flags[str(first.id)]
    assert not flags[str(second.id)]
    assert not flags[str(third.id)]


def test_thread_items_parent_depths():
    posts, root, first, second, _ = nested_thread()
    context = build_context(second.id, posts).unwrap()
    items = build_thread_items(context, posts)
    assert [(item.key, item.depth) for item in items] == [
        (str(root.id), -2),
        (str(first.id), -1),
        (str(second.id), 0),
    ]
    assert build_thread_items(context, posts, defer_parents=True)[0].type == "anchor"


def test_sort_posts_leaves_unknown_order():
    posts, root, first, *_ = nested_thread()
    assert sort_posts([first, root], "unknown") == [first, root]


def test_truncate_context_reports_what_was_cut():
    posts, root, first, second, third = nested_thread()
    children = build_context(root.id, posts, "oldest").unwrap()

    cut = truncate_context(children, max_children=2)

    assert cut.child_posts == [first, second]
    assert cut.has_more_children
    assert not cut.has_more_parents
    assert not truncate_context(children, max_children=3).has_more_children

    ancestors = build_context(second.id, posts).unwrap()
    nearest = truncate_context(ancestors, max_parents=1)
    assert nearest.parent_posts == [first]
    assert nearest.has_more_parents
    assert truncate_context(ancestors, max_parents=0).parent_posts == []


def test_thread_items_respect_limits():
    posts, root, first, second, _ = nested_thread()
    context = build_context(second.id, posts).unwrap()
    items = build_thread_items(context, posts, max_parents=1)
    assert [(item.key, item.depth) for item in items] == [
        (str(first.id), -1),
        (str(second.id), 0),
    ]
