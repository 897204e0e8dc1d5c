"""Tests for GitMsg trailer parsing and formatting."""

from gitsocial.gitmsg import (
    GitMsgRef,
    extract_clean_content,
    format_message,
    get_post_type,
    is_empty_repost,
    parse_header,
    parse_message,
    parse_ref,
    quote,
    social_header,
)

REF_LINE = (
    '--- GitMsg-Ref: ext="social"; author="Ada"; email="ada@example.com"; '
    'time="2025-01-02T10:00:00Z"; ref="https://github.com/ada/notes#commit:abcdef012345"; '
    'v="0.1.0"; ext-v="0.1.0" ---'
)


def comment_message() -> str:
    return "\n".join(
        [
            "Nice point",
            "",
            '--- GitMsg: ext="social"; type="comment"; '
            'original="https://github.com/ada/notes#commit:abcdef012345"; v="0.1.0"; ext-v="0.1.0" ---',
            "",
            REF_LINE,
            "> first line",
            "> second line",
        ]
    )


def test_parse_header_fields():
    header = parse_header('--- GitMsg: ext="social"; type="post"; v="0.1.0"; ext-v="0.1.0" ---')
    assert header.ext == "social"
    assert header.v == "0.1.0"
    assert header.ext_v == "0.1.0"
    assert header.fields == {"type": "post"}
    assert header.is_type("social", "post")


def test_parse_header_requires_core_fields():
    assert parse_header('--- GitMsg: ext="social"; type="post"; v="0.1.0" ---') is None
    assert parse_header("not a header") is None


def test_parse_message_splits_content_header_and_refs():
    parsed = parse_message(comment_message())
    assert parsed.content == "Nice point"
    assert parsed.header.fields["original"] == "https://github.com/ada/notes#commit:abcdef012345"
    assert len(parsed.references) == 1
    ref = parsed.references[0]
    assert ref.author == "Ada"
    assert ref.time == "2025-01-02T10:00:00Z"
    assert ref.quoted_content() == "first line\nsecond line"
    assert get_post_type(parsed) == "comment"


def test_message_without_header():
    assert parse_message("just a commit") is None
    assert parse_message("") is None
    assert extract_clean_content("  just a commit \n") == "just a commit"
    assert get_post_type(None) == "post"


def test_ref_missing_required_field_is_dropped():
    broken = REF_LINE.replace('email="ada@example.com"; ', "")
    assert parse_ref(broken) is None
    parsed = parse_message(comment_message().replace(REF_LINE, broken))
    assert parsed.references == []


def test_unknown_type_reads_as_post():
    parsed = parse_message('hello\n\n--- GitMsg: ext="social"; type="poll"; v="0.1.0"; ext-v="0.1.0" ---')
    assert get_post_type(parsed) == "post"
    other_ext = parse_message('hello\n\n--- GitMsg: ext="pm"; type="comment"; v="0.1.0"; ext-v="0.1.0" ---')
    assert get_post_type(other_ext) == "post"


def test_empty_repost_detection():
    header = social_header("repost", original="https://github.com/ada/notes#commit:abcdef012345")
    empty = parse_message(format_message("# https://github.com/ada/notes#commit:abcdef012345", header))
    assert is_empty_repost(empty)
    with_text = parse_message(format_message("# attribution\nMy take", header))
    assert not is_empty_repost(with_text)


def test_format_then_parse_preserves_fields():
    header = social_header(
        "comment",
        original="https://github.com/ada/notes#commit:abcdef012345",
        reply_to="#commit:123456789abc",
    )
    ref = GitMsgRef(
        ext="social",
        ref="https://github.com/ada/notes#commit:abcdef012345",
        v="0.1.0",
        ext_v="0.1.0",
        author="Ada",
        email="ada@example.com",
        time="2025-01-02T10:00:00Z",
        metadata=quote("original text"),
    )
    message = format_message("Reply body", header, [ref])
    parsed = parse_message(message)
    assert parsed.content == "Reply body"
    assert parsed.header.fields == {
        "type": "comment",
        "reply-to": "#commit:123456789abc",
        "original": "https://github.com/ada/notes#commit:abcdef012345",
    }
    assert parsed.references[0].quoted_content() == "original text"
    assert extract_clean_content(message) == "Reply body"
