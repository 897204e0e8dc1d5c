"""Tests for post references and URL normalization."""

import pytest

from gitsocial.refs import (
    InvalidReferenceError,
    PostRef,
    commit_url,
    display_name,
    normalize_hash,
    normalize_url,
    storage_dir_name,
)


class TestNormalizeUrl:
    def test_scp_form_becomes_https(self):
        assert normalize_url("git@github.com:Org/Repo.git") == "https://github.com/Org/Repo"

    def test_host_and_scheme_lowercased_path_kept(self):
        assert normalize_url("HTTPS://GitHub.com/Org/Repo/") == "https://github.com/Org/Repo"

    def test_local_path_only_loses_suffix(self):
        assert normalize_url("/srv/git/project.git") == "/srv/git/project"

    def test_empty_passes_through(self):
        assert normalize_url("") == ""


class TestNormalizeHash:
    def test_truncates_and_lowercases(self):
        assert normalize_hash("ABCDEF0123456789") == "abcdef012345"

    @pytest.mark.parametrize("value", ["", "   ", "xyz123", "abc 123"])
    def test_rejects_non_hex(self, value):
        with pytest.raises(InvalidReferenceError):
            normalize_hash(value)


class TestPostRef:
    def test_parse_relative(self):
        ref = PostRef.parse("#commit:ABCDEF0123456789")
        assert ref.is_relative
        assert ref.kind == "relative"
        assert ref.hash == "abcdef012345"
        assert str(ref) == "#commit:abcdef012345"

    def test_parse_absolute_normalizes_repository(self):
        ref = PostRef.parse("git@github.com:alice/notes.git#commit:abcdef012345")
        assert ref.kind == "absolute"
        assert ref.repository == "https://github.com/alice/notes"
        assert str(ref) == "https://github.com/alice/notes#commit:abcdef012345"

    def test_parse_rejects_other_shapes(self):
        with pytest.raises(InvalidReferenceError):
            PostRef.parse("https://github.com/alice/notes#branch:main")
        assert PostRef.try_parse("not a ref") is None
        assert PostRef.try_parse(None) is None

    def test_equal_after_normalization(self):
        a = PostRef("ABCDEF0123456789", "https://GitHub.com/alice/notes.git")
        b = PostRef.parse("https://github.com/alice/notes#commit:abcdef012345")
        assert a == b
        assert hash(a) == hash(b)

    def test_qualify_and_localize(self):
        origin = "https://github.com/alice/notes"
        relative = PostRef("abcdef012345")
        absolute = relative.qualify(origin)
        assert absolute == PostRef("abcdef012345", origin)
        assert absolute.qualify("https://github.com/bob/other") == absolute
        assert absolute.localize(origin + ".git") == relative
        assert absolute.localize("https://github.com/bob/other") == absolute
        assert relative.qualify(None) == relative

    def test_same_commit(self):
        relative = PostRef("abcdef012345")
        alice = PostRef("abcdef012345", "https://github.com/alice/notes")
        bob = PostRef("abcdef012345", "https://github.com/bob/notes")
        assert relative.same_commit(alice)
        assert alice.same_commit(relative)
        assert not alice.same_commit(bob)
        assert not relative.same_commit(PostRef("123456789abc"))
        assert not relative.same_commit(None)


def test_storage_dir_name_is_stable_and_distinct():
    a = storage_dir_name("https://github.com/alice/notes")
    assert a == storage_dir_name("git@github.com:alice/notes.git")
    assert a.startswith("github.com-alice-notes-")
    # Same sanitized text, different URLs
    assert storage_dir_name("https://github.com/alice/notes") != storage_dir_name("https://github.com/alice-notes")


def test_display_name_and_commit_url():
    assert display_name("https://github.com/alice/notes") == "alice/notes"
    assert display_name("") == "workspace"
    assert commit_url("https://github.com/alice/notes", "abc") == "https://github.com/alice/notes/commit/abc"
    assert commit_url("https://gitlab.com/alice/notes", "abc") == "https://gitlab.com/alice/notes/-/commit/abc"
    assert commit_url("https://bitbucket.org/alice/notes", "abc") == "https://bitbucket.org/alice/notes/commits/abc"
    assert commit_url("/local/path", "abc") is None
