# tests/test_paths.py
import pytest
from unittest.mock import patch

from filemanager.context import actor_scope
from filemanager.exceptions import PathTraversalError
from filemanager.paths import PathResolver


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("../../etc/passwd", "etc/passwd"),
        ("docs/./2024//report.pdf", "docs/2024/report.pdf"),
        ("..%2F..%2Fsecret", "secret"),
        ("docs\\..\\..\\win.ini", "docs/win.ini"),
        ("a/\0b", "a/b"),
        ("/leading/and/trailing/", "leading/and/trailing"),
        ("docs/..../x", "docs/x"),
    ],
)
def test_sanitize_strips_traversal(raw, expected):
    assert PathResolver.sanitize(raw) == expected


def test_normalize_without_root():
    resolver = PathResolver()

    assert resolver.normalize(None) == ""
    assert resolver.normalize("/") == ""
    assert resolver.normalize("/docs/report.pdf") == "docs/report.pdf"


def test_normalize_anchors_paths_under_root():
    resolver = PathResolver("users/42")

    assert resolver.normalize(None) == "users/42"
    assert resolver.normalize("docs") == "users/42/docs"
    assert resolver.normalize("../../other") == "users/42/other"


def test_normalize_does_not_prefix_rooted_identifiers_twice():
    """Identifiers handed out by the adapter already carry the root."""
    resolver = PathResolver("users/42")

    assert resolver.normalize("users/42/docs") == "users/42/docs"
    assert resolver.normalize("users/42") == "users/42"


def test_validate_within_root_rejects_sibling_prefix():
    resolver = PathResolver("users/42")

    with pytest.raises(PathTraversalError):
        resolver.validate_within_root("users/421/docs")


@patch("filemanager.paths.logging")
def test_traversal_attempt_is_logged_with_actor(mock_logging):
    resolver = PathResolver("users/42", disk="public")

    with actor_scope(ip="10.0.0.1", user_id=7):
        with pytest.raises(PathTraversalError):
            resolver.validate_within_root("etc/passwd")

    message = mock_logging.warning.call_args[0][0]
    assert "attempted_path='etc/passwd'" in message
    assert "ip=10.0.0.1" in message
    assert "user_id=7" in message


@pytest.mark.parametrize("name", ["..", ".", "a/b", "a\\b", "x\0y", "...."])
def test_validate_name_rejects_unsafe_segments(name):
    with pytest.raises(PathTraversalError):
        PathResolver().validate_name(name)


def test_validate_name_accepts_plain_names():
    assert PathResolver().validate_name("Quarterly report.pdf") == "Quarterly report.pdf"
    assert PathResolver().validate_name(".env") == ".env"


def test_is_path_safe():
    resolver = PathResolver("users/42")

    assert resolver.is_path_safe("docs/../../x") is True
    with patch.object(PathResolver, "validate_within_root", side_effect=PathTraversalError("nope")):
        assert resolver.is_path_safe("docs") is False


def test_display_path_strips_root():
    resolver = PathResolver("users/42")

    assert resolver.display_path("users/42/docs/a.txt") == "docs/a.txt"
    assert resolver.display_path("users/42") == ""
    assert resolver.display_path("elsewhere/a.txt") == "elsewhere/a.txt"


def test_path_helpers():
    assert PathResolver.join("", "a") == "a"
    assert PathResolver.join("docs/", "a") == "docs/a"
    assert PathResolver.parent_of("docs/2024/a.txt") == "docs/2024"
    assert PathResolver.parent_of("a.txt") == ""
    assert PathResolver.basename("docs/2024/") == "2024"
    assert PathResolver.is_hidden(".git") is True
    assert PathResolver.is_hidden("git") is False
