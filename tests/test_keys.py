"""Tests for storage key generation."""

from areacms.uploads.keys import generate_storage_key, project_prefix, sanitize_filename


def test_sanitize_filename():
    assert "../" not in sanitize_filename("../etc/passwd")
    assert "..\\" not in sanitize_filename("..\\windows\\system32")
    assert "/" not in sanitize_filename("path/to/file.txt")

    result = sanitize_filename("file@#$.txt")
    assert "@" not in result
    assert "#" not in result

    assert sanitize_filename("valid-file_name.123.txt") == "valid-file_name.123.txt"
    assert sanitize_filename("") == "file"


def test_key_layout():
    key = generate_storage_key(7, "photo.png", clock=lambda: 1700000000.5)

    assert key.startswith(f"{project_prefix(7)}/1700000000500-")
    assert key.endswith("-photo.png")


def test_extension_replaced_after_reencode():
    key = generate_storage_key(7, "photo.png", extension=".jpg")

    assert key.endswith("-photo.jpg")


def test_variant_prefix():
    key = generate_storage_key(7, "photo.png", variant="thumb", clock=lambda: 1.0)

    assert key.startswith("project-7/thumb-1000-")


def test_same_name_same_millisecond_never_collides():
    frozen = lambda: 1700000000.0  # noqa: E731

    keys = {generate_storage_key(7, "photo.png", clock=frozen) for _ in range(1000)}

    assert len(keys) == 1000
