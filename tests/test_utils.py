"""
Tests for download naming helpers.
"""

import pytest

from photobook_export.utils import content_disposition, sanitize_label


@pytest.mark.parametrize(
    "title, expected",
    [
        ("Summer Trip", "Summer-Trip"),
        ("Summer Trip / 2024", "Summer-Trip-2024"),
        ("  .hidden.  ", "hidden"),
        ("@#$", "album-7"),
        ("", "album-7"),
        ("Été à Paris", "Été-à-Paris"),
    ],
)
def test_sanitize_label(title, expected):
    assert sanitize_label(title, "album-7") == expected


def test_content_disposition_ascii_title():
    assert content_disposition("Summer-Trip.pdf") == "attachment; filename=\"Summer-Trip.pdf\"; filename*=UTF-8''Summer-Trip.pdf"


def test_content_disposition_non_ascii_title():
    header = content_disposition("日本.pdf")

    assert 'filename="export.pdf"' in header
    assert "filename*=UTF-8''%E6%97%A5%E6%9C%AC.pdf" in header
