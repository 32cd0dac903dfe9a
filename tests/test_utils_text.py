"""Tests for text utility functions."""

from __future__ import annotations

import pytest

from notefinder.utils.text import (
    apply_exclusion_patterns,
    extract_title,
    extract_wikilinks,
    strip_frontmatter,
)


class TestFrontmatter:
    """Test frontmatter handling."""

    def test_strip(self) -> None:
        assert strip_frontmatter("---\ntitle: x\n---\nBody") == "Body"

    def test_without_frontmatter(self) -> None:
        assert strip_frontmatter("Body\n---\n") == "Body\n---\n"

    def test_frontmatter_only(self) -> None:
        assert strip_frontmatter("---\na: 1\n---") == ""


class TestExtractTitle:
    """Test title extraction."""

    def test_first_heading(self) -> None:
        assert extract_title("intro\n# Main Title\n# Other", "fallback") == "Main Title"

    def test_fallback(self) -> None:
        assert extract_title("## Only a subheading", "fallback") == "fallback"

    def test_heading_inside_frontmatter_is_ignored(self) -> None:
        assert extract_title("---\n# not a title\n---\ntext", "note") == "note"


class TestExtractWikilinks:
    """Test wikilink extraction."""

    def test_targets_in_order_without_duplicates(self) -> None:
        text = "See [[Beta]], [[gamma|Gamma alias]], [[Beta#Heading]] and [[delta^block]]."
        assert extract_wikilinks(text) == ["Beta", "gamma", "delta"]

    def test_no_links(self) -> None:
        assert extract_wikilinks("plain [text](link.md)") == []


class TestExclusionPatterns:
    """Test regex content exclusion."""

    def test_removes_matches(self) -> None:
        assert apply_exclusion_patterns("keep %%drop%% keep", [r"%%.*?%%"]) == "keep  keep"

    def test_multiline_anchor(self) -> None:
        text = "line one\nTODO: remove\nline three"
        assert apply_exclusion_patterns(text, [r"^TODO:.*$"]) == "line one\n\nline three"

    @pytest.mark.parametrize("pattern", ["(unclosed", "[bad"])
    def test_invalid_pattern_is_skipped(self, pattern: str) -> None:
        assert apply_exclusion_patterns("text", [pattern, "x"]) == "tet"
