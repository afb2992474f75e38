"""Tests for comment line geometry and body formatting."""

import pytest

from reviewrelay_core.delivery import (
    AttemptState,
    build_line_comment,
    calculate_comment_end_line,
    calculate_comment_start_line,
    format_comment_body,
)
from reviewrelay_core.models import CodeSuggestion
from reviewrelay_core.webhooks.markers import REVIEW_MARKER, suggestion_id_from_body


def make_suggestion(start, end, **kwargs):
    defaults = dict(
        id="s1",
        relevant_file="src/app.py",
        suggestion_content="Handle the None case.",
        severity="high",
        label="bug",
    )
    defaults.update(kwargs)
    return CodeSuggestion(relevant_lines_start=start, relevant_lines_end=end, **defaults)


class TestCommentGeometry:
    @pytest.mark.parametrize(
        "start,end,expected_start,expected_end",
        [
            (10, 12, 10, 12),  # normal range
            (5, 5, None, 5),  # single line
            (10, 24, 10, 24),  # 14 lines apart is still a range
            (10, 25, None, 25),  # 15 apart collapses onto the end line
            (10, 300, None, 300),
            (7, None, None, 7),  # missing end
        ],
    )
    def test_start_and_end(self, start, end, expected_start, expected_end):
        suggestion = make_suggestion(start, end)
        assert calculate_comment_start_line(suggestion) == expected_start
        assert calculate_comment_end_line(suggestion) == expected_end

    def test_build_line_comment_uses_file_and_geometry(self):
        comment = build_line_comment(make_suggestion(3, 6))
        assert comment.path == "src/app.py"
        assert (comment.start_line, comment.line) == (3, 6)
        assert comment.side == "RIGHT"


class TestAttemptState:
    def test_sequence_for_range(self):
        comment = build_line_comment(make_suggestion(10, 12))
        assert AttemptState.ORIGINAL.geometry(comment) == (10, 12)
        assert AttemptState.END_COLLAPSED.geometry(comment) == (12, 12)
        assert AttemptState.START_COLLAPSED.geometry(comment) == (10, 10)

    def test_sequence_for_oversized_range(self):
        comment = build_line_comment(make_suggestion(10, 40))
        assert AttemptState.ORIGINAL.geometry(comment) == (None, 40)
        assert AttemptState.END_COLLAPSED.geometry(comment) == (40, 40)
        assert AttemptState.START_COLLAPSED.geometry(comment) == (10, 10)

    def test_start_collapsed_falls_back_to_line_without_start(self):
        comment = build_line_comment(make_suggestion(None, 8))
        assert AttemptState.START_COLLAPSED.geometry(comment) == (8, 8)

    def test_next_order(self):
        assert AttemptState.ORIGINAL.next() is AttemptState.END_COLLAPSED
        assert AttemptState.END_COLLAPSED.next() is AttemptState.START_COLLAPSED
        assert AttemptState.START_COLLAPSED.next() is AttemptState.EXHAUSTED
        assert AttemptState.EXHAUSTED.next() is AttemptState.EXHAUSTED

    def test_exhausted_has_no_geometry(self):
        comment = build_line_comment(make_suggestion(1, 2))
        with pytest.raises(ValueError):
            AttemptState.EXHAUSTED.geometry(comment)


class TestFormatCommentBody:
    def test_contains_label_severity_and_content(self):
        body = format_comment_body(make_suggestion(1, 2))
        assert "**bug**" in body
        assert "severity: `high`" in body
        assert "Handle the None case." in body

    def test_markers_identify_bot_and_suggestion(self):
        body = format_comment_body(make_suggestion(1, 2, id="abc-123"))
        assert REVIEW_MARKER in body
        assert suggestion_id_from_body(body) == "abc-123"

    def test_improved_code_fenced_with_language(self):
        body = format_comment_body(make_suggestion(1, 2, improved_code="x = 1\n"), language="Python")
        assert "```python\nx = 1\n```" in body

    def test_action_statement_included(self):
        suggestion = make_suggestion(1, 2, clustering_information={"action_statement": "Apply everywhere"})
        assert "_Apply everywhere_" in format_comment_body(suggestion)

    def test_no_label(self):
        body = format_comment_body(make_suggestion(1, 2, label=""))
        assert body.startswith("severity: `high`")
