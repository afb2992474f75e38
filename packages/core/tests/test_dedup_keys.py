"""Tests for webhook dedup keys and comment markers."""

from reviewrelay_core.webhooks.dedup import build_dedup_key, payload_digest
from reviewrelay_core.webhooks.markers import (
    has_review_marker,
    is_bot_mention,
    is_review_command,
    suggestion_id_from_body,
)


class TestDedupKey:
    def test_key_format(self):
        key = build_dedup_key("gitlab", 12, {"a": 1})
        assert key.key == f"gitlab_webhook:12:{payload_digest({'a': 1})}"

    def test_digest_ignores_key_order(self):
        assert payload_digest({"a": 1, "b": 2}) == payload_digest({"b": 2, "a": 1})

    def test_digest_changes_with_values(self):
        assert payload_digest({"head": "x"}) != payload_digest({"head": "y"})

    def test_digest_is_md5_hex(self):
        digest = payload_digest({"a": 1})
        assert len(digest) == 32
        int(digest, 16)

    def test_no_pr_id_means_no_key(self):
        assert build_dedup_key("github", None, {"a": 1}) is None
        assert build_dedup_key("github", "", {"a": 1}) is None

    def test_non_json_values_serialized(self):
        from datetime import datetime

        assert build_dedup_key("github", 1, {"at": datetime(2026, 1, 1)}) is not None


class TestMarkers:
    def test_review_command_variants(self):
        assert is_review_command("@reviewrelay start-review")
        assert is_review_command("please @ReviewRelay  start_review now")
        assert is_review_command("@reviewrelay start review")
        assert not is_review_command("@reviewrelay review")
        assert not is_review_command(None)

    def test_mention(self):
        assert is_bot_mention("thanks @reviewrelay")
        assert not is_bot_mention("email me at x@reviewrelay.io")

    def test_review_marker(self):
        assert has_review_marker("text\n<!-- reviewrelay-codereview -->")
        assert not has_review_marker("")

    def test_suggestion_id(self):
        assert suggestion_id_from_body("<!-- reviewrelay-suggestion:9f2a -->") == "9f2a"
        assert suggestion_id_from_body("nothing here") is None
