from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass

DEFAULT_DEDUP_TTL = 60


@dataclass(frozen=True)
class WebhookDedupKey:
    platform: str
    pr_id: str
    digest: str

    @property
    def key(self) -> str:
        return f"{self.platform}_webhook:{self.pr_id}:{self.digest}"


def payload_digest(fields: dict) -> str:
    encoded = json.dumps(fields, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.md5(encoded.encode("utf-8")).hexdigest()


def build_dedup_key(platform: str, pr_id, fields: dict) -> WebhookDedupKey | None:
    """Key for one delivery, or None when the PR id is unknown (no dedup then)."""
    if pr_id is None or pr_id == "":
        return None
    return WebhookDedupKey(platform=platform, pr_id=str(pr_id), digest=payload_digest(fields))
