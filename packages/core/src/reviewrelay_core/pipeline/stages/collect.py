"""Pulls candidate suggestions from the external generator."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from reviewrelay_core.models import CodeSuggestion
from reviewrelay_core.pipeline.context import PipelineContext
from reviewrelay_core.pipeline.executor import PipelineStage

logger = logging.getLogger(__name__)


@dataclass
class SuggestionBatch:
    suggestions: list[CodeSuggestion] = field(default_factory=list)
    discarded: list[CodeSuggestion] = field(default_factory=list)


class SuggestionProvider(Protocol):
    def __call__(self, context: PipelineContext) -> SuggestionBatch: ...


class NullSuggestionProvider:
    """Produces nothing. Used when no generator is wired in."""

    def __call__(self, context: PipelineContext) -> SuggestionBatch:
        return SuggestionBatch()


class JsonFileSuggestionProvider:
    """Reads suggestions from a JSON file.

    Accepts either a bare list of suggestions or an object with
    ``suggestions`` and ``discarded`` lists. Only suggestions on files the PR
    touches are returned when the changed files are known.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def __call__(self, context: PipelineContext) -> SuggestionBatch:
        with open(self.path) as f:
            data = json.load(f)
        if isinstance(data, list):
            data = {"suggestions": data}
        batch = SuggestionBatch(
            suggestions=[CodeSuggestion.from_dict(d) for d in data.get("suggestions") or []],
            discarded=[CodeSuggestion.from_dict(d) for d in data.get("discarded") or []],
        )
        changed = {f.filename for f in context.changed_files}
        if changed:
            batch.suggestions = [s for s in batch.suggestions if s.relevant_file in changed]
            batch.discarded = [s for s in batch.discarded if s.relevant_file in changed]
        return batch


class CollectSuggestionsStage(PipelineStage):
    stage_name = "CollectSuggestionsStage"

    def __init__(self, provider: SuggestionProvider | None = None):
        self.provider = provider or NullSuggestionProvider()

    def execute_stage(self, context: PipelineContext) -> PipelineContext:
        batch = self.provider(context)
        logger.info(
            "%s: %d suggestion(s), %d discarded by the generator | %s",
            self.stage_name,
            len(batch.suggestions),
            len(batch.discarded),
            context.log_metadata(),
        )
        return context.evolve(
            valid_suggestions=[*context.valid_suggestions, *batch.suggestions],
            discarded_suggestions=[*context.discarded_suggestions, *batch.discarded],
        )
