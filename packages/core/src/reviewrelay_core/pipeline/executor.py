"""Sequential stage executor.

Each stage receives the context produced by the previous one. A stage stops
the run by returning a context with a terminal status; the executor then skips
the remaining primary stages but always runs the finalizer. Stage exceptions
and timeouts never escape: they become a FAILED status so one tenant's failure
cannot take down unrelated work sharing the process.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Iterable, Sequence

from reviewrelay_core.pipeline.context import PipelineContext, PipelineStatus

logger = logging.getLogger(__name__)


class StageTimeout(Exception):
    """A stage outran the remaining pipeline budget."""


class PipelineStage(ABC):
    stage_name: str = "PipelineStage"

    def execute(self, context: PipelineContext) -> PipelineContext:
        return self.execute_stage(context)

    @abstractmethod
    def execute_stage(self, context: PipelineContext) -> PipelineContext:
        """Return the updated context. Must not mutate the one passed in."""


class PipelineObserver:
    """Receives lifecycle notifications. Every hook is optional."""

    def on_pipeline_start(self, pipeline: str, context: PipelineContext) -> None:
        pass

    def on_stage_start(self, stage: str, context: PipelineContext) -> None:
        pass

    def on_stage_finish(self, stage: str, context: PipelineContext) -> None:
        pass

    def on_stage_error(self, stage: str, error: BaseException, context: PipelineContext) -> None:
        pass

    def on_stage_skipped(self, stage: str, context: PipelineContext) -> None:
        pass

    def on_pipeline_finish(self, pipeline: str, context: PipelineContext) -> None:
        pass


class PipelineExecutor:
    def __init__(
        self,
        stages: Sequence[PipelineStage],
        finalizer: PipelineStage | None = None,
        observers: Iterable[PipelineObserver] = (),
        timeout: float | None = None,
        name: str = "CodeReviewPipeline",
    ):
        self.stages = list(stages)
        self.finalizer = finalizer
        self.observers = list(observers)
        self.timeout = timeout
        self.name = name

    def execute(self, context: PipelineContext) -> PipelineContext:
        deadline = time.monotonic() + self.timeout if self.timeout else None
        self._notify("on_pipeline_start", self.name, context)

        for stage in self.stages:
            if context.is_terminal:
                logger.debug("%s: skipping %s (status=%s)", self.name, stage.stage_name, context.status_info.status)
                self._notify("on_stage_skipped", stage.stage_name, context)
                continue

            remaining = None
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    context = self._timed_out(context, stage)
                    continue

            self._notify("on_stage_start", stage.stage_name, context)
            try:
                context = self._run_stage(stage, context, remaining)
            except StageTimeout:
                context = self._timed_out(context, stage)
                continue
            except Exception as e:
                logger.error(
                    "%s: stage %s failed: %s | %s",
                    self.name,
                    stage.stage_name,
                    e,
                    context.log_metadata(),
                    exc_info=True,
                )
                self._notify("on_stage_error", stage.stage_name, e, context)
                context = context.with_error(stage.stage_name, e).with_status(
                    PipelineStatus.FAILED, f"{stage.stage_name}: {e}"
                )
                continue
            self._notify("on_stage_finish", stage.stage_name, context)

        if context.status_info.status == PipelineStatus.IN_PROGRESS:
            context = context.with_status(PipelineStatus.SUCCESS, context.status_info.message)

        if self.finalizer is not None:
            try:
                context = self.finalizer.execute(context)
            except Exception as e:
                # Cleanup must never turn a finished run into a crash.
                logger.error("%s: finalizer %s failed: %s", self.name, self.finalizer.stage_name, e, exc_info=True)
                context = context.with_error(self.finalizer.stage_name, e)

        self._notify("on_pipeline_finish", self.name, context)
        return context

    def _run_stage(self, stage: PipelineStage, context: PipelineContext, timeout: float | None) -> PipelineContext:
        if timeout is None:
            return stage.execute(context)
        # The worker thread is abandoned on timeout, not cancelled: platform
        # calls it already dispatched are allowed to complete on their own.
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"stage-{stage.stage_name}")
        try:
            future = pool.submit(stage.execute, context)
            try:
                return future.result(timeout=timeout)
            except FutureTimeoutError:
                # Same class as the builtin TimeoutError: a finished future raised it itself.
                if future.done():
                    raise
                raise StageTimeout(stage.stage_name) from None
        finally:
            pool.shutdown(wait=False)

    def _timed_out(self, context: PipelineContext, stage: PipelineStage) -> PipelineContext:
        logger.error("%s: timed out after %ss in %s | %s", self.name, self.timeout, stage.stage_name, context.log_metadata())
        error = TimeoutError(f"pipeline exceeded {self.timeout}s")
        self._notify("on_stage_error", stage.stage_name, error, context)
        return context.with_error(stage.stage_name, error).with_status(
            PipelineStatus.FAILED, f"{stage.stage_name}: timed out"
        )

    def _notify(self, hook: str, *args) -> None:
        for observer in self.observers:
            try:
                getattr(observer, hook)(*args)
            except Exception as e:
                logger.warning("Pipeline observer %s.%s failed: %s", type(observer).__name__, hook, e)
