"""Tests for the sequential pipeline executor."""

import dataclasses
import threading

import pytest

from reviewrelay_core.models import OrganizationAndTeamData, PullRequest, Repository
from reviewrelay_core.pipeline.context import PipelineContext, PipelineStatus
from reviewrelay_core.pipeline.executor import PipelineExecutor, PipelineObserver, PipelineStage


def make_context(**kwargs):
    defaults = dict(
        organization_and_team_data=OrganizationAndTeamData("org"),
        repository=Repository(id="1", name="app"),
        pull_request=PullRequest(number=3),
        platform_type="github",
    )
    defaults.update(kwargs)
    return PipelineContext(**defaults)


class RecordingStage(PipelineStage):
    def __init__(self, name, calls, result=None):
        self.stage_name = name
        self.calls = calls
        self.result = result

    def execute_stage(self, context):
        self.calls.append(self.stage_name)
        if self.result is not None:
            return self.result(context)
        return context.with_metadata(**{self.stage_name: True})


class FailingStage(PipelineStage):
    stage_name = "FailingStage"

    def execute_stage(self, context):
        raise RuntimeError("boom")


class TimeoutRaisingStage(PipelineStage):
    stage_name = "TimeoutRaisingStage"

    def execute_stage(self, context):
        raise TimeoutError("upstream read timed out")


class SlowStage(PipelineStage):
    stage_name = "SlowStage"

    def __init__(self, release: threading.Event):
        self.release = release

    def execute_stage(self, context):
        self.release.wait(5)
        return context


class RecordingObserver(PipelineObserver):
    def __init__(self):
        self.events = []

    def on_pipeline_start(self, pipeline, context):
        self.events.append(("start", pipeline))

    def on_stage_start(self, stage, context):
        self.events.append(("stage_start", stage))

    def on_stage_finish(self, stage, context):
        self.events.append(("stage_finish", stage))

    def on_stage_error(self, stage, error, context):
        self.events.append(("stage_error", stage))

    def on_stage_skipped(self, stage, context):
        self.events.append(("stage_skipped", stage))

    def on_pipeline_finish(self, pipeline, context):
        self.events.append(("finish", pipeline))


class TestPipelineExecutor:
    def test_runs_stages_in_order_and_succeeds(self):
        calls = []
        executor = PipelineExecutor([RecordingStage("a", calls), RecordingStage("b", calls)])
        result = executor.execute(make_context())

        assert calls == ["a", "b"]
        assert result.status_info.status == PipelineStatus.SUCCESS
        assert result.pipeline_metadata == {"a": True, "b": True}

    def test_input_context_not_mutated(self):
        context = make_context()
        PipelineExecutor([RecordingStage("a", [])]).execute(context)
        assert context.pipeline_metadata == {}
        assert context.status_info.status == PipelineStatus.IN_PROGRESS

    def test_skipped_stage_stops_the_rest_but_finalizer_runs(self):
        calls = []
        skip = RecordingStage("skip", calls, lambda c: c.with_status(PipelineStatus.SKIPPED, "Skipped: closed"))
        executor = PipelineExecutor(
            [skip, RecordingStage("after", calls)],
            finalizer=RecordingStage("final", calls),
        )
        result = executor.execute(make_context())

        assert calls == ["skip", "final"]
        assert result.status_info.status == PipelineStatus.SKIPPED
        assert result.status_info.message == "Skipped: closed"

    def test_exception_becomes_failed_status(self):
        calls = []
        executor = PipelineExecutor([FailingStage(), RecordingStage("after", calls)], finalizer=RecordingStage("final", calls))
        result = executor.execute(make_context())

        assert calls == ["final"]
        assert result.status_info.status == PipelineStatus.FAILED
        assert "boom" in result.status_info.message
        assert result.errors[0]["stage"] == "FailingStage"
        assert isinstance(result.errors[0]["error"], RuntimeError)

    def test_finalizer_error_is_swallowed(self):
        result = PipelineExecutor([RecordingStage("a", [])], finalizer=FailingStage()).execute(make_context())
        assert result.status_info.status == PipelineStatus.SUCCESS
        assert result.errors[-1]["stage"] == "FailingStage"

    def test_observer_notified(self):
        observer = RecordingObserver()
        skip = RecordingStage("skip", [], lambda c: c.with_status(PipelineStatus.SKIPPED))
        PipelineExecutor([skip, RecordingStage("b", [])], observers=[observer], name="P").execute(make_context())

        assert observer.events == [
            ("start", "P"),
            ("stage_start", "skip"),
            ("stage_finish", "skip"),
            ("stage_skipped", "b"),
            ("finish", "P"),
        ]

    def test_failing_observer_does_not_break_run(self, mocker):
        observer = mocker.MagicMock(spec=PipelineObserver)
        observer.on_stage_start.side_effect = RuntimeError("observer down")
        result = PipelineExecutor([RecordingStage("a", [])], observers=[observer]).execute(make_context())
        assert result.status_info.status == PipelineStatus.SUCCESS

    def test_timeout_fails_run_and_skips_rest(self):
        release = threading.Event()
        calls = []
        executor = PipelineExecutor(
            [SlowStage(release), RecordingStage("after", calls)],
            finalizer=RecordingStage("final", calls),
            timeout=0.2,
        )
        try:
            result = executor.execute(make_context())
        finally:
            release.set()

        assert result.status_info.status == PipelineStatus.FAILED
        assert "timed out" in result.status_info.message
        assert isinstance(result.errors[0]["error"], TimeoutError)
        assert calls == ["final"]

    @pytest.mark.parametrize("timeout", [None, 5])
    def test_stage_raising_timeout_error_is_a_stage_failure(self, timeout):
        result = PipelineExecutor([TimeoutRaisingStage()], timeout=timeout).execute(make_context())

        assert result.status_info.status == PipelineStatus.FAILED
        assert result.status_info.message == "TimeoutRaisingStage: upstream read timed out"
        assert "exceeded" not in str(result.errors[0]["error"])

    def test_fast_run_within_timeout(self):
        result = PipelineExecutor([RecordingStage("a", [])], timeout=5).execute(make_context())
        assert result.status_info.status == PipelineStatus.SUCCESS


class TestPipelineContext:
    def test_frozen(self):
        context = make_context()
        with pytest.raises(dataclasses.FrozenInstanceError):
            context.platform_type = "gitlab"

    def test_log_metadata(self):
        assert make_context().log_metadata() == {
            "organization_id": "org",
            "repository": "app",
            "pr_number": 3,
            "platform": "github",
        }

    def test_terminal_statuses(self):
        context = make_context()
        assert not context.is_terminal
        assert context.with_status(PipelineStatus.FAILED).is_terminal
        assert context.with_status(PipelineStatus.SKIPPED).is_terminal
        assert not context.with_status(PipelineStatus.SUCCESS).is_terminal
