"""Tests for scratch_org_create.py – ScratchOrgCreateCommand"""
import io
import sys

import pytest

from conftest import FakeIndicator, FakeStatusView
from devhub_client import ScratchOrgError, ScratchOrgInfoTimeoutError, ScratchOrgRequest, ScratchOrgResult
from lifecycle_events import (
    LIFECYCLE_STAGES,
    SCRATCH_ORG_LIFECYCLE_EVENT,
    EventBus,
    LifecycleEvent,
    ScratchOrgInfo,
)
from scratch_org_create import (
    ASYNC_LABEL,
    EXIT_CODE_TIMEOUT,
    NO_INFO_MESSAGE,
    TIMEOUT_MESSAGE,
    CommandExit,
    ScratchOrgCreateCommand,
    resume_hint,
)
from status_view import StatusLine

BASE_URL = "https://hub.example.com"


class TtyStream(io.StringIO):
    def isatty(self):
        return True


class FakeDevHubClient:
    """Publishes a scripted set of stages, then returns or raises."""

    def __init__(self, bus, stages=LIFECYCLE_STAGES, result=None, error=None):
        self.bus = bus
        self.stages = stages
        self.result = result
        self.error = error
        self.requests = []
        self.resumed = []
        self.subscribers_at_call = None

    def _play(self):
        self.subscribers_at_call = self.bus.subscriber_count(SCRATCH_ORG_LIFECYCLE_EVENT)
        info = ScratchOrgInfo(id="2SR1")
        for stage in self.stages:
            self.bus.publish(SCRATCH_ORG_LIFECYCLE_EVENT, LifecycleEvent(stage=stage, info=info))
        if self.error is not None:
            raise self.error
        return self.result

    def create_scratch_org(self, request):
        self.requests.append(request)
        return self._play()

    def resume_scratch_org(self, job_id, wait_minutes, track_source=True):
        self.resumed.append((job_id, wait_minutes, track_source))
        return self._play()


def _result(request_id="2SR1"):
    return ScratchOrgResult(
        username="test@example.com",
        scratch_org_info=ScratchOrgInfo(id=request_id, scratch_org="00D1"),
        auth_fields={"orgId": "00D1"},
    )


class Harness:
    def __init__(self, **client_kwargs):
        self.bus = EventBus()
        self.client = FakeDevHubClient(self.bus, **client_kwargs)
        self.views = []
        self.indicators = []
        self.command = ScratchOrgCreateCommand(
            self.client,
            BASE_URL,
            "scratch-org",
            view_factory=self._make_view,
            indicator_factory=self._make_indicator,
        )

    def _make_view(self, base_url):
        view = FakeStatusView(base_url)
        self.views.append(view)
        return view

    def _make_indicator(self, label):
        indicator = FakeIndicator(label)
        self.indicators.append(indicator)
        return indicator


# ===========================================================================
# Synchronous mode
# ===========================================================================

class TestSynchronousCreate:

    def test_success(self, capsys):
        h = Harness(result=_result())

        result = h.command.create(ScratchOrgRequest())

        assert result.org_id == "00D1"
        assert "[OK] Your scratch org is ready." in capsys.readouterr().out
        assert len(h.views) == 1
        assert h.views[0].unmount_count == 1
        assert [event.stage for event, _ in h.views[0].renders] == list(LIFECYCLE_STAGES)
        assert h.indicators == []

    def test_tracker_subscribed_before_call(self):
        h = Harness(result=_result())
        h.command.create(ScratchOrgRequest())
        assert h.client.subscribers_at_call == 1
        assert h.bus.subscriber_count(SCRATCH_ORG_LIFECYCLE_EVENT) == 0

    def test_success_without_done_event_still_unmounts_once(self):
        h = Harness(stages=LIFECYCLE_STAGES[:3], result=_result())
        h.command.create(ScratchOrgRequest())
        assert h.views[0].unmount_count == 1
        assert h.bus.subscriber_count(SCRATCH_ORG_LIFECYCLE_EVENT) == 0

    def test_timeout_exits_69_with_resume_hint(self, capsys):
        h = Harness(stages=LIFECYCLE_STAGES[:3], error=ScratchOrgInfoTimeoutError("0Rxxx", 5))

        with pytest.raises(CommandExit) as exc_info:
            h.command.create(ScratchOrgRequest())

        assert exc_info.value.exit_code == EXIT_CODE_TIMEOUT == 69
        assert exc_info.value.message == TIMEOUT_MESSAGE
        out = capsys.readouterr().out
        assert "0Rxxx" in out
        assert 'scratch-org resume --job-id 0Rxxx' in out

        view = h.views[0]
        assert view.unmount_count == 1
        last_event, last_error = view.renders[-1]
        assert last_event.stage == "wait for org"
        assert isinstance(last_error, ScratchOrgInfoTimeoutError)

    def test_unclassified_failure_propagates(self, capsys):
        error = ScratchOrgError("Scratch org request 2SR1 failed: C-1033")
        h = Harness(stages=LIFECYCLE_STAGES[:2], error=error)

        with pytest.raises(ScratchOrgError) as exc_info:
            h.command.create(ScratchOrgRequest())

        assert exc_info.value is error
        assert h.views[0].unmount_count == 1
        assert h.views[0].renders[-1][1] is error
        assert "resume" not in capsys.readouterr().out

    def test_missing_info_is_an_error(self):
        h = Harness(result=ScratchOrgResult(username=None, scratch_org_info=None))
        with pytest.raises(ScratchOrgError, match=NO_INFO_MESSAGE):
            h.command.create(ScratchOrgRequest())

    def test_none_result_is_an_error(self):
        h = Harness(stages=(), result=None)
        with pytest.raises(ScratchOrgError, match=NO_INFO_MESSAGE):
            h.command.create(ScratchOrgRequest())
        assert h.views[0].unmount_count == 1

    def test_interrupt_unsubscribes_and_unmounts(self):
        h = Harness(stages=LIFECYCLE_STAGES[:3], error=KeyboardInterrupt())

        with pytest.raises(KeyboardInterrupt):
            h.command.create(ScratchOrgRequest())

        view = h.views[0]
        assert view.unmount_count == 1
        assert all(error is None for _, error in view.renders)
        assert h.bus.subscriber_count(SCRATCH_ORG_LIFECYCLE_EVENT) == 0


# ===========================================================================
# Async mode
# ===========================================================================

class TestAsyncCreate:

    def test_async_never_subscribes(self, capsys):
        h = Harness(stages=LIFECYCLE_STAGES[:2], result=_result("2SR9"))

        h.command.create(ScratchOrgRequest(wait_minutes=5), async_mode=True)

        assert h.client.subscribers_at_call == 0
        assert h.views == []
        assert h.client.requests[0].wait_minutes == 0
        assert 'scratch-org resume --job-id 2SR9' in capsys.readouterr().out

    def test_indicator_shown_once_and_cleared(self):
        h = Harness(result=_result())
        h.command.create(ScratchOrgRequest(), async_mode=True)

        assert len(h.indicators) == 1
        indicator = h.indicators[0]
        assert indicator.label == ASYNC_LABEL
        assert indicator.show_count == 1
        assert indicator.clear_count == 1
        assert indicator.unmount_count == 1

    def test_async_failure_unmounts_indicator(self):
        h = Harness(error=ScratchOrgError("boom"))
        with pytest.raises(ScratchOrgError):
            h.command.create(ScratchOrgRequest(), async_mode=True)
        assert h.indicators[0].unmount_count == 1
        assert h.indicators[0].clear_count == 0

    def test_async_interrupt_unmounts_indicator(self):
        h = Harness(error=KeyboardInterrupt())
        with pytest.raises(KeyboardInterrupt):
            h.command.create(ScratchOrgRequest(), async_mode=True)
        assert h.indicators[0].unmount_count == 1

    def test_async_line_is_erased_on_a_terminal(self, monkeypatch):
        stream = TtyStream()
        monkeypatch.setattr(sys, "stdout", stream)
        h = Harness(stages=LIFECYCLE_STAGES[:2], result=_result("2SR9"))
        h.command.indicator_factory = StatusLine

        h.command.create(ScratchOrgRequest(), async_mode=True)

        out = stream.getvalue()
        # the erase sequence must directly follow the indicator line
        assert out.startswith(f"[..]{ASYNC_LABEL}\n\x1b[1F\x1b[J")
        assert out.index("\x1b[1F\x1b[J") < out.index("Resume this command")


# ===========================================================================
# Resume
# ===========================================================================

class TestResume:

    def test_resume_tracks_progress(self, capsys):
        h = Harness(stages=LIFECYCLE_STAGES[1:], result=_result())

        h.command.resume("2SR1", 10, track_source=False)

        assert h.client.resumed == [("2SR1", 10, False)]
        assert h.views[0].unmount_count == 1
        assert "[OK]" in capsys.readouterr().out

    def test_resume_timeout_exits_69(self):
        h = Harness(stages=(), error=ScratchOrgInfoTimeoutError("2SR1", 1))
        with pytest.raises(CommandExit) as exc_info:
            h.command.resume("2SR1", 1)
        assert exc_info.value.exit_code == 69


class TestCommandSetup:

    def test_missing_base_url(self):
        with pytest.raises(ScratchOrgError, match="instance URL"):
            ScratchOrgCreateCommand(FakeDevHubClient(EventBus()), "", "scratch-org")

    def test_bus_defaults_to_client_bus(self):
        bus = EventBus()
        command = ScratchOrgCreateCommand(FakeDevHubClient(bus), BASE_URL, "scratch-org")
        assert command.bus is bus

    def test_resume_hint(self):
        assert resume_hint("sf", "0R1") == 'Resume this command by running "sf resume --job-id 0R1".'
