"""
Scratch org create/resume orchestration.

Drives one creation attempt: picks async (fire-and-forget) or synchronous
mode, wires the lifecycle tracker to the event bus before the dev hub call is
made, and translates the outcome into user-facing output.  A request that
does not finish within the wait budget ends with exit code 69 and a hint for
resuming it later.
"""
import logging
from dataclasses import replace
from typing import Callable, Optional

from devhub_client import DevHubClient, ScratchOrgError, ScratchOrgInfoTimeoutError, ScratchOrgRequest, ScratchOrgResult
from lifecycle_events import EventBus
from lifecycle_tracker import LifecycleTracker
from status_view import StatusLine, StatusView

logger = logging.getLogger(__name__)

EXIT_CODE_TIMEOUT = 69

ASYNC_LABEL = " Requesting Scratch Org (will not wait for completion because --async)"
SUCCESS_MESSAGE = "Your scratch org is ready."
TIMEOUT_MESSAGE = "The scratch org did not complete within your wait time"
NO_INFO_MESSAGE = "The scratch org did not return with any information"
RESUME_MESSAGE = 'Resume this command by running "{bin} resume --job-id {job_id}".'


class CommandExit(Exception):
    """A command finished with a deliberate, non-zero exit code."""

    def __init__(self, exit_code: int, message: str):
        self.exit_code = exit_code
        self.message = message
        super().__init__(message)


def resume_hint(bin_name: str, job_id: str) -> str:
    return RESUME_MESSAGE.format(bin=bin_name, job_id=job_id)


class ScratchOrgCreateCommand:
    """One create (or resume) invocation.

    ``view_factory(base_url)`` builds the tracker's status view and
    ``indicator_factory(label)`` builds the static ``--async`` line; both are
    injectable so tests can count renders and teardowns.
    """

    def __init__(
        self,
        client: DevHubClient,
        base_url: str,
        bin_name: str,
        bus: Optional[EventBus] = None,
        view_factory: Callable = StatusView,
        indicator_factory: Callable = StatusLine,
    ):
        if not base_url:
            raise ScratchOrgError("No instance URL found for the dev hub")
        self.client = client
        self.base_url = base_url
        self.bin_name = bin_name
        self.bus = bus if bus is not None else client.bus
        self.view_factory = view_factory
        self.indicator_factory = indicator_factory

    def create(self, request: ScratchOrgRequest, async_mode: bool = False) -> ScratchOrgResult:
        if async_mode:
            request = replace(request, wait_minutes=0)
        return self._run(lambda: self.client.create_scratch_org(request), async_mode)

    def resume(self, job_id: str, wait_minutes: float, track_source: bool = True) -> ScratchOrgResult:
        return self._run(
            lambda: self.client.resume_scratch_org(job_id, wait_minutes, track_source),
            async_mode=False,
        )

    def _run(self, call: Callable[[], ScratchOrgResult], async_mode: bool) -> ScratchOrgResult:
        indicator = None
        tracker = None

        if async_mode:
            indicator = self.indicator_factory(ASYNC_LABEL)
            indicator.show()
        else:
            # Subscribe before the call so no early event is missed.
            tracker = LifecycleTracker(self.view_factory(self.base_url), self.bus)
            tracker.start()

        try:
            result = call()
            if not result or not result.scratch_org_info:
                raise ScratchOrgError(NO_INFO_MESSAGE)
        except ScratchOrgInfoTimeoutError as exc:
            self._teardown_on_error(indicator, tracker, exc)
            logger.info("Scratch org request %s timed out", exc.scratch_org_info_id)
            print(resume_hint(self.bin_name, exc.scratch_org_info_id))
            raise CommandExit(EXIT_CODE_TIMEOUT, TIMEOUT_MESSAGE) from exc
        except BaseException as exc:
            self._teardown_on_error(indicator, tracker, exc)
            raise

        # Clear the async line before printing: clearing erases the line above the cursor.
        if async_mode:
            indicator.clear()
            indicator.unmount()
            print()
            print(resume_hint(self.bin_name, result.scratch_org_info.id))
        else:
            tracker.stop()
            print()
            print(f"[OK] {SUCCESS_MESSAGE}")
        return result

    @staticmethod
    def _teardown_on_error(indicator, tracker: Optional[LifecycleTracker], error: BaseException) -> None:
        if indicator is not None:
            indicator.unmount()
        if tracker is not None:
            if isinstance(error, Exception):
                tracker.fail(error)
            else:
                # KeyboardInterrupt and friends: stop without drawing an error row
                tracker.stop()
