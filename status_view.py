"""
Terminal presentation for scratch org creation.

Three surfaces live here:

* ``StatusView`` - the live "Creating Scratch Org" block redrawn on every
  lifecycle event (owned by the lifecycle tracker).
* ``StatusLine`` - a single static line, used for ``--async`` requests.
* ``Spinner`` - a start/stop waiting indicator drawn on a daemon thread,
  used by the domain readiness poller.

Stage classification is pure and drives only what gets drawn, never control
flow.
"""
import enum
import sys
import threading
import time
from typing import List, Optional

from lifecycle_events import LIFECYCLE_STAGES, TERMINAL_STAGE, LifecycleEvent, stage_index

HEADER = "Creating Scratch Org"
PENDING_MARK = "..."
ERROR_MARK = "✘"
CURRENT_MARK = "»"
COMPLETED_MARK = "✓"
FUTURE_MARK = "◼"

# ANSI: move to start of line N lines up, clear to end of screen
_CURSOR_UP_CLEAR = "\x1b[{n}F\x1b[J"


class StageState(enum.Enum):
    COMPLETED = "completed"
    CURRENT = "current"
    TERMINAL_CURRENT = "terminal-current"
    FUTURE = "future"


def classify_stage(stage: str, current_stage: str) -> StageState:
    """Classify *stage* relative to the stage an attempt is currently in."""
    if stage == current_stage:
        if stage == TERMINAL_STAGE:
            return StageState.TERMINAL_CURRENT
        return StageState.CURRENT
    if stage_index(current_stage) > stage_index(stage):
        return StageState.COMPLETED
    return StageState.FUTURE


def stage_label(stage: str) -> str:
    """'wait for org' -> 'Wait For Org'"""
    return " ".join(word.capitalize() for word in stage.split())


def format_request(base_url: str, request_id: str) -> str:
    return f"{request_id} ({base_url.rstrip('/')}/{request_id})"


def render_status_lines(
    event: Optional[LifecycleEvent],
    base_url: str,
    error: Optional[BaseException] = None,
) -> List[str]:
    """Build the status block for *event*; empty before the first event."""
    if event is None:
        return []

    info = event.info
    pending = ERROR_MARK if error is not None else PENDING_MARK

    request_id = info.id if info else None
    org_id = info.scratch_org if info else None
    username = info.signup_username if info else None

    lines = [
        HEADER,
        f"  Request Id: {format_request(base_url, request_id) if request_id else pending}",
        f"  OrgId: {org_id or pending}",
        f"  Username: {username or pending}",
        "",
    ]

    for stage in LIFECYCLE_STAGES:
        state = classify_stage(stage, event.stage)
        label = stage_label(stage)
        if state is StageState.CURRENT:
            mark = ERROR_MARK if error is not None else CURRENT_MARK
            lines.append(f"{mark} {label}")
        elif state is StageState.COMPLETED:
            lines.append(f"{COMPLETED_MARK} {label}")
        elif state is StageState.TERMINAL_CURRENT:
            lines.append(label)
        elif stage != TERMINAL_STAGE:
            lines.append(f"{FUTURE_MARK} {label}")

    if error is not None:
        lines.append("")
        lines.append(f"{ERROR_MARK} {error}")

    return lines


def _is_tty(stream) -> bool:
    isatty = getattr(stream, "isatty", None)
    try:
        return bool(isatty and isatty())
    except ValueError:
        # closed stream
        return False


class StatusView:
    """Live status block for one creation attempt.

    On a terminal the previous block is erased and redrawn in place.  On any
    other stream a block is appended only when the stage (or error) changes,
    so piped output stays readable.
    """

    def __init__(self, base_url: str, stream=None):
        self.base_url = base_url
        self._stream = stream
        self._lines_drawn = 0
        self._last_key = None
        self.mounted = True

    @property
    def stream(self):
        return self._stream or sys.stdout

    def render(self, event: Optional[LifecycleEvent], error: Optional[BaseException] = None) -> None:
        if not self.mounted:
            return
        lines = render_status_lines(event, self.base_url, error)
        if not lines:
            return

        out = self.stream
        if _is_tty(out):
            self._erase()
        else:
            key = (event.stage, str(error) if error is not None else None)
            if key == self._last_key:
                return
            self._last_key = key

        out.write("\n".join(lines) + "\n")
        out.flush()
        self._lines_drawn = len(lines)

    def _erase(self) -> None:
        if self._lines_drawn:
            self.stream.write(_CURSOR_UP_CLEAR.format(n=self._lines_drawn))
            self._lines_drawn = 0

    def clear(self) -> None:
        if _is_tty(self.stream):
            self._erase()
            self.stream.flush()

    def unmount(self) -> None:
        """Stop accepting renders; the last drawn block stays on screen."""
        self.mounted = False


class StatusLine:
    """A single non-updating status line."""

    def __init__(self, label: str, stream=None):
        self.label = label
        self._stream = stream
        self._shown = False
        self.mounted = True

    @property
    def stream(self):
        return self._stream or sys.stdout

    def show(self) -> None:
        if not self.mounted or self._shown:
            return
        self.stream.write(f"[..]{self.label}\n")
        self.stream.flush()
        self._shown = True

    def clear(self) -> None:
        if self._shown and _is_tty(self.stream):
            self.stream.write(_CURSOR_UP_CLEAR.format(n=1))
            self.stream.flush()
        self._shown = False

    def unmount(self) -> None:
        self.mounted = False


class Spinner:
    """Waiting indicator for the domain readiness poller.

    ``start`` is a no-op while already spinning and ``stop`` is a no-op when
    not spinning, so callers do not have to track which one ran last.
    """

    FRAMES = ['|', '/', '-', '\\']

    def __init__(self, stream=None, interval: float = 0.2):
        self._stream = stream
        self.interval = interval
        self.message = ""
        self._thread: Optional[threading.Thread] = None
        self._stop_requested = False

    @property
    def stream(self):
        return self._stream or sys.stderr

    @property
    def spinning(self) -> bool:
        return self._thread is not None

    def start(self, message: str) -> None:
        if self._thread is not None:
            return
        self.message = message
        self._stop_requested = False
        self._thread = threading.Thread(target=self._spin, daemon=True)
        self._thread.start()

    def _spin(self) -> None:
        frame = 0
        start_time = time.time()
        while True:
            elapsed = int(time.time() - start_time)
            mins, secs = divmod(elapsed, 60)
            self.stream.write(f"\r[{self.FRAMES[frame % 4]}] {self.message} {mins}:{secs:02d}  ")
            self.stream.flush()
            if self._stop_requested:
                break
            frame += 1
            time.sleep(self.interval)

    def stop(self) -> None:
        if self._thread is None:
            return
        self._stop_requested = True
        self._thread.join(timeout=max(self.interval * 5, 1.0))
        self._thread = None
        self.stream.write("\r" + " " * (len(self.message) + 16) + "\r")
        self.stream.flush()
