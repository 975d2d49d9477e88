"""Progress and outcome events delivered to observers."""

import sys
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from .models import ProcessingOutcome

# (percent_complete, bytes_transferred, total_bytes); percent < 0 means unknown total
ProgressCallback = Callable[[float, int, int], None]

PHASE_DOWNLOAD = "download"
PHASE_UPLOAD = "upload"


def _megabytes(value: int) -> str:
    return f"{value / (1024 * 1024):.2f}MB"


def item_prefix(item_id: str) -> str:
    return f"[ITEM {item_id}]"


@dataclass(frozen=True)
class ProgressEvent:
    """Byte-level progress for one phase of one item."""
    item_id: str
    phase: str
    percent: float
    bytes_transferred: int
    total_bytes: int

    @property
    def indeterminate(self) -> bool:
        return self.percent < 0 or self.total_bytes <= 0

    @property
    def message(self) -> str:
        label = "Download" if self.phase == PHASE_DOWNLOAD else "Upload"
        suffix = " sent" if self.phase == PHASE_UPLOAD else ""
        if self.indeterminate:
            verb = "sent" if self.phase == PHASE_UPLOAD else "downloaded"
            return f"{item_prefix(self.item_id)} {label}: ({_megabytes(self.bytes_transferred)} {verb})"
        return (
            f"{item_prefix(self.item_id)} {label}: {self.percent:.0f}% "
            f"({_megabytes(self.bytes_transferred)} / {_megabytes(self.total_bytes)}{suffix})"
        )


@dataclass(frozen=True)
class StatusEvent:
    item_id: str
    text: str

    @property
    def message(self) -> str:
        return f"{item_prefix(self.item_id)} {self.text}"


@dataclass(frozen=True)
class OutcomeEvent:
    outcome: ProcessingOutcome

    @property
    def message(self) -> str:
        return f"{item_prefix(self.outcome.item_id)} {self.outcome.status_text}"


Event = Union[ProgressEvent, StatusEvent, OutcomeEvent]


class ProgressSink:
    """Observer interface: receives every event the relay emits."""

    def report(self, event: Event) -> None:  # pragma: no cover - interface
        raise NotImplementedError


class NullProgressSink(ProgressSink):
    def report(self, event: Event) -> None:
        return None


class ConsoleProgressSink(ProgressSink):
    """Print events, collapsing progress updates to whole-percent steps."""

    def __init__(self, stream=None) -> None:
        self._stream = stream
        self._last_step: Dict[Tuple[str, str], int] = {}

    def _should_print(self, event: ProgressEvent) -> bool:
        key = (event.item_id, event.phase)
        if event.indeterminate:
            # One line per MiB when the total is unknown
            step = event.bytes_transferred // (1024 * 1024)
        else:
            step = int(event.percent)
        if self._last_step.get(key) == step:
            return False
        self._last_step[key] = step
        return True

    def report(self, event: Event) -> None:
        stream = self._stream or sys.stdout
        if isinstance(event, ProgressEvent):
            if not self._should_print(event):
                return
        elif isinstance(event, OutcomeEvent):
            self._last_step = {
                key: value
                for key, value in self._last_step.items()
                if key[0] != event.outcome.item_id
            }
            if not event.outcome.success:
                print(event.message, file=self._stream or sys.stderr)
                return
        print(event.message, file=stream)


class FanOutSink(ProgressSink):
    """Deliver each event to several observers; one failing observer never blocks the rest."""

    def __init__(self, sinks: Optional[Iterable[ProgressSink]] = None) -> None:
        self.sinks: List[ProgressSink] = [sink for sink in (sinks or []) if sink is not None]

    def add(self, sink: ProgressSink) -> None:
        self.sinks.append(sink)

    def report(self, event: Event) -> None:
        for sink in self.sinks:
            try:
                sink.report(event)
            except Exception as exc:
                print(
                    f"Warning: progress observer {type(sink).__name__} failed: {exc}",
                    file=sys.stderr,
                )


def make_item_callback(sink: ProgressSink, item_id: str, phase: str) -> ProgressCallback:
    """Adapt a sink into the (percent, bytes, total) callback strategies expect."""

    def callback(percent: float, transferred: int, total: int) -> None:
        sink.report(
            ProgressEvent(
                item_id=item_id,
                phase=phase,
                percent=float(percent),
                bytes_transferred=int(transferred),
                total_bytes=int(total),
            )
        )

    return callback
