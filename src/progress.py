from dataclasses import dataclass
from typing import Callable, Optional, TextIO

from tqdm import tqdm


@dataclass(frozen=True)
class ProgressEvent:
    kind: str  # start / item / done
    label: str
    category: str
    set_id: Optional[str] = None
    current: int = 0
    total: int = 0
    ok: int = 0
    skipped: int = 0
    not_found: int = 0
    failed: int = 0


ProgressObserver = Callable[[ProgressEvent], None]


def null_observer(event: ProgressEvent) -> None:
    return None


class RecordingObserver:
    """把事件存起來，給測試檢查用"""

    def __init__(self):
        self.events: list[ProgressEvent] = []

    def __call__(self, event: ProgressEvent) -> None:
        self.events.append(event)

    def of_kind(self, kind: str) -> list[ProgressEvent]:
        return [e for e in self.events if e.kind == kind]


class ConsoleProgress:
    """每個批次一條 tqdm 進度條，以 label 區分"""

    def __init__(self, stream: Optional[TextIO] = None):
        self.stream = stream
        self.bars: dict[str, tqdm] = {}

    def __call__(self, event: ProgressEvent) -> None:
        if event.kind == "start":
            self.bars[event.label] = tqdm(
                total=event.total,
                desc=event.label,
                unit="img",
                file=self.stream,
                dynamic_ncols=True,
            )
            return
        bar = self.bars.get(event.label)
        if bar is None:
            return
        bar.update(event.current - bar.n)
        bar.set_postfix(
            ok=event.ok, skip=event.skipped, nf=event.not_found, fail=event.failed, refresh=False
        )
        if event.kind == "done":
            bar.close()
            del self.bars[event.label]
