from __future__ import annotations

import threading
import uuid
from collections.abc import Callable, Iterable
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from .errors import ConversionError
from .pipeline import (
    ConversionReport,
    OcrOptions,
    ProgressFn,
    RedactionOptions,
    apply_permanent_redactions,
    ocr_to_searchable_pdf,
)
from .recognition import LogFn, RecognitionEngine
from .redaction import RedactionMark
from .render import PageRenderer

Dispatch = Callable[[Callable[[], None]], None]
Work = Callable[[ProgressFn, LogFn], ConversionReport]


@dataclass
class JobState:
    job_id: str
    kind: str
    status: str = "queued"
    current_page: int = 0
    total_pages: int = 0
    output_pdf: str = ""
    error: str = ""
    log_lines: list[str] = field(default_factory=list)


class ConversionJob:
    """Runs one conversion on a daemon thread.

    Progress and log lines go to the optional callbacks through `dispatch`
    when one is given, so a host can run them on its own thread. The state
    is only touched under the lock; `snapshot()` returns a copy.
    """

    def __init__(
        self,
        kind: str,
        output_pdf: Path,
        work: Work,
        *,
        on_progress: ProgressFn | None = None,
        on_log: LogFn | None = None,
        on_done: Callable[[ConversionJob], None] | None = None,
        dispatch: Dispatch | None = None,
    ) -> None:
        self.state = JobState(job_id=uuid.uuid4().hex, kind=kind, output_pdf=str(output_pdf))
        self.report: ConversionReport | None = None
        self.exception: BaseException | None = None
        self._work = work
        self._on_progress = on_progress
        self._on_log = on_log
        self._on_done = on_done
        self._dispatch = dispatch
        self._lock = threading.Lock()
        self._thread = threading.Thread(target=self._run, name=f"scanlayer-{kind}", daemon=True)

    @property
    def job_id(self) -> str:
        return self.state.job_id

    def start(self) -> ConversionJob:
        self._thread.start()
        return self

    def wait(self, timeout: float | None = None) -> bool:
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return asdict(self.state)

    def _update(self, **kwargs: Any) -> None:
        with self._lock:
            for key, value in kwargs.items():
                setattr(self.state, key, value)

    def _deliver(self, callback: Callable[..., None] | None, *args: Any) -> None:
        if callback is None:
            return
        if self._dispatch is None:
            callback(*args)
        else:
            self._dispatch(lambda: callback(*args))

    def _progress(self, current: int, total: int) -> None:
        self._update(current_page=current, total_pages=total)
        self._deliver(self._on_progress, current, total)

    def _log(self, line: str) -> None:
        with self._lock:
            self.state.log_lines.append(line)
        self._deliver(self._on_log, line)

    def _run(self) -> None:
        self._update(status="running", error="")
        try:
            report = self._work(self._progress, self._log)
        except (ConversionError, OSError, ValueError) as exc:
            self.exception = exc
            self._update(status="error", error=str(exc))
        except Exception as exc:  # noqa: BLE001
            self.exception = exc
            self._update(status="error", error=f"Unexpected error: {exc}")
        else:
            self.report = report
            self._update(status="done", output_pdf=str(report.output_pdf))
        self._deliver(self._on_done, self)


def start_ocr_job(
    input_pdf: Path,
    output_pdf: Path,
    options: OcrOptions = OcrOptions(),
    *,
    engine: RecognitionEngine | None = None,
    renderer: PageRenderer | None = None,
    **callbacks: Any,
) -> ConversionJob:
    def work(progress: ProgressFn, log: LogFn) -> ConversionReport:
        return ocr_to_searchable_pdf(
            input_pdf,
            output_pdf,
            options,
            engine=engine,
            renderer=renderer,
            progress=progress,
            log=log,
        )

    return ConversionJob("ocr", output_pdf, work, **callbacks).start()


def start_redaction_job(
    input_pdf: Path,
    output_pdf: Path,
    marks: Iterable[RedactionMark],
    options: RedactionOptions = RedactionOptions(),
    *,
    renderer: PageRenderer | None = None,
    **callbacks: Any,
) -> ConversionJob:
    marks = list(marks)

    def work(progress: ProgressFn, log: LogFn) -> ConversionReport:
        return apply_permanent_redactions(
            input_pdf,
            output_pdf,
            marks,
            options,
            renderer=renderer,
            progress=progress,
            log=log,
        )

    return ConversionJob("redact", output_pdf, work, **callbacks).start()
