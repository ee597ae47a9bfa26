from __future__ import annotations

import asyncio
from datetime import datetime
import logging
from pathlib import Path
from typing import Any, Callable, Sequence

from showcapture.config import SequenceConfig
from showcapture.console.state import CueState
from showcapture.utils.naming import build_folder_name, create_unique_directory, run_timestamp

from .types import (
    MAX_INPUT,
    MIN_INPUT,
    InputOutcome,
    ProgressEvent,
    ProgressKind,
    ProgressSink,
    RunOutcome,
    RunStatus,
)


logger = logging.getLogger(__name__)


RouterSwitch = Callable[[int, int], Any]
StillCapture = Callable[[int, Path, str], Path]
FolderStitcher = Callable[[Path], Any]


def _invalid_inputs(inputs: tuple[int, ...]) -> list[Any]:
    return [
        i
        for i in inputs
        if isinstance(i, bool) or not isinstance(i, int) or not MIN_INPUT <= i <= MAX_INPUT
    ]


class SequenceRunner:
    """Runs one capture batch at a time: switch, settle, capture, per input.

    Collaborators are plain blocking callables executed in worker threads.
    A collaborator raising for one input is recorded against that input and
    the batch moves on. The whole run races ``run_timeout_seconds``; when the
    budget runs out no further steps are started, but a router or capture
    call already in flight is left to finish on its own.
    """

    def __init__(
        self,
        switch_router: RouterSwitch,
        capture_still: StillCapture,
        output_dir: Path,
        config: SequenceConfig | None = None,
        stitch_folder: FolderStitcher | None = None,
        folder_template: str = "{show}_cue{cue}_{timestamp}",
        cue_provider: Callable[[], CueState] | None = None,
        router_output: int = 1,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.config = config or SequenceConfig()
        self.output_dir = output_dir
        self.folder_template = folder_template
        self.router_output = router_output
        self._switch_router = switch_router
        self._capture_still = capture_still
        self._stitch_folder = stitch_folder
        self._cue_provider = cue_provider
        self._now = now
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def run(self, inputs: Sequence[int], progress: ProgressSink | None = None) -> RunOutcome:
        requested = tuple(inputs)
        if self._running:
            logger.warning("rejecting sequence %s: a run is already active", list(requested))
            return RunOutcome.rejected(requested, "sequence already running")
        if not requested:
            return RunOutcome.rejected(requested, "no inputs requested")
        invalid = _invalid_inputs(requested)
        if invalid:
            return RunOutcome.rejected(requested, f"inputs out of range {MIN_INPUT}-{MAX_INPUT}: {invalid}")

        self._running = True
        outcome = RunOutcome(status=RunStatus.COMPLETED, inputs=requested)
        try:
            await asyncio.wait_for(
                self._execute(outcome, progress),
                timeout=self.config.run_timeout_seconds,
            )
        except asyncio.TimeoutError:
            outcome.status = RunStatus.TIMED_OUT
            outcome.error = f"sequence exceeded {self.config.run_timeout_seconds:g}s budget"
            logger.error("sequence %s timed out", list(requested))
        except Exception as exc:
            outcome.status = RunStatus.FAILED
            outcome.error = str(exc) or exc.__class__.__name__
            logger.exception("sequence %s failed", list(requested))
        finally:
            self._running = False

        logger.info("sequence %s finished: %s", list(requested), outcome.summary())
        return outcome

    async def _execute(self, outcome: RunOutcome, progress: ProgressSink | None) -> None:
        timestamp = run_timestamp(self._now())
        cue = self._cue_provider() if self._cue_provider is not None else CueState()
        folder_name = build_folder_name(self.folder_template, outcome.inputs[0], timestamp, cue)
        folder = await asyncio.to_thread(create_unique_directory, self.output_dir / folder_name)
        outcome.folder = folder
        logger.info("sequence %s writing to %s", list(outcome.inputs), folder)

        total = len(outcome.inputs)
        for position, input_id in enumerate(outcome.inputs, start=1):
            await self._capture_input(outcome, progress, input_id, position, total, folder, timestamp)
            if position < total:
                await asyncio.sleep(self.config.post_capture_seconds)

        if self._stitch_folder is not None and outcome.succeeded_count > 0:
            await self._stitch(outcome, progress, folder)

        try:
            await asyncio.to_thread(self._switch_router, self.config.reset_input, self.router_output)
        except Exception as exc:
            logger.warning("router reset to input %s failed: %s", self.config.reset_input, exc)

        self._emit(progress, ProgressKind.COMPLETE, f"COMPLETE: {outcome.summary()}")

    async def _capture_input(
        self,
        outcome: RunOutcome,
        progress: ProgressSink | None,
        input_id: int,
        position: int,
        total: int,
        folder: Path,
        timestamp: str,
    ) -> None:
        self._emit(progress, ProgressKind.SWITCHING, f"[{position}/{total}] switching to input {input_id}", input_id)
        try:
            await asyncio.to_thread(self._switch_router, input_id, self.router_output)
        except Exception as exc:
            reason = f"router switch failed: {exc}"
            logger.error("input %s: %s", input_id, reason)
            outcome.outcomes.append(InputOutcome(input_id=input_id, ok=False, error=reason))
            self._emit(progress, ProgressKind.SWITCH_FAILED, f"input {input_id} {reason}", input_id)
            return

        await asyncio.sleep(self.config.settle_seconds)

        self._emit(progress, ProgressKind.CAPTURING, f"[{position}/{total}] capturing input {input_id}", input_id)
        try:
            path = await asyncio.to_thread(self._capture_still, input_id, folder, timestamp)
        except Exception as exc:
            reason = str(exc) or exc.__class__.__name__
            logger.error("capture failed for input %s: %s", input_id, reason)
            outcome.outcomes.append(InputOutcome(input_id=input_id, ok=False, error=reason))
            self._emit(progress, ProgressKind.CAPTURE_FAILED, f"input {input_id} capture failed: {reason}", input_id)
            return

        outcome.outcomes.append(InputOutcome(input_id=input_id, ok=True, path=Path(path)))
        self._emit(progress, ProgressKind.CAPTURED, f"input {input_id} captured: {Path(path).name}", input_id)

    async def _stitch(self, outcome: RunOutcome, progress: ProgressSink | None, folder: Path) -> None:
        self._emit(progress, ProgressKind.STITCHING, f"stitching {outcome.succeeded_count} image(s)")
        try:
            result = await asyncio.to_thread(self._stitch_folder, folder)
        except Exception as exc:
            outcome.stitch_error = str(exc) or exc.__class__.__name__
            logger.error("stitch failed for %s: %s", folder, outcome.stitch_error)
            self._emit(progress, ProgressKind.STITCH_FAILED, f"stitch failed: {outcome.stitch_error}")
            return

        outcome.stitched_path = Path(result.path)
        self._emit(progress, ProgressKind.STITCHED, f"stitched {result.count} image(s): {outcome.stitched_path.name}")

    def _emit(
        self,
        progress: ProgressSink | None,
        kind: ProgressKind,
        message: str,
        input_id: int | None = None,
    ) -> None:
        logger.info("%s", message)
        if progress is None:
            return
        try:
            progress(ProgressEvent(kind=kind, message=message, input_id=input_id))
        except Exception:
            logger.exception("progress sink failed")
