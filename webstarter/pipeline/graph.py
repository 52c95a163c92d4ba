"""
Explicit build stage graph.

Each stage names the stages it depends on and the paths it reads and writes.
`Pipeline.run()` starts every stage whose dependencies have succeeded, runs
independent stages concurrently on a thread pool, and stops scheduling after
the first failure. The outcome is an immutable `PipelineResult`; the
pipeline keeps no state between runs.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


class PipelineGraphError(Exception):
    """Raised when the stage graph is malformed (unknown dependency, cycle, duplicate)."""
    pass


class StageFailedError(Exception):
    """Raised when a stage's action fails."""

    def __init__(self, stage: str, message: str, *, path: Optional[str] = None):
        super().__init__(f"[{stage}] {message}")
        self.stage = stage
        self.path = path


class StageStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class StageOutput:
    """What a stage action hands back: bytes produced plus an optional artifact."""

    bytes_written: int = 0
    artifact: Any = None
    note: str = ""


@dataclass(frozen=True)
class Stage:
    name: str
    action: Callable[[], StageOutput]
    deps: Tuple[str, ...] = ()
    inputs: Tuple[str, ...] = ()
    outputs: Tuple[str, ...] = ()
    description: str = ""


@dataclass(frozen=True)
class StageResult:
    name: str
    status: StageStatus
    duration_seconds: float = 0.0
    output: StageOutput = field(default_factory=StageOutput)
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class PipelineResult:
    stages: Tuple[StageResult, ...]

    @property
    def succeeded(self) -> bool:
        return all(result.status is StageStatus.SUCCEEDED for result in self.stages)

    @property
    def failed_stage(self) -> Optional[StageResult]:
        for result in self.stages:
            if result.status is StageStatus.FAILED:
                return result
        return None

    def get(self, name: str) -> Optional[StageResult]:
        for result in self.stages:
            if result.name == name:
                return result
        return None

    def raise_for_failure(self) -> None:
        failed = self.failed_stage
        if failed is None:
            return
        if isinstance(failed.error, Exception):
            raise failed.error
        raise StageFailedError(failed.name, "stage failed")


class Pipeline:
    """An ordered, validated set of stages."""

    def __init__(self, stages: Iterable[Stage], *, max_workers: int = 4):
        self.stages: Tuple[Stage, ...] = tuple(stages)
        self.max_workers = max(1, int(max_workers))
        self._by_name: Dict[str, Stage] = {}
        self._validate()

    def _validate(self) -> None:
        for stage in self.stages:
            if stage.name in self._by_name:
                raise PipelineGraphError(f"Duplicate stage name: {stage.name}")
            self._by_name[stage.name] = stage

        for stage in self.stages:
            for dep in stage.deps:
                if dep not in self._by_name:
                    raise PipelineGraphError(f"Stage '{stage.name}' depends on unknown stage '{dep}'")

        # Kahn's algorithm; anything left over sits on a cycle
        remaining = {stage.name: set(stage.deps) for stage in self.stages}
        while True:
            ready = [name for name, deps in remaining.items() if not deps]
            if not ready:
                break
            for name in ready:
                del remaining[name]
            for deps in remaining.values():
                deps.difference_update(ready)
        if remaining:
            raise PipelineGraphError(f"Stage graph has a cycle through: {', '.join(sorted(remaining))}")

    def order(self) -> List[List[str]]:
        """Group stages into waves that could run concurrently."""
        waves: List[List[str]] = []
        done: set = set()
        pending = [stage for stage in self.stages]
        while pending:
            wave = [stage.name for stage in pending if set(stage.deps) <= done]
            waves.append(wave)
            done.update(wave)
            pending = [stage for stage in pending if stage.name not in done]
        return waves

    def subset(self, targets: Sequence[str]) -> "Pipeline":
        """Pipeline restricted to `targets` and everything they depend on."""
        needed: set = set()
        stack = list(targets)
        while stack:
            name = stack.pop()
            if name not in self._by_name:
                raise PipelineGraphError(f"Unknown stage: {name}")
            if name in needed:
                continue
            needed.add(name)
            stack.extend(self._by_name[name].deps)
        return Pipeline([stage for stage in self.stages if stage.name in needed], max_workers=self.max_workers)

    def run(self) -> PipelineResult:
        results: Dict[str, StageResult] = {}
        succeeded: set = set()
        failed = False
        started: set = set()

        logger.info("[PIPELINE] Running %d stages (max_workers=%d)", len(self.stages), self.max_workers)
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            running: Dict[Future, Stage] = {}
            while True:
                if not failed:
                    for stage in self.stages:
                        if stage.name in started or not set(stage.deps) <= succeeded:
                            continue
                        started.add(stage.name)
                        logger.info("[PIPELINE] Starting '%s'", stage.name)
                        running[executor.submit(self._run_stage, stage)] = stage
                if not running:
                    break

                done, _ = wait(list(running), return_when=FIRST_COMPLETED)
                for future in done:
                    stage = running.pop(future)
                    result = future.result()
                    results[stage.name] = result
                    if result.status is StageStatus.SUCCEEDED:
                        succeeded.add(stage.name)
                    else:
                        failed = True

        ordered = []
        for stage in self.stages:
            ordered.append(results.get(stage.name) or StageResult(stage.name, StageStatus.SKIPPED))
        outcome = PipelineResult(tuple(ordered))
        if outcome.succeeded:
            logger.info("[PIPELINE] All stages succeeded")
        else:
            failed_stage = outcome.failed_stage
            logger.error(
                "[PIPELINE] Stopped after '%s' failed",
                failed_stage.name if failed_stage else "?",
            )
        return outcome

    @staticmethod
    def _run_stage(stage: Stage) -> StageResult:
        start = time.perf_counter()
        try:
            output = stage.action() or StageOutput()
        except Exception as exc:
            duration = time.perf_counter() - start
            logger.error("[PIPELINE] '%s' failed after %.2fs: %s", stage.name, duration, exc)
            return StageResult(stage.name, StageStatus.FAILED, duration, error=exc)
        duration = time.perf_counter() - start
        logger.info(
            "[PIPELINE] Finished '%s' in %.2fs (%d bytes)%s",
            stage.name,
            duration,
            output.bytes_written,
            f" - {output.note}" if output.note else "",
        )
        return StageResult(stage.name, StageStatus.SUCCEEDED, duration, output)
