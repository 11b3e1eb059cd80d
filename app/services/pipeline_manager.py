"""
In-memory registry of background document pipelines.

Usage
-----
    from app.services.pipeline_manager import pipeline_manager

    status = pipeline_manager.start(document_id, lambda st: pipeline.run(document_id, st))
    # ... later ...
    current = pipeline_manager.get_status(document_id)

The durable record of progress is the Document's status column; the
in-memory status only adds live phase information while a task runs.
Statuses of finished tasks are kept for polling, up to ``history_size`` of
them; older finished ones are evicted first.
"""
from __future__ import annotations

import asyncio
import dataclasses
import enum
import logging
import time
from typing import Any, Callable, Coroutine, Dict, List, Optional

from app.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pipeline phase enum
# ---------------------------------------------------------------------------

class PipelinePhase(str, enum.Enum):
    QUEUED = "queued"
    STRUCTURING = "structuring"
    ASSESSING = "assessing"
    COMPLETED = "completed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Pipeline status (mutable dataclass shared between task and poller)
# ---------------------------------------------------------------------------

@dataclasses.dataclass
class PipelineStatus:
    document_id: int
    phase: PipelinePhase = PipelinePhase.QUEUED
    nodes_created: int = 0
    questions_created: int = 0
    used_fallback_structure: bool = False
    errors: List[str] = dataclasses.field(default_factory=list)
    started_at: float = dataclasses.field(default_factory=time.monotonic)
    completed_at: Optional[float] = None

    @property
    def elapsed_seconds(self) -> float:
        end = self.completed_at if self.completed_at else time.monotonic()
        return round(end - self.started_at, 2)


StatusCoroutine = Callable[[PipelineStatus], Coroutine[Any, Any, Any]]


# ---------------------------------------------------------------------------
# Pipeline manager
# ---------------------------------------------------------------------------

class PipelineManager:
    """Runs one background asyncio.Task per document, at most N at a time."""

    def __init__(
        self,
        max_concurrent: Optional[int] = None,
        history_size: Optional[int] = None,
    ) -> None:
        self.max_concurrent = max_concurrent or settings.MAX_CONCURRENT_PIPELINES
        self.history_size = settings.PIPELINE_STATUS_HISTORY if history_size is None else history_size
        self._tasks: Dict[int, asyncio.Task] = {}
        self._status: Dict[int, PipelineStatus] = {}
        self._semaphore: Optional[asyncio.Semaphore] = None

    def _get_semaphore(self) -> asyncio.Semaphore:
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.max_concurrent)
        return self._semaphore

    def is_running(self, document_id: int) -> bool:
        task = self._tasks.get(document_id)
        return task is not None and not task.done()

    def get_status(self, document_id: int) -> Optional[PipelineStatus]:
        return self._status.get(document_id)

    def start(self, document_id: int, factory: StatusCoroutine) -> PipelineStatus:
        """
        Launch a background pipeline task for *document_id*.

        *factory* receives the PipelineStatus shared with pollers and returns
        the coroutine to run.  The coroutine is only created once a
        concurrency slot is free.

        Raises:
            RuntimeError: a task for this document is already running.
        """
        if self.is_running(document_id):
            raise RuntimeError(f"Pipeline already running for document {document_id}")

        status = PipelineStatus(document_id=document_id)
        # Re-insert so a restarted document counts as the newest entry
        self._status.pop(document_id, None)
        self._status[document_id] = status

        async def _wrapper() -> None:
            try:
                async with self._get_semaphore():
                    await factory(status)
            except asyncio.CancelledError:
                status.errors.append("cancelled")
                raise
            except Exception as exc:
                logger.error(
                    "Pipeline task failed for document %d: %s", document_id, exc, exc_info=True
                )
                status.errors.append(f"pipeline crash: {str(exc)[:200]}")
            finally:
                status.completed_at = time.monotonic()
                if status.phase not in (PipelinePhase.COMPLETED, PipelinePhase.FAILED):
                    status.phase = PipelinePhase.FAILED

        task = asyncio.create_task(_wrapper())
        self._tasks[document_id] = task

        # Cleanup reference when done
        task.add_done_callback(lambda t: self._cleanup(document_id, t))

        logger.info("Pipeline task queued for document %d", document_id)
        return status

    async def wait(self, document_id: int, timeout: Optional[float] = None) -> Optional[PipelineStatus]:
        """Block until the task for *document_id* (if any) has finished."""
        task = self._tasks.get(document_id)
        status = self._status.get(document_id)
        if task is not None:
            await asyncio.wait_for(asyncio.shield(task), timeout)
        return status

    async def shutdown(self) -> None:
        """Cancel and await every running task (application shutdown)."""
        tasks = [t for t in self._tasks.values() if not t.done()]
        if not tasks:
            return
        logger.info("Cancelling %d running pipeline task(s)", len(tasks))
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _cleanup(self, document_id: int, task: asyncio.Task) -> None:
        """Remove the task reference and evict the oldest finished statuses."""
        if self._tasks.get(document_id) is task:
            del self._tasks[document_id]

        finished = [doc_id for doc_id in self._status if doc_id not in self._tasks]
        excess = len(finished) - self.history_size
        for doc_id in finished[:max(0, excess)]:
            del self._status[doc_id]
        if excess > 0:
            logger.debug("Evicted %d finished pipeline status(es)", excess)


# Module-level singleton instance
pipeline_manager = PipelineManager()
