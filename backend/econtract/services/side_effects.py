"""
Side-effect queue.
Best-effort work (certificate generation, audit writes, notification emails) is
handed off here only after the authoritative contract write has committed.
Each task keeps its own status, attempt count and last error so failures stay
visible without ever failing the request that triggered them.
"""
import asyncio
import logging
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set

logger = logging.getLogger(__name__)

STATUS_PENDING = "PENDING"
STATUS_RUNNING = "RUNNING"
STATUS_DONE = "DONE"
STATUS_FAILED = "FAILED"

TASK_CERTIFICATE = "certificate_generation"
TASK_AUDIT = "audit_log"
TASK_NOTIFICATION = "signature_request_email"

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_RETRY_DELAY_SECONDS = 0.5
HISTORY_SIZE = 1000


class SideEffectTask:
    """Tracking record for one queued side effect."""

    def __init__(self, name: str, contract_id: Optional[str], max_attempts: int):
        self.task_id = f"SE-{uuid.uuid4().hex[:12].upper()}"
        self.name = name
        self.contract_id = contract_id
        self.status = STATUS_PENDING
        self.attempts = 0
        self.max_attempts = max_attempts
        self.last_error: Optional[str] = None
        self.created_at = datetime.now(timezone.utc)
        self.finished_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "name": self.name,
            "contract_id": self.contract_id,
            "status": self.status,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class SideEffectQueue:
    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
    ):
        self.max_attempts = max(1, max_attempts)
        self.retry_delay_seconds = retry_delay_seconds
        self._history: Deque[SideEffectTask] = deque(maxlen=HISTORY_SIZE)
        self._running: Set[asyncio.Task] = set()

    def enqueue(
        self,
        name: str,
        func: Callable[[], Awaitable[Any]],
        contract_id: Optional[str] = None,
    ) -> SideEffectTask:
        """Schedule func on the running event loop and return its tracking record."""
        task = SideEffectTask(name, contract_id, self.max_attempts)
        runner = asyncio.get_running_loop().create_task(self._run(task, func))
        self._running.add(runner)
        runner.add_done_callback(self._running.discard)
        self._history.append(task)
        logger.debug(f"Queued side effect {task.task_id} ({name}) for {contract_id}")
        return task

    async def _run(self, task: SideEffectTask, func: Callable[[], Awaitable[Any]]) -> None:
        while task.attempts < task.max_attempts:
            task.status = STATUS_RUNNING
            task.attempts += 1
            try:
                await func()
            except Exception as e:
                task.last_error = f"{type(e).__name__}: {e}"
                if task.attempts >= task.max_attempts:
                    task.status = STATUS_FAILED
                    task.finished_at = datetime.now(timezone.utc)
                    logger.error(
                        f"Side effect {task.name} failed permanently for {task.contract_id} "
                        f"after {task.attempts} attempts: {task.last_error}"
                    )
                    return
                logger.warning(
                    f"Side effect {task.name} attempt {task.attempts}/{task.max_attempts} "
                    f"failed for {task.contract_id}: {task.last_error}"
                )
                task.status = STATUS_PENDING
                await asyncio.sleep(self.retry_delay_seconds * task.attempts)
            else:
                task.status = STATUS_DONE
                task.finished_at = datetime.now(timezone.utc)
                return

    async def drain(self) -> None:
        """Wait until every queued task has finished (including retries)."""
        while self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)

    def tasks(self, contract_id: Optional[str] = None, name: Optional[str] = None) -> List[SideEffectTask]:
        return [
            t for t in self._history
            if (contract_id is None or t.contract_id == contract_id)
            and (name is None or t.name == name)
        ]

    def failed_tasks(self) -> List[SideEffectTask]:
        return [t for t in self._history if t.status == STATUS_FAILED]

    def get_task(self, task_id: str) -> Optional[SideEffectTask]:
        for task in self._history:
            if task.task_id == task_id:
                return task
        return None
