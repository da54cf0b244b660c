import heapq
import itertools
import logging
import math
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Tuple

import redis

logger = logging.getLogger(__name__)


class TaskResult:
    """Represents the result of a task execution"""

    def __init__(self, task_id: str, success: bool = True, error: str = None, data: Any = None):
        self.task_id = task_id
        self.success = success
        self.error = error
        self.data = data


class TaskScheduler(ABC):
    """Abstract base class for task schedulers"""

    @abstractmethod
    def schedule_reconcile(self, namespace: str, name: str, countdown: float = 0) -> Optional[str]:
        """
        Schedule a reconcile of one StellarNode

        Args:
            namespace: Node namespace
            name: Node name
            countdown: Seconds to wait before running

        Returns:
            Task ID for tracking, or None if an equivalent task is already pending
        """
        pass

    @abstractmethod
    def get_task_status(self, task_id: str) -> Optional[TaskResult]:
        """
        Get task execution status

        Args:
            task_id: Task ID to check

        Returns:
            TaskResult or None if task not found
        """
        pass


class LocalTaskScheduler(TaskScheduler):
    """In-process delay queue for tests and single-process deployments

    Each node has at most one pending reconcile; scheduling again keeps
    whichever of the two is due first.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._task_counter = itertools.count(1)
        self._queue: List[Tuple[float, int, str, str, str]] = []
        # (namespace, name) -> (due, seq) of the live queue entry
        self._pending: Dict[Tuple[str, str], Tuple[float, int]] = {}
        self._results = {}
        # (namespace, name, countdown) for every schedule call, in order
        self.scheduled: List[Tuple[str, str, float]] = []

    def schedule_reconcile(self, namespace: str, name: str, countdown: float = 0) -> Optional[str]:
        self.scheduled.append((namespace, name, countdown))
        due = self._clock() + countdown
        existing = self._pending.get((namespace, name))
        if existing is not None and existing[0] <= due:
            logger.debug(f"Reconcile for {namespace}/{name} already due sooner, skipping")
            return None

        seq = next(self._task_counter)
        task_id = f"local_task_{seq}"
        # A replaced entry stays in the heap and is skipped when popped
        heapq.heappush(self._queue, (due, seq, task_id, namespace, name))
        self._pending[(namespace, name)] = (due, seq)
        logger.debug(f"Scheduled reconcile task {task_id} for {namespace}/{name} in {countdown}s")
        return task_id

    def pending(self) -> List[Tuple[str, str]]:
        return [key for key, _ in sorted(self._pending.items(), key=lambda item: item[1])]

    def run_due(self, handler: Callable[[str, str], Any], now: Optional[float] = None) -> int:
        """
        Run every task whose time has come

        Args:
            handler: Called with (namespace, name)
            now: Clock reading to compare against, defaults to the scheduler clock

        Returns:
            Number of tasks run
        """
        now = self._clock() if now is None else now
        count = 0
        while self._queue and self._queue[0][0] <= now:
            _, seq, task_id, namespace, name = heapq.heappop(self._queue)
            if self._pending.get((namespace, name), (None, None))[1] != seq:
                continue
            del self._pending[(namespace, name)]
            try:
                result = handler(namespace, name)
                self._results[task_id] = TaskResult(task_id, success=True, data=result)
            except Exception as e:
                logger.error(f"Reconcile task {task_id} for {namespace}/{name} failed: {e}", exc_info=True)
                self._results[task_id] = TaskResult(task_id, success=False, error=str(e))
            count += 1
        return count

    def get_task_status(self, task_id: str) -> Optional[TaskResult]:
        """Get local task status"""
        return self._results.get(task_id)


class CeleryTaskScheduler(TaskScheduler):
    """Celery implementation of TaskScheduler

    With a redis_url, delayed reconciles are de-duplicated: the due time of the
    pending timer is kept in redis and a new timer is only sent when it would
    fire sooner. Immediate reconciles are always sent.
    """

    def __init__(self, redis_url: Optional[str] = None, clock: Callable[[], float] = time.time):
        self._redis_url = redis_url
        self._redis_client = None
        self._clock = clock

    def _claim_timer(self, namespace: str, name: str, countdown: float) -> bool:
        if not self._redis_url or countdown <= 0:
            return True
        if self._redis_client is None:
            self._redis_client = redis.from_url(self._redis_url, decode_responses=True)
        key = f"stellar-operator:timer:{namespace}/{name}"
        now = self._clock()
        due = now + countdown
        pending = self._redis_client.get(key)
        if pending is not None and now < float(pending) <= due:
            return False
        self._redis_client.set(key, f"{due:.3f}", px=max(1, math.ceil(countdown * 1000)))
        return True

    def schedule_reconcile(self, namespace: str, name: str, countdown: float = 0) -> Optional[str]:
        if not self._claim_timer(namespace, name, countdown):
            logger.debug(f"Reconcile for {namespace}/{name} already scheduled, skipping")
            return None

        from stellar_operator.tasks.reconcile_tasks import reconcile_node_task

        task = reconcile_node_task.apply_async(args=(namespace, name), countdown=countdown)
        logger.debug(f"Scheduled reconcile task {task.id} for {namespace}/{name} in {countdown}s")
        return task.id

    def get_task_status(self, task_id: str) -> Optional[TaskResult]:
        """Get Celery task status"""
        try:
            from celery.result import AsyncResult

            result = AsyncResult(task_id)

            if result.state == "PENDING":
                return TaskResult(task_id, success=False, error="Task pending")
            elif result.state == "SUCCESS":
                return TaskResult(task_id, success=True, data=result.result)
            elif result.state == "FAILURE":
                return TaskResult(task_id, success=False, error=str(result.info))
            else:
                return TaskResult(task_id, success=False, error=f"Unknown state: {result.state}")

        except Exception as e:
            logger.error(f"Failed to get task status for {task_id}: {str(e)}")
            return TaskResult(task_id, success=False, error=str(e))


def create_task_scheduler(scheduler_type: str = "celery", redis_url: Optional[str] = None) -> TaskScheduler:
    match scheduler_type:
        case "celery":
            return CeleryTaskScheduler(redis_url=redis_url)
        case "local":
            return LocalTaskScheduler()
        case _:
            raise ValueError(f"Unknown scheduler type: {scheduler_type}")
