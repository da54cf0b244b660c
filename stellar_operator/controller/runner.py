# Copyright 2025 ApeCloud, Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Operator process loop.

The runner owns everything outside a single reconcile: checking the CRD is
installed, holding the leader lease, turning node watch events into reconcile
dispatches, and shutting down cleanly on SIGTERM/SIGINT.
"""

import logging
import signal
import threading
import time
from typing import Dict, Optional

from tenacity import Retrying, retry_if_exception_type, retry_if_result, stop_when_event_set, wait_fixed

from stellar_operator.cluster.base import ClusterClient, WatchEvent
from stellar_operator.concurrent_control.leader import LeaderElector
from stellar_operator.controller.controller import NodeController
from stellar_operator.controller.errors import TransientApiError
from stellar_operator.tasks.scheduler import LocalTaskScheduler

logger = logging.getLogger(__name__)


class OperatorRunner:
    def __init__(
        self,
        cluster: ClusterClient,
        controller: NodeController,
        elector: LeaderElector,
        namespace: Optional[str] = None,
        watch_timeout: int = 60,
        lease_ttl: float = 15,
        idle_wait: float = 1.0,
    ):
        self.cluster = cluster
        self.controller = controller
        self.elector = elector
        self.namespace = namespace
        self.renew_interval = max(1.0, lease_ttl / 3)
        # The watch blocks, so it must return in time to renew the lease
        self.watch_timeout = max(1, min(watch_timeout, int(self.renew_interval)))
        self.idle_wait = idle_wait
        self._stop = threading.Event()
        self._generations: Dict[str, Optional[int]] = {}

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def stop(self, *_) -> None:
        if not self._stop.is_set():
            logger.info("Stop requested, finishing in-flight work")
        self._stop.set()

    def install_signal_handlers(self) -> None:
        signal.signal(signal.SIGTERM, self.stop)
        signal.signal(signal.SIGINT, self.stop)

    def wait_for_leadership(self) -> bool:
        """Block until the lease is ours; False if stopped first"""
        retrying = Retrying(
            retry=retry_if_result(lambda acquired: not acquired) | retry_if_exception_type(Exception),
            wait=wait_fixed(self.renew_interval),
            stop=stop_when_event_set(self._stop),
            sleep=self._stop.wait,
            retry_error_callback=lambda retry_state: False,
            before_sleep=lambda retry_state: logger.debug("Waiting for leadership"),
        )
        acquired = retrying(self.elector.acquire)
        if acquired:
            logger.info("Leadership acquired, starting to reconcile")
        return acquired

    def should_dispatch(self, event: WatchEvent) -> bool:
        """
        Only spec changes, deletions and first sightings need a reconcile.
        Status writes also produce MODIFIED events; dispatching on those
        would loop.
        """
        key = f"{event.namespace}/{event.name}"
        match event.type:
            case "ADDED":
                # Every new watch window replays existing nodes as ADDED
                known = key in self._generations and self._generations[key] == event.generation
                self._generations[key] = event.generation
                return not known
            case "DELETED":
                self._generations.pop(key, None)
                return True
            case "MODIFIED":
                if event.deletion_requested:
                    return True
                previous = self._generations.get(key)
                self._generations[key] = event.generation
                return previous != event.generation
            case _:
                return False

    def dispatch(self, namespace: str, name: str) -> None:
        self.controller.task_scheduler.schedule_reconcile(namespace, name, countdown=0)

    def run_local_tasks(self) -> int:
        scheduler = self.controller.task_scheduler
        if isinstance(scheduler, LocalTaskScheduler):
            return scheduler.run_due(self.controller.reconcile_node)
        return 0

    def poll_once(self) -> int:
        """One watch window: dispatch relevant events and run due local tasks"""
        seen = 0
        try:
            for event in self.cluster.nodes.watch(self.namespace, timeout_seconds=self.watch_timeout):
                seen += 1
                if self.should_dispatch(event):
                    logger.debug(f"Dispatching {event.type} for StellarNode {event.namespace}/{event.name}")
                    self.dispatch(event.namespace, event.name)
                self.run_local_tasks()
                if self.stopped:
                    break
        except TransientApiError as e:
            logger.warning(f"StellarNode watch interrupted, reconnecting: {e}")
            self._stop.wait(self.idle_wait)
        self.run_local_tasks()
        if not seen and not self.stopped:
            self._stop.wait(self.idle_wait)
        return seen

    def lead(self, max_polls: Optional[int] = None) -> None:
        """Dispatch while the lease holds; returns when it is lost or on stop"""
        next_renew = time.monotonic() + self.renew_interval
        polls = 0
        while not self.stopped:
            if time.monotonic() >= next_renew:
                if not self.elector.renew():
                    logger.warning("Leadership lost, stopping dispatch")
                    self._generations.clear()
                    return
                next_renew = time.monotonic() + self.renew_interval
            self.poll_once()
            polls += 1
            if max_polls is not None and polls >= max_polls:
                return

    def run(self, max_polls: Optional[int] = None) -> None:
        """
        Raises:
            ConfigurationFault: if the StellarNode CRD is not installed
        """
        self.cluster.nodes.check_registered()
        logger.info(f"Starting StellarNode controller (namespace: {self.namespace or 'all'})")
        try:
            while not self.stopped:
                if not self.wait_for_leadership():
                    break
                self.lead(max_polls)
                if max_polls is not None:
                    break
        finally:
            try:
                self.elector.release()
            except Exception as e:
                logger.warning(f"Failed to release leadership: {e}")
            logger.info("StellarNode controller stopped")
