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

import logging
from typing import Optional

import pydantic

from stellar_operator.cluster.base import ClusterClient
from stellar_operator.config import settings
from stellar_operator.controller.error_policy import Action, ErrorPolicy
from stellar_operator.controller.errors import AbsentResource, ValidationError
from stellar_operator.controller.reconciler import CleanupPolicy, Reconciler
from stellar_operator.controller.status import StatusProjector
from stellar_operator.crd.models import StellarNode
from stellar_operator.tasks.scheduler import TaskScheduler, create_task_scheduler

logger = logging.getLogger(__name__)


def _describe_parse_error(error: pydantic.ValidationError) -> str:
    problems = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        problems.append(f"{location}: {item['msg']}")
    return "; ".join(problems)


class NodeController:
    """Loads a node by identity, reconciles it and schedules the next run"""

    def __init__(
        self,
        cluster: ClusterClient,
        task_scheduler: Optional[TaskScheduler] = None,
        reconciler: Optional[Reconciler] = None,
        error_policy: Optional[ErrorPolicy] = None,
        scheduler_type: str = "celery",
        redis_url: Optional[str] = None,
    ):
        self.cluster = cluster
        self.task_scheduler = task_scheduler or create_task_scheduler(scheduler_type, redis_url=redis_url)
        self.reconciler = reconciler or Reconciler(cluster)
        self.error_policy = error_policy or ErrorPolicy()
        self.status = StatusProjector(cluster.nodes)

    @classmethod
    def from_settings(cls, cluster: ClusterClient, task_scheduler: Optional[TaskScheduler] = None) -> "NodeController":
        reconciler = Reconciler(
            cluster,
            finalizer=settings.finalizer,
            manager=settings.field_manager,
            resync_interval=settings.resync_interval,
            cleanup_policy=CleanupPolicy(settings.cleanup_policy),
        )
        error_policy = ErrorPolicy(
            validation_retry=settings.validation_retry_delay,
            transient_retry=settings.transient_retry_delay,
        )
        return cls(
            cluster,
            task_scheduler=task_scheduler,
            reconciler=reconciler,
            error_policy=error_policy,
            scheduler_type=settings.scheduler_type,
            redis_url=settings.redis_url,
        )

    def reconcile_node(self, namespace: str, name: str) -> Action:
        """
        Run one reconcile cycle for ``namespace/name`` and hand the next wake
        time to the task scheduler.

        Errors never escape: they are mapped to a retry delay by the error policy.
        """
        key = f"{namespace}/{name}"
        obj = self.cluster.nodes.get(namespace, name)
        if obj is None:
            logger.debug(f"StellarNode {key} no longer exists, nothing to reconcile")
            return Action.await_change()

        try:
            node = StellarNode.from_dict(obj)
        except pydantic.ValidationError as e:
            action = self._handle_unparseable(key, obj, e)
        else:
            try:
                action = self.reconciler.reconcile(node)
            except Exception as e:
                action = self.error_policy.on_error(key, e)

        if action.requeue_after is not None:
            self.task_scheduler.schedule_reconcile(namespace, name, countdown=action.requeue_after)
        return action

    def _handle_unparseable(self, key: str, obj: dict, error: pydantic.ValidationError) -> Action:
        message = f"Invalid StellarNode: {_describe_parse_error(error)}"
        metadata = obj.get("metadata", {})
        finalizers = metadata.get("finalizers") or []

        if metadata.get("deletionTimestamp"):
            if self.reconciler.finalizer in finalizers:
                # No spec to clean up from; owner references let GC remove the children
                logger.warning(f"StellarNode {key} is unparseable while deleting, releasing finalizer")
                remaining = [f for f in finalizers if f != self.reconciler.finalizer]
                try:
                    self.cluster.nodes.set_finalizers(metadata.get("namespace", "default"), metadata["name"], remaining)
                except AbsentResource:
                    logger.info(f"StellarNode {key} disappeared before its finalizer was released")
                except Exception as e:
                    return self.error_policy.on_error(key, e)
            return Action.await_change()

        try:
            self.status.write_unparseable(obj, message)
        except Exception as e:
            logger.warning(f"Failed to record parse failure of StellarNode {key}: {e}")
        return self.error_policy.on_error(key, ValidationError(message))


_node_controller: Optional[NodeController] = None


def get_node_controller() -> NodeController:
    """Process-wide controller against the configured cluster"""
    global _node_controller
    if _node_controller is None:
        from stellar_operator.cluster.kubernetes import KubernetesCluster

        _node_controller = NodeController.from_settings(KubernetesCluster.from_environment())
    return _node_controller
