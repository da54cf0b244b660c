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
StellarNode reconciler.

A node is either Present (no deletion timestamp) or Deleting. Present nodes
go through the apply path, which converges the children in a fixed order:

    storage claim -> config bundle -> workload -> network endpoint -> autoscaler -> status

Deleting nodes that still carry the finalizer go through cleanup, which tears
the children down in reverse and then strips the finalizer so the API server
can finish the deletion. Every step is idempotent; the same event may be
delivered any number of times.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from stellar_operator.cluster.base import ClusterClient
from stellar_operator.controller.error_policy import Action
from stellar_operator.controller.errors import AbsentResource, CleanupIncomplete, ValidationError
from stellar_operator.controller.resources import ChildResourceManager
from stellar_operator.controller.status import StatusProjector
from stellar_operator.crd.models import NodeKind, Phase, StellarNode

logger = logging.getLogger(__name__)

FINALIZER = "stellar.org/finalizer"

STEP_NETWORK_ENDPOINT = "network_endpoint"
STEP_WORKLOAD = "workload"
STEP_CONFIG_BUNDLE = "config_bundle"
STEP_STORAGE_CLAIM = "storage_claim"
STEP_AUTOSCALER = "autoscaler"


class LifecycleState(str, Enum):
    PRESENT = "Present"
    DELETING = "Deleting"


def lifecycle_state(node: StellarNode) -> LifecycleState:
    if node.metadata.deletion_timestamp:
        return LifecycleState.DELETING
    return LifecycleState.PRESENT


class CleanupPolicy(str, Enum):
    # Remove the finalizer once every step was attempted
    BEST_EFFORT = "best_effort"
    # Keep the finalizer while the storage claim could not be deleted
    BLOCK_ON_STORAGE = "block_on_storage"
    # Keep the finalizer while any step failed
    STRICT = "strict"


@dataclass
class CleanupReport:
    attempted: List[str] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return not self.failures


class Reconciler:
    """Runs one reconcile cycle for one StellarNode"""

    def __init__(
        self,
        cluster: ClusterClient,
        finalizer: str = FINALIZER,
        manager: str = "stellar-operator",
        resync_interval: float = 30.0,
        cleanup_policy: CleanupPolicy = CleanupPolicy.BEST_EFFORT,
        projector: Optional[StatusProjector] = None,
    ):
        self.cluster = cluster
        self.finalizer = finalizer
        self.resync_interval = resync_interval
        self.cleanup_policy = CleanupPolicy(cleanup_policy)
        self.resources = ChildResourceManager(cluster, manager)
        self.status = projector or StatusProjector(cluster.nodes)
        self.last_cleanup_report: Optional[CleanupReport] = None

    def reconcile(self, node: StellarNode) -> Action:
        """
        Converge the cluster toward ``node``.

        Returns:
            Action: requeue after the resync interval, or await the next change

        Raises:
            ValidationError: the node spec is invalid; status already reads Failed
            TransientApiError: a cluster call failed; remaining steps were skipped
            CleanupIncomplete: cleanup failed under a blocking cleanup policy
        """
        try:
            match lifecycle_state(node):
                case LifecycleState.PRESENT:
                    return self.apply(node)
                case LifecycleState.DELETING:
                    return self.cleanup(node)
        except AbsentResource as e:
            # Deleted underneath us; the DELETED event ends the story
            logger.info(f"StellarNode {node.key} disappeared during reconcile: {e}")
            return Action.await_change()

    def apply(self, node: StellarNode) -> Action:
        spec = node.spec
        logger.info(f"Applying StellarNode {node.key} (kind: {spec.node_kind.value})")

        try:
            spec.validate_spec()
        except ValidationError as e:
            logger.warning(f"Validation failed for StellarNode {node.key}: {e.message}")
            self.status.write(node, Phase.FAILED, e.message)
            raise

        if spec.suspended:
            logger.info(f"StellarNode {node.key} is suspended, scaling to 0")
        if spec.node_kind == NodeKind.VALIDATOR and spec.autoscaling is not None:
            logger.info(f"StellarNode {node.key}: autoscaling is ignored for validators")

        # The finalizer goes on before the first child exists so nothing can leak
        if self.finalizer not in node.metadata.finalizers:
            finalizers = node.metadata.finalizers + [self.finalizer]
            self.cluster.nodes.set_finalizers(node.namespace, node.name, finalizers)
            node.metadata.finalizers = finalizers
            logger.info(f"Added finalizer {self.finalizer} to StellarNode {node.key}")

        if self._needs_progress(node):
            self.status.write(node, Phase.CREATING, "Creating resources")

        self.resources.ensure_storage_claim(node)
        self.resources.ensure_config_bundle(node)
        self.resources.ensure_workload(node)
        self.resources.ensure_network_endpoint(node)
        self.resources.ensure_autoscaler(node)

        ready_replicas = self.resources.read_ready_replicas(node)
        if spec.suspended:
            phase, message = Phase.SUSPENDED, "Node is suspended"
        else:
            phase, message = Phase.RUNNING, "Resources reconciled"
        self.status.write(
            node,
            phase,
            message,
            replicas=spec.declared_replicas(),
            ready_replicas=ready_replicas,
            advance_generation=True,
            desired_replicas=spec.desired_replicas(),
        )

        return Action.requeue(self.resync_interval)

    def _needs_progress(self, node: StellarNode) -> bool:
        """Whether an interim Creating status is due: first apply, a new generation, or a failed one"""
        status = node.status
        if status is None or status.phase not in (Phase.RUNNING, Phase.SUSPENDED):
            return True
        return status.observed_generation != node.metadata.generation

    def cleanup(self, node: StellarNode) -> Action:
        if self.finalizer not in node.metadata.finalizers:
            logger.debug(f"StellarNode {node.key} is deleting without our finalizer, nothing to do")
            return Action.await_change()

        logger.info(f"Cleaning up StellarNode {node.key}")
        spec = node.spec

        steps: List[Tuple[str, Callable[[StellarNode], bool]]] = [
            (STEP_NETWORK_ENDPOINT, self.resources.delete_network_endpoint),
            (STEP_WORKLOAD, self.resources.delete_workload),
            (STEP_CONFIG_BUNDLE, self.resources.delete_config_bundle),
        ]
        if spec.should_delete_storage():
            steps.append((STEP_STORAGE_CLAIM, self.resources.delete_storage_claim))
        else:
            logger.info(f"Retaining storage claim of StellarNode {node.key} (retention policy: Retain)")
            steps.append((STEP_STORAGE_CLAIM, self.resources.release_storage_claim))
        if spec.autoscaling is not None:
            steps.append((STEP_AUTOSCALER, self.resources.delete_autoscaler))

        report = CleanupReport()
        for step, operation in steps:
            report.attempted.append(step)
            try:
                operation(node)
            except Exception as e:
                report.failures[step] = str(e)
                logger.warning(f"Cleanup step {step} failed for StellarNode {node.key}: {e}")
        self.last_cleanup_report = report

        blocking = self._blocking_failures(node, report)
        if blocking:
            raise CleanupIncomplete(
                f"Cleanup of StellarNode {node.key} incomplete, failed steps: {', '.join(blocking)}", blocking
            )

        finalizers = [f for f in node.metadata.finalizers if f != self.finalizer]
        self.cluster.nodes.set_finalizers(node.namespace, node.name, finalizers)
        node.metadata.finalizers = finalizers
        logger.info(f"Cleanup complete for StellarNode {node.key}")
        return Action.await_change()

    def _blocking_failures(self, node: StellarNode, report: CleanupReport) -> List[str]:
        match self.cleanup_policy:
            case CleanupPolicy.STRICT:
                return list(report.failures)
            case CleanupPolicy.BLOCK_ON_STORAGE:
                if node.spec.should_delete_storage() and STEP_STORAGE_CLAIM in report.failures:
                    return [STEP_STORAGE_CLAIM]
                return []
            case _:
                return []
