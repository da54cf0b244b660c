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
Status projection.

Each write is a full snapshot of phase, message, replica counts and the Ready /
Progressing conditions, sent through the status subresource only. Writes that
would not change the stored status are skipped, and a condition keeps its
lastTransitionTime while its status stays the same.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Optional, Tuple

import pydantic

from stellar_operator.cluster.base import NodeStore
from stellar_operator.crd.models import Condition, Phase, StellarNode, StellarNodeStatus

logger = logging.getLogger(__name__)

CONDITION_READY = "Ready"
CONDITION_PROGRESSING = "Progressing"


def rfc3339_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _condition_states(phase: Phase, desired: int, ready_replicas: int) -> Tuple[Tuple[str, str], Tuple[str, str]]:
    """(status, reason) for Ready and Progressing"""
    match phase:
        case Phase.CREATING:
            return ("False", "Creating"), ("True", "Reconciling")
        case Phase.RUNNING:
            if ready_replicas >= desired:
                return ("True", "ReplicasReady"), ("False", "ReconcileComplete")
            return ("False", "ReplicasNotReady"), ("False", "ReconcileComplete")
        case Phase.SUSPENDED:
            return ("False", "Suspended"), ("False", "Suspended")
        case Phase.FAILED:
            return ("False", "Failed"), ("False", "Failed")


class StatusProjector:
    def __init__(self, nodes: NodeStore, clock: Callable[[], str] = rfc3339_now):
        self.nodes = nodes
        self.clock = clock

    def project(
        self,
        node: StellarNode,
        phase: Phase,
        message: Optional[str],
        replicas: int = 0,
        ready_replicas: int = 0,
        advance_generation: bool = False,
        desired_replicas: Optional[int] = None,
    ) -> StellarNodeStatus:
        """
        Compute the status snapshot for ``node`` without writing it.
        ``replicas`` is reported as is; Ready compares ``ready_replicas`` against
        ``desired_replicas`` when given, otherwise against ``replicas``.
        """
        observed_generation = node.metadata.generation if advance_generation else None
        return self._snapshot(
            node.status, observed_generation, phase, message, replicas, ready_replicas, desired_replicas
        )

    def _snapshot(
        self,
        previous: Optional[StellarNodeStatus],
        observed_generation: Optional[int],
        phase: Phase,
        message: Optional[str],
        replicas: int,
        ready_replicas: int,
        desired_replicas: Optional[int] = None,
    ) -> StellarNodeStatus:
        previous = previous or StellarNodeStatus()
        if observed_generation is None:
            observed_generation = previous.observed_generation

        now = self.clock()
        conditions = []
        ready, progressing = _condition_states(
            phase, replicas if desired_replicas is None else desired_replicas, ready_replicas
        )
        for condition_type, (status, reason) in ((CONDITION_READY, ready), (CONDITION_PROGRESSING, progressing)):
            prior = previous.get_condition(condition_type)
            transition_time = prior.last_transition_time if prior is not None and prior.status == status else now
            conditions.append(
                Condition(
                    type=condition_type,
                    status=status,
                    last_transition_time=transition_time,
                    reason=reason,
                    message=message or phase.value,
                )
            )

        return StellarNodeStatus(
            phase=phase,
            message=message,
            observed_generation=observed_generation,
            replicas=replicas,
            ready_replicas=ready_replicas,
            conditions=conditions,
        )

    def write(
        self,
        node: StellarNode,
        phase: Phase,
        message: Optional[str],
        replicas: int = 0,
        ready_replicas: int = 0,
        advance_generation: bool = False,
        desired_replicas: Optional[int] = None,
    ) -> bool:
        """
        Project and persist the status. ``node.status`` is updated in place so
        later writes in the same cycle compare against what was stored.

        Returns:
            False if the stored status already matched and nothing was sent

        Raises:
            AbsentResource: if the node was deleted in the meantime
        """
        status = self.project(node, phase, message, replicas, ready_replicas, advance_generation, desired_replicas)
        if node.status is not None and node.status.to_dict() == status.to_dict():
            logger.debug(f"StellarNode {node.key} status unchanged ({phase.value})")
            return False

        # Explicit nulls clear fields left over from the previous snapshot
        self.nodes.patch_status(node.namespace, node.name, status.model_dump(mode="json", by_alias=True))
        node.status = status
        logger.info(f"StellarNode {node.key} phase={phase.value} ready={ready_replicas}/{replicas}")
        return True

    def write_unparseable(self, obj: dict, message: str) -> None:
        """Mark a node whose object does not parse as Failed, working on the raw dict"""
        metadata = obj.get("metadata", {})
        namespace, name = metadata.get("namespace", "default"), metadata["name"]
        try:
            previous = StellarNodeStatus.model_validate(obj.get("status") or {})
        except pydantic.ValidationError:
            previous = None

        status = self._snapshot(previous, None, Phase.FAILED, message, 0, 0)
        if previous is not None and previous.to_dict() == status.to_dict():
            return
        self.nodes.patch_status(namespace, name, status.model_dump(mode="json", by_alias=True))
        logger.info(f"StellarNode {namespace}/{name} phase={Phase.FAILED.value}: {message}")
