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
StellarNode custom resource models.

Field names are snake_case in Python and camelCase on the wire, the same way
the Kubernetes API serialises its own objects.
"""

from enum import Enum
from typing import Dict, List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from stellar_operator.controller.errors import ValidationError

GROUP = "stellar.org"
VERSION = "v1alpha1"
API_VERSION = f"{GROUP}/{VERSION}"
KIND = "StellarNode"
PLURAL = "stellarnodes"
SINGULAR = "stellarnode"
SHORT_NAMES = ["sn"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class NodeKind(str, Enum):
    VALIDATOR = "Validator"
    GATEWAY = "Gateway"
    RPC_NODE = "RpcNode"

    @property
    def is_stateless(self) -> bool:
        return self in (NodeKind.GATEWAY, NodeKind.RPC_NODE)


class NetworkName(str, Enum):
    MAINNET = "Mainnet"
    TESTNET = "Testnet"
    FUTURENET = "Futurenet"


NETWORK_PASSPHRASES = {
    NetworkName.MAINNET: "Public Global Stellar Network ; September 2015",
    NetworkName.TESTNET: "Test SDF Network ; September 2015",
    NetworkName.FUTURENET: "Test SDF Future Network ; October 2022",
}


class CustomNetwork(CamelModel):
    """A private network identified only by its passphrase"""

    custom: str = Field(validation_alias=AliasChoices("custom", "Custom"))


Network = Union[NetworkName, CustomNetwork]


def network_passphrase(network: Network) -> str:
    if isinstance(network, CustomNetwork):
        return network.custom
    return NETWORK_PASSPHRASES[network]


def network_label(network: Network) -> str:
    if isinstance(network, CustomNetwork):
        return "Custom"
    return network.value


class RetentionPolicy(str, Enum):
    DELETE = "Delete"
    RETAIN = "Retain"


class ResourceSpec(CamelModel):
    cpu: str
    memory: str


class ResourceRequirements(CamelModel):
    requests: ResourceSpec = Field(default_factory=lambda: ResourceSpec(cpu="500m", memory="1Gi"))
    limits: ResourceSpec = Field(default_factory=lambda: ResourceSpec(cpu="2", memory="4Gi"))


class StorageConfig(CamelModel):
    storage_class: str = "standard"
    size: str = "100Gi"
    retention_policy: RetentionPolicy = RetentionPolicy.DELETE
    # Extra claim annotations, e.g. storage-class specific parameters
    annotations: Optional[Dict[str, str]] = None


class ValidatorConfig(CamelModel):
    # Secret holding the validator seed under the STELLAR_CORE_SEED key
    seed_secret_ref: str
    quorum_set: Optional[str] = None
    enable_history_archive: bool = False
    history_archive_urls: List[str] = Field(default_factory=list)
    catchup_complete: bool = False


class GatewayConfig(CamelModel):
    stellar_core_url: str
    enable_ingest: bool = True
    ingest_workers: int = 1
    enable_experimental_ingestion: bool = False


class RpcConfig(CamelModel):
    stellar_core_url: str
    captive_core_config: Optional[str] = None
    enable_preflight: bool = True
    max_events_per_request: int = 10000


class DatabaseConfig(CamelModel):
    secret_ref: str
    key: str = "DATABASE_URL"


class AutoscalingConfig(CamelModel):
    min_replicas: int = 1
    max_replicas: int
    # Accepted but not wired: needs an external metrics adapter
    custom_metrics: List[str] = Field(default_factory=list)


class StellarNodeSpec(CamelModel):
    node_kind: NodeKind
    network: Network
    version: str
    replicas: int = 1
    suspended: bool = False
    storage: StorageConfig = Field(default_factory=StorageConfig)
    resources: ResourceRequirements = Field(default_factory=ResourceRequirements)
    validator_config: Optional[ValidatorConfig] = None
    gateway_config: Optional[GatewayConfig] = None
    rpc_config: Optional[RpcConfig] = None
    database: Optional[DatabaseConfig] = None
    autoscaling: Optional[AutoscalingConfig] = None

    def validate_spec(self) -> None:
        """
        Check the semantic rules the schema cannot express.

        Raises:
            ValidationError: listing every problem found, joined by "; "
        """
        problems = []

        if self.replicas < 0:
            problems.append(f"replicas must be >= 0, got {self.replicas}")
        if not self.version:
            problems.append("version must not be empty")
        if isinstance(self.network, CustomNetwork) and not self.network.custom.strip():
            problems.append("custom network passphrase must not be empty")
        if not self.storage.storage_class:
            problems.append("storage.storageClass must not be empty")
        if not self.storage.size:
            problems.append("storage.size must not be empty")

        blocks = {
            NodeKind.VALIDATOR: ("validatorConfig", self.validator_config),
            NodeKind.GATEWAY: ("gatewayConfig", self.gateway_config),
            NodeKind.RPC_NODE: ("rpcConfig", self.rpc_config),
        }
        for kind, (field_name, block) in blocks.items():
            if kind == self.node_kind and block is None:
                problems.append(f"{field_name} is required for nodeKind {kind.value}")
            elif kind != self.node_kind and block is not None:
                problems.append(f"{field_name} is only valid for nodeKind {kind.value}")

        if self.validator_config is not None and not self.validator_config.seed_secret_ref:
            problems.append("validatorConfig.seedSecretRef must not be empty")
        if self.gateway_config is not None and not self.gateway_config.stellar_core_url:
            problems.append("gatewayConfig.stellarCoreUrl must not be empty")
        if self.rpc_config is not None and not self.rpc_config.stellar_core_url:
            problems.append("rpcConfig.stellarCoreUrl must not be empty")
        if self.database is not None and not self.database.secret_ref:
            problems.append("database.secretRef must not be empty")

        if self.autoscaling is not None:
            if self.autoscaling.min_replicas < 1:
                problems.append(f"autoscaling.minReplicas must be >= 1, got {self.autoscaling.min_replicas}")
            if self.autoscaling.max_replicas < self.autoscaling.min_replicas:
                problems.append(
                    f"autoscaling.maxReplicas ({self.autoscaling.max_replicas}) must be >= "
                    f"minReplicas ({self.autoscaling.min_replicas})"
                )

        if problems:
            raise ValidationError("; ".join(problems), problems)

    def network_passphrase(self) -> str:
        return network_passphrase(self.network)

    def container_image(self) -> str:
        match self.node_kind:
            case NodeKind.VALIDATOR:
                repository = "stellar/stellar-core"
            case NodeKind.GATEWAY:
                repository = "stellar/stellar-horizon"
            case NodeKind.RPC_NODE:
                repository = "stellar/soroban-rpc"
        return f"{repository}:{self.version}"

    def declared_replicas(self) -> int:
        """Replica count as the user declared it, 0 while suspended"""
        return 0 if self.suspended else self.replicas

    def desired_replicas(self) -> int:
        """Replica count the workload should run: validators are a single keyed identity"""
        if self.suspended:
            return 0
        match self.node_kind:
            case NodeKind.VALIDATOR:
                return 1
            case NodeKind.GATEWAY | NodeKind.RPC_NODE:
                return self.replicas

    def wants_autoscaler(self) -> bool:
        return self.node_kind.is_stateless and self.autoscaling is not None

    def should_delete_storage(self) -> bool:
        return self.storage.retention_policy == RetentionPolicy.DELETE


class Phase(str, Enum):
    CREATING = "Creating"
    SUSPENDED = "Suspended"
    FAILED = "Failed"
    RUNNING = "Running"


class Condition(CamelModel):
    type: str
    # "True", "False" or "Unknown"
    status: str
    last_transition_time: str
    reason: str
    message: str


class StellarNodeStatus(CamelModel):
    phase: Optional[Phase] = None
    message: Optional[str] = None
    observed_generation: Optional[int] = None
    replicas: int = 0
    ready_replicas: int = 0
    conditions: List[Condition] = Field(default_factory=list)

    def get_condition(self, condition_type: str) -> Optional[Condition]:
        for condition in self.conditions:
            if condition.type == condition_type:
                return condition
        return None


class ObjectMeta(CamelModel):
    name: str
    namespace: str = "default"
    uid: Optional[str] = None
    generation: Optional[int] = None
    resource_version: Optional[str] = None
    creation_timestamp: Optional[str] = None
    deletion_timestamp: Optional[str] = None
    finalizers: List[str] = Field(default_factory=list)
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)


class StellarNode(CamelModel):
    api_version: str = API_VERSION
    kind: str = KIND
    metadata: ObjectMeta
    spec: StellarNodeSpec
    status: Optional[StellarNodeStatus] = None

    @classmethod
    def from_dict(cls, obj: dict) -> "StellarNode":
        return cls.model_validate(obj)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def key(self) -> str:
        return f"{self.metadata.namespace}/{self.metadata.name}"
