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

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ViewModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class NodeSummary(ViewModel):
    name: str
    namespace: str
    node_kind: Optional[str] = None
    network: Optional[str] = None
    phase: Optional[str] = None
    replicas: int = 0
    ready_replicas: int = 0


class NodeList(ViewModel):
    items: List[NodeSummary] = Field(default_factory=list)


class NodeDetail(NodeSummary):
    version: Optional[str] = None
    suspended: bool = False
    deleting: bool = False
    observed_generation: Optional[int] = None
    generation: Optional[int] = None
    status: Dict[str, Any] = Field(default_factory=dict)


class HealthResponse(ViewModel):
    status: str = "healthy"
    version: str


class ErrorResponse(ViewModel):
    detail: str
