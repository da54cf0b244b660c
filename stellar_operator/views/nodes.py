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

from http import HTTPStatus
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from stellar_operator import __version__
from stellar_operator.cluster.base import NodeStore
from stellar_operator.schema.view_models import ErrorResponse, HealthResponse, NodeDetail, NodeList
from stellar_operator.service import node_service

router = APIRouter()
health_router = APIRouter()


def get_node_store(request: Request) -> NodeStore:
    return request.app.state.cluster.nodes


@health_router.get("/health")
def health_view() -> HealthResponse:
    return HealthResponse(version=__version__)


@router.get("/nodes", response_model=NodeList, response_model_by_alias=True)
def list_nodes_view(namespace: Optional[str] = None, store: NodeStore = Depends(get_node_store)):
    """List StellarNodes, optionally within one namespace"""
    return node_service.list_nodes(store, namespace)


@router.get(
    "/nodes/{namespace}/{name}",
    response_model=NodeDetail,
    response_model_by_alias=True,
    responses={HTTPStatus.NOT_FOUND.value: {"model": ErrorResponse}},
)
def get_node_view(namespace: str, name: str, store: NodeStore = Depends(get_node_store)):
    """Get one StellarNode with its full status"""
    node = node_service.get_node(store, namespace, name)
    if node is None:
        raise HTTPException(status_code=HTTPStatus.NOT_FOUND, detail=f"StellarNode {namespace}/{name} not found")
    return node
