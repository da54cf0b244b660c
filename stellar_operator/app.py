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

from typing import Optional

from fastapi import FastAPI

from stellar_operator import __version__
from stellar_operator.cluster.base import ClusterClient
from stellar_operator.views.nodes import health_router
from stellar_operator.views.nodes import router as nodes_router


def create_app(cluster: Optional[ClusterClient] = None) -> FastAPI:
    """Read-only StellarNode API; defaults to the cluster from the environment"""
    if cluster is None:
        from stellar_operator.cluster.kubernetes import KubernetesCluster

        cluster = KubernetesCluster.from_environment()

    app = FastAPI(title="stellar-operator", version=__version__)
    app.state.cluster = cluster
    app.include_router(health_router)
    app.include_router(nodes_router, prefix="/api/v1")
    return app
