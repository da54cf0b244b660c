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

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Config(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="STELLAR_OPERATOR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Controller identity
    field_manager: str = "stellar-operator"
    finalizer: str = "stellar.org/finalizer"

    # Requeue intervals (seconds)
    resync_interval: float = 30.0
    transient_retry_delay: float = 15.0
    validation_retry_delay: float = 60.0

    # best_effort | block_on_storage | strict
    cleanup_policy: str = "best_effort"

    # Watch
    watch_namespace: Optional[str] = None
    watch_timeout: int = 60

    # Task dispatch: celery | local
    scheduler_type: str = "celery"
    redis_url: str = "redis://localhost:6379"
    celery_broker_url: str = "redis://localhost:6379/0"
    celery_result_backend: str = "redis://localhost:6379/1"
    reconcile_lock_expire: int = 120
    reconcile_lock_retry_delay: float = 5.0
    resync_all_interval: float = 300.0

    # Leader election; disable for single-replica deployments
    leader_election: bool = True
    lease_name: str = "stellar-operator-leader"
    lease_ttl: int = 15
    holder_id: str = Field(
        default="unknown-host",
        validation_alias=AliasChoices("STELLAR_OPERATOR_HOLDER_ID", "HOSTNAME"),
    )
    pod_namespace: str = Field(
        default="default",
        validation_alias=AliasChoices("STELLAR_OPERATOR_POD_NAMESPACE", "POD_NAMESPACE"),
    )

    # Read-only API
    api_host: str = "0.0.0.0"
    api_port: int = 8080

    log_level: str = "INFO"


settings = Config()
