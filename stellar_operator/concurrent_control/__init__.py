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

from stellar_operator.concurrent_control.leader import LeaderElector, RedisLeaseElector, StaticLeaderElector
from stellar_operator.concurrent_control.redis_lock import DistributedLock, RedisLock


def create_lock(lock_type: str = "redis", **kwargs) -> DistributedLock:
    match lock_type:
        case "redis":
            return RedisLock(**kwargs)
        case _:
            raise ValueError(f"Unsupported lock type: {lock_type}")


__all__ = [
    "DistributedLock",
    "LeaderElector",
    "RedisLeaseElector",
    "RedisLock",
    "StaticLeaderElector",
    "create_lock",
]
