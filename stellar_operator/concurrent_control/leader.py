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
Leader election between operator replicas.

Only the holder of the lease dispatches reconciles. The lease is a Redis key
with a TTL, renewed by its holder; renew and release are Lua scripts that act
only while the key still names the caller.
"""

import logging
from abc import ABC, abstractmethod

import redis

logger = logging.getLogger(__name__)

RENEW_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("pexpire", KEYS[1], ARGV[2])
else
    return 0
end
"""

RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class LeaderElector(ABC):
    @abstractmethod
    def acquire(self) -> bool:
        """Take the lease if it is free or already ours"""
        pass

    @abstractmethod
    def renew(self) -> bool:
        """Extend the lease; False means it was lost"""
        pass

    @abstractmethod
    def release(self) -> None:
        pass


class RedisLeaseElector(LeaderElector):
    def __init__(self, redis_url: str, lease_name: str, holder_id: str, namespace: str = "default", ttl: int = 15):
        self.key = f"stellar-operator:lease:{namespace}/{lease_name}"
        self.holder_id = holder_id
        self.ttl_ms = int(ttl * 1000)
        self._client = redis.from_url(redis_url, decode_responses=True)
        self._renew = self._client.register_script(RENEW_SCRIPT)
        self._release = self._client.register_script(RELEASE_SCRIPT)

    def acquire(self) -> bool:
        if self._client.set(self.key, self.holder_id, nx=True, px=self.ttl_ms):
            logger.info(f"Acquired lease {self.key} as {self.holder_id}")
            return True
        # Restarted holder with the same identity
        return self.renew()

    def renew(self) -> bool:
        renewed = bool(self._renew(keys=[self.key], args=[self.holder_id, self.ttl_ms]))
        if not renewed:
            logger.debug(f"Lease {self.key} is held by another replica")
        return renewed

    def release(self) -> None:
        if self._release(keys=[self.key], args=[self.holder_id]):
            logger.info(f"Released lease {self.key}")


class StaticLeaderElector(LeaderElector):
    """Fixed answer, for single-replica deployments and tests"""

    def __init__(self, leader: bool = True):
        self.leader = leader
        self.held = False

    def acquire(self) -> bool:
        self.held = self.leader
        return self.held

    def renew(self) -> bool:
        return self.held and self.leader

    def release(self) -> None:
        self.held = False
