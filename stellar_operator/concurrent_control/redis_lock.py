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
Redis-based distributed lock.

SET NX EX takes the lock with a random token; release runs a Lua script that
deletes the key only while it still holds our token, so an expired lock that
someone else has since taken is never released by mistake.
"""

import logging
import time
import uuid
from abc import ABC, abstractmethod
from typing import Optional

import redis

logger = logging.getLogger(__name__)

RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class DistributedLock(ABC):
    @abstractmethod
    def acquire(self, timeout: Optional[float] = None) -> bool:
        pass

    @abstractmethod
    def release(self) -> None:
        pass

    @abstractmethod
    def is_locked(self) -> bool:
        pass


class RedisLock(DistributedLock):
    def __init__(
        self,
        key: str,
        redis_url: str = "redis://localhost:6379",
        expire_time: int = 30,
        retry_times: int = 3,
        retry_delay: float = 0.1,
    ):
        if not key:
            raise ValueError("Redis lock key is required")
        self._key = key
        self._redis_url = redis_url
        self._expire_time = expire_time
        self._retry_times = retry_times
        self._retry_delay = retry_delay
        self._redis_client = None
        self._release_sha: Optional[str] = None
        self._lock_value: Optional[str] = None

    def __repr__(self) -> str:
        return f"RedisLock(key={self._key!r})"

    def _get_client(self):
        if self._redis_client is None:
            client = redis.from_url(self._redis_url, decode_responses=True)
            try:
                client.ping()
            except Exception as e:
                raise ConnectionError(f"Cannot connect to Redis at {self._redis_url}: {e}") from e
            try:
                self._release_sha = client.script_load(RELEASE_SCRIPT)
            except Exception as e:
                logger.warning(f"Failed to preload lock release script, falling back to EVAL: {e}")
                self._release_sha = None
            self._redis_client = client
        return self._redis_client

    def _try_set(self, client, value: str) -> bool:
        try:
            return bool(client.set(self._key, value, nx=True, ex=self._expire_time))
        except Exception as e:
            logger.warning(f"Redis SET failed for lock {self._key}: {e}")
            return False

    def acquire(self, timeout: Optional[float] = None) -> bool:
        """
        Try to take the lock.

        Without a timeout, makes ``retry_times + 1`` attempts spaced by
        ``retry_delay``; with one, keeps trying until it expires.

        Raises:
            ConnectionError: if Redis is unreachable
        """
        if self._lock_value is not None:
            return True

        client = self._get_client()
        value = str(uuid.uuid4())

        if timeout is not None:
            deadline = time.monotonic() + timeout
            while True:
                if self._try_set(client, value):
                    self._lock_value = value
                    return True
                if time.monotonic() + self._retry_delay > deadline:
                    return False
                time.sleep(self._retry_delay)

        for attempt in range(self._retry_times + 1):
            if self._try_set(client, value):
                self._lock_value = value
                return True
            if attempt < self._retry_times:
                time.sleep(self._retry_delay)
        return False

    def release(self) -> None:
        if self._lock_value is None:
            return
        try:
            client = self._get_client()
            if self._release_sha:
                client.evalsha(self._release_sha, 1, self._key, self._lock_value)
            else:
                client.eval(RELEASE_SCRIPT, 1, self._key, self._lock_value)
        except Exception as e:
            # The key expires on its own
            logger.warning(f"Failed to release lock {self._key}: {e}")
        finally:
            self._lock_value = None

    def is_locked(self) -> bool:
        return self._lock_value is not None

    def close(self) -> None:
        self.release()
        if self._redis_client is not None:
            self._redis_client.close()
            self._redis_client = None
