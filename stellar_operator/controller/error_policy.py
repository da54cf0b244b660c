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

import logging
from dataclasses import dataclass
from typing import Optional

from stellar_operator.controller.errors import ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Action:
    """What to do after a reconcile: requeue after a delay, or wait for the next change"""

    requeue_after: Optional[float] = None

    @classmethod
    def requeue(cls, seconds: float) -> "Action":
        return cls(requeue_after=seconds)

    @classmethod
    def await_change(cls) -> "Action":
        return cls()


class ErrorPolicy:
    """Fixed-delay retry: long for invalid specs, short for everything else"""

    def __init__(self, validation_retry: float = 60.0, transient_retry: float = 15.0):
        self.validation_retry = validation_retry
        self.transient_retry = transient_retry

    def on_error(self, key: str, error: Exception) -> Action:
        if isinstance(error, ValidationError):
            logger.warning(f"StellarNode {key} is invalid, retrying in {self.validation_retry}s: {error}")
            return Action.requeue(self.validation_retry)
        logger.error(f"Reconcile of StellarNode {key} failed, retrying in {self.transient_retry}s: {error}")
        return Action.requeue(self.transient_retry)
