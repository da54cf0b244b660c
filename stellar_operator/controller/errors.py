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
Error taxonomy for the reconciliation engine.

ValidationError is terminal for the current spec generation, everything else
is retried on the short interval. AbsentResource never reaches the error
policy: get/delete normalise not-found to ``None``/``False``.
"""

from typing import List, Optional


class ReconcileError(Exception):
    """Base class for errors surfaced by a reconcile cycle"""

    retriable: bool = True


class ValidationError(ReconcileError):
    """The node spec is semantically invalid"""

    retriable = False

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.problems = problems or [message]


class TransientApiError(ReconcileError):
    """A cluster API call failed for availability, conflict or rate-limit reasons"""

    def __init__(self, message: str, status: Optional[int] = None, reason: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.reason = reason


class ResourceConflict(TransientApiError):
    """The object already exists, or its fields are owned by another manager"""

    def __init__(self, message: str, reason: Optional[str] = "Conflict"):
        super().__init__(message, status=409, reason=reason)


class AbsentResource(ReconcileError):
    """The addressed object does not exist"""

    def __init__(self, kind: str, namespace: str, name: str):
        super().__init__(f"{kind} {namespace}/{name} not found")
        self.kind = kind
        self.namespace = namespace
        self.name = name


class CleanupIncomplete(ReconcileError):
    """Cleanup failed under a policy that keeps the finalizer until it succeeds"""

    def __init__(self, message: str, failed_steps: List[str]):
        super().__init__(message)
        self.failed_steps = failed_steps


class ConfigurationFault(Exception):
    """Startup-time fault; the controller must not start reconciling"""
