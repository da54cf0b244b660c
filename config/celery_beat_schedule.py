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
Celery Beat schedule for the StellarNode operator

The watch-driven runner covers normal operation; this periodic full resync is
the safety net for missed events and for workers that restarted with an
empty delay queue.
"""

from stellar_operator.config import settings

CELERY_BEAT_SCHEDULE = {
    # Re-enqueue a reconcile for every StellarNode
    'resync-all-stellar-nodes': {
        'task': 'stellar_operator.tasks.reconcile_tasks.resync_all_nodes_task',
        'schedule': settings.resync_all_interval,
        'options': {
            'expires': settings.resync_all_interval,  # Avoid piling up behind a slow worker
        }
    },
}

CELERY_TIMEZONE = 'UTC'
