import logging

from celery import current_app

from stellar_operator.concurrent_control import create_lock
from stellar_operator.config import settings

logger = logging.getLogger(__name__)


def reconcile_lock_key(namespace: str, name: str) -> str:
    return f"stellar-operator:reconcile:{namespace}/{name}"


@current_app.task(bind=True)
def reconcile_node_task(self, namespace: str, name: str):
    """
    Reconcile one StellarNode

    Holds a per-node lock so that at most one reconcile per node runs at a
    time; if another worker has it, the task re-enqueues itself.

    Args:
        namespace: Node namespace
        name: Node name
    """
    key = reconcile_lock_key(namespace, name)
    lock = create_lock(
        "redis",
        key=key,
        redis_url=settings.redis_url,
        expire_time=settings.reconcile_lock_expire,
        retry_times=0,
    )
    if not lock.acquire():
        logger.debug(f"Reconcile of {namespace}/{name} already in progress, retrying later")
        self.apply_async(args=(namespace, name), countdown=settings.reconcile_lock_retry_delay)
        return None

    try:
        # Import here to avoid circular dependencies
        from stellar_operator.controller.controller import get_node_controller

        action = get_node_controller().reconcile_node(namespace, name)
        return action.requeue_after
    except Exception as e:
        logger.error(f"Reconcile of StellarNode {namespace}/{name} failed: {e}", exc_info=True)
        raise
    finally:
        lock.close()


@current_app.task
def resync_all_nodes_task():
    """Periodic task that enqueues a reconcile for every StellarNode"""
    try:
        logger.info("Starting StellarNode resync")

        from stellar_operator.controller.controller import get_node_controller

        controller = get_node_controller()
        count = 0
        for obj in controller.cluster.nodes.list(settings.watch_namespace):
            metadata = obj.get("metadata", {})
            controller.task_scheduler.schedule_reconcile(metadata.get("namespace", "default"), metadata["name"])
            count += 1

        logger.info(f"StellarNode resync enqueued {count} reconciles")
        return count

    except Exception as e:
        logger.error(f"StellarNode resync failed: {e}")
        raise
