"""Scheduler module for lbwarden.

This module feeds LoadBalancer keys from Kubernetes watches into the work queue
and runs the worker threads that reconcile them.
"""

import logging
import threading
from collections.abc import Callable, Iterable
from typing import Any

from kubernetes import watch
from kubernetes.client.exceptions import ApiException

from lbwarden.config import LbwardenConfig
from lbwarden.kubernetes.connection import KubernetesConnection
from lbwarden.loadbalancer import LoadBalancerController, Result
from lbwarden.models import API_GROUP, API_VERSION, LOADBALANCER_PLURAL, LOADBALANCERSET_PLURAL, LoadBalancer
from lbwarden.workqueue import ShutDown, WorkQueue

logger = logging.getLogger(__name__)

# Server side timeout of a single watch request
WATCH_TIMEOUT = 300
# Bounds of the delay between failed watch attempts
WATCH_BACKOFF_MIN = 1
WATCH_BACKOFF_MAX = 30


def split_key(key: str) -> tuple[str, str]:
    """Split a namespace/name key.

    Raises:
        ValueError: If the key is not in format namespace/name.
    """
    namespace, sep, name = key.partition("/")
    if not sep or not namespace or not name or "/" in name:
        raise ValueError(f"Key must be in format namespace/name: {key!r}")
    return namespace, name


def loadbalancer_keys(obj: dict[str, Any]) -> list[str]:
    metadata = obj.get("metadata") or {}
    return [f"{metadata.get('namespace')}/{metadata.get('name')}"]


def owner_keys(obj: dict[str, Any]) -> list[str]:
    """Keys of the LoadBalancers controlling a LoadBalancerSet."""
    metadata = obj.get("metadata") or {}
    return [
        f"{metadata.get('namespace')}/{ref['name']}"
        for ref in metadata.get("ownerReferences") or []
        if ref.get("kind") == LoadBalancer.KIND and ref.get("controller")
    ]


class Scheduler:
    """Drives the LoadBalancer controller.

    Watches LoadBalancers and LoadBalancerSets, enqueues the key of every
    affected LoadBalancer and reconciles queued keys on a pool of worker
    threads. Failed keys are retried with exponential backoff, successful
    ones are requeued as the controller asks for.
    """

    def __init__(
        self,
        config: LbwardenConfig,
        connection: KubernetesConnection,
        controller: LoadBalancerController,
        queue: WorkQueue | None = None,
    ):
        """Initialize the scheduler.

        Args:
            config: The configuration for the scheduler.
            connection: The Kubernetes connection to watch with.
            controller: The controller reconciling LoadBalancers.
            queue: The work queue, a fresh one if None.
        """
        self.config = config
        self.connection = connection
        self.controller = controller
        self.queue = queue if queue is not None else WorkQueue()
        self.stop_event = threading.Event()
        self._watchers: list[watch.Watch] = []
        self._lock = threading.Lock()

    def reconcile_once(self, key: str) -> Result:
        """Run a single reconcile pass for a LoadBalancer key.

        Errors are not retried but raised to the caller.
        """
        namespace, name = split_key(key)
        logger.info(f"Reconciling {key} once")
        return self.controller.reconcile(namespace, name)

    def process_next(self, timeout: float | None = None) -> bool:
        """Reconcile the next key of the queue.

        Args:
            timeout: Seconds to wait for a key at most.

        Returns:
            False if the queue has been shut down, True otherwise.
        """
        try:
            key = self.queue.get(timeout=timeout)
        except ShutDown:
            return False
        if key is None:
            return True

        try:
            self.handle(key)
        finally:
            self.queue.done(key)
        return True

    def handle(self, key: str) -> None:
        """Reconcile a key and schedule it again according to the outcome."""
        try:
            namespace, name = split_key(key)
        except ValueError as e:
            logger.error(f"Dropping invalid key: {e}")
            self.queue.forget(key)
            return

        try:
            result = self.controller.reconcile(namespace, name)
        except Exception as e:
            delay = self.queue.add_rate_limited(key)
            logger.error(f"Error reconciling LoadBalancer {key}, retrying in {delay:.3f}s: {e}")
            logger.debug("Reconcile failure details", exc_info=True)
            return

        self.queue.forget(key)
        if result.requeue:
            logger.debug(f"Requeueing LoadBalancer {key} in {result.requeue_after}s")
            self.queue.add_after(key, result.requeue_after)

    def worker(self) -> None:
        while self.process_next():
            pass

    def watch_loadbalancers(self) -> None:
        self._watch(LOADBALANCER_PLURAL, loadbalancer_keys)

    def watch_loadbalancersets(self) -> None:
        self._watch(LOADBALANCERSET_PLURAL, owner_keys)

    def _list_kwargs(self, plural: str) -> dict[str, Any]:
        kwargs = {"group": API_GROUP, "version": API_VERSION, "plural": plural}
        if self.config.namespace:
            kwargs["namespace"] = self.config.namespace
        return kwargs

    def _list_func(self) -> Callable[..., Any]:
        api = self.connection.custom_objects_api
        if self.config.namespace:
            return api.list_namespaced_custom_object
        return api.list_cluster_custom_object

    def _enqueue(self, keys: Iterable[str]) -> None:
        for key in keys:
            self.queue.add(key)

    def _relist(self, plural: str, to_keys: Callable[[dict[str, Any]], list[str]]) -> str | None:
        result = self._list_func()(_request_timeout=self.connection.timeout, **self._list_kwargs(plural))
        for item in result.get("items", []):
            self._enqueue(to_keys(item))
        return (result.get("metadata") or {}).get("resourceVersion")

    def _watch(self, plural: str, to_keys: Callable[[dict[str, Any]], list[str]]) -> None:
        """List then watch a custom resource until the scheduler stops.

        Every listed object and every watch event enqueues the keys returned by
        ``to_keys``. Expired resource versions trigger a fresh list, other
        errors are retried with exponential backoff.
        """
        backoff = WATCH_BACKOFF_MIN
        resource_version = None

        while not self.stop_event.is_set():
            watcher = watch.Watch()
            with self._lock:
                self._watchers.append(watcher)
            try:
                if resource_version is None:
                    resource_version = self._relist(plural, to_keys)
                    logger.info(f"Watching {plural} from resourceVersion {resource_version}")

                for event in watcher.stream(
                    self._list_func(),
                    resource_version=resource_version,
                    timeout_seconds=WATCH_TIMEOUT,
                    **self._list_kwargs(plural),
                ):
                    if self.stop_event.is_set():
                        break
                    obj = event.get("object")
                    if not isinstance(obj, dict):
                        continue
                    version = (obj.get("metadata") or {}).get("resourceVersion")
                    if version:
                        resource_version = version
                    logger.debug(f"{event.get('type')} event for {plural}: {loadbalancer_keys(obj)[0]}")
                    self._enqueue(to_keys(obj))
                backoff = WATCH_BACKOFF_MIN
            except ApiException as e:
                if e.status == 410:
                    logger.warning(f"Watch resource version of {plural} expired, re-listing")
                    resource_version = None
                    continue
                logger.error(f"Kubernetes API error watching {plural}: {e.status} {e.reason}")
                self.stop_event.wait(backoff)
                backoff = min(backoff * 2, WATCH_BACKOFF_MAX)
            except Exception as e:
                logger.exception(f"Unexpected error watching {plural}: {e}")
                self.stop_event.wait(backoff)
                backoff = min(backoff * 2, WATCH_BACKOFF_MAX)
            finally:
                watcher.stop()
                with self._lock:
                    self._watchers.remove(watcher)

    def start(self) -> list[threading.Thread]:
        """Start the watch and worker threads."""
        threads = [
            threading.Thread(target=self.watch_loadbalancers, name="watch-loadbalancers", daemon=True),
            threading.Thread(target=self.watch_loadbalancersets, name="watch-loadbalancersets", daemon=True),
        ]
        threads += [
            threading.Thread(target=self.worker, name=f"worker-{i}", daemon=True)
            for i in range(self.config.worker_count)
        ]
        for thread in threads:
            thread.start()
        return threads

    def stop(self) -> None:
        """Stop watching and let the workers finish their current key."""
        self.stop_event.set()
        self.queue.shutdown()
        with self._lock:
            for watcher in self._watchers:
                watcher.stop()

    def run(self) -> None:
        """Run the controller until interrupted.

        This method blocks, reconciling LoadBalancers as they change.
        """
        logger.info(
            f"Starting {self.config.worker_count} workers for LoadBalancers in "
            f"{self.config.namespace or 'all namespaces'}"
        )
        threads = self.start()
        try:
            while not self.stop_event.wait(1):
                pass
        except KeyboardInterrupt:
            logger.info("Reconciliation loop interrupted, shutting down")
        finally:
            self.stop()
            for thread in threads:
                thread.join(timeout=self.connection.timeout)
