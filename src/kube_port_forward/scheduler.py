"""Scheduler module for kube-port-forward.

This module periodically reconciles every managed Service so that router
drift is corrected even when no Service changes.
"""

import logging
import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import UTC, datetime

from kube_port_forward.config import ControllerConfig
from kube_port_forward.controller import ReconcileController, ReconcileRequest, ReconcileResult
from kube_port_forward.errors import RouterError, is_permanent, is_port_conflict
from kube_port_forward.kubernetes.services import ServiceSource, service_key
from kube_port_forward.routers.base import Router
from kube_port_forward.tracker import ConflictTracker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HistoryEntry:
    """Outcome of one reconcile, kept for debugging."""

    key: str
    succeeded: bool
    message: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


class Scheduler:
    """Polling scheduler for Service reconciliation.

    Every cycle lists the Services matching the configured filters, adds the
    keys still holding router claims, and reconciles each of them on a thread
    pool.
    """

    def __init__(
        self,
        config: ControllerConfig,
        controller: ReconcileController,
        service_source: ServiceSource,
        router: Router,
        tracker: ConflictTracker,
    ):
        """Initialize the scheduler.

        Args:
            config: The controller configuration.
            controller: The controller reconciling single Services.
            service_source: Read access to Services.
            router: The router backend, used to seed the tracker.
            tracker: The conflict tracker shared with the controller.
        """
        self.config = config
        self.controller = controller
        self.service_source = service_source
        self.router = router
        self.tracker = tracker
        self.history: deque[HistoryEntry] = deque(maxlen=config.history_size)
        self.seeded = False
        self._lock = threading.Lock()
        # Keys whose last reconcile failed permanently, with the resourceVersion it failed on
        self._permanent_failures: dict[str, str | None] = {}
        # Keys whose last reconcile failed transiently, retried even once their Service is gone
        self._retry_keys: set[str] = set()

    def seed_tracker(self) -> bool:
        """Seed the conflict tracker from the rules present on the router.

        Returns:
            True if the tracker was seeded, False if the router could not be listed.
        """
        try:
            rules = self.router.list_all_port_forwards()
        except Exception as e:
            logger.error(f"Failed to list router port forwards, tracker not seeded: {e}")
            return False

        self.tracker.seed_from_rules(rules)
        self.seeded = True
        return True

    def _collect_keys(self) -> dict[str, str | None]:
        keys: dict[str, str | None] = {}
        try:
            for service in self.service_source.list_services(self.config.namespace, self.config.label_selector):
                keys[service_key(service.metadata.namespace, service.metadata.name)] = service.metadata.resource_version
        except Exception as e:
            logger.error(f"Failed to list services: {e}")

        for key in self.tracker.service_keys() | self._retry_keys:
            keys.setdefault(key, None)
        return keys

    def _should_skip(self, key: str, resource_version: str | None) -> bool:
        if key not in self._permanent_failures:
            return False
        if resource_version is None or self._permanent_failures[key] != resource_version:
            return False
        logger.debug(f"Skipping service {key}: unchanged since its last permanent failure")
        return True

    def _record(self, key: str, resource_version: str | None, result: ReconcileResult) -> None:
        with self._lock:
            if result.error is None:
                self._permanent_failures.pop(key, None)
                self._retry_keys.discard(key)
                self.history.append(HistoryEntry(key=key, succeeded=True, message=", ".join(result.changes)))
                return

            if result.error.retryable:
                self._permanent_failures.pop(key, None)
                self._retry_keys.add(key)
            elif is_permanent(result.error) and not is_port_conflict(result.error):
                self._permanent_failures[key] = resource_version
                self._retry_keys.discard(key)
            else:
                # Conflicts resolve when the owning Service lets go of the port
                self._permanent_failures.pop(key, None)
                self._retry_keys.discard(key)
            self.history.append(HistoryEntry(key=key, succeeded=False, message=str(result.error)))

    def reconcile_all(self) -> dict[str, ReconcileResult]:
        """Reconcile every managed Service once.

        Returns:
            The reconcile result of each processed service key.
        """
        keys = self._collect_keys()
        pending = {key: version for key, version in keys.items() if not self._should_skip(key, version)}
        logger.info(f"Reconciling {len(pending)} service(s), {len(keys) - len(pending)} skipped")

        results: dict[str, ReconcileResult] = {}
        with ThreadPoolExecutor(max_workers=self.config.workers) as executor:
            futures = {}
            for key, version in pending.items():
                namespace, _, name = key.partition("/")
                futures[executor.submit(self.controller.reconcile, ReconcileRequest(namespace, name))] = (key, version)

            for future in as_completed(futures):
                key, version = futures[future]
                try:
                    result = future.result()
                except Exception as e:
                    logger.exception(f"Unexpected error while reconciling service {key}: {e}")
                    error = RouterError(str(e), operation="reconcile", resource=key, cause=e)
                    result = ReconcileResult(requeue_after=self.config.retry_delay, error=error)
                self._record(key, version, result)
                results[key] = result

        failed = sum(1 for result in results.values() if result.error is not None)
        logger.info(f"Reconciliation finished: {len(results) - failed} succeeded, {failed} failed")
        return results

    def next_delay(self, results: dict[str, ReconcileResult]) -> float:
        """Get the delay before the next cycle.

        Transient failures shorten the poll interval to their requeue delay.
        """
        delays = [result.requeue_after for result in results.values() if result.requeue_after > 0]
        return min([self.config.poll_interval, *delays])

    def reconcile(self) -> dict[str, ReconcileResult]:
        """Run a single cycle, seeding the tracker first if needed."""
        if not self.seeded:
            self.seed_tracker()
        return self.reconcile_all()

    def run_reconciliation_loop(self) -> None:
        """Run the reconciliation loop continuously.

        This method runs in an infinite loop, reconciling every managed
        Service once per poll interval.
        """
        logger.info(f"Starting reconciliation loop with interval {self.config.poll_interval} seconds")
        logger.info(f"Namespace: {self.config.namespace or 'all'}")
        logger.info(f"Label selector: {self.config.label_selector or 'none'}")
        logger.info(f"Annotation: {self.config.filter_annotation}")

        try:
            while True:
                logger.info("Running reconciliation")
                results = self.reconcile()
                time.sleep(self.next_delay(results))
        except KeyboardInterrupt:
            logger.info("Reconciliation loop interrupted, shutting down")
        except Exception as e:
            logger.exception(f"Error in reconciliation loop: {str(e)}")
