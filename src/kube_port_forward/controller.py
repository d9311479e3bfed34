"""Reconcile controller.

This module drives the router towards the desired state of one Service at a
time: it builds the desired port configs, diffs them against the router rules
and issues the create, update and delete calls needed to converge.
"""

import logging
import threading
from dataclasses import dataclass, field

from kubernetes import client

from kube_port_forward.builder import PortConfigBuilder
from kube_port_forward.errors import (
    ControllerError,
    RouterCallContext,
    StateError,
    classify_exception,
    is_transient,
)
from kube_port_forward.kubernetes.events import EventPublisher
from kube_port_forward.kubernetes.services import (
    ServiceSource,
    get_load_balancer_ip,
    matches_label_selector,
    service_key,
)
from kube_port_forward.routers.base import PortConfig, PortForwardRule, Router, rule_belongs_to_service
from kube_port_forward.routers.protocol import ProtocolNormalizer
from kube_port_forward.tracker import ConflictTracker, PortKey
from kube_port_forward.validation import LOAD_BALANCER

logger = logging.getLogger(__name__)

DEFAULT_FILTER_ANNOTATION = "kube-port-forward-controller/ports"
DEFAULT_RETRY_DELAY = 30.0


@dataclass(frozen=True)
class ReconcileRequest:
    """Identifies the Service to reconcile."""

    namespace: str
    name: str

    @property
    def key(self) -> str:
        return service_key(self.namespace, self.name)


@dataclass
class ReconcileResult:
    """Outcome of a reconcile.

    Attributes:
        requeue_after: Seconds after which the Service should be reconciled
            again, 0 when no retry is needed.
        error: The error that ended the reconcile, if any.
        changes: Human-readable router changes made by the reconcile.
    """

    requeue_after: float = 0.0
    error: ControllerError | None = None
    changes: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.error is None


class ErrorLogFilter:
    """Deduplicates error logs per service key.

    A failure message is reported once per service key; identical repeats are
    demoted until the key succeeds again.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._seen: dict[str, set[str]] = {}

    def should_log(self, key: str, message: str) -> bool:
        with self._lock:
            seen = self._seen.setdefault(key, set())
            if message in seen:
                return False
            seen.add(message)
            return True

    def reset(self, key: str) -> None:
        with self._lock:
            self._seen.pop(key, None)


def aggregate_failures(failures: list[ControllerError]) -> ControllerError:
    """Reduce the failures of independent port operations to one error.

    The first failure is returned, its message amended with the total count.
    """
    first = failures[0]
    if len(failures) > 1:
        first.message = f"{len(failures)} port operations failed, first: {first.message}"
    return first


class ReconcileController:
    """Reconciles router port forwards with annotated LoadBalancer Services."""

    def __init__(
        self,
        service_source: ServiceSource,
        router: Router,
        tracker: ConflictTracker,
        builder: PortConfigBuilder,
        filter_annotation: str = DEFAULT_FILTER_ANNOTATION,
        namespace: str | None = None,
        label_selector: str | None = None,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        event_publisher: EventPublisher | None = None,
    ):
        """Initialize the controller.

        Args:
            service_source: Read access to Services.
            router: The router backend.
            tracker: Conflict tracker shared with the builder.
            builder: Builds desired port configs from Services.
            filter_annotation: Key of the port mapping annotation.
            namespace: Only reconcile Services in this namespace, all if None.
            label_selector: Only reconcile Services matching this selector.
            retry_delay: Requeue delay after a transient failure, in seconds.
            event_publisher: Optional publisher of Kubernetes events.
        """
        self.service_source = service_source
        self.router = router
        self.tracker = tracker
        self.builder = builder
        self.filter_annotation = filter_annotation
        self.namespace = namespace
        self.label_selector = label_selector
        self.retry_delay = retry_delay
        self.event_publisher = event_publisher
        self.error_filter = ErrorLogFilter()
        self._normalizer = ProtocolNormalizer()

    def reconcile(self, request: ReconcileRequest) -> ReconcileResult:
        """Reconcile the router rules of one Service.

        Expected failures are returned in the result rather than raised.

        Args:
            request: The Service to reconcile.

        Returns:
            The reconcile outcome.
        """
        key = request.key
        changes: list[str] = []

        try:
            service = self.service_source.get_service(request.namespace, request.name)
        except Exception as e:
            return self._finish(key, None, classify_exception(e, "get_service", key), changes)

        if service is None or service.metadata.deletion_timestamp is not None:
            logger.debug(f"Service {key} is gone, removing its port forwards")
            return self._finish(key, None, self._cleanup(key, changes), changes)

        if not self._in_scope(service):
            logger.debug(f"Service {key} is filtered out, skipping")
            return ReconcileResult()

        if service.spec is None or service.spec.type != LOAD_BALANCER:
            logger.debug(f"Service {key} is not of type {LOAD_BALANCER}, skipping")
            return ReconcileResult()

        load_balancer_ip = get_load_balancer_ip(service)
        if not load_balancer_ip:
            logger.debug(f"Service {key} has no load balancer IP yet, skipping")
            return ReconcileResult()

        annotations = service.metadata.annotations or {}
        if self.filter_annotation not in annotations:
            if not self.tracker.claims_for(key):
                return ReconcileResult()
            logger.info(f"Port annotation removed from service {key}, removing its port forwards")
            return self._finish(key, service, self._cleanup(key, changes), changes)

        return self._finish(key, service, self._sync(service, key, load_balancer_ip, changes), changes)

    def _in_scope(self, service: client.V1Service) -> bool:
        if self.namespace and service.metadata.namespace != self.namespace:
            return False
        return matches_label_selector(service.metadata.labels, self.label_selector)

    def _rule_key(self, rule: PortForwardRule) -> PortKey:
        if self._normalizer.is_valid(rule.protocol):
            return rule.dst_port, self._normalizer.normalize(rule.protocol)
        return rule.dst_port, rule.protocol

    def _router_call(self, operation: str, key: str, config: PortConfig, func, *args):
        try:
            return func(*args)
        except ControllerError:
            raise
        except Exception as e:
            context = RouterCallContext(operation, config.dst_port, config.protocol, config.name)
            raise classify_exception(e, operation, key, context) from e

    def _sync(
        self, service: client.V1Service, key: str, load_balancer_ip: str, changes: list[str]
    ) -> ControllerError | None:
        previous = set(self.tracker.claims_for(key))
        try:
            configs = self.builder.build(service, load_balancer_ip, self.filter_annotation)
        except Exception as e:
            return classify_exception(e, "build_port_configs", key)

        unclaimed = {config.port_key for config in configs} - set(self.tracker.claims_for(key))
        if unclaimed:
            ports = ", ".join(f"{port}/{protocol}" for port, protocol in sorted(unclaimed))
            return StateError(f"built port configs are not claimed: {ports}", operation="sync", resource=key)

        failures: list[ControllerError] = []
        for config in configs:
            try:
                change = self._apply(key, config)
            except ControllerError as e:
                logger.warning(f"Failed to sync port forward {config}: {e}")
                failures.append(e)
                continue
            if change:
                changes.append(change)

        desired = {config.port_key for config in configs}
        for port, protocol in sorted(previous - desired):
            try:
                change = self._remove_stale(key, port, protocol, load_balancer_ip)
            except ControllerError as e:
                logger.warning(f"Failed to remove stale port forward {port}/{protocol} of {key}: {e}")
                failures.append(e)
                continue
            self.tracker.release_port(port, protocol, key)
            if change:
                changes.append(change)

        if failures:
            return aggregate_failures(failures)
        return None

    def _apply(self, key: str, config: PortConfig) -> str | None:
        rule, exists = self._router_call(
            "check_port", key, config, self.router.check_port, config.dst_port, config.protocol
        )
        if not exists:
            self._router_call("add_port", key, config, self.router.add_port, config)
            logger.info(f"Added port forward {config}")
            return f"added {config.dst_port}/{config.protocol}"

        differences = rule.differs_from(config)
        if differences:
            self._router_call("update_port", key, config, self.router.update_port, config.dst_port, config)
            logger.info(f"Updated port forward {config} ({', '.join(differences)} changed)")
            return f"updated {config.dst_port}/{config.protocol}"

        logger.debug(f"Port forward {config} is up to date")
        return None

    def _remove_stale(self, key: str, port: int, protocol: str, load_balancer_ip: str) -> str | None:
        lookup = PortConfig(name=key, dst_port=port, fwd_port=port, dst_ip=load_balancer_ip, protocol=protocol)
        rule, exists = self._router_call("check_port", key, lookup, self.router.check_port, port, protocol)
        # A compatible rule of another protocol answers the lookup after a protocol change
        if not exists or self._rule_key(rule) != (port, protocol):
            return None

        self._router_call("remove_port", key, lookup, self.router.remove_port, rule.to_port_config())
        logger.info(f"Removed stale port forward {rule.name} on port {port}/{protocol}")
        return f"removed {port}/{protocol}"

    def _cleanup(self, key: str, changes: list[str]) -> ControllerError | None:
        """Remove every router rule owned by a service key and release its claims."""
        claims = set(self.tracker.claims_for(key))
        try:
            rules = self.router.list_all_port_forwards()
        except Exception as e:
            return classify_exception(e, "list_port_forwards", key)

        failures: list[ControllerError] = []
        for rule in rules:
            if self._rule_key(rule) not in claims and not rule_belongs_to_service(rule.name, key):
                continue
            config = rule.to_port_config()
            try:
                self._router_call("remove_port", key, config, self.router.remove_port, config)
            except ControllerError as e:
                logger.warning(f"Failed to remove port forward {rule.name} on port {rule.dst_port}: {e}")
                failures.append(e)
                continue
            logger.info(f"Removed port forward {rule.name} on port {rule.dst_port}/{rule.protocol}")
            changes.append(f"removed {rule.dst_port}/{rule.protocol}")

        self.tracker.release(key)

        if failures:
            return aggregate_failures(failures)
        return None

    def _finish(
        self, key: str, service: client.V1Service | None, error: ControllerError | None, changes: list[str]
    ) -> ReconcileResult:
        if error is None:
            self.error_filter.reset(key)
            if changes:
                logger.info(f"Reconciled service {key}: {', '.join(changes)}")
                if service is not None and self.event_publisher is not None:
                    self.event_publisher.publish_synced(service, f"Port forwards synced: {', '.join(changes)}")
            return ReconcileResult(changes=changes)

        if is_transient(error):
            logger.warning(f"Failed to reconcile service {key}, retrying in {self.retry_delay}s: {error}")
            return ReconcileResult(requeue_after=self.retry_delay, error=error, changes=changes)

        if self.error_filter.should_log(key, error.message):
            logger.error(f"Failed to reconcile service {key}: {error.detailed_message()}")
            if service is not None and self.event_publisher is not None:
                self.event_publisher.publish_failed(service, error.message)
        else:
            logger.debug(f"Failed to reconcile service {key} again: {error}")
        return ReconcileResult(error=error, changes=changes)
