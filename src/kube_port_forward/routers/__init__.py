"""Routers package.

This package contains the router interface, the router-side data types and
the loader for router backends.
"""

import importlib
import logging

from kube_port_forward.errors import ConfigurationError
from kube_port_forward.routers.base import PortConfig, PortForwardRule, Router
from kube_port_forward.routers.protocol import ProtocolNormalizer, normalize_protocol

logger = logging.getLogger(__name__)


def load_router(factory_path: str) -> Router:
    """Instantiate a router backend from a "module:attribute" path.

    Args:
        factory_path: Import path of a Router subclass or a zero-argument factory.

    Returns:
        The router instance.

    Raises:
        ConfigurationError: If the path cannot be imported or does not produce a Router.
    """
    module_name, sep, attribute = factory_path.partition(":")
    if not sep or not module_name or not attribute:
        raise ConfigurationError(
            f"router factory '{factory_path}' must have the form 'module:attribute'",
            operation="load_router",
        )

    try:
        module = importlib.import_module(module_name)
        factory = getattr(module, attribute)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(
            f"cannot import router factory '{factory_path}': {e}", operation="load_router", cause=e
        ) from e

    router = factory()
    if not isinstance(router, Router):
        raise ConfigurationError(
            f"router factory '{factory_path}' returned {type(router).__name__}, not a Router",
            operation="load_router",
        )

    logger.info(f"Using router backend {type(router).__name__}")
    return router


__all__ = [
    "PortConfig",
    "PortForwardRule",
    "ProtocolNormalizer",
    "Router",
    "load_router",
    "normalize_protocol",
]
