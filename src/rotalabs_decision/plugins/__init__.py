"""Handler registry and plugins for rotalabs-decision.

This module provides the extension point used by custom and function nodes,
plus plugins that wrap handlers with retries and metrics.
"""

from rotalabs_decision.plugins.builtin import (
    HandlerPlugin,
    HandlerRequest,
    MetricsPlugin,
    PluginFactory,
    RetryPlugin,
    invoke_handler,
)
from rotalabs_decision.plugins.registry import (
    HandlerRegistry,
    default_registry,
    register_handler,
)

__all__ = [
    "HandlerRegistry",
    "HandlerRequest",
    "HandlerPlugin",
    "RetryPlugin",
    "MetricsPlugin",
    "PluginFactory",
    "default_registry",
    "register_handler",
    "invoke_handler",
]
