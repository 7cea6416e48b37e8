"""Built-in handler plugins for rotalabs-decision.

Custom and function nodes delegate to handlers looked up in a
HandlerRegistry. A handler is any callable, sync or async, that takes a
HandlerRequest and returns a JSON-compatible value. Plugins wrap a handler
and are handlers themselves, so a wrapped handler is registered like any
other.
"""

import asyncio
import inspect
import logging
import time
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from rotalabs_decision.core.errors import DecisionError

logger = logging.getLogger(__name__)


@dataclass
class HandlerRequest:
    """What a handler receives when its node executes.

    Attributes:
        node_id: Id of the executing node.
        node_name: Display name of the executing node.
        handler_id: Identifier the handler was looked up by.
        input: Deep copy of the node's merged input; the handler owns it.
        config: Static node configuration (custom nodes).
        source: Script source (function nodes).
    """

    node_id: str
    node_name: str
    handler_id: str
    input: Any
    config: Dict[str, Any] = field(default_factory=dict)
    source: Optional[str] = None


async def invoke_handler(handler: Callable, request: HandlerRequest) -> Any:
    """Call a handler and await its result if it is awaitable."""
    result = handler(request)
    if inspect.isawaitable(result):
        result = await result
    return result


class HandlerPlugin(ABC):
    """Base class for handler wrappers.

    Subclasses implement execute(); calling the plugin runs it.
    """

    def __init__(self, wrapped_handler: Callable):
        self.wrapped_handler = wrapped_handler

    @property
    @abstractmethod
    def name(self) -> str:
        """Name used to select the plugin in PluginFactory."""

    @property
    def version(self) -> str:
        return "1.0.0"

    @abstractmethod
    async def execute(self, request: HandlerRequest) -> Any:
        """Run the wrapped handler for one request."""

    async def __call__(self, request: HandlerRequest) -> Any:
        return await self.execute(request)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.wrapped_handler!r})"


class RetryPlugin(HandlerPlugin):
    """Re-invokes a failing handler with exponential backoff.

    Only exceptions matching ``retry_on`` are retried. Decision errors
    (a missing handler, a nested evaluation failure) are deterministic and
    propagate on the first attempt, as does cancellation.

    Attributes:
        max_retries: Attempts after the first one.
        delay_ms: Wait before the first retry; doubled for each later one.
        retry_on: Exception types that trigger a retry.
    """

    def __init__(
        self,
        wrapped_handler: Callable,
        max_retries: int = 3,
        delay_ms: float = 100,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    ):
        super().__init__(wrapped_handler)
        if max_retries < 0:
            raise ValueError(f"max_retries must not be negative, got {max_retries}")
        if delay_ms < 0:
            raise ValueError(f"delay_ms must not be negative, got {delay_ms}")
        self.max_retries = max_retries
        self.delay_ms = delay_ms
        self.retry_on = retry_on

    @property
    def name(self) -> str:
        return "retry"

    def backoff_seconds(self, retry: int) -> float:
        """Delay before retry number ``retry`` (0-based)."""
        return self.delay_ms * (2 ** retry) / 1000.0

    async def execute(self, request: HandlerRequest) -> Any:
        attempts = self.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                result = await invoke_handler(self.wrapped_handler, request)
            except DecisionError:
                raise
            except self.retry_on as e:
                if attempt == attempts:
                    logger.error(
                        f"Handler '{request.handler_id}' on node {request.node_id} "
                        f"gave up after {attempts} attempts: {type(e).__name__}: {e}"
                    )
                    raise
                pause = self.backoff_seconds(attempt - 1)
                logger.warning(
                    f"Handler '{request.handler_id}' on node {request.node_id} failed "
                    f"(attempt {attempt}/{attempts}), retrying in {pause:.3f}s: {e}"
                )
                await asyncio.sleep(pause)
                continue

            if attempt > 1:
                logger.info(
                    f"Handler '{request.handler_id}' on node {request.node_id} "
                    f"recovered on attempt {attempt}"
                )
            return result


class MetricsPlugin(HandlerPlugin):
    """Counts calls, failures and time spent in a handler.

    A handler registered once may serve many nodes, so counts are also kept
    per node id.

    Attributes:
        count: Calls made.
        errors: Calls that raised.
        total_time_ms: Wall time spent in the handler.
        by_node: Node id to ``{"count", "errors"}``.
    """

    def __init__(self, wrapped_handler: Callable):
        super().__init__(wrapped_handler)
        self.count = 0
        self.errors = 0
        self.total_time_ms = 0.0
        self.by_node: Dict[str, Dict[str, int]] = defaultdict(lambda: {"count": 0, "errors": 0})

    @property
    def name(self) -> str:
        return "metrics"

    @property
    def success_rate(self) -> float:
        """Percentage of calls that returned normally (0 before any call)."""
        if not self.count:
            return 0.0
        return 100.0 * (self.count - self.errors) / self.count

    @property
    def avg_time_ms(self) -> float:
        return self.total_time_ms / self.count if self.count else 0.0

    @property
    def metrics(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "errors": self.errors,
            "total_time_ms": self.total_time_ms,
            "avg_time_ms": self.avg_time_ms,
            "success_rate": self.success_rate,
            "by_node": {node_id: dict(stats) for node_id, stats in self.by_node.items()},
        }

    def reset(self) -> None:
        self.count = 0
        self.errors = 0
        self.total_time_ms = 0.0
        self.by_node.clear()

    async def execute(self, request: HandlerRequest) -> Any:
        node_stats = self.by_node[request.node_id]
        self.count += 1
        node_stats["count"] += 1
        started = time.perf_counter()
        try:
            return await invoke_handler(self.wrapped_handler, request)
        except Exception:
            self.errors += 1
            node_stats["errors"] += 1
            raise
        finally:
            elapsed_ms = (time.perf_counter() - started) * 1000
            self.total_time_ms += elapsed_ms
            logger.debug(
                f"Handler '{request.handler_id}' on node {request.node_id}: {elapsed_ms:.2f}ms "
                f"({self.errors}/{self.count} failed)"
            )


PLUGINS: Dict[str, Type[HandlerPlugin]] = {
    "retry": RetryPlugin,
    "metrics": MetricsPlugin,
}


class PluginFactory:
    """Builds plugin chains by name."""

    @staticmethod
    def wrap_handler(
        handler: Callable,
        plugins: List[str],
        config: Optional[Dict[str, Dict[str, Any]]] = None,
    ) -> Callable:
        """Wrap ``handler`` in the named plugins.

        The first name becomes the outermost wrapper, so
        ``["metrics", "retry"]`` counts one call per request however many
        retries happen underneath.

        Args:
            handler: Handler to wrap.
            plugins: Plugin names, outermost first.
            config: Keyword arguments per plugin name, e.g.
                ``{"retry": {"max_retries": 5, "delay_ms": 50}}``.

        Returns:
            The wrapped handler (``handler`` itself when no plugins are named).

        Raises:
            ValueError: For a name missing from PLUGINS.
        """
        unknown = [name for name in plugins if name not in PLUGINS]
        if unknown:
            raise ValueError(f"Unknown plugin: {', '.join(unknown)}")

        config = config or {}
        wrapped = handler
        for plugin_name in reversed(plugins):
            wrapped = PLUGINS[plugin_name](wrapped, **config.get(plugin_name, {}))

        if plugins:
            logger.debug(f"Wrapped handler in plugins: {' -> '.join(plugins)}")
        return wrapped
