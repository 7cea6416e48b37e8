"""Custom handler registry.

Handlers are registered under a string identifier and looked up by custom
and function nodes when they execute. A registry is normally owned by one
engine; default_registry() offers an opt-in process-wide instance.
"""

import logging
import threading
from typing import Callable, Dict, Iterator, List, Optional

logger = logging.getLogger(__name__)


class HandlerRegistry:
    """Registry mapping handler identifiers to handlers.

    Lookups read a plain dict and need no locking; registration takes a lock
    and is expected to happen before concurrent evaluation begins.

    Attributes:
        _handlers: Dictionary mapping handler ids to callables
    """

    def __init__(self, handlers: Optional[Dict[str, Callable]] = None):
        """Initialize the registry.

        Args:
            handlers: Optional initial ``{handler_id: handler}`` mapping.
        """
        self._handlers: Dict[str, Callable] = {}
        self._lock = threading.Lock()
        for handler_id, handler in (handlers or {}).items():
            self.register(handler_id, handler)
        logger.debug("Initialized HandlerRegistry")

    def register(self, handler_id: str, handler: Callable) -> None:
        """Register a handler.

        Args:
            handler_id: Identifier referenced by node content.
            handler: Sync or async callable taking a HandlerRequest.

        Raises:
            TypeError: If handler is not callable.
            ValueError: If handler_id is empty.
        """
        if not handler_id:
            raise ValueError("handler_id must be a non-empty string")
        if not callable(handler):
            raise TypeError(f"Handler '{handler_id}' is not callable")

        with self._lock:
            if handler_id in self._handlers:
                logger.warning(f"Handler '{handler_id}' already registered, overwriting")
            handlers = dict(self._handlers)
            handlers[handler_id] = handler
            self._handlers = handlers
        logger.info(f"Registered handler: {handler_id}")

    def unregister(self, handler_id: str) -> bool:
        """Remove a handler.

        Returns:
            True if a handler was removed.
        """
        with self._lock:
            if handler_id not in self._handlers:
                return False
            handlers = dict(self._handlers)
            del handlers[handler_id]
            self._handlers = handlers
        logger.info(f"Unregistered handler: {handler_id}")
        return True

    def lookup(self, handler_id: str) -> Optional[Callable]:
        """Get a registered handler.

        Returns:
            Handler or None if not found
        """
        return self._handlers.get(handler_id)

    def handler_ids(self) -> List[str]:
        return sorted(self._handlers)

    def __contains__(self, handler_id: object) -> bool:
        return handler_id in self._handlers

    def __iter__(self) -> Iterator[str]:
        return iter(self.handler_ids())

    def __len__(self) -> int:
        return len(self._handlers)

    def __repr__(self) -> str:
        return f"HandlerRegistry(handlers={self.handler_ids()})"


_default_registry: Optional[HandlerRegistry] = None
_default_lock = threading.Lock()


def default_registry() -> HandlerRegistry:
    """Process-wide registry, created on first use.

    Engines never consult it implicitly; pass it to DecisionEngine to use it.
    """
    global _default_registry
    with _default_lock:
        if _default_registry is None:
            _default_registry = HandlerRegistry()
        return _default_registry


def register_handler(
    handler_id: str, registry: Optional[HandlerRegistry] = None
) -> Callable[[Callable], Callable]:
    """Decorator registering a function as a handler.

    Args:
        handler_id: Identifier to register under.
        registry: Target registry (default: the process-wide registry).

    Examples:
        >>> @register_handler("scoring.v1")
        ... async def score(request):
        ...     return {"score": request.input["amount"] * 0.1}
    """

    def decorator(func: Callable) -> Callable:
        target = registry if registry is not None else default_registry()
        target.register(handler_id, func)
        return func

    return decorator
