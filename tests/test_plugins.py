"""Tests for handler plugins and the handler registry in rotalabs-decision.

Tests cover:
- HandlerRegistry registration, lookup and removal
- register_handler decorator and the process-wide registry
- invoke_handler with sync and async handlers
- RetryPlugin retry logic
- MetricsPlugin metrics collection
- PluginFactory composition
"""

import pytest

from rotalabs_decision.core.errors import EvaluationError
from rotalabs_decision.plugins import (
    HandlerPlugin,
    HandlerRegistry,
    HandlerRequest,
    MetricsPlugin,
    PluginFactory,
    RetryPlugin,
    default_registry,
    invoke_handler,
    register_handler,
)


class TestHandlerRegistry:
    """Tests for HandlerRegistry."""

    def test_register_and_lookup(self, scale_handler):
        registry = HandlerRegistry()
        registry.register("scale", scale_handler)

        assert registry.lookup("scale") is scale_handler
        assert registry.lookup("missing") is None
        assert "scale" in registry
        assert len(registry) == 1

    def test_initial_handlers(self, scale_handler):
        registry = HandlerRegistry({"b": scale_handler, "a": scale_handler})

        assert registry.handler_ids() == ["a", "b"]
        assert list(registry) == ["a", "b"]

    def test_overwrite_warns(self, scale_handler, caplog):
        """Test that re-registering replaces the handler with a warning."""
        registry = HandlerRegistry({"scale": scale_handler})

        def replacement(request):
            return {}

        registry.register("scale", replacement)

        assert registry.lookup("scale") is replacement
        assert "already registered" in caplog.text

    def test_unregister(self, registry):
        assert registry.unregister("scale") is True
        assert registry.unregister("scale") is False
        assert len(registry) == 0

    def test_rejects_empty_id(self, scale_handler):
        with pytest.raises(ValueError, match="non-empty"):
            HandlerRegistry().register("", scale_handler)

    def test_rejects_non_callable(self):
        with pytest.raises(TypeError, match="not callable"):
            HandlerRegistry().register("bad", 42)

    def test_repr(self, registry):
        assert repr(registry) == "HandlerRegistry(handlers=['scale'])"


class TestRegisterHandler:
    """Tests for the register_handler decorator."""

    def test_decorator_registers(self):
        registry = HandlerRegistry()

        @register_handler("pricing.v1", registry=registry)
        async def price(request):
            return {"price": 10}

        assert registry.lookup("pricing.v1") is price

    def test_default_registry_is_shared(self):
        assert default_registry() is default_registry()

    def test_decorator_uses_default_registry(self):
        @register_handler("tests.default-registry")
        def handler(request):
            return {}

        try:
            assert default_registry().lookup("tests.default-registry") is handler
        finally:
            default_registry().unregister("tests.default-registry")


class TestInvokeHandler:
    """Tests for invoke_handler."""

    @pytest.mark.asyncio
    async def test_sync_handler(self, handler_request):
        result = await invoke_handler(lambda request: {"output": request.input["input"] + 1}, handler_request)

        assert result == {"output": 5}

    @pytest.mark.asyncio
    async def test_async_handler(self, scale_handler, handler_request):
        result = await invoke_handler(scale_handler, handler_request)

        assert result == {"output": 8}


class TestRetryPlugin:
    """Tests for RetryPlugin."""

    @pytest.mark.asyncio
    async def test_success_on_first_attempt(self, flaky_handler, handler_request):
        handler = flaky_handler(failures=0)
        plugin = RetryPlugin(handler, max_retries=3, delay_ms=0)

        result = await plugin(handler_request)

        assert result == {"ok": True}
        assert handler.calls["count"] == 1

    @pytest.mark.asyncio
    async def test_success_after_retries(self, flaky_handler, handler_request):
        """Test that transient failures are retried."""
        handler = flaky_handler(failures=2)
        plugin = RetryPlugin(handler, max_retries=3, delay_ms=0)

        result = await plugin.execute(handler_request)

        assert result == {"ok": True}
        assert handler.calls["count"] == 3

    @pytest.mark.asyncio
    async def test_exhausted_retries(self, flaky_handler, handler_request):
        handler = flaky_handler(failures=10)
        plugin = RetryPlugin(handler, max_retries=2, delay_ms=0)

        with pytest.raises(RuntimeError, match="failure 3"):
            await plugin(handler_request)
        assert handler.calls["count"] == 3

    def test_negative_retries(self, scale_handler):
        with pytest.raises(ValueError, match="max_retries"):
            RetryPlugin(scale_handler, max_retries=-1)

    @pytest.mark.asyncio
    async def test_decision_errors_not_retried(self, handler_request):
        calls = {"count": 0}

        def handler(request):
            calls["count"] += 1
            raise EvaluationError("deterministic failure")

        plugin = RetryPlugin(handler, max_retries=3, delay_ms=0)

        with pytest.raises(EvaluationError):
            await plugin(handler_request)
        assert calls["count"] == 1

    @pytest.mark.asyncio
    async def test_retry_on_filters_exceptions(self, flaky_handler, handler_request):
        handler = flaky_handler(failures=1)
        plugin = RetryPlugin(handler, max_retries=3, delay_ms=0, retry_on=(TimeoutError,))

        with pytest.raises(RuntimeError):
            await plugin(handler_request)
        assert handler.calls["count"] == 1

    def test_backoff(self, scale_handler):
        plugin = RetryPlugin(scale_handler, delay_ms=100)

        assert [plugin.backoff_seconds(i) for i in range(3)] == [0.1, 0.2, 0.4]

    def test_negative_delay(self, scale_handler):
        with pytest.raises(ValueError, match="delay_ms"):
            RetryPlugin(scale_handler, delay_ms=-1)

    def test_name_and_version(self, scale_handler):
        plugin = RetryPlugin(scale_handler)

        assert plugin.name == "retry"
        assert plugin.version == "1.0.0"
        assert isinstance(plugin, HandlerPlugin)


class TestMetricsPlugin:
    """Tests for MetricsPlugin."""

    @pytest.mark.asyncio
    async def test_collects_metrics(self, flaky_handler, handler_request):
        plugin = MetricsPlugin(flaky_handler(failures=1))

        with pytest.raises(RuntimeError):
            await plugin(handler_request)
        await plugin(handler_request)
        await plugin(handler_request)

        metrics = plugin.metrics
        assert metrics["count"] == 3
        assert metrics["errors"] == 1
        assert metrics["success_rate"] == pytest.approx(200 / 3)
        assert metrics["avg_time_ms"] >= 0

    def test_empty_metrics(self, scale_handler):
        plugin = MetricsPlugin(scale_handler)

        assert plugin.success_rate == 0.0
        assert plugin.avg_time_ms == 0.0
        assert plugin.name == "metrics"

    @pytest.mark.asyncio
    async def test_counts_per_node(self, scale_handler, handler_request):
        """Test that one handler serving several nodes is counted per node."""
        plugin = MetricsPlugin(scale_handler)
        other = HandlerRequest(node_id="custom-2", node_name="Other", handler_id="scale", input={"input": 1})

        await plugin(handler_request)
        await plugin(handler_request)
        await plugin(other)

        assert plugin.metrics["by_node"] == {
            "custom-1": {"count": 2, "errors": 0},
            "custom-2": {"count": 1, "errors": 0},
        }

        plugin.reset()
        assert plugin.count == 0
        assert plugin.metrics["by_node"] == {}


class TestPluginFactory:
    """Tests for PluginFactory."""

    def test_wrap_order(self, scale_handler):
        """Test that the first plugin is the outermost wrapper."""
        wrapped = PluginFactory.wrap_handler(
            scale_handler,
            ["metrics", "retry"],
            {"retry": {"max_retries": 5, "delay_ms": 10}},
        )

        assert isinstance(wrapped, MetricsPlugin)
        assert isinstance(wrapped.wrapped_handler, RetryPlugin)
        assert wrapped.wrapped_handler.max_retries == 5
        assert wrapped.wrapped_handler.wrapped_handler is scale_handler

    def test_no_plugins(self, scale_handler):
        assert PluginFactory.wrap_handler(scale_handler, []) is scale_handler

    def test_unknown_plugin(self, scale_handler):
        with pytest.raises(ValueError, match="Unknown plugin: cache"):
            PluginFactory.wrap_handler(scale_handler, ["cache"])

    @pytest.mark.asyncio
    async def test_wrapped_handler_runs(self, flaky_handler, handler_request):
        wrapped = PluginFactory.wrap_handler(
            flaky_handler(failures=1, result={"output": 1}),
            ["metrics", "retry"],
            {"retry": {"delay_ms": 0}},
        )

        assert await wrapped(handler_request) == {"output": 1}
        assert wrapped.metrics["errors"] == 0
