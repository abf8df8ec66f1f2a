"""Tests for the OpenTelemetry tracing setup."""

import pytest
from opentelemetry.sdk.trace import TracerProvider

from cleanspot import __version__
from cleanspot.infrastructure.observability import tracing


class TestTracing:
    def test_configure_tracing_builds_tagged_provider(self, monkeypatch) -> None:
        """The provider carries the service name resource."""
        installed: list[TracerProvider] = []
        # The global provider can only be set once per process
        monkeypatch.setattr(tracing.trace, "set_tracer_provider", installed.append)

        provider = tracing.configure_tracing(
            service_name="cleanspot-test", environment="ci", enable_console_exporter=True
        )

        assert installed == [provider]
        attributes = provider.resource.attributes
        assert attributes["service.name"] == "cleanspot-test"
        assert attributes["service.version"] == __version__
        assert attributes["deployment.environment"] == "ci"

    def test_unconfigured_tracer_is_a_no_op(self) -> None:
        """Spans work even when tracing was never configured."""
        tracer = tracing.get_tracer("cleanspot.tests")
        with tracer.start_as_current_span("unit-of-work") as span:
            span.set_attribute("cleanspot.job_id", "job-1")

    @pytest.mark.asyncio
    async def test_spans_work_inside_async_code(self) -> None:
        """Spans nest across awaits."""
        tracer = tracing.get_tracer("cleanspot.tests")
        with tracer.start_as_current_span("async-unit") as span:
            assert span is not None
