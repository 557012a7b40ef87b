# Copyright (c) Microsoft. All rights reserved.

from collections.abc import Generator

import pytest
from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from agent_workflows.observability import OBSERVABILITY_SETTINGS

_EXPORTER = InMemorySpanExporter()


@pytest.fixture(scope="session", autouse=True)
def tracer_provider() -> TracerProvider:
    """Install one SDK tracer provider for the whole session."""
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(_EXPORTER))
    trace.set_tracer_provider(provider)
    return provider


@pytest.fixture
def enable_sensitive_data(request: pytest.FixtureRequest) -> bool:
    return getattr(request, "param", False)


@pytest.fixture
def span_exporter(
    monkeypatch: pytest.MonkeyPatch, enable_sensitive_data: bool
) -> Generator[InMemorySpanExporter, None, None]:
    """Enable tracing and collect finished spans in memory."""
    monkeypatch.setattr(OBSERVABILITY_SETTINGS, "enable_otel", True)
    monkeypatch.setattr(OBSERVABILITY_SETTINGS, "enable_sensitive_data", enable_sensitive_data)
    _EXPORTER.clear()
    yield _EXPORTER
    _EXPORTER.clear()
