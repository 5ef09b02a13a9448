from __future__ import annotations

import logging

from jobpipe.core.config import Settings
from jobpipe.core.telemetry import _parse_headers, configure_logging, setup_telemetry, shutdown_telemetry


def test_disabled_telemetry_installs_nothing() -> None:
    runtime = setup_telemetry(Settings(otel_enabled=False), component="worker")

    assert runtime.enabled is False
    assert runtime.component == "worker"
    shutdown_telemetry(runtime)


def test_resource_marks_component_and_storage_backend(monkeypatch) -> None:
    for name in ("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT", "OTEL_EXPORTER_OTLP_ENDPOINT"):
        monkeypatch.delenv(name, raising=False)

    runtime = setup_telemetry(
        Settings(otel_enabled=True, storage_backend="memory", environment="test"),
        component="worker",
    )
    try:
        assert runtime.provider is not None
        attributes = runtime.provider.resource.attributes
        assert attributes["service.namespace"] == "jobpipe"
        assert attributes["jobpipe.component"] == "worker"
        assert attributes["jobpipe.storage_backend"] == "memory"
        assert attributes["deployment.environment"] == "test"
    finally:
        shutdown_telemetry(runtime)

    assert runtime.enabled is False


def test_log_records_carry_zero_ids_outside_a_span() -> None:
    configure_logging()

    record = logging.getLogRecordFactory()("jobpipe", logging.INFO, __file__, 1, "msg", (), None)

    assert record.trace_id == "0" * 32
    assert record.span_id == "0" * 16


def test_header_parsing_skips_malformed_pairs() -> None:
    assert _parse_headers("api-key = abc, broken, =x,team=pipeline") == {"api-key": "abc", "team": "pipeline"}
    assert _parse_headers(None) == {}
