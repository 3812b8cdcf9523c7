"""Optional OpenTelemetry export of gate spans to a local SQLite table."""

import json
import sqlite3
from pathlib import Path

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor, SpanExporter, SpanExportResult

from clash.config import DATA_DIR

TRACE_DB = DATA_DIR / "clash.db"


class SQLiteSpanExporter(SpanExporter):
    def __init__(self, db_path: str = str(TRACE_DB)):
        self.db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS spans (
                    id TEXT PRIMARY KEY,
                    trace_id TEXT NOT NULL,
                    parent_id TEXT,
                    name TEXT NOT NULL,
                    start_time INTEGER NOT NULL,
                    end_time INTEGER,
                    duration_ms REAL,
                    status_code TEXT,
                    attributes TEXT
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_spans_trace ON spans(trace_id)")

    def export(self, spans: list[ReadableSpan]) -> SpanExportResult:
        with sqlite3.connect(self.db_path) as conn:
            for span in spans:
                duration_ms = None
                if span.end_time and span.start_time:
                    duration_ms = (span.end_time - span.start_time) / 1_000_000
                conn.execute(
                    "INSERT OR REPLACE INTO spans VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        format(span.context.span_id, "016x"),
                        format(span.context.trace_id, "032x"),
                        format(span.parent.span_id, "016x") if span.parent else None,
                        span.name,
                        span.start_time,
                        span.end_time,
                        duration_ms,
                        span.status.status_code.name if span.status else "UNSET",
                        json.dumps(dict(span.attributes) if span.attributes else {}),
                    ),
                )
        return SpanExportResult.SUCCESS

    def shutdown(self):
        pass


def setup_tracing(version: str, db_path: str = str(TRACE_DB)) -> TracerProvider:
    """Install a global TracerProvider that writes spans synchronously to *db_path*.

    Synchronous export: the CLI process exits right after the run, so a
    batching processor would drop spans.
    """
    provider = TracerProvider(resource=Resource.create({
        "service.name": "clash",
        "service.version": version,
    }))
    provider.add_span_processor(SimpleSpanProcessor(SQLiteSpanExporter(db_path)))
    trace.set_tracer_provider(provider)
    return provider
