# Copyright (c) 2026 TenantBootstrap Contributors. All Rights Reserved.
"""Unit tests for the structured JSON log formatter."""

import json
import logging

from tenant_bootstrap.core.logging import StructuredFormatter


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="bootstrap.healer", level=logging.WARNING, pathname=__file__, lineno=1,
        msg="Healed %s", args=("p1",), exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredFormatter:
    def test_basic_fields(self):
        entry = json.loads(StructuredFormatter().format(_record()))
        assert entry["level"] == "WARNING"
        assert entry["module"] == "bootstrap.healer"
        assert entry["message"] == "Healed p1"

    def test_identity_context(self):
        entry = json.loads(StructuredFormatter().format(
            _record(trace_id="t-1", principal_id="p1", tenant_id="biz")
        ))
        assert entry["trace_id"] == "t-1"
        assert entry["principal_id"] == "p1"
        assert entry["tenant_id"] == "biz"

    def test_empty_context_omitted(self):
        entry = json.loads(StructuredFormatter().format(_record(tenant_id=None)))
        assert "tenant_id" not in entry

    def test_bootstrap_error_code_attached(self):
        import sys

        from tenant_bootstrap.protocols.errors import SchemaError

        try:
            raise SchemaError("profiles table missing")
        except SchemaError:
            record = _record()
            record.exc_info = sys.exc_info()

        entry = json.loads(StructuredFormatter().format(record))
        assert entry["error_code"] == "SCHEMA_ERROR"
        assert "profiles table missing" in entry["exception"]
