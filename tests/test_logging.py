# ============================================================================
# STRUCTURED LOGGING TESTS
# ============================================================================
# STATUS: Tests - Log context propagation and formatters
# PURPOSE: Verify context nesting, task isolation and JSON output
# CREATED: 19 OCT 2026
# ============================================================================
"""
Structured Logging Tests

Run with:
    pytest tests/test_logging.py -v
"""

import asyncio
import json
import logging

from busbridge.core.logging import (
    ComponentType,
    HumanFormatter,
    StructuredFormatter,
    get_current_context,
    get_logger,
    log_context,
)


def make_record(message: str = "hello", **attrs) -> logging.LogRecord:
    record = logging.LogRecord(
        name="busbridge.test",
        level=logging.INFO,
        pathname=__file__,
        lineno=10,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in attrs.items():
        setattr(record, key, value)
    return record


class TestLogContext:

    def test_nested_context_inherits_and_restores(self):
        with log_context(entity="orders", worker=1):
            with log_context(lock_token="abc"):
                inner = get_current_context()
                assert inner.entity == "orders"
                assert inner.worker == 1
                assert inner.lock_token == "abc"
            assert get_current_context().lock_token is None

        assert get_current_context().entity is None

    def test_extra_fields_merge(self):
        with log_context(extra={"tenant": "contoso"}):
            with log_context(extra={"region": "eu"}):
                assert get_current_context().to_dict() == {"tenant": "contoso", "region": "eu"}

    def test_tasks_do_not_share_context(self):
        seen = {}

        async def worker(index: int):
            with log_context(worker=index):
                await asyncio.sleep(0.01)
                seen[index] = get_current_context().worker

        async def run_test():
            await asyncio.gather(*(worker(i) for i in range(3)))

        asyncio.run(run_test())

        assert seen == {0: 0, 1: 1, 2: 2}


class TestFormatters:

    def test_structured_output_includes_context(self):
        formatter = StructuredFormatter()

        with log_context(entity="orders", subscription="billing", delivery_count=2):
            output = json.loads(formatter.format(make_record("Message completed")))

        assert output["message"] == "Message completed"
        assert output["level"] == "INFO"
        assert output["context"] == {"entity": "orders", "subscription": "billing", "delivery_count": 2}

    def test_structured_output_without_context(self):
        output = json.loads(StructuredFormatter(include_context=False).format(make_record()))

        assert "context" not in output
        assert output["source"]["line"] == 10

    def test_adapter_data_emitted(self):
        output = json.loads(StructuredFormatter().format(make_record(extra={"entity": "orders"})))

        assert output["data"] == {"entity": "orders"}

    def test_human_output(self):
        with log_context(entity="orders", worker=3):
            line = HumanFormatter().format(make_record("Pulling"))

        assert "busbridge.test [entity=orders, worker=3]: Pulling" in line


class TestContextLogger:

    def test_context_copied_into_record(self, caplog):
        logger = get_logger("busbridge.test.adapter")

        with caplog.at_level(logging.INFO, logger="busbridge.test.adapter"):
            with log_context(entity="orders"):
                logger.info("Sender created", extra={"attempt": 1})

        [record] = caplog.records
        assert record.extra == {"attempt": 1, "entity": "orders"}

    def test_component_tagged_on_every_record(self, caplog):
        logger = get_logger("busbridge.test.component", ComponentType.SENDER)

        with caplog.at_level(logging.INFO, logger="busbridge.test.component"):
            logger.info("Batch sent")

        [record] = caplog.records
        assert record.extra == {"component": "sender"}

    def test_call_extra_overrides_context(self, caplog):
        logger = get_logger("busbridge.test.precedence", ComponentType.RECEIVER)

        with caplog.at_level(logging.INFO, logger="busbridge.test.precedence"):
            with log_context(entity="orders", worker=1):
                logger.info("Pulled", extra={"worker": 3})

        [record] = caplog.records
        assert record.extra == {"component": "receiver", "entity": "orders", "worker": 3}

    def test_context_component_overrides_adapter(self, caplog):
        logger = get_logger("busbridge.test.override", ComponentType.FACTORY)

        with caplog.at_level(logging.INFO, logger="busbridge.test.override"):
            with log_context(component="provisioner"):
                logger.info("Creating queue")

        [record] = caplog.records
        assert record.extra["component"] == "provisioner"
