"""Tests for structured logging and settlement context."""
import json
import logging
import sys
from contextlib import contextmanager

from remit_core.ledger import InMemorySettlementStore, SettlementLedgerWriter
from remit_core.logging_config import (
    SettlementContextFilter,
    StructuredFormatter,
    configure_logging,
    get_transaction_id,
    settlement_context,
)


def _record(msg="hello", **extra):
    record = logging.LogRecord("remit_core.test", logging.INFO, __file__, 10, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestSettlementContext:
    def test_context_is_scoped(self):
        assert get_transaction_id() is None
        with settlement_context("tx-1", "op-1"):
            assert get_transaction_id() == "tx-1"
            with settlement_context("tx-2"):
                assert get_transaction_id() == "tx-2"
            assert get_transaction_id() == "tx-1"
        assert get_transaction_id() is None

    def test_filter_adds_context(self):
        record = _record()
        with settlement_context("tx-1", "op-1"):
            assert SettlementContextFilter().filter(record)
        assert record.transaction_id == "tx-1"
        assert record.operator_account_id == "op-1"


class TestStructuredFormatter:
    def test_json_output(self):
        record = _record("Credited %s", transaction_id="tx-9", operator_account_id=None, amount="5")
        record.args = ("5 USDT",)

        data = json.loads(StructuredFormatter().format(record))

        assert data["message"] == "Credited 5 USDT"
        assert data["level"] == "INFO"
        assert data["logger"] == "remit_core.test"
        assert data["transaction_id"] == "tx-9"
        assert "operator_account_id" not in data
        assert data["amount"] == "5"

    def test_exception_included(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())

        data = json.loads(StructuredFormatter().format(record))

        assert "ValueError: boom" in data["exception"]


@contextmanager
def root_logging_restored():
    """Undo configure_logging's changes to the root logger within one test phase."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    try:
        yield
    finally:
        for handler in root.handlers[:]:
            if handler not in handlers:
                root.removeHandler(handler)
                handler.close()
        for handler in handlers:
            if handler not in root.handlers:
                root.addHandler(handler)
        root.setLevel(level)


class TestConfigureLogging:
    def test_json_handler(self, capsys):
        with root_logging_restored():
            configure_logging("DEBUG", json_format=True)
            with settlement_context("tx-7", "op-7"):
                logging.getLogger("remit_core.test").info("settled")

        line = capsys.readouterr().out.strip().splitlines()[-1]
        data = json.loads(line)
        assert data["message"] == "settled"
        assert data["transaction_id"] == "tx-7"
        assert data["operator_account_id"] == "op-7"

    def test_plain_handler_and_file(self, tmp_path, capsys):
        log_file = tmp_path / "remit.log"
        with root_logging_restored():
            configure_logging("warning", json_format=False, log_file=str(log_file))
            assert logging.getLogger().level == logging.WARNING
            with settlement_context("tx-8"):
                logging.getLogger("remit_core.test").warning("rate feed late")

        assert "[tx-8] rate feed late" in capsys.readouterr().out
        assert "rate feed late" in log_file.read_text()


class TestSettlementLogs:
    async def test_settle_logs_outcome(self, quote, caplog):
        writer = SettlementLedgerWriter(InMemorySettlementStore())

        with caplog.at_level(logging.INFO, logger="remit_core.ledger.writer"):
            await writer.settle(quote(5000), "tx-log")
            await writer.settle(quote(5000), "tx-log")

        messages = [r.getMessage() for r in caplog.records]
        assert any(m.startswith("Credited 5") for m in messages)
        assert "Transaction already settled; no credit applied" in messages
