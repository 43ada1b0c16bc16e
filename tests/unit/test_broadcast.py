"""Unit tests for broadcast file parsing."""

from pathlib import Path

import pytest

from forge_deployments.broadcast import load_broadcast_file, parse_quantity
from forge_deployments.exceptions import BroadcastParseError

SENDER = "0x00000000000000000000000000000000000000aa"
TARGET = "0x00000000000000000000000000000000000000bb"
TX_HASH = "0x" + "ab" * 32


class TestParseQuantity:
    """Test the parse_quantity function."""

    def test_hex_and_decimal(self):
        """Test hex strings, decimal strings and ints."""
        assert parse_quantity("0x2a") == 42
        assert parse_quantity("42") == 42
        assert parse_quantity(42) == 42

    def test_missing_is_zero(self):
        """Test that None and "" parse to zero."""
        assert parse_quantity(None) == 0
        assert parse_quantity("") == 0


class TestLoadBroadcastFile:
    """Test the load_broadcast_file function."""

    def test_loads_transactions_and_receipts(self, broadcast_factory):
        """Test a well-formed broadcast file."""
        path = broadcast_factory.write(
            [broadcast_factory.entry(TX_HASH, SENDER, TARGET, "0x1234", "Counter")],
            [broadcast_factory.receipt(TX_HASH.upper().replace("0X", "0x"), 42, gas_used=90000)],
            chain=11155111,
        )

        broadcast = load_broadcast_file(path)

        assert broadcast.chain == 11155111
        assert broadcast.path == path
        tx = broadcast.transactions[0]
        assert tx.hash == TX_HASH
        assert tx.sender == SENDER
        assert tx.to == TARGET
        assert tx.data == "0x1234"
        assert tx.contract_name == "Counter"

        receipt = broadcast.receipt_for(TX_HASH)
        assert receipt.block_number == 42
        assert receipt.gas_used == 90000
        assert receipt.succeeded

    def test_failed_receipt(self, broadcast_factory):
        """Test that status 0x0 is a failed receipt."""
        path = broadcast_factory.write([], [broadcast_factory.receipt(TX_HASH, 1, status="0x0")])

        assert not load_broadcast_file(path).receipt_for(TX_HASH).succeeded

    def test_unknown_receipt(self, broadcast_factory):
        """Test that a hash without receipt returns None."""
        path = broadcast_factory.write([], [])

        assert load_broadcast_file(path).receipt_for(TX_HASH) is None

    def test_invalid_json_raises(self, tmp_path: Path):
        """Test that a corrupt file raises BroadcastParseError."""
        path = tmp_path / "run-latest.json"
        path.write_text("{ invalid json")

        with pytest.raises(BroadcastParseError):
            load_broadcast_file(path)

    def test_non_object_raises(self, tmp_path: Path):
        """Test that a JSON array raises BroadcastParseError."""
        path = tmp_path / "run-latest.json"
        path.write_text("[]")

        with pytest.raises(BroadcastParseError):
            load_broadcast_file(path)

    @pytest.mark.parametrize("data", ["0xabc", "0xzz12"])
    def test_invalid_calldata_raises(self, broadcast_factory, data: str):
        """Test that odd-length or non-hex input raises BroadcastParseError."""
        path = broadcast_factory.write([broadcast_factory.entry(TX_HASH, SENDER, TARGET, data)], [])

        with pytest.raises(BroadcastParseError):
            load_broadcast_file(path)

    def test_missing_file_raises(self, tmp_path: Path):
        """Test that a missing file raises BroadcastParseError."""
        with pytest.raises(BroadcastParseError):
            load_broadcast_file(tmp_path / "missing.json")
