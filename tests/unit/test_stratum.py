"""
test_stratum.py - Unit tests for Stratum message decoding.

Focuses on the heterogeneous params array of mining.notify: type tagging
(bool before int), positional extraction, and rejection of malformed jobs.
"""

import json
import logging

import pytest

from coinbase_builder import SOLOHASH_COINBASE1, SOLOHASH_COINBASE2, notify_params
from poolcheck.stratum import (
    StratumError,
    StratumKind,
    StratumMessage,
    StratumValue,
    decode_stratum_message,
)


def _notify(params) -> str:
    return json.dumps({"id": None, "method": "mining.notify", "params": params})


# ── Value tagging ─────────────────────────────────────────────────────────

class TestStratumValue:

    def test_string(self):
        v = StratumValue.from_json("abc")
        assert v.kind is StratumKind.STRING
        assert v.string_value == "abc"
        assert v.int_value is None

    def test_bool_is_not_int(self):
        v = StratumValue.from_json(True)
        assert v.kind is StratumKind.BOOL
        assert v.bool_value is True
        assert v.int_value is None

    def test_false_is_bool(self):
        assert StratumValue.from_json(False).kind is StratumKind.BOOL

    def test_int(self):
        v = StratumValue.from_json(42)
        assert v.kind is StratumKind.INT
        assert v.int_value == 42
        assert v.bool_value is None

    def test_double(self):
        assert StratumValue.from_json(1.5).kind is StratumKind.DOUBLE

    def test_string_array(self):
        v = StratumValue.from_json(["aa", "bb"])
        assert v.kind is StratumKind.ARRAY
        assert v.array_value == ["aa", "bb"]

    def test_empty_array(self):
        assert StratumValue.from_json([]).array_value == []

    def test_mixed_array_is_null(self):
        assert StratumValue.from_json(["aa", 1]).kind is StratumKind.NULL

    def test_object_is_null(self):
        assert StratumValue.from_json({"a": 1}).kind is StratumKind.NULL

    def test_none(self):
        assert StratumValue.from_json(None).kind is StratumKind.NULL

    def test_str_truncates_long_strings(self):
        assert str(StratumValue.from_json("a" * 64)) == "string(" + "a" * 20 + "...)"
        assert str(StratumValue.from_json(["x", "y"])) == "array[2]"
        assert str(StratumValue.from_json(True)) == "bool(True)"


# ── Message envelope ──────────────────────────────────────────────────────

class TestStratumMessage:

    def test_notify_envelope(self):
        msg = StratumMessage.parse(_notify(notify_params("aa", "bb")))
        assert msg.id is None
        assert msg.method == "mining.notify"
        assert len(msg.params) == 9
        assert msg.params[8].kind is StratumKind.BOOL

    def test_response(self):
        msg = StratumMessage.parse('{"id": 3, "result": true, "error": null}')
        assert msg.id == 3
        assert msg.method is None
        assert msg.params is None
        assert msg.result.bool_value is True
        assert msg.error.kind is StratumKind.NULL

    def test_bool_id_rejected(self):
        assert StratumMessage.parse('{"id": true, "method": "x"}').id is None

    def test_string_id_ignored(self):
        assert StratumMessage.parse('{"id": "7", "method": "x"}').id is None

    def test_invalid_json(self):
        with pytest.raises(StratumError):
            StratumMessage.parse('{"id": 1, "method": ')

    def test_non_object(self):
        with pytest.raises(StratumError):
            StratumMessage.parse("[1, 2, 3]")

    def test_stratum_error_is_value_error(self):
        assert issubclass(StratumError, ValueError)

    def test_decode_is_total(self):
        assert decode_stratum_message("not json") is None
        assert decode_stratum_message('"string"') is None
        assert decode_stratum_message('{"method": "mining.set_difficulty", "params": [512]}').method == (
            "mining.set_difficulty"
        )

    def test_deeply_nested_params(self):
        deep = '{"method":"mining.notify","params":' + "[" * 100000 + "]" * 100000 + "}"
        with pytest.raises(StratumError):
            StratumMessage.parse(deep)
        assert decode_stratum_message(deep) is None


# ── mining.notify extraction ──────────────────────────────────────────────

class TestMiningNotifyParams:

    def test_full_extraction(self):
        params = notify_params(SOLOHASH_COINBASE1, SOLOHASH_COINBASE2, job_id="6a8b")
        notify = StratumMessage.parse(_notify(params)).mining_notify_params
        assert notify is not None
        assert notify.job_id == "6a8b"
        assert notify.prev_hash == params[1]
        assert notify.coinbase1 == SOLOHASH_COINBASE1
        assert notify.coinbase2 == SOLOHASH_COINBASE2
        assert notify.merkle_branches == params[4]
        assert notify.version == "20000000"
        assert notify.nbits == "17034219"
        assert notify.ntime == "6925bb38"
        assert notify.clean_jobs is True

    def test_extra_params_allowed(self):
        params = notify_params("aa", "bb") + ["extra"]
        assert StratumMessage.parse(_notify(params)).mining_notify_params is not None

    def test_other_method(self):
        msg = StratumMessage.parse('{"id": 1, "method": "mining.subscribe", "params": []}')
        assert msg.mining_notify_params is None

    def test_missing_params(self):
        assert StratumMessage.parse('{"method": "mining.notify"}').mining_notify_params is None

    def test_too_few_params(self, caplog):
        params = notify_params("aa", "bb")[:8]
        with caplog.at_level(logging.WARNING, logger="stratum"):
            assert StratumMessage.parse(_notify(params)).mining_notify_params is None
        assert "8 params" in caplog.text

    def test_integer_clean_jobs_rejected(self, caplog):
        params = notify_params("aa", "bb")
        params[8] = 1
        with caplog.at_level(logging.WARNING, logger="stratum"):
            assert StratumMessage.parse(_notify(params)).mining_notify_params is None
        assert "params[8]" in caplog.text

    def test_string_merkle_branches_rejected(self):
        params = notify_params("aa", "bb")
        params[4] = "deadbeef"
        assert StratumMessage.parse(_notify(params)).mining_notify_params is None

    def test_numeric_coinbase_rejected(self):
        params = notify_params("aa", "bb")
        params[2] = 1234
        assert StratumMessage.parse(_notify(params)).mining_notify_params is None
