import httpx
import pytest

from adrena.perps.errors import (
    INSUFFICIENT_FUNDS_MESSAGE,
    AdrenaError,
    ConfigurationError,
    ProgramErrorTable,
    ProgramRejectedError,
    TransientNetworkError,
    UnknownError,
    translate_error,
)

TABLE = ProgramErrorTable.from_entries(
    [
        {"code": 6000, "name": "MathOverflow", "msg": "Overflow in arithmetic operation"},
        {"code": 6001, "name": "InsufficientCollateral", "msg": "Insufficient collateral"},
        {"code": 6002, "name": "Undocumented"},
    ]
)


def test_adrena_errors_pass_through_unchanged():
    err = ConfigurationError("Cannot find custody")
    assert translate_error(err, TABLE) is err


def test_blockhash_not_found_is_transient():
    err = translate_error("Transaction simulation failed: BlockhashNotFound", TABLE)
    assert isinstance(err, TransientNetworkError)


def test_insufficient_funds_for_rent():
    err = translate_error("InsufficientFundsForRent { account_index: 0 }", TABLE)
    assert isinstance(err, ProgramRejectedError)
    assert err.message == INSUFFICIENT_FUNDS_MESSAGE


def test_hex_code_resolves_through_table():
    err = translate_error("Program failed: custom program error: 0x1771", TABLE)
    assert isinstance(err, ProgramRejectedError)
    assert err.code == 6001
    assert err.message == "Insufficient collateral"


def test_decimal_code_in_json_payload():
    err = translate_error({"InstructionError": [2, {"Custom": 6000}]}, TABLE)
    assert err.name == "MathOverflow"
    assert err.message == "Overflow in arithmetic operation"


def test_solders_style_custom_code():
    err = translate_error("TransactionErrorInstructionError((0, InstructionErrorCustom(6001)))", TABLE)
    assert err.code == 6001


def test_anchor_log_name_wins_over_code():
    logs = (
        "Program log: AnchorError occurred. Error Code: MathOverflow. Error Number: 6001. "
        "Error Message: Overflow in arithmetic operation."
    )
    err = translate_error(logs, TABLE)
    assert err.name == "MathOverflow"


def test_name_and_message_without_table_entry():
    err = translate_error("Error Code: PositionTooSmall. Error Message: Position is too small.", TABLE)
    assert isinstance(err, ProgramRejectedError)
    assert err.message == "PositionTooSmall: Position is too small."


def test_entry_without_message_falls_back_to_code():
    err = translate_error("custom program error: 0x1772", TABLE)
    assert err.message == "Error code: 6002"


def test_custom_one_is_insufficient_sol():
    err = translate_error({"InstructionError": [0, {"Custom": 1}]})
    assert err.message == "Insufficient SOL"


def test_unknown_keeps_raw_text():
    err = translate_error(RuntimeError("socket closed"))
    assert isinstance(err, UnknownError)
    assert "socket closed" in err.raw


def test_signature_is_attached_once():
    err = AdrenaError("boom").with_signature("abc")
    err.with_signature("def")
    assert err.tx_signature == "abc"
    assert str(err) == "boom (tx abc)"


@pytest.mark.parametrize("raw", [None, 12, object()])
def test_translate_never_raises(raw):
    assert isinstance(translate_error(raw), AdrenaError)


@pytest.mark.parametrize("raw", [ConnectionError("rpc down"), TimeoutError(), httpx.ConnectError("refused")])
def test_transport_failures_are_transient(raw):
    assert isinstance(translate_error(raw, TABLE), TransientNetworkError)
