import pytest

from conftest import RECIPIENT
from errors import InvalidInput
from execution.evm import format_ether, parse_ether
from sending.form import parse_send_form


@pytest.mark.parametrize(
    "amount,wei",
    [
        ("1", 10**18),
        ("1.5", 15 * 10**17),
        ("0", 0),
        (" 0.1 ", 10**17),
        ("0.000000000000000001", 1),
        ("123456789.123456789123456789", 123456789123456789123456789),
        ("1.5000000000000000000", 15 * 10**17),
        ("0.10000000000000000000000", 10**17),
        ("1e3", 1000 * 10**18),
        ("0e-999999999", 0),
    ],
)
def test_parse_ether_is_exact(amount, wei):
    assert parse_ether(amount) == wei


@pytest.mark.parametrize(
    "amount",
    [
        "",
        "abc",
        "-1",
        "NaN",
        "Infinity",
        "0.0000000000000000001",
        "1.0000000000000000001",
        "1e80",
        "1e999999999",
        "1e-999999999",
    ],
)
def test_parse_ether_rejects(amount):
    with pytest.raises(ValueError):
        parse_ether(amount)


def test_format_ether_trims_zeros():
    assert format_ether(15 * 10**17) == "1.5"
    assert format_ether(10**18) == "1"
    assert format_ether(0) == "0"


def test_form_defaults_gas_limit():
    params = parse_send_form("0.1", "", RECIPIENT.lower())
    assert params.value_wei == 10**17
    assert params.gas_limit == 21000
    assert params.to_address == RECIPIENT


def test_form_explicit_gas_limit():
    assert parse_send_form("0.1", "50000", RECIPIENT).gas_limit == 50000
    assert parse_send_form("0.1", None, RECIPIENT, default_gas_limit=30000).gas_limit == 30000


@pytest.mark.parametrize(
    "amount,gas,to,field",
    [
        ("x", "", RECIPIENT, "amount"),
        ("-0.1", "", RECIPIENT, "amount"),
        ("0.1", "abc", RECIPIENT, "gasLimit"),
        ("0.1", "0", RECIPIENT, "gasLimit"),
        ("0.1", "-5", RECIPIENT, "gasLimit"),
        ("0.1", "\u00b2", RECIPIENT, "gasLimit"),
        ("0.1", "\u0663", RECIPIENT, "gasLimit"),
        ("1e999999999", "", RECIPIENT, "amount"),
        ("0.1", "", "", "toAddr"),
        ("0.1", "", "0xdead", "toAddr"),
    ],
)
def test_form_errors_name_the_field(amount, gas, to, field):
    with pytest.raises(InvalidInput) as e:
        parse_send_form(amount, gas, to)
    assert e.value.code == "invalid_input"
    assert e.value.data["field"] == field
