from unittest.mock import MagicMock

import pytest
import requests

from conftest import RECIPIENT
from errors import AddressNotReady, InvalidInput, KeyNotFound, KeyServiceError
from signing.keys import AddressType, RemoteKeyResolver, normalize_key_id
from signing.metadata import ETHEREUM_METADATA_TYPE_URL, encode_ethereum_metadata, ethereum_metadata


@pytest.mark.parametrize(
    "chain_id,encoded",
    [
        (1, "0801"),
        (300, "08ac02"),
        (11155111, "08a7eda805"),
        (0, ""),
    ],
)
def test_ethereum_metadata_encoding(chain_id, encoded):
    assert encode_ethereum_metadata(chain_id).hex() == encoded


def test_ethereum_metadata_type_url():
    meta = ethereum_metadata(1)
    assert meta.type_url == ETHEREUM_METADATA_TYPE_URL == "/warden.warden.v1beta2.MetadataEthereum"
    assert meta.to_dict() == {"type_url": ETHEREUM_METADATA_TYPE_URL, "value": "0x0801"}


def test_metadata_rejects_out_of_range():
    with pytest.raises(ValueError):
        encode_ethereum_metadata(2**64)


@pytest.mark.parametrize("raw,expected", [("7", "7"), (" 007 ", "7"), (str(2**64 - 1), str(2**64 - 1))])
def test_normalize_key_id(raw, expected):
    assert normalize_key_id(raw) == expected


@pytest.mark.parametrize("raw", ["", "abc", "-1", "1.5", str(2**64), "\u00b2", "\u0663"])
def test_normalize_key_id_rejects(raw):
    with pytest.raises(InvalidInput):
        normalize_key_id(raw)


def _resolver(status=200, data=None, exc=None):
    http = MagicMock()
    if exc is not None:
        http.get.side_effect = exc
    else:
        resp = MagicMock()
        resp.status_code = status
        resp.json.return_value = data or {}
        if status >= 400:
            resp.raise_for_status.side_effect = requests.HTTPError(f"{status} error")
        else:
            resp.raise_for_status.return_value = None
        http.get.return_value = resp
    return RemoteKeyResolver("http://keys/", session=http), http


def test_resolve_ethereum_address():
    resolver, http = _resolver(
        data={
            "key": {"id": "7"},
            "addresses": [
                {"type": "ADDRESS_TYPE_OSMOSIS", "address": "osmo1xyz"},
                {"type": "ADDRESS_TYPE_ETHEREUM", "address": RECIPIENT.lower()},
            ],
        }
    )
    assert resolver.resolve_address("7", AddressType.ETHEREUM) == RECIPIENT
    assert http.get.call_args.args[0] == "http://keys/keys/7"
    assert http.get.call_args.kwargs["params"] == {"derive_addresses": "ADDRESS_TYPE_ETHEREUM"}


def test_address_not_derived_yet():
    resolver, _ = _resolver(data={"key": {"id": "7"}, "addresses": []})
    with pytest.raises(AddressNotReady):
        resolver.resolve_address("7", AddressType.ETHEREUM)


def test_unknown_key():
    resolver, _ = _resolver(status=404)
    with pytest.raises(KeyNotFound):
        resolver.resolve_address("7", AddressType.ETHEREUM)


def test_key_service_down():
    resolver, _ = _resolver(exc=requests.ConnectionError("refused"))
    with pytest.raises(KeyServiceError):
        resolver.resolve_address("7", AddressType.ETHEREUM)


def test_key_service_5xx():
    resolver, _ = _resolver(status=503)
    with pytest.raises(KeyServiceError):
        resolver.resolve_address("7", AddressType.ETHEREUM)


def test_malformed_address_from_service():
    resolver, _ = _resolver(data={"key": {"id": "7"}, "addresses": [{"type": "ADDRESS_TYPE_ETHEREUM", "address": "0x12"}]})
    with pytest.raises(KeyServiceError):
        resolver.resolve_address("7", AddressType.ETHEREUM)
