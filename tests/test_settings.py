import pytest

from app.core.settings import Settings, SettingsValidationError


@pytest.fixture(autouse=True)
def _clean_chain_env(monkeypatch):
    monkeypatch.delenv("CHAIN_ID", raising=False)
    monkeypatch.delenv("CHAIN_NAME", raising=False)


def test_defaults_are_consistent():
    s = Settings()
    assert s.CHAIN_NAME == "sepolia"
    assert s.CHAIN_ID == 11155111


def test_chain_name_and_id_must_agree(monkeypatch):
    monkeypatch.setenv("CHAIN_NAME", "ethereum")
    monkeypatch.setenv("CHAIN_ID", "11155111")
    with pytest.raises(SettingsValidationError) as e:
        Settings()
    assert "does not match CHAIN_NAME ethereum" in str(e.value)


def test_matching_known_chain(monkeypatch):
    monkeypatch.setenv("CHAIN_NAME", "Base")
    monkeypatch.setenv("CHAIN_ID", "8453")
    s = Settings()
    assert s.CHAIN_NAME == "base"
    assert s.CHAIN_ID == 8453


def test_unknown_chain_name_uses_configured_id(monkeypatch):
    monkeypatch.setenv("CHAIN_NAME", "devnet")
    monkeypatch.setenv("CHAIN_ID", "31337")
    assert Settings().CHAIN_ID == 31337


def test_to_dict_redacts_token(monkeypatch):
    monkeypatch.setenv("SIGNER_API_TOKEN", "s3cret")
    d = Settings().to_dict()
    assert d["SIGNER_API_TOKEN"] == "***REDACTED***"
    assert d["SIGNER_TYPE"] == "remote"
    assert "SEND_BUSY_POLICY" not in d
