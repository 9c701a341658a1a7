import json
import logging
import os

import pytest

from agegate import ConfigError
from app import config
from app.keys import FileTrustStore
from app.logging_config import StructuredFormatter, set_request_id
from app.main import create_app
from app.rate_limit import RateLimiter
from app.security import (
    ValidationError,
    extract_client_id,
    sanitize_for_logging,
    validate_attestation_id,
    validate_role,
)

from support import ISSUER, make_bundle


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


# --- config ---

def test_settings_from_env_defaults():
    settings = config.Settings.from_env()

    assert settings.policy.minimum_age == int(config.MINIMUM_AGE)
    assert settings.scope == config.SCOPE


def test_settings_from_env_policy(monkeypatch):
    monkeypatch.setattr(config, "MINIMUM_AGE", "21")
    monkeypatch.setattr(config, "EXCLUDED_COUNTRIES", "prk, irn")
    monkeypatch.setattr(config, "OFAC_CHECK", "true")
    monkeypatch.setattr(config, "ATTESTATION_IDS", "1,v2")

    settings = config.Settings.from_env()

    assert settings.policy.minimum_age == 21
    assert settings.policy.excluded_countries == frozenset({"PRK", "IRN"})
    assert settings.policy.ofac_check is True
    assert set(settings.attestation_ids) == {"1", "v2"}


@pytest.mark.parametrize("name,value", [
    ("MINIMUM_AGE", "eighteen"),
    ("MINIMUM_AGE", "200"),
    ("EXCLUDED_COUNTRIES", "KOREA"),
    ("ENDPOINT_KIND", "ftp"),
    ("ATTESTATION_IDS", "1,99"),
])
def test_settings_from_env_rejects_bad_values(monkeypatch, name, value):
    monkeypatch.setattr(config, name, value)

    with pytest.raises(ConfigError):
        config.Settings.from_env()


def test_bad_protocol_binding_stops_startup():
    with pytest.raises(ConfigError):
        create_app(config.Settings(endpoint="http://age-gate.example.org/api/verify", env="prod"))

    with pytest.raises(ConfigError):
        create_app(config.Settings(scope="Not A Scope"))


# --- rate limiting ---

def test_rate_limiter_window():
    clock = FakeClock()
    limiter = RateLimiter(rpm=2, window_seconds=60, clock=clock)

    assert limiter.allow("k")
    assert limiter.allow("k")
    denied = limiter.check("k")
    assert not denied.allowed
    assert denied.headers()["Retry-After"] == "61"

    clock.now += 61
    assert limiter.allow("k")


def test_rate_limiter_cleanup_and_reset():
    clock = FakeClock()
    limiter = RateLimiter(rpm=5, clock=clock)
    limiter.check("a")
    limiter.check("b")

    clock.now += 120
    assert limiter.cleanup_expired() == 2

    limiter.check("a")
    limiter.reset("a")
    assert limiter.check("a").remaining == 4


def test_rate_limiter_sweeps_idle_keys():
    clock = FakeClock()
    limiter = RateLimiter(rpm=5, clock=clock, sweep_every=3)
    for client_id in ("a", "b", "c"):
        limiter.check(f"verify:ip:{client_id}")
    assert limiter.tracked_keys == 3

    clock.now += 120
    limiter.check("verify:ip:d")
    limiter.check("verify:ip:d")
    limiter.check("verify:ip:d")

    assert limiter.tracked_keys == 1
    assert limiter.check("verify:ip:d").remaining == 1


# --- security helpers ---

def test_validate_attestation_id():
    assert validate_attestation_id(1) == "1"
    assert validate_attestation_id(" v2 ") == "v2"
    for bad in (True, 1.5, "", "a b", "x" * 17):
        with pytest.raises(ValidationError):
            validate_attestation_id(bad)


def test_validate_role():
    assert validate_role("uploader").value == "uploader"
    with pytest.raises(ValidationError):
        validate_role("admin")


def test_extract_client_id():
    assert extract_client_id({"x-api-key": "abcdefghijkl"}) == "api:abcdefgh"
    assert extract_client_id({"x-forwarded-for": "10.0.0.1, 10.0.0.2"}) == "ip:10.0.0.1"
    assert extract_client_id({}, "127.0.0.1") == "ip:127.0.0.1"
    assert extract_client_id({}) == "anonymous"


def test_sanitize_for_logging():
    data = {
        "attestationId": "1",
        "proof": {"sig_b64": "c2lnbmF0dXJlLWJ5dGVz"},
        "userContextData": {"nonce": "abc"},
    }

    clean = sanitize_for_logging(data)

    assert clean["attestationId"] == "1"
    assert clean["proof"] == "[REDACTED]"
    assert clean["userContextData"] == "[REDACTED]"


# --- trust store ---

def test_file_trust_store(tmp_path):
    path = tmp_path / "trust.json"
    store = FileTrustStore(str(path))

    assert store.get_trust_store() == {"issuer_keys": {}, "revoked_kids": []}

    path.write_text(json.dumps({"issuer_keys": {"k1": "AAAA"}}), encoding="utf-8")
    assert store.get_trust_store()["issuer_keys"] == {"k1": "AAAA"}

    path.write_text(json.dumps({"issuer_keys": {"k1": "AAAA"}, "revoked_kids": ["k1"]}), encoding="utf-8")
    os.utime(path, (os.path.getmtime(path) + 10, os.path.getmtime(path) + 10))
    assert store.get_trust_store()["revoked_kids"] == ["k1"]


def test_file_trust_store_deleted_file_trusts_nobody(tmp_path):
    path = tmp_path / "trust.json"
    path.write_text(json.dumps({"issuer_keys": {"k1": "AAAA"}}), encoding="utf-8")
    store = FileTrustStore(str(path))
    assert store.get_trust_store()["issuer_keys"] == {"k1": "AAAA"}

    os.remove(path)

    assert store.get_trust_store() == {"issuer_keys": {}, "revoked_kids": []}


def test_file_trust_store_reloads_on_older_mtime(tmp_path):
    path = tmp_path / "trust.json"
    path.write_text(json.dumps({"issuer_keys": {"k1": "AAAA"}}), encoding="utf-8")
    store = FileTrustStore(str(path))
    store.get_trust_store()
    original = os.path.getmtime(path)

    # Restored from a backup: content changes, mtime goes backwards
    path.write_text(json.dumps({"issuer_keys": {"k2": "BBBB"}}), encoding="utf-8")
    os.utime(path, (original - 3600, original - 3600))

    assert store.get_trust_store()["issuer_keys"] == {"k2": "BBBB"}


def test_file_trust_store_returns_copies(tmp_path):
    path = tmp_path / "trust.json"
    path.write_text(json.dumps({"issuer_keys": {"k1": "AAAA"}}), encoding="utf-8")
    store = FileTrustStore(str(path))

    store.get_trust_store()["issuer_keys"]["evil"] = "CCCC"

    assert store.get_trust_store()["issuer_keys"] == {"k1": "AAAA"}


def test_deleted_trust_store_rejects_valid_proof(tmp_path, make_client, policy):
    path = tmp_path / "trust.json"
    path.write_text(json.dumps({"issuer_keys": ISSUER.to_trust_store_entry()}), encoding="utf-8")
    client = make_client(trust_store=FileTrustStore(str(path)))
    bundle = make_bundle(policy)

    assert client.post("/api/verify", json=bundle).json()["result"] is True

    os.remove(path)
    r = client.post("/api/verify", json=bundle)

    assert r.status_code == 500
    assert r.json()["details"]["failure_reason"] == "PROOF_INVALID"


# --- logging ---

def test_structured_formatter_includes_request_id():
    set_request_id("req-42")
    record = logging.LogRecord("agegate.test", logging.INFO, __file__, 1, "hello %s", ("world",), None)

    out = json.loads(StructuredFormatter().format(record))

    assert out["message"] == "hello world"
    assert out["level"] == "INFO"
    assert out["request_id"] == "req-42"
