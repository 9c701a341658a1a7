"""
Policy, subject identifier and challenge builder tests.
"""

import unittest
from datetime import datetime, timedelta, timezone

from agegate import (
    Challenge,
    ChallengeBuilder,
    ConfigError,
    EndpointKind,
    PolicyConfig,
    SubjectRegistry,
    SubjectRole,
    UserIdType,
    canonicalize,
    validate_subject_id,
)
from agegate.subject import new_subject_id

ENDPOINT = "https://age-gate.example.org/api/verify"


class TestPolicyConfig(unittest.TestCase):

    def test_defaults(self):
        policy = PolicyConfig()

        self.assertEqual(policy.minimum_age, 18)
        self.assertEqual(policy.excluded_countries, frozenset())
        self.assertFalse(policy.ofac_check)

    def test_invalid_minimum_age(self):
        for value in (-1, 126, "18", True, 18.0):
            with self.subTest(value=value):
                with self.assertRaises(ConfigError) as ctx:
                    PolicyConfig(minimum_age=value)
                self.assertEqual(ctx.exception.field, "minimum_age")

    def test_country_codes_normalized(self):
        policy = PolicyConfig(excluded_countries=["prk", " IRN "])

        self.assertEqual(policy.excluded_countries, frozenset({"PRK", "IRN"}))

    def test_invalid_country_code(self):
        for codes in (["US"], ["KOREA"], "PRK", [7]):
            with self.subTest(codes=codes):
                with self.assertRaises(ConfigError):
                    PolicyConfig(excluded_countries=codes)

    def test_from_dict_accepts_wire_and_snake_keys(self):
        wire = PolicyConfig.from_dict({"minimumAge": 21, "excludedCountries": ["PRK"], "ofac": True})
        snake = PolicyConfig.from_dict(wire.to_dict())

        self.assertEqual(wire, snake)
        self.assertEqual(wire.hash, snake.hash)

    def test_hash_is_order_independent(self):
        a = PolicyConfig(excluded_countries=["PRK", "IRN"])
        b = PolicyConfig(excluded_countries=["IRN", "PRK"])

        self.assertEqual(a.hash, b.hash)
        self.assertNotEqual(a.hash, PolicyConfig(minimum_age=21).hash)
        self.assertTrue(a.hash.startswith("sha256:"))

    def test_disclosure_keys(self):
        self.assertEqual(PolicyConfig().disclosure_keys(), ["ageAtLeast18"])
        self.assertEqual(PolicyConfig(minimum_age=0).disclosure_keys(), [])
        full = PolicyConfig(minimum_age=21, excluded_countries=["PRK"], ofac_check=True)
        self.assertEqual(full.disclosure_keys(), ["ageAtLeast21", "nationalityNotExcluded", "ofacClear"])

    def test_strictness(self):
        base = PolicyConfig(minimum_age=18)
        strict = PolicyConfig(minimum_age=21, excluded_countries=["PRK"], ofac_check=True)

        self.assertTrue(strict.is_at_least_as_strict(base))
        self.assertFalse(base.is_at_least_as_strict(strict))
        self.assertTrue(base.is_at_least_as_strict(PolicyConfig.for_content(16)))
        self.assertFalse(base.is_at_least_as_strict(PolicyConfig.for_content(21)))


class TestSubjects(unittest.TestCase):

    def test_canonical_uuid_accepted(self):
        sid = new_subject_id()

        self.assertEqual(validate_subject_id(sid), sid)
        self.assertEqual(validate_subject_id(sid.upper()), sid)

    def test_non_canonical_uuid_rejected(self):
        for value in ("", "not-a-uuid", new_subject_id().replace("-", ""), None):
            with self.subTest(value=value):
                with self.assertRaises(ConfigError):
                    validate_subject_id(value)

    def test_hex_identifiers(self):
        addr = "0x" + "AB" * 20

        self.assertEqual(validate_subject_id(addr, UserIdType.HEX), addr.lower())
        with self.assertRaises(ConfigError):
            validate_subject_id("0x1234", UserIdType.HEX)

    def test_registry_reuses_id_per_role(self):
        registry = SubjectRegistry()

        viewer = registry.subject_id_for(SubjectRole.VIEWER)

        self.assertEqual(registry.subject_id_for("viewer"), viewer)
        self.assertNotEqual(registry.subject_id_for(SubjectRole.UPLOADER), viewer)

    def test_invalidated_id_is_retired(self):
        registry = SubjectRegistry()
        old = registry.subject_id_for(SubjectRole.VIEWER)

        self.assertTrue(registry.invalidate(old))

        self.assertTrue(registry.is_retired(old))
        self.assertIsNone(registry.peek(SubjectRole.VIEWER))
        self.assertNotEqual(registry.subject_id_for(SubjectRole.VIEWER), old)

    def test_snapshot_restores(self):
        registry = SubjectRegistry()
        viewer = registry.subject_id_for(SubjectRole.VIEWER)
        registry.invalidate(registry.subject_id_for(SubjectRole.UPLOADER))

        snap = registry.snapshot()
        restored = SubjectRegistry(initial=snap["roles"], retired=snap["retired"])

        self.assertEqual(restored.peek(SubjectRole.VIEWER), viewer)
        self.assertEqual(len(snap["retired"]), 1)
        self.assertTrue(restored.is_retired(snap["retired"][0]))


class TestChallengeBuilder(unittest.TestCase):

    def setUp(self):
        self.builder = ChallengeBuilder()
        self.policy = PolicyConfig(minimum_age=18, excluded_countries=["PRK"])
        self.subject = new_subject_id()

    def test_build(self):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)

        challenge = self.builder.build("agegate", self.subject, self.policy, ENDPOINT, now=now)

        self.assertEqual(challenge.scope, "agegate")
        self.assertEqual(challenge.subject_id, self.subject)
        self.assertEqual(challenge.policy, self.policy)
        self.assertEqual(challenge.endpoint_kind, EndpointKind.HTTPS)
        self.assertEqual(challenge.expires_at - challenge.issued_at, timedelta(seconds=300))
        self.assertEqual(challenge.expected_context(), {"subject": self.subject, "nonce": challenge.nonce})

    def test_each_build_is_fresh(self):
        a = self.builder.build("agegate", self.subject, self.policy, ENDPOINT)
        b = self.builder.build("agegate", self.subject, self.policy, ENDPOINT)

        self.assertNotEqual(a.nonce, b.nonce)
        self.assertNotEqual(a.challenge_id, b.challenge_id)

    def test_invalid_scope(self):
        for scope in ("", "Age Gate", "a" * 32, "age_gate", None):
            with self.subTest(scope=scope):
                with self.assertRaises(ConfigError) as ctx:
                    self.builder.build(scope, self.subject, self.policy, ENDPOINT)
                self.assertEqual(ctx.exception.field, "scope")

    def test_invalid_subject(self):
        with self.assertRaises(ConfigError) as ctx:
            self.builder.build("agegate", "user-42", self.policy, ENDPOINT)
        self.assertEqual(ctx.exception.field, "subject_id")

    def test_policy_must_be_policy_config(self):
        with self.assertRaises(ConfigError):
            self.builder.build("agegate", self.subject, {"minimumAge": 18}, ENDPOINT)

    def test_plain_http_rejected(self):
        with self.assertRaises(ConfigError):
            self.builder.build("agegate", self.subject, self.policy, "http://age-gate.example.org/api/verify")

    def test_dev_mode_allows_localhost_only(self):
        dev = ChallengeBuilder(dev_mode=True)

        challenge = dev.build("agegate", self.subject, self.policy, "http://localhost:3000/api/verify")
        self.assertEqual(challenge.endpoint, "http://localhost:3000/api/verify")

        with self.assertRaises(ConfigError):
            dev.build("agegate", self.subject, self.policy, "http://age-gate.example.org/api/verify")

    def test_relative_endpoint_rejected(self):
        with self.assertRaises(ConfigError):
            self.builder.build("agegate", self.subject, self.policy, "/api/verify")

    def test_on_chain_endpoint(self):
        address = "0x" + "Ab" * 20

        challenge = self.builder.build("agegate", self.subject, self.policy, address, EndpointKind.CELO)
        self.assertEqual(challenge.endpoint, address.lower())

        with self.assertRaises(ConfigError):
            self.builder.build("agegate", self.subject, self.policy, ENDPOINT, EndpointKind.STAGING_CELO)

    def test_unknown_endpoint_kind(self):
        with self.assertRaises(ConfigError) as ctx:
            self.builder.build("agegate", self.subject, self.policy, ENDPOINT, "carrier-pigeon")
        self.assertEqual(ctx.exception.field, "endpoint_kind")

    def test_non_positive_ttl(self):
        with self.assertRaises(ConfigError):
            ChallengeBuilder(ttl_seconds=0)

    def test_expiry(self):
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        challenge = ChallengeBuilder(ttl_seconds=60).build("agegate", self.subject, self.policy, ENDPOINT, now=now)

        self.assertFalse(challenge.is_expired(now + timedelta(seconds=59)))
        self.assertTrue(challenge.is_expired(now + timedelta(seconds=60)))

    def test_token_decodes_to_same_challenge(self):
        challenge = self.builder.build("agegate", self.subject, self.policy, ENDPOINT)

        decoded = Challenge.decode(challenge.encode())

        self.assertEqual(decoded.to_dict(), challenge.to_dict())
        self.assertNotIn("=", challenge.encode())

    def test_garbage_token_rejected(self):
        for token in ("!!!", "e30", "WzFd"):
            with self.subTest(token=token):
                with self.assertRaises(ConfigError):
                    Challenge.decode(token)

    def test_tampered_policy_hash_rejected(self):
        data = self.builder.build("agegate", self.subject, self.policy, ENDPOINT).to_dict()
        data["policy"]["minimum_age"] = 13

        with self.assertRaises(ConfigError) as ctx:
            Challenge.from_dict(data)
        self.assertEqual(ctx.exception.field, "policy_hash")


class TestCanonicalization(unittest.TestCase):

    def test_sorted_compact(self):
        self.assertEqual(canonicalize({"b": 1, "a": [True, None]}), b'{"a":[true,null],"b":1}')

    def test_rejects_non_json_types(self):
        for value in ({"a": {1, 2}}, {1: "x"}, object()):
            with self.subTest(value=value):
                with self.assertRaises(ValueError):
                    canonicalize(value)

    def test_rejects_non_finite_numbers(self):
        for value in (float("nan"), float("inf"), -float("inf")):
            with self.subTest(value=value):
                with self.assertRaises(ValueError) as ctx:
                    canonicalize({"signals": [1, value]})
                self.assertIn("$.signals[1]", str(ctx.exception))

    def test_mapping_and_tuple_accepted(self):
        from types import MappingProxyType

        self.assertEqual(canonicalize(MappingProxyType({"b": (1, 2.5), "a": "é"})),
                         '{"a":"é","b":[1,2.5]}'.encode("utf-8"))


if __name__ == "__main__":
    unittest.main()
