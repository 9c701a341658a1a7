#!/usr/bin/env python3
"""
agegate Command Line Interface

Usage:
    agegate keygen --kid <kid> [--output <file>]
    agegate challenge --scope <scope> --endpoint <url> [--subject <uuid>] [--policy <file>]
    agegate decode <token>
    agegate verify --bundle <file> --trust-store <file> [--policy <file>]
"""

import argparse
import json
import sys

from .errors import ConfigError


def load_json(path: str) -> dict:
    with open(path, 'r', encoding='utf-8') as f:
        return json.load(f)


def save_json(data: dict, path: str):
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2)


def _load_policy(path):
    from .policy import DEFAULT_POLICY, PolicyConfig
    if not path:
        return DEFAULT_POLICY
    return PolicyConfig.from_dict(load_json(path))


def cmd_keygen(args):
    """Generate an issuer key pair and print its trust store entry."""
    from .signing import generate_issuer_key

    key_pair = generate_issuer_key(args.kid)
    if args.output:
        save_json(key_pair.to_dict(), args.output)
        print(f"Issuer key saved to: {args.output}", file=sys.stderr)
    print(json.dumps({"issuer_keys": key_pair.to_trust_store_entry()}, indent=2))
    return 0


def cmd_challenge(args):
    """Build a challenge and print it with its encoded token."""
    from .challenge import ChallengeBuilder
    from .subject import new_subject_id

    policy = _load_policy(args.policy)
    builder = ChallengeBuilder(ttl_seconds=args.ttl, dev_mode=args.dev)
    challenge = builder.build(
        scope=args.scope,
        subject_id=args.subject or new_subject_id(),
        policy=policy,
        endpoint=args.endpoint,
        endpoint_kind=args.endpoint_kind,
    )
    print(json.dumps({"challenge": challenge.to_dict(), "token": challenge.encode()}, indent=2))
    return 0


def cmd_decode(args):
    from .challenge import Challenge

    challenge = Challenge.decode(args.token)
    print(json.dumps(challenge.to_dict(), indent=2))
    return 0


def cmd_verify(args):
    """Verify a proof bundle file. Exit 0 if valid, 1 otherwise."""
    from .proof import Ed25519AttestationPrimitive, StaticTrustStore
    from .verifier import ProofVerifier

    policy = _load_policy(args.policy)
    trust = load_json(args.trust_store)
    primitive = Ed25519AttestationPrimitive(StaticTrustStore(
        issuer_keys=trust.get("issuer_keys", {}),
        revoked_kids=trust.get("revoked_kids", []),
    ))
    bundle = load_json(args.bundle)
    verdict = ProofVerifier(policy, primitive).verify(
        bundle.get("attestationId"),
        bundle.get("proof"),
        bundle.get("publicSignals", bundle.get("pubSignals")),
        bundle.get("userContextData"),
    )
    print(json.dumps(verdict.to_dict(), indent=2))

    if verdict.is_valid:
        print("\n✓ VALID", file=sys.stderr)
        return 0
    print(f"\n✗ INVALID: {verdict.failure_reason.value}", file=sys.stderr)
    return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="agegate",
        description="Privacy-preserving age verification tools"
    )
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    keygen_parser = subparsers.add_parser("keygen", help="Generate an issuer key pair")
    keygen_parser.add_argument("--kid", required=True, help="Key identifier")
    keygen_parser.add_argument("--output", "-o", help="Write the private key JSON here")

    challenge_parser = subparsers.add_parser("challenge", help="Build a verification challenge")
    challenge_parser.add_argument("--scope", required=True, help="Application scope")
    challenge_parser.add_argument("--endpoint", required=True, help="Verification endpoint")
    challenge_parser.add_argument("--endpoint-kind", default="https",
                                  choices=["https", "staging_https", "celo", "staging_celo"])
    challenge_parser.add_argument("--subject", help="Subject UUID (generated if omitted)")
    challenge_parser.add_argument("--policy", help="Policy JSON file")
    challenge_parser.add_argument("--ttl", type=int, default=300, help="Lifetime in seconds")
    challenge_parser.add_argument("--dev", action="store_true", help="Allow http://localhost endpoints")

    decode_parser = subparsers.add_parser("decode", help="Decode a challenge token")
    decode_parser.add_argument("token")

    verify_parser = subparsers.add_parser("verify", help="Verify a proof bundle")
    verify_parser.add_argument("--bundle", required=True, help="Proof bundle JSON file")
    verify_parser.add_argument("--trust-store", required=True, help="Trust store JSON file")
    verify_parser.add_argument("--policy", help="Policy JSON file")

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    commands = {
        "keygen": cmd_keygen,
        "challenge": cmd_challenge,
        "decode": cmd_decode,
        "verify": cmd_verify,
    }

    try:
        return commands[args.command](args)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except FileNotFoundError as e:
        print(f"Error: File not found: {e.filename}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
