"""Operator CLI for signing payment authorizations and work envelopes.

Signing happens locally; ``verify-*`` and ``settle-*`` commands talk to a
running facilitator or attestation verifier.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

from authorization.errors import EncodingError, NetworkError, ProtocolError
from authorization.models import X402_VERSION, PaymentPayload, PaymentRequirements, WorkEnvelope
from authorization.signer import EnvelopeSigner, PaymentSigner
from facilitator.client import FacilitatorClient

PAYER_KEY_ENV = "PAYER_PRIVATE_KEY"
AGENT_KEY_ENV = "AGENT_PRIVATE_KEY"


def _private_key(args: argparse.Namespace, env_name: str) -> str:
    key = args.private_key or os.getenv(env_name)
    if not key:
        raise SystemExit(f"A private key is required: pass --private-key or set {env_name}")
    return key


def _read_json(path: str) -> Dict[str, Any]:
    text = sys.stdin.read() if path == "-" else Path(path).read_text(encoding="utf-8")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise SystemExit(f"{path} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise SystemExit(f"{path} must contain a JSON object")
    return data


def _emit(data: Dict[str, Any]) -> None:
    print(json.dumps(data, indent=2))


def _requirements_from_args(args: argparse.Namespace) -> PaymentRequirements:
    if args.requirements:
        return PaymentRequirements.from_mapping(_read_json(args.requirements))
    missing = [flag for flag, value in (
        ("--network", args.network),
        ("--asset", args.asset),
        ("--pay-to", args.pay_to),
        ("--amount", args.amount),
        ("--relayer", args.relayer),
    ) if value is None]
    if missing:
        raise SystemExit(f"Missing payment terms: {', '.join(missing)} (or pass --requirements)")
    return PaymentRequirements(
        network=args.network,
        asset=args.asset,
        pay_to=args.pay_to,
        max_amount_required=args.amount,
        max_timeout_seconds=args.timeout,
        relayer_contract=args.relayer,
        description=args.description,
    )


def command_sign_payment(args: argparse.Namespace) -> None:
    try:
        requirements = _requirements_from_args(args)
        signer = PaymentSigner.from_key(_private_key(args, PAYER_KEY_ENV))
        payload = signer.process_payment(requirements, chain_id=args.chain_id)
    except EncodingError as exc:
        raise SystemExit(f"Cannot sign payment: {exc}") from exc
    _emit(
        {
            "x402Version": X402_VERSION,
            "paymentPayload": payload.to_mapping(),
            "paymentRequirements": requirements.to_mapping(),
        }
    )


def command_sign_envelope(args: argparse.Namespace) -> None:
    if args.work_file:
        work: str | bytes = Path(args.work_file).read_bytes()
    elif args.work is not None:
        work = args.work
    else:
        raise SystemExit("Pass --work or --work-file")
    try:
        signer = EnvelopeSigner.from_key(_private_key(args, AGENT_KEY_ENV))
        envelope = signer.create_envelope(str(args.bounty_id), args.intent, work)
    except EncodingError as exc:
        raise SystemExit(f"Cannot sign envelope: {exc}") from exc
    _emit(envelope.to_mapping())


def _load_payment(path: str) -> tuple[PaymentPayload, PaymentRequirements]:
    data = _read_json(path)
    try:
        return (
            PaymentPayload.from_mapping(data.get("paymentPayload")),
            PaymentRequirements.from_mapping(data.get("paymentRequirements")),
        )
    except EncodingError as exc:
        raise SystemExit(f"Malformed payment file: {exc}") from exc


def _client(args: argparse.Namespace) -> FacilitatorClient:
    try:
        return FacilitatorClient(args.facilitator_url, api_key=args.api_key, timeout=args.request_timeout)
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc


def command_verify_payment(args: argparse.Namespace) -> None:
    payload, requirements = _load_payment(args.payment)
    try:
        result = asyncio.run(_client(args).verify(payload, requirements))
    except ProtocolError as exc:
        raise SystemExit(f"Verification request failed: {exc}") from exc
    _emit(result.model_dump(exclude_none=True))
    if not result.isValid:
        raise SystemExit(1)


def command_settle_payment(args: argparse.Namespace) -> None:
    payload, requirements = _load_payment(args.payment)
    try:
        result = asyncio.run(_client(args).settle(payload, requirements))
    except NetworkError as exc:
        hint = f" (transaction {exc.transaction_id} may still confirm)" if exc.transaction_id else ""
        raise SystemExit(f"Settlement outcome unknown: {exc.reason}{hint}") from exc
    except ProtocolError as exc:
        raise SystemExit(f"Settlement request failed: {exc}") from exc
    _emit(result.model_dump(exclude_none=True))
    if not result.success:
        raise SystemExit(1)


def command_verify_work(args: argparse.Namespace) -> None:
    data = _read_json(args.envelope)
    try:
        envelope = WorkEnvelope.from_mapping(data)
    except EncodingError as exc:
        raise SystemExit(f"Malformed envelope: {exc}") from exc
    body: Dict[str, Any] = {"envelope": envelope.to_mapping()}
    if args.bounty_id is not None:
        body["bounty_id"] = args.bounty_id
    url = f"{args.verifier_url.rstrip('/')}/verify"
    try:
        with httpx.Client(timeout=args.request_timeout) as client:
            response = client.post(url, json=body)
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        raise SystemExit(f"POST {url} failed: {exc.response.status_code} {exc.response.text}") from exc
    except httpx.HTTPError as exc:
        raise SystemExit(f"POST {url} failed: {exc}") from exc
    result = response.json()
    _emit(result)
    if not result.get("success"):
        raise SystemExit(1)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Sign and submit signed authorizations.")
    parser.add_argument("--request-timeout", type=float, default=30.0, help="HTTP timeout in seconds.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sign_payment = subparsers.add_parser("sign-payment", help="Sign a transfer authorization for payment terms")
    sign_payment.add_argument("--private-key", default=None, help=f"Payer key (defaults to ${PAYER_KEY_ENV})")
    sign_payment.add_argument("--requirements", default=None, help="JSON file with paymentRequirements ('-' for stdin)")
    sign_payment.add_argument("--network")
    sign_payment.add_argument("--asset")
    sign_payment.add_argument("--pay-to")
    sign_payment.add_argument("--amount", help="Amount in the token's smallest unit")
    sign_payment.add_argument("--relayer", help="Relayer contract address")
    sign_payment.add_argument("--timeout", type=int, default=600, help="Validity window in seconds")
    sign_payment.add_argument("--description", default=None)
    sign_payment.add_argument("--chain-id", type=int, default=None, help="Override the network's chain id")
    sign_payment.set_defaults(func=command_sign_payment)

    sign_envelope = subparsers.add_parser("sign-envelope", help="Sign a work envelope for a bounty")
    sign_envelope.add_argument("bounty_id")
    sign_envelope.add_argument("intent")
    sign_envelope.add_argument("--work", default=None, help="Work content to commit to")
    sign_envelope.add_argument("--work-file", default=None, help="File whose bytes are committed to")
    sign_envelope.add_argument("--private-key", default=None, help=f"Agent key (defaults to ${AGENT_KEY_ENV})")
    sign_envelope.set_defaults(func=command_sign_envelope)

    for name, func, help_text in (
        ("verify-payment", command_verify_payment, "Ask a facilitator to verify a signed payment"),
        ("settle-payment", command_settle_payment, "Ask a facilitator to settle a signed payment"),
    ):
        command = subparsers.add_parser(name, help=help_text)
        command.add_argument("payment", help="JSON file produced by sign-payment ('-' for stdin)")
        command.add_argument("--facilitator-url", default=os.getenv("FACILITATOR_URL", "http://localhost:8402"))
        command.add_argument("--api-key", default=os.getenv("FACILITATOR_API_KEY"))
        command.set_defaults(func=func)

    verify_work = subparsers.add_parser("verify-work", help="Submit a work envelope to the attestation verifier")
    verify_work.add_argument("envelope", help="JSON file produced by sign-envelope ('-' for stdin)")
    verify_work.add_argument("--bounty-id", default=None)
    verify_work.add_argument("--verifier-url", default=os.getenv("VERIFIER_URL", "http://localhost:8000"))
    verify_work.set_defaults(func=command_verify_work)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    args.func(args)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    main(sys.argv[1:])
