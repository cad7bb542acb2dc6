"""Tests for the intent, integrity and outcome checks."""

from __future__ import annotations

import asyncio
import json
from dataclasses import replace

import httpx

from attestation.checks import CommitFormatCheck, HttpIntegrityCheck, IntentCheck
from authorization.signer import EnvelopeSigner


def _envelope(agent, clock, **overrides):
    envelope = EnvelopeSigner(agent, clock=clock).create_envelope("42", "fix-login-bug", "patch")
    return replace(envelope, **overrides) if overrides else envelope


def test_intent_check(agent, payer, clock) -> None:
    envelope = _envelope(agent, clock)
    assert asyncio.run(IntentCheck()(envelope)).passed
    forged = replace(envelope, intent="delete-prod")
    outcome = asyncio.run(IntentCheck()(forged))
    assert not outcome.passed
    assert "signature" in outcome.detail


def test_commit_format_check(agent, clock) -> None:
    envelope = _envelope(agent, clock)
    assert asyncio.run(CommitFormatCheck()(envelope)).passed
    assert not asyncio.run(CommitFormatCheck()(replace(envelope, commit="sha256:xyz"))).passed
    assert not asyncio.run(CommitFormatCheck()(replace(envelope, commit="md5:" + "a" * 32))).passed


def test_integrity_fails_closed_without_endpoint(agent, clock) -> None:
    check = HttpIntegrityCheck(None)
    outcome = asyncio.run(check(_envelope(agent, clock)))
    assert not check.configured
    assert not outcome.passed
    assert outcome.detail == "integrity endpoint not configured"


def test_integrity_posts_envelope(agent, clock) -> None:
    envelope = _envelope(agent, clock)
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"verified": True})

    check = HttpIntegrityCheck("http://integrity.local/", transport=httpx.MockTransport(handler))
    assert asyncio.run(check(envelope)).passed
    assert seen["url"] == "http://integrity.local/verify-integrity"
    assert seen["body"] == {"envelope": envelope.to_mapping()}


def test_integrity_requires_explicit_true(agent, clock) -> None:
    envelope = _envelope(agent, clock)
    for body in ({"verified": "true"}, {"verified": False}, {}, ["verified"]):
        transport = httpx.MockTransport(lambda request, body=body: httpx.Response(200, json=body))
        assert not asyncio.run(HttpIntegrityCheck("http://integrity.local", transport=transport)(envelope)).passed


def test_integrity_errors_fail_the_check(agent, clock) -> None:
    envelope = _envelope(agent, clock)

    def refused(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    def unavailable(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"verified": True})

    for handler in (refused, unavailable):
        check = HttpIntegrityCheck("http://integrity.local", transport=httpx.MockTransport(handler))
        outcome = asyncio.run(check(envelope))
        assert not outcome.passed
        assert outcome.detail.startswith("integrity service error")
