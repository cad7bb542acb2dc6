"""Signed authorization protocol: codec, signers, verifiers, scoring and relay."""

from .codec import (
    DOMAIN_NAME,
    DOMAIN_VERSION,
    KNOWN_CHAIN_IDS,
    TypedDataDomain,
    canonical_envelope,
    chain_id_for,
    commitment_for,
    encode_authorization,
    encode_envelope,
    format_agent_id,
    parse_agent_address,
)
from .errors import EncodingError, NetworkError, ProtocolError, SettlementError, VerificationFailure
from .ledger import AttestationRecord, InMemoryLedger, Ledger, LedgerReceipt, Web3Ledger
from .models import (
    Authorization,
    PaymentPayload,
    PaymentRequirements,
    SettlementReceipt,
    VerificationResult,
    WorkEnvelope,
)
from .nonces import InMemoryNonceStore, NonceStore, SqliteNonceStore, nonce_store_from_url
from .relay import SettlementRelay
from .scoring import CheckOutcome, TrustScorer, calculate_trust_score, is_trust_score_passing
from .signer import EnvelopeSigner, PaymentSigner, generate_nonce
from .verifier import (
    EnvelopeVerifier,
    InvalidReason,
    PaymentVerifier,
    VerificationOutcome,
    VerificationState,
)

__all__ = [
    "AttestationRecord",
    "Authorization",
    "CheckOutcome",
    "DOMAIN_NAME",
    "DOMAIN_VERSION",
    "EncodingError",
    "EnvelopeSigner",
    "EnvelopeVerifier",
    "InMemoryLedger",
    "InMemoryNonceStore",
    "InvalidReason",
    "KNOWN_CHAIN_IDS",
    "Ledger",
    "LedgerReceipt",
    "NetworkError",
    "NonceStore",
    "PaymentPayload",
    "PaymentRequirements",
    "PaymentSigner",
    "PaymentVerifier",
    "ProtocolError",
    "SettlementError",
    "SettlementReceipt",
    "SettlementRelay",
    "SqliteNonceStore",
    "TrustScorer",
    "TypedDataDomain",
    "VerificationFailure",
    "VerificationOutcome",
    "VerificationResult",
    "VerificationState",
    "Web3Ledger",
    "WorkEnvelope",
    "calculate_trust_score",
    "canonical_envelope",
    "chain_id_for",
    "commitment_for",
    "encode_authorization",
    "encode_envelope",
    "format_agent_id",
    "generate_nonce",
    "is_trust_score_passing",
    "nonce_store_from_url",
]
