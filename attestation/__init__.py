"""Work-attestation verifier service."""

from .checks import CommitFormatCheck, HttpIntegrityCheck, IntentCheck
from .config import AttestationConfig, load_config
from .process import create_app
from .service import AttestationVerifier, attestation_hash

__all__ = [
    "AttestationConfig",
    "AttestationVerifier",
    "CommitFormatCheck",
    "HttpIntegrityCheck",
    "IntentCheck",
    "attestation_hash",
    "create_app",
    "load_config",
]
