"""Versioned, typed descriptions of the on-chain entry points we call.

Call shapes are fixed here rather than inferred at call time; the ABI JSON
handed to web3 is rendered from these definitions.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Tuple


@dataclass(frozen=True)
class Param:
    name: str
    type: str

    def abi(self) -> Dict[str, str]:
        return {"name": self.name, "type": self.type, "internalType": self.type}


@dataclass(frozen=True)
class ContractMethod:
    name: str
    inputs: Tuple[Param, ...]
    outputs: Tuple[Param, ...] = ()
    state_mutability: str = "nonpayable"

    def abi(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "name": self.name,
            "inputs": [param.abi() for param in self.inputs],
            "outputs": [param.abi() for param in self.outputs],
            "stateMutability": self.state_mutability,
        }

    def arguments(self, values: Dict[str, Any]) -> List[Any]:
        """Order ``values`` by the declared inputs, refusing unknown or missing keys."""

        expected = [param.name for param in self.inputs]
        unknown = set(values) - set(expected)
        missing = [name for name in expected if name not in values]
        if unknown or missing:
            raise ValueError(
                f"{self.name}: unexpected {sorted(unknown)} / missing {missing} arguments"
            )
        return [values[name] for name in expected]


@dataclass(frozen=True)
class ContractInterface:
    name: str
    version: str
    methods: Tuple[ContractMethod, ...]

    def method(self, name: str) -> ContractMethod:
        for method in self.methods:
            if method.name == name:
                return method
        raise KeyError(f"{self.name} v{self.version} has no method {name}")

    def abi(self) -> List[Dict[str, Any]]:
        return [method.abi() for method in self.methods]


AUTHORIZATION_STATE = ContractMethod(
    name="authorizationState",
    inputs=(Param("authorizer", "address"), Param("nonce", "bytes32")),
    outputs=(Param("", "bool"),),
    state_mutability="view",
)

TRANSFER_WITH_AUTHORIZATION = ContractMethod(
    name="transferWithAuthorization",
    inputs=(
        Param("token", "address"),
        Param("from", "address"),
        Param("to", "address"),
        Param("value", "uint256"),
        Param("validAfter", "uint256"),
        Param("validBefore", "uint256"),
        Param("nonce", "bytes32"),
        Param("v", "uint8"),
        Param("r", "bytes32"),
        Param("s", "bytes32"),
    ),
)

POST_ATTESTATION = ContractMethod(
    name="postAttestation",
    inputs=(
        Param("agent", "address"),
        Param("bountyId", "uint256"),
        Param("attestationHash", "bytes32"),
        Param("trustScore", "uint8"),
        Param("ipfsHash", "string"),
        Param("intentVerified", "bool"),
        Param("integrityVerified", "bool"),
        Param("outcomeVerified", "bool"),
    ),
)

RELAYER_INTERFACE = ContractInterface(
    name="B402Relayer",
    version="1",
    methods=(AUTHORIZATION_STATE, TRANSFER_WITH_AUTHORIZATION),
)

VERIFIER_INTERFACE = ContractInterface(
    name="ArenaVerifier",
    version="1",
    methods=(POST_ATTESTATION,),
)


__all__ = [
    "AUTHORIZATION_STATE",
    "ContractInterface",
    "ContractMethod",
    "POST_ATTESTATION",
    "Param",
    "RELAYER_INTERFACE",
    "TRANSFER_WITH_AUTHORIZATION",
    "VERIFIER_INTERFACE",
]
