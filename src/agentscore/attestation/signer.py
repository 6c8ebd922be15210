"""EIP-191 signing and verification of attested scores."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from web3 import Web3

from agentscore.attestation.scoring import ScoreOutput

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignedAttestation:
    score: ScoreOutput
    signer: str
    signature: str
    message: str
    signed_at: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "score": self.score.to_dict(),
            "attestation": {
                "signer": self.signer,
                "signature": self.signature,
                "message": self.message,
                "timestamp": self.signed_at,
            },
        }


@dataclass(frozen=True)
class VerificationResult:
    valid: bool
    recovered_address: str | None = None
    expected_address: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"valid": self.valid}
        if self.recovered_address is not None:
            body["recoveredAddress"] = self.recovered_address
            body["expectedAddress"] = self.expected_address
        if self.error is not None:
            body["error"] = self.error
        return body


class AttestationSigner:
    """Holds the managed key that signs attested scores."""

    def __init__(self, account: LocalAccount) -> None:
        self._account = account

    @classmethod
    def from_mnemonic(cls, mnemonic: str) -> AttestationSigner:
        Account.enable_unaudited_hdwallet_features()
        return cls(Account.from_mnemonic(mnemonic))

    @classmethod
    def ephemeral(cls) -> AttestationSigner:
        account = Account.create()
        logger.warning("No signing mnemonic configured; using ephemeral dev key %s", account.address)
        return cls(account)

    @property
    def address(self) -> str:
        return self._account.address

    def sign_message(self, message: str) -> str:
        signed = self._account.sign_message(encode_defunct(text=message))
        return Web3.to_hex(signed.signature)

    def sign(self, score: ScoreOutput, *, signed_at: int) -> SignedAttestation:
        message = score.message()
        return SignedAttestation(
            score=score,
            signer=self.address,
            signature=self.sign_message(message),
            message=message,
            signed_at=signed_at,
        )

    def verify(self, message: str, signature: str) -> VerificationResult:
        """Recover the signer of `message` and compare it with this key."""
        try:
            recovered = Account.recover_message(encode_defunct(text=message), signature=signature)
        except Exception as e:
            # Malformed signatures surface as assorted decoding errors
            logger.debug("Signature recovery failed: %s", e)
            return VerificationResult(valid=False, error="Invalid signature")
        return VerificationResult(
            valid=recovered.lower() == self.address.lower(),
            recovered_address=recovered,
            expected_address=self.address,
        )
