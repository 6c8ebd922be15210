"""Attested scoring service."""

from agentscore.attestation.scoring import ScoreInput, ScoreOutput, compute_score
from agentscore.attestation.server import create_app
from agentscore.attestation.signer import AttestationSigner, VerificationResult

__all__ = [
    "AttestationSigner",
    "ScoreInput",
    "ScoreOutput",
    "VerificationResult",
    "compute_score",
    "create_app",
]
