"""HTTP surface of the attested scoring service."""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from agentscore import __version__
from agentscore.attestation.inputs import fetch_score_input
from agentscore.attestation.scoring import SCORING_VERSION, ScoreInput, compute_score
from agentscore.attestation.signer import AttestationSigner
from agentscore.chain.registry import RegistryReader
from agentscore.storage.database import SessionFactory

logger = logging.getLogger(__name__)

SERVICE_NAME = "agentscore-attested-scoring"


class ScoreRequest(BaseModel):
    """Pre-fetched inputs; everything except the agent id defaults."""

    model_config = ConfigDict(populate_by_name=True)

    agent_id: int = Field(alias="agentId", ge=0)
    feedback_count: int = Field(default=0, alias="feedbackCount", ge=0)
    feedback_value: float = Field(default=0.0, alias="feedbackValue")
    completed_mandates: int = Field(default=0, alias="completedMandates", ge=0)
    total_mandates: int = Field(default=0, alias="totalMandates", ge=0)
    total_escrow_wei: str = Field(default="0", alias="totalEscrowWei", pattern=r"^\d+$")
    has_metadata: bool = Field(default=False, alias="hasMetadata")
    has_skills: bool = Field(default=False, alias="hasSkills")
    owner_verified: bool = Field(default=False, alias="ownerVerified")

    def to_input(self) -> ScoreInput:
        return ScoreInput(
            agent_id=self.agent_id,
            feedback_count=self.feedback_count,
            feedback_value=self.feedback_value,
            completed_mandates=self.completed_mandates,
            total_mandates=self.total_mandates,
            total_escrow_wei=int(self.total_escrow_wei),
            has_metadata=self.has_metadata,
            has_skills=self.has_skills,
            owner_verified=self.owner_verified,
        )


class VerifyRequest(BaseModel):
    message: str | None = None
    signature: str | None = None


def create_app(
    reader: RegistryReader,
    signer: AttestationSigner,
    *,
    rpc_label: str,
    session_factory: SessionFactory | None = None,
    clock: Callable[[], float] = time.time,
    on_shutdown: Callable[[], Awaitable[None]] | None = None,
) -> FastAPI:
    """Build the service app.

    Args:
        reader: Registry reader used by `GET /score/{agent_id}`.
        signer: Key that signs every score.
        rpc_label: Redacted RPC endpoint shown by `/health`.
        session_factory: Optional store supplying scanned task counts.
        clock: Source of unix timestamps.
        on_shutdown: Awaited once when the server shuts down.
    """

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        if on_shutdown is not None:
            await on_shutdown()

    app = FastAPI(
        title="Attested Scoring Service",
        description="Deterministic on-chain agent scores, signed for independent verification.",
        version=__version__,
        lifespan=lifespan,
    )

    @app.exception_handler(RequestValidationError)
    async def _bad_request(_request: Request, exc: RequestValidationError) -> JSONResponse:
        fields = sorted({str(e["loc"][-1]) for e in exc.errors() if e.get("loc")})
        return JSONResponse(status_code=400, content={"detail": "Invalid request", "fields": fields})

    def _sign(score_input: ScoreInput) -> dict[str, Any]:
        now = int(clock())
        output = compute_score(score_input, timestamp=now)
        return signer.sign(output, signed_at=now).to_dict()

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "service": SERVICE_NAME,
            "version": SCORING_VERSION,
            "signer": signer.address,
            "rpc": rpc_label,
        }

    @app.get("/score/{agent_id}")
    async def score_agent(agent_id: str) -> dict[str, Any]:
        if not agent_id.isdigit():
            raise HTTPException(status_code=400, detail="Invalid agentId")
        score_input = await fetch_score_input(reader, int(agent_id), session_factory=session_factory)
        logger.info("Attested score requested for agent %s", agent_id)
        return _sign(score_input)

    @app.post("/score")
    async def score_prefetched(req: ScoreRequest) -> dict[str, Any]:
        return _sign(req.to_input())

    @app.post("/verify")
    async def verify(req: VerifyRequest) -> dict[str, Any]:
        if not req.message or not req.signature:
            raise HTTPException(status_code=400, detail="message and signature required")
        return signer.verify(req.message, req.signature).to_dict()

    return app
