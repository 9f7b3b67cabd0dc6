"""
x402 Facilitator Server - FastAPI wrapper around ``Facilitator``.

Exposes verification and settlement to resource servers over HTTP:

    POST /verify            verify a payload against a requirement
    POST /settle            verify, then settle inline or enqueue
    GET  /settle/{job_id}   poll an enqueued settlement
    GET  /health            liveness and settlement queue counters
    GET  /supported         supported (version, scheme, network) kinds

Status codes shared by every route: 400 for malformed bodies or wire
messages, 409 for a replayed nonce, 503 when the ledger is unreachable.
"""

import json
import logging
import time
from contextlib import asynccontextmanager
from typing import Any, Optional, Tuple, Type, TypeVar

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from ..codec import (
    ALL_PAYMENT_HEADERS,
    decode_payload,
    decode_requirement,
    load_payload,
    load_requirement,
)
from ..config import FacilitatorConfig
from ..engine.exceptions import (
    ConfigurationError,
    DecodeError,
    LedgerUnavailableError,
    NonceAlreadyUsedError,
    QueueClosedError,
)
from ..facilitator.orchestrator import Facilitator
from ..ledger.bases import LedgerClient
from ..schemas.https import (
    ErrorResponse,
    HealthResponse,
    SettleRequest,
    SupportedKind,
    SupportedResponse,
    VerifyRequest,
)
from ..schemas.messages import BasePayload, BaseRequirement
from ..schemas.networks import to_v1_network
from ..schemas.versions import SUPPORTED_VERSIONS, ProtocolVersion

logger = logging.getLogger(__name__)

RequestModel = TypeVar("RequestModel", VerifyRequest, SettleRequest)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=message).to_dict())


class FacilitatorServer(FastAPI):
    """FastAPI application serving the x402 facilitator routes."""

    def __init__(
        self,
        facilitator: Optional[Facilitator] = None,
        config: Optional[FacilitatorConfig] = None,
        ledger_client: Optional[LedgerClient] = None,
        **fastapi_kwargs
    ):
        """Initialize the facilitator server.

        Args:
            facilitator: Facilitator to serve (default: built from ``config``)
            config: Facilitator settings (default: ``FacilitatorConfig()``)
            ledger_client: Ledger client used when building the facilitator
            **fastapi_kwargs: FastAPI arguments (title, version, etc.)
        """
        self.config = config or FacilitatorConfig()
        self.facilitator = facilitator or Facilitator.from_config(self.config, ledger_client)

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            await self.facilitator.start()
            try:
                yield
            finally:
                await self.facilitator.close()

        fastapi_kwargs.setdefault("title", "x402 Facilitator")
        super().__init__(lifespan=lifespan, **fastapi_kwargs)

        self.add_middleware(
            CORSMiddleware,
            allow_origins=self.config.cors_origins,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=list(ALL_PAYMENT_HEADERS),
        )
        self._setup_exception_handlers()
        self._setup_routes()

    # ==================== Request Decoding ====================

    @staticmethod
    async def _parse_body(request: Request, model: Type[RequestModel]) -> RequestModel:
        try:
            data = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise DecodeError(f"Request body is not valid JSON: {exc}") from exc
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            raise DecodeError(f"Invalid request body: {exc.errors(include_url=False)}") from exc

    @staticmethod
    def _decode_pair(body: VerifyRequest) -> Tuple[BasePayload, BaseRequirement]:
        """Decode the payload, then the requirement in the payload's version."""
        raw_payload = body.payment_payload
        payload = decode_payload(raw_payload) if isinstance(raw_payload, str) else load_payload(raw_payload)

        version = ProtocolVersion.from_value(payload.x402_version)
        raw_requirement = body.payment_requirements
        if isinstance(raw_requirement, str):
            requirement = decode_requirement(raw_requirement, version)
        else:
            requirement = load_requirement(raw_requirement, version)
        return payload, requirement

    # ==================== Error Handling ====================

    def _setup_exception_handlers(self) -> None:
        async def on_decode_error(request: Request, exc: DecodeError) -> JSONResponse:
            return _error(400, str(exc))

        async def on_nonce_reused(request: Request, exc: NonceAlreadyUsedError) -> JSONResponse:
            logger.warning("Replayed nonce rejected on %s: %s", request.url.path, exc.nonce)
            return _error(409, str(exc))

        async def on_ledger_unavailable(request: Request, exc: LedgerUnavailableError) -> JSONResponse:
            logger.warning("Ledger unavailable on %s: %s", request.url.path, exc)
            return _error(503, str(exc))

        async def on_queue_closed(request: Request, exc: QueueClosedError) -> JSONResponse:
            return _error(503, str(exc))

        async def on_configuration_error(request: Request, exc: ConfigurationError) -> JSONResponse:
            logger.error("Configuration error on %s: %s", request.url.path, exc)
            return _error(500, str(exc))

        self.add_exception_handler(DecodeError, on_decode_error)
        self.add_exception_handler(NonceAlreadyUsedError, on_nonce_reused)
        self.add_exception_handler(LedgerUnavailableError, on_ledger_unavailable)
        self.add_exception_handler(QueueClosedError, on_queue_closed)
        self.add_exception_handler(ConfigurationError, on_configuration_error)

    # ==================== Routes ====================

    def _setup_routes(self) -> None:
        """Register the facilitator endpoints."""

        @self.post("/verify")
        async def verify(request: Request):
            """Verify a payment payload against a requirement."""
            body = await self._parse_body(request, VerifyRequest)
            payload, requirement = self._decode_pair(body)
            result = await self.facilitator.verify(
                payload,
                requirement,
                skip_balance_check=body.skip_balance_check,
            )
            return JSONResponse(status_code=200, content=result.to_dict())

        @self.post("/settle")
        async def settle(request: Request):
            """Verify and settle a payment, inline or through the queue."""
            body = await self._parse_body(request, SettleRequest)
            payload, requirement = self._decode_pair(body)
            outcome = await self.facilitator.settle(payload, requirement, enqueue=body.enqueue)
            return JSONResponse(
                status_code=outcome.status_code,
                content=outcome.body,
                headers=outcome.headers,
            )

        @self.get("/settle/{job_id}")
        async def settlement_status(job_id: str):
            """Report the state of an enqueued settlement."""
            job = self.facilitator.queue.get_job(job_id)
            if job is None:
                return _error(404, f"Unknown settlement job: {job_id}")
            return JSONResponse(status_code=200, content=job.to_response().to_dict())

        @self.get("/health")
        async def health():
            response = HealthResponse(
                status="ok" if not self.facilitator.queue.closed else "closing",
                timestamp=int(time.time()),
                queue=self.facilitator.queue.stats(),
            )
            return JSONResponse(status_code=200, content=response.to_dict())

        @self.get("/supported")
        async def supported():
            return JSONResponse(status_code=200, content=self.supported_kinds().to_dict())

    def supported_kinds(self) -> SupportedResponse:
        """List every (version, scheme, network) combination the facilitator accepts."""
        networks = [config.caip2 for config in self.facilitator.registry.supported()]
        kinds = []
        for version in SUPPORTED_VERSIONS:
            for network in networks:
                name = to_v1_network(network) if version == ProtocolVersion.V1 else network
                kinds.append(SupportedKind(x402_version=int(version), scheme="exact", network=name))
        return SupportedResponse(kinds=kinds, networks=networks)


def create_app(config: Optional[FacilitatorConfig] = None, **fastapi_kwargs: Any) -> FacilitatorServer:
    """
    Application factory reading settings from the environment.

    Example:
        uvicorn x402_facilitator.servers.apps:create_app --factory
    """
    return FacilitatorServer(config=config or FacilitatorConfig.from_env(), **fastapi_kwargs)
