"""FastAPI surface that external schedulers and the game client call."""
from __future__ import annotations

import logging
import sqlite3
from typing import List, Optional

from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .errors import ConfigurationError, PurchaseError, UnknownDomain
from .service import ResolutionService

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = 30


class ResolveRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    unit_id: Optional[str] = Field(default=None, alias="unitId", min_length=1)
    triggered_by: Optional[str] = Field(default=None, alias="triggeredBy")


class TicketRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    profile_id: str = Field(alias="profileId", min_length=1)
    draw_id: str = Field(alias="drawId", min_length=1)
    numbers: Optional[List[int]] = None
    bonus_number: Optional[int] = Field(default=None, alias="bonusNumber")


def create_app(service: Optional[ResolutionService] = None) -> FastAPI:
    """Build the app around ``service`` (a default one is created lazily)."""

    app = FastAPI(title="Rockmundo Resolver", version="1.0.0")
    holder = {"service": service}

    def get_service() -> ResolutionService:
        if holder["service"] is None:
            holder["service"] = ResolutionService()
        return holder["service"]

    @app.get("/health")
    def health() -> dict:
        report = get_service().health()
        report["status"] = "ok" if report["database"] == "ok" else "degraded"
        return report

    @app.post("/resolve/{domain}")
    def resolve(domain: str, request: Optional[ResolveRequest] = None):
        request = request or ResolveRequest()
        try:
            summary = get_service().resolve(
                domain, unit_id=request.unit_id, triggered_by=request.triggered_by
            )
        except UnknownDomain as exc:
            return JSONResponse(status_code=404, content={"error": str(exc), "domain": domain})
        except ConfigurationError as exc:
            logger.error("Configuration error while resolving %s: %s", domain, exc)
            return JSONResponse(
                status_code=500,
                content={"error": str(exc), "domain": domain, "retryable": False},
            )
        except sqlite3.Error as exc:
            logger.exception("Storage failure while resolving %s", domain)
            return JSONResponse(
                status_code=503,
                content={"error": str(exc), "domain": domain, "retryable": True},
                headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
            )
        return summary.to_dict()

    @app.post("/lottery/tickets", status_code=201)
    def buy_ticket(request: TicketRequest):
        try:
            return get_service().buy_ticket(
                request.profile_id,
                request.draw_id,
                numbers=request.numbers,
                bonus=request.bonus_number,
            )
        except PurchaseError as exc:
            return JSONResponse(
                status_code=exc.status_code,
                content={"error": str(exc), "code": type(exc).__name__},
            )
        except sqlite3.Error as exc:
            logger.exception("Storage failure during ticket purchase")
            return JSONResponse(
                status_code=503,
                content={"error": str(exc), "retryable": True},
                headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
            )

    return app


__all__ = ["ResolveRequest", "TicketRequest", "create_app"]
