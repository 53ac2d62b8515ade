"""
HTTP surface for trend analysis.

Routes mirror the clinical dashboard's expectations: a batch auto-create
trigger, a listing endpoint and an on-demand single-metric calculation.
Authentication and workspace authorization happen upstream.
"""

from typing import Any

import structlog
import uvicorn
from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from vitaltrend.adapters.memory import (
    InMemoryPatientDirectory,
    InMemoryTrendStore,
    InMemoryVitalSignsRepository,
)
from vitaltrend.config import AppConfig, get_config
from vitaltrend.domain.errors import (
    InsufficientDataError,
    PatientNotFoundError,
    ValidationError,
)
from vitaltrend.logging_config import configure_logging
from vitaltrend.services.orchestrator import TrendOrchestrator, build_orchestrator

logger = structlog.get_logger(__name__)


class AutoCreateRequest(BaseModel):
    patient_id: str | None = None
    period_hours: float = 24.0
    update_existing: bool = False


class CalculateTrendRequest(BaseModel):
    patient_id: str | None = None
    metric_name: str | None = None
    period_hours: float = 24.0


def get_orchestrator(request: Request) -> TrendOrchestrator:
    return request.app.state.orchestrator


def create_app(
    orchestrator: TrendOrchestrator | None = None,
    config: AppConfig | None = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        orchestrator: Pre-built pipeline; defaults to one over in-memory adapters
        config: Application configuration; defaults to the environment

    Returns:
        Configured FastAPI app
    """
    config = config or get_config()
    configure_logging(config.logging)

    if orchestrator is None:
        orchestrator = build_orchestrator(
            config,
            repository=InMemoryVitalSignsRepository(),
            patients=InMemoryPatientDirectory(),
            store=InMemoryTrendStore(),
        )

    app = FastAPI(
        title="Vital Trend API",
        description="Trend analysis and alerting over patient vital signs",
        version="0.1.0",
        debug=config.debug,
    )
    app.state.orchestrator = orchestrator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = first.get("msg", "Invalid request")
        return JSONResponse(
            status_code=400,
            content={"error": f"{field}: {message}" if field else message},
        )

    @app.exception_handler(PatientNotFoundError)
    async def patient_not_found_handler(
        request: Request, exc: PatientNotFoundError
    ) -> JSONResponse:
        return JSONResponse(status_code=404, content={"error": str(exc)})

    @app.exception_handler(ValidationError)
    async def validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.post("/api/ai/trends/auto-create")
    async def auto_create_trends(
        body: AutoCreateRequest,
        orchestrator: TrendOrchestrator = Depends(get_orchestrator),
    ) -> dict[str, Any]:
        """Create or refresh trends for every tracked metric of a patient."""
        result = await orchestrator.process(
            body.patient_id or "",
            period_hours=body.period_hours,
            update_existing=body.update_existing,
        )
        return result.to_response()

    @app.get("/api/ai/trends")
    async def list_trends(
        patient_id: str,
        metric_name: str | None = None,
        limit: int = Query(default=10, ge=1, le=100),
        orchestrator: TrendOrchestrator = Depends(get_orchestrator),
    ) -> dict[str, Any]:
        trends = await orchestrator.reconciler.list_trends(
            patient_id, limit=limit, metric_name=metric_name
        )
        return {
            "trends": [t.model_dump(mode="json") for t in trends],
            "total": len(trends),
        }

    @app.post("/api/ai/trends", response_model=None)
    async def calculate_trend(
        body: CalculateTrendRequest,
        orchestrator: TrendOrchestrator = Depends(get_orchestrator),
    ) -> dict[str, Any] | JSONResponse:
        """Calculate one metric's trend on demand."""
        try:
            record = await orchestrator.calculate_metric(
                body.patient_id or "",
                body.metric_name or "",
                period_hours=body.period_hours,
            )
        except InsufficientDataError as e:
            return JSONResponse(
                status_code=400,
                content={"error": "Insufficient data for trend analysis", "message": str(e)},
            )
        return {"trend": record.model_dump(mode="json")}

    logger.info("api_app_created", allowed_origins=config.api.allowed_origins)
    return app


def main() -> None:
    config = get_config()
    uvicorn.run(
        "vitaltrend.api:create_app",
        factory=True,
        host=config.api.host,
        port=config.api.port,
        reload=config.api.reload,
    )


if __name__ == "__main__":
    main()
