"""
FastAPI application exposing the analysis trigger.

POST /analyze-handoff-patterns runs one analysis and answers with the
camelCase summary; errors are answered as {"error": "<message>"}.
"""

import json
from collections.abc import Callable, Sequence

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from adapters.http.auth import verify_bearer_token
from adapters.wiring import build_service
from handoff_patterns.config import APIConfig, AppConfig, get_config
from handoff_patterns.errors import PatternAnalysisError
from handoff_patterns.logging_setup import configure_logging
from handoff_patterns.services.pattern_analysis import PatternAnalysisService

logger = structlog.get_logger(__name__)

ANALYZE_PATH = "/analyze-handoff-patterns"

ServiceFactory = Callable[[AppConfig], PatternAnalysisService]


async def _read_payload(request: Request) -> dict:
    """An empty or unparsable body means a default run."""
    body = await request.body()
    if not body:
        return {}
    try:
        payload = json.loads(body)
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def create_app(
    service_factory: ServiceFactory | None = None,
    config_loader: Callable[[], AppConfig] = get_config,
    allowed_origins: Sequence[str] | None = None,
) -> FastAPI:
    factory = service_factory or build_service
    api_logger = logger.bind(component="api")

    app = FastAPI(
        title="Handoff Patterns API",
        description="Non-clinical symptom pattern surfacing from caregiver handoffs",
        version="0.1.0",
    )
    app.state.service = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(allowed_origins or APIConfig().allowed_origins),
        allow_methods=["POST", "OPTIONS"],
        allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
    )

    @app.exception_handler(PatternAnalysisError)
    async def pattern_analysis_error_handler(
        request: Request, exc: PatternAnalysisError
    ) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    def get_service(config: AppConfig) -> PatternAnalysisService:
        if app.state.service is None:
            app.state.service = factory(config)
        return app.state.service

    @app.options(ANALYZE_PATH)
    async def analyze_preflight() -> PlainTextResponse:
        return PlainTextResponse("ok")

    @app.post(ANALYZE_PATH)
    async def analyze_handoff_patterns(request: Request) -> JSONResponse:
        # Configuration problems surface before any credential or body is looked at
        config = config_loader()
        caller = verify_bearer_token(request.headers.get("Authorization"), config.auth)
        payload = await _read_payload(request)

        service = get_service(config)
        try:
            response = await service.run(payload, caller)
        except PatternAnalysisError:
            raise
        except Exception as e:
            api_logger.error("pattern_analysis_run_failed", error_type=type(e).__name__)
            raise PatternAnalysisError() from e

        return JSONResponse(content=response.model_dump(mode="json", by_alias=True))

    return app


def main() -> None:
    """Serve the API with uvicorn using environment configuration."""
    import uvicorn

    config = get_config()
    configure_logging(config.logging)
    uvicorn.run(
        create_app(allowed_origins=config.api.allowed_origins),
        host=config.api.host,
        port=config.api.port,
    )


if __name__ == "__main__":
    main()
