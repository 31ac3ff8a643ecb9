"""FastAPI application for costpilot"""

from fastapi import FastAPI, Depends, Query, Request, WebSocket, status
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.concurrency import run_in_threadpool
from contextlib import asynccontextmanager
import asyncio
import logging
import time
from typing import Optional

from ..core.config import Settings
from ..core.exceptions import (
    AuthenticationError, AuthorizationError, ConflictError, CostPilotError,
    RecommendationNotFoundError, ValidationError
)
from ..core.monitoring import API_REQUEST_DURATION
from ..core.orchestrator.service import AutopilotService
from ..core.security import TokenManager, User

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

# websocket pump wait on the subscriber queue
EVENT_POLL_SECONDS = 1.0


def create_app(service: AutopilotService, settings: Optional[Settings] = None) -> FastAPI:
    """Create the HTTP surface over a built service.

    The scheduler is started and stopped by the application lifespan.
    """
    settings = settings or service.settings
    secret = settings.security.jwt_secret
    token_manager = TokenManager(
        secret.get_secret_value() if secret else None,
        algorithm=settings.security.jwt_algorithm,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting costpilot API")
        service.start()
        yield
        logger.info("Shutting down costpilot API")
        await run_in_threadpool(service.stop)
        logger.info("costpilot API shutdown complete")

    app = FastAPI(
        title="costpilot API",
        description="Autonomous cost-optimization recommendations",
        version=settings.version,
        lifespan=lifespan,
    )
    app.state.service = service
    app.state.token_manager = token_manager

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all requests"""
        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time
        logger.info(f"{request.method} {request.url.path} -> {response.status_code} in {duration:.3f}s")
        service.metrics.record_histogram(API_REQUEST_DURATION, duration, {
            "method": request.method,
            "status": str(response.status_code),
        })
        return response

    def error_response(status_code: int, exc: Exception) -> JSONResponse:
        return JSONResponse(status_code=status_code, content={"error": str(exc)})

    @app.exception_handler(AuthenticationError)
    async def authentication_handler(request: Request, exc: AuthenticationError):
        return error_response(status.HTTP_401_UNAUTHORIZED, exc)

    @app.exception_handler(AuthorizationError)
    async def authorization_handler(request: Request, exc: AuthorizationError):
        return error_response(status.HTTP_403_FORBIDDEN, exc)

    @app.exception_handler(RecommendationNotFoundError)
    async def not_found_handler(request: Request, exc: RecommendationNotFoundError):
        return error_response(status.HTTP_404_NOT_FOUND, exc)

    @app.exception_handler(ConflictError)
    async def conflict_handler(request: Request, exc: ConflictError):
        return error_response(status.HTTP_409_CONFLICT, exc)

    @app.exception_handler(ValidationError)
    async def validation_handler(request: Request, exc: ValidationError):
        return error_response(status.HTTP_400_BAD_REQUEST, exc)

    @app.exception_handler(CostPilotError)
    async def application_handler(request: Request, exc: CostPilotError):
        logger.error(f"Application error: {exc}")
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, exc)

    def current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> User:
        if credentials is None:
            raise AuthenticationError("Missing bearer token")
        return token_manager.authenticate(credentials.credentials)

    # Health check endpoints
    @app.get("/health")
    def health():
        """Basic health check"""
        return {"status": "healthy", "timestamp": time.time()}

    @app.get("/health/ready")
    def readiness():
        """Readiness probe"""
        health_status = service.check_health()
        if not health_status.healthy:
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "not ready", "checks": health_status.checks,
                         "message": health_status.message},
            )
        return {"status": "ready", "checks": health_status.checks}

    @app.get("/metrics")
    def metrics():
        """Prometheus metrics endpoint"""
        return PlainTextResponse(service.metrics.export_prometheus())

    # Query surface
    @app.get("/api/recommendations")
    def list_recommendations(status_filter: Optional[str] = Query(None, alias="status"),
                             resource_type: Optional[str] = Query(None, alias="type")):
        recommendations = service.list_recommendations(status=status_filter, resource_type=resource_type)
        return [rec.to_payload() for rec in recommendations]

    @app.get("/api/recommendations/{recommendation_id}")
    def get_recommendation(recommendation_id: str):
        return service.get_recommendation(recommendation_id).to_payload()

    @app.get("/api/recommendations/{recommendation_id}/attempts")
    def list_attempts(recommendation_id: str):
        return [attempt.to_dict() for attempt in service.list_attempts(recommendation_id)]

    @app.get("/api/metrics/summary")
    def metrics_summary():
        return service.get_summary().to_dict()

    # Command surface; both block until the store reflects the decision
    @app.post("/api/recommendations/{recommendation_id}/approve")
    def approve(recommendation_id: str, user: User = Depends(current_user)):
        return service.approve(recommendation_id, user).to_payload()

    @app.post("/api/recommendations/{recommendation_id}/reject")
    def reject(recommendation_id: str, user: User = Depends(current_user)):
        return service.reject(recommendation_id, user).to_payload()

    # Real-time channel
    @app.websocket("/ws")
    async def events(websocket: WebSocket):
        await websocket.accept()
        subscription = service.subscribe()
        logger.info("WebSocket subscriber connected")

        async def forward_events():
            while True:
                event = await run_in_threadpool(subscription.get, EVENT_POLL_SECONDS)
                if event is not None:
                    await websocket.send_json(event.to_message())

        pump = asyncio.create_task(forward_events())
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
        finally:
            pump.cancel()
            await asyncio.gather(pump, return_exceptions=True)
            subscription.close()
            logger.info("WebSocket subscriber disconnected")

    return app


def run(service: AutopilotService, settings: Settings) -> None:
    """Serve the API with uvicorn until interrupted"""
    import uvicorn

    uvicorn.run(
        create_app(service, settings),
        host=settings.api.host,
        port=settings.api.port,
        log_level=settings.logging.level.lower(),
    )
