"""
FastAPI application for the student voting API.

Thin HTTP adapter over ``ElectionService``: it extracts the request's
network address for the fingerprint, maps ``VotingError`` subclasses to
status codes and exposes Prometheus metrics.
"""
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from services.shared import Fingerprint, VotingError

from .config import Settings, settings
from .models import (
    CandidateInfo,
    CandidateResult,
    CompleteVotingRequest,
    CompleteVotingResponse,
    ErrorResponse,
    FingerprintFields,
    HealthResponse,
    SignInRequest,
    SignInResponse,
    TallyResponse,
    VoteRequest,
    VoteResponse,
)
from .service import ElectionService, build_service

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.DEBUG else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Prometheus metrics
sign_in_counter = Counter(
    "sign_ins_total",
    "Total number of successful sign-ins",
    ["continue_voting"]
)
vote_counter = Counter(
    "ballots_cast_total",
    "Total number of ballots cast",
    ["position"]
)
completion_counter = Counter(
    "ballot_sets_completed_total",
    "Total number of completed ballot sets"
)
vote_errors = Counter(
    "voting_errors_total",
    "Total number of rejected voting requests",
    ["error_type"]
)
request_duration = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint", "status"]
)

# Rate limiter
limiter = Limiter(key_func=get_remote_address)

router = APIRouter(prefix=f"/api/{settings.API_VERSION}")

ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid request"},
    401: {"model": ErrorResponse, "description": "Session expired or invalid"},
    403: {"model": ErrorResponse, "description": "Blocked as a duplicate voter or from another device"},
    409: {"model": ErrorResponse, "description": "Already voted or concurrent update"},
    429: {"description": "Rate limit exceeded"},
    503: {"model": ErrorResponse, "description": "Store unavailable"},
}


def get_service(request: Request) -> ElectionService:
    return request.app.state.service


def extract_fingerprint(request: Request, fields: FingerprintFields) -> Fingerprint:
    """Combine client device signals with the connection's address."""
    return Fingerprint(
        device_id=fields.device_id,
        network=get_remote_address(request),
        browser_signature=fields.browser_signature,
    )


async def voting_error_handler(request: Request, exc: VotingError) -> JSONResponse:
    vote_errors.labels(error_type=exc.code).inc()
    if exc.http_status >= 500:
        logger.error(f"{request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@router.post("/sign-in", response_model=SignInResponse, responses=ERROR_RESPONSES)
@limiter.limit(settings.RATE_LIMIT)
async def sign_in(
    request: Request,
    payload: SignInRequest,
    service: ElectionService = Depends(get_service),
) -> SignInResponse:
    """
    Sign in with institutional credentials.

    - **institutional_email**: Enrollment email, encodes year and department
    - **personal_email**: Personal email, unique per student
    - **matric_number**: Must carry the same year and department
    - **full_name**: First and last name
    - **device_id** / **browser_signature**: Device signals for duplicate detection

    Returns a session token and the positions still to vote for.
    """
    result = await service.sign_in(
        payload.institutional_email,
        payload.personal_email,
        payload.matric_number,
        payload.full_name,
        extract_fingerprint(request, payload),
    )
    sign_in_counter.labels(continue_voting=str(result.continue_voting).lower()).inc()

    return SignInResponse(
        institutional_email=result.institutional_email,
        session_token=result.session_token,
        expires_at=result.expires_at,
        remaining_positions=result.remaining_positions,
        continue_voting=result.continue_voting,
    )


@router.post("/vote", response_model=VoteResponse, responses=ERROR_RESPONSES)
@limiter.limit(settings.RATE_LIMIT)
async def submit_vote(
    request: Request,
    payload: VoteRequest,
    service: ElectionService = Depends(get_service),
) -> VoteResponse:
    """Cast one ballot for one position."""
    result = await service.cast_vote(
        payload.session_token,
        payload.institutional_email,
        payload.candidate_id,
        payload.position,
        extract_fingerprint(request, payload),
    )
    vote_counter.labels(position=result["position"]).inc()
    return VoteResponse(position=result["position"])


@router.post("/complete-voting", response_model=CompleteVotingResponse, responses=ERROR_RESPONSES)
@limiter.limit(settings.RATE_LIMIT)
async def complete_voting(
    request: Request,
    payload: CompleteVotingRequest,
    service: ElectionService = Depends(get_service),
) -> CompleteVotingResponse:
    """Finalize the ballot set once every position has a vote."""
    await service.complete_voting(
        payload.session_token,
        payload.institutional_email,
        extract_fingerprint(request, payload),
    )
    completion_counter.inc()
    return CompleteVotingResponse()


@router.get("/positions", response_model=List[str])
async def get_positions(service: ElectionService = Depends(get_service)) -> List[str]:
    """Positions in ballot order."""
    return service.get_positions()


@router.get("/candidates/{position}", response_model=List[CandidateInfo])
async def get_candidates(
    position: str,
    service: ElectionService = Depends(get_service),
) -> List[CandidateInfo]:
    """Candidates running for a position."""
    return [CandidateInfo(**c.to_dict()) for c in service.get_candidates(position)]


@router.get("/public/votes", response_model=TallyResponse)
async def get_tally(service: ElectionService = Depends(get_service)) -> TallyResponse:
    """Public results computed from valid ballots."""
    tally = await service.get_tally()
    return TallyResponse(
        vote_counts={
            position: [
                CandidateResult(candidate_id=row.candidate_id, name=row.name, votes=row.votes)
                for row in rows
            ]
            for position, rows in tally.vote_counts.items()
        },
        total_valid_votes=tally.total_valid_votes,
        last_updated=tally.computed_at,
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={503: {"model": HealthResponse, "description": "Service unhealthy"}}
)
async def health_check(service: ElectionService = Depends(get_service)):
    """
    Check health of the service and its dependencies.

    Returns overall health status and individual service statuses.
    """
    try:
        services = await service.health()
    except Exception as e:
        logger.error(f"Health check error: {e}")
        services = {"store": "error"}

    all_healthy = all(state == "connected" for state in services.values())
    response = HealthResponse(
        status="healthy" if all_healthy else "unhealthy",
        services=services,
        timestamp=datetime.now(timezone.utc),
    )
    return JSONResponse(
        status_code=status.HTTP_200_OK if all_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=response.model_dump(mode="json")
    )


def create_app(
    service: Optional[ElectionService] = None,
    app_settings: Settings = settings,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        service: Pre-built service; when omitted one is created from
            settings on startup and closed on shutdown
        app_settings: Settings used for CORS and service construction
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup and shutdown events."""
        owns_service = app.state.service is None
        logger.info(f"Starting {app_settings.SERVICE_NAME} service...")
        if owns_service:
            try:
                app.state.service = await build_service(app_settings)
            except Exception as e:
                logger.error(f"Failed to start {app_settings.SERVICE_NAME}: {e}")
                raise
        logger.info(f"{app_settings.SERVICE_NAME} started successfully")

        yield

        logger.info(f"Shutting down {app_settings.SERVICE_NAME} service...")
        if owns_service:
            await app.state.service.close()
            app.state.service = None

    app = FastAPI(
        title="Student Voting API",
        description="Sign in, vote once per position, and read the public tally",
        version=app_settings.API_VERSION,
        lifespan=lifespan
    )
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.CORS_ORIGINS,
        allow_credentials=app_settings.CORS_ALLOW_CREDENTIALS,
        allow_methods=app_settings.CORS_ALLOW_METHODS,
        allow_headers=app_settings.CORS_ALLOW_HEADERS,
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(VotingError, voting_error_handler)

    @app.middleware("http")
    async def prometheus_middleware(request: Request, call_next):
        """Middleware to track request duration."""
        started = time.perf_counter()
        response = await call_next(request)
        request_duration.labels(
            method=request.method,
            endpoint=request.url.path,
            status=response.status_code
        ).observe(time.perf_counter() - started)
        return response

    @app.get("/metrics")
    async def metrics():
        """Prometheus metrics endpoint."""
        return Response(
            content=generate_latest(),
            media_type=CONTENT_TYPE_LATEST
        )

    @app.get("/")
    async def root():
        """Root endpoint with API information."""
        return {
            "service": app_settings.SERVICE_NAME,
            "version": app_settings.API_VERSION,
            "status": "running",
            "endpoints": {
                "sign_in": f"/api/{settings.API_VERSION}/sign-in",
                "vote": f"/api/{settings.API_VERSION}/vote",
                "complete_voting": f"/api/{settings.API_VERSION}/complete-voting",
                "positions": f"/api/{settings.API_VERSION}/positions",
                "results": f"/api/{settings.API_VERSION}/public/votes",
                "health": f"/api/{settings.API_VERSION}/health",
                "metrics": "/metrics"
            }
        }

    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "services.voting_api.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info"
    )
