"""
Pest Detection Review API

JSON backend for the reviewer dashboard.

Features:
- Bearer JWT identity (tokens issued by the external identity provider)
- Verification create/update with audit history
- Cursor-paginated detection and history listings
- Dashboard statistics served through a TTL cache
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from .analytics import AggregationEngine
from .cache import TTLCache
from .config import Config
from .detections import DetectionQueries
from .errors import NotFoundError, StoreError, ValidationError
from .middleware import RequestTrackingMiddleware
from .models import Page, utc_now_iso
from .pagination import DEFAULT_LIMIT, CursorPaginator
from .storage import DocumentStore, RecordStore, create_store
from .verification import VerificationEngine

logger = logging.getLogger(__name__)

security = HTTPBearer()


# ============================================================================
# Pydantic Models for API
# ============================================================================


class CurrentUser(BaseModel):
    user_id: str
    name: str


class CreateVerificationRequest(BaseModel):
    pred_id: str
    status: str
    verifier_id: str | None = None  # Defaults to the caller
    verifier_name: str | None = None
    confidence: float | None = None
    notes: str | None = None
    category: str | None = None
    correct_sci_name: str | None = None
    can_reuse_data: bool | None = None
    needs_expert_review: bool | None = None
    pred_image_url: str | None = None
    input_image_url: str | None = None


class UpdateVerificationRequest(BaseModel):
    updates: Dict[str, Any] = {}
    reason: str = ""
    changed_by: str | None = None  # Defaults to the caller


# ============================================================================
# Authentication
# ============================================================================


def create_access_token(
    data: dict,
    secret_key: str,
    algorithm: str = "HS256",
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed token the way the identity provider does (tests, local tooling)."""
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(hours=24))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, secret_key, algorithm=algorithm)


def verify_token(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> CurrentUser:
    """Verify JWT token and return the caller's identity."""
    try:
        payload = jwt.decode(
            credentials.credentials,
            request.app.state.jwt_secret,
            algorithms=[request.app.state.jwt_algorithm],
        )
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token has expired")
    except jwt.InvalidTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Could not validate credentials"
        )

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Could not validate credentials"
        )
    return CurrentUser(user_id=str(user_id), name=payload.get("name") or str(user_id))


def _page_response(page: Page, key: str) -> dict:
    response = {
        key: [item if isinstance(item, dict) else item.to_dict() for item in page.items],
        "next_cursor": page.next_cursor,
        "limit": page.limit,
        "has_more": page.has_more,
    }
    if page.total_count is not None:
        response["total_count"] = page.total_count
    return response


# ============================================================================
# Application Factory
# ============================================================================


def create_app(
    store: Optional[DocumentStore] = None,
    secret_key: Optional[str] = None,
    algorithm: Optional[str] = None,
    cache: Optional[TTLCache] = None,
    allowed_origins: Optional[list] = None,
) -> FastAPI:
    """
    Create the review API application.

    Args:
        store: Document store; built from Config when omitted
        secret_key: JWT verification key (defaults to Config.JWT_SECRET_KEY)
        algorithm: JWT algorithm (defaults to Config.JWT_ALGORITHM)
        cache: Cache for dashboard statistics
        allowed_origins: CORS origins (defaults to Config.ALLOWED_ORIGINS)

    Returns:
        Configured FastAPI app
    """
    secret_key = secret_key or Config.JWT_SECRET_KEY
    if not secret_key:
        raise ValueError("JWT_SECRET_KEY must be set to verify bearer tokens")

    is_development = Config.ENVIRONMENT == "development"
    app = FastAPI(
        title="Pestwatch Review API",
        description="Detection verification and dashboard statistics",
        version="1.0.0",
        docs_url="/docs" if is_development else None,
        redoc_url="/redoc" if is_development else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins if allowed_origins is not None else Config.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
        max_age=600,
    )

    if Config.ENVIRONMENT == "production" and Config.ALLOWED_HOSTS and Config.ALLOWED_HOSTS[0]:
        app.add_middleware(TrustedHostMiddleware, allowed_hosts=Config.ALLOWED_HOSTS)

    app.add_middleware(RequestTrackingMiddleware)

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response

    # ========================================================================
    # Error Mapping
    # ========================================================================

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": exc.message})

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": exc.message})

    @app.exception_handler(StoreError)
    async def handle_store_error(request: Request, exc: StoreError):
        logger.error(f"Store failure on {request.method} {request.url.path}: {exc.message}")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Storage backend error"},
        )

    # ========================================================================
    # Components
    # ========================================================================

    if store is None:
        store = create_store(Config.STORE_BACKEND, Config.store_config())
    if cache is None:
        cache = TTLCache(ttl_minutes=Config.CACHE_TTL_MINUTES)

    records = RecordStore(store)
    paginator = CursorPaginator(store)
    verifications = VerificationEngine(records, paginator)
    aggregations = AggregationEngine(records, cache=cache)
    detections = DetectionQueries(records, paginator)

    app.state.jwt_secret = secret_key
    app.state.jwt_algorithm = algorithm or Config.JWT_ALGORITHM
    app.state.store = store
    app.state.cache = cache
    app.state.verification_engine = verifications
    app.state.aggregation_engine = aggregations

    # ========================================================================
    # Health & Identity
    # ========================================================================

    @app.get("/api/v1/health")
    async def health_check():
        """Health check endpoint (no auth required)."""
        return {
            "status": "healthy",
            "timestamp": utc_now_iso(),
            "cache": cache.get_stats(),
        }

    @app.get("/api/v1/auth/me")
    async def get_current_user(user: CurrentUser = Depends(verify_token)):
        """Get current authenticated user info."""
        return {"user_id": user.user_id, "name": user.name}

    # ========================================================================
    # Verification Endpoints
    # ========================================================================

    @app.post("/api/v1/verifications", status_code=status.HTTP_201_CREATED)
    async def create_verification(
        request: CreateVerificationRequest, user: CurrentUser = Depends(verify_token)
    ):
        """Record the verdict for a detection."""
        data = request.model_dump(exclude_none=True)
        data.setdefault("verifier_id", user.user_id)
        data.setdefault("verifier_name", user.name)

        verification_id = verifications.create_verification(data)
        cache.invalidate()

        return {
            "id": verification_id,
            "verification": verifications.get_verification(verification_id).to_dict(),
        }

    @app.get("/api/v1/verifications")
    async def list_verifications(status: str, user: CurrentUser = Depends(verify_token)):
        """Verifications with the given status, most recent first."""
        results = verifications.get_verifications_by_status(status)
        return {
            "verifications": [v.to_dict() for v in results],
            "count": len(results),
        }

    @app.get("/api/v1/verifications/{verification_id}")
    async def get_verification(verification_id: str, user: CurrentUser = Depends(verify_token)):
        """Get one verification."""
        return {"verification": verifications.get_verification(verification_id).to_dict()}

    @app.patch("/api/v1/verifications/{verification_id}")
    async def update_verification(
        verification_id: str,
        request: UpdateVerificationRequest,
        user: CurrentUser = Depends(verify_token),
    ):
        """
        Update a verification.

        Present keys in ``updates`` overwrite stored values; every call adds
        one history entry.
        """
        merged = verifications.update_verification(
            verification_id,
            request.updates,
            changed_by=request.changed_by or user.user_id,
            reason=request.reason,
        )
        cache.invalidate()
        return {"verification": merged.to_dict()}

    # ========================================================================
    # Detection Endpoints
    # ========================================================================

    @app.get("/api/v1/detections")
    async def list_detections(
        limit: int = DEFAULT_LIMIT,
        cursor: str | None = None,
        status: str | None = None,
        user: CurrentUser = Depends(verify_token),
    ):
        """Cursor-paginated detections, newest first."""
        page = detections.list_detections(limit=limit, cursor=cursor, status=status)
        return _page_response(page, "detections")

    # Registered before /detections/{detection_id} so "recent" is not taken as an id
    @app.get("/api/v1/detections/recent")
    async def recent_detections(
        limit: int = 100,
        days: int = 7,
        user: CurrentUser = Depends(verify_token),
    ):
        """Detections from the last ``days`` days."""
        results = detections.get_recent_detections(limit=limit, days=days)
        return {"detections": results, "count": len(results)}

    @app.get("/api/v1/detections/map")
    async def map_detections(
        start: str | None = None,
        end: str | None = None,
        scientific_name: str | None = None,
        status: str | None = None,
        user: CurrentUser = Depends(verify_token),
    ):
        """Detections with coordinates for the map view."""
        results = detections.get_map_detections(
            start=start, end=end, scientific_name=scientific_name, status=status
        )
        return {"detections": results, "count": len(results)}

    @app.get("/api/v1/species")
    async def detected_species(user: CurrentUser = Depends(verify_token)):
        """Distinct scientific names seen in detections."""
        return {"species": detections.get_detected_species()}

    @app.get("/api/v1/detections/{detection_id}")
    async def get_detection(detection_id: str, user: CurrentUser = Depends(verify_token)):
        """Detection detail with its current verification, if any."""
        detection = detections.get_detection(detection_id)
        current = verifications.get_verification_for_detection(detection_id)
        return {
            "detection": detection,
            "verification": current.to_dict() if current else None,
        }

    @app.get("/api/v1/detections/{detection_id}/history")
    async def detection_history(detection_id: str, user: CurrentUser = Depends(verify_token)):
        """Audit trail for a detection, oldest first."""
        entries = verifications.get_verification_history(detection_id)
        return {"history": [e.to_dict() for e in entries]}

    @app.get("/api/v1/history")
    async def history_page(
        limit: int = DEFAULT_LIMIT,
        cursor: str | None = None,
        user: CurrentUser = Depends(verify_token),
    ):
        """All verification changes, newest first."""
        page = verifications.get_history_page(limit=limit, cursor=cursor)
        return _page_response(page, "history")

    # ========================================================================
    # Statistics Endpoints
    # ========================================================================

    @app.get("/api/v1/stats/verification")
    async def verification_stats(user: CurrentUser = Depends(verify_token)):
        return aggregations.query_veri_stats().to_dict()

    @app.get("/api/v1/stats/categories")
    async def category_stats(year: int | None = None, user: CurrentUser = Depends(verify_token)):
        year = year if year is not None else datetime.now(timezone.utc).year
        months = aggregations.get_category_counts_by_month(year)
        return {"year": year, "months": [m.to_dict() for m in months]}

    @app.get("/api/v1/stats/geographic")
    async def geographic_stats(user: CurrentUser = Depends(verify_token)):
        return {"states": [c.to_dict() for c in aggregations.get_geographic_coverage()]}

    @app.get("/api/v1/stats/timeline")
    async def timeline_stats(user: CurrentUser = Depends(verify_token)):
        return {"points": [p.to_dict() for p in aggregations.get_line_chart_data()]}

    logger.info(f"Review API created (store: {type(store).__name__})")
    return app
