from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, File, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from fastapi.staticfiles import StaticFiles

from .auth import Session, SessionManager
from .configuration import Settings, configure_logging, get_settings
from .credential_store import AdminCredential, CredentialStore
from .errors import (
    OrderNotFoundError,
    PrintOrderError,
    RateLimitedError,
    StorageFailure,
    UnauthorizedError,
    ValidationError,
)
from .middleware import RateLimiter, RequestLoggingMiddleware
from .models import (
    ClearFilesResponse,
    CreateOrderResponse,
    LoginRequest,
    LoginResponse,
    Order,
    OrderCreate,
    StatusUpdate,
    StatusUpdateResponse,
    SuccessResponse,
    UploadResponse,
)
from .order_repository import OrderRepository
from .record_store import build_record_store
from .uploads import PUBLIC_PREFIX, UploadHandler
from .utils import ensure_directory

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    orders: OrderRepository
    credentials: CredentialStore
    sessions: SessionManager
    uploads: UploadHandler
    login_limiter: RateLimiter


def build_services(settings: Settings) -> Services:
    ensure_directory(settings.data_dir)
    uploads = UploadHandler.from_settings(settings)
    uploads.ensure_sentinel()

    credentials = CredentialStore(
        settings.data_dir / "admin.json",
        seed=AdminCredential(username=settings.admin.username, password=settings.admin.password),
    )
    credentials.ensure_seeded()

    return Services(
        settings=settings,
        orders=OrderRepository(build_record_store(settings, "orders", Order)),
        credentials=credentials,
        sessions=SessionManager(credentials, ttl_seconds=settings.auth.session_ttl_seconds),
        uploads=uploads,
        login_limiter=RateLimiter(requests_per_minute=settings.auth.login_attempts_per_minute),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


def require_admin(request: Request, services: Services = Depends(get_services)) -> Optional[Session]:
    """Enforced only when ``auth.enforce_admin_token`` is set."""
    if not services.settings.auth.enforce_admin_token:
        return None
    session = services.sessions.validate(_bearer_token(request))
    if session is None:
        raise UnauthorizedError("Admin session required")
    return session


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(PrintOrderError)
    async def handle_domain_error(request: Request, exc: PrintOrderError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload())

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        error = ValidationError("Invalid request", details={"errors": jsonable_encoder(exc.errors())})
        return JSONResponse(status_code=error.status_code, content=error.to_payload())

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(status_code=500, content={"error": "Internal server error", "category": "internal_error"})


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)
    services = build_services(settings)

    app = FastAPI(title="Print Order API", version="0.1.0")
    app.state.services = services

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)
    app.mount(PUBLIC_PREFIX, StaticFiles(directory=services.uploads.upload_dir), name="uploads")

    @app.get("/healthz")
    def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/upload", response_model=UploadResponse)
    async def upload_files(
        files: Optional[List[UploadFile]] = File(None),
        services: Services = Depends(get_services),
    ) -> UploadResponse:
        refs = await services.uploads.save_batch(files or [])
        return UploadResponse(files=refs)

    @app.post("/api/orders", response_model=CreateOrderResponse)
    def create_order(payload: OrderCreate, services: Services = Depends(get_services)) -> CreateOrderResponse:
        order = services.orders.append(payload)
        return CreateOrderResponse(order_id=order.order_id, order=order)

    @app.get("/api/orders", response_model=List[Order])
    def list_orders(services: Services = Depends(get_services)) -> List[Order]:
        return services.orders.list()

    @app.get("/api/orders/{order_id}", response_model=Order)
    def get_order(order_id: str, services: Services = Depends(get_services)) -> Order:
        order = services.orders.get_by_id(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    @app.put("/api/orders/{order_id}/status", response_model=StatusUpdateResponse)
    def update_order_status(
        order_id: str,
        payload: StatusUpdate,
        services: Services = Depends(get_services),
        _admin: Optional[Session] = Depends(require_admin),
    ) -> StatusUpdateResponse:
        order = services.orders.update_status(order_id, payload.status)
        return StatusUpdateResponse(order=order)

    @app.delete("/api/orders", response_model=SuccessResponse)
    def clear_orders(
        services: Services = Depends(get_services),
        _admin: Optional[Session] = Depends(require_admin),
    ) -> SuccessResponse:
        services.orders.clear()
        return SuccessResponse()

    @app.post("/api/admin/login", response_model=LoginResponse)
    def admin_login(payload: LoginRequest, request: Request, services: Services = Depends(get_services)) -> LoginResponse:
        client = request.client.host if request.client else "unknown"
        if not services.login_limiter.is_allowed(client):
            raise RateLimitedError("Too many login attempts; try again later")
        token, session = services.sessions.login(payload.username, payload.password)
        return LoginResponse(token=token, expires_at=session.expires_at)

    @app.post("/api/admin/logout", response_model=SuccessResponse)
    def admin_logout(request: Request, services: Services = Depends(get_services)) -> SuccessResponse:
        token = _bearer_token(request)
        if not token or not services.sessions.revoke(token):
            raise UnauthorizedError("No active session")
        return SuccessResponse()

    @app.get("/api/files/{filename}")
    def download_file(filename: str, services: Services = Depends(get_services)) -> FileResponse:
        path = services.uploads.resolve(filename)
        return FileResponse(path, filename=path.name)

    @app.delete("/api/files", response_model=ClearFilesResponse)
    def clear_files(
        services: Services = Depends(get_services),
        _admin: Optional[Session] = Depends(require_admin),
    ) -> ClearFilesResponse:
        result = services.uploads.clear_all_files()
        if not result.ok:
            raise StorageFailure("Failed to clear some files", details=result.model_dump())
        return ClearFilesResponse(deleted=result.deleted)

    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(app, host=settings.server.host, port=settings.server.port)
