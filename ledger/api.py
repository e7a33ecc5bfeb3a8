import json
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import Settings, load_settings
from .credentials import (
    CredentialStore,
    InMemoryCredentialStore,
    PasswordHasher,
    SqlCredentialStore,
    seed_default_admin,
)
from .db import create_session_factory
from .errors import (
    AdminNotFoundError,
    DuplicateUsernameError,
    InvalidCredentialsError,
    InvalidDistributionError,
    NotAuthenticatedError,
    StorageError,
    ValidationFailedError,
)
from .models import (
    AdminIdentity,
    AdminProfile,
    AdminSummary,
    DistributionResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    ProfileResponse,
    TransactionPage,
    UserTransactionsResponse,
)
from .service import DistributionService, QueryService, field_errors
from .sessions import SessionService
from .storage import InMemoryTransactionStore, SqlTransactionStore, TransactionStore

logger = logging.getLogger(__name__)

router = APIRouter()


def _session_token(request: Request) -> Optional[str]:
    return request.cookies.get(request.app.state.settings.session_cookie_name)


def current_identity(request: Request) -> Optional[AdminIdentity]:
    return request.app.state.sessions.validate(_session_token(request))


def authenticated_admin(identity: Optional[AdminIdentity] = Depends(current_identity)) -> AdminIdentity:
    # Runs before query and body validation so anonymous callers always get 401.
    if identity is None:
        raise NotAuthenticatedError("Authentication required")
    return identity


async def distribution_payload(
    request: Request,
    identity: AdminIdentity = Depends(authenticated_admin),
) -> dict[str, Any]:
    # The body is read only after the session check has passed.
    raw = await request.body()
    if not raw:
        return {}
    try:
        payload = json.loads(raw)
    except ValueError as e:
        raise InvalidDistributionError(
            "Validation error",
            [{"field": "body", "message": "JSON decode error", "type": "json_invalid"}],
        ) from e
    if not isinstance(payload, dict):
        raise InvalidDistributionError(
            "Validation error",
            [{"field": "body", "message": "Input should be a valid dictionary", "type": "dict_type"}],
        )
    return payload


@router.get("/health", tags=["System"])
def health_check():
    return {"status": "healthy", "service": "uc-distribution-ledger"}


@router.post("/auth/login", response_model=LoginResponse, tags=["Auth"])
def login(credentials: LoginRequest, request: Request, response: Response) -> LoginResponse:
    settings: Settings = request.app.state.settings
    sessions: SessionService = request.app.state.sessions

    token = sessions.login(credentials.username, credentials.password)
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        max_age=int(sessions.ttl.total_seconds()),
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite="lax",
    )
    identity = sessions.validate(token)
    return LoginResponse(
        message="Login successful",
        admin=AdminSummary(id=identity.id, username=identity.username),
    )


@router.post("/auth/logout", response_model=MessageResponse, tags=["Auth"])
def logout(request: Request, response: Response) -> MessageResponse:
    request.app.state.sessions.logout(_session_token(request))
    response.delete_cookie(request.app.state.settings.session_cookie_name)
    return MessageResponse(message="Logout successful")


@router.get("/auth/me", response_model=ProfileResponse, tags=["Auth"])
def read_current_admin(request: Request, identity: AdminIdentity = Depends(authenticated_admin)) -> ProfileResponse:
    admin = request.app.state.sessions.profile(identity)
    return ProfileResponse(admin=AdminProfile(id=admin.id, username=admin.username, balance=admin.balance))


@router.post("/transactions", response_model=DistributionResponse, tags=["Transactions"])
def create_transaction(
    request: Request,
    identity: AdminIdentity = Depends(authenticated_admin),
    payload: dict[str, Any] = Depends(distribution_payload),
) -> DistributionResponse:
    transaction = request.app.state.distribution.distribute(
        identity,
        payload.get("userUID"),
        payload.get("ucAmount"),
        payload.get("coinsAmount"),
    )
    return DistributionResponse(message="Distribution successful", transaction=transaction)


@router.get("/transactions", response_model=TransactionPage, tags=["Transactions"])
def list_transactions(
    request: Request,
    identity: AdminIdentity = Depends(authenticated_admin),
    limit: Optional[str] = None,
    offset: Optional[str] = None,
    user_uid: Optional[str] = Query(default=None, alias="userUID"),
    date_from: Optional[date] = Query(default=None, alias="dateFrom"),
    date_to: Optional[date] = Query(default=None, alias="dateTo"),
) -> TransactionPage:
    return request.app.state.queries.get_page(identity, limit, offset, user_uid, date_from, date_to)


@router.get("/transactions/export", tags=["Transactions"])
def export_transactions(
    request: Request,
    identity: AdminIdentity = Depends(authenticated_admin),
    user_uid: Optional[str] = Query(default=None, alias="userUID"),
    date_from: Optional[date] = Query(default=None, alias="dateFrom"),
    date_to: Optional[date] = Query(default=None, alias="dateTo"),
) -> Response:
    content = request.app.state.queries.export_csv(identity, user_uid, date_from, date_to)
    filename = f"transactions_{datetime.now(timezone.utc).date().isoformat()}.csv"
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.get("/transactions/user/{uid}", response_model=UserTransactionsResponse, tags=["Transactions"])
def list_user_transactions(
    uid: str,
    request: Request,
    identity: AdminIdentity = Depends(authenticated_admin),
) -> UserTransactionsResponse:
    return UserTransactionsResponse(transactions=request.app.state.queries.get_by_uid(identity, uid))


def _error(status_code: int, message: str, errors: Optional[list[dict]] = None) -> JSONResponse:
    body: dict[str, Any] = {"message": message}
    if errors is not None:
        body["errors"] = errors
    return JSONResponse(status_code=status_code, content=body)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return _error(status.HTTP_400_BAD_REQUEST, "Validation error", field_errors(exc.errors(), skip_source=True, root_field="body"))

    @app.exception_handler(ValidationFailedError)
    async def validation_handler(request: Request, exc: ValidationFailedError):
        return _error(status.HTTP_400_BAD_REQUEST, str(exc), exc.errors)

    @app.exception_handler(InvalidCredentialsError)
    async def invalid_credentials_handler(request: Request, exc: InvalidCredentialsError):
        return _error(status.HTTP_401_UNAUTHORIZED, "Invalid credentials")

    @app.exception_handler(NotAuthenticatedError)
    async def not_authenticated_handler(request: Request, exc: NotAuthenticatedError):
        return _error(status.HTTP_401_UNAUTHORIZED, "Authentication required")

    @app.exception_handler(AdminNotFoundError)
    async def admin_not_found_handler(request: Request, exc: AdminNotFoundError):
        return _error(status.HTTP_404_NOT_FOUND, "Admin not found")

    @app.exception_handler(DuplicateUsernameError)
    async def duplicate_username_handler(request: Request, exc: DuplicateUsernameError):
        return _error(status.HTTP_409_CONFLICT, str(exc))

    @app.exception_handler(StorageError)
    async def storage_error_handler(request: Request, exc: StorageError):
        logger.error(f"Storage failure on {request.method} {request.url.path}: {exc}")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=exc)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


def build_stores(settings: Settings) -> tuple[CredentialStore, TransactionStore]:
    hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    if settings.database_url:
        session_factory = create_session_factory(settings.database_url)
        return SqlCredentialStore(session_factory, hasher), SqlTransactionStore(session_factory)
    return InMemoryCredentialStore(hasher), InMemoryTransactionStore()


def create_app(
    settings: Optional[Settings] = None,
    credentials: Optional[CredentialStore] = None,
    transactions: Optional[TransactionStore] = None,
    root_path: str = "",
) -> FastAPI:
    settings = settings or load_settings()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    if credentials is None or transactions is None:
        default_credentials, default_transactions = build_stores(settings)
        credentials = credentials or default_credentials
        transactions = transactions or default_transactions
    seed_default_admin(credentials, settings.default_admin_username, settings.default_admin_password)

    app = FastAPI(
        title="UC Distribution Ledger API",
        description="Admin tool for distributing UC and Coins with an append-only transaction ledger",
        version="1.0.0",
        root_path=root_path,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.credentials = credentials
    app.state.transactions = transactions
    app.state.sessions = SessionService(
        credentials,
        settings.session_secret,
        ttl=timedelta(hours=settings.session_ttl_hours),
    )
    app.state.distribution = DistributionService(transactions)
    app.state.queries = QueryService(transactions)

    app.include_router(router)
    register_exception_handlers(app)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
