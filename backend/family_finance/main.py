from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator

from fastapi import APIRouter, Depends, FastAPI, File, Request, Response, UploadFile, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings, settings
from .errors import RecordNotFoundError, StoreError, StoreTimeoutError
from .logs import configure_logging, get_logger
from .persistence import Repositories, Repository
from .schemas import (
    ApiErrorDetail,
    ApiErrorResponse,
    BillReminder,
    Budget,
    DashboardResponse,
    Expense,
    Goal,
    HealthResponse,
    Income,
    Investment,
    MessageResponse,
    Record,
    StatsResponse,
    UploadResponse,
)
from .services.aggregation import compute_dashboard, compute_stats
from .services.uploads import save_upload
from .store import RecordStore

logger = get_logger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, PUT, DELETE, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}

HTTP_ERROR_CODES = {
    400: "BAD_REQUEST",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    413: "PAYLOAD_TOO_LARGE",
    500: "STORAGE_ERROR",
    503: "STORE_TIMEOUT",
}


def build_error_response(
    status_code: int,
    code: str,
    message: str,
    details: list[ApiErrorDetail] | None = None,
) -> JSONResponse:
    payload = ApiErrorResponse(error=message, code=code, details=details or [])
    return JSONResponse(status_code=status_code, content=payload.model_dump())


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details: list[ApiErrorDetail] = []
    for err in exc.errors():
        loc = ".".join(str(item) for item in err.get("loc", []) if item != "body")
        details.append(ApiErrorDetail(field=loc or "body", message=err.get("msg", "validation error")))
    return build_error_response(status.HTTP_400_BAD_REQUEST, "VALIDATION_ERROR", "Invalid request payload", details)


async def value_error_exception_handler(request: Request, exc: ValueError) -> JSONResponse:
    return build_error_response(
        status.HTTP_400_BAD_REQUEST,
        "VALIDATION_ERROR",
        "Invalid request payload",
        [ApiErrorDetail(field="body", message=str(exc))],
    )


async def not_found_exception_handler(request: Request, exc: RecordNotFoundError) -> JSONResponse:
    return build_error_response(status.HTTP_404_NOT_FOUND, "NOT_FOUND", str(exc))


async def store_timeout_exception_handler(request: Request, exc: StoreTimeoutError) -> JSONResponse:
    return build_error_response(status.HTTP_503_SERVICE_UNAVAILABLE, "STORE_TIMEOUT", str(exc))


async def store_exception_handler(request: Request, exc: StoreError) -> JSONResponse:
    logger.error("request_failed", method=request.method, path=request.url.path, error=str(exc))
    return build_error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "STORAGE_ERROR", str(exc))


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    code = HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR")
    return build_error_response(exc.status_code, code, str(exc.detail))


def get_repos(request: Request) -> Repositories:
    repos = request.app.state.repos
    if repos is None:
        raise StoreError("store is not open")
    return repos


def crud_router(
    prefix: str,
    attr: str,
    model: type[Record],
    label: str,
    with_get: bool = False,
) -> APIRouter:
    """List/create/update/delete routes (plus get when ``with_get``) for one bucket."""
    router = APIRouter(prefix=prefix, tags=[attr])

    def repository(repos: Repositories = Depends(get_repos)) -> Repository:
        return getattr(repos, attr)

    @router.get("", response_model=list[model], response_model_exclude_none=True)
    def list_records(repo: Repository = Depends(repository)) -> list[Any]:
        return repo.list()

    @router.post("", response_model=model, response_model_exclude_none=True, status_code=201)
    def create_record(payload: model, repo: Repository = Depends(repository)) -> Any:
        return repo.create(payload)

    if with_get:

        @router.get("/{record_id}", response_model=model, response_model_exclude_none=True)
        def get_record(record_id: str, repo: Repository = Depends(repository)) -> Any:
            return repo.get(record_id)

    @router.put("/{record_id}", response_model=model, response_model_exclude_none=True)
    def update_record(record_id: str, payload: model, repo: Repository = Depends(repository)) -> Any:
        return repo.update(record_id, payload)

    @router.delete("/{record_id}", response_model=MessageResponse)
    def delete_record(record_id: str, repo: Repository = Depends(repository)) -> MessageResponse:
        repo.delete(record_id)
        return MessageResponse(message=f"{label} deleted")

    return router


api = APIRouter(prefix="/api")


@api.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    return HealthResponse(status="ok")


@api.get("/stats", response_model=StatsResponse)
def get_stats(repos: Repositories = Depends(get_repos)) -> StatsResponse:
    return compute_stats(repos)


@api.get("/dashboard", response_model=DashboardResponse, response_model_exclude_none=True)
def get_dashboard(repos: Repositories = Depends(get_repos)) -> DashboardResponse:
    return compute_dashboard(repos)


@api.post("/upload", response_model=UploadResponse)
def upload_file(request: Request, file: UploadFile = File(...)) -> UploadResponse:
    cfg: Settings = request.app.state.settings
    repos = get_repos(request)
    filename = save_upload(file, Path(cfg.upload_dir), repos.make_id(), cfg.max_upload_bytes)
    return UploadResponse(url=str(request.url_for("uploads", path=filename)), filename=filename)


api.include_router(crud_router("/expenses", "expenses", Expense, "Expense", with_get=True))
api.include_router(crud_router("/budgets", "budgets", Budget, "Budget"))
api.include_router(crud_router("/goals", "goals", Goal, "Goal"))
api.include_router(crud_router("/investments", "investments", Investment, "Investment"))
api.include_router(crud_router("/bills", "bills", BillReminder, "Bill"))
api.include_router(crud_router("/income", "income", Income, "Income"))


def create_app(config: Settings | None = None) -> FastAPI:
    cfg = config or settings
    configure_logging(cfg.log_level, cfg.log_json)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        try:
            store = RecordStore.open(
                cfg.db_path,
                open_timeout=cfg.store_open_timeout,
                busy_timeout=cfg.store_busy_timeout,
            )
        except StoreError as exc:
            logger.critical("startup_failed", path=cfg.db_path, error=str(exc))
            raise
        Path(cfg.upload_dir).mkdir(parents=True, exist_ok=True)
        app.state.store = store
        app.state.repos = Repositories(store, strict_updates=cfg.strict_updates)
        try:
            yield
        finally:
            app.state.repos = None
            app.state.store = None
            store.close()

    app = FastAPI(
        title="Family Finance API",
        version="0.1.0",
        description="Expenses, incomes, budgets, goals, investments and bill reminders over an embedded store.",
        lifespan=lifespan,
    )
    app.state.settings = cfg
    app.state.store = None
    app.state.repos = None

    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValueError, value_error_exception_handler)
    app.add_exception_handler(RecordNotFoundError, not_found_exception_handler)
    app.add_exception_handler(StoreTimeoutError, store_timeout_exception_handler)
    app.add_exception_handler(StoreError, store_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)

    @app.middleware("http")
    async def cors_middleware(request: Request, call_next):
        if request.method == "OPTIONS":
            response = Response(status_code=200)
        else:
            response = await call_next(request)
        response.headers.update(CORS_HEADERS)
        return response

    app.include_router(api)
    app.mount("/uploads", StaticFiles(directory=cfg.upload_dir, check_dir=False), name="uploads")
    return app


app = create_app()
