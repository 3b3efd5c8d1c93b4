import uuid
from functools import lru_cache
from typing import Callable, List, Optional

from fastapi import FastAPI, Depends, Form, File, UploadFile, HTTPException, Query, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from suraksha.config import settings
from suraksha.database import SessionLocal, Base, engine
from suraksha.schemas.analyze_schemas import ContentCategory, DashboardStats, HistoryItem, HistoryRecord
from suraksha.schemas.chat_schemas import ChatRequest, ChatResponse
from suraksha.pipelines.analysis_pipeline import run_analysis
from suraksha.pipelines.router import route_submission, summarize_submission
from suraksha.pipelines.submission_pipeline import (
    build_submission,
    parse_category,
    parse_source_hint,
    resolve_qr_submission,
)
from suraksha.services import prompts
from suraksha.services.chat_service import ChatService, ChatToolBridge
from suraksha.services.history_service import (
    AnalysisResultStore,
    SessionHistoryRegistry,
    build_history_item,
    dashboard_stats,
    recent_records,
    record_persisted,
)
from suraksha.services.llm_client import LLMClient
from suraksha.api.security import (
    InFlightRegistry,
    check_rate_limit,
    get_session_id,
    get_user_id,
    verify_api_token,
)
from suraksha.utils.errors import StoreError, SurakshaError
from suraksha.utils.logging_config import metrics, StructuredLogger, init_logging, request_id_var

# Initialize structured logging
init_logging()

logger = StructuredLogger(__name__)

Base.metadata.create_all(bind=engine)

VERSION = "0.1.0"

app = FastAPI(
    title="Suraksha AI API",
    version=VERSION,
    description="Scam, fake-news and deepfake detection for text, images, QR codes, videos and URLs",
    docs_url="/docs" if settings.debug else None,  # Disable docs in production
    redoc_url="/redoc" if settings.debug else None,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["*"],
    expose_headers=[settings.session_header, "X-Request-Id"],
)


# Security headers middleware
@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-XSS-Protection"] = "1; mode=block"
    if settings.is_production:
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


# Rate limit and session headers middleware
@app.middleware("http")
async def add_state_headers(request: Request, call_next):
    response = await call_next(request)
    if hasattr(request.state, "rate_limit_remaining"):
        response.headers["X-RateLimit-Limit"] = str(request.state.rate_limit_limit)
        response.headers["X-RateLimit-Remaining"] = str(request.state.rate_limit_remaining)
    if getattr(request.state, "session_id", None):
        response.headers[settings.session_header] = request.state.session_id
    return response


# Request id middleware
@app.middleware("http")
async def assign_request_id(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or uuid.uuid4().hex
    token = request_id_var.set(request_id)
    try:
        response = await call_next(request)
    finally:
        request_id_var.reset(token)
    response.headers["X-Request-Id"] = request_id
    return response


@app.exception_handler(SurakshaError)
async def handle_suraksha_error(request: Request, exc: SurakshaError):
    metrics.increment(f"errors.{exc.error_type}")
    if exc.status_code >= 500:
        # Full cause stays in the logs; the client only gets the public message.
        logger.warning("Request failed", error_type=exc.error_type, error=exc.message, path=request.url.path)
    else:
        logger.info("Request rejected", error_type=exc.error_type, error=exc.message, path=request.url.path)

    content = {"detail": exc.detail, "type": exc.error_type}
    field = getattr(exc, "field", None)
    if field:
        content["field"] = field
    return JSONResponse(status_code=exc.status_code, content=content)


# ============== DEPENDENCIES ==============


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> Callable[[], Session]:
    return SessionLocal


@lru_cache
def get_llm_client() -> LLMClient:
    return LLMClient()


session_histories = SessionHistoryRegistry()
in_flight = InFlightRegistry()


def get_history_registry() -> SessionHistoryRegistry:
    return session_histories


def get_in_flight() -> InFlightRegistry:
    return in_flight


def get_chat_service(
    llm: LLMClient = Depends(get_llm_client),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
) -> ChatService:
    return ChatService(llm=llm, bridge=ChatToolBridge(session_factory))


def _require_same_user(path_user_id: str, header_user_id: Optional[str]):
    if not header_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Sign in to read history. Provide {settings.user_header} header.",
        )
    if header_user_id != path_user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only read your own history.",
        )


# ============== HEALTH ==============


@app.get("/health")
def health():
    """Health check endpoint - no auth required."""
    return {"status": "ok"}


@app.get("/status")
def status_info(histories: SessionHistoryRegistry = Depends(get_history_registry)):
    """
    API status and configuration info.
    Useful for debugging and monitoring.
    """
    return {
        "status": "ok",
        "version": VERSION,
        "environment": settings.environment,
        "auth_enabled": bool(settings.api_token),
        "model": settings.openai_model,
        "prompt_versions": {
            "content": prompts.CONTENT_PROMPT_VERSION,
            "url": prompts.URL_PROMPT_VERSION,
            "chat": prompts.CHAT_PROMPT_VERSION,
        },
        "rate_limit": {
            "requests": settings.rate_limit_requests,
            "window_seconds": settings.rate_limit_window,
        },
        "history": {
            "auto_delete_days": settings.history_auto_delete_days,
            "active_sessions": len(histories),
        },
        "supported_types": [c.value for c in ContentCategory],
        "metrics": metrics.get_stats(),
    }


# ============== ANALYSIS ==============


@app.post(
    "/analyze",
    response_model=HistoryItem,
    dependencies=[Depends(verify_api_token), Depends(check_rate_limit)],
)
async def analyze(
    type: str = Form(..., description="One of: text, image, qrcode, video, url"),
    text: Optional[str] = Form(None),
    url: Optional[str] = Form(None),
    file: Optional[UploadFile] = File(None),
    source_hint: Optional[str] = Form(None),
    session_id: str = Depends(get_session_id),
    user_id: Optional[str] = Depends(get_user_id),
    db: Session = Depends(get_db),
    llm: LLMClient = Depends(get_llm_client),
    histories: SessionHistoryRegistry = Depends(get_history_registry),
    guard: InFlightRegistry = Depends(get_in_flight),
):
    category = parse_category(type)
    hint = parse_source_hint(source_hint)

    with guard.hold(session_id):
        if category == ContentCategory.QRCODE:
            submission = await resolve_qr_submission(file, text=text, url=url, source_hint=hint)
            if submission is None:
                metrics.increment("analysis.qrcode.no_decode")
                return JSONResponse(
                    status_code=422,
                    content={
                        "detail": "Could not read a QR code from this image. Try a clearer, well-lit photo.",
                        "type": "qr_decode_failed",
                    },
                )
        else:
            submission = await build_submission(
                category, text=text, url=url, upload_file=file, source_hint=hint
            )

        analysis_request = route_submission(submission)
        verdict = await run_in_threadpool(run_analysis, analysis_request, llm)

    item = build_history_item(summarize_submission(submission), verdict)
    histories.get(session_id).add(item)
    record_persisted(AnalysisResultStore(db), user_id, item)
    return item


# ============== HISTORY ==============


@app.get(
    "/history",
    response_model=List[HistoryItem],
    dependencies=[Depends(verify_api_token)],
)
def session_history(
    session_id: str = Depends(get_session_id),
    histories: SessionHistoryRegistry = Depends(get_history_registry),
):
    """This session's verdicts, most recent first."""
    return histories.get(session_id).items()


@app.delete("/history", dependencies=[Depends(verify_api_token)])
def clear_session_history(
    session_id: str = Depends(get_session_id),
    histories: SessionHistoryRegistry = Depends(get_history_registry),
):
    histories.get(session_id).clear()
    return {"status": "cleared"}


@app.delete("/session", dependencies=[Depends(verify_api_token)])
def end_session(
    session_id: str = Depends(get_session_id),
    histories: SessionHistoryRegistry = Depends(get_history_registry),
):
    histories.end(session_id)
    return {"status": "ended"}


@app.get(
    "/users/{user_id}/history",
    response_model=List[HistoryRecord],
    dependencies=[Depends(verify_api_token), Depends(check_rate_limit)],
)
def user_history(
    user_id: str,
    count: int = Query(settings.history_default_count, ge=1, le=settings.history_max_count),
    header_user_id: Optional[str] = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    """Persisted history for a user, newest first. Store failures return an empty list."""
    _require_same_user(user_id, header_user_id)
    return recent_records(AnalysisResultStore(db), user_id, count)


@app.get(
    "/users/{user_id}/dashboard",
    response_model=DashboardStats,
    dependencies=[Depends(verify_api_token), Depends(check_rate_limit)],
)
def user_dashboard(
    user_id: str,
    header_user_id: Optional[str] = Depends(get_user_id),
    db: Session = Depends(get_db),
):
    _require_same_user(user_id, header_user_id)
    try:
        rows = AnalysisResultStore(db).all_for_user(user_id)
    except StoreError as e:
        logger.warning("Dashboard read failed", error=e.message)
        rows = []
    return dashboard_stats(rows)


# ============== CHAT ==============


@app.post(
    "/chat",
    response_model=ChatResponse,
    dependencies=[Depends(verify_api_token), Depends(check_rate_limit)],
)
async def chat(
    body: ChatRequest,
    header_user_id: Optional[str] = Depends(get_user_id),
    chat_service: ChatService = Depends(get_chat_service),
):
    """History lookups always run for the signed-in user; a body userId may only repeat it."""
    if body.user_id and body.user_id != header_user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="userId does not match the signed-in user.",
        )
    user_id = header_user_id
    return await run_in_threadpool(chat_service.ask, body.prompt, user_id)
