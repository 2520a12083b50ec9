from fastapi import FastAPI
from dotenv import load_dotenv
load_dotenv(dotenv_path="backend/.env", override=False)
from contextlib import asynccontextmanager
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from .core.config import get_settings
from .core.errors import ReplaiError
from .core.logging import init_logging
from .core.events import broadcaster
from .db.database import init_db
from .routers import emails, blocklist, settings, usage, analytics, calendar, payments
from .services.mailbox_poller import MailboxPoller
import logging, time, uuid
from fastapi import Request
from fastapi.responses import StreamingResponse, JSONResponse
from asyncio import create_task, sleep


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    init_logging(get_settings().log_level)
    init_db()
    poller = MailboxPoller()
    app.state.poller = poller
    if get_settings().auto_reconnect:
        started = poller.start_all()
        logging.getLogger(__name__).info("mailboxes_reconnected", extra={"mailboxes": started})

    async def _keepalive():
        while True:
            broadcaster.publish("keepalive", {})
            await sleep(15)
    ka_task = create_task(_keepalive())
    yield
    # Shutdown
    ka_task.cancel()
    poller.stop_all()

app = FastAPI(title="Replai", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(emails.router, prefix="/api/emails", tags=["emails"])
app.include_router(blocklist.router, prefix="/api/blocklist", tags=["blocklist"])
app.include_router(settings.router, prefix="/api/settings", tags=["settings"])
app.include_router(usage.router, prefix="/api/user", tags=["usage"])
app.include_router(analytics.router, prefix="/api/analytics", tags=["analytics"])
app.include_router(calendar.router, prefix="/api/calendar", tags=["calendar"])
app.include_router(payments.router, prefix="/api/payments", tags=["payments"])


@app.exception_handler(ReplaiError)
async def replai_error_handler(request: Request, exc: ReplaiError):
    if exc.status_code >= 500:
        logging.getLogger(__name__).error("request_failed", extra={"path": request.url.path, "error_type": type(exc).__name__})
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = [{"loc": list(e.get("loc", [])), "msg": e.get("msg")} for e in exc.errors()]
    return JSONResponse(status_code=400, content={"error": "Invalid request", "details": details})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.get("/health")
async def health(request: Request):
    poller = getattr(request.app.state, "poller", None)
    active = len(poller.status()["active"]) if poller else 0
    return {"status": "ok", "mailboxes": active, "subscribers": broadcaster.subscriber_count}

@app.middleware("http")
async def timing_logger(request: Request, call_next):
    trace_id = request.headers.get("X-Trace-Id", str(uuid.uuid4())[:8])
    start = time.perf_counter()
    try:
        response = await call_next(request)
        duration = (time.perf_counter()-start)*1000
        logging.getLogger().info(
            f"{request.method} {request.url.path} {response.status_code} {duration:.1f}ms",
            extra={"trace_id": trace_id, "method": request.method, "path": request.url.path, "status": response.status_code, "duration_ms": round(duration,1)}
        )
        response.headers['X-Trace-Id'] = trace_id
        return response
    except Exception as exc:
        duration = (time.perf_counter()-start)*1000
        logging.getLogger().error(
            f"ERR {request.method} {request.url.path} {type(exc).__name__}",
            exc_info=exc,
            extra={"trace_id": trace_id, "method": request.method, "path": request.url.path, "status": 500, "duration_ms": round(duration,1)}
        )
        return JSONResponse(status_code=500, content={"error": "Internal Server Error", "trace_id": trace_id},
                            headers={"X-Trace-Id": trace_id})

@app.get('/api/events')
async def sse_events(request: Request):  # pragma: no cover (difficult in unit tests)
    async def event_stream():
        async for msg in broadcaster.subscribe():
            if await request.is_disconnected():
                break
            yield msg
    return StreamingResponse(event_stream(), media_type='text/event-stream')
