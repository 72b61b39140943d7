from __future__ import annotations

import logging
import time as _t

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from .config import settings
from .connectors.sql import dispose_all_engines
from .metrics import gauge_dec, gauge_inc, render_prometheus, summary_observe
from .models import SessionLocal, User, create_org_with_admin, init_db
from .routers import chat as chat_router
from .routers import concierge as concierge_router
from .routers import dashboards as dashboards_router
from .routers import insights as insights_router
from .routers import datasources as ds_router
from .routers import knowledge as knowledge_router
from .routers import pods as pods_router
from .routers import users as users_router
from .schemas import HealthResponse

logging.basicConfig(
    level=getattr(logging, str(settings.log_level).upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name)

origins = settings.cors_origins_list
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
# Respect X-Forwarded-* headers when running behind a reverse proxy
app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")


# Request duration (ms) and active requests gauge for API paths
@app.middleware("http")
async def _metrics_mw(request: Request, call_next):
    path = request.url.path or ""
    method = request.method or "GET"
    is_api = path.startswith("/api/")
    if is_api:
        gauge_inc("app_active_requests", 1.0, {"path": path, "method": method})
    _s = _t.perf_counter()
    try:
        resp: Response = await call_next(request)
        return resp
    finally:
        _e = int((_t.perf_counter() - _s) * 1000)
        if is_api:
            gauge_dec("app_active_requests", 1.0, {"path": path, "method": method})
            summary_observe("app_request_duration_ms", _e, {"path": path, "method": method})


def bootstrap_admin() -> None:
    """Create the first organization and its admin from ADMIN_EMAIL when no admin exists yet."""
    email = (settings.admin_email or "").strip().lower()
    if not email:
        return
    db = SessionLocal()
    try:
        if db.query(User).filter(User.role == "admin").first():
            return
        if db.query(User).filter(User.email == email).first():
            return
        name = settings.admin_name or email.split("@")[0]
        org_name = settings.admin_org or f"{name}'s organization"
        org, user = create_org_with_admin(db, org_name, "BUSINESS", name, email)
        logger.info(f"[Startup] Bootstrapped admin {user.id} in org {org.id}")
    finally:
        db.close()


@app.on_event("startup")
async def _startup():
    init_db()
    bootstrap_admin()


@app.on_event("shutdown")
async def _shutdown():
    n = dispose_all_engines()
    logger.info(f"[Shutdown] Disposed {n} SQL engine(s)")


app.include_router(users_router.router, prefix="/api")
app.include_router(pods_router.router, prefix="/api")
app.include_router(knowledge_router.router, prefix="/api")
app.include_router(ds_router.router, prefix="/api")
app.include_router(dashboards_router.router, prefix="/api")
app.include_router(insights_router.router, prefix="/api")
app.include_router(chat_router.router, prefix="/api")
app.include_router(concierge_router.router, prefix="/api")


@app.get("/api/healthz", response_model=HealthResponse)
async def healthz() -> HealthResponse:
    return HealthResponse(status="ok", app=settings.app_name, env=settings.environment)


@app.get("/api/metrics")
async def metrics() -> Response:
    body = render_prometheus()
    return Response(content=body, media_type="text/plain; version=0.0.4; charset=utf-8")
