from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone
from typing import Callable, Optional

from fastapi import (
    Body,
    Depends,
    FastAPI,
    File,
    HTTPException,
    Query,
    Request,
    UploadFile,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel
from starlette.datastructures import UploadFile as StarletteUploadFile

from . import ratelimit
from .auth import require_admin
from .blocking import to_thread
from .config import reload_settings, settings
from .logging import AccessLogMiddleware
from .logging_setup import RequestLogMiddleware, init_logging
from .mailer import application_notification, contact_notification
from .metrics import LAT, RATE_LIMITED, REQS, router as metrics_router
from .ratelimit import RateLimitConfig
from .recaptcha import verify_recaptcha
from .scheduler import eviction_task, run_periodic, state as eviction_state
from .security import SecurityHeadersMiddleware, client_address
from .store import (
    DuplicateError,
    NotFoundError,
    adjust_stock,
    create_category,
    create_job,
    create_media,
    create_product,
    create_user,
    delete_application,
    delete_category,
    delete_job,
    delete_media,
    delete_product,
    delete_user,
    get_product_by_slug,
    init_db,
    inventory_overview,
    list_applications,
    list_categories,
    list_contacts,
    list_jobs,
    list_media,
    query_products,
    query_users,
    refresh_engine,
    save_application,
    save_contact,
    update_application_status,
    update_category,
    update_job,
    update_media,
    update_product,
    update_user,
)
from .uploads import UploadPolicy, cv_policy, image_policy, save_upload, validate_upload
from .validate import (
    APPLICATION_STATUSES,
    MEDIA_TYPES,
    PRODUCT_CATEGORIES,
    validate_application,
    validate_category,
    validate_contact,
    validate_job,
    validate_media,
    validate_product,
    validate_user,
)

logger = logging.getLogger("pharmasite")


class Health(BaseModel):
    status: str
    time: str


def _address(request: Request) -> str:
    return client_address(request, settings.TRUST_FORWARDED_HEADERS)


def rate_limited(action: str, policy: Callable[[], RateLimitConfig]):
    """Dependency rejecting callers whose `<action>:<address>` bucket is empty."""

    def _dependency(request: Request) -> None:
        address = _address(request)
        decision = ratelimit.limiter.check(f"{action}:{address}", policy())
        if not decision.allowed:
            RATE_LIMITED.labels(action).inc()
            logger.warning("rate limited action=%s ip=%s", action, address)
            raise HTTPException(status_code=429, detail="Too Many Requests")

    return _dependency


contact_limit = rate_limited("contact", lambda: settings.contact_rate_limit())
careers_limit = rate_limited("careers", lambda: settings.careers_rate_limit())


def _idle_ttl_seconds() -> int:
    return int(settings.RATE_LIMIT_IDLE_TTL_SECONDS)


@asynccontextmanager
async def lifespan(app: FastAPI):
    reload_settings()
    refresh_engine()
    init_db()
    tasks: list[asyncio.Task[None]] = []
    if settings.RATE_LIMIT_EVICT_ENABLED:
        evict = eviction_task(ratelimit.limiter, _idle_ttl_seconds)

        async def loop() -> None:
            await run_periodic(
                evict,
                settings.RATE_LIMIT_EVICT_INTERVAL_SECONDS,
                settings.RATE_LIMIT_EVICT_JITTER_SECONDS,
                settings.RATE_LIMIT_EVICT_BACKOFF_MAX_SECONDS,
            )

        tasks.append(asyncio.create_task(loop()))
    try:
        yield
    finally:
        for task in tasks:
            task.cancel()
            with suppress(asyncio.CancelledError, Exception):
                await task


init_logging(settings.LOG_LEVEL)

app = FastAPI(title="Pharmasite", version="0.2.0", lifespan=lifespan)
app.add_middleware(RequestLogMiddleware)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(AccessLogMiddleware, admin_prefix=settings.ADMIN_PATH_PREFIX)
app.include_router(metrics_router())
app.mount(
    settings.UPLOAD_URL_PREFIX,
    StaticFiles(directory=settings.UPLOAD_DIR, check_dir=False),
    name="product-images",
)

origins = [o.strip() for o in settings.CORS_ALLOW_ORIGINS.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins or ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


def _route_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        return route.path
    if request.url.path.startswith(settings.UPLOAD_URL_PREFIX + "/"):
        return settings.UPLOAD_URL_PREFIX
    return "<unmatched>"


@app.middleware("http")
async def _metrics(request: Request, call_next):
    method = request.method
    start = time.time()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        duration = time.time() - start
        # label by route template so slugs and ids do not create new series
        path = _route_label(request)
        REQS.labels(method, path, str(status_code)).inc()
        LAT.labels(method, path).observe(duration)


def _error(message: str, status_code: int = 400, **extra) -> JSONResponse:
    return JSONResponse({"error": message, **extra}, status_code=status_code)


def _precheck_upload(upload: StarletteUploadFile, policy: UploadPolicy) -> list[str]:
    """Reject from the multipart metadata before the body is read into memory."""

    if upload.size is None:
        return []
    return validate_upload(upload.filename or "", upload.content_type, upload.size, policy)


@app.get("/health", response_model=Health)
def health():
    return Health(status="ok", time=datetime.now(timezone.utc).isoformat())


# public forms ---------------------------------------------------------------


@app.post("/api/contact", dependencies=[Depends(contact_limit)])
def contact(request: Request, payload: dict = Body(...)):
    ok, cleaned, reason = validate_contact(payload)
    if not ok:
        return JSONResponse({"success": False, "error": reason}, status_code=400)

    saved = save_contact(cleaned, _address(request))
    if not contact_notification(cleaned):
        logger.info("contact %s stored without notification mail", saved["id"])

    submitted = datetime.fromtimestamp(saved["created_at"], tz=timezone.utc)
    return {
        "success": True,
        "message": "Thank you for your message! We'll get back to you within 24 hours.",
        "data": {"id": f"contact_{saved['id']}", "submittedAt": submitted.isoformat()},
    }


@app.post("/api/careers", dependencies=[Depends(careers_limit)])
async def careers(request: Request):
    content_type = request.headers.get("content-type") or ""
    if "multipart/form-data" not in content_type:
        return _error("Invalid content type")

    form = await request.form()
    ok, cleaned, reason = validate_application(
        {k: form.get(k) for k in ("name", "email", "role", "message")}
    )
    if not ok:
        return _error(reason or "Missing fields")

    token = form.get("recaptchaToken")
    result = await to_thread(
        verify_recaptcha, token if isinstance(token, str) else "", _address(request)
    )
    if not result.success:
        return _error("reCAPTCHA failed")

    upload = form.get("file")
    if isinstance(upload, StarletteUploadFile) and upload.filename:
        policy = cv_policy(settings.CV_MAX_BYTES)
        errors = _precheck_upload(upload, policy)
        if errors:
            return _error("Invalid file", errors=errors)
        data = await upload.read()
        errors = validate_upload(upload.filename, upload.content_type, len(data), policy)
        if errors:
            return _error("Invalid file", errors=errors)
        cleaned["cv_path"] = await to_thread(
            save_upload, data, upload.filename, settings.CV_UPLOAD_DIR, "cv"
        )

    saved = await to_thread(save_application, cleaned)
    await to_thread(application_notification, saved)
    return {"ok": True}


# career applications (back office) -----------------------------------------


@app.get("/api/applications")
def get_applications(role: Optional[str] = None, _=Depends(require_admin)):
    return list_applications(role)


@app.put("/api/applications")
def put_application(
    id: Optional[int] = Query(None),
    payload: dict = Body(...),
    _=Depends(require_admin),
):
    if id is None:
        return _error("Application ID is required")
    status = payload.get("status")
    if not status:
        return _error("Status is required")
    if not isinstance(status, str) or status not in APPLICATION_STATUSES:
        return _error("Unknown status", allowed=sorted(APPLICATION_STATUSES))
    try:
        return update_application_status(id, status)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail="application not found") from exc


@app.delete("/api/applications")
def remove_application(id: Optional[int] = Query(None), _=Depends(require_admin)):
    if id is None:
        return _error("Application ID is required")
    try:
        delete_application(id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail="application not found") from exc
    return {"message": "Application deleted successfully"}


# storefront -----------------------------------------------------------------


@app.get("/api/products")
def get_products(
    category: Optional[str] = Query(None),
    q: Optional[str] = Query(None, description="substring filter"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
):
    if category is not None and category not in PRODUCT_CATEGORIES:
        raise HTTPException(status_code=400, detail="unknown category")
    rows, total = query_products(category=category, q=q, limit=limit, offset=offset)
    return {"products": rows, "total": total, "limit": limit, "offset": offset}


@app.get("/api/products/{slug}")
def get_product(slug: str):
    product = get_product_by_slug(slug)
    if product is None:
        raise HTTPException(status_code=404, detail="product not found")
    return product


# back office: products and inventory ----------------------------------------


def _invalid(errors: list[str]) -> JSONResponse:
    return JSONResponse({"detail": "invalid", "errors": errors}, status_code=422)


@app.get("/api/admin/products")
def admin_list_products(
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    _=Depends(require_admin),
):
    rows, total = query_products(limit=limit, offset=offset, include_inactive=True)
    return {"products": rows, "total": total, "limit": limit, "offset": offset}


@app.post("/api/admin/products", status_code=201)
def admin_create_product(payload: dict = Body(...), _=Depends(require_admin)):
    data, errors = validate_product(payload)
    if errors:
        return _invalid(errors)
    try:
        return create_product(data)
    except DuplicateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@app.put("/api/admin/products/{product_id}")
def admin_update_product(
    product_id: int, payload: dict = Body(...), _=Depends(require_admin)
):
    data, errors = validate_product(payload, partial=True)
    if errors:
        return _invalid(errors)
    try:
        return update_product(product_id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail="product not found") from exc
    except DuplicateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@app.delete("/api/admin/products/{product_id}")
def admin_delete_product(product_id: int, _=Depends(require_admin)):
    try:
        delete_product(product_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail="product not found") from exc
    return {"success": True}


@app.get("/api/admin/inventory")
def admin_inventory(_=Depends(require_admin)):
    return inventory_overview(settings.LOW_STOCK_THRESHOLD)


@app.patch("/api/admin/inventory/{product_id}")
def admin_adjust_stock(
    product_id: int, payload: dict = Body(...), _=Depends(require_admin)
):
    delta = payload.get("delta")
    if isinstance(delta, bool) or not isinstance(delta, int):
        return _invalid(["delta must be an integer"])
    try:
        return adjust_stock(product_id, delta)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail="product not found") from exc
    except ValueError as exc:
        return _invalid([str(exc)])


@app.post("/api/admin/upload-image")
def admin_upload_image(file: UploadFile = File(...), _=Depends(require_admin)):
    policy = image_policy(settings.UPLOAD_MAX_BYTES)
    errors = _precheck_upload(file, policy)
    if errors:
        return _error(errors[0], errors=errors)
    data = file.file.read()
    errors = validate_upload(file.filename or "", file.content_type, len(data), policy)
    if errors:
        return _error(errors[0], errors=errors)
    name = save_upload(data, file.filename or "", settings.UPLOAD_DIR, "product")
    return {"success": True, "imageUrl": f"{settings.UPLOAD_URL_PREFIX}/{name}"}


# media ----------------------------------------------------------------------


@app.get("/api/media")
def get_media(type: Optional[str] = Query(None)):
    if type is not None and type not in MEDIA_TYPES:
        raise HTTPException(status_code=400, detail="unknown media type")
    return list_media(type)


@app.post("/api/media", status_code=201)
def post_media(payload: dict = Body(...), _=Depends(require_admin)):
    data, errors = validate_media(payload)
    if errors:
        return _invalid(errors)
    return create_media(data)


@app.put("/api/media")
def put_media(
    id: Optional[int] = Query(None),
    payload: dict = Body(...),
    _=Depends(require_admin),
):
    if id is None:
        return _error("Post ID is required")
    data, errors = validate_media(payload, partial=True)
    if errors:
        return _invalid(errors)
    try:
        return update_media(id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail="post not found") from exc


@app.delete("/api/media")
def remove_media(id: Optional[int] = Query(None), _=Depends(require_admin)):
    if id is None:
        return _error("Post ID is required")
    try:
        delete_media(id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail="post not found") from exc
    return {"success": True}


# contact inbox (back office) ------------------------------------------------


@app.get("/api/admin/contacts")
def admin_contacts(
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    _=Depends(require_admin),
):
    return {"messages": list_contacts(limit=limit, offset=offset), "limit": limit, "offset": offset}


# job postings -----------------------------------------------------------------


@app.get("/api/jobs")
def get_jobs(active: Optional[str] = Query(None)):
    return list_jobs(active_only=active == "true")


@app.post("/api/jobs", status_code=201)
def post_job(payload: dict = Body(...), _=Depends(require_admin)):
    data, errors = validate_job(payload)
    if errors:
        return _invalid(errors)
    return create_job(data)


@app.put("/api/jobs")
def put_job(
    id: Optional[int] = Query(None),
    payload: dict = Body(...),
    _=Depends(require_admin),
):
    if id is None:
        return _error("Job ID is required")
    data, errors = validate_job(payload, partial=True)
    if errors:
        return _invalid(errors)
    try:
        return update_job(id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail="job not found") from exc


@app.delete("/api/jobs")
def remove_job(id: Optional[int] = Query(None), _=Depends(require_admin)):
    if id is None:
        return _error("Job ID is required")
    try:
        delete_job(id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail="job not found") from exc
    return {"message": "Job deleted successfully"}


# product categories -----------------------------------------------------------


@app.get("/api/categories")
def get_categories(type: Optional[str] = Query(None)):
    if type is not None and type not in PRODUCT_CATEGORIES:
        raise HTTPException(status_code=400, detail="unknown category type")
    return list_categories(type)


@app.post("/api/categories", status_code=201)
def post_category(payload: dict = Body(...), _=Depends(require_admin)):
    data, errors = validate_category(payload)
    if errors:
        return _invalid(errors)
    try:
        return create_category(data)
    except DuplicateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@app.put("/api/categories")
def put_category(
    id: Optional[int] = Query(None),
    payload: dict = Body(...),
    _=Depends(require_admin),
):
    if id is None:
        return _error("Category ID is required")
    data, errors = validate_category(payload, partial=True)
    if errors:
        return _invalid(errors)
    try:
        return update_category(id, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail="category not found") from exc
    except DuplicateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@app.delete("/api/categories")
def remove_category(id: Optional[int] = Query(None), _=Depends(require_admin)):
    if id is None:
        return _error("Category ID is required")
    try:
        delete_category(id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail="category not found") from exc
    return {"success": True}


# staff users --------------------------------------------------------------------


@app.get("/api/admin/users")
def admin_users(
    search: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    _=Depends(require_admin),
):
    return query_users(search=search, limit=limit, offset=offset)


@app.post("/api/admin/users", status_code=201)
def admin_create_user(payload: dict = Body(...), _=Depends(require_admin)):
    data, errors = validate_user(payload)
    if errors:
        return _invalid(errors)
    try:
        return create_user(data)
    except DuplicateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@app.patch("/api/admin/users")
def admin_update_user(
    userId: Optional[int] = Query(None),
    payload: dict = Body(...),
    _=Depends(require_admin),
):
    if userId is None:
        return _error("User ID is required")
    data, errors = validate_user(payload, partial=True)
    if errors:
        return _invalid(errors)
    try:
        user = update_user(userId, data)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail="user not found") from exc
    return {"user": user, "message": "User updated successfully"}


@app.delete("/api/admin/users")
def admin_delete_user(userId: Optional[int] = Query(None), _=Depends(require_admin)):
    if userId is None:
        return _error("User ID is required")
    try:
        delete_user(userId)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail="user not found") from exc
    return {"success": True, "message": "User deleted successfully"}


# rate limiter housekeeping --------------------------------------------------


@app.post("/api/admin/rate-limit/purge")
def purge_rate_limits(_=Depends(require_admin)):
    evicted = ratelimit.limiter.evict_idle(_idle_ttl_seconds() * 1000)
    return {"evicted": evicted}


@app.get("/api/admin/rate-limit/status")
def rate_limit_status(_=Depends(require_admin)):
    return {
        "buckets": len(ratelimit.limiter),
        "idle_ttl_seconds": _idle_ttl_seconds(),
        "evict_enabled": settings.RATE_LIMIT_EVICT_ENABLED,
        "interval": settings.RATE_LIMIT_EVICT_INTERVAL_SECONDS,
        "running": eviction_state.running,
        "last_started": eviction_state.last_started,
        "last_finished": eviction_state.last_finished,
        "last_error": eviction_state.last_error,
        "total_runs": eviction_state.total_runs,
        "total_errors": eviction_state.total_errors,
    }
