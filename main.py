"""
Main API module for shorty.

Responsibilities:
    - Expose the core operations over HTTP (shorten, batch shorten, redirect,
      list own URLs, delete own URLs, ping, stats)
    - Hand out the session cookie that identifies an owner
    - Start the deletion pipeline on startup and drain it on shutdown

Architecture:
    - App Factory pattern (create_app) for test isolation and DI.
    - One ShortyService per app: storage backend, owner registry and deletion
      pipeline are created together and torn down together (lifespan).
    - Sync endpoints run on the threadpool; storage calls may block them.

LLM Prompt Example:
    "Explain how a FastAPI lifespan handler gives a background worker an
    explicit start and a bounded drain on shutdown."
"""

import ipaddress
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import Body, Cookie, FastAPI, Header, HTTPException, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse
from pydantic import BaseModel

from shorty.config import load_settings
from shorty.manager.service import ShortyService
from shorty.storage.errors import (
    ExhaustedError,
    GoneError,
    InternalError,
    NotFoundError,
    PipelineClosedError,
    PipelineFullError,
    UnavailableError,
)

SESSION_COOKIE = "token"
SESSION_MAX_AGE = 24 * 60 * 60


class URLRequest(BaseModel):
    """Request payload for /api/shorten."""
    url: str


class URLResponse(BaseModel):
    result: str


def create_app(service: Optional[ShortyService] = None, trusted_subnet: Optional[str] = None) -> FastAPI:
    """
    Build and configure a new FastAPI app instance.

    Args:
        service (Optional[ShortyService]): Pre-built service (tests); defaults to
            ShortyService.from_settings().
        trusted_subnet (Optional[str]): CIDR whose X-Real-IP may read the stats
            route; defaults to settings.TRUSTED_SUBNET. Empty means nobody.

    Returns:
        FastAPI: Application whose lifespan starts and drains the service.
    """
    log = logging.getLogger("shorty")
    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO)

    svc = service or ShortyService.from_settings()
    subnet_value = load_settings().TRUSTED_SUBNET if trusted_subnet is None else trusted_subnet.strip()
    trusted = ipaddress.ip_network(subnet_value, strict=False) if subnet_value else None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        svc.start()
        log.info("shorty storage backend: %s", type(svc.storage).__name__)
        try:
            yield
        finally:
            await run_in_threadpool(svc.shutdown)

    app = FastAPI(title="shorty", description="URL shortener with per-owner sessions", lifespan=lifespan)
    app.state.service = svc

    # ----------------------------------------------------------------
    # Utilities
    # ----------------------------------------------------------------
    def _session(response: Response, token: Optional[str]) -> int:
        """Resolve the owner for a cookie, issuing a new session when needed."""
        new_token, owner_id = svc.session_for(token)
        if new_token is not None:
            response.set_cookie(SESSION_COOKIE, new_token, max_age=SESSION_MAX_AGE)
        return owner_id

    def _is_trusted(real_ip: Optional[str]) -> bool:
        if trusted is None or not real_ip:
            return False
        try:
            return ipaddress.ip_address(real_ip.strip()) in trusted
        except ValueError:
            return False

    def _known_owner(token: Optional[str]) -> int:
        owner_id = svc.registry.get(token)
        if owner_id is None:
            raise HTTPException(status_code=401, detail="no session for this user")
        return owner_id

    @app.exception_handler(UnavailableError)
    async def _unavailable(request: Request, exc: UnavailableError):
        return PlainTextResponse(str(exc), status_code=503)

    @app.exception_handler(ExhaustedError)
    async def _exhausted(request: Request, exc: ExhaustedError):
        return PlainTextResponse(str(exc), status_code=503)

    @app.exception_handler(InternalError)
    async def _internal(request: Request, exc: InternalError):
        log.error("internal storage error: %s", exc)
        return PlainTextResponse("internal error", status_code=500)

    # ----------------------------------------------------------------
    # Routes
    # ----------------------------------------------------------------
    @app.get("/ping")
    def ping():
        if not svc.ping():
            return PlainTextResponse("storage not ready", status_code=500)
        return PlainTextResponse("ping - pong")

    @app.post("/")
    async def shorten_text(request: Request, token: Optional[str] = Cookie(default=None)) -> Response:
        """Shorten a URL sent as the raw request body; replies with the short URL as text."""
        long_url = (await request.body()).decode("utf-8", errors="replace").strip()
        if not long_url:
            return PlainTextResponse("url is empty", status_code=400)
        new_token, owner_id = svc.session_for(token)
        try:
            res = await run_in_threadpool(svc.shorten, owner_id, long_url)
            response = PlainTextResponse(svc.short_url(res.short_code), status_code=409 if res.conflict else 201)
        except ValueError as ve:
            response = PlainTextResponse(str(ve), status_code=400)
        if new_token is not None:
            response.set_cookie(SESSION_COOKIE, new_token, max_age=SESSION_MAX_AGE)
        return response

    @app.post("/api/shorten", status_code=201)
    def shorten_json(req: URLRequest, response: Response, token: Optional[str] = Cookie(default=None)):
        owner_id = _session(response, token)
        try:
            res = svc.shorten(owner_id, req.url)
        except ValueError as ve:
            raise HTTPException(status_code=400, detail=str(ve))
        body = URLResponse(result=svc.short_url(res.short_code))
        if res.conflict:
            response.status_code = 409
        else:
            response.headers["Location"] = body.result
        return body

    @app.post("/api/shorten/batch", status_code=201)
    def shorten_batch(
        response: Response,
        items: List[Any] = Body(...),
        token: Optional[str] = Cookie(default=None),
    ) -> List[Dict[str, Any]]:
        owner_id = _session(response, token)
        results = svc.shorten_batch(owner_id, items)
        return [r.model_dump(exclude_none=True) for r in results]

    @app.get("/api/user/urls")
    def list_urls(token: Optional[str] = Cookie(default=None)):
        owner_id = _known_owner(token)
        owned = svc.list_owned(owner_id)
        if not owned:
            return Response(status_code=204)
        return [o.model_dump() for o in owned]

    @app.delete("/api/user/urls", status_code=202)
    def delete_urls(codes: List[str] = Body(...), token: Optional[str] = Cookie(default=None)):
        owner_id = _known_owner(token)
        try:
            svc.delete(owner_id, codes)
        except PipelineFullError as e:
            return PlainTextResponse(str(e), status_code=503, headers={"Retry-After": "1"})
        except PipelineClosedError as e:
            return PlainTextResponse(str(e), status_code=503)
        return PlainTextResponse("Accepted", status_code=202)

    @app.get("/api/internal/stats")
    def stats(x_real_ip: Optional[str] = Header(default=None)):
        if not _is_trusted(x_real_ip):
            log.info("stats request from untrusted address %s blocked", x_real_ip)
            return PlainTextResponse("Forbidden", status_code=403)
        return JSONResponse(svc.stats())

    @app.get("/{short_code}")
    def redirect(short_code: str):
        try:
            long_url = svc.resolve(short_code)
        except GoneError as e:
            return PlainTextResponse(str(e), status_code=410)
        except NotFoundError as e:
            return PlainTextResponse(str(e), status_code=404)
        return RedirectResponse(url=long_url, status_code=307)

    return app


# `uvicorn main:app` and `from main import app` keep working.
app = create_app()
