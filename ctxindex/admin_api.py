from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from starlette.applications import Starlette
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from .config import get_config
from .models import ContextItem
from .workspace import WorkspaceSession

logger = logging.getLogger("ctxindex_admin")


def _get_admin_cfg() -> Dict[str, Any]:
    cfg = get_config()
    return {
        "enabled": cfg.admin_enabled,
        "host": cfg.admin_host,
        "port": cfg.admin_port,
        "api_key": cfg.admin_api_key,
        "allowed_ips": cfg.admin_allowed_ips,
    }


def _is_allowed_ip(ip: Optional[str], cfg: Dict[str, Any]) -> bool:
    if not ip:
        return False
    allowed = set(cfg.get("allowed_ips") or ["127.0.0.1", "::1"])
    return ip in allowed


async def require_admin(request: Request) -> Optional[JSONResponse]:
    """
    Common gate for all admin endpoints.

    - Enforce local-only IP (admin.allowed_ips)
    - Enforce X-Admin-Key header if admin.api_key is set
    """
    client = request.client
    client_ip = client.host if client else None
    cfg = _get_admin_cfg()

    if not cfg.get("enabled"):
        logger.warning("Admin API called but admin.enabled=false")
        return JSONResponse({"error": "admin_disabled"}, status_code=503)

    if not _is_allowed_ip(client_ip, cfg):
        logger.warning("Admin access denied from IP %r", client_ip)
        return JSONResponse(
            {"error": "forbidden", "reason": "ip_not_allowed"},
            status_code=403,
        )

    api_key = cfg.get("api_key")
    if api_key and request.headers.get("x-admin-key") != api_key:
        logger.warning("Admin access denied due to invalid API key")
        return JSONResponse({"error": "unauthorized"}, status_code=401)

    return None


def _session(request: Request) -> WorkspaceSession:
    return request.app.state.session


def _internal_error(name: str, exc: Exception) -> JSONResponse:
    logger.exception("%s failed: %s", name, exc)
    return JSONResponse(
        {"error": "internal_error", "detail": str(exc)},
        status_code=500,
    )


async def _json_body(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


async def admin_status(request: Request) -> Response:
    if (resp := await require_admin(request)) is not None:
        return resp
    cfg = _get_admin_cfg()
    payload = _session(request).status()
    payload["admin"] = {
        "host": cfg.get("host"),
        "port": cfg.get("port"),
        "enabled": cfg.get("enabled"),
    }
    return JSONResponse(payload)


async def admin_index_rebuild(request: Request) -> Response:
    if (resp := await require_admin(request)) is not None:
        return resp

    body = await _json_body(request)
    session = _session(request)
    try:
        if body.get("clear"):
            session.indexer.clear()
        max_files = body.get("max_files")
        started = session.start_background_indexing(
            max_files=int(max_files) if max_files is not None else None
        )
        return JSONResponse({"started": started, "state": session.indexer.state.value})
    except Exception as exc:
        return _internal_error("admin_index_rebuild", exc)


async def admin_index_cancel(request: Request) -> Response:
    if (resp := await require_admin(request)) is not None:
        return resp
    cancelled = _session(request).indexer.cancel()
    return JSONResponse({"cancelled": cancelled})


async def admin_index_clear(request: Request) -> Response:
    if (resp := await require_admin(request)) is not None:
        return resp
    session = _session(request)
    try:
        session.indexer.clear()
        return JSONResponse({"cleared": True, "chunks": session.store.count()})
    except Exception as exc:
        return _internal_error("admin_index_clear", exc)


async def admin_index_file(request: Request) -> Response:
    if (resp := await require_admin(request)) is not None:
        return resp
    body = await _json_body(request)
    path = body.get("path")
    if not path:
        return JSONResponse({"error": "bad_request", "detail": "path is required"}, status_code=400)
    session = _session(request)
    chunks = session.indexer.index_file(path)
    return JSONResponse({"path": path, "chunks": chunks})


async def admin_index_stats(request: Request) -> Response:
    if (resp := await require_admin(request)) is not None:
        return resp
    try:
        return JSONResponse(_session(request).indexer.stats())
    except Exception as exc:
        return _internal_error("admin_index_stats", exc)


async def admin_search(request: Request) -> Response:
    if (resp := await require_admin(request)) is not None:
        return resp

    params = request.query_params
    query = params.get("q", "")
    try:
        limit = int(params["limit"]) if "limit" in params else None
        threshold = float(params["threshold"]) if "threshold" in params else None
    except ValueError:
        return JSONResponse(
            {"error": "bad_request", "detail": "limit/threshold must be numeric"},
            status_code=400,
        )
    results = _session(request).search(
        query, limit=limit, threshold=threshold, language=params.get("language")
    )
    return JSONResponse({"query": query, "results": [r.to_dict() for r in results]})


async def admin_context(request: Request) -> Response:
    if (resp := await require_admin(request)) is not None:
        return resp

    body = await _json_body(request)
    try:
        items = [
            ContextItem(
                content=raw["content"],
                file_path=raw.get("file_path", "<unknown>"),
                language=raw.get("language"),
                line_start=raw.get("line_start"),
                line_end=raw.get("line_end"),
                size=raw.get("size"),
            )
            for raw in body.get("items") or []
        ]
    except (KeyError, TypeError) as exc:
        return JSONResponse({"error": "bad_request", "detail": str(exc)}, status_code=400)

    max_tokens = body.get("max_tokens")
    try:
        context = _session(request).build_context(
            body.get("query"),
            items,
            int(max_tokens) if max_tokens is not None else None,
            body.get("language"),
        )
        return JSONResponse({"context": context})
    except Exception as exc:
        return _internal_error("admin_context", exc)


async def admin_config_view(request: Request) -> Response:
    if (resp := await require_admin(request)) is not None:
        return resp
    raw = dict(_session(request).config.config_data)
    admin = dict(raw.get("admin") or {})
    if admin.get("api_key"):
        admin["api_key"] = "***"
        raw["admin"] = admin
    return JSONResponse(raw)


routes = [
    Route("/admin/status", admin_status, methods=["GET"]),
    Route("/admin/index/rebuild", admin_index_rebuild, methods=["POST"]),
    Route("/admin/index/cancel", admin_index_cancel, methods=["POST"]),
    Route("/admin/index/clear", admin_index_clear, methods=["POST"]),
    Route("/admin/index/file", admin_index_file, methods=["POST"]),
    Route("/admin/index/stats", admin_index_stats, methods=["GET"]),
    Route("/admin/search", admin_search, methods=["GET"]),
    Route("/admin/context", admin_context, methods=["POST"]),
    Route("/admin/config", admin_config_view, methods=["GET"]),
]


def create_app(session: WorkspaceSession) -> Starlette:
    app = Starlette(debug=False, routes=routes)
    app.state.session = session

    # CORS for local development UIs
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ],
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )
    return app
