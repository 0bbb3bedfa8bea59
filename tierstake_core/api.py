"""
REST / HTTP API server for a TierStake ledger.

Built on ``aiohttp``.  The caller identity in ``POST /execute`` is taken
as already authenticated by whatever fronts this server.

Endpoints
---------
GET  /health                    Liveness + pool summary
GET  /config                    Pool configuration
GET  /tiers                     Tier table
GET  /stakers                   All stakers' positions (?start_after=&limit=)
GET  /stakers/{owner}           One owner's positions
GET  /stakers/{owner}/pending   Claimable reward preview (no mutation)
POST /execute                   {"caller": ..., "request": {"type": ..., ...}}

Security
--------
- API-key authentication on POST endpoints via ``X-API-Key`` header only.
  Timing-safe comparison via ``hmac.compare_digest``.
- Per-IP token-bucket rate limiter (configurable RPM).
- CORS middleware (origins configurable via ``cors_origins``).
- Request body size cap (``max_body_bytes``).

Usage:
    api = APIServer(ledger, host="127.0.0.1", port=8080)
    await api.start()    # call inside existing event loop
    ...
    await api.stop()
"""

from __future__ import annotations

import hmac
import json
import logging
import time
from collections import defaultdict
from typing import TYPE_CHECKING, Any, Callable

from aiohttp import web

from tierstake_core.errors import StakingError, UnauthorizedError
from tierstake_core.messages import request_from_dict
from tierstake_core.tiers import get_tier_info

if TYPE_CHECKING:
    from tierstake_core.config import APIConfig
    from tierstake_core.ledger import StakingLedger

logger = logging.getLogger("tierstake_api")

DEFAULT_PAGE_LIMIT = 30
MAX_PAGE_LIMIT = 100


# ═══════════════════════════════════════════════════════════════════
#  Input helpers
# ═══════════════════════════════════════════════════════════════════

def _safe_int(value: Any, name: str = "value") -> int:
    """Convert *value* to int, rejecting non-integer input."""
    try:
        return int(value)
    except (TypeError, ValueError):
        raise web.HTTPBadRequest(text=f"{name} must be an integer")


def _json_dumps(obj: Any) -> str:
    return json.dumps(obj, default=str)


def _error_response(exc: StakingError) -> web.Response:
    status = 403 if isinstance(exc, UnauthorizedError) else 400
    return web.json_response(exc.to_dict(), status=status)


# ═══════════════════════════════════════════════════════════════════
#  Rate Limiter (per-IP token bucket)
# ═══════════════════════════════════════════════════════════════════

class _TokenBucket:
    """Simple per-IP token-bucket rate limiter."""

    __slots__ = ("_buckets", "_rpm", "_last_prune")

    # A bucket idle this long has refilled completely and can be dropped
    IDLE_SECONDS = 60.0

    def __init__(self, rpm: int):
        self._rpm = rpm  # 0 = unlimited
        # ip -> [tokens, last_refill_timestamp]
        self._buckets: dict[str, list[float]] = defaultdict(
            lambda: [float(rpm), time.monotonic()]
        )
        self._last_prune = time.monotonic()

    def allow(self, ip: str) -> bool:
        if self._rpm <= 0:
            return True
        now = time.monotonic()
        if now - self._last_prune >= self.IDLE_SECONDS:
            self._prune(now)
        bucket = self._buckets[ip]
        elapsed = now - bucket[1]
        bucket[0] = min(float(self._rpm), bucket[0] + elapsed * (self._rpm / 60.0))
        bucket[1] = now
        if bucket[0] >= 1.0:
            bucket[0] -= 1.0
            return True
        return False

    def _prune(self, now: float) -> None:
        idle = [ip for ip, b in self._buckets.items() if now - b[1] >= self.IDLE_SECONDS]
        for ip in idle:
            del self._buckets[ip]
        self._last_prune = now


# ═══════════════════════════════════════════════════════════════════
#  Middleware factories
# ═══════════════════════════════════════════════════════════════════

def _make_rate_limit_middleware(bucket: _TokenBucket):
    """aiohttp middleware that enforces per-IP rate limits."""

    @web.middleware
    async def rate_limit_middleware(request: web.Request, handler):
        ip = request.remote or "unknown"
        if not bucket.allow(ip):
            raise web.HTTPTooManyRequests(
                text="Rate limit exceeded. Try again later.",
                headers={"Retry-After": "5"},
            )
        return await handler(request)

    return rate_limit_middleware


def _make_api_key_middleware(api_key: str):
    """aiohttp middleware that requires an ``X-API-Key`` header on POST."""

    @web.middleware
    async def api_key_middleware(request: web.Request, handler):
        if request.method == "POST":
            key = request.headers.get("X-API-Key", "")
            if not hmac.compare_digest(key, api_key):
                raise web.HTTPUnauthorized(text="Invalid or missing API key")
        return await handler(request)

    return api_key_middleware


def _make_cors_middleware(origins: list[str]):
    """aiohttp middleware that adds CORS headers for listed origins only (no ``*``)."""

    allowed = set(origins)
    allowed.discard("*")

    @web.middleware
    async def cors_middleware(request: web.Request, handler):
        origin = request.headers.get("Origin", "")
        if request.method == "OPTIONS":
            resp = web.Response(status=204)
        else:
            resp = await handler(request)

        if origin in allowed:
            resp.headers["Access-Control-Allow-Origin"] = origin
            resp.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
            resp.headers["Access-Control-Allow-Headers"] = "Content-Type, X-API-Key"
            resp.headers["Access-Control-Max-Age"] = "3600"
        return resp

    return cors_middleware


def build_middlewares(cfg: APIConfig | None) -> list:
    middlewares: list = []
    if cfg is None:
        return middlewares
    if cfg.rate_limit_rpm > 0:
        middlewares.append(_make_rate_limit_middleware(_TokenBucket(cfg.rate_limit_rpm)))
    if cfg.cors_origins:
        middlewares.append(_make_cors_middleware(cfg.cors_origins))
    if cfg.api_key:
        middlewares.append(_make_api_key_middleware(cfg.api_key))
    return middlewares


# ═══════════════════════════════════════════════════════════════════
#  API Server
# ═══════════════════════════════════════════════════════════════════

class APIServer:
    """Thin aiohttp wrapper around a ``StakingLedger``."""

    def __init__(
        self,
        ledger: StakingLedger,
        host: str = "127.0.0.1",
        port: int = 8080,
        *,
        api_config: APIConfig | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.ledger = ledger
        self.host = host
        self.port = port
        self._api_config = api_config
        self._clock = clock
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None

    def _now(self) -> int:
        return int(self._clock())

    # ── lifecycle ────────────────────────────────────────────────

    def build_app(self) -> web.Application:
        max_body = self._api_config.max_body_bytes if self._api_config else 65_536
        app = web.Application(
            middlewares=build_middlewares(self._api_config),
            client_max_size=max_body,
        )
        self._register_routes(app)
        self._app = app
        return app

    async def start(self) -> None:
        self._runner = web.AppRunner(self.build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info(f"API listening on http://{self.host}:{self.port}")

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()

    # ── routes ───────────────────────────────────────────────────

    def _register_routes(self, app: web.Application) -> None:
        app.router.add_get("/health", self._health)
        app.router.add_get("/config", self._config)
        app.router.add_get("/tiers", self._tiers)
        app.router.add_get("/stakers", self._list_stakers)
        app.router.add_get("/stakers/{owner}", self._staker)
        app.router.add_get("/stakers/{owner}/pending", self._pending)
        app.router.add_post("/execute", self._execute)

    # ── handlers ─────────────────────────────────────────────────

    async def _health(self, _request: web.Request) -> web.Response:
        summary = self.ledger.get_pool_summary()
        return web.json_response({"ok": True, **summary}, dumps=_json_dumps)

    async def _config(self, _request: web.Request) -> web.Response:
        return web.json_response(self.ledger.get_config(), dumps=_json_dumps)

    async def _tiers(self, _request: web.Request) -> web.Response:
        return web.json_response({"tiers": get_tier_info()})

    async def _list_stakers(self, request: web.Request) -> web.Response:
        """GET /stakers - ascending owner order, exclusive ``start_after`` cursor."""
        start_after = request.query.get("start_after") or None
        limit = _safe_int(request.query.get("limit", DEFAULT_PAGE_LIMIT), "limit")
        limit = max(1, min(limit, MAX_PAGE_LIMIT))
        now = self._now()

        page = self.ledger.list_stakers(start_after, limit + 1)
        more = len(page) > limit
        page = page[:limit]
        result: dict[str, Any] = {
            "stakers": [
                {"owner": owner, "positions": [p.to_dict(now) for p in positions]}
                for owner, positions in page
            ],
        }
        if more:
            result["start_after"] = page[-1][0]
        return web.json_response(result, dumps=_json_dumps)

    async def _staker(self, request: web.Request) -> web.Response:
        owner = request.match_info["owner"]
        now = self._now()
        positions = self.ledger.get_positions(owner)
        return web.json_response({
            "owner": owner,
            "positions": [p.to_dict(now) for p in positions],
        }, dumps=_json_dumps)

    async def _pending(self, request: web.Request) -> web.Response:
        owner = request.match_info["owner"]
        now = self._now()
        try:
            pending = self.ledger.pending_reward(owner, now)
        except StakingError as exc:
            return _error_response(exc)
        return web.json_response(
            {"owner": owner, "pending_reward": pending, "as_of": now},
            dumps=_json_dumps,
        )

    async def _execute(self, request: web.Request) -> web.Response:
        """
        POST /execute
        Body: {"caller": "alice", "request": {"type": "deposit", "amount": 100,
               "tier": 0, "asset": "token1"}}
        """
        try:
            body = await request.json()
        except ValueError as exc:
            raise web.HTTPBadRequest(text="Invalid JSON body") from exc
        if not isinstance(body, dict):
            raise web.HTTPBadRequest(text="JSON object required")

        caller = body.get("caller")
        if not isinstance(caller, str) or not caller:
            raise web.HTTPBadRequest(text="caller required")

        try:
            req = request_from_dict(body.get("request"))
            result = self.ledger.execute(caller, req, self._now())
        except StakingError as exc:
            return _error_response(exc)
        return web.json_response(result.to_dict(), dumps=_json_dumps)
