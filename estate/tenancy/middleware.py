"""Tenant routing middleware for FastAPI.

This module provides TenantSchemaMiddleware, which checks out a ClientDb
pinned to the request's tenant before the handler runs and releases it
afterwards, and a ``get_client_db`` dependency that hands the handle to
route handlers.

Authentication is upstream: it is expected to leave the resolved user id
in ``request.state.user_id``; the role is looked up by the router. A request
without one is served on ``public``.
"""

from collections.abc import Awaitable, Callable
from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.middleware.base import BaseHTTPMiddleware

from estate.core.exceptions import EstateError
from estate.core.logging import (
    REQUEST_ID_HEADER,
    get_logger,
    log_context,
    new_request_id,
)
from estate.core.security import sanitize_error_message
from estate.tenancy.session import ClientDb, ClientDbFactory

logger = get_logger(__name__)

INTERNAL_ERROR_BODY = {"detail": "Internal server error"}


class TenantSchemaMiddleware(BaseHTTPMiddleware):
    """Pins a tenant-scoped connection for the duration of each request.

    The ClientDbFactory is looked up on ``app.state.client_db_factory`` at
    request time, so the middleware can be installed before the lifespan
    handler builds the pool.
    """

    # Paths served without a database handle
    EXEMPT_PATHS = frozenset(
        {
            "/api/health",
            "/docs",
            "/redoc",
            "/openapi.json",
        }
    )

    def __init__(
        self,
        app: Any,
        *,
        admin_views_prefix: str | None = "/api/admin",
        exempt_paths: set[str] | None = None,
    ) -> None:
        """Initialize the middleware.

        Args:
            app: The FastAPI/Starlette application.
            admin_views_prefix: Admin requests under this path prefix read
                ``admin_views`` before ``public``. None disables it.
            exempt_paths: Additional paths that get no database handle.
        """
        super().__init__(app)
        self._admin_views_prefix = admin_views_prefix
        self._exempt_paths = self.EXEMPT_PATHS | (exempt_paths or set())

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        """Tag the request with an id, then route, handle and release."""
        request_id = request.headers.get(REQUEST_ID_HEADER) or new_request_id()
        with log_context(request_id=request_id):
            response = await self._dispatch(request, call_next)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    async def _dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        if request.url.path in self._exempt_paths:
            return await call_next(request)

        factory: ClientDbFactory = request.app.state.client_db_factory
        tenant_id = self._get_tenant_id(request)

        try:
            client_db = await factory.get_client_db(tenant_id)
        except (EstateError, SQLAlchemyError) as e:
            return self._routing_failed(request, tenant_id, e)

        if self._wants_admin_views(request, client_db):
            try:
                await client_db.use_admin_views()
            except SQLAlchemyError as e:
                await client_db.release()
                return self._routing_failed(request, tenant_id, e)

        request.state.client_db = client_db
        try:
            with log_context(tenant_id=tenant_id, namespace=client_db.namespace):
                return await call_next(request)
        finally:
            await client_db.release()

    def _get_tenant_id(self, request: Request) -> int | None:
        """Tenant id left by the authentication layer, if any."""
        user_id = getattr(request.state, "user_id", None)
        if user_id is None:
            return None
        try:
            return int(user_id)
        except (TypeError, ValueError):
            logger.warning("invalid_user_id", path=request.url.path)
            return None

    def _routing_failed(
        self, request: Request, tenant_id: int | None, error: Exception
    ) -> JSONResponse:
        """Log the failure and answer with a body that names no schema."""
        logger.error(
            "request_routing_failed",
            tenant_id=tenant_id,
            path=request.url.path,
            error=sanitize_error_message(error),
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=INTERNAL_ERROR_BODY,
        )

    def _wants_admin_views(self, request: Request, client_db: ClientDb) -> bool:
        if self._admin_views_prefix is None:
            return False
        tenant = client_db.tenant
        if tenant is None or not tenant.is_admin:
            return False
        return request.url.path.startswith(self._admin_views_prefix)


def get_client_db(request: Request) -> ClientDb:
    """Get the request's ClientDb from request state.

    Raises:
        HTTPException: 500 if the middleware did not pin a handle.
    """
    client_db = getattr(request.state, "client_db", None)
    if client_db is None:
        logger.error("client_db_missing", path=request.url.path)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=INTERNAL_ERROR_BODY["detail"],
        )
    return client_db


ClientDbDep = Annotated[ClientDb, Depends(get_client_db)]
