"""HTTP-style request handlers for tenants, projects and users, and their routing."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from toggleapi.db import Database, NotFoundError
from toggleapi.projects import ProjectRepository, ProjectService
from toggleapi.tenants import TenantRepository, TenantService
from toggleapi.users import UserRepository, UserService

API_PREFIX = "/api/v1"


@dataclass
class Request:
    """An incoming request together with the identity resolved for it."""

    method: str
    path: str
    body: Any = None
    headers: Dict[str, str] = field(default_factory=dict)
    user_id: Optional[str] = None
    tenant_id: Optional[str] = None
    role: str = ""
    params: Dict[str, str] = field(default_factory=dict)


@dataclass
class Response:
    """A status code and a JSON-ready body (None for an empty body)."""

    status: int
    body: Any = None


Handler = Callable[[Request], Response]


class _BindError(ValueError):
    pass


def _jsonable(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: _jsonable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    return value


def _error(status: int, message: str) -> Response:
    return Response(status, {"error": message})


def _bind(request: Request, *required: str) -> Dict[str, Any]:
    """Decode the JSON body and check that each required field is a non-empty string."""
    body = request.body
    if body is None:
        raise _BindError("request body is empty")
    if isinstance(body, (bytes, bytearray)):
        body = body.decode("utf-8", errors="replace")
    if isinstance(body, str):
        try:
            body = json.loads(body)
        except json.JSONDecodeError as exc:
            raise _BindError(f"invalid JSON: {exc}") from None
    if not isinstance(body, dict):
        raise _BindError("request body must be a JSON object")
    for name in required:
        value = body.get(name)
        if value is not None and not isinstance(value, str):
            raise _BindError(f"field {name!r} must be a string")
        if not value:
            raise _BindError(f"field {name!r} is required")
    return body


def _must(value: Optional[str], what: str) -> str:
    if not value:
        raise RuntimeError(f"{what} missing from request context")
    return value


def _split(path: str) -> List[str]:
    return [segment for segment in path.split("/") if segment]


class Router:
    """Maps method and path patterns (with :name parameters) to handlers."""

    def __init__(self) -> None:
        self._routes: List[Tuple[str, List[str], Handler]] = []

    def add(self, method: str, pattern: str, handler: Handler) -> None:
        self._routes.append((method.upper(), _split(pattern), handler))

    def dispatch(self, request: Request) -> Response:
        segments = _split(request.path)
        method = request.method.upper()
        for route_method, pattern, handler in self._routes:
            if route_method != method or len(pattern) != len(segments):
                continue
            params: Dict[str, str] = {}
            for expected, actual in zip(pattern, segments):
                if expected.startswith(":"):
                    params[expected[1:]] = actual
                elif expected != actual:
                    break
            else:
                request.params = params
                return handler(request)
        return _error(404, "not found")


class _Prefixed:
    """Registers routes on a router under a common path prefix."""

    def __init__(self, router: Router, prefix: str) -> None:
        self._router = router
        self._prefix = prefix.rstrip("/")

    def add(self, method: str, pattern: str, handler: Handler) -> None:
        self._router.add(method, self._prefix + pattern, handler)


class ProjectHandler:
    """Create, list, fetch and delete the current tenant's projects."""

    def __init__(self, service: ProjectService) -> None:
        self._service = service

    def register_routes(self, router: Any) -> None:
        router.add("POST", "/projects", self.create)
        router.add("GET", "/projects", self.list)
        router.add("GET", "/projects/:id", self.get_by_id)
        router.add("DELETE", "/projects/:id", self.delete)

    def create(self, request: Request) -> Response:
        try:
            payload = _bind(request, "name")
        except _BindError as exc:
            return _error(400, str(exc))
        tenant_id = _must(request.tenant_id, "tenant id")
        try:
            project = self._service.create(tenant_id, payload["name"])
        except Exception as exc:
            return _error(500, str(exc))
        return Response(201, _jsonable(project))

    def list(self, request: Request) -> Response:
        tenant_id = _must(request.tenant_id, "tenant id")
        try:
            projects = self._service.list_by_tenant_id(tenant_id)
        except Exception as exc:
            return _error(500, str(exc))
        return Response(200, _jsonable(projects))

    def get_by_id(self, request: Request) -> Response:
        project_id = request.params.get("id", "")
        tenant_id = _must(request.tenant_id, "tenant id")
        try:
            project = self._service.get_by_id(project_id, tenant_id)
        except NotFoundError:
            return _error(404, "project not found")
        except Exception:
            return _error(500, "internal server error")
        return Response(200, _jsonable(project))

    def delete(self, request: Request) -> Response:
        project_id = request.params.get("id", "")
        tenant_id = _must(request.tenant_id, "tenant id")
        try:
            self._service.delete(project_id, tenant_id)
        except NotFoundError:
            return _error(404, "project not found")
        except Exception:
            return _error(500, "internal server error")
        return Response(204)


class TenantHandler:
    """Read and rename the current tenant."""

    def __init__(self, service: TenantService) -> None:
        self._service = service

    def register_routes(self, router: Any) -> None:
        router.add("GET", "/tenant", self.get_tenant)
        router.add("PUT", "/tenant", self.update_tenant)

    def get_tenant(self, request: Request) -> Response:
        tenant_id = _must(request.tenant_id, "tenant id")
        try:
            tenant = self._service.get_by_id(tenant_id)
        except Exception:
            return _error(404, "tenant not found")
        return Response(200, _jsonable(tenant))

    def update_tenant(self, request: Request) -> Response:
        tenant_id = _must(request.tenant_id, "tenant id")
        if request.role not in ("owner", "admin"):
            return _error(403, "insufficient permissions")
        try:
            payload = _bind(request, "name")
        except _BindError as exc:
            return _error(400, str(exc))
        try:
            tenant = self._service.update(tenant_id, payload["name"])
        except Exception as exc:
            return _error(500, str(exc))
        return Response(200, _jsonable(tenant))


class UserHandler:
    """Endpoints about the signed-in user's own workspaces."""

    def __init__(self, service: UserService, tenant_service: TenantService) -> None:
        self._service = service
        self._tenant_service = tenant_service

    def register_routes(self, router: Any) -> None:
        router.add("GET", "/tenants", self.list_my_tenants)
        router.add("PUT", "/active-tenant", self.set_active_tenant)

    def list_my_tenants(self, request: Request) -> Response:
        user_id = _must(request.user_id, "user id")
        try:
            memberships = self._tenant_service.list_user_tenants(user_id)
        except Exception:
            return _error(500, "failed to fetch tenants")
        return Response(200, _jsonable(memberships))

    def set_active_tenant(self, request: Request) -> Response:
        user_id = _must(request.user_id, "user id")
        try:
            payload = _bind(request, "tenant_id")
        except _BindError as exc:
            return _error(400, str(exc))
        tenant_id = payload["tenant_id"]
        try:
            role = self._tenant_service.get_membership(user_id, tenant_id)
        except Exception:
            return _error(500, "failed to verify tenant access")
        if not role:
            return _error(403, "you do not have access to this tenant")
        try:
            self._service.update_last_active_tenant(user_id, tenant_id)
        except Exception:
            return _error(500, "failed to update active tenant")
        return Response(200, {"message": "active tenant updated", "tenant_id": tenant_id})


def _health(request: Request) -> Response:
    return Response(200, {"status": "ok"})


def build_router(db: Database, logger: Optional[logging.Logger] = None) -> Router:
    """Wire repositories, services and handlers into a router under /api/v1.

    Tenant-scoped routes expect request.tenant_id and request.role to be resolved,
    and user routes expect request.user_id.
    """
    logger = logger or logging.getLogger("toggleapi")

    tenant_repo = TenantRepository(db)
    user_repo = UserRepository(db)
    project_repo = ProjectRepository(db)

    tenant_service = TenantService(tenant_repo, logger)
    user_service = UserService(user_repo, tenant_repo, db, logger)
    project_service = ProjectService(project_repo, logger)

    router = Router()
    router.add("GET", f"{API_PREFIX}/health", _health)

    UserHandler(user_service, tenant_service).register_routes(
        _Prefixed(router, f"{API_PREFIX}/me")
    )

    scoped = _Prefixed(router, API_PREFIX)
    TenantHandler(tenant_service).register_routes(scoped)
    ProjectHandler(project_service).register_routes(scoped)
    return router