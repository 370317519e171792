import json
import logging

import pytest

from toggleapi.db import Database
from toggleapi.fixtures import create_tenant, create_tenant_member, create_user
from toggleapi.handlers import Request, Response, Router, build_router
from toggleapi.users import UserRepository


@pytest.fixture
def db():
    database = Database(":memory:")
    database.migrate()
    yield database
    database.close()


@pytest.fixture
def router(db):
    return build_router(db, logging.getLogger("test"))


@pytest.fixture
def tenant(db):
    return create_tenant(db.executor(), "Acme Corp", "acme-corp")


def scoped(method, path, tenant_id, body=None, role="owner", user_id=None):
    return Request(
        method=method,
        path="/api/v1" + path,
        body=body,
        tenant_id=tenant_id,
        role=role,
        user_id=user_id,
    )


def test_health(router):
    response = router.dispatch(Request("GET", "/api/v1/health"))
    assert response.status == 200
    assert response.body == {"status": "ok"}


def test_unknown_route_is_404(router):
    response = router.dispatch(Request("GET", "/api/v1/nothing-here"))
    assert response.status == 404


def test_router_extracts_params():
    router = Router()
    router.add("GET", "/items/:id", lambda req: Response(200, req.params["id"]))
    assert router.dispatch(Request("GET", "/items/abc")).body == "abc"
    assert router.dispatch(Request("POST", "/items/abc")).status == 404


def test_create_project(router, tenant):
    response = router.dispatch(
        scoped("POST", "/projects", tenant.id, body=json.dumps({"name": "My First Project"}))
    )
    assert response.status == 201
    assert response.body["name"] == "My First Project"
    assert response.body["tenant_id"] == tenant.id
    assert len(response.body["client_api_key"]) == 64


def test_create_project_accepts_decoded_body(router, tenant):
    response = router.dispatch(scoped("POST", "/projects", tenant.id, body={"name": "P"}))
    assert response.status == 201
    assert response.body["name"] == "P"


@pytest.mark.parametrize("body", [None, "not json", json.dumps({}), json.dumps({"name": ""}),
                                  json.dumps({"name": 5}), json.dumps([1])])
def test_create_project_bad_body(router, tenant, body):
    response = router.dispatch(scoped("POST", "/projects", tenant.id, body=body))
    assert response.status == 400
    assert "error" in response.body


def test_create_project_for_missing_tenant_is_500(router):
    response = router.dispatch(
        scoped("POST", "/projects", "00000000-0000-0000-0000-000000000000", body={"name": "P"})
    )
    assert response.status == 500


def test_create_project_without_tenant_context_raises(router):
    with pytest.raises(RuntimeError):
        router.dispatch(scoped("POST", "/projects", None, body={"name": "P"}))


def test_sql_injection_name_stored_literally(router, tenant):
    name = "'; DROP TABLE projects; --"
    created = router.dispatch(scoped("POST", "/projects", tenant.id, body={"name": name}))
    fetched = router.dispatch(scoped("GET", f"/projects/{created.body['id']}", tenant.id))
    assert fetched.status == 200
    assert fetched.body["name"] == name


def test_list_projects_only_for_tenant(router, db, tenant):
    other = create_tenant(db.executor(), "Other", "other")
    for name in ("A", "B"):
        router.dispatch(scoped("POST", "/projects", tenant.id, body={"name": name}))
    router.dispatch(scoped("POST", "/projects", other.id, body={"name": "C"}))
    response = router.dispatch(scoped("GET", "/projects", tenant.id))
    assert response.status == 200
    assert sorted(p["name"] for p in response.body) == ["A", "B"]


def test_list_projects_empty(router, tenant):
    response = router.dispatch(scoped("GET", "/projects", tenant.id))
    assert response.status == 200
    assert response.body == []


def test_get_project_cross_tenant_is_404(router, db, tenant):
    other = create_tenant(db.executor(), "Other", "other")
    created = router.dispatch(scoped("POST", "/projects", tenant.id, body={"name": "P"}))
    response = router.dispatch(scoped("GET", f"/projects/{created.body['id']}", other.id))
    assert response.status == 404
    assert response.body == {"error": "project not found"}


def test_delete_project(router, db, tenant):
    other = create_tenant(db.executor(), "Other", "other")
    created = router.dispatch(scoped("POST", "/projects", tenant.id, body={"name": "P"}))
    path = f"/projects/{created.body['id']}"
    assert router.dispatch(scoped("DELETE", path, other.id)).status == 404
    response = router.dispatch(scoped("DELETE", path, tenant.id))
    assert response.status == 204
    assert response.body is None
    assert router.dispatch(scoped("GET", path, tenant.id)).status == 404
    assert router.dispatch(scoped("DELETE", path, tenant.id)).body == {
        "error": "project not found"
    }


def test_get_tenant(router, tenant):
    response = router.dispatch(scoped("GET", "/tenant", tenant.id))
    assert response.status == 200
    assert response.body["id"] == tenant.id
    assert response.body["slug"] == "acme-corp"


def test_get_missing_tenant(router):
    response = router.dispatch(scoped("GET", "/tenant", "00000000-0000-0000-0000-000000000000"))
    assert response.status == 404
    assert response.body == {"error": "tenant not found"}


def test_update_tenant_requires_owner_or_admin(router, tenant):
    response = router.dispatch(
        scoped("PUT", "/tenant", tenant.id, body={"name": "New"}, role="member")
    )
    assert response.status == 403
    assert response.body == {"error": "insufficient permissions"}


@pytest.mark.parametrize("role", ["owner", "admin"])
def test_update_tenant(router, tenant, role):
    response = router.dispatch(
        scoped("PUT", "/tenant", tenant.id, body={"name": "Renamed"}, role=role)
    )
    assert response.status == 200
    assert response.body["name"] == "Renamed"
    assert router.dispatch(scoped("GET", "/tenant", tenant.id)).body["name"] == "Renamed"


def test_update_tenant_missing_name(router, tenant):
    response = router.dispatch(scoped("PUT", "/tenant", tenant.id, body={}))
    assert response.status == 400


def test_list_my_tenants(router, db, tenant):
    user = create_user(db.executor(), "auth0|u1", "bob@example.com", "Bob", "Builder")
    create_tenant_member(db.executor(), user.id, tenant.id, "admin")
    response = router.dispatch(Request("GET", "/api/v1/me/tenants", user_id=user.id))
    assert response.status == 200
    assert response.body == [
        {"tenant_id": tenant.id, "role": "admin", "tenant_name": "Acme Corp",
         "tenant_slug": "acme-corp"}
    ]


def test_set_active_tenant(router, db, tenant):
    user = create_user(db.executor(), "auth0|u1", "bob@example.com", "Bob", "Builder")
    create_tenant_member(db.executor(), user.id, tenant.id, "member")
    response = router.dispatch(
        Request("PUT", "/api/v1/me/active-tenant", body={"tenant_id": tenant.id}, user_id=user.id)
    )
    assert response.status == 200
    assert response.body == {"message": "active tenant updated", "tenant_id": tenant.id}
    assert UserRepository(db).get_by_id(user.id).last_active_tenant_id == tenant.id


def test_set_active_tenant_without_membership(router, db, tenant):
    user = create_user(db.executor(), "auth0|u1", "bob@example.com", "Bob", "Builder")
    response = router.dispatch(
        Request("PUT", "/api/v1/me/active-tenant", body={"tenant_id": tenant.id}, user_id=user.id)
    )
    assert response.status == 403
    assert response.body == {"error": "you do not have access to this tenant"}
    assert UserRepository(db).get_by_id(user.id).last_active_tenant_id is None


def test_set_active_tenant_missing_field(router, db):
    user = create_user(db.executor(), "auth0|u1", "bob@example.com", "Bob", "Builder")
    response = router.dispatch(
        Request("PUT", "/api/v1/me/active-tenant", body={}, user_id=user.id)
    )
    assert response.status == 400


def test_user_routes_require_user(router):
    with pytest.raises(RuntimeError):
        router.dispatch(Request("GET", "/api/v1/me/tenants"))