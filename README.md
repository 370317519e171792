# toggleapi

The core of a multi-tenant feature-flag backend. It keeps tenants
(workspaces), users, memberships and projects in SQLite, and provides
request handlers and a small router for them.

## Install

```
pip install .
pip install ".[test]"    # with the test dependencies
```

## Database

`toggleapi.db.Database(path=":memory:")` opens a SQLite database with foreign
keys enabled. `migrate()` creates the `tenants`, `users`, `tenant_members`,
`projects` and `flags` tables if they are missing. Deleting a tenant also
deletes its projects and memberships, and deleting a project also deletes its
flags.

Repositories run their statements through `Database.executor()`:

- Outside a transaction, each statement is committed on its own.
- `Database.transaction()` is a context manager. It commits when the block
  finishes and rolls back when the block raises.
- `Database.rollback_scope()` always rolls back, which keeps tests isolated.
- `Database.run_in_transaction(fn)` calls `fn()` inside `transaction()` and
  returns its result.

Scopes nest by means of savepoints. `current_transaction()` returns the scope
that is active in the current context, if there is one. `close()` closes the
connection.

```python
import logging
from toggleapi.db import Database
from toggleapi.tenants import TenantRepository, TenantService
from toggleapi.projects import ProjectRepository, ProjectService
from toggleapi.users import UserRepository, UserService

db = Database(":memory:")
db.migrate()
log = logging.getLogger("toggleapi")

tenant_repo = TenantRepository(db)
tenants = TenantService(tenant_repo, log)
users = UserService(UserRepository(db), tenant_repo, db, log)
projects = ProjectService(ProjectRepository(db), log)

user = users.get_or_create("auth0|alice", "Alice", "Developer")
project = projects.create(user.last_active_tenant_id, "My First Project")
print(project.client_api_key)   # 64 hex characters
```

## Services

`UserService.get_or_create(auth0_id, firstname, lastname)` works in one
transaction:

- An existing user who belongs to at least one tenant is returned unchanged.
- Otherwise it creates the user if needed, with the e-mail
  `default@example.com`.
- It then creates a tenant named `"<first> <last>'s Workspace"`, makes the
  user its owner, and sets it as the user's last active tenant.

Tenant slugs come from `generate_slug(name)`. When that slug is taken,
`slug_with_fallback(name)` adds a random suffix. `TenantService.create` uses
the same rule.

Project API keys come from `generate_api_key()`, which returns 32 random
bytes as hex.

Lookups are scoped to a tenant. If you ask `ProjectRepository` for a project
that belongs to another tenant, it raises `NoRowsError`, the same error it
raises for a project that does not exist. `ProjectService` turns that error
into `NotFoundError`. Creating a tenant with a slug that is already in use
raises `UniqueViolationError`, whose `code` is `"23505"`.

## Routing

`toggleapi.handlers.build_router(db, logger=None)` returns a `Router` with
these routes:

- `GET /api/v1/health`
- `GET /api/v1/me/tenants`
- `PUT /api/v1/me/active-tenant` (the user must belong to the tenant; otherwise 403)
- `GET /api/v1/tenant`
- `PUT /api/v1/tenant` (owners and admins only; otherwise 403)
- `POST /api/v1/projects` (201)
- `GET /api/v1/projects`
- `GET /api/v1/projects/:id`
- `DELETE /api/v1/projects/:id` (204)

`Router.dispatch(request)` takes a `Request` and returns a `Response`. The
`Request` carries the method, the path, a JSON body (given as a dict, a string
or bytes), and the caller's `user_id`, `tenant_id` and `role`. The `Response`
holds a status code and a JSON-ready body. A missing or empty required field
gives 400 with an `{"error": ...}` body. A path that matches no route gives
404.

## Fixtures

`toggleapi.fixtures` inserts tenants, users, memberships, projects and flags
directly through anything that has an `execute(sql, params)` method, such as
`db.executor()`. Each helper returns a dataclass that describes the row it
inserted.

## What this package does not do

- Feature flags have a table, and fixtures can insert them, but there is no
  flag repository, flag service or flag evaluation.
- There are no SDK endpoints.
- There is no authentication. Nothing checks tokens or API keys on requests,
  and nothing resolves a user or tenant from headers. The caller must fill in
  `user_id`, `tenant_id` and `role` on each `Request`.
- There is no network server and no command-line program. The router is
  called in-process.