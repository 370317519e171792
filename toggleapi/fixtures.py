"""Helpers that insert known rows directly, for seeding and testing."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional


def _now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _stamp(moment: datetime) -> str:
    return moment.isoformat(timespec="microseconds")


@dataclass
class TenantFixture:
    id: str
    name: str
    slug: str
    created_at: datetime
    updated_at: datetime


@dataclass
class UserFixture:
    id: str
    auth0_id: str
    email: str
    firstname: str
    lastname: str
    created_at: datetime
    updated_at: datetime
    last_active_tenant_id: Optional[str] = None


@dataclass
class ProjectFixture:
    id: str
    tenant_id: str
    name: str
    client_api_key: str
    created_at: datetime
    updated_at: datetime


@dataclass
class TenantMemberFixture:
    id: str
    user_id: str
    tenant_id: str
    role: str
    created_at: datetime
    updated_at: datetime


@dataclass
class FlagFixture:
    id: str
    project_id: str
    name: str
    description: str
    enabled: bool
    rules: str
    rule_logic: str
    created_at: datetime
    updated_at: datetime


def create_tenant(conn: Any, name: str, slug: str) -> TenantFixture:
    """Insert a tenant and return it."""
    now = _now()
    tenant = TenantFixture(str(uuid.uuid4()), name, slug, now, now)
    conn.execute(
        "INSERT INTO tenants (id, name, slug, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
        (tenant.id, tenant.name, tenant.slug, _stamp(now), _stamp(now)),
    )
    return tenant


def create_user(
    conn: Any, auth0_id: str, email: str, firstname: str, lastname: str
) -> UserFixture:
    """Insert a user and return it."""
    now = _now()
    user = UserFixture(str(uuid.uuid4()), auth0_id, email, firstname, lastname, now, now)
    conn.execute(
        "INSERT INTO users (id, auth0_id, email, firstname, lastname, created_at, updated_at)"
        " VALUES (?, ?, ?, ?, ?, ?, ?)",
        (user.id, auth0_id, email, firstname, lastname, _stamp(now), _stamp(now)),
    )
    return user


def create_project(conn: Any, tenant_id: str, name: str, api_key: str) -> ProjectFixture:
    """Insert a project with the given client API key and return it."""
    now = _now()
    project = ProjectFixture(str(uuid.uuid4()), tenant_id, name, api_key, now, now)
    conn.execute(
        "INSERT INTO projects (id, tenant_id, name, client_api_key, created_at, updated_at)"
        " VALUES (?, ?, ?, ?, ?, ?)",
        (project.id, tenant_id, name, api_key, _stamp(now), _stamp(now)),
    )
    return project


def create_tenant_member(
    conn: Any, user_id: str, tenant_id: str, role: str
) -> TenantMemberFixture:
    """Insert a membership; its updated_at is left at the zero time."""
    member = TenantMemberFixture(
        str(uuid.uuid4()), user_id, tenant_id, role, _now(), datetime.min
    )
    conn.execute(
        "INSERT INTO tenant_members (id, user_id, tenant_id, role, created_at, updated_at)"
        " VALUES (?, ?, ?, ?, ?, ?)",
        (
            member.id,
            user_id,
            tenant_id,
            role,
            _stamp(member.created_at),
            _stamp(member.updated_at),
        ),
    )
    return member


def set_user_last_active_tenant(conn: Any, user_id: str, tenant_id: str) -> None:
    """Point a user's last active tenant at tenant_id."""
    conn.execute(
        "UPDATE users SET last_active_tenant_id = ?, updated_at = ? WHERE id = ?",
        (tenant_id, _stamp(_now()), user_id),
    )


def create_flag(
    conn: Any, project_id: str, name: str, description: str, enabled: bool
) -> FlagFixture:
    """Insert a flag with no rules and AND logic."""
    return create_flag_with_rules(conn, project_id, name, description, enabled, "[]", "AND")


def create_flag_with_rules(
    conn: Any,
    project_id: str,
    name: str,
    description: str,
    enabled: bool,
    rules: str,
    rule_logic: str,
) -> FlagFixture:
    """Insert a flag with rules given as a JSON string."""
    now = _now()
    flag = FlagFixture(
        str(uuid.uuid4()), project_id, name, description, enabled, rules, rule_logic, now, now
    )
    conn.execute(
        "INSERT INTO flags (id, project_id, name, description, enabled, rules, rule_logic,"
        " created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (
            flag.id,
            project_id,
            name,
            description,
            int(enabled),
            rules,
            rule_logic,
            _stamp(now),
            _stamp(now),
        ),
    )
    return flag