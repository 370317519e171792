"""Tenants (workspaces), their memberships, storage and service logic."""

from __future__ import annotations

import logging
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Optional

from slugify import slugify

from toggleapi.db import Database, NoRowsError

_NOW = "strftime('%Y-%m-%dT%H:%M:%f', 'now')"
_TENANT_COLUMNS = "id, name, slug, created_at, updated_at"


@dataclass
class Tenant:
    id: str
    name: str
    slug: str
    created_at: datetime
    updated_at: datetime


@dataclass
class TenantMember:
    """A user's membership in a tenant; role is owner, admin or member."""

    id: str
    user_id: str
    tenant_id: str
    role: str
    created_at: datetime
    updated_at: datetime


@dataclass
class TenantMembership:
    """A user's membership together with the tenant's name and slug."""

    tenant_id: str
    role: str
    tenant_name: str
    tenant_slug: str


def generate_slug(name: str) -> str:
    """Turn a display name into a URL slug."""
    return slugify(name)


def slug_with_fallback(name: str) -> str:
    """A slug for name made unique with a random suffix."""
    suffix = uuid.uuid4().hex[:8]
    base = generate_slug(name)
    return f"{base}-{suffix}" if base else suffix


def _tenant_from_row(row: Any) -> Tenant:
    return Tenant(
        id=row["id"],
        name=row["name"],
        slug=row["slug"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


class TenantRepository:
    """Stores tenants and memberships, using the active transaction if any."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def _one(self, where: str, params: tuple) -> Tenant:
        row = (
            self._db.executor()
            .execute(f"SELECT {_TENANT_COLUMNS} FROM tenants WHERE {where}", params)
            .fetchone()
        )
        if row is None:
            raise NoRowsError()
        return _tenant_from_row(row)

    def create(self, name: str, slug: str) -> Tenant:
        tenant_id = str(uuid.uuid4())
        self._db.executor().execute(
            "INSERT INTO tenants (id, name, slug) VALUES (?, ?, ?)", (tenant_id, name, slug)
        )
        return self._one("id = ?", (tenant_id,))

    def get_by_id(self, tenant_id: str) -> Tenant:
        return self._one("id = ?", (tenant_id,))

    def get_by_slug(self, slug: str) -> Tenant:
        return self._one("slug = ?", (slug,))

    def slug_exists(self, slug: str) -> bool:
        row = (
            self._db.executor()
            .execute("SELECT EXISTS(SELECT 1 FROM tenants WHERE slug = ?)", (slug,))
            .fetchone()
        )
        return bool(row[0])

    def update(self, tenant_id: str, name: str) -> Tenant:
        cursor = self._db.executor().execute(
            f"UPDATE tenants SET name = ?, updated_at = {_NOW} WHERE id = ?", (name, tenant_id)
        )
        if cursor.rowcount == 0:
            raise NoRowsError()
        return self._one("id = ?", (tenant_id,))

    def get_membership(self, user_id: str, tenant_id: str) -> str:
        """The user's role in the tenant, or "" when they are not a member."""
        try:
            row = (
                self._db.executor()
                .execute(
                    "SELECT role FROM tenant_members WHERE user_id = ? AND tenant_id = ?",
                    (user_id, tenant_id),
                )
                .fetchone()
            )
        except sqlite3.DatabaseError:
            return ""
        return row["role"] if row is not None else ""

    def has_memberships(self, user_id: str) -> bool:
        row = (
            self._db.executor()
            .execute("SELECT COUNT(*) FROM tenant_members WHERE user_id = ?", (user_id,))
            .fetchone()
        )
        return row[0] > 0

    def create_membership(self, user_id: str, tenant_id: str, role: str) -> None:
        """Add the user to the tenant, or change their role if already a member."""
        self._db.executor().execute(
            "INSERT INTO tenant_members (id, user_id, tenant_id, role) VALUES (?, ?, ?, ?)"
            " ON CONFLICT (user_id, tenant_id)"
            f" DO UPDATE SET role = excluded.role, updated_at = {_NOW}",
            (str(uuid.uuid4()), user_id, tenant_id, role),
        )

    def list_user_tenants(self, user_id: str) -> List[TenantMembership]:
        rows = self._db.executor().execute(
            """
            SELECT tm.tenant_id, tm.role, t.name AS tenant_name, t.slug AS tenant_slug
            FROM tenant_members tm
            INNER JOIN tenants t ON tm.tenant_id = t.id
            WHERE tm.user_id = ?
            ORDER BY tm.created_at ASC, tm.rowid ASC
            """,
            (user_id,),
        )
        return [
            TenantMembership(r["tenant_id"], r["role"], r["tenant_name"], r["tenant_slug"])
            for r in rows
        ]


class TenantService:
    """Tenant operations with slug generation and logging."""

    def __init__(self, repo: TenantRepository, logger: Optional[logging.Logger] = None) -> None:
        self._repo = repo
        self._logger = logger or logging.getLogger(__name__)

    def create(self, name: str) -> Tenant:
        slug = generate_slug(name)
        try:
            exists = self._repo.slug_exists(slug)
        except Exception as exc:
            self._logger.error("failed to check slug existence slug=%s error=%s", slug, exc)
            raise
        if exists:
            slug = slug_with_fallback(name)
        try:
            tenant = self._repo.create(name, slug)
        except Exception as exc:
            self._logger.error(
                "failed to create tenant name=%s slug=%s error=%s", name, slug, exc
            )
            raise
        self._logger.info(
            "tenant created id=%s name=%s slug=%s", tenant.id, tenant.name, tenant.slug
        )
        return tenant

    def get_by_id(self, tenant_id: str) -> Tenant:
        try:
            return self._repo.get_by_id(tenant_id)
        except Exception as exc:
            self._logger.error("failed to get tenant id=%s error=%s", tenant_id, exc)
            raise

    def get_by_slug(self, slug: str) -> Tenant:
        try:
            return self._repo.get_by_slug(slug)
        except Exception as exc:
            self._logger.error("failed to get tenant by slug slug=%s error=%s", slug, exc)
            raise

    def update(self, tenant_id: str, name: str) -> Tenant:
        try:
            tenant = self._repo.update(tenant_id, name)
        except Exception as exc:
            self._logger.error(
                "failed to update tenant id=%s name=%s error=%s", tenant_id, name, exc
            )
            raise
        self._logger.info("tenant updated id=%s name=%s", tenant.id, tenant.name)
        return tenant

    def get_membership(self, user_id: str, tenant_id: str) -> str:
        return self._repo.get_membership(user_id, tenant_id)

    def list_user_tenants(self, user_id: str) -> List[TenantMembership]:
        return self._repo.list_user_tenants(user_id)