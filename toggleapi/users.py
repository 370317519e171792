"""Users, their storage and first-sign-in onboarding."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from toggleapi.db import Database, NoRowsError
from toggleapi.tenants import TenantRepository, generate_slug, slug_with_fallback

_NOW = "strftime('%Y-%m-%dT%H:%M:%f', 'now')"
_USER_COLUMNS = (
    "id, auth0_id, last_active_tenant_id, email, firstname, lastname, created_at, updated_at"
)
_DEFAULT_EMAIL = "default@example.com"


@dataclass
class User:
    id: str
    auth0_id: str
    email: str
    firstname: str
    lastname: str
    created_at: datetime
    updated_at: datetime
    last_active_tenant_id: Optional[str] = None


def _user_from_row(row: Any) -> User:
    return User(
        id=row["id"],
        auth0_id=row["auth0_id"],
        email=row["email"],
        firstname=row["firstname"],
        lastname=row["lastname"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
        last_active_tenant_id=row["last_active_tenant_id"],
    )


class UserRepository:
    """Stores users, using the active transaction if any."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def _one(self, where: str, params: tuple) -> User:
        row = (
            self._db.executor()
            .execute(f"SELECT {_USER_COLUMNS} FROM users WHERE {where}", params)
            .fetchone()
        )
        if row is None:
            raise NoRowsError()
        return _user_from_row(row)

    def create(self, auth0_id: str, email: str, firstname: str, lastname: str) -> User:
        user_id = str(uuid.uuid4())
        self._db.executor().execute(
            "INSERT INTO users (id, auth0_id, email, firstname, lastname) VALUES (?, ?, ?, ?, ?)",
            (user_id, auth0_id, email, firstname, lastname),
        )
        return self._one("id = ?", (user_id,))

    def get_by_auth0_id(self, auth0_id: str) -> User:
        return self._one("auth0_id = ?", (auth0_id,))

    def get_by_id(self, user_id: str) -> User:
        return self._one("id = ?", (user_id,))

    def update_last_active_tenant(self, user_id: str, tenant_id: str) -> None:
        self._db.executor().execute(
            f"UPDATE users SET last_active_tenant_id = ?, updated_at = {_NOW} WHERE id = ?",
            (tenant_id, user_id),
        )


class UserService:
    """User lookups and onboarding of new users into a default workspace."""

    def __init__(
        self,
        repo: UserRepository,
        tenant_repo: TenantRepository,
        db: Database,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._repo = repo
        self._tenant_repo = tenant_repo
        self._db = db
        self._logger = logger or logging.getLogger(__name__)

    def get_by_auth0_id(self, auth0_id: str) -> User:
        try:
            return self._repo.get_by_auth0_id(auth0_id)
        except NoRowsError:
            raise
        except Exception as exc:
            self._logger.error(
                "failed to get user by auth0 id auth0_id=%s error=%s", auth0_id, exc
            )
            raise

    def get_or_create(self, auth0_id: str, firstname: str, lastname: str) -> User:
        """Return the user, creating them and a default workspace they own if needed."""

        def onboard() -> User:
            try:
                user = self._repo.get_by_auth0_id(auth0_id)
            except NoRowsError:
                self._logger.info(
                    "creating new user and tenant auth0_id=%s firstname=%s lastname=%s",
                    auth0_id,
                    firstname,
                    lastname,
                )
                user = self._repo.create(auth0_id, _DEFAULT_EMAIL, firstname, lastname)
            else:
                if self._tenant_repo.has_memberships(user.id):
                    return user

            tenant_name = f"{firstname} {lastname}'s Workspace"
            slug = generate_slug(tenant_name)
            if self._tenant_repo.slug_exists(slug):
                slug = slug_with_fallback(tenant_name)

            tenant = self._tenant_repo.create(tenant_name, slug)
            self._tenant_repo.create_membership(user.id, tenant.id, "owner")
            self._repo.update_last_active_tenant(user.id, tenant.id)
            user.last_active_tenant_id = tenant.id

            self._logger.info(
                "successfully created new user and tenant user_id=%s tenant_id=%s"
                " tenant_slug=%s auth0_id=%s",
                user.id,
                tenant.id,
                tenant.slug,
                auth0_id,
            )
            return user

        return self._db.run_in_transaction(onboard)

    def update_last_active_tenant(self, user_id: str, tenant_id: str) -> None:
        try:
            self._repo.update_last_active_tenant(user_id, tenant_id)
        except Exception as exc:
            self._logger.error(
                "failed to update last active tenant user_id=%s tenant_id=%s error=%s",
                user_id,
                tenant_id,
                exc,
            )
            raise
        self._logger.info(
            "updated last active tenant user_id=%s tenant_id=%s", user_id, tenant_id
        )