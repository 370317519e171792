"""Projects: storage, API key generation and service logic."""

from __future__ import annotations

import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, List, Optional

from toggleapi.db import Database, NoRowsError, NotFoundError

_PROJECT_COLUMNS = "id, tenant_id, name, client_api_key, created_at, updated_at"


@dataclass
class Project:
    id: str
    tenant_id: str
    name: str
    client_api_key: str
    created_at: datetime
    updated_at: datetime


def generate_api_key() -> str:
    """A fresh client API key: 32 random bytes, hex encoded."""
    return secrets.token_hex(32)


def _project_from_row(row: Any) -> Project:
    return Project(
        id=row["id"],
        tenant_id=row["tenant_id"],
        name=row["name"],
        client_api_key=row["client_api_key"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )


class ProjectRepository:
    """Stores projects, scoped by tenant, using the active transaction if any."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def _one(self, where: str, params: tuple) -> Project:
        row = (
            self._db.executor()
            .execute(f"SELECT {_PROJECT_COLUMNS} FROM projects WHERE {where}", params)
            .fetchone()
        )
        if row is None:
            raise NoRowsError()
        return _project_from_row(row)

    def create(self, tenant_id: str, name: str) -> Project:
        project_id = str(uuid.uuid4())
        self._db.executor().execute(
            "INSERT INTO projects (id, tenant_id, name, client_api_key) VALUES (?, ?, ?, ?)",
            (project_id, tenant_id, name, generate_api_key()),
        )
        return self._one("id = ?", (project_id,))

    def get_by_id(self, project_id: str, tenant_id: str) -> Project:
        return self._one("id = ? AND tenant_id = ?", (project_id, tenant_id))

    def get_by_api_key(self, api_key: str) -> Project:
        return self._one("client_api_key = ?", (api_key,))

    def list_by_tenant_id(self, tenant_id: str) -> List[Project]:
        """The tenant's projects, newest first."""
        rows = self._db.executor().execute(
            f"SELECT {_PROJECT_COLUMNS} FROM projects WHERE tenant_id = ?"
            " ORDER BY created_at DESC, rowid DESC",
            (tenant_id,),
        )
        return [_project_from_row(row) for row in rows]

    def delete(self, project_id: str, tenant_id: str) -> None:
        cursor = self._db.executor().execute(
            "DELETE FROM projects WHERE id = ? AND tenant_id = ?", (project_id, tenant_id)
        )
        if cursor.rowcount == 0:
            raise NoRowsError()


class ProjectService:
    """Project operations with logging and not-found translation."""

    def __init__(
        self, repo: ProjectRepository, logger: Optional[logging.Logger] = None
    ) -> None:
        self._repo = repo
        self._logger = logger or logging.getLogger(__name__)

    def create(self, tenant_id: str, name: str) -> Project:
        try:
            project = self._repo.create(tenant_id, name)
        except Exception as exc:
            self._logger.error(
                "failed to create project tenant_id=%s name=%s error=%s", tenant_id, name, exc
            )
            raise
        self._logger.info(
            "project created id=%s name=%s tenant_id=%s", project.id, project.name, tenant_id
        )
        return project

    def get_by_id(self, project_id: str, tenant_id: str) -> Project:
        try:
            return self._repo.get_by_id(project_id, tenant_id)
        except NoRowsError:
            self._logger.debug(
                "project not found or forbidden id=%s tenant_id=%s", project_id, tenant_id
            )
            raise NotFoundError() from None
        except Exception as exc:
            self._logger.error(
                "failed to get project id=%s tenant_id=%s error=%s", project_id, tenant_id, exc
            )
            raise

    def list_by_tenant_id(self, tenant_id: str) -> List[Project]:
        try:
            return self._repo.list_by_tenant_id(tenant_id)
        except Exception as exc:
            self._logger.error(
                "failed to list projects tenant_id=%s error=%s", tenant_id, exc
            )
            raise

    def delete(self, project_id: str, tenant_id: str) -> None:
        try:
            self._repo.delete(project_id, tenant_id)
        except NoRowsError:
            self._logger.debug(
                "project not found or forbidden on delete id=%s tenant_id=%s",
                project_id,
                tenant_id,
            )
            raise NotFoundError() from None
        except Exception as exc:
            self._logger.error(
                "failed to delete project id=%s tenant_id=%s error=%s",
                project_id,
                tenant_id,
                exc,
            )
            raise
        self._logger.info("project deleted id=%s tenant_id=%s", project_id, tenant_id)