"""Multi-tenant feature-flag backend core: storage, tenants, users, projects and handlers."""

__version__ = "0.1.0"

__all__ = ["db", "fixtures", "tenants", "projects", "users", "handlers"]