"""SQLAlchemy bridge used for PostgreSQL stores."""

from backplane.core.orm.session import BackplaneSession, SAConnectionBridge, create_backplane_engine

__all__ = ["BackplaneSession", "SAConnectionBridge", "create_backplane_engine"]
