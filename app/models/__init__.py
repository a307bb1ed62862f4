"""SQLAlchemy models for the load lifecycle service."""

from app.models.load import Load, LoadStatus  # noqa: F401
from app.models.load_status_history import LoadStatusHistory  # noqa: F401
