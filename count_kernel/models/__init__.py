"""ORM models for the count kernel."""

from count_kernel.models.document import StoredDocument

__all__ = ["StoredDocument"]
