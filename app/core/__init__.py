"""
Core Application - Infrastructure & Base Classes

Generic building blocks shared by the domain apps. No chat-specific logic
lives here.

Models (import from core.models):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)

Model Mixins (import from core.model_mixins):
    - SoftDeleteMixin: Soft delete support (is_deleted, deleted_at)

Services (import from core.services):
    - BaseService: Base class for service layer
    - ServiceResult: Standard result wrapper for success/failure handling
    - ErrorCode: Failure codes shared by services, REST and websocket errors

Views (import from core.views):
    - health_check: Database and channel layer liveness probe

Usage:
    from core.models import BaseModel
    from core.model_mixins import SoftDeleteMixin
    from core.services import BaseService, ErrorCode, ServiceResult

    class Message(SoftDeleteMixin, BaseModel):
        content = models.TextField()

Note:
    Django models and model mixins are NOT imported here to avoid
    AppRegistryNotReady errors. Import them directly from their modules.
"""

from .services import BaseService, ErrorCode, ServiceResult

__all__ = [
    "BaseService",
    "ErrorCode",
    "ServiceResult",
]
