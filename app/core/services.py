"""
Base service layer patterns for business logic encapsulation.

This module provides foundational patterns for the service layer:
- ServiceResult: Standard result wrapper for consistent success/failure handling
- BaseService: Base class with common service utilities
- ErrorCode: The machine-readable failure codes shared by REST and websocket clients

Service Layer Philosophy:
    Services encapsulate business logic separate from views and consumers.
    Views and consumers handle transport concerns, models handle data,
    services handle logic. Both transports call the same services, so a
    rule is enforced once.

Pattern Comparison:
    - ServiceResult: Use for expected failures (validation, business rules)
    - Exceptions: Use for unexpected failures (database errors, bugs)

Usage:
    from core.services import BaseService, ErrorCode, ServiceResult

    class ConversationService(BaseService):
        @classmethod
        def get_conversation(cls, conversation_id: int) -> ServiceResult[Conversation]:
            conversation = Conversation.objects.filter(pk=conversation_id).first()
            if conversation is None:
                return ServiceResult.failure(
                    "Conversation not found", error_code=ErrorCode.NOT_FOUND
                )
            return ServiceResult.success(conversation)

    # In view
    result = ConversationService.get_conversation(pk)
    if result.success:
        return Response(ConversationSerializer(result.data).data)
    return Response(result.to_response(), status=404)
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Final, Generic, TypeVar

from django.db import transaction

if TYPE_CHECKING:
    from collections.abc import Generator
    from typing import Any

# Generic type for ServiceResult data
T = TypeVar("T")


class ErrorCode:
    """
    Failure codes returned by services.

    VALIDATION_ERROR: Malformed input (empty content, oversized name, self-chat)
    NOT_AUTHORIZED: Actor is not a participant or lacks the required role
    NOT_FOUND: Conversation, message or user does not exist
    INVALID_OPERATION: Operation does not apply (membership change on a direct chat)
    PARTIAL_DELIVERY_FAILURE: A message was persisted but some notifications failed
    """

    VALIDATION_ERROR: Final = "VALIDATION_ERROR"
    NOT_AUTHORIZED: Final = "NOT_AUTHORIZED"
    NOT_FOUND: Final = "NOT_FOUND"
    INVALID_OPERATION: Final = "INVALID_OPERATION"
    PARTIAL_DELIVERY_FAILURE: Final = "PARTIAL_DELIVERY_FAILURE"


@dataclass
class ServiceResult(Generic[T]):
    """
    Standard result wrapper for service operations.

    Provides consistent success/failure handling without exceptions.
    Use this for expected failures (validation errors, business rule violations).

    Attributes:
        success: Whether the operation succeeded
        data: Result data if successful (None if failed)
        error: Error message if failed (None if successful)
        error_code: Machine-readable error code for client handling
        errors: Field-level errors for validation failures

    Usage:
        # Success case
        return ServiceResult.success(message)

        # Failure case
        return ServiceResult.failure("Not a participant", ErrorCode.NOT_AUTHORIZED)

        # Check result
        result = MessageService.send_message(...)
        if result:
            message = result.data
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    errors: dict[str, list[str]] | None = field(default=None)

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        """
        Create a successful result.

        Args:
            data: The result data

        Returns:
            ServiceResult with success=True and data set
        """
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str | None = None,
        errors: dict[str, list[str]] | None = None,
    ) -> ServiceResult[T]:
        """
        Create a failed result.

        Args:
            error: Human-readable error message
            error_code: Machine-readable error code for client handling
            errors: Field-level errors (for validation failures)

        Returns:
            ServiceResult with success=False and error details

        Example:
            return ServiceResult.failure(
                "Message content is required",
                error_code=ErrorCode.VALIDATION_ERROR,
                errors={"content": ["This field may not be blank."]},
            )
        """
        return cls(
            success=False,
            error=error,
            error_code=error_code,
            errors=errors,
        )

    def to_response(self) -> dict[str, Any]:
        """
        Convert a failure to the API error body.

        Returns:
            Dict with "error" and "error_code" keys, plus "errors" when
            field-level details are present. Successful results return
            {"data": ...}.
        """
        if self.success:
            return {"data": self.data}

        response: dict[str, Any] = {"error": self.error}
        if self.error_code:
            response["error_code"] = self.error_code
        if self.errors:
            response["errors"] = self.errors
        return response

    def __bool__(self) -> bool:
        """
        Allow using result in boolean context.

        Example:
            if result:  # Same as: if result.success
                ...
        """
        return self.success


class BaseService:
    """
    Base class for service layer classes.

    Provides common utilities for services:
    - Logging setup per service
    - Database transaction management

    Design Notes:
        - Use @staticmethod or @classmethod (no instance state)
        - Services should be stateless
        - Use ServiceResult for expected failures
        - Raise exceptions for unexpected failures
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """
        Get logger for this service.

        Returns a logger named after the service class for
        easy filtering in logs.

        Returns:
            Logger instance for this service
        """
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """
        Execute operations in a database transaction.

        All database operations within this context manager are
        wrapped in a transaction. If any operation fails, all
        changes are rolled back.

        Example:
            with cls.atomic():
                conversation = Conversation.objects.create(...)
                Participant.objects.create(conversation=conversation, ...)
        """
        with transaction.atomic():
            yield
