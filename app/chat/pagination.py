"""
Pagination classes for chat API.

This module provides pagination for the chat system:
- ConversationCursorPagination: For conversation lists (most recent first)
- MessageHistoryPagination: For message history (page/limit, before cursor)

Design Decisions:
    - Conversations ordered by most recent activity
    - Message history pages are counted from the newest message backwards
      and each page is returned oldest first, ready to render
    - Page sizes balanced for mobile performance
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.utils import timezone
from django.utils.dateparse import parse_datetime
from rest_framework.exceptions import ValidationError
from rest_framework.pagination import BasePagination, CursorPagination
from rest_framework.response import Response

from chat.constants import MESSAGE_CONFIG
from core.services import ErrorCode

if TYPE_CHECKING:
    from rest_framework.request import Request

    from chat.services import HistoryPage


class ConversationCursorPagination(CursorPagination):
    """
    Cursor pagination for conversation lists.

    Orders conversations by most recent activity (updated_at moves on every
    message). Uses descending order so most active conversations appear first.

    Default: 20 conversations per page
    Maximum: 50 conversations per page

    Query parameters:
        cursor: Encoded cursor for position
        page_size: Number of conversations (optional override)
    """

    page_size = 20
    max_page_size = 50
    page_size_query_param = "page_size"
    ordering = ("-updated_at", "-id")
    cursor_query_param = "cursor"


class MessageHistoryPagination(BasePagination):
    """
    Page/limit pagination for message history.

    Query parameters:
        before: ISO 8601 timestamp; only older messages are returned
        limit: Messages per page (default 50, max 100)
        page: 1-based page number, counted from the newest message

    Response:
        {"messages": [...oldest first...],
         "pagination": {"page", "limit", "total", "pages"}}
    """

    default_limit = MESSAGE_CONFIG.HISTORY_DEFAULT_LIMIT
    max_limit = MESSAGE_CONFIG.HISTORY_MAX_LIMIT

    def get_params(self, request: Request) -> dict:
        """
        Parse before/limit/page from the query string.

        Raises:
            ValidationError: Malformed parameter
        """
        params = request.query_params
        try:
            limit = int(params.get("limit", self.default_limit))
            page = int(params.get("page", 1))
        except ValueError:
            raise self._invalid("limit and page must be integers") from None
        if limit < 1 or page < 1:
            raise self._invalid("limit and page must be positive")

        before = None
        raw_before = params.get("before")
        if raw_before:
            before = parse_datetime(raw_before)
            if before is None:
                raise self._invalid("before must be an ISO 8601 timestamp")
            if timezone.is_naive(before):
                before = timezone.make_aware(before)

        return {"before": before, "limit": min(limit, self.max_limit), "page": page}

    def get_paginated_response(self, data, history: HistoryPage) -> Response:
        return Response(
            {
                "messages": data,
                "pagination": {
                    "page": history.page,
                    "limit": history.limit,
                    "total": history.total,
                    "pages": history.pages,
                },
            }
        )

    def _invalid(self, message: str) -> ValidationError:
        return ValidationError({"error": message, "error_code": ErrorCode.VALIDATION_ERROR})
