"""Inbox listing routes."""

import logging
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query

from ..messaging import schemas
from ..messaging.errors import StoreError
from ..messaging.repository import InboxRepository
from .deps import get_repository

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/inbox", tags=["inbox"])

MAX_PAGE_SIZE = 50
DEFAULT_PAGE_SIZE = 20


@router.get("/conversations")
def list_conversations(
    status: Literal["open", "closed", "all"] = "open",
    hide_spam: bool = Query(True, alias="hideSpam"),
    page: int = 1,
    page_size: int = Query(DEFAULT_PAGE_SIZE, alias="pageSize"),
    repository: InboxRepository = Depends(get_repository),
) -> dict:
    """Most recently active conversations with customer contact info.

    Out-of-range paging values are clamped rather than rejected; conversations
    whose latest message was classified as spam are hidden unless
    ``hideSpam=false``.
    """

    page = max(1, page)
    page_size = min(MAX_PAGE_SIZE, max(1, page_size))
    try:
        items, total = repository.list_conversations(
            status=None if status == "all" else status,
            limit=page_size,
            offset=(page - 1) * page_size,
            hide_spam=hide_spam,
        )
    except StoreError as exc:
        logger.exception("Failed to list conversations")
        raise HTTPException(status_code=500, detail="Unable to load conversations") from exc

    result = schemas.ConversationPage(
        conversations=items,
        pagination=schemas.Pagination(
            page=page,
            page_size=page_size,
            total=total,
            has_more=page * page_size < total,
        ),
    )
    return result.model_dump(mode="json", by_alias=True)
