import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Optional

import sqlalchemy
from fastapi import APIRouter, Body, Depends, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from formrelayapi.cache import COMMENTS_PREFIX, ListingCache, get_listing_cache, listing_key
from formrelayapi.database import (
    comment_table,
    database,
    insert_ignore_duplicates,
    like_table,
    response_table,
)
from formrelayapi.models.comment import (
    Comment,
    CommentIn,
    CommentResponse,
    CommentUpdateIn,
    CommentWithStats,
    Like,
    ResponseIn,
)
from formrelayapi.security import CurrentUser

logger = logging.getLogger(__name__)
router = APIRouter()

Cache = Annotated[ListingCache, Depends(get_listing_cache)]

PRIORITY_RANK = {"urgent": 0, "high": 1, "medium": 2, "low": 3}
STATUS_RANK = {"open": 0, "in_progress": 1, "resolved": 2, "closed": 3}

LIST_STATS_FUNCTION = "get_comments_with_stats"
SINGLE_STATS_FUNCTION = "get_single_comment_stats"

LIST_STATS_QUERY = f"""
    SELECT * FROM {LIST_STATS_FUNCTION}(
        CAST(:filter_category AS text),
        CAST(:filter_status AS text),
        CAST(:filter_priority AS text),
        CAST(:filter_user_id AS uuid),
        CAST(:current_user_id AS uuid),
        CAST(:sort_order AS text)
    )
"""

SINGLE_STATS_QUERY = f"""
    SELECT * FROM {SINGLE_STATS_FUNCTION}(
        CAST(:comment_id AS uuid),
        CAST(:current_user_id AS uuid)
    )
"""

FOREIGN_KEY_VIOLATION = "23503"


def validation_failed(exc: ValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={
            "error": "Validation failed",
            "details": exc.errors(include_url=False, include_context=False),
        },
    )


def _filter(value: Optional[str]) -> Optional[str]:
    return None if value in (None, "", "all") else value


def _order_by(sort: str) -> list:
    created = comment_table.c.created_at
    if sort == "oldest":
        return [created.asc()]
    if sort == "priority":
        return [sqlalchemy.case(PRIORITY_RANK, value=comment_table.c.priority, else_=len(PRIORITY_RANK)), created.desc()]
    if sort == "status":
        return [sqlalchemy.case(STATUS_RANK, value=comment_table.c.status, else_=len(STATUS_RANK)), created.desc()]
    return [created.desc()]


async def _count_by_comment(table: sqlalchemy.Table, comment_ids: List[str]) -> Dict[str, int]:
    query = (
        sqlalchemy.select(table.c.comment_id, sqlalchemy.func.count().label("n"))
        .where(table.c.comment_id.in_(comment_ids))
        .group_by(table.c.comment_id)
    )
    return {row.comment_id: row.n for row in await database.fetch_all(query)}


async def _liked_by(user_id: str, comment_ids: List[str]) -> set:
    query = sqlalchemy.select(like_table.c.comment_id).where(
        (like_table.c.user_id == user_id) & like_table.c.comment_id.in_(comment_ids)
    )
    return {row.comment_id for row in await database.fetch_all(query)}


def _with_stats(row: dict, like_count, response_count, liked) -> CommentWithStats:
    return CommentWithStats(
        **{k: row[k] for k in Comment.model_fields if k in row},
        likeCount=int(like_count or 0),
        responseCount=int(response_count or 0),
        isLikedByUser=bool(liked),
    )


async def fetch_comments_with_stats(
    category: Optional[str],
    status: Optional[str],
    priority: Optional[str],
    user_id: Optional[str],
    sort: str,
    current_user_id: str,
) -> List[CommentWithStats]:
    try:
        rows = await database.fetch_all(
            LIST_STATS_QUERY,
            {
                "filter_category": category,
                "filter_status": status,
                "filter_priority": priority,
                "filter_user_id": user_id,
                "current_user_id": current_user_id,
                "sort_order": sort,
            },
        )
        return [
            _with_stats(dict(r._mapping), r.like_count, r.response_count, r.is_liked_by_user)
            for r in rows
        ]
    except Exception as e:
        if LIST_STATS_FUNCTION not in str(e):
            raise
        logger.info("Stats function unavailable, using fallback queries")

    query = comment_table.select()
    if category:
        query = query.where(comment_table.c.category == category)
    if status:
        query = query.where(comment_table.c.status == status)
    if priority:
        query = query.where(comment_table.c.priority == priority)
    if user_id:
        query = query.where(comment_table.c.user_id == user_id)
    rows = await database.fetch_all(query.order_by(*_order_by(sort)))
    if not rows:
        return []

    ids = [r.id for r in rows]
    like_counts, response_counts, liked = await asyncio.gather(
        _count_by_comment(like_table, ids),
        _count_by_comment(response_table, ids),
        _liked_by(current_user_id, ids),
    )
    return [
        _with_stats(dict(r._mapping), like_counts.get(r.id), response_counts.get(r.id), r.id in liked)
        for r in rows
    ]


async def fetch_single_stats(comment_id: str, current_user_id: str) -> tuple:
    try:
        rows = await database.fetch_all(
            SINGLE_STATS_QUERY,
            {"comment_id": comment_id, "current_user_id": current_user_id},
        )
        if rows:
            stats = rows[0]
            return stats.like_count, stats.response_count, stats.is_liked_by_user
    except Exception as e:
        logger.info(f"Using fallback queries for comment stats: {e}")

    like_counts, response_counts, liked = await asyncio.gather(
        _count_by_comment(like_table, [comment_id]),
        _count_by_comment(response_table, [comment_id]),
        _liked_by(current_user_id, [comment_id]),
    )
    return like_counts.get(comment_id, 0), response_counts.get(comment_id, 0), comment_id in liked


async def find_comment(cid: str):
    try:
        uuid.UUID(cid)
    except ValueError:
        return None
    return await database.fetch_one(comment_table.select().where(comment_table.c.id == cid))


async def find_comment_for_owner(cid: str, user_id: str):
    comment = await find_comment(cid)
    if not comment:
        raise HTTPException(status_code=404, detail="Comment not found")
    if comment.user_id != user_id:
        raise HTTPException(status_code=403, detail="Forbidden")
    return comment


@router.get("", status_code=200)
async def list_comments(
    current_user: CurrentUser,
    cache: Cache,
    category: Optional[str] = None,
    status: Optional[str] = None,
    priority: Optional[str] = None,
    userId: Optional[str] = None,
    sort: str = Query("newest"),
):
    sort = sort or "newest"
    key = listing_key(category, status, priority, userId, sort, current_user.id)
    cached = await cache.get(key)
    if cached is not None:
        return {"comments": cached}

    try:
        comments = await fetch_comments_with_stats(
            _filter(category), _filter(status), _filter(priority), userId or None, sort, current_user.id
        )
    except Exception as e:
        logger.exception(f"Error fetching comments: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch comments")

    data = jsonable_encoder(comments)
    await cache.set(key, data)
    return {"comments": data}


@router.post("", status_code=201)
async def create_comment(current_user: CurrentUser, cache: Cache, payload: Any = Body(...)):
    try:
        comment = CommentIn.model_validate(payload)
    except ValidationError as e:
        return validation_failed(e)

    now = datetime.now(timezone.utc)
    values = {
        "id": str(uuid.uuid4()),
        "user_id": current_user.id,
        "status": "open",
        "created_at": now,
        "updated_at": now,
        **comment.model_dump(),
    }
    try:
        await database.execute(comment_table.insert().values(**values))
    except Exception as e:
        logger.exception(f"Error creating comment: {e}")
        raise HTTPException(status_code=500, detail="Failed to create comment")

    await cache.evict_prefix(COMMENTS_PREFIX)
    return {"comment": Comment(**values)}


@router.get("/{cid}", status_code=200)
async def get_comment(cid: str, current_user: CurrentUser):
    comment = await find_comment(cid)
    if not comment:
        raise HTTPException(status_code=404, detail="Comment not found")

    like_count, response_count, liked = await fetch_single_stats(cid, current_user.id)
    return {"comment": _with_stats(dict(comment._mapping), like_count, response_count, liked)}


@router.put("/{cid}", status_code=200)
async def update_comment(cid: str, current_user: CurrentUser, cache: Cache, payload: Any = Body(...)):
    try:
        changes = CommentUpdateIn.model_validate(payload).model_dump(exclude_unset=True, exclude_none=True)
    except ValidationError as e:
        return validation_failed(e)

    await find_comment_for_owner(cid, current_user.id)

    query = (
        comment_table.update()
        .where(comment_table.c.id == cid)
        .values(updated_at=datetime.now(timezone.utc), **changes)
    )
    try:
        await database.execute(query)
    except Exception as e:
        logger.exception(f"Error updating comment {cid}: {e}")
        raise HTTPException(status_code=500, detail="Failed to update comment")

    await cache.evict_prefix(COMMENTS_PREFIX)
    updated = await find_comment(cid)
    return {"comment": Comment(**dict(updated._mapping))}


@router.delete("/{cid}", status_code=200)
async def delete_comment(cid: str, current_user: CurrentUser, cache: Cache):
    await find_comment_for_owner(cid, current_user.id)

    # Children first, one statement each; a failure leaves the comment in place to retry.
    try:
        await database.execute(like_table.delete().where(like_table.c.comment_id == cid))
        await database.execute(response_table.delete().where(response_table.c.comment_id == cid))
        await database.execute(comment_table.delete().where(comment_table.c.id == cid))
    except Exception as e:
        logger.exception(f"Error deleting comment {cid}: {e}")
        raise HTTPException(status_code=500, detail="Failed to delete comment")

    await cache.evict_prefix(COMMENTS_PREFIX)
    return {"message": "Comment deleted successfully"}


@router.get("/{cid}/responses", status_code=200)
async def list_responses(cid: str, current_user: CurrentUser):
    query = (
        response_table.select()
        .where(response_table.c.comment_id == cid)
        .order_by(response_table.c.created_at.asc())
    )
    try:
        rows = await database.fetch_all(query)
    except Exception as e:
        logger.exception(f"Error fetching responses for {cid}: {e}")
        raise HTTPException(status_code=500, detail="Failed to fetch responses")
    return {"responses": [CommentResponse(**dict(r._mapping)) for r in rows]}


@router.post("/{cid}/responses", status_code=201)
async def create_response(cid: str, current_user: CurrentUser, cache: Cache, body: ResponseIn):
    content = (body.content or "").strip()
    if not content:
        raise HTTPException(status_code=400, detail="Content is required")

    if not await find_comment(cid):
        raise HTTPException(status_code=404, detail="Comment not found")

    now = datetime.now(timezone.utc)
    values = {
        "id": str(uuid.uuid4()),
        "comment_id": cid,
        "user_id": current_user.id,
        "content": content,
        "created_at": now,
        "updated_at": now,
    }
    try:
        await database.execute(response_table.insert().values(**values))
    except Exception as e:
        logger.exception(f"Error creating response on {cid}: {e}")
        raise HTTPException(status_code=500, detail="Failed to create response")

    await cache.evict_prefix(COMMENTS_PREFIX)
    return {"response": CommentResponse(**values)}


@router.post("/{cid}/likes", status_code=201)
async def like_comment(cid: str, current_user: CurrentUser, cache: Cache):
    if not await find_comment(cid):
        raise HTTPException(status_code=404, detail="Comment not found")

    query = insert_ignore_duplicates(
        like_table,
        ["comment_id", "user_id"],
        id=str(uuid.uuid4()),
        comment_id=cid,
        user_id=current_user.id,
        created_at=datetime.now(timezone.utc),
    )
    try:
        like = await database.fetch_one(query)
    except Exception as e:
        if getattr(e, "sqlstate", None) == FOREIGN_KEY_VIOLATION:
            raise HTTPException(status_code=404, detail="Comment not found")
        logger.exception(f"Error creating like on {cid}: {e}")
        raise HTTPException(status_code=500, detail="Failed to create like")

    if like is None:
        raise HTTPException(status_code=409, detail="Already liked")

    await cache.evict_prefix(COMMENTS_PREFIX)
    return {"like": Like(**dict(like._mapping)), "success": True}


@router.delete("/{cid}/likes", status_code=200)
async def unlike_comment(cid: str, current_user: CurrentUser, cache: Cache):
    query = like_table.delete().where(
        (like_table.c.comment_id == cid) & (like_table.c.user_id == current_user.id)
    )
    try:
        await database.execute(query)
    except Exception as e:
        logger.exception(f"Error deleting like on {cid}: {e}")
        raise HTTPException(status_code=500, detail="Failed to delete like")

    await cache.evict_prefix(COMMENTS_PREFIX)
    return {"success": True}
