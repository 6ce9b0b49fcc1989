# ABOUTME: Turns forum database rows into API payloads: paginated post envelopes, threads, user cards
# ABOUTME: Coerces driver-returned counts to integers and raises not-found errors for missing roots

import math
from datetime import date, datetime
from typing import Any
from urllib.parse import urlencode

from core.query_builder import DEFAULT_SORT, NODE_TYPE_ALL, PostQuery


class NotFoundError(Exception):
    """A requested root object does not exist or is not visible."""

    message = "Not found"

    def __init__(self, object_id: Any):
        super().__init__(f"{self.message}: {object_id}")
        self.object_id = object_id


class PostNotFoundError(NotFoundError):
    message = "Post not found"


class UserNotFoundError(NotFoundError):
    message = "User not found"


def to_int(value: Any, default: int = 0) -> int:
    """Coerce a count or score to int; drivers may return Decimal or str for aggregates."""
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return default


def format_timestamp(value: datetime | date | str | None) -> str | None:
    """Render a timestamp as ISO 8601; naive datetimes are treated as UTC."""
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.isoformat() + "Z"
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def calculate_total_pages(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit > 0 else 0


def shape_post(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": row["id"],
        "title": row.get("title"),
        "body": row.get("body"),
        "tagnames": row.get("tagnames") or "",
        "node_type": row.get("node_type"),
        "added_at": format_timestamp(row.get("added_at")),
        "score": to_int(row.get("score")),
        "parent_id": row.get("parent_id"),
        "author_id": row.get("author_id"),
        "author_name": row.get("author_name"),
        "answer_count": to_int(row.get("answer_count")),
        "comment_count": to_int(row.get("comment_count")),
    }


def shape_comment(row: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": row["id"],
        "body": row.get("body"),
        "node_type": row.get("node_type"),
        "added_at": format_timestamp(row.get("added_at")),
        "score": to_int(row.get("score")),
        "parent_id": row.get("parent_id"),
        "user_id": row.get("author_id"),
        "author_name": row.get("author_name"),
        "comment_count": to_int(row.get("comment_count")),
    }


def query_params(query: PostQuery, page: int) -> dict[str, Any]:
    """Query-string parameters reproducing a listing request at the given page."""
    params: dict[str, Any] = {"page": page, "limit": query.limit}
    if query.search:
        params["search"] = query.search
    if query.node_type != NODE_TYPE_ALL:
        params["nodeType"] = query.node_type
    if query.sort_by != DEFAULT_SORT:
        params["sortBy"] = query.sort_by
    if query.tags:
        params["tags"] = ",".join(query.tags)
    return params


def build_links(endpoint: str, query: PostQuery, total_pages: int) -> dict[str, str | None]:
    def link(page: int) -> str:
        return f"{endpoint}?{urlencode(query_params(query, page))}"

    last_page = max(total_pages, 1)
    return {
        "self": link(query.page),
        "next": link(query.page + 1) if query.page < total_pages else None,
        "prev": link(query.page - 1) if query.page > 1 else None,
        "first": link(1),
        "last": link(last_page),
    }


def build_pagination_response(data: list[dict], query: PostQuery, total: Any, endpoint: str) -> dict:
    """
    Build the paginated listing envelope.

    Args:
        data: Shaped rows for the current page
        query: The listing request that produced them
        total: Total matching rows (coerced to int)
        endpoint: API path used to build navigation links

    Returns:
        Envelope with data, total, page, totalPages, limit, filters, sort and links
    """
    total = to_int(total)
    total_pages = calculate_total_pages(total, query.limit)

    return {
        "data": data,
        "total": total,
        "page": query.page,
        "totalPages": total_pages,
        "limit": query.limit,
        "filters": {"search": query.search, "nodeType": query.node_type, "tags": list(query.tags)},
        "sort": query.sort_by,
        "links": build_links(endpoint, query, total_pages),
    }


def fetch_post_page(db, query: PostQuery, endpoint: str = "/api/posts") -> dict:
    """Run the page and count queries and assemble the listing envelope."""
    rows, total = db.list_posts(query)
    return build_pagination_response([shape_post(row) for row in rows], query, total, endpoint)


def fetch_thread(db, post_id: int, include_replies: bool = False) -> dict:
    """
    Fetch a question and its direct answers/comments.

    Children come back answers first, then comments; within each group by
    descending score, then ascending timestamp.

    Raises:
        PostNotFoundError: If the post is missing, soft-deleted, or not a question
    """
    post = db.get_question(post_id)
    if post is None:
        raise PostNotFoundError(post_id)

    children, replies = db.get_thread(post_id, include_replies=include_replies)
    comments = [shape_comment(row) for row in children]

    if include_replies:
        replies_by_parent: dict[Any, list[dict]] = {}
        for row in replies:
            replies_by_parent.setdefault(row["parent_id"], []).append(shape_comment(row))
        for comment in comments:
            comment["replies"] = replies_by_parent.get(comment["id"], [])

    return {"comments": comments, "post": shape_post(post)}


def fetch_user(db, user_id: int) -> dict:
    """Fetch a user's profile card, raising UserNotFoundError if absent."""
    row = db.get_user(user_id)
    if row is None:
        raise UserNotFoundError(user_id)

    return {
        "id": row["id"],
        "real_name": row.get("real_name"),
        "reputation": to_int(row.get("reputation")),
        "badges": {
            "gold": to_int(row.get("gold")),
            "silver": to_int(row.get("silver")),
            "bronze": to_int(row.get("bronze")),
        },
    }
