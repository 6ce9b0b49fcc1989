#!/usr/bin/env python
# ABOUTME: REST API route handlers for browsing the archived forum
# ABOUTME: Post listings with search/filter/sort/pagination, question threads, user cards, health

import os
from datetime import datetime, timezone

from flask import current_app, jsonify, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from core.forum_database import ForumDatabase
from core.query_builder import NODE_TYPE_ALL, PostQuery
from core.response_shaper import NotFoundError, fetch_post_page, fetch_thread, fetch_user
from utils.error_handling import format_user_error
from utils.input_validation import validator
from version import __version__

from . import api

# ============================================================================
# CORS AND RATE LIMITING CONFIGURATION
# ============================================================================

API_RATE_LIMIT = os.environ.get("API_RATE_LIMIT", "100 per minute")

CORS(api, origins="*", methods=["GET", "OPTIONS"], allow_headers=["Content-Type"])

api_limiter = Limiter(key_func=get_remote_address, default_limits=[API_RATE_LIMIT], storage_uri="memory://")


def current_rate_limit() -> str:
    """Per-client limit for API routes; app config API_RATE_LIMIT overrides the environment."""
    return current_app.config.get("API_RATE_LIMIT", API_RATE_LIMIT)


# ============================================================================
# DATABASE HANDLE
# ============================================================================


def get_db() -> ForumDatabase:
    """Get the database handle registered on the current app."""
    db = current_app.extensions.get("forum_db")
    if db is None:
        raise RuntimeError("No forum database registered on this app; call register_api(app, db)")
    return db


def internal_error_response(error: Exception, context: str):
    """Log a failure and return it verbatim to the client."""
    details = format_user_error(error, context)
    return jsonify({"error": "Internal server error", "details": details}), 500


# ============================================================================
# API ENDPOINTS
# ============================================================================


@api.route("/health", methods=["GET"])
def api_health():
    """
    Health check endpoint for monitoring.

    Returns:
        JSON with health status and timestamp
    """
    timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    try:
        db = get_db()
        if db.health_check():
            return jsonify(
                {
                    "status": "healthy",
                    "database": "connected",
                    "version": __version__,
                    "pool": db.get_pool_stats(),
                    "timestamp": timestamp,
                }
            ), 200

        return jsonify(
            {"status": "unhealthy", "database": "disconnected", "version": __version__, "timestamp": timestamp}
        ), 503

    except Exception as e:
        format_user_error(e, "api_health")
        return jsonify({"status": "unhealthy", "error": "Service unavailable", "timestamp": timestamp}), 503


@api.route("/posts", methods=["GET"])
@api_limiter.limit(current_rate_limit)
def get_posts():
    """
    Get paginated list of posts with filtering.

    Query Parameters:
        page (int): Page number (default: 1)
        limit (int): Results per page (default: 10, no maximum)
        search (str): Case-insensitive substring of title, body or tags (default: no filter)
        nodeType (str): all|question|answer|comment (default: all)
        sortBy (str): date_desc|date_asc|score_desc|score_asc|interactions_desc|interactions_asc
                      (default and fallback: date_desc)
        tags (str): Comma-separated tags that must all be present

    Returns:
        Paginated JSON envelope with posts
    """
    validation_result = validator.validate_all(
        page=request.args.get("page"),
        limit=request.args.get("limit"),
        search=request.args.get("search", ""),
        tags=request.args.get("tags"),
    )
    if not validation_result.is_valid:
        return jsonify({"error": "Validation failed", "details": validation_result.get_error_messages()}), 400

    sanitized = validation_result.sanitized_values
    query = PostQuery(
        page=sanitized["page"],
        limit=sanitized["limit"],
        search=sanitized["search"],
        node_type=request.args.get("nodeType", NODE_TYPE_ALL),
        sort_by=request.args.get("sortBy"),
        tags=sanitized["tags"],
    )

    try:
        return jsonify(fetch_post_page(get_db(), query, endpoint=request.path)), 200
    except Exception as e:
        return internal_error_response(e, "api_posts")


@api.route("/posts/<int:post_id>/comments", methods=["GET"])
@api_limiter.limit(current_rate_limit)
def get_post_comments(post_id: int):
    """
    Get the answers and comments of a question.

    Args:
        post_id: Question ID

    Query Parameters:
        include_replies (bool): Attach comments made on each answer/comment (default: false)

    Returns:
        JSON with the question and its ordered answers/comments; 404 if the question
        is missing, deleted, or not a question
    """
    validation_result = validator.validate_all(include_replies=request.args.get("include_replies"))
    if not validation_result.is_valid:
        return jsonify({"error": "Validation failed", "details": validation_result.get_error_messages()}), 400

    try:
        thread = fetch_thread(
            get_db(), post_id, include_replies=validation_result.sanitized_values["include_replies"]
        )
        return jsonify(thread), 200
    except NotFoundError as e:
        return jsonify({"error": e.message}), 404
    except Exception as e:
        return internal_error_response(e, "api_post_comments")


@api.route("/users/<int:user_id>", methods=["GET"])
@api_limiter.limit(current_rate_limit)
def get_user(user_id: int):
    """
    Get a user's display name, reputation and badge counts.

    Returns:
        JSON user card; 404 if the user does not exist
    """
    try:
        return jsonify(fetch_user(get_db(), user_id)), 200
    except NotFoundError as e:
        return jsonify({"error": e.message}), 404
    except Exception as e:
        return internal_error_response(e, "api_user")


# ============================================================================
# ERROR HANDLERS
# ============================================================================


@api.errorhandler(404)
def api_not_found(error):
    """Handle 404 errors for API routes."""
    return jsonify({"error": "Endpoint not found"}), 404


@api.errorhandler(429)
def api_rate_limit(error):
    """Handle rate limit errors for API routes."""
    return jsonify({"error": "Rate limit exceeded. Please wait and try again."}), 429


@api.errorhandler(500)
def api_internal_error(error):
    """Handle uncaught 500 errors for API routes."""
    return internal_error_response(getattr(error, "original_exception", None) or error, "api_internal")
