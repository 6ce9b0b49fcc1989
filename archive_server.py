#!/usr/bin/env python
# ABOUTME: Flask application factory and development server for the forum archive API
# ABOUTME: Builds the pooled database handle from the environment and registers the /api blueprint

import argparse
import os
import sys

from flask import Flask, jsonify

from api import register_api
from core.forum_database import ForumDatabase, ForumDatabaseError, get_postgres_connection_string
from utils.console_output import configure_logging, print_error, print_info, print_section, print_success
from version import get_version_string


def create_app(db=None, config: dict | None = None) -> Flask:
    """
    Create the Flask app.

    Args:
        db: Database handle to serve from. A ForumDatabase is built from the
            environment when omitted.
        config: Flask config overrides applied before extensions initialize

    Returns:
        Configured Flask application
    """
    app = Flask(__name__)
    app.json.sort_keys = False
    if config:
        app.config.update(config)

    if db is None:
        db = ForumDatabase(get_postgres_connection_string())

    register_api(app, db)

    @app.route("/", methods=["GET"])
    def index():
        return jsonify({"name": get_version_string(), "api": "/api"})

    return app


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Serve the archived forum as a read-only JSON API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment variables:
  DATABASE_URL            Full PostgreSQL connection string
  DB_HOST, DB_PORT, DB_DATABASE, DB_USER, DB_PASSWORD
                          Connection parts used when DATABASE_URL is unset
  FORUM_DB_POOL_SIZE      Maximum pooled connections
  API_RATE_LIMIT          Per-client rate limit (default: 100 per minute)
""",
    )
    parser.add_argument("--host", default=os.environ.get("SERVER_HOST", "127.0.0.1"), help="Interface to bind")
    parser.add_argument(
        "--port", type=int, default=int(os.environ.get("SERVER_PORT", "5001")), help="Port to listen on"
    )
    parser.add_argument("--debug", action="store_true", help="Enable Flask debug mode")
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        help="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    args = parser.parse_args()

    configure_logging(args.log_level)
    print_section(get_version_string())

    try:
        db = ForumDatabase(get_postgres_connection_string())
    except ForumDatabaseError as e:
        print_error(str(e))
        sys.exit(1)

    with db:
        if db.health_check():
            print_success("Database connection verified")
        app = create_app(db)
        print_info(f"Serving API on http://{args.host}:{args.port}/api")
        app.run(host=args.host, port=args.port, debug=args.debug, use_reloader=False)


if __name__ == "__main__":
    main()
