# ABOUTME: Flask blueprint for the forum archive JSON API, mounted under /api
# ABOUTME: register_api() attaches the database handle, rate limiter and blueprint to an app

from flask import Blueprint, request

api = Blueprint("api", __name__, url_prefix="/api")

from . import routes  # noqa: E402


def register_api(app, db):
    """
    Register the API blueprint on a Flask app.

    Args:
        app: Flask application
        db: ForumDatabase (or compatible) handle used by every request
    """
    app.extensions["forum_db"] = db
    routes.api_limiter.init_app(app)
    app.register_blueprint(api)

    @app.errorhandler(404)
    def not_found(error):
        if request.path.startswith(api.url_prefix):
            return routes.api_not_found(error)
        return error

    return app
