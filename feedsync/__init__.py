import os

from flask import Flask

from feedsync.extensions import init_extensions
from feedsync.errors import register_error_handlers
from feedsync.logger import setup_logging

def create_app(test_config=None):
    """Application factory function."""
    app = Flask(__name__, instance_relative_config=True)

    # Load configuration; a test config overrides the environment's defaults
    from feedsync.config import get_config
    if test_config is None:
        app.config.from_object(get_config(os.environ.get('FLASK_ENV', 'default')))
    else:
        app.config.from_object(get_config('testing'))
        app.config.from_mapping(test_config)

    # Ensure the instance folder exists
    try:
        os.makedirs(app.instance_path, exist_ok=True)
    except OSError:
        pass

    setup_logging(app)

    # Models must be imported before the metadata is used
    from feedsync import models  # noqa: F401

    init_extensions(app)
    register_error_handlers(app)
    register_blueprints(app)

    from feedsync.services.container import init_container
    init_container(app)

    from feedsync.cli import register_commands
    register_commands(app)

    if app.config.get('SCHEDULER_ENABLED') and not app.config.get('TESTING'):
        from feedsync.tasks import init_tasks
        init_tasks(app)

    @app.teardown_appcontext
    def teardown_db(exception=None):
        """Clean up at the end of the request."""
        from feedsync.extensions import db
        db.session.remove()

    return app

def register_blueprints(app):
    """Register all blueprints with the application."""
    from feedsync.web.api import api_bp
    from feedsync.web.health import health_bp

    app.register_blueprint(api_bp)
    app.register_blueprint(health_bp)
    app.logger.debug("Registered blueprints: api, health")
