"""
Initialize Flask extensions for the application.

These extensions are instantiated here and initialized in the application factory.
"""

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_caching import Cache
from flask_apscheduler import APScheduler

# SQLAlchemy for database ORM
db = SQLAlchemy()

# Flask-Migrate for database migrations
migrate = Migrate()

# Rate limiting for the inbound API
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=["2000 per day", "500 per hour"]
)

# Fast primary store for sync progress
cache = Cache()

# Scheduler
scheduler = APScheduler()

def init_extensions(app):
    """Initialize all Flask extensions."""
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    cache_config = {
        'CACHE_TYPE': app.config.get('CACHE_TYPE', 'SimpleCache'),
        'CACHE_DEFAULT_TIMEOUT': app.config.get('CACHE_DEFAULT_TIMEOUT', 300)
    }
    if app.config.get('CACHE_REDIS_URL'):
        cache_config['CACHE_REDIS_URL'] = app.config['CACHE_REDIS_URL']

    cache.init_app(app, config=cache_config)

    # Jobs are registered by feedsync.tasks; the scheduler is started separately
    scheduler.init_app(app)
