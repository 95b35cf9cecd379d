import os

basedir = os.path.abspath(os.path.dirname(__file__))


def _env_bool(name, default):
    return os.environ.get(name, default).lower() == 'true'


class Config:
    """Base configuration for the application."""

    # Flask settings
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-key-please-change-in-production'
    DEBUG = False
    TESTING = False

    # Database settings
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///feedsync.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Upstream API settings
    UPSTREAM_API_URL = os.environ.get('UPSTREAM_API_URL', 'https://www.inoreader.com/reader/api/0')
    UPSTREAM_ACCESS_TOKEN = os.environ.get('UPSTREAM_ACCESS_TOKEN')
    UPSTREAM_TIMEOUT_SECONDS = float(os.environ.get('UPSTREAM_TIMEOUT_SECONDS', 15))

    # Sync cycle
    SYNC_INTERVAL_MINUTES = int(os.environ.get('SYNC_INTERVAL_MINUTES', 5))
    SYNC_TRIGGER_POLICY = os.environ.get('SYNC_TRIGGER_POLICY', 'coalesce')  # coalesce | queue
    SYNC_STAGE_ORDER = os.environ.get('SYNC_STAGE_ORDER', 'pull_first')  # pull_first | push_first
    SYNC_STALE_RUN_MINUTES = int(os.environ.get('SYNC_STALE_RUN_MINUTES', 30))

    # Pull
    SYNC_PAGE_SIZE = int(os.environ.get('SYNC_PAGE_SIZE', 100))
    SYNC_MAX_ARTICLES = int(os.environ.get('SYNC_MAX_ARTICLES', 500))
    FULL_SYNC_INTERVAL_DAYS = int(os.environ.get('FULL_SYNC_INTERVAL_DAYS', 7))
    PULL_EXCLUDE_READ = _env_bool('PULL_EXCLUDE_READ', 'true')

    # Push and change queue
    SYNC_BATCH_SIZE = int(os.environ.get('SYNC_BATCH_SIZE', 100))
    SYNC_MAX_RETRIES = int(os.environ.get('SYNC_MAX_RETRIES', 3))
    SYNC_RETRY_BACKOFF_MINUTES = int(os.environ.get('SYNC_RETRY_BACKOFF_MINUTES', 10))
    SYNC_RETRY_BACKOFF_CAP_MINUTES = int(os.environ.get('SYNC_RETRY_BACKOFF_CAP_MINUTES', 360))
    PUSH_TIME_BUDGET_SECONDS = int(os.environ.get('PUSH_TIME_BUDGET_SECONDS', 30))

    # Progress tracking
    SYNC_STATUS_RETENTION_HOURS = int(os.environ.get('SYNC_STATUS_RETENTION_HOURS', 24))
    SYNC_STATUS_GRACE_SECONDS = int(os.environ.get('SYNC_STATUS_GRACE_SECONDS', 60))
    CACHE_TYPE = os.environ.get('CACHE_TYPE', 'SimpleCache')
    CACHE_REDIS_URL = os.environ.get('CACHE_REDIS_URL')
    CACHE_DEFAULT_TIMEOUT = 300

    # Upstream rate limits (Zone 1 reads, Zone 2 writes)
    RATE_LIMIT_READ_LIMIT = int(os.environ.get('RATE_LIMIT_READ_LIMIT', 5000))
    RATE_LIMIT_WRITE_LIMIT = int(os.environ.get('RATE_LIMIT_WRITE_LIMIT', 100))
    RATE_LIMIT_WINDOW_SECONDS = int(os.environ.get('RATE_LIMIT_WINDOW_SECONDS', 86400))

    # Inbound API limits
    API_RATE_LIMIT = os.environ.get('API_RATE_LIMIT', '10 per minute')
    RATELIMIT_ENABLED = True
    RATELIMIT_STORAGE_URI = os.environ.get('RATELIMIT_STORAGE_URI', 'memory://')

    # Background work
    SCHEDULER_ENABLED = _env_bool('SCHEDULER_ENABLED', 'true')
    SCHEDULER_API_ENABLED = False
    TASK_WORKERS = int(os.environ.get('TASK_WORKERS', 2))

    # Logging
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    LOG_FORMAT = os.environ.get('LOG_FORMAT', 'standard')
    LOG_TO_FILE = _env_bool('LOG_TO_FILE', 'false')
    LOG_DIRECTORY = os.environ.get('LOG_DIRECTORY', os.path.join(basedir, '..', 'logs'))

    # Application settings
    VERSION = '1.0.0'


class DevelopmentConfig(Config):
    """Development configuration."""

    DEBUG = True

    # Use SQLite for development
    SQLALCHEMY_DATABASE_URI = os.environ.get('DEV_DATABASE_URL') or 'sqlite:///feedsync-dev.db'


class TestingConfig(Config):
    """Testing configuration."""

    TESTING = True
    DEBUG = True

    # Use in-memory SQLite for testing
    SQLALCHEMY_DATABASE_URI = 'sqlite:///:memory:'

    SCHEDULER_ENABLED = False
    RATELIMIT_ENABLED = False
    LOG_TO_FILE = False
    UPSTREAM_ACCESS_TOKEN = 'test-token'


class ProductionConfig(Config):
    """Production configuration."""

    # Ensure proper secret key is set
    SECRET_KEY = os.environ.get('SECRET_KEY')
    LOG_FORMAT = os.environ.get('LOG_FORMAT', 'json')
    LOG_TO_FILE = _env_bool('LOG_TO_FILE', 'true')


# Configuration dictionary
config_dict = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}

def get_config(config_name=None):
    """Get configuration class based on environment."""
    if not config_name:
        config_name = os.environ.get('FLASK_ENV', 'default')
    return config_dict.get(config_name, config_dict['default'])
