"""
WSGI entry point for the application.

Used by Gunicorn in production: ``gunicorn -c gunicorn.conf.py wsgi:app``.
"""

import os
import logging
from feedsync import create_app

logger = logging.getLogger(__name__)

app = create_app()

if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8000))
    debug = os.environ.get("FLASK_ENV") == "development"

    logger.info(f"Starting feedsync on port {port}")
    app.run(host=os.environ.get("HOST", "0.0.0.0"), port=port, debug=debug)
