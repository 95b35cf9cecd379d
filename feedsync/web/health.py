import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy.sql import text

from feedsync.extensions import db, scheduler
from feedsync.services.container import container

health_bp = Blueprint('health', __name__, url_prefix='/health')
log = logging.getLogger(__name__)

@health_bp.route("/liveness")
def liveness_check():
    """Simple liveness check to verify the application is responding."""
    return jsonify({
        "status": "ok",
        "version": current_app.config.get("VERSION", "1.0.0"),
        "timestamp": time.time()
    })

@health_bp.route("/readiness")
def readiness_check():
    """Verify the database and scheduler are usable and report queue health."""
    checks = {
        "database": check_database(),
        "scheduler": check_scheduler(),
        "change_queue": check_change_queue()
    }

    overall_status = all(c["healthy"] for c in checks.values())

    return jsonify({
        "status": "ok" if overall_status else "error",
        "timestamp": time.time(),
        "checks": checks
    }), 200 if overall_status else 503

def check_database():
    """Check database connectivity."""
    try:
        db.session.execute(text("SELECT 1"))
        return {
            "healthy": True,
            "message": "Database connection successful"
        }
    except Exception as e:
        log.error(f"Database health check failed: {str(e)}")
        return {
            "healthy": False,
            "message": str(e)
        }

def check_scheduler():
    """Check if the scheduler is running, when it is meant to be."""
    if not current_app.config.get("SCHEDULER_ENABLED") or current_app.config.get("TESTING"):
        return {
            "healthy": True,
            "message": "Scheduler disabled"
        }

    is_running = scheduler.running
    return {
        "healthy": is_running,
        "message": "Scheduler is running" if is_running else "Scheduler is not running"
    }

def check_change_queue():
    """Report queue depth; dead letters are surfaced but do not fail readiness."""
    try:
        stats = container().get("change_queue").stats()
        return {
            "healthy": True,
            "message": f"{stats['pending']} pending, {stats['dead']} dead",
            "stats": stats
        }
    except Exception as e:
        log.error(f"Change queue health check failed: {str(e)}")
        return {
            "healthy": False,
            "message": str(e)
        }
