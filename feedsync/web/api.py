import logging

from flask import Blueprint, jsonify, request, current_app

from feedsync.domain.sync_run import SyncMode
from feedsync.domain.upstream import ZONE_READ, ZONE_WRITE
from feedsync.errors import ResourceNotFoundError, ValidationError
from feedsync.extensions import limiter
from feedsync.services.container import container

api_bp = Blueprint("api", __name__, url_prefix="/api")
log = logging.getLogger(__name__)

def _sync_rate_limit():
    return current_app.config.get("API_RATE_LIMIT", "10 per minute")

def _int_arg(name, default, maximum=None):
    value = request.args.get(name)
    if value is None:
        return default
    try:
        parsed = int(value)
    except ValueError:
        raise ValidationError(f"'{name}' must be an integer") from None
    if parsed < 0:
        raise ValidationError(f"'{name}' must not be negative")
    return min(parsed, maximum) if maximum else parsed

@api_bp.route("/sync", methods=["POST"])
@limiter.limit(_sync_rate_limit)
def trigger_sync():
    """Start a sync, or join the one already running."""
    payload = request.get_json(silent=True) or {}
    try:
        mode = SyncMode.parse(payload.get("mode"))
    except ValueError as e:
        raise ValidationError(str(e), details={"allowed": [m.value for m in SyncMode]}) from e

    orchestrator = container().get("sync_orchestrator")
    sync_id = orchestrator.trigger_sync(mode, trigger="manual")
    run = orchestrator.get_sync_status(sync_id)

    return jsonify({
        "sync_id": sync_id,
        "status": run.to_dict() if run else None
    }), 202

@api_bp.route("/sync/status/<sync_id>", methods=["GET"])
def get_sync_status(sync_id):
    """Poll the progress of a sync run."""
    run = container().get("sync_orchestrator").get_sync_status(sync_id)
    if run is None:
        raise ResourceNotFoundError(f"Sync {sync_id} not found or expired")
    return jsonify(run.to_dict())

@api_bp.route("/sync/<sync_id>/cancel", methods=["POST"])
def cancel_sync(sync_id):
    """Request cooperative cancellation of a run."""
    cancelled = container().get("sync_orchestrator").cancel(sync_id)
    return jsonify({"sync_id": sync_id, "cancelled": cancelled}), 202 if cancelled else 409

@api_bp.route("/items", methods=["GET"])
def list_items():
    items = container().get("item_service").list_items(
        feed_id=request.args.get("feed_id"),
        unread_only=request.args.get("unread_only", "false").lower() == "true",
        starred_only=request.args.get("starred_only", "false").lower() == "true",
        limit=_int_arg("limit", 100, maximum=500),
        offset=_int_arg("offset", 0)
    )
    return jsonify({"items": [item.to_dict() for item in items]})

@api_bp.route("/items/<item_id>", methods=["GET"])
def get_item(item_id):
    return jsonify(container().get("item_service").get_item(item_id).to_dict())

@api_bp.route("/items/<item_id>/actions", methods=["POST"])
def enqueue_local_change(item_id):
    """Apply read/unread/star/unstar locally and queue it for push."""
    payload = request.get_json(silent=True) or {}
    action = payload.get("action")
    if not action:
        raise ValidationError("'action' is required")

    item, entry = container().get("item_service").enqueue_local_change(
        item_id, action, sync_after=bool(payload.get("sync", False))
    )
    return jsonify({
        "item": item.to_dict(),
        "queued": entry.to_dict()
    }), 202

@api_bp.route("/queue", methods=["GET"])
def queue_stats():
    return jsonify(container().get("change_queue").stats())

@api_bp.route("/queue/dead", methods=["GET"])
def dead_letters():
    entries = container().get("change_queue").dead_letters(limit=_int_arg("limit", 100, maximum=1000))
    return jsonify({"entries": [entry.to_dict() for entry in entries]})

@api_bp.route("/queue/dead/requeue", methods=["POST"])
def requeue_dead():
    """Requeue some (``ids``) or all dead-lettered changes."""
    payload = request.get_json(silent=True) or {}
    ids = payload.get("ids")
    if ids is not None and (not isinstance(ids, list) or not all(isinstance(i, int) for i in ids)):
        raise ValidationError("'ids' must be a list of integers")

    count = container().get("change_queue").requeue_dead(ids)
    return jsonify({"requeued": count})

@api_bp.route("/rate-limit", methods=["GET"])
def rate_limit():
    rate_limiter = container().get("rate_limiter")
    return jsonify({
        ZONE_READ: rate_limiter.budget(ZONE_READ),
        ZONE_WRITE: rate_limiter.budget(ZONE_WRITE)
    })

@api_bp.route("/counters", methods=["GET"])
def read_counters():
    return jsonify({"feeds": container().get("item_service").read_counters()})
