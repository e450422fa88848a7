"""
API routes — REST endpoints of the admin app.

All endpoints return JSON except /api/metrics, which defaults to the
plain-text exposition. Grouped under /api/ prefix.
"""

from __future__ import annotations

import logging

from flask import Blueprint, Response, current_app, jsonify, request

from webtier.core.engine.roster import CapacityError
from webtier.core.observability.health import check_system_health
from webtier.core.runtime import Runtime
from webtier.core.use_cases.outputs import compute_outputs

logger = logging.getLogger(__name__)

api_bp = Blueprint("api", __name__)


def _runtime() -> Runtime:
    return current_app.config["RUNTIME"]


# ── Status ───────────────────────────────────────────────────────────


@api_bp.route("/status")
def api_status():  # type: ignore[no-untyped-def]
    """Pool overview: bounds, desired size and every member."""
    runtime = _runtime()
    state = runtime.pool_state()
    return jsonify({
        "tier": runtime.config.name,
        "version": state.version,
        "desired_capacity": state.desired_capacity,
        "min_size": state.min_size,
        "max_size": state.max_size,
        "size": state.size,
        "healthy": state.healthy_count,
        "members": [m.model_dump(mode="json") for m in state.members],
        "loop": {
            "running": runtime.loop.running,
            "ticks": runtime.loop.ticks,
            "errors": runtime.loop.errors,
        },
    })


@api_bp.route("/health")
def api_health():  # type: ignore[no-untyped-def]
    """Aggregate health; 503 when the tier cannot serve traffic."""
    runtime = _runtime()
    health = check_system_health(
        pool=runtime.pool_state(),
        cb_registry=runtime.circuit_breakers,
        retry_queue=runtime.retry_queue,
    )
    code = 503 if health.status == "unhealthy" else 200
    return jsonify(health.to_dict()), code


@api_bp.route("/metrics")
def api_metrics():  # type: ignore[no-untyped-def]
    runtime = _runtime()
    if request.args.get("format") == "json":
        return jsonify(runtime.metrics.to_dict())
    return Response(runtime.metrics.to_text(), mimetype="text/plain")


@api_bp.route("/outputs")
def api_outputs():  # type: ignore[no-untyped-def]
    return jsonify(compute_outputs(_runtime().config))


@api_bp.route("/activity")
def api_activity():  # type: ignore[no-untyped-def]
    """Most recent scaling activities, oldest first."""
    try:
        n = int(request.args.get("n", "20"))
    except ValueError:
        return jsonify({"error": "n must be an integer"}), 400
    entries = _runtime().activity.recent(max(1, n))
    return jsonify({"activities": [e.model_dump(mode="json") for e in entries]})


# ── Capacity ─────────────────────────────────────────────────────────


@api_bp.route("/capacity", methods=["POST"])
def api_set_capacity():  # type: ignore[no-untyped-def]
    """Set desired capacity. Body: {"desired": <int>}."""
    data = request.get_json(silent=True) or {}
    desired = data.get("desired")
    if not isinstance(desired, int) or isinstance(desired, bool):
        return jsonify({"error": "'desired' must be an integer"}), 400

    runtime = _runtime()
    try:
        runtime.capacity.set_desired(desired)
    except CapacityError as e:
        return jsonify({"error": str(e)}), 400

    logger.info("Desired capacity set to %d via API", desired)
    return jsonify({"desired_capacity": runtime.capacity.desired})
