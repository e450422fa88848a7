"""
Director app — the listener, as a Flask catch-all.

Every request, whatever its method or path, is handed to the
TrafficDirector. Nothing else is mounted here: the only configured
rule matches ``*``, so any extra route would shadow pool traffic.
Admin endpoints live in the separate admin app.
"""

from __future__ import annotations

from flask import Flask, Response, request

from webtier.core.engine.director import TrafficDirector
from webtier.core.models.traffic import Request

_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def create_director_app(director: TrafficDirector) -> Flask:
    """Create the listener app in front of ``director``."""
    app = Flask("webtier.director")
    app.config["DIRECTOR"] = director

    @app.route("/", defaults={"path": ""}, methods=_METHODS)
    @app.route("/<path:path>", methods=_METHODS)
    def listen(path: str) -> Response:
        inbound = Request(
            path=request.path,
            method=request.method,
            query=request.query_string.decode("latin-1"),
            headers={k: v for k, v in request.headers.items()},
            body=request.get_data(),
        )
        routed = director.route(inbound)

        resp = Response(routed.body, status=routed.status_code, content_type=routed.content_type)
        for name, value in routed.headers.items():
            resp.headers[name] = value
        return resp

    return app
