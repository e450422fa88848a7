"""
Web servers — Flask app factory for the admin API and server helpers.

A running tier has up to three kinds of HTTP servers: the director
(listener) on lb_port, one per member on server_port (started by the
provisioner), and the optional admin API.
"""

from __future__ import annotations

import logging
import threading

from flask import Flask
from werkzeug.serving import BaseWSGIServer, make_server

from webtier.core.runtime import Runtime

logger = logging.getLogger(__name__)


def create_admin_app(runtime: Runtime) -> Flask:
    """Create the admin API app for a running tier."""
    app = Flask("webtier.admin")
    app.config["RUNTIME"] = runtime

    from webtier.ui.web.routes_api import api_bp

    app.register_blueprint(api_bp, url_prefix="/api")

    logger.info("Admin app created (tier=%s)", runtime.config.name)
    return app


def serve_in_thread(app: Flask, host: str, port: int) -> BaseWSGIServer:
    """Start ``app`` on a daemon thread; stop it with ``server.shutdown()``."""
    server = make_server(host, port, app, threaded=True)
    thread = threading.Thread(target=server.serve_forever, name=f"http-{app.name}", daemon=True)
    thread.start()
    logger.info("Serving %s on %s:%d", app.name, host, port)
    return server
