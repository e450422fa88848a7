"""
Local provisioner — members as in-process werkzeug servers.

Each launch starts the member app on its own loopback address
(127.0.1.1, 127.0.1.2, ...) so every member can listen on the same
``server_port``, as the reference servers do. Terminating a member
shuts its server down.

Loopback addresses beyond 127.0.0.1 are routable on Linux; on other
platforms pass ``hosts`` explicitly.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator

from werkzeug.serving import BaseWSGIServer, make_server

from webtier.adapters.base import ProvisionContext, Provisioner
from webtier.core.models.action import Receipt
from webtier.ui.web.member_app import create_member_app

logger = logging.getLogger(__name__)


def loopback_hosts() -> Iterator[str]:
    """127.0.1.1 … 127.0.255.254 in order."""
    for third in range(1, 256):
        for fourth in range(1, 255):
            yield f"127.0.{third}.{fourth}"


class LocalProvisioner(Provisioner):
    """Run members as threads of this process."""

    def __init__(self, hosts: Iterator[str] | None = None):
        self._hosts = hosts or loopback_hosts()
        self._servers: dict[str, tuple[BaseWSGIServer, threading.Thread]] = {}
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return "local"

    def is_available(self) -> bool:
        return True

    @property
    def running(self) -> list[str]:
        with self._lock:
            return list(self._servers)

    def execute(self, context: ProvisionContext) -> Receipt:
        if context.action.kind == "launch":
            return self._launch(context)
        return self._terminate(context)

    def _launch(self, context: ProvisionContext) -> Receipt:
        action = context.action
        with self._lock:
            host = next(self._hosts, None)
        if host is None:
            return Receipt.failure(
                provisioner=self.name,
                action_id=action.id,
                error="no loopback addresses left",
            )

        app = create_member_app(context.template, member_id=action.member_id)
        try:
            server = make_server(host, context.server_port, app, threaded=True)
        except OSError as e:
            return Receipt.failure(
                provisioner=self.name,
                action_id=action.id,
                error=f"cannot bind {host}:{context.server_port}: {e}",
            )

        thread = threading.Thread(
            target=server.serve_forever,
            name=f"member-{action.member_id}",
            daemon=True,
        )
        thread.start()
        with self._lock:
            self._servers[action.member_id] = (server, thread)

        logger.info("Member %s serving on %s:%d", action.member_id, host, context.server_port)
        return Receipt.success(
            provisioner=self.name,
            action_id=action.id,
            output=f"serving on {host}:{context.server_port}",
            host=host,
            port=context.server_port,
        )

    def _terminate(self, context: ProvisionContext) -> Receipt:
        action = context.action
        with self._lock:
            entry = self._servers.pop(action.member_id, None)
        if entry is None:
            return Receipt.skip(
                provisioner=self.name,
                action_id=action.id,
                reason=f"member {action.member_id} is not running here",
            )
        server, thread = entry
        server.shutdown()
        thread.join(timeout=5)
        return Receipt.success(
            provisioner=self.name,
            action_id=action.id,
            output=f"stopped {action.member_id}",
        )
