"""
Member app — the startup procedure every pool member runs.

Serves the launch template's fixed body on every GET, which is all
the reference web servers do ("Hello, World" as plain text).
"""

from __future__ import annotations

from flask import Flask, Response

from webtier.core.models.tier import MemberTemplate


def create_member_app(template: MemberTemplate | None = None, member_id: str = "") -> Flask:
    """Create the Flask app one member serves.

    Args:
        template: Launch template (body and content type).
        member_id: Reported in the X-Member-Id response header.
    """
    template = template or MemberTemplate()
    app = Flask(f"webtier.member.{member_id or 'anonymous'}")
    app.config["MEMBER_ID"] = member_id

    @app.route("/", defaults={"path": ""}, methods=["GET", "HEAD"])
    @app.route("/<path:path>", methods=["GET", "HEAD"])
    def serve(path: str) -> Response:
        resp = Response(template.body, status=200, mimetype=template.content_type)
        if member_id:
            resp.headers["X-Member-Id"] = member_id
        return resp

    return app
