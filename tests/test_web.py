"""
Tests for the web apps — member, director (listener) and admin API.
"""

import pytest

from webtier.core.models.routing import RoutingRule
from webtier.core.models.tier import MemberTemplate
from webtier.core.models.traffic import Request
from webtier.core.runtime import build_runtime
from webtier.ui.web.director_app import create_director_app
from webtier.ui.web.member_app import create_member_app
from webtier.ui.web.server import create_admin_app


class TestMemberApp:
    def test_hello_world(self):
        client = create_member_app(member_id="m-1").test_client()
        resp = client.get("/")
        assert resp.status_code == 200
        assert resp.get_data(as_text=True) == "Hello, World"
        assert resp.mimetype == "text/plain"
        assert resp.headers["X-Member-Id"] == "m-1"

    def test_any_path(self):
        client = create_member_app().test_client()
        assert client.get("/some/where").get_data(as_text=True) == "Hello, World"

    def test_custom_body(self):
        app = create_member_app(MemberTemplate(body="howdy"))
        assert app.test_client().get("/").get_data(as_text=True) == "howdy"

    def test_head(self):
        resp = create_member_app().test_client().head("/")
        assert resp.status_code == 200

    def test_post_not_allowed(self):
        assert create_member_app().test_client().post("/").status_code == 405


class TestDirectorApp:
    @pytest.fixture
    def client(self, mock_runtime):
        return create_director_app(mock_runtime.director).test_client()

    def test_no_healthy_members(self, client):
        resp = client.get("/")
        assert resp.status_code == 503
        assert resp.get_data(as_text=True) == "503: service unavailable"

    def test_routes_to_pool(self, client, mock_runtime, settle):
        settle(mock_runtime)
        resp = client.get("/")
        assert resp.status_code == 200
        assert resp.get_data(as_text=True) == "Hello, World"
        assert resp.mimetype == "text/plain"

    def test_anything_forwarded(self, client, mock_runtime, settle):
        settle(mock_runtime)
        resp = client.get("/anything?x=1")
        assert resp.status_code == 200
        _, forwarded = mock_runtime.forwarder.forwarded[-1]
        assert forwarded.path == "/anything"
        assert forwarded.query == "x=1"

    def test_method_and_body_forwarded(self, client, mock_runtime, settle):
        settle(mock_runtime)
        client.post("/form", data=b"a=1", content_type="application/x-www-form-urlencoded")
        _, forwarded = mock_runtime.forwarder.forwarded[-1]
        assert forwarded.method == "POST"
        assert forwarded.body == b"a=1"

    def test_unmatched_path_404(self, tier_config, clock):
        config = tier_config.model_copy(update={
            "rules": [RoutingRule(priority=1, path_patterns=["/app/*"])],
        })
        runtime = build_runtime(config, mock=True, clock=clock)
        try:
            client = create_director_app(runtime.director).test_client()
            resp = client.get("/elsewhere")
            assert resp.status_code == 404
            assert resp.get_data(as_text=True) == "404: page not found"
        finally:
            runtime.health_gate.close()


class TestAdminApi:
    @pytest.fixture
    def client(self, mock_runtime):
        return create_admin_app(mock_runtime).test_client()

    def test_status(self, client, mock_runtime, settle):
        settle(mock_runtime)
        data = client.get("/api/status").get_json()
        assert data["tier"] == "terraform-asg-example"
        assert data["size"] == 2
        assert data["healthy"] == 2
        assert (data["min_size"], data["max_size"]) == (2, 10)
        assert len(data["members"]) == 2
        assert data["loop"]["running"] is False

    def test_health_before_start(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "unknown"

    def test_health_all_down(self, client, mock_runtime, settle):
        settle(mock_runtime)
        for member in mock_runtime.snapshot().members:
            mock_runtime.prober.set_outcome(member.id, False)
        mock_runtime.provisioner.set_available(False)
        for _ in range(2):
            mock_runtime.clock.advance(15)
            mock_runtime.loop.tick()
        resp = client.get("/api/health")
        assert resp.status_code == 503
        assert resp.get_json()["status"] == "unhealthy"

    def test_metrics_text(self, client, mock_runtime, settle):
        settle(mock_runtime)
        mock_runtime.director.route(Request())
        resp = client.get("/api/metrics")
        assert resp.mimetype == "text/plain"
        text = resp.get_data(as_text=True)
        assert 'requests_total{status="200"} 1' in text
        assert "pool_size 2" in text

    def test_metrics_json(self, client, mock_runtime):
        mock_runtime.loop.tick()
        data = client.get("/api/metrics?format=json").get_json()
        assert {"counters", "gauges", "histograms"} <= set(data)

    def test_outputs(self, client):
        data = client.get("/api/outputs").get_json()
        assert data["alb_dns_name"] == "127.0.0.1"
        assert data["url"] == "http://127.0.0.1/"

    def test_activity(self, client, mock_runtime):
        mock_runtime.loop.tick()
        data = client.get("/api/activity?n=5").get_json()
        assert [a["kind"] for a in data["activities"]] == ["launch", "launch"]

    def test_activity_bad_n(self, client):
        assert client.get("/api/activity?n=lots").status_code == 400

    def test_set_capacity(self, client, mock_runtime):
        resp = client.post("/api/capacity", json={"desired": 5})
        assert resp.status_code == 200
        assert resp.get_json()["desired_capacity"] == 5
        mock_runtime.loop.tick()
        assert mock_runtime.snapshot().size == 5

    @pytest.mark.parametrize("body", [{"desired": 11}, {"desired": 1}, {"desired": "3"}, {}])
    def test_set_capacity_rejected(self, client, mock_runtime, body):
        assert client.post("/api/capacity", json=body).status_code == 400
        assert mock_runtime.capacity.desired == 2
