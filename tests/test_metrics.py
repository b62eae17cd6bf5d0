import unittest
from unittest.mock import patch

from fastapi import Request
from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from blogstack import metrics
from blogstack.auth.deps import get_current_user
from blogstack.main import create_app
from blogstack.routers import posts as post_routes


def build_ctx():
    return {"user_id": "1", "username": "alice"}


def request_count(path, status="200"):
    value = REGISTRY.get_sample_value("http_requests_total", {"method": "GET", "path": path, "status": status})
    return value or 0.0


@unittest.skipUnless(metrics.METRICS_ENABLED, "metrics disabled")
class TestRequestMetrics(unittest.TestCase):
    def setUp(self):
        self.app = create_app()
        self.app.dependency_overrides[get_current_user] = build_ctx
        self.client = TestClient(self.app)

    def test_path_label_is_route_template(self):
        template = "/posts/{post_id}/like-status"
        before = request_count(template)
        with patch.object(post_routes.posts, "is_post_liked_by", return_value=False):
            for post_id in ("0", "1", "2"):
                self.assertEqual(self.client.get(f"/posts/{post_id}/like-status").status_code, 200)
        self.assertEqual(request_count(template) - before, 3)
        self.assertEqual(request_count("/posts/0/like-status"), 0.0)

    def test_unknown_paths_share_one_label(self):
        before = request_count(metrics.UNMATCHED_PATH, "404")
        self.client.get("/no/such/page/1")
        self.client.get("/no/such/page/2")
        self.assertEqual(request_count(metrics.UNMATCHED_PATH, "404") - before, 2)


class TestRoutePath(unittest.TestCase):
    def build_request(self, path, method="GET"):
        scope = {
            "type": "http",
            "method": method,
            "path": path,
            "root_path": "",
            "query_string": b"",
            "headers": [],
            "app": create_app(),
        }
        return Request(scope)

    def test_resolves_template_before_routing(self):
        self.assertEqual(metrics._route_path(self.build_request("/signed-url/uploads/1/a.png")), "/signed-url/{key:path}")
        self.assertEqual(metrics._route_path(self.build_request("/posts/9/comments/4", "DELETE")), "/posts/{post_id}/comments/{comment_id}")

    def test_unmatched_path(self):
        self.assertEqual(metrics._route_path(self.build_request("/nope")), metrics.UNMATCHED_PATH)


if __name__ == "__main__":
    unittest.main()
