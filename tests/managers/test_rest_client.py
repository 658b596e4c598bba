from unittest.mock import MagicMock, patch

import pytest
import requests

from errors import PollTimeoutError, ProviderError, ResourceNotFoundError, TaskError
from managers.rest_client import SESSION_HEADER, RestClient


def response(status=200, body=None, text=""):
    resp = MagicMock(status_code=status, text=text)
    resp.content = b"" if body is None else b"{}"
    if body is None:
        resp.json.side_effect = ValueError("no body")
    else:
        resp.json.return_value = body
    return resp


@pytest.fixture
def rest():
    client = RestClient("vc.example.com", "admin", "secret", verify_ssl=False)
    client.session = MagicMock()
    client.session.headers = {}
    return client


class TestRestClient:

    def test_base_url_includes_non_default_port(self):
        assert RestClient("vc", "u", "p").base_url == "https://vc"
        assert RestClient("vc", "u", "p", port=8443).base_url == "https://vc:8443"

    def test_login_stores_session_token(self, rest):
        rest.session.post.return_value = response(201, "token-1")
        with patch("managers.rest_client.atexit") as atexit:
            assert rest.login() == "token-1"
        assert rest.session.headers[SESSION_HEADER] == "token-1"
        atexit.register.assert_called_once_with(rest.logout)
        assert rest.session.post.call_args[1]["auth"] == ("admin", "secret")

    def test_login_failure(self, rest):
        rest.session.post.return_value = response(401, {"error_type": "UNAUTHENTICATED"})
        with pytest.raises(ProviderError, match=r"REST login failed \(401\): UNAUTHENTICATED"):
            rest.login()

    def test_logout_clears_session(self, rest):
        rest.session_id = "token-1"
        rest.session.headers[SESSION_HEADER] = "token-1"
        rest.logout()
        rest.session.delete.assert_called_once()
        assert rest.session_id is None
        assert SESSION_HEADER not in rest.session.headers

    def test_request_decodes_json(self, rest):
        rest.session.request.return_value = response(200, {"zone": "zone-a"})
        assert rest.get("/api/vcenter/consumption-domains/zones/zone-a") == {"zone": "zone-a"}
        method, url = rest.session.request.call_args[0]
        assert method == "GET"
        assert url == "https://vc.example.com/api/vcenter/consumption-domains/zones/zone-a"
        assert rest.session.request.call_args[1]["verify"] is False

    def test_empty_body_is_none(self, rest):
        rest.session.request.return_value = response(204)
        assert rest.delete("/api/vcenter/namespaces/instances/ns1") is None

    def test_not_found(self, rest):
        rest.session.request.return_value = response(404, {"messages": [{"default_message": "No such zone"}]})
        with pytest.raises(ResourceNotFoundError, match="No such zone"):
            rest.get("/api/vcenter/consumption-domains/zones/missing")

    def test_server_error_message(self, rest):
        rest.session.request.return_value = response(400, None, text="bad request")
        with pytest.raises(ProviderError, match=r"POST /api/x failed \(400\): bad request"):
            rest.post("/api/x", json={})

    def test_transport_error(self, rest):
        rest.session.request.side_effect = requests.ConnectionError("refused")
        with pytest.raises(ProviderError, match="refused"):
            rest.get("/api/x")


class TestWaitForTask:

    def test_returns_result(self, rest, clock):
        rest.session.request.side_effect = [
            response(200, {"status": "RUNNING"}),
            response(200, {"status": "SUCCEEDED", "result": "done"}),
        ]
        assert rest.wait_for_task("task-1", interval=5, timeout=60, sleep=clock.sleep, clock=clock) == "done"
        assert clock.sleeps == [5]

    def test_failure_messages(self, rest, clock):
        rest.session.request.return_value = response(200, {
            "status": "FAILED", "error": {"messages": [{"default_message": "image apply failed"}]},
        })
        with pytest.raises(TaskError, match="task task-1 failed: image apply failed"):
            rest.wait_for_task("task-1", sleep=clock.sleep, clock=clock)

    def test_timeout(self, rest, clock):
        rest.session.request.return_value = response(200, {"status": "RUNNING"})
        with pytest.raises(PollTimeoutError):
            rest.wait_for_task("task-1", interval=10, timeout=25, sleep=clock.sleep, clock=clock)
        assert clock.sleeps == [10, 10]
