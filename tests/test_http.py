from __future__ import annotations

import asyncio

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from kubepool.infra.http import BearerAuth, HttpClient, HttpError, OAuth2PasswordAuth

pytestmark = [pytest.mark.unit]

TOKEN_PATH = "/auth/realms/contabo/protocol/openid-connect/token"


def contabo_like_api() -> web.Application:
    """Instances API guarded by a password-grant token that expires once."""
    app = web.Application()
    state: dict = {"request_ids": [], "grants": [], "issued": 0, "expired": set()}
    app["state"] = state

    def authorized(request: web.Request) -> bool:
        header = request.headers.get("Authorization", "")
        token = header.removeprefix("Bearer ")
        return header.startswith("Bearer ") and token not in state["expired"]

    async def token(request: web.Request) -> web.Response:
        form = await request.post()
        state["grants"].append(form.get("grant_type"))
        if form.get("username") != "ops@example.com" or form.get("password") != "pw":
            return web.Response(status=401, text="invalid_grant")
        state["issued"] += 1
        return web.json_response({"access_token": f"token-{state['issued']}", "expires_in": 300})

    async def instances(request: web.Request) -> web.Response:
        state["request_ids"].append(request.headers.get("x-request-id"))
        if not authorized(request):
            return web.Response(status=401, text="unauthorized")
        return web.json_response({"data": [{"instanceId": 1001}], "_pagination": dict(request.query)})

    async def patch_instance(request: web.Request) -> web.Response:
        if not authorized(request):
            return web.Response(status=401, text="unauthorized")
        body = await request.json()
        return web.json_response({"data": [{"instanceId": 1001, **body}]})

    async def expire(_: web.Request) -> web.Response:
        state["expired"].add("token-1")
        return web.Response(status=204)

    async def missing(_: web.Request) -> web.Response:
        return web.json_response({"message": "Entry Instance not found"}, status=404)

    async def slow(_: web.Request) -> web.Response:
        await asyncio.sleep(1)
        return web.json_response({"data": []})

    app.router.add_post(TOKEN_PATH, token)
    app.router.add_get("/v1/compute/instances", instances)
    app.router.add_patch("/v1/compute/instances/1001", patch_instance)
    app.router.add_get("/v1/compute/instances/4242", missing)
    app.router.add_post("/test/expire", expire)
    app.router.add_get("/test/slow", slow)
    return app


@pytest.fixture
async def server():
    srv = TestServer(contabo_like_api())
    await srv.start_server()
    yield srv
    await srv.close()


@pytest.fixture
def api_url(server: TestServer) -> str:
    return f"http://{server.host}:{server.port}"


def password_auth(api_url: str, username: str = "ops@example.com") -> OAuth2PasswordAuth:
    return OAuth2PasswordAuth(f"{api_url}{TOKEN_PATH}", "kubepool", "s3cret", username, "pw")


# ─── Requests ────────────────────────────────────────────────────────


class TestRequests:
    @pytest.mark.asyncio
    async def test_query_params(self, api_url: str, server: TestServer):
        async with HttpClient(api_url, password_auth(api_url)) as http:
            result = await http.request("GET", "/v1/compute/instances", params={"page": 2, "size": 50})
        assert result["_pagination"] == {"page": "2", "size": "50"}

    @pytest.mark.asyncio
    async def test_json_body(self, api_url: str):
        async with HttpClient(api_url, password_auth(api_url)) as http:
            result = await http.request(
                "PATCH", "/v1/compute/instances/1001", json={"displayName": "kp1 cluster=c1"},
            )
        assert result["data"][0]["displayName"] == "kp1 cluster=c1"

    @pytest.mark.asyncio
    async def test_request_ids_are_unique(self, api_url: str, server: TestServer):
        async with HttpClient(api_url, password_auth(api_url)) as http:
            await http.request("GET", "/v1/compute/instances")
            await http.request("GET", "/v1/compute/instances")
        first, second = server.app["state"]["request_ids"]
        assert first and second and first != second

    @pytest.mark.asyncio
    async def test_no_content(self, api_url: str):
        async with HttpClient(api_url) as http:
            assert await http.request("POST", "/test/expire") is None


# ─── Errors ──────────────────────────────────────────────────────────


class TestErrors:
    @pytest.mark.asyncio
    async def test_status_and_body(self, api_url: str):
        async with HttpClient(api_url, BearerAuth("unused")) as http:
            with pytest.raises(HttpError) as exc_info:
                await http.request("GET", "/v1/compute/instances/4242")
        assert exc_info.value.status == 404
        assert "Entry Instance not found" in exc_info.value.body

    @pytest.mark.asyncio
    async def test_unreachable_server(self):
        async with HttpClient("http://127.0.0.1:1") as http:
            with pytest.raises(HttpError) as exc_info:
                await http.request("GET", "/v1/compute/instances")
        assert exc_info.value.status == 0

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self, api_url: str):
        async with HttpClient(api_url, timeout=0.1) as http:
            with pytest.raises(HttpError) as exc_info:
                await http.request("GET", "/test/slow")
        assert exc_info.value.status == 0
        assert "timed out" in exc_info.value.body

    @pytest.mark.asyncio
    async def test_static_token_rejected_once(self, api_url: str, server: TestServer):
        server.app["state"]["expired"].add("stale")
        async with HttpClient(api_url, BearerAuth("stale")) as http:
            with pytest.raises(HttpError) as exc_info:
                await http.request("GET", "/v1/compute/instances")
        assert exc_info.value.status == 401
        assert len(server.app["state"]["request_ids"]) == 2

    def test_str(self):
        assert str(HttpError(status=423, body="instance is locked")) == "HTTP 423: instance is locked"


# ─── OAuth2 password grant ───────────────────────────────────────────


class TestPasswordGrant:
    @pytest.mark.asyncio
    async def test_token_cached(self, api_url: str, server: TestServer):
        auth = password_auth(api_url)
        assert await auth.headers() == {"Authorization": "Bearer token-1"}
        await auth.headers()
        assert server.app["state"]["grants"] == ["password"]

    @pytest.mark.asyncio
    async def test_expired_token_renewed_and_replayed(self, api_url: str, server: TestServer):
        async with HttpClient(api_url, password_auth(api_url)) as http:
            await http.request("GET", "/v1/compute/instances")
            await http.request("POST", "/test/expire")
            result = await http.request("GET", "/v1/compute/instances")
        assert result["data"] == [{"instanceId": 1001}]
        assert server.app["state"]["grants"] == ["password", "password"]

    @pytest.mark.asyncio
    async def test_bad_credentials(self, api_url: str):
        with pytest.raises(HttpError) as exc_info:
            await password_auth(api_url, username="intruder").headers()
        assert exc_info.value.status == 401
        assert exc_info.value.body == "invalid_grant"
