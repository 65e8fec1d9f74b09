"""
Tests for the Upstash REST transport.

Uses httpx.MockTransport so no network is needed.
"""

import json

import httpx
import pytest
import pytest_asyncio
from pydantic import SecretStr

from luascript import (
    LuaScriptSettings,
    ScriptLoadRegistry,
    TransportError,
    define_script,
    get_load_registry,
    is_no_script_error,
    lua,
    sha1_hex,
)
from luascript.integrations import HttpTransportConfig, UpstashRedis


class MockUpstash:
    """Records requests and answers a tiny subset of Upstash's REST API."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.scripts: dict[str, str] = {}

    @property
    def commands(self):
        return [json.loads(r.content) for r in self.requests]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        command = json.loads(request.content)
        name = command[0].upper()

        if name == "SCRIPT" and command[1].upper() == "LOAD":
            sha = sha1_hex(command[2])
            self.scripts[sha] = command[2]
            return httpx.Response(200, json={"result": sha})

        if name == "EVALSHA":
            if command[1] not in self.scripts:
                return httpx.Response(
                    400, json={"error": "NOSCRIPT No matching script. Please use EVAL."}
                )
            return httpx.Response(200, json={"result": self._echo(command)})

        if name == "EVAL":
            return httpx.Response(200, json={"result": self._echo(command)})

        return httpx.Response(400, json={"error": f"ERR unknown command '{command[0]}'"})

    @staticmethod
    def _echo(command):
        numkeys = int(command[2])
        rest = command[3:]
        return [rest[:numkeys], rest[numkeys:]]


@pytest.fixture
def upstash():
    return MockUpstash()


@pytest.fixture
def config():
    return HttpTransportConfig(base_url="https://test.upstash.io", token="secret-token")


@pytest_asyncio.fixture
async def client(upstash, config):
    redis = UpstashRedis(config, http_transport=httpx.MockTransport(upstash.handler))
    yield redis
    await redis.close()


# =============================================================================
# Configuration Tests
# =============================================================================


class TestHttpTransportConfig:
    """Tests for HttpTransportConfig."""

    def test_defaults(self):
        config = HttpTransportConfig(base_url="https://x.upstash.io")
        assert config.timeout == 10.0
        assert config.max_retries == 0
        assert config.log_requests is False

    def test_base_url_required(self):
        with pytest.raises(ValueError):
            HttpTransportConfig()

    def test_negative_retries_rejected(self):
        with pytest.raises(ValueError):
            HttpTransportConfig(base_url="https://x.upstash.io", max_retries=-1)


# =============================================================================
# Command Tests
# =============================================================================


class TestCommands:
    """Tests for the REST command encoding."""

    @pytest.mark.asyncio
    async def test_sends_json_array_with_bearer_token(self, client, upstash):
        await client.eval("return 1", ["k1", "k2"], ["a"])

        request = upstash.requests[0]
        assert request.method == "POST"
        assert request.headers["Authorization"] == "Bearer secret-token"
        assert upstash.commands[0] == ["EVAL", "return 1", "2", "k1", "k2", "a"]

    @pytest.mark.asyncio
    async def test_eval_returns_result(self, client):
        assert await client.eval("return 1", ["k"], ["a"]) == [["k"], ["a"]]

    @pytest.mark.asyncio
    async def test_script_load_returns_sha(self, client, upstash):
        sha = await client.script_load("return 1")

        assert sha == sha1_hex("return 1")
        assert upstash.commands[0] == ["SCRIPT", "LOAD", "return 1"]

    @pytest.mark.asyncio
    async def test_evalsha_encoding(self, client, upstash):
        sha = await client.script_load("return 1")
        await client.evalsha(sha, [], ["x"])

        assert upstash.commands[1] == ["EVALSHA", sha, "0", "x"]

    @pytest.mark.asyncio
    async def test_noscript_is_detectable(self, client):
        with pytest.raises(TransportError) as exc_info:
            await client.evalsha("0" * 40, [], [])

        assert exc_info.value.status_code == 400
        assert "NOSCRIPT" in str(exc_info.value)
        assert is_no_script_error(exc_info.value)

    @pytest.mark.asyncio
    async def test_error_in_success_body(self, config):
        def handler(request):
            return httpx.Response(200, json={"error": "ERR wrong number of arguments"})

        async with UpstashRedis(config, http_transport=httpx.MockTransport(handler)) as redis:
            with pytest.raises(TransportError, match="wrong number"):
                await redis.command("GET")

    @pytest.mark.asyncio
    async def test_auth_failure(self, config):
        def handler(request):
            return httpx.Response(401, json={"error": "Unauthorized"})

        async with UpstashRedis(config, http_transport=httpx.MockTransport(handler)) as redis:
            with pytest.raises(TransportError, match="Authentication failed") as exc_info:
                await redis.command("PING")

        assert exc_info.value.status_code == 401
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_invalid_json(self, config):
        def handler(request):
            return httpx.Response(200, text="<html>")

        async with UpstashRedis(config, http_transport=httpx.MockTransport(handler)) as redis:
            with pytest.raises(TransportError, match="Invalid JSON"):
                await redis.command("PING")


# =============================================================================
# Retry Tests
# =============================================================================


class TestRetry:
    """Tests for connection-level retries."""

    @pytest.mark.asyncio
    async def test_network_errors_not_retried_by_default(self, config):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("connection refused", request=request)

        async with UpstashRedis(config, http_transport=httpx.MockTransport(handler)) as redis:
            with pytest.raises(TransportError) as exc_info:
                await redis.command("PING")

        assert exc_info.value.retryable is True
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_network_errors_retried_when_enabled(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"result": "PONG"})

        config = HttpTransportConfig(
            base_url="https://test.upstash.io", max_retries=2, retry_delay=0.001
        )
        async with UpstashRedis(config, http_transport=httpx.MockTransport(handler)) as redis:
            assert await redis.command("PING") == "PONG"

        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_store_errors_never_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(400, json={"error": "NOSCRIPT No matching script"})

        config = HttpTransportConfig(
            base_url="https://test.upstash.io", max_retries=3, retry_delay=0.001
        )
        async with UpstashRedis(config, http_transport=httpx.MockTransport(handler)) as redis:
            with pytest.raises(TransportError):
                await redis.evalsha("0" * 40, [], [])

        assert len(calls) == 1


# =============================================================================
# Registry Tests
# =============================================================================


class TestLoadRegistry:
    """Tests for connection identity and cache lifetime."""

    def test_each_client_is_a_connection(self, config):
        a = UpstashRedis(config)
        b = UpstashRedis(config)
        assert a.connection_id != b.connection_id

    def test_defaults_to_global_registry(self, config):
        assert UpstashRedis(config).load_registry is get_load_registry()

    def test_own_registry(self, config):
        registry = ScriptLoadRegistry()
        assert UpstashRedis(config, registry=registry).load_registry is registry

    @pytest.mark.asyncio
    async def test_close_discards_load_cache(self, upstash, config):
        redis = UpstashRedis(config, http_transport=httpx.MockTransport(upstash.handler))
        script = define_script(name="ping", lua="return 1")

        await script.run(redis)
        assert get_load_registry().has(redis)

        await redis.close()
        assert not get_load_registry().has(redis)

    @pytest.mark.asyncio
    async def test_close_empties_own_registry(self, upstash, config):
        registry = ScriptLoadRegistry()
        redis = UpstashRedis(
            config, registry=registry, http_transport=httpx.MockTransport(upstash.handler)
        )
        script = define_script(name="ping", lua="return 1")

        await script.run(redis)
        assert len(registry) == 1
        assert not get_load_registry().has(redis)

        await redis.close()
        assert len(registry) == 0

    def test_from_settings(self):
        settings = LuaScriptSettings(
            upstash_url="https://db.upstash.io",
            upstash_token=SecretStr("tok"),
            timeout=3.0,
            log_requests=True,
        )

        redis = UpstashRedis.from_settings(settings)

        assert redis.config.base_url == "https://db.upstash.io"
        assert redis.config.token == "tok"
        assert redis.config.timeout == 3.0
        assert redis.config.log_requests is True
        assert redis.load_registry is get_load_registry()

    def test_from_settings_bounded_registry(self):
        settings = LuaScriptSettings(
            upstash_url="https://db.upstash.io",
            upstash_token=SecretStr("tok"),
            max_loaded_scripts=8,
        )

        redis = UpstashRedis.from_settings(settings)

        assert redis.load_registry is not get_load_registry()
        assert redis.load_registry.for_connection(redis).max_entries == 8


# =============================================================================
# End-to-end Tests
# =============================================================================


class TestScriptOverUpstash:
    """Scripts running against the mocked REST endpoint."""

    @pytest.mark.asyncio
    async def test_first_run_loads_then_uses_evalsha(self, client, upstash):
        script = define_script(
            name="set",
            keys={"key": str},
            args={"value": str},
            lua=lambda KEYS, ARGV: lua('return redis.call("SET", ', KEYS.key, ", ", ARGV.value, ")"),
        )

        first = await script.run(client, keys={"key": "k"}, args={"value": "v"})
        second = await script.run(client, keys={"key": "k"}, args={"value": "v"})

        assert first == second == [["k"], ["v"]]
        assert [c[0] for c in upstash.commands] == ["EVALSHA", "SCRIPT", "EVALSHA", "EVALSHA"]
        assert upstash.commands[1][2] == 'return redis.call("SET", KEYS[1], ARGV[1])'
