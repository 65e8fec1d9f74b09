"""
Pytest configuration and fixtures for luascript tests.
"""

import asyncio
import sys
from pathlib import Path

import pytest

# Add the repository root to path for imports
# This allows `from luascript import ...` to work without installing
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from luascript.cache import reset_load_registry  # noqa: E402
from luascript.errors import TransportError  # noqa: E402
from luascript.hashing import sha1_hex  # noqa: E402


class FakeRedis:
    """
    In-memory stand-in for a Redis script cache.

    It does not run lua; replies come from ``reply(keys, args)`` or echo
    the positional keys/args back as ``[keys, args]``.
    """

    def __init__(self, reply=None):
        self.scripts: dict[str, str] = {}
        self.reply = reply
        self.evalsha_calls: list[tuple[str, list[str], list[str]]] = []
        self.eval_calls: list[tuple[str, list[str], list[str]]] = []
        self.load_calls: list[str] = []
        self.fail_loads = 0
        self.load_gate: asyncio.Event | None = None

    async def evalsha(self, sha, keys, args):
        self.evalsha_calls.append((sha, list(keys), list(args)))
        if sha not in self.scripts:
            raise TransportError(
                "NOSCRIPT No matching script. Please use EVAL.", status_code=400
            )
        return self._reply(keys, args)

    async def eval(self, script, keys, args):
        self.eval_calls.append((script, list(keys), list(args)))
        return self._reply(keys, args)

    async def script_load(self, script):
        self.load_calls.append(script)
        if self.load_gate is not None:
            await self.load_gate.wait()
        if self.fail_loads:
            self.fail_loads -= 1
            raise TransportError("ERR script load failed")
        sha = sha1_hex(script)
        self.scripts[sha] = script
        return sha

    def flush(self):
        """Emulate SCRIPT FLUSH."""
        self.scripts.clear()

    def _reply(self, keys, args):
        if self.reply is not None:
            return self.reply(list(keys), list(args))
        return [list(keys), list(args)]


@pytest.fixture(autouse=True)
def _reset_registry():
    """Give every test a fresh global load registry."""
    reset_load_registry()
    yield
    reset_load_registry()


@pytest.fixture
def fake_redis():
    """A fresh FakeRedis connection."""
    return FakeRedis()


@pytest.fixture
def script_source():
    """A small lua script using one key and one arg."""
    return 'return redis.call("SET", KEYS[1], ARGV[1])'


@pytest.fixture
def make_redis():
    """Factory for extra FakeRedis connections (e.g. with a custom reply)."""
    return FakeRedis
