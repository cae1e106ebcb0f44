"""Tests for the npm registry source and the async HTTP helper."""

import asyncio
import json

import pytest

aiohttp = pytest.importorskip("aiohttp")

from common.http_client import get_json
from errors import MalformedManifest, RegistryUnavailable, UnresolvableVersion
from registry.npm.client import NpmRegistrySource, packument_url

from npm_fixtures import manifest, packuments


class _FakeResponse:
    def __init__(self, status, body="", headers=None, error=None):
        self.status = status
        self.headers = headers or {"Content-Type": "application/json"}
        self._body = body
        self._error = error

    async def __aenter__(self):
        if self._error is not None:
            raise self._error
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def text(self):
        return self._body


class _FakeSession:
    """Stands in for aiohttp.ClientSession; records requested URLs."""

    def __init__(self, response):
        self.response = response
        self.requests = []

    def get(self, url, headers=None):
        self.requests.append((url, headers))
        return self.response


class TestPackumentUrl:
    """Registry URL construction."""

    def test_plain_name(self):
        """Unscoped names are appended to the registry URL."""
        assert packument_url("https://registry.npmjs.org", "lodash") == "https://registry.npmjs.org/lodash"

    def test_scoped_name_escapes_slash(self):
        """The slash of a scoped name is percent-encoded."""
        assert packument_url("https://registry.npmjs.org", "@babel/core") == "https://registry.npmjs.org/@babel%2Fcore"


class TestGetJson:
    """Status, body and transport error handling."""

    def test_parses_2xx_body(self):
        """Successful responses are decoded."""
        session = _FakeSession(_FakeResponse(200, '{"a": 1}'))
        status, headers, data = asyncio.run(get_json(session, "https://r.example/a", context="npm"))
        assert status == 200
        assert headers["Content-Type"] == "application/json"
        assert data == {"a": 1}

    def test_non_2xx_body_is_not_parsed(self):
        """Error responses return no data."""
        session = _FakeSession(_FakeResponse(404, "not json"))
        status, _, data = asyncio.run(get_json(session, "https://r.example/a", context="npm"))
        assert status == 404
        assert data is None

    def test_invalid_json(self):
        """An undecodable body is malformed."""
        session = _FakeSession(_FakeResponse(200, "<html>"))
        with pytest.raises(MalformedManifest):
            asyncio.run(get_json(session, "https://r.example/a", context="npm"))

    def test_timeout(self):
        """A request timeout means the registry is unavailable."""
        session = _FakeSession(_FakeResponse(200, error=asyncio.TimeoutError()))
        with pytest.raises(RegistryUnavailable):
            asyncio.run(get_json(session, "https://r.example/a", context="npm"))

    def test_connection_error(self):
        """A refused connection means the registry is unavailable."""
        session = _FakeSession(_FakeResponse(200, error=aiohttp.ClientConnectionError("refused")))
        with pytest.raises(RegistryUnavailable):
            asyncio.run(get_json(session, "https://r.example/a", context="npm"))


class TestNpmRegistrySource:
    """Packument retrieval with a stubbed session."""

    def test_fetches_and_validates(self):
        """A packument is fetched from the escaped URL and validated."""
        doc = packuments(manifest("lodash", "4.17.21"))["lodash"]
        session = _FakeSession(_FakeResponse(200, json.dumps(doc)))
        source = NpmRegistrySource("https://registry.example/", session=session)
        packument = asyncio.run(source.fetch_packument("lodash"))
        assert list(packument["versions"]) == ["4.17.21"]
        url, headers = session.requests[0]
        assert url == "https://registry.example/lodash"
        assert headers["Accept"] == "application/json"
        assert source.identity == "npm:https://registry.example"

    def test_not_found(self):
        """A 404 means the package does not exist."""
        source = NpmRegistrySource(session=_FakeSession(_FakeResponse(404)))
        with pytest.raises(UnresolvableVersion):
            asyncio.run(source.fetch_packument("ghost"))

    def test_server_error(self):
        """A 5xx means the registry is unavailable."""
        source = NpmRegistrySource(session=_FakeSession(_FakeResponse(503)))
        with pytest.raises(RegistryUnavailable):
            asyncio.run(source.fetch_packument("lodash"))

    def test_invalid_packument(self):
        """A packument without versions is malformed."""
        source = NpmRegistrySource(session=_FakeSession(_FakeResponse(200, '{"name": "x"}')))
        with pytest.raises(MalformedManifest):
            asyncio.run(source.fetch_packument("x"))

    def test_close_keeps_injected_session(self):
        """An injected session is left for its owner to close."""
        session = _FakeSession(_FakeResponse(200))
        source = NpmRegistrySource(session=session)
        asyncio.run(source.close())
        assert source._session is session

    def test_context_manager_closes_owned_session(self, monkeypatch):
        """Leaving the async context closes the session the source opened itself."""

        class _ClosingSession(_FakeSession):
            closed = False

            async def close(self):
                self.closed = True

        session = _ClosingSession(_FakeResponse(200))
        monkeypatch.setattr("registry.npm.client.create_session", lambda timeout, limit: session)

        async def go():
            async with NpmRegistrySource() as source:
                assert source._session is session
            return source

        source = asyncio.run(go())
        assert session.closed
        assert source._session is None
