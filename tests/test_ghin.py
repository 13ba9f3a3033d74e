"""Tests for the GHIN client: token, retry controller and provider variants."""

from __future__ import annotations

import asyncio
import json
import re
import threading
from typing import Any, Dict, List, Optional

import httpx
import pytest
import pytest_asyncio
from pytest_httpx import HTTPXMock
from tenacity import RetryError

import ghin
from errors import (
    AuthenticationError,
    BadRequestError,
    EmptyResultError,
    LoginError,
    RetryExhaustedError,
    UnknownStatusError,
)
from models import CourseQuery, CourseSearchQuery, Pagination, SearchQuery, TeeQuery

BASE = "https://ghin.test/api/v1"
ATTESTATION_URL = "https://attest.test/v1/installations/abc/authTokens:generate"

LOGIN_URL = f"{BASE}/users/login.json"
SEARCH_URL = re.compile(re.escape(f"{BASE}/golfers/search.json") + r"(\?.*)?$")


def _golfer(club_id: int) -> Dict[str, Any]:
    return {
        "ghin": "123",
        "first_name": "Jane",
        "last_name": "Smith",
        "handicap_index": "8.1",
        "club_id": club_id,
        "club_name": f"Club {club_id}",
        "state": "MN",
        "country": "USA",
    }


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def provider():
    p = ghin.GhinProvider(BASE, "starter@example.com", "secret")
    yield p
    await p.aclose()


@pytest_asyncio.fixture
async def mobile_provider():
    p = ghin.GhinMobileProvider(
        BASE,
        "1234567",
        "golfer-secret",
        attestation_url=ATTESTATION_URL,
        attestation_api_key="api-key",
        attestation_auth="install-auth",
    )
    yield p
    await p.aclose()


class ScriptedProvider(ghin.GhinProvider):
    """Provider whose upstream answers come from a fixed script."""

    def __init__(self, responses: List[Any]):
        super().__init__(BASE, "starter@example.com", "secret")
        self.responses = list(responses)
        self.sent_tokens: List[Optional[str]] = []
        self.logins = 0

    async def send(self, method, path, token=None, params=None, json=None):
        self.sent_tokens.append(token)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    async def login(self) -> str:
        self.logins += 1
        token = f"token-{self.logins}"
        self.token.set(token)
        return token


def _ok(payload: Any) -> httpx.Response:
    return httpx.Response(200, json=payload)


# ---------------------------------------------------------------------------
# Token
# ---------------------------------------------------------------------------


class TestToken:
    def test_empty_at_start(self):
        assert ghin.Token().get() == ""

    def test_set_replaces(self):
        token = ghin.Token("old")
        token.set("new")
        assert token.get() == "new"

    def test_concurrent_readers_see_whole_values(self):
        token = ghin.Token("a" * 64)
        values = {"a" * 64, "b" * 64}
        seen = set()

        def writer():
            for i in range(2000):
                token.set("b" * 64 if i % 2 else "a" * 64)

        def reader():
            for _ in range(2000):
                seen.add(token.get())

        threads = [threading.Thread(target=writer)] + [threading.Thread(target=reader) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert seen <= values


# ---------------------------------------------------------------------------
# Retry controller
# ---------------------------------------------------------------------------


class TestReauthRetrying:
    @pytest.mark.asyncio
    async def test_stops_after_two_attempts(self):
        calls = 0

        async def always_unauthorized():
            nonlocal calls
            calls += 1
            raise AuthenticationError()

        with pytest.raises(RetryError):
            await ghin.reauth_retrying()(always_unauthorized)
        assert calls == ghin.MAX_ATTEMPTS == 2

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self):
        calls = 0

        async def bad_request():
            nonlocal calls
            calls += 1
            raise BadRequestError("search_player")

        with pytest.raises(BadRequestError):
            await ghin.reauth_retrying()(bad_request)
        assert calls == 1


class TestAuthenticatedCall:
    @pytest.mark.asyncio
    async def test_success_first_time(self):
        p = ScriptedProvider([_ok({"golfers": [_golfer(1)]})])
        players = await p.search_player(SearchQuery(golfer_id="123"), Pagination())
        assert len(players) == 1
        assert p.logins == 0

    @pytest.mark.asyncio
    async def test_one_unauthorized_then_success(self):
        p = ScriptedProvider([
            httpx.Response(401),
            _ok({"golfers": [_golfer(1), _golfer(2)]}),
        ])
        players = await p.search_player(SearchQuery(golfer_id="123"), Pagination())
        assert p.logins == 1
        assert p.sent_tokens == ["", "token-1"]
        assert len(players) == 1
        assert len(players[0].clubs) == 2

    @pytest.mark.asyncio
    async def test_two_unauthorized_exhausts_retries(self):
        p = ScriptedProvider([httpx.Response(401), httpx.Response(401), _ok({"golfers": []})])
        with pytest.raises(RetryExhaustedError, match="Too many unsuccessful attempts to search_player"):
            await p.search_player(SearchQuery(last_name="Smith"), Pagination())
        assert p.logins == 2
        assert len(p.sent_tokens) == 2
        # the third response was never requested
        assert len(p.responses) == 1

    @pytest.mark.asyncio
    async def test_bad_request_not_retried(self):
        p = ScriptedProvider([httpx.Response(400, text="golfer_id is invalid")])
        with pytest.raises(BadRequestError) as exc_info:
            await p.get_course(CourseQuery(course_id="12"))
        assert exc_info.value.status_code == 400
        assert exc_info.value.body == "golfer_id is invalid"
        assert "bad request for get_course" in str(exc_info.value)
        assert p.logins == 0

    @pytest.mark.asyncio
    async def test_unknown_status_not_retried(self):
        p = ScriptedProvider([httpx.Response(503)])
        with pytest.raises(UnknownStatusError) as exc_info:
            await p.get_tees(TeeQuery(course_id="12"))
        assert exc_info.value.status_code == 503
        assert "Unknown get_tees error" in str(exc_info.value)
        assert p.logins == 0

    @pytest.mark.asyncio
    async def test_transport_error_propagates(self):
        p = ScriptedProvider([httpx.ConnectError("connection refused")])
        with pytest.raises(httpx.ConnectError):
            await p.get_course(CourseQuery(course_id="12"))
        assert p.logins == 0

    @pytest.mark.asyncio
    async def test_invalid_json_propagates(self):
        p = ScriptedProvider([httpx.Response(200, content=b"<html>")])
        with pytest.raises(ValueError):
            await p.get_course(CourseQuery(course_id="12"))
        assert p.logins == 0

    @pytest.mark.asyncio
    async def test_empty_rollup_not_retried(self):
        p = ScriptedProvider([_ok({"golfers": []})])
        with pytest.raises(EmptyResultError):
            await p.get_handicap("123")
        assert p.logins == 0

    @pytest.mark.asyncio
    async def test_login_failure_aborts_call(self):
        class FailingLogin(ScriptedProvider):
            async def login(self) -> str:
                self.logins += 1
                raise LoginError("ghin login failed with status 500")

        p = FailingLogin([httpx.Response(401), _ok({"golfers": []})])
        with pytest.raises(LoginError):
            await p.search_player(SearchQuery(last_name="Smith"), Pagination())
        assert p.logins == 1
        assert len(p.sent_tokens) == 1

    @pytest.mark.asyncio
    async def test_concurrent_unauthorized_calls_each_log_in(self):
        class Concurrent(ghin.GhinProvider):
            def __init__(self):
                super().__init__(BASE, "starter@example.com", "secret")
                self.logins = 0
                self.stale = 0
                self.both_rejected = asyncio.Event()

            async def send(self, method, path, token=None, params=None, json=None):
                if token != "fresh":
                    self.stale += 1
                    if self.stale == 2:
                        self.both_rejected.set()
                    await self.both_rejected.wait()
                    return httpx.Response(401)
                return _ok({"golfers": [_golfer(1)]})

            async def login(self) -> str:
                self.logins += 1
                self.token.set("fresh")
                return "fresh"

        p = Concurrent()
        results = await asyncio.gather(
            p.get_handicap("123"),
            p.search_player(SearchQuery(last_name="Smith"), Pagination()),
        )
        assert p.logins == 2
        assert results[0].id == "123"
        assert len(results[1]) == 1


# ---------------------------------------------------------------------------
# GhinProvider over HTTP
# ---------------------------------------------------------------------------


class TestGhinLogin:
    @pytest.mark.asyncio
    async def test_login_stores_token(self, provider, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="POST", url=LOGIN_URL, json={"token": "abc"})
        assert await provider.login() == "abc"
        assert provider.token.get() == "abc"

        request = httpx_mock.get_requests()[0]
        assert json.loads(request.content) == {
            "user": {"email": "starter@example.com", "password": "secret", "remember_me": True}
        }
        assert "Authorization" not in request.headers

    @pytest.mark.asyncio
    async def test_login_rejected(self, provider, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="POST", url=LOGIN_URL, status_code=401)
        with pytest.raises(LoginError):
            await provider.login()
        assert provider.token.get() == ""

    @pytest.mark.asyncio
    async def test_login_without_token(self, provider, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="POST", url=LOGIN_URL, json={"user": {}})
        with pytest.raises(LoginError, match="did not include a token"):
            await provider.login()


class TestGhinOperations:
    @pytest.mark.asyncio
    async def test_refresh_and_retry_over_http(self, provider, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="GET", url=SEARCH_URL, status_code=401)
        httpx_mock.add_response(method="POST", url=LOGIN_URL, json={"token": "fresh-token"})
        httpx_mock.add_response(
            method="GET",
            url=SEARCH_URL,
            json={"golfers": [_golfer(1), _golfer(2), _golfer(3)]},
        )

        players = await provider.search_player(SearchQuery(golfer_id="123"), Pagination())

        assert len(players) == 1
        assert len(players[0].clubs) == 3
        searches = httpx_mock.get_requests(method="GET")
        assert "Authorization" not in searches[0].headers
        assert searches[1].headers["Authorization"] == "Bearer fresh-token"

    @pytest.mark.asyncio
    async def test_two_unauthorized_over_http(self, provider, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="GET", url=SEARCH_URL, status_code=401)
        httpx_mock.add_response(method="POST", url=LOGIN_URL, json={"token": "t1"})
        httpx_mock.add_response(method="GET", url=SEARCH_URL, status_code=401)
        httpx_mock.add_response(method="POST", url=LOGIN_URL, json={"token": "t2"})

        with pytest.raises(RetryExhaustedError):
            await provider.search_player(SearchQuery(last_name="Smith"), Pagination())

        assert len(httpx_mock.get_requests(method="POST", url=LOGIN_URL)) == 2
        assert len(httpx_mock.get_requests(method="GET")) == 2
        assert provider.token.get() == "t2"

    @pytest.mark.asyncio
    async def test_search_params(self, provider, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="GET", url=SEARCH_URL, json={"golfers": []})
        provider.token.set("t")

        await provider.search_player(
            SearchQuery(last_name="Smith", state="US-MN"),
            Pagination(page=2, per_page=50),
        )

        params = httpx_mock.get_requests()[0].url.params
        assert params["last_name"] == "Smith"
        assert params["state"] == "US-MN"
        assert params["page"] == "2"
        assert params["per_page"] == "50"
        assert params["status"] == "Active"
        assert params["sorting_criteria"] == "full_name"
        assert params["order"] == "asc"
        assert "golfer_id" not in params
        assert "first_name" not in params

    @pytest.mark.asyncio
    async def test_fan_out_search(self, provider, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="GET",
            url=SEARCH_URL,
            json={"golfers": [_golfer(1), {**_golfer(2), "ghin": "456"}]},
        )
        provider.token.set("t")
        players = await provider.search_player(SearchQuery(last_name="Smith"), Pagination())
        assert [p.id for p in players] == ["123", "456"]
        assert all(len(p.clubs) == 1 for p in players)

    @pytest.mark.asyncio
    async def test_get_course(self, provider, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="GET",
            url=httpx.URL(f"{BASE}/courses/1234.json", params={"include_altered_tees": "true"}),
            json={"CourseId": 1234, "CourseName": "North", "TeeSets": [{"TeeSetRatingId": 9}]},
        )
        provider.token.set("t")
        course = await provider.get_course(CourseQuery(course_id="1234", include_altered_tees=True))
        assert course.course_id == 1234
        assert course.tees[0].tee_id == 9

    @pytest.mark.asyncio
    async def test_search_course(self, provider, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="GET",
            url=httpx.URL(f"{BASE}/courses/search.json", params={"name": "Braemar", "state": "US-MN"}),
            json={"courses": [{"CourseID": 1234, "FacilityName": "Braemar"}]},
        )
        provider.token.set("t")
        courses = await provider.search_course(CourseSearchQuery(name="Braemar", state="US-MN"))
        assert courses[0].course_id == 1234
        assert courses[0].facility_name == "Braemar"

    @pytest.mark.asyncio
    async def test_get_tees(self, provider, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="GET",
            url=httpx.URL(
                f"{BASE}/courses/1234/tee_set_ratings.json",
                params={"tee_set_status": "Active", "gender": "F"},
            ),
            json={"TeeSets": [{"TeeSetRatingName": "Red", "Gender": "Female"}]},
        )
        provider.token.set("t")
        tees = await provider.get_tees(TeeQuery(course_id="1234", gender="F"))
        assert tees[0].tee_name == "Red"
        assert tees[0].total_par == 0

    @pytest.mark.asyncio
    async def test_request_product_access(self, provider, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="POST",
            url=f"{BASE}/users/golfers/123/request_golfer_product_access.json",
            json={"success": "Email sent"},
        )
        provider.token.set("t")
        result = await provider.request_product_access("123", "jane@example.com")
        assert result.success == "Email sent"

        request = httpx_mock.get_requests()[0]
        assert json.loads(request.content) == {"email": "jane@example.com"}
        assert request.headers["Authorization"] == "Bearer t"


# ---------------------------------------------------------------------------
# GhinMobileProvider
# ---------------------------------------------------------------------------


class TestGhinMobile:
    @pytest.mark.asyncio
    async def test_login_with_attestation(self, mobile_provider, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="POST", url=ATTESTATION_URL, json={"token": "attest", "expiresIn": "604800s"})
        httpx_mock.add_response(
            method="POST",
            url=f"{BASE}/golfer_login.json",
            json={"golfer_user": {"golfer_user_token": "golfer-token", "golfers": []}},
        )

        assert await mobile_provider.login() == "golfer-token"
        assert mobile_provider.token.get() == "golfer-token"

        attestation, login = httpx_mock.get_requests()
        assert attestation.headers["Authorization"] == "FIS_v2 install-auth"
        assert attestation.headers["x-goog-api-key"] == "api-key"
        assert json.loads(attestation.content) == {"installation": {"sdkVersion": "w:0.5.4"}}
        assert json.loads(login.content) == {
            "source": "GHINcom",
            "token": "attest",
            "user": {"email_or_ghin": "1234567", "password": "golfer-secret", "remember_me": False},
        }

    @pytest.mark.asyncio
    async def test_attestation_failure(self, mobile_provider, httpx_mock: HTTPXMock):
        httpx_mock.add_response(method="POST", url=ATTESTATION_URL, status_code=403)
        with pytest.raises(LoginError, match="attestation"):
            await mobile_provider.login()

    @pytest.mark.asyncio
    async def test_attestation_not_configured(self):
        p = ghin.GhinMobileProvider(BASE, "1234567", "golfer-secret")
        with pytest.raises(LoginError, match="No attestation endpoint"):
            await p.login()

    @pytest.mark.asyncio
    async def test_search_uses_golfers_endpoint(self, mobile_provider, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="GET",
            url=re.compile(re.escape(f"{BASE}/golfers.json") + r"\?.*"),
            json={"golfers": [_golfer(1)]},
        )
        mobile_provider.token.set("t")

        players = await mobile_provider.search_player(SearchQuery(last_name="Smith"), Pagination())

        assert players[0].source == "ghin_mobile"
        params = httpx_mock.get_requests()[0].url.params
        assert params["source"] == "GHINcom"
        assert params["from_ghin"] == "true"
        assert params["status"] == "Active"


class TestProviderRegistry:
    def test_sources(self):
        assert ghin.PROVIDERS == {
            "ghin": ghin.GhinProvider,
            "ghin_mobile": ghin.GhinMobileProvider,
        }

    @pytest.mark.asyncio
    async def test_client_reused_and_recreated_after_close(self, provider):
        client = provider._get_client()
        assert provider._get_client() is client
        await provider.aclose()
        assert provider._get_client() is not client
