"""GHIN API client: shared token, authenticated requests and provider variants.

Every authenticated operation runs through ``HandicapProvider._authenticated``:

- 200 → payload is normalized and returned
- 401 → log in again, then retry (at most ``MAX_ATTEMPTS`` attempts in total)
- 400 → ``BadRequestError``, never retried
- anything else → ``UnknownStatusError``, never retried
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, TypeVar

import httpx
from tenacity import AsyncRetrying, RetryError, retry_if_exception_type, stop_after_attempt

from errors import (
    AuthenticationError,
    BadRequestError,
    LoginError,
    RetryExhaustedError,
    UnknownStatusError,
)
from models import (
    Course,
    CourseQuery,
    CourseSearchQuery,
    Pagination,
    PlayerResult,
    ProductAccessResult,
    SearchQuery,
    Tee,
    TeeQuery,
)
from normalize import (
    normalize_course,
    normalize_course_search,
    normalize_players,
    normalize_product_access,
    normalize_tees,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api2.ghin.com/api/v1"

# An initial attempt plus one retry after a token refresh.
MAX_ATTEMPTS = 2

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Shared token
# ---------------------------------------------------------------------------

class Token:
    """Bearer token shared by every in-flight request of one provider.

    Empty until the first login. Replaced wholesale on each login; the lock is
    only held while the attribute is read or swapped, never across I/O.
    """

    def __init__(self, value: str = ""):
        self._value = value
        self._lock = threading.Lock()

    def get(self) -> str:
        with self._lock:
            return self._value

    def set(self, value: str) -> None:
        with self._lock:
            self._value = value


def reauth_retrying(max_attempts: int = MAX_ATTEMPTS) -> AsyncRetrying:
    """Retry policy for authenticated calls: only 401s are retried, with no wait."""
    return AsyncRetrying(
        retry=retry_if_exception_type(AuthenticationError),
        stop=stop_after_attempt(max_attempts),
    )


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------

class HandicapProvider(ABC):
    """One upstream handicap API variant.

    Subclasses decide how to log in and where players are searched; the
    request/retry machinery and the response normalization are shared.
    """

    source: str = ""
    login_path: str = ""
    search_path: str = "/golfers/search.json"

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: Optional[httpx.Timeout] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.username = username or ""
        self.password = password or ""
        self.timeout = timeout or httpx.Timeout(30.0, connect=10.0)
        self.token = Token()
        self._client: Optional[httpx.AsyncClient] = None

    # -- transport ---------------------------------------------------------

    def _get_client(self) -> httpx.AsyncClient:
        """Return this provider's httpx.AsyncClient, creating one if needed."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"Accept": "application/json"},
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def send(
        self,
        method: str,
        path: str,
        token: Optional[str] = None,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """Issue a single request against the GHIN API.

        No status handling and no retries: the response is returned whatever
        its status, and httpx transport errors propagate unchanged.
        """
        headers: Dict[str, str] = {}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        logger.info("API %s %s", method, path)
        return await self._get_client().request(
            method,
            f"{self.base_url}/{path.lstrip('/')}",
            params=params,
            json=json,
            headers=headers,
        )

    # -- login -------------------------------------------------------------

    @abstractmethod
    async def _login_payload(self) -> Dict[str, Any]:
        """Body posted to ``login_path``."""
        raise NotImplementedError

    @abstractmethod
    def _session_token(self, data: Dict[str, Any]) -> Optional[str]:
        """Extract the session token from a decoded login response."""
        raise NotImplementedError

    async def login(self) -> str:
        """Log in with the stored account credentials and store the new token.

        Raises:
            LoginError: On a non-200 answer or a response without a token
            httpx.HTTPError: On transport failure
        """
        payload = await self._login_payload()
        response = await self.send("POST", self.login_path, json=payload)
        if response.status_code != 200:
            logger.error("Login to %s failed with status %s", self.source, response.status_code)
            raise LoginError(f"{self.source} login failed with status {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise LoginError(f"{self.source} login returned invalid JSON") from e

        token = self._session_token(data) if isinstance(data, dict) else None
        if not token:
            raise LoginError(f"{self.source} login response did not include a token")

        logger.info("Refreshing %s token", self.source)
        self.token.set(token)
        return token

    # -- retry controller --------------------------------------------------

    async def _authenticated(
        self,
        operation: str,
        method: str,
        path: str,
        process: Callable[[Any], T],
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> T:
        """Run one logical call, refreshing the token and retrying on 401.

        The current token is read again at the start of every attempt, so a
        retry picks up the token written by the preceding login.
        """
        try:
            async for attempt in reauth_retrying():
                with attempt:
                    number = attempt.retry_state.attempt_number
                    response = await self.send(
                        method, path, token=self.token.get(), params=params, json=json
                    )
                    status = response.status_code

                    if status == 200:
                        return process(response.json())

                    if status == 401:
                        logger.warning(
                            "Unauthorized on %s (attempt %d of %d), logging in again",
                            operation, number, MAX_ATTEMPTS,
                        )
                        await self.login()
                        raise AuthenticationError()

                    if status == 400:
                        logger.error("BAD_REQUEST on %s: %s", operation, response.text)
                        raise BadRequestError(operation, response.text)

                    logger.error("Unexpected status %s on %s", status, operation)
                    raise UnknownStatusError(status, operation)
        except RetryError as e:
            logger.error("Giving up on %s after %d attempts", operation, MAX_ATTEMPTS)
            raise RetryExhaustedError(operation, MAX_ATTEMPTS) from e
        raise RetryExhaustedError(operation, MAX_ATTEMPTS)

    # -- operations --------------------------------------------------------

    def _search_params(self, query: SearchQuery, page: Pagination) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "page": page.page,
            "per_page": page.per_page,
            "status": "Active",
            "sorting_criteria": "full_name",
            "order": "asc",
        }
        for field in ("golfer_id", "state", "country", "last_name", "first_name", "email"):
            value = getattr(query, field)
            if value:
                params[field] = value
        return params

    async def search_player(self, query: SearchQuery, page: Pagination) -> List[PlayerResult]:
        """Search golfers; a query scoped to one golfer id rolls up to a single player."""
        players = await self._authenticated(
            "search_player",
            "GET",
            self.search_path,
            lambda data: normalize_players(data, query.is_scoped, self.source),
            params=self._search_params(query, page),
        )
        logger.debug(
            "search_player golfer_id=%s state=%s last_name=%s -> %d players",
            query.golfer_id, query.state, query.last_name, len(players),
        )
        return players

    async def get_handicap(self, golfer_id: str) -> PlayerResult:
        players = await self.search_player(
            SearchQuery(source=self.source, golfer_id=golfer_id),
            Pagination(page=1, per_page=25),
        )
        return players[0]

    async def get_course(self, query: CourseQuery) -> Course:
        return await self._authenticated(
            "get_course",
            "GET",
            f"/courses/{query.course_id}.json",
            normalize_course,
            params={"include_altered_tees": str(query.include_altered_tees).lower()},
        )

    async def search_course(self, query: CourseSearchQuery) -> List[Course]:
        params = {
            key: value
            for key, value in query.model_dump(exclude={"source"}).items()
            if value
        }
        return await self._authenticated(
            "search_course",
            "GET",
            "/courses/search.json",
            normalize_course_search,
            params=params,
        )

    async def get_tees(self, query: TeeQuery) -> List[Tee]:
        params: Dict[str, Any] = {"tee_set_status": query.tee_set_status}
        if query.gender:
            params["gender"] = query.gender
        return await self._authenticated(
            "get_tees",
            "GET",
            f"/courses/{query.course_id}/tee_set_ratings.json",
            normalize_tees,
            params=params,
        )

    async def request_product_access(self, golfer_id: str, email: str) -> ProductAccessResult:
        return await self._authenticated(
            "request_product_access",
            "POST",
            f"/users/golfers/{golfer_id}/request_golfer_product_access.json",
            normalize_product_access,
            json={"email": email},
        )


class GhinProvider(HandicapProvider):
    """GHIN API logged in with an association account (email + password)."""

    source = "ghin"
    login_path = "/users/login.json"

    async def _login_payload(self) -> Dict[str, Any]:
        return {
            "user": {
                "email": self.username,
                "password": self.password,
                "remember_me": True,
            }
        }

    def _session_token(self, data: Dict[str, Any]) -> Optional[str]:
        return data.get("token")


class GhinMobileProvider(HandicapProvider):
    """GHIN API logged in as a golfer, the way the mobile app does.

    Each login first fetches a short-lived installation token from the
    attestation endpoint and sends it along with the golfer credentials.
    """

    source = "ghin_mobile"
    login_path = "/golfer_login.json"
    search_path = "/golfers.json"
    sdk_version = "w:0.5.4"

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        username: Optional[str] = None,
        password: Optional[str] = None,
        attestation_url: Optional[str] = None,
        attestation_api_key: Optional[str] = None,
        attestation_auth: Optional[str] = None,
        timeout: Optional[httpx.Timeout] = None,
    ):
        super().__init__(base_url, username, password, timeout)
        self.attestation_url = attestation_url or ""
        self.attestation_api_key = attestation_api_key or ""
        self.attestation_auth = attestation_auth or ""

    async def fetch_attestation_token(self) -> str:
        if not self.attestation_url:
            raise LoginError("No attestation endpoint configured")

        headers = {
            "Authorization": f"FIS_v2 {self.attestation_auth}",
            "x-goog-api-key": self.attestation_api_key,
        }
        logger.info("API POST %s", self.attestation_url)
        response = await self._get_client().post(
            self.attestation_url,
            json={"installation": {"sdkVersion": self.sdk_version}},
            headers=headers,
        )
        if response.status_code != 200:
            raise LoginError(f"attestation request failed with status {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise LoginError("attestation endpoint returned invalid JSON") from e

        token = data.get("token") if isinstance(data, dict) else None
        if not token:
            raise LoginError("attestation response did not include a token")
        return token

    async def _login_payload(self) -> Dict[str, Any]:
        return {
            "source": "GHINcom",
            "token": await self.fetch_attestation_token(),
            "user": {
                "email_or_ghin": self.username,
                "password": self.password,
                "remember_me": False,
            },
        }

    def _session_token(self, data: Dict[str, Any]) -> Optional[str]:
        golfer_user = data.get("golfer_user")
        if not isinstance(golfer_user, dict):
            return None
        return golfer_user.get("golfer_user_token")

    def _search_params(self, query: SearchQuery, page: Pagination) -> Dict[str, Any]:
        params = super()._search_params(query, page)
        params["source"] = "GHINcom"
        params["from_ghin"] = "true"
        return params


PROVIDERS = {
    GhinProvider.source: GhinProvider,
    GhinMobileProvider.source: GhinMobileProvider,
}
