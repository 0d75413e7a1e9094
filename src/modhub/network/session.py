"""
Aggregation server session - fast queries with a health-checked fallback.

The site can answer content queries from an aggregation server, which is
much faster than asking relays directly. This module owns the decision of
whether that server may be used right now:

1. Track the server's health through a small state machine
2. Only allow requests while the server is ``active``
3. Retry with exponential backoff while the server is unreachable
4. Keep at most one request in flight per caller-chosen key

States:
- disabled: no server configured, or turned off by the user
- initializing: validating a (new) server URL
- active: health check passed, requests allowed
- retrying: health checks repeated with backoff (5s, x3, capped at 1h)
- inactive: retries exhausted or the server rejected a payload as too large
- retry: not a resting state; entering it starts the retry loop

Health protocol:
- GET {url}/health, 10s timeout
- Healthy iff HTTP 200 and body ``{"status": "ok"}``
- At most one check in flight, and no more than one every 5 seconds

Callers observe state through ``subscribe("state_change", cb)`` and
``subscribe("retry", cb)``. When the session is not active, callers fall
back to direct relay queries.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional, TypeVar, Union

import aiohttp

from ..core.cancellation import CancellationToken, OperationCancelled
from ..core.defaults import (
    DEFAULT_SERVER_URL,
    FETCH_TIMEOUT,
    HEALTH_BACKOFF_MAX,
    HEALTH_BACKOFF_MIN,
    HEALTH_BACKOFF_MULTIPLIER,
    HEALTH_CHECK_MIN_INTERVAL,
    PAYLOAD_TOO_LARGE_MESSAGE,
    SERVER_URL_STORAGE_KEY,
    STORAGE_PATH,
    TOP_GAMES_KEY,
)
from ..core.events import EventEmitter, Listener
from ..core.exceptions import (
    FetchError,
    InvalidServerUrlError,
    PayloadTooLargeError,
    RequestCancelledError,
    ServerError,
    ServerNotActiveError,
    ServerUnreachableError,
    ServerUrlNotSetError,
)
from ..core.storage import JsonFileStore, KeyValueStore, MemoryStore
from .models import SHOW_ALL_SOURCES, GamesSort, PaginatedRequest, PaginationResult, ServerState
from .urls import is_reachable, is_valid_url, normalize_server_url

logger = logging.getLogger(__name__)

T = TypeVar("T")

STATE_CHANGE_EVENT = "state_change"
RETRY_EVENT = "retry"

# Errors that mean "the request did not work", as opposed to cancellation
_TRANSPORT_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, ValueError)


def next_backoff_delay(
    delay: float,
    multiplier: float = HEALTH_BACKOFF_MULTIPLIER,
    ceiling: float = HEALTH_BACKOFF_MAX,
) -> float:
    """Delay after ``delay``: multiplied, capped at ``ceiling``."""
    return min(delay * multiplier, ceiling)


class AggregationClientSession:
    """
    Health-checked client for the aggregation server.

    One session should exist per process (see ``get_server_session``) so
    there is exactly one health/retry loop.

    Example:
        session = AggregationClientSession(store=JsonFileStore(path))
        session.subscribe("state_change", lambda state: print(state))
        await session.start()
        if session.is_active:
            result = await session.fetch("mods", PaginatedRequest(filter={"kinds": [30402]}))

    Attributes:
        store: Key-value store holding the JSON-encoded server URL
        fetch_timeout: Total timeout per HTTP request (seconds)
        health_check_interval: Minimum time between health checks (seconds)
        backoff_min: First retry delay (seconds)
        backoff_max: Retry delay ceiling; reaching it ends the loop (seconds)
        backoff_multiplier: Factor applied to the delay after every attempt
    """

    def __init__(
        self,
        store: Optional[KeyValueStore] = None,
        *,
        default_server_url: str = DEFAULT_SERVER_URL,
        fetch_timeout: float = FETCH_TIMEOUT,
        health_check_interval: float = HEALTH_CHECK_MIN_INTERVAL,
        backoff_min: float = HEALTH_BACKOFF_MIN,
        backoff_max: float = HEALTH_BACKOFF_MAX,
        backoff_multiplier: float = HEALTH_BACKOFF_MULTIPLIER,
    ) -> None:
        if backoff_min <= 0 or backoff_max < backoff_min:
            raise ValueError("backoff_min must be positive and not above backoff_max")
        if backoff_multiplier <= 1:
            raise ValueError("backoff_multiplier must be greater than 1")

        self.store: KeyValueStore = store if store is not None else MemoryStore()
        self.default_server_url = default_server_url
        self.fetch_timeout = fetch_timeout
        self.health_check_interval = health_check_interval
        self.backoff_min = backoff_min
        self.backoff_max = backoff_max
        self.backoff_multiplier = backoff_multiplier

        self._state = ServerState.DISABLED
        self._server_url: Optional[str] = None
        self._last_checked: Optional[float] = None
        self._retry_count = 0
        self._url_generation = 0

        self._events = EventEmitter()
        self._in_flight: Dict[str, CancellationToken] = {}
        self._health_token: Optional[CancellationToken] = None
        self._retry_token: Optional[CancellationToken] = None
        self._retry_task: Optional[asyncio.Task] = None

        self._stats: Dict[str, int] = {
            "health_checks": 0,
            "health_failures": 0,
            "requests": 0,
            "request_failures": 0,
            "requests_cancelled": 0,
            "requests_rejected": 0,
        }

    # -------------------------------------------------------------------------
    # OBSERVATION
    # -------------------------------------------------------------------------

    @property
    def state(self) -> ServerState:
        return self._state

    @property
    def server_url(self) -> Optional[str]:
        return self._server_url

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def last_checked(self) -> Optional[float]:
        """Monotonic time of the last health check, None if never checked."""
        return self._last_checked

    @property
    def is_active(self) -> bool:
        return self._state is ServerState.ACTIVE

    def in_flight_keys(self) -> List[str]:
        return list(self._in_flight)

    def subscribe(self, event: str, listener: Listener) -> Callable[[], None]:
        """Subscribe to ``state_change`` (state string) or ``retry`` (attempt count)."""
        return self._events.subscribe(event, listener)

    def unsubscribe(self, event: str, listener: Listener) -> None:
        self._events.unsubscribe(event, listener)

    def get_stats(self) -> Dict[str, int]:
        return dict(self._stats)

    # -------------------------------------------------------------------------
    # LIFECYCLE
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Load the stored server URL and validate it.

        An unreachable URL leaves the session retrying; a missing or
        malformed URL disables it.
        """
        if self._state is ServerState.INITIALIZING:
            return

        self._set_state(ServerState.INITIALIZING)

        stored = self.store.get(SERVER_URL_STORAGE_KEY)
        url: Any
        if stored is None:
            url = self.default_server_url
        else:
            try:
                url = json.loads(stored)
            except ValueError:
                url = None

        if not url or not isinstance(url, str):
            logger.warning("Failed to initialize server: Bad URL. Disabling.")
            self._set_state(ServerState.DISABLED)
            return

        try:
            await self.set_server_url(url)
        except ServerUnreachableError as e:
            logger.warning(f"Failed to initialize server: {e.message} ({url}). Retrying.")
        except ServerError as e:
            logger.error(f"Failed to initialize server: {e.message} ({url}). Disabling.")
            self._set_state(ServerState.DISABLED)

    async def set_server_url(self, new_url: str) -> None:
        """Validate, persist and health-check a new server URL.

        Raises:
            InvalidServerUrlError: URL is malformed (nothing changes)
            ServerUnreachableError: URL did not answer. An active session keeps
                its current URL; otherwise the URL is adopted and the session
                starts retrying it.
        """
        if not is_valid_url(new_url):
            raise InvalidServerUrlError(new_url)
        url = normalize_server_url(new_url)

        self._url_generation += 1
        generation = self._url_generation
        previous_state = self._state
        if previous_state is not ServerState.ACTIVE:
            self._set_state(ServerState.INITIALIZING)

        reachable = await is_reachable(f"{url}/health", timeout=self.fetch_timeout)

        if generation != self._url_generation:
            logger.debug(f"Server URL {url} superseded while validating")
            return

        if not reachable:
            if previous_state is ServerState.ACTIVE:
                raise ServerUnreachableError(url)
            # Adopt the URL so the retry loop has something to probe
            if self._server_url != url:
                self._cancel_health_check("server URL changed")
            self._server_url = url
            self._last_checked = None
            self._set_state(ServerState.RETRY)
            raise ServerUnreachableError(url)

        if self._server_url != url:
            # A check still running against the old URL must not decide the new state
            self._cancel_in_flight("server URL changed")
            self._cancel_health_check("server URL changed")
        self._server_url = url
        self.store.set(SERVER_URL_STORAGE_KEY, json.dumps(url))
        self._last_checked = None
        await self._check_server_health()

    async def check_health(self) -> None:
        """Run a health check now (subject to the minimum interval)."""
        await self._check_server_health()

    def disable(self) -> None:
        """Turn the server off and cancel all pending work."""
        self.store.set(SERVER_URL_STORAGE_KEY, json.dumps(""))
        self._url_generation += 1
        self._server_url = None
        self._cancel_in_flight("session disabled")
        self._cancel_health_check("session disabled")
        self._set_state(ServerState.DISABLED)

    async def shutdown(self) -> None:
        """Cancel outstanding work and wait for the retry loop to exit."""
        self._cancel_in_flight("session shut down")
        self._cancel_health_check("session shut down")
        task = self._retry_task
        if self._retry_token is not None:
            self._retry_token.cancel("session shut down")
        if task is not None and not task.done():
            try:
                await task
            except asyncio.CancelledError:
                pass

    # -------------------------------------------------------------------------
    # REQUESTS
    # -------------------------------------------------------------------------

    async def fetch(
        self,
        key: str,
        payload: Union[PaginatedRequest, Dict[str, Any]],
    ) -> PaginationResult:
        """POST a paginated query. A newer call with the same key cancels this one.

        Raises:
            ServerNotActiveError: Session is not active (no request is made)
            PayloadTooLargeError: Server rejected the body; session goes inactive
            RequestCancelledError: Superseded or session disabled
            FetchError: Any other failure; session starts retrying
        """
        base_url = self._require_active()
        body = payload.to_dict() if isinstance(payload, PaginatedRequest) else dict(payload)
        return await self._request(
            key,
            "POST",
            f"{base_url}/paginated-events",
            parse=PaginationResult.from_dict,
            json=body,
        )

    async def games(
        self,
        sort: Union[GamesSort, str] = GamesSort.MOST_POPULAR,
        source: str = SHOW_ALL_SOURCES,
    ) -> List[str]:
        """Top games, most popular or latest, optionally for one source."""
        base_url = self._require_active()
        sort_value = sort.value if isinstance(sort, GamesSort) else sort
        return await self._request(
            TOP_GAMES_KEY,
            "GET",
            f"{base_url}/games",
            parse=_parse_game_list,
            params={"sort": sort_value, "source": source},
        )

    async def delete(self, event_id: str) -> Any:
        """Tell the server an event was deleted. Best effort: failures are logged only."""
        base_url = self._require_active()
        try:
            return await self._request(
                f"delete/{event_id}",
                "GET",
                f"{base_url}/delete/{event_id}",
                retry_on_failure=False,
            )
        except (FetchError, PayloadTooLargeError, RequestCancelledError) as e:
            logger.error(f"Delete notification for {event_id} failed: {e.message}")
            return None

    def _require_active(self) -> str:
        if self._state is not ServerState.ACTIVE:
            self._stats["requests_rejected"] += 1
            raise ServerNotActiveError(self._state.value)
        if not self._server_url:
            raise ServerUrlNotSetError()
        return self._server_url

    async def _request(
        self,
        key: str,
        method: str,
        url: str,
        parse: Optional[Callable[[Any], T]] = None,
        retry_on_failure: bool = True,
        **kwargs: Any,
    ) -> Any:
        previous = self._in_flight.get(key)
        if previous is not None:
            logger.debug(f"Superseding in-flight request '{key}'")
            previous.cancel(f"superseded by a newer '{key}' request")

        token = CancellationToken()
        self._in_flight[key] = token
        self._stats["requests"] += 1

        try:
            data = await token.run(self._send(method, url, **kwargs))
            return parse(data) if parse is not None else data
        except OperationCancelled as e:
            self._stats["requests_cancelled"] += 1
            raise RequestCancelledError(key, e.reason) from None
        except PayloadTooLargeError:
            self._stats["request_failures"] += 1
            logger.error(f"Request '{key}' payload too large. Not retrying.")
            self._set_state(ServerState.INACTIVE)
            raise PayloadTooLargeError(key) from None
        except (FetchError,) + _TRANSPORT_ERRORS as e:
            self._stats["request_failures"] += 1
            if retry_on_failure:
                logger.error(f"Request '{key}' failed. Re-establishing server connection: {e}")
                self._set_state(ServerState.RETRY)
            raise FetchError(
                "Error fetching data from the server",
                {"key": key, "cause": str(e)},
            ) from e
        finally:
            if self._in_flight.get(key) is token:
                del self._in_flight[key]

    async def _send(self, method: str, url: str, **kwargs: Any) -> Any:
        timeout = aiohttp.ClientTimeout(total=self.fetch_timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            send = getattr(session, method.lower())
            async with send(url, **kwargs) as resp:
                if resp.status >= 400:
                    body = await _read_error_body(resp)
                    if resp.status == 413 or body.get("message") == PAYLOAD_TOO_LARGE_MESSAGE:
                        raise PayloadTooLargeError()
                    raise FetchError(
                        f"Server returned HTTP {resp.status}",
                        {"status": resp.status, "body": body},
                    )
                return await resp.json(content_type=None)

    def _cancel_in_flight(self, reason: str) -> None:
        for token in list(self._in_flight.values()):
            token.cancel(reason)

    # -------------------------------------------------------------------------
    # HEALTH AND RETRY
    # -------------------------------------------------------------------------

    async def _check_server_health(self) -> None:
        if not self._server_url:
            self._set_state(ServerState.DISABLED)
            return

        now = time.monotonic()
        if self._last_checked is not None and now - self._last_checked < self.health_check_interval:
            return

        if self._health_token is not None and not self._health_token.cancelled:
            return

        token = CancellationToken()
        self._health_token = token
        self._last_checked = now
        self._stats["health_checks"] += 1

        try:
            healthy = await token.run(self._probe_health(f"{self._server_url}/health"))
        except OperationCancelled:
            logger.debug("Health check cancelled")
            return
        except _TRANSPORT_ERRORS as e:
            logger.warning(f"Server connection failed: {e}")
            healthy = False
        finally:
            if self._health_token is token:
                self._health_token = None

        if not healthy:
            self._stats["health_failures"] += 1
        self._set_state(ServerState.ACTIVE if healthy else ServerState.RETRY)

    def _cancel_health_check(self, reason: str) -> None:
        if self._health_token is not None:
            self._health_token.cancel(reason)

    async def _probe_health(self, url: str) -> bool:
        timeout = aiohttp.ClientTimeout(total=self.fetch_timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(url) as resp:
                if resp.status != 200:
                    return False
                data = await resp.json(content_type=None)
                return isinstance(data, dict) and data.get("status") == "ok"

    async def _retry_health_check(self, token: CancellationToken) -> None:
        delay = self.backoff_min
        count = 0

        try:
            while self._state is ServerState.RETRYING and not token.cancelled:
                await self._check_server_health()

                if self._state is not ServerState.RETRYING or token.cancelled:
                    break

                if delay >= self.backoff_max:
                    logger.warning("Maximum retry delay reached. Exiting retries.")
                    break

                count += 1
                self._set_retry_count(count)
                logger.warning(f"Retrying health check in {delay:g} seconds...")

                try:
                    await token.sleep(delay)
                except OperationCancelled:
                    break

                delay = next_backoff_delay(delay, self.backoff_multiplier, self.backoff_max)
        finally:
            if self._retry_token is token:
                self._retry_token = None
                self._retry_task = None
                if self._state is ServerState.RETRYING:
                    self._set_state(ServerState.INACTIVE)
                self._set_retry_count(0)

    def _set_retry_count(self, count: int) -> None:
        self._retry_count = count
        self._events.emit(RETRY_EVENT, count)

    # -------------------------------------------------------------------------
    # STATE MACHINE
    # -------------------------------------------------------------------------

    def _set_state(self, new_state: ServerState) -> None:
        if self._state is new_state:
            return

        if new_state is ServerState.RETRY:
            if self._state is not ServerState.RETRYING:
                self._set_state(ServerState.RETRYING)
                token = CancellationToken()
                self._retry_token = token
                self._retry_task = asyncio.get_running_loop().create_task(
                    self._retry_health_check(token)
                )
            return

        # Any exit from retrying stops the retry loop
        if self._state is ServerState.RETRYING and self._retry_token is not None:
            self._retry_token.cancel(f"left retrying for {new_state.value}")

        old_state = self._state
        self._state = new_state
        logger.info(f"Server state {old_state.value} -> {new_state.value}")
        self._events.emit(STATE_CHANGE_EVENT, new_state.value)


async def _read_error_body(resp: aiohttp.ClientResponse) -> Dict[str, Any]:
    try:
        body = await resp.json(content_type=None)
    except _TRANSPORT_ERRORS:
        return {}
    return body if isinstance(body, dict) else {}


def _parse_game_list(data: Any) -> List[str]:
    if not isinstance(data, list) or not all(isinstance(item, str) for item in data):
        raise ValueError("Games response must be a list of strings")
    return data


# =============================================================================
# PROCESS-WIDE SESSION
# =============================================================================


_session: Optional[AggregationClientSession] = None


def get_server_session(store: Optional[KeyValueStore] = None) -> AggregationClientSession:
    """Get the process-wide session, creating it on first use.

    ``store`` is only used when the session is created; it defaults to a
    JsonFileStore at ``STORAGE_PATH``.
    """
    global _session
    if _session is None:
        _session = AggregationClientSession(
            store=store if store is not None else JsonFileStore(STORAGE_PATH)
        )
    return _session


def reset_server_session() -> None:
    """Forget the process-wide session (for tests)."""
    global _session
    _session = None
