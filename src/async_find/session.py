"""Query coordination for one interactive session.

A session owns one worker process and at most one filter request in flight. Input
events come from the UI, completions come back from the transport, and the
consumer sees an ordered stream of events:

    Begin, (Flush, Append, Refresh)*, Destroyed
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum

from async_find.errors import InvalidTransitionError, SetupError
from async_find.highlight import Highlighter, highlight_terms
from async_find.logger import logging
from async_find.patterns import PatternTransform, split_regex_terms
from async_find.protocol.messages import FilterRequest
from async_find.protocol.transport import Connection, Transport
from async_find.supervisor import DEFAULT_ENDPOINT_PREFIX, WorkerSupervisor, make_endpoint_name

logger = logging.getLogger(__name__)


class SessionState(Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"  # Worker running, nothing in flight
    QUERYING = "querying"  # One filter request in flight
    DESTROYED = "destroyed"  # Terminal


_VALID_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.UNINITIALIZED: frozenset({SessionState.READY, SessionState.DESTROYED}),
    SessionState.READY: frozenset({SessionState.QUERYING, SessionState.DESTROYED}),
    SessionState.QUERYING: frozenset(
        {SessionState.QUERYING, SessionState.READY, SessionState.DESTROYED}
    ),
    SessionState.DESTROYED: frozenset(),
}


@dataclass(frozen=True)
class Begin:
    pass


@dataclass(frozen=True)
class Flush:
    """Discard the candidates displayed so far."""


@dataclass(frozen=True)
class Append:
    candidates: tuple[str, ...] = ()


@dataclass(frozen=True)
class Refresh:
    """Re-render and re-highlight."""


@dataclass(frozen=True)
class Destroyed:
    pass


SessionEvent = Begin | Flush | Append | Refresh | Destroyed
Consumer = Callable[[SessionEvent], None]


@dataclass
class SessionConfig:
    search_command: str
    directory: str | None = None
    transform: PatternTransform = split_regex_terms
    highlight: Highlighter = highlight_terms  # Used by the UI, not by the session
    candidate_limit: int | None = 1000
    request_timeout: float | None = None  # seconds; None waits forever
    startup_timeout: float = 5.0  # seconds
    endpoint_prefix: str = DEFAULT_ENDPOINT_PREFIX


@dataclass
class Request:
    pattern: str
    terms: list[str] = field(default_factory=list)
    connection: Connection | None = None


class Session:
    """Coordinates queries between a UI and its worker process.

    The session manages:
    - Worker spawn, initialization and teardown through the supervisor
    - Dropping empty and repeated patterns
    - Aborting the in-flight request before dispatching a new one
    - Emitting Flush/Append/Refresh for the request that completes

    Everything runs on one event loop thread, so no locking is needed; the only
    interleaving is a new input arriving before the previous response.
    """

    config: SessionConfig
    consumer: Consumer
    transport: Transport
    supervisor: WorkerSupervisor
    endpoint: str

    def __init__(
        self,
        config: SessionConfig,
        consumer: Consumer,
        supervisor: WorkerSupervisor | None = None,
        transport: Transport | None = None,
    ):
        self.config = config
        self.consumer = consumer
        self.transport = transport if transport is not None else Transport(config.request_timeout)
        self.supervisor = (
            supervisor if supervisor is not None else WorkerSupervisor(self.transport)
        )
        self.endpoint = make_endpoint_name(config.endpoint_prefix)
        self._state = SessionState.UNINITIALIZED
        self._last_pattern: str | None = None
        self._request: Request | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def last_pattern(self) -> str | None:
        """The most recently dispatched pattern, whether or not it has completed."""
        return self._last_pattern

    @property
    def in_flight(self) -> Request | None:
        return self._request

    async def setup(self):
        """
        Start the worker and hand it the backing search command.

        Raises SetupError if the worker cannot be started; in that case no event
        follows Begin.
        """
        if self._state is not SessionState.UNINITIALIZED:
            raise InvalidTransitionError(self._state, SessionState.READY, "setup called twice")

        self._emit(Begin())
        try:
            self.supervisor.spawn(self.endpoint)
            await self.supervisor.wait_until_reachable(self.endpoint, self.config.startup_timeout)
        except SetupError as e:
            if self._state is SessionState.DESTROYED:
                # destroy() killed the worker while we were waiting for it.
                logger.info("Session destroyed during setup")
                return
            logger.error("Session setup failed: %s", e)
            self.supervisor.kill()
            self._transition(SessionState.DESTROYED)
            raise

        if self._state is SessionState.DESTROYED:
            logger.info("Session destroyed during setup")
            return

        self.supervisor.initialize(
            self.endpoint, self.config.search_command, self.config.directory
        )
        self._transition(SessionState.READY)
        logger.info("Session ready on %s", self.endpoint)

    def input(self, pattern: str):
        if self._state not in (SessionState.READY, SessionState.QUERYING):
            logger.debug("Ignoring input %r in state %s", pattern, self._state.value)
            return

        if not pattern or pattern == self._last_pattern:
            return

        self._abort_request()

        terms = list(self.config.transform(pattern))
        request = Request(pattern=pattern, terms=terms)
        self._request = request
        self._last_pattern = pattern
        request.connection = self.transport.send(
            self.endpoint,
            FilterRequest(terms=terms, limit=self.config.candidate_limit),
            lambda candidates: self._on_result(request, candidates),
        )
        logger.debug("Dispatched %r as terms %r", pattern, terms)
        self._transition(SessionState.QUERYING)

    def destroy(self):
        if self._state is SessionState.DESTROYED:
            return

        self._abort_request()
        if self._state is SessionState.UNINITIALIZED:
            # Setup may still be waiting for the worker to listen.
            self.supervisor.kill()
        else:
            self.supervisor.terminate(self.endpoint)

        self._transition(SessionState.DESTROYED)
        self._emit(Destroyed())
        logger.info("Session on %s destroyed", self.endpoint)

    async def wait_closed(self, timeout: float | None = 2.0):
        """Give fire-and-forget instructions (shutdown included) time to go out."""
        await self.transport.drain(timeout)

    def _on_result(self, request: Request, candidates: Sequence[str]):
        if request is not self._request or self._state is not SessionState.QUERYING:
            logger.debug("Dropping result for superseded pattern %r", request.pattern)
            return

        self._request = None
        self._transition(SessionState.READY)
        logger.debug("Pattern %r matched %d candidates", request.pattern, len(candidates))

        for event in (Flush(), Append(tuple(candidates)), Refresh()):
            # The consumer may destroy the session from inside a handler.
            if self._state is SessionState.DESTROYED:
                break
            self._emit(event)

    def _abort_request(self):
        request, self._request = self._request, None
        if request is not None and request.connection is not None:
            logger.debug("Aborting request for %r", request.pattern)
            request.connection.abort()

    def _transition(self, to_state: SessionState):
        if to_state not in _VALID_TRANSITIONS[self._state]:
            raise InvalidTransitionError(self._state, to_state)
        self._state = to_state

    def _emit(self, event: SessionEvent):
        self.consumer(event)
