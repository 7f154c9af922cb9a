"""Session controller: runs the lifecycle state machine against a live client."""

from __future__ import annotations

import asyncio
from collections import deque
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Coroutine, Protocol

from wa_autoreply.core.machine import (
    ALL_TIMERS,
    Authenticated,
    AuthFailure,
    CancelTimer,
    ClientError,
    Create,
    CreateClient,
    DestroyClient,
    Disconnected,
    Dispatch,
    Effect,
    Event,
    LoadHistory,
    MachineSettings,
    PersistHistory,
    QrReceived,
    Ready,
    RequestPairingCode,
    ResetAuthentication,
    RestartClient,
    Session,
    StartPersistence,
    StartTimer,
    WipeCredentials,
    transition,
)
from wa_autoreply.core.types import Presence, SessionState
from wa_autoreply.log import get_logger
from wa_autoreply.messenger.base import ClientFactory, MessagingClient
from wa_autoreply.messenger.models import IncomingMessage, OutgoingMessage

if TYPE_CHECKING:
    from wa_autoreply.storage.credentials import CredentialStore
    from wa_autoreply.storage.history import ConversationStore

logger = get_logger(__name__)

DESTROY_TIMEOUT = 10.0
PAIRING_TIMEOUT = 30.0

StateObserver = Callable[[Session, Session], None]


class PersistenceSchedule(Protocol):
    def schedule_persistence(self) -> None: ...


class _ClientEvents:
    """Listener handed to one client instance; stale generations are dropped."""

    def __init__(self, controller: SessionController, generation: int):
        self._controller = controller
        self._generation = generation

    def on_qr(self, payload: str) -> None:
        self._controller._submit(self._generation, QrReceived(payload))

    def on_authenticated(self) -> None:
        self._controller._submit(self._generation, Authenticated())

    def on_ready(self) -> None:
        self._controller._submit(self._generation, Ready())

    def on_disconnected(self, reason: str) -> None:
        self._controller._submit(self._generation, Disconnected(reason))

    def on_auth_failure(self, reason: str) -> None:
        self._controller._submit(self._generation, AuthFailure(reason))

    def on_error(self, error: BaseException) -> None:
        self._controller._submit(self._generation, ClientError(str(error)))


class SessionController:
    """Single owner of the session state, retry budget and pending QR.

    Events are applied one at a time under a lock; the effects of each
    transition run in order before the next event is looked at. Client
    initialization runs as a background task so commands return promptly.
    """

    def __init__(
        self,
        client_factory: ClientFactory,
        settings: MachineSettings,
        store: ConversationStore,
        credentials: CredentialStore,
        persistence: PersistenceSchedule | None = None,
        phone_number: str = "",
    ):
        self._client_factory = client_factory
        self._settings = settings
        self._store = store
        self._credentials = credentials
        self._persistence = persistence
        self._phone_number = phone_number

        self._session = Session.initial(settings)
        self._lock = asyncio.Lock()
        self._timers: dict[str, tuple[asyncio.TimerHandle, object]] = {}
        self._tasks: set[asyncio.Task[Any]] = set()
        self._client: MessagingClient | None = None
        self._generation = 0
        self._init_task: asyncio.Task[None] | None = None
        self._message_callback: Callable[[IncomingMessage], Awaitable[None]] | None = None
        self._observers: list[StateObserver] = []
        self._pairing_code: str | None = None
        self._closed = False
        self.clients_created = 0

    # --- read side ---------------------------------------------------------

    @property
    def session(self) -> Session:
        return self._session

    @property
    def state(self) -> SessionState:
        return self._session.state

    @property
    def pending_qr(self) -> str | None:
        return self._session.qr

    @property
    def retry_attempts(self) -> int:
        return self._session.retry.attempts

    @property
    def max_retries(self) -> int:
        return self._session.retry.max

    @property
    def pairing_code(self) -> str | None:
        return self._pairing_code

    @property
    def client(self) -> MessagingClient | None:
        return self._client

    def active_timers(self) -> list[str]:
        return sorted(self._timers)

    def add_observer(self, observer: StateObserver) -> None:
        self._observers.append(observer)

    def on_message(self, callback: Callable[[IncomingMessage], Awaitable[None]]) -> None:
        """Route messages of every future client to *callback*."""
        self._message_callback = callback
        if self._client is not None:
            self._client.on_message(callback)

    # --- commands ------------------------------------------------------------

    async def create(self) -> None:
        await self.dispatch(Create())

    async def reset_authentication(self) -> None:
        logger.info("reset_authentication_requested", state=str(self.state))
        await self.dispatch(ResetAuthentication())

    async def restart_client(self) -> None:
        logger.info("restart_client_requested", state=str(self.state))
        await self.dispatch(RestartClient())

    async def send_message(self, message: OutgoingMessage) -> None:
        await self._require_client().send_message(message)

    async def send_presence(self, state: Presence, chat_id: str) -> None:
        await self._require_client().send_presence(state, chat_id)

    async def shutdown(self) -> None:
        """Stop timers, tear down the client and flush history."""
        async with self._lock:
            self._closed = True
            for name in ALL_TIMERS:
                self._cancel_timer(name)
            await self._destroy_client()
            self._store.persist()
        for task in list(self._tasks):
            task.cancel()
        logger.info("session_controller_stopped")

    async def dispatch(self, event: Event, generation: int | None = None) -> None:
        """Apply *event* (and any events it dispatches) to the state machine.

        *generation* stamps events raised by a client or a timer. If a client
        was destroyed or created while the event waited for the lock, the
        stamp no longer matches and the event is dropped.
        """
        async with self._lock:
            if self._closed:
                return
            if generation is not None and generation != self._generation:
                logger.debug("stale_session_event_dropped", event_type=type(event).__name__)
                return
            queue: deque[Event] = deque([event])
            while queue:
                current = queue.popleft()
                result = transition(self._session, current, self._settings)
                if result.ignored:
                    logger.info(
                        "session_event_ignored",
                        event_type=type(current).__name__,
                        state=str(self._session.state),
                    )
                    continue
                previous, self._session = self._session, result.session
                if previous.state is not result.session.state:
                    logger.info(
                        "session_state_changed",
                        event_type=type(current).__name__,
                        old=str(previous.state),
                        new=str(result.session.state),
                        attempts=result.session.retry.attempts,
                        error=result.session.last_error,
                    )
                for observer in self._observers:
                    observer(previous, result.session)
                for effect in result.effects:
                    if isinstance(effect, Dispatch):
                        queue.append(effect.event)
                    else:
                        await self._run_effect(effect)

    # --- internals -----------------------------------------------------------

    def _require_client(self) -> MessagingClient:
        if self._client is None:
            raise RuntimeError("No active messaging client")
        return self._client

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _submit(self, generation: int, event: Event) -> None:
        if generation != self._generation or self._closed:
            logger.debug("stale_client_event_dropped", event_type=type(event).__name__)
            return
        self._spawn(self.dispatch(event, generation))

    async def _run_effect(self, effect: Effect) -> None:
        match effect:
            case StartTimer(name=name, delay=delay, event=event):
                self._start_timer(name, delay, event)
            case CancelTimer(name=name):
                self._cancel_timer(name)
            case CreateClient():
                self._create_client()
            case DestroyClient():
                await self._destroy_client()
            case WipeCredentials():
                try:
                    self._credentials.wipe()
                except OSError as e:
                    logger.error("credentials_wipe_failed", error=str(e))
            case LoadHistory():
                self._store.load()
            case PersistHistory():
                self._store.persist()
            case StartPersistence():
                if self._persistence is not None:
                    self._persistence.schedule_persistence()
            case RequestPairingCode():
                self._spawn(self._request_pairing_code(self._generation))
            case _:
                raise TypeError(f"Unknown session effect: {effect!r}")

    def _start_timer(self, name: str, delay: float, event: Event) -> None:
        self._cancel_timer(name)
        token = object()
        handle = asyncio.get_running_loop().call_later(
            delay, self._fire_timer, name, token, self._generation, event
        )
        self._timers[name] = (handle, token)

    def _cancel_timer(self, name: str) -> None:
        entry = self._timers.pop(name, None)
        if entry is not None:
            entry[0].cancel()

    def _fire_timer(self, name: str, token: object, generation: int, event: Event) -> None:
        entry = self._timers.get(name)
        if entry is None or entry[1] is not token:
            return
        del self._timers[name]
        logger.debug("session_timer_fired", timer=name, event_type=type(event).__name__)
        self._spawn(self.dispatch(event, generation))

    def _create_client(self) -> None:
        if self._init_task is not None and not self._init_task.done():
            logger.info("client_initialization_in_flight")
            return

        self._generation += 1
        generation = self._generation
        try:
            client = self._client_factory(_ClientEvents(self, generation))
        except Exception as e:
            logger.error("client_create_failed", error=str(e))
            self._submit(generation, ClientError(f"client creation failed: {e}"))
            return

        if self._message_callback is not None:
            client.on_message(self._message_callback)
        self._client = client
        self._pairing_code = None
        self.clients_created += 1
        self._init_task = self._spawn(self._initialize(client, generation))
        logger.info("client_created", generation=generation)

    async def _initialize(self, client: MessagingClient, generation: int) -> None:
        try:
            await client.initialize()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error("client_initialize_failed", error=str(e), generation=generation)
            self._submit(generation, ClientError(f"initialize failed: {e}"))

    async def _destroy_client(self) -> None:
        # Bumping the generation first silences callbacks from the old client.
        self._generation += 1
        if self._init_task is not None and not self._init_task.done():
            self._init_task.cancel()
        self._init_task = None

        client, self._client = self._client, None
        self._pairing_code = None
        if client is None:
            return
        try:
            await asyncio.wait_for(client.destroy(), timeout=DESTROY_TIMEOUT)
        except Exception as e:
            logger.warning("client_destroy_failed", error=str(e))

    async def _request_pairing_code(self, generation: int) -> None:
        client = self._client
        if client is None or not self._phone_number:
            return
        try:
            if client.is_registered:
                return
            code = await asyncio.wait_for(
                client.request_pairing_code(self._phone_number), timeout=PAIRING_TIMEOUT
            )
        except Exception as e:
            logger.error("pairing_code_request_failed", error=str(e))
            return
        if generation != self._generation:
            return
        self._pairing_code = code
        logger.info(
            "pairing_code_issued",
            phone_number=self._phone_number,
            code=code,
            hint="WhatsApp > Linked Devices > Link a Device > Link with phone number instead",
        )
