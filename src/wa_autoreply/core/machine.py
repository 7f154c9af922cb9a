"""Connection lifecycle state machine.

``transition(session, event, settings)`` is a pure function: it returns the
next :class:`Session` snapshot and an ordered tuple of effects for the
runtime (:mod:`wa_autoreply.core.controller`) to execute. Nothing here
touches a client, a timer or the disk.

Timers are named; starting a timer replaces any pending timer with the same
name, so a newer QR, a successful auth or an operator command always
supersedes stale callbacks.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Union

from wa_autoreply.core.retry import RetryBudget, RetryPolicy
from wa_autoreply.core.types import SessionState

INIT_TIMER = "init"
QR_TIMER = "qr"
BACKOFF_TIMER = "backoff"
PAIRING_TIMER = "pairing"
ALL_TIMERS = (INIT_TIMER, QR_TIMER, BACKOFF_TIMER, PAIRING_TIMER)

LIVE_STATES = frozenset(
    {
        SessionState.CONNECTING,
        SessionState.QR_READY,
        SessionState.AUTHENTICATED,
        SessionState.READY,
    }
)


# --- events ---------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Create:
    pass


@dataclass(frozen=True, slots=True)
class QrReceived:
    payload: str


@dataclass(frozen=True, slots=True)
class QrExpired:
    payload: str


@dataclass(frozen=True, slots=True)
class Authenticated:
    pass


@dataclass(frozen=True, slots=True)
class Ready:
    pass


@dataclass(frozen=True, slots=True)
class Disconnected:
    reason: str = ""


@dataclass(frozen=True, slots=True)
class AuthFailure:
    reason: str = ""


@dataclass(frozen=True, slots=True)
class ClientError:
    error: str = ""


@dataclass(frozen=True, slots=True)
class InitTimeout:
    pass


@dataclass(frozen=True, slots=True)
class BackoffElapsed:
    wipe_credentials: bool = False


@dataclass(frozen=True, slots=True)
class PairingDue:
    pass


@dataclass(frozen=True, slots=True)
class ResetAuthentication:
    pass


@dataclass(frozen=True, slots=True)
class RestartClient:
    pass


Event = Union[
    Create,
    QrReceived,
    QrExpired,
    Authenticated,
    Ready,
    Disconnected,
    AuthFailure,
    ClientError,
    InitTimeout,
    BackoffElapsed,
    PairingDue,
    ResetAuthentication,
    RestartClient,
]


# --- effects --------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class StartTimer:
    name: str
    delay: float
    event: Event


@dataclass(frozen=True, slots=True)
class CancelTimer:
    name: str


@dataclass(frozen=True, slots=True)
class CreateClient:
    pass


@dataclass(frozen=True, slots=True)
class DestroyClient:
    pass


@dataclass(frozen=True, slots=True)
class WipeCredentials:
    pass


@dataclass(frozen=True, slots=True)
class LoadHistory:
    pass


@dataclass(frozen=True, slots=True)
class PersistHistory:
    pass


@dataclass(frozen=True, slots=True)
class StartPersistence:
    pass


@dataclass(frozen=True, slots=True)
class RequestPairingCode:
    pass


@dataclass(frozen=True, slots=True)
class Dispatch:
    """Feed *event* back into the machine after the current effects ran."""

    event: Event


Effect = Union[
    StartTimer,
    CancelTimer,
    CreateClient,
    DestroyClient,
    WipeCredentials,
    LoadHistory,
    PersistHistory,
    StartPersistence,
    RequestPairingCode,
    Dispatch,
]


# --- state ----------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class MachineSettings:
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    qr_timeout: float = 60.0
    init_timeout: float = 60.0
    use_phone_number: bool = False
    pairing_delay: float = 3.0


@dataclass(frozen=True, slots=True)
class Session:
    state: SessionState = SessionState.DISCONNECTED
    qr: str | None = None
    retry: RetryBudget = field(default_factory=RetryBudget)
    last_error: str | None = None

    @classmethod
    def initial(cls, settings: MachineSettings) -> Session:
        return cls(retry=RetryBudget.from_policy(settings.retry))


@dataclass(frozen=True, slots=True)
class Transition:
    session: Session
    effects: tuple[Effect, ...] = ()
    ignored: bool = False


def _ignore(session: Session) -> Transition:
    return Transition(session, (), ignored=True)


def _cancel_all() -> list[Effect]:
    return [CancelTimer(name) for name in ALL_TIMERS]


def _connect(session: Session, settings: MachineSettings, prefix: list[Effect]) -> Transition:
    effects: list[Effect] = [
        *prefix,
        CancelTimer(BACKOFF_TIMER),
        CreateClient(),
        StartTimer(INIT_TIMER, settings.init_timeout, InitTimeout()),
    ]
    if settings.use_phone_number:
        effects.append(StartTimer(PAIRING_TIMER, settings.pairing_delay, PairingDue()))
    return Transition(replace(session, state=SessionState.CONNECTING, qr=None), tuple(effects))


def _fail(
    session: Session,
    settings: MachineSettings,
    error: str,
    *,
    auth: bool = False,
) -> Transition:
    effects: list[Effect] = _cancel_all()
    effects.append(DestroyClient())
    if session.state is SessionState.READY:
        effects.append(PersistHistory())

    # The failure that uses up the last attempt is the one that gives up.
    retry = session.retry.consume()
    if retry.exhausted:
        if auth:
            effects.append(WipeCredentials())
        failed = replace(session, state=SessionState.FAILED, qr=None, retry=retry, last_error=error)
        return Transition(failed, tuple(effects))

    next_state = SessionState.AUTH_FAILED if auth else SessionState.DISCONNECTED
    effects.append(
        StartTimer(BACKOFF_TIMER, settings.retry.interval, BackoffElapsed(wipe_credentials=auth))
    )
    retrying = replace(session, state=next_state, qr=None, retry=retry, last_error=error)
    return Transition(retrying, tuple(effects))


def _operator_reconnect(session: Session, wipe: bool) -> Transition:
    effects: list[Effect] = _cancel_all()
    effects.append(DestroyClient())
    if session.state is SessionState.READY:
        effects.append(PersistHistory())
    if wipe:
        effects.append(WipeCredentials())
    effects.append(Dispatch(Create()))
    reset = replace(
        session,
        state=SessionState.DISCONNECTED,
        qr=None,
        retry=session.retry.reset(),
        last_error=None,
    )
    return Transition(reset, tuple(effects))


def transition(session: Session, event: Event, settings: MachineSettings) -> Transition:
    """Compute the next session snapshot and the effects to run."""
    state = session.state

    match event:
        case Create():
            if state is not SessionState.DISCONNECTED:
                return _ignore(session)
            return _connect(session, settings, [])

        case BackoffElapsed(wipe_credentials=wipe):
            if state not in (SessionState.DISCONNECTED, SessionState.AUTH_FAILED):
                return _ignore(session)
            return _connect(session, settings, [WipeCredentials()] if wipe else [])

        case QrReceived(payload=payload):
            if state not in (SessionState.CONNECTING, SessionState.QR_READY):
                return _ignore(session)
            return Transition(
                replace(session, state=SessionState.QR_READY, qr=payload),
                (
                    CancelTimer(INIT_TIMER),
                    StartTimer(QR_TIMER, settings.qr_timeout, QrExpired(payload)),
                ),
            )

        case QrExpired(payload=payload):
            if state is not SessionState.QR_READY or session.qr != payload:
                return _ignore(session)
            return Transition(
                replace(session, state=SessionState.CONNECTING, qr=None),
                (StartTimer(INIT_TIMER, settings.init_timeout, InitTimeout()),),
            )

        case Authenticated():
            if state not in (SessionState.CONNECTING, SessionState.QR_READY):
                return _ignore(session)
            return Transition(
                replace(session, state=SessionState.AUTHENTICATED, qr=None),
                (
                    CancelTimer(QR_TIMER),
                    CancelTimer(PAIRING_TIMER),
                    StartTimer(INIT_TIMER, settings.init_timeout, InitTimeout()),
                ),
            )

        case Ready():
            # A restored session may skip the explicit authenticated event.
            if state not in (
                SessionState.CONNECTING,
                SessionState.QR_READY,
                SessionState.AUTHENTICATED,
            ):
                return _ignore(session)
            return Transition(
                replace(
                    session,
                    state=SessionState.READY,
                    qr=None,
                    retry=session.retry.reset(),
                    last_error=None,
                ),
                (
                    CancelTimer(INIT_TIMER),
                    CancelTimer(QR_TIMER),
                    CancelTimer(PAIRING_TIMER),
                    LoadHistory(),
                    StartPersistence(),
                ),
            )

        case PairingDue():
            if state not in (SessionState.CONNECTING, SessionState.QR_READY):
                return _ignore(session)
            return Transition(session, (RequestPairingCode(),))

        case Disconnected(reason=reason):
            if state not in LIVE_STATES:
                return _ignore(session)
            return _fail(session, settings, f"disconnected: {reason}" if reason else "disconnected")

        case ClientError(error=error):
            if state not in LIVE_STATES:
                return _ignore(session)
            return _fail(session, settings, error or "client error")

        case InitTimeout():
            if state not in (SessionState.CONNECTING, SessionState.AUTHENTICATED):
                return _ignore(session)
            return _fail(session, settings, "initialization timed out")

        case AuthFailure(reason=reason):
            if state not in LIVE_STATES:
                return _ignore(session)
            return _fail(session, settings, reason or "authentication failure", auth=True)

        case ResetAuthentication():
            return _operator_reconnect(session, wipe=True)

        case RestartClient():
            return _operator_reconnect(session, wipe=False)

    raise TypeError(f"Unknown session event: {event!r}")
