from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, ClassVar, List, Mapping, Optional

from domain.errors import MisconfiguredError, NotFoundError
from domain.models import (
    SEED_BALANCE_ALT,
    SEED_BALANCE_PRIMARY,
    Identity,
    Profile,
    utc_now,
)
from domain.repositories import (
    LocalStorage,
    ProfileStore,
    RemoteBackend,
    RemoteBackendFactory,
    Unsubscribe,
)

from .configuration import Configured, ConfigurationProvider, Unconfigured
from .demo import CANONICAL_DEMO_IDENTITY, DEMO_EMAIL, DEMO_PASSWORD, DemoDirectory
from .ledger import BalanceLedger
from .notifications import LoggingNotifier, Notifier
from .profile_store import LocalProfileStore, RemoteProfileStore
from .writes import DurableWriteDispatcher

logger = logging.getLogger(__name__)


class SessionMode(str, Enum):
    REAL = "real"
    DEMO = "demo"


class SessionPhase(str, Enum):
    INITIALIZING = "initializing"
    DEMO_ACTIVE = "demo_active"
    ATTACHING_REAL = "attaching_real"
    AUTHENTICATED = "authenticated"
    ANONYMOUS = "anonymous"
    TRANSIENT_ERROR = "transient_error"


_LOADING_PHASES = frozenset({SessionPhase.INITIALIZING, SessionPhase.ATTACHING_REAL})


@dataclass(frozen=True)
class SessionState:
    """
    Snapshot of the session handed to consumers.

    `profile` may be None until `loading` turns false, and stays None
    while nobody is signed in.
    """

    mode: Optional[SessionMode]
    phase: SessionPhase
    identity: Optional[Identity]
    profile: Optional[Profile]

    @property
    def loading(self) -> bool:
        return self.phase in _LOADING_PHASES

    @property
    def is_demo(self) -> bool:
        return self.mode is SessionMode.DEMO


@dataclass
class ExternalContext:
    """
    Information about a caller coming from an external provider
    (Discord, Telegram, ...).

    The session never depends on concrete SDK types; it only sees this
    small context object.
    """

    provider: str
    provider_user_id: str
    display_name: str
    email: str = ""


SessionListener = Callable[[SessionState], None]


class Session:
    """
    Who is signed in, their profile, and the mode the process runs in.

    Construct one per process, `start()` it (or use it as an async
    context manager) and `close()` it on shutdown. On start the
    configuration is probed: without usable backend credentials the
    session synthesizes a demo identity backed by local storage, otherwise
    it follows the auth service's identity feed and keeps profiles in the
    remote document store. `sign_up` and `sign_in` probe again, so a
    session can change mode; demo and real identities never share
    profiles.

    Profile and balance updates are optimistic: the in-memory profile
    changes immediately and the durable write follows. Concurrent,
    unawaited updates are not serialized; the in-memory value reflects the
    last call issued while storage keeps whichever write settles last.
    """

    _active: ClassVar[Optional["Session"]] = None

    def __init__(
        self,
        configuration: ConfigurationProvider,
        local_storage: LocalStorage,
        remote_factory: RemoteBackendFactory,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], datetime] = utc_now,
        demo_directory: Optional[DemoDirectory] = None,
    ) -> None:
        self._configuration = configuration
        self._remote_factory = remote_factory
        self._notifier = notifier or LoggingNotifier()
        self._clock = clock

        self._demo = demo_directory or DemoDirectory(local_storage)
        self._local_profiles = LocalProfileStore(local_storage, clock)

        self._remote: Optional[RemoteBackend] = None
        self._remote_url: Optional[str] = None
        self._remote_profiles: Optional[RemoteProfileStore] = None
        self._unsubscribe: Optional[Unsubscribe] = None

        self._writes = DurableWriteDispatcher(self._notifier)
        self._ledger = BalanceLedger(self._writes)

        self._listeners: List[SessionListener] = []
        self._state = SessionState(
            mode=None,
            phase=SessionPhase.INITIALIZING,
            identity=None,
            profile=None,
        )
        self.last_error: Optional[BaseException] = None

    # ------------------------------------------------------------------
    # State exposed to consumers
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def identity(self) -> Optional[Identity]:
        return self._state.identity

    @property
    def profile(self) -> Optional[Profile]:
        return self._state.profile

    @property
    def loading(self) -> bool:
        return self._state.loading

    def add_listener(self, listener: SessionListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: SessionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _publish(self, **changes: Any) -> None:
        self._state = replace(self._state, **changes)
        for listener in list(self._listeners):
            listener(self._state)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> SessionState:
        """
        Resolve the initial identity and profile.

        Never raises for backend or storage failures: those move the
        session to TRANSIENT_ERROR and then ANONYMOUS, with the error kept
        in `last_error`.
        """

        if Session._active is self:
            return self._state
        if Session._active is not None:
            raise RuntimeError("Another session is already active in this process.")
        Session._active = self

        status = self._configuration.probe()
        try:
            if isinstance(status, Unconfigured):
                logger.info("TradeKaro running in DEMO MODE: %s", status.reason)
                self._notifier.info("Demo mode: accounts and balances are kept on this machine only.")
                await self._start_demo()
            else:
                self._publish(mode=SessionMode.REAL, phase=SessionPhase.ATTACHING_REAL)
                await self._enter_real(status)
        except Exception as exc:
            # Initialization must never take the host down.
            self._fail(exc)
        return self._state

    async def flush(self) -> None:
        """Wait until every dispatched durable write has settled."""

        await self._writes.drain()

    async def close(self) -> None:
        await self.flush()
        self._detach()
        if Session._active is self:
            Session._active = None

    async def __aenter__(self) -> "Session":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Identity acquisition
    # ------------------------------------------------------------------

    async def sign_up(self, email: str, password: str, display_name: str) -> Identity:
        """
        Create an account and sign it in.

        Raises `ConflictError` when the email is taken, plus whatever the
        auth service raises in real mode.
        """

        status = self._configuration.probe()
        if isinstance(status, Unconfigured):
            logger.info("Backend not configured, creating a demo account")
            identity = self._demo.register(email, display_name)
            profile = await self._local_profiles.create_profile(identity, SEED_BALANCE_ALT)
            await self._enter_demo(identity, profile)
            self._notifier.success("Demo account created successfully! Welcome to TradeKaro!")
            return identity

        backend = await self._enter_real(status)
        identity = await backend.auth.create_identity(email, password, display_name)
        await self._ensure_real_profile(identity)
        self._notifier.success("Account created successfully! Welcome to TradeKaro!")
        return identity

    async def sign_in(self, email: str, password: str) -> Identity:
        """
        Sign in with email and password.

        In demo mode passwords are not checked and every pair succeeds;
        only the demo account's own credentials also mark onboarding as
        done.
        """

        status = self._configuration.probe()
        if isinstance(status, Unconfigured):
            return await self._demo_sign_in(email, password)

        backend = await self._enter_real(status)
        identity = await backend.auth.authenticate(email, password)
        await self._ensure_real_profile(identity)
        self._notifier.success("Welcome back to TradeKaro!")
        return identity

    register = sign_up
    login = sign_in

    async def sign_in_external(self, context: ExternalContext) -> Identity:
        """Sign in through an external provider account. Real mode only."""

        status = self._configuration.probe()
        if isinstance(status, Unconfigured):
            raise MisconfiguredError(
                f"Signing in with {context.provider} needs a configured backend: {status.reason}."
            )

        backend = await self._enter_real(status)
        identity = await backend.auth.authenticate_external(
            context.provider,
            context.provider_user_id,
            context.display_name,
            context.email,
        )
        await self._ensure_real_profile(identity)
        self._notifier.success("Welcome to TradeKaro!")
        return identity

    async def logout(self) -> None:
        """Forget the signed-in identity. Stored profiles are left as they are."""

        if self._unsubscribe is not None and self._remote is not None:
            try:
                await self._remote.auth.sign_out()
            except Exception as exc:
                logger.error("Logout error: %s", exc)
                self._notifier.error("Failed to logout")
        self._detach()

        if self._state.is_demo:
            self._demo.forget_active()
        self._publish(phase=SessionPhase.ANONYMOUS, identity=None, profile=None)
        self._notifier.success("Logged out successfully")

    async def _start_demo(self) -> None:
        identity = self._demo.restore_active()
        seed = SEED_BALANCE_PRIMARY if identity == CANONICAL_DEMO_IDENTITY else SEED_BALANCE_ALT
        profile = await self._load_or_create(self._local_profiles, identity, seed)
        self._publish(
            mode=SessionMode.DEMO,
            phase=SessionPhase.DEMO_ACTIVE,
            identity=identity,
            profile=profile,
        )

    async def _demo_sign_in(self, email: str, password: str) -> Identity:
        if email.strip().lower() == DEMO_EMAIL and password == DEMO_PASSWORD:
            identity = CANONICAL_DEMO_IDENTITY
            profile = await self._load_or_create(
                self._local_profiles, identity, SEED_BALANCE_PRIMARY, onboarding_completed=True
            )
            if not profile.onboarding_completed:
                # The demo account skips onboarding.
                profile = await self._local_profiles.update_profile(
                    identity.id, {"onboarding_completed": True}
                )
                profile = replace(profile, last_login=self._clock())
            await self._enter_demo(identity, profile)
            self._notifier.success("Welcome to TradeKaro Demo!")
            return identity

        # Any other pair succeeds: demo mode does not verify passwords. The
        # demo email with another password lands on the demo account as is.
        identity = self._demo.find_by_email(email)
        if identity is None:
            identity = self._demo.register(email, email.split("@")[0])
        seed = SEED_BALANCE_PRIMARY if identity == CANONICAL_DEMO_IDENTITY else SEED_BALANCE_ALT
        profile = await self._load_or_create(self._local_profiles, identity, seed)
        await self._enter_demo(identity, profile)
        self._notifier.success("Demo account ready! Welcome to TradeKaro!")
        return identity

    async def _enter_demo(self, identity: Identity, profile: Profile) -> None:
        if self._state.mode is SessionMode.REAL:
            logger.info("Switching session to demo mode")
            await self._leave_real()
        self._demo.remember_active(identity.id)
        self._publish(
            mode=SessionMode.DEMO,
            phase=SessionPhase.DEMO_ACTIVE,
            identity=identity,
            profile=profile,
        )

    async def _leave_real(self) -> None:
        """
        Sign the real identity out so re-entering real mode later does not
        pick it up again from the identity feed.
        """

        self._detach()
        if self._remote is None:
            return
        try:
            await self._remote.auth.sign_out()
        except Exception as exc:
            logger.error("Sign-out on leaving real mode failed: %s", exc)
            # Reconnect from scratch next time instead of reusing the feed.
            self._remote = None
            self._remote_url = None
            self._remote_profiles = None

    async def _connect(self, status: Configured) -> RemoteBackend:
        if self._remote is not None and self._remote_url == status.database_url:
            return self._remote

        self._detach()
        backend = await self._remote_factory(status.database_url)
        self._remote = backend
        self._remote_url = status.database_url
        self._remote_profiles = RemoteProfileStore(backend.documents, self._clock)
        return backend

    async def _enter_real(self, status: Configured) -> RemoteBackend:
        backend = await self._connect(status)
        if self._unsubscribe is None:
            if self._state.mode is SessionMode.DEMO:
                logger.info("Switching session to real mode")
            if self._state.phase is not SessionPhase.ATTACHING_REAL:
                # Demo identities never carry over into real mode.
                self._publish(
                    mode=SessionMode.REAL,
                    phase=SessionPhase.ATTACHING_REAL,
                    identity=None,
                    profile=None,
                )
            self._unsubscribe = await backend.auth.subscribe(self._on_identity_changed)
        return backend

    def _detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def _on_identity_changed(self, identity: Optional[Identity]) -> None:
        if identity is None:
            self._publish(phase=SessionPhase.ANONYMOUS, identity=None, profile=None)
            return

        current = self._state.profile
        if current is not None and current.identity_id == identity.id:
            return

        try:
            profile = await self._load_or_create(
                self._remote_profiles, identity, SEED_BALANCE_PRIMARY
            )
        except Exception as exc:
            self._fail(exc)
            return
        self._publish(
            mode=SessionMode.REAL,
            phase=SessionPhase.AUTHENTICATED,
            identity=identity,
            profile=profile,
        )

    async def _ensure_real_profile(self, identity: Identity) -> Profile:
        """
        Make sure the session holds `identity`'s profile after an explicit
        auth call. Normally the identity feed has already loaded it; if
        that failed, loading once more here lets the error reach the caller.
        """

        current = self._state.profile
        if current is not None and current.identity_id == identity.id:
            return current

        profile = await self._load_or_create(self._remote_profiles, identity, SEED_BALANCE_PRIMARY)
        self._publish(
            mode=SessionMode.REAL,
            phase=SessionPhase.AUTHENTICATED,
            identity=identity,
            profile=profile,
        )
        return profile

    @staticmethod
    async def _load_or_create(
        store: ProfileStore,
        identity: Identity,
        seed_balance: int,
        onboarding_completed: bool = False,
    ) -> Profile:
        profile = await store.load_profile(identity)
        if profile is None:
            logger.info("Creating profile for %s", identity.id)
            profile = await store.create_profile(identity, seed_balance, onboarding_completed)
        return profile

    def _fail(self, exc: BaseException) -> None:
        self.last_error = exc
        logger.error("Error loading user data: %s", exc)
        self._notifier.error("Failed to load user data")
        self._publish(phase=SessionPhase.TRANSIENT_ERROR, identity=None, profile=None)
        self._publish(phase=SessionPhase.ANONYMOUS)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _require_profile(self) -> Profile:
        profile = self._state.profile
        if profile is None:
            raise NotFoundError("No profile is loaded; sign in first.")
        return profile

    def _store(self) -> ProfileStore:
        if self._state.mode is SessionMode.REAL:
            if self._remote_profiles is None:
                raise MisconfiguredError("The remote backend is not connected.")
            return self._remote_profiles
        return self._local_profiles

    async def update_profile(self, partial: Mapping[str, Any]) -> Profile:
        """
        Shallow-merge `partial` into the current profile.

        The merged profile is visible immediately; the returned value is
        that in-memory profile. A failed durable write is reported through
        the notifier and not rolled back.
        """

        profile = self._require_profile()
        coerced = Profile.coerce_partial(partial)
        merged = profile.merged(coerced)
        store = self._store()

        self._publish(profile=merged)
        await self._writes.dispatch(
            store.update_profile(profile.identity_id, coerced),
            description="profile",
        )
        return merged

    async def update_balance(self, new_balance: int) -> None:
        """
        Set the balance. Raises `InvalidBalanceError` (and changes nothing)
        for negative or non-integer values.
        """

        profile = self._require_profile()
        updated = self._ledger.apply(profile, new_balance)
        store = self._store()

        self._publish(profile=updated)
        await self._ledger.persist(updated, store)

    async def adjust_balance(self, delta: int) -> int:
        """Add `delta` (possibly negative) to the balance and return the new value."""

        new_balance = self._ledger.adjusted(self._require_profile(), delta)
        await self.update_balance(new_balance)
        return new_balance
