"""
Vault Authentication — PIN unlock state machine with brute-force lockout.

States (exactly one is active, initial ``Initializing``):

- ``Initializing``: startup, vault existence unknown.
- ``NotConfigured``: no local vault credentials.
- ``Locked(failed_attempts, lockout_until)``: waiting for a PIN.
- ``Unlocked(master_key)``: the only state that holds the master key.
- ``Errored(cause)``: unrecoverable storage or key-derivation failure.

The ``Authenticator`` owns every transition. Leaving ``Unlocked`` always
wipes the master key it held. Lockout is decided from ``failed_attempts``
and the wall clock only, so the passage of time alone clears it.

Security Note:
    Never log PINs or key material; log state names and counters only.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Union
from datetime import datetime, timedelta, timezone

from .. import conf
from ..result import Failure, Result, Success
from .config import LockoutPolicy
from .crypto import CryptoService, MasterKey
from .errors import (
    AuthError,
    KeyDerivationError,
    LockedOutError,
    SetupValidationError,
    StorageError,
    VaultStateError,
    WrongPinError,
)
from .storage import CredentialStore


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Initializing:
    pass


@dataclass(frozen=True)
class NotConfigured:
    pass


@dataclass(frozen=True)
class Locked:
    failed_attempts: int = 0
    lockout_until: Optional[datetime] = None

    def is_locked_out(self, now: Optional[datetime] = None) -> bool:
        if self.lockout_until is None:
            return False
        return (now or _utcnow()) < self.lockout_until

    def remaining_lockout(self, now: Optional[datetime] = None) -> Optional[timedelta]:
        if self.lockout_until is None:
            return None
        remaining = self.lockout_until - (now or _utcnow())
        return remaining if remaining > timedelta(0) else None


@dataclass(frozen=True)
class Unlocked:
    master_key: MasterKey


@dataclass(frozen=True)
class Errored:
    cause: AuthError


AuthState = Union[Initializing, NotConfigured, Locked, Unlocked, Errored]

StateListener = Callable[[AuthState], None]


class Authenticator:
    """PIN authentication lifecycle.

    Public API:
    - ``state`` / ``subscribe(listener)`` — observe the current AuthState
    - ``initialize()`` — probe local credentials
    - ``setup(pin, salt)`` — first-time configuration
    - ``submit_pin(pin)`` — unlock attempt, subject to lockout
    - ``lock()`` — discard the master key
    - ``retry()`` / ``reset()`` — leave ``Errored`` / forget the vault
    """

    def __init__(
        self,
        credentials: CredentialStore,
        crypto: Optional[CryptoService] = None,
        policy: Optional[LockoutPolicy] = None,
        clock: Callable[[], datetime] = _utcnow,
        logger: Optional[logging.Logger] = None,
        pin_length: int = conf.VAULT_PIN_LENGTH,
    ):
        self._credentials = credentials
        self._crypto = crypto or CryptoService()
        self._policy = policy or LockoutPolicy()
        self._clock = clock
        self._logger = logger or logging.getLogger("navigator.vault.auth")
        self._pin_length = pin_length
        self._state: AuthState = Initializing()
        self._listeners: list[StateListener] = []
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Observable state
    # ------------------------------------------------------------------

    @property
    def state(self) -> AuthState:
        return self._state

    @property
    def policy(self) -> LockoutPolicy:
        return self._policy

    @property
    def master_key(self) -> Optional[MasterKey]:
        """The live master key, only while ``Unlocked``."""
        if isinstance(self._state, Unlocked):
            return self._state.master_key
        return None

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register a listener called with every new state.

        Returns:
            A callable that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _transition(self, new_state: AuthState) -> None:
        old_state = self._state
        if isinstance(old_state, Unlocked) and not (
            isinstance(new_state, Unlocked)
            and new_state.master_key is old_state.master_key
        ):
            old_state.master_key.wipe()
        self._state = new_state
        self._logger.debug(
            "Auth state %s -> %s",
            type(old_state).__name__,
            type(new_state).__name__,
        )
        for listener in list(self._listeners):
            try:
                listener(new_state)
            except Exception as err:
                self._logger.error("Auth state listener failed: %s", err)

    def _fail(self, cause: AuthError) -> Result[MasterKey, AuthError]:
        self._logger.error("Authentication error: %s", cause.message)
        self._transition(Errored(cause))
        return Failure(cause)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> AuthState:
        """Resolve ``Initializing`` into NotConfigured, Locked or Errored.

        Persisted failure counters are restored, so a lockout survives a
        restart.
        """
        if not isinstance(self._state, Initializing):
            raise VaultStateError(
                f"Cannot initialize while {type(self._state).__name__}"
            )
        try:
            if not await self._credentials.is_configured():
                self._transition(NotConfigured())
                return self._state
            failed = await self._credentials.get_failed_attempts()
            until = await self._credentials.get_lockout_until()
        except Exception as err:
            self._fail(StorageError(str(err)))
            return self._state
        self._transition(Locked(failed_attempts=failed, lockout_until=until))
        return self._state

    async def retry(self) -> AuthState:
        """Leave ``Errored`` by probing storage again."""
        if not isinstance(self._state, Errored):
            raise VaultStateError(
                f"Nothing to retry while {type(self._state).__name__}"
            )
        self._transition(Initializing())
        return await self.initialize()

    def validate_pin(self, pin: str) -> Optional[SetupValidationError]:
        if len(pin) != self._pin_length or not pin.isdigit():
            return SetupValidationError(
                f"PIN must be exactly {self._pin_length} digits"
            )
        return None

    async def setup(self, pin: str, salt: bytes) -> Result[MasterKey, AuthError]:
        """Configure the vault for the first time and unlock it.

        Args:
            pin: New PIN (digits only, ``pin_length`` long).
            salt: Vault KDF salt, shared with other devices.

        Returns:
            Success(MasterKey), or Failure(SetupValidationError) leaving the
            state untouched, or Failure(KeyDerivationError | StorageError)
            with a transition to ``Errored``.
        """
        async with self._lock:
            if not isinstance(self._state, (NotConfigured, Errored)):
                raise VaultStateError(
                    f"Cannot set up the vault while {type(self._state).__name__}"
                )
            invalid = self.validate_pin(pin)
            if invalid is not None:
                return Failure(invalid)
            derived = await self._crypto.derive_key_async(pin, salt)
            if derived.is_failure:
                return self._fail(KeyDerivationError(derived.error_or_none.message))
            master_key = derived.unwrap()
            try:
                await self._credentials.set_salt(salt)
                await self._credentials.set_pin_hash(self._crypto.hash_pin(pin, salt))
                await self._credentials.clear_lockout()
            except Exception as err:
                master_key.wipe()
                return self._fail(StorageError(str(err)))
            self._logger.info("Vault configured and unlocked")
            self._transition(Unlocked(master_key))
            return Success(master_key)

    async def submit_pin(self, pin: str) -> Result[MasterKey, AuthError]:
        """Attempt to unlock with ``pin``.

        While locked out the attempt is rejected before any verification and
        does not count as a failure.

        Returns:
            Success(MasterKey) on unlock; Failure(WrongPinError) or
            Failure(LockedOutError) leaving the vault ``Locked``;
            Failure(StorageError | KeyDerivationError) on unrecoverable errors.
        """
        async with self._lock:
            state = self._state
            if not isinstance(state, Locked):
                raise VaultStateError(
                    f"Cannot submit a PIN while {type(state).__name__}"
                )
            now = self._clock()
            if state.is_locked_out(now):
                remaining = state.remaining_lockout(now)
                self._logger.warning(
                    "PIN rejected: locked out for %d more seconds",
                    int(remaining.total_seconds()),
                )
                return Failure(LockedOutError(remaining))
            try:
                salt = await self._credentials.get_salt()
                pin_hash = await self._credentials.get_pin_hash()
            except Exception as err:
                return self._fail(StorageError(str(err)))
            if salt is None or pin_hash is None:
                self._logger.warning("Vault credentials missing, setup required")
                self._transition(NotConfigured())
                return Failure(StorageError("Vault credentials not found"))
            if not self._crypto.verify_pin(pin, salt, pin_hash):
                return await self._record_failure(state, now)
            derived = await self._crypto.derive_key_async(pin, salt)
            if derived.is_failure:
                return self._fail(KeyDerivationError(derived.error_or_none.message))
            master_key = derived.unwrap()
            try:
                await self._credentials.clear_lockout()
            except Exception as err:
                master_key.wipe()
                return self._fail(StorageError(str(err)))
            self._logger.info("Vault unlocked")
            self._transition(Unlocked(master_key))
            return Success(master_key)

    async def _record_failure(
        self,
        state: Locked,
        now: datetime,
    ) -> Result[MasterKey, AuthError]:
        failed = state.failed_attempts + 1
        duration = self._policy.lockout_duration(failed)
        until = now + duration if duration is not None else None
        try:
            await self._credentials.set_failed_attempts(failed)
            if until is not None:
                await self._credentials.set_lockout_until(until)
        except Exception as err:
            return self._fail(StorageError(str(err)))
        self._transition(Locked(failed_attempts=failed, lockout_until=until))
        if duration is None:
            remaining = self._policy.attempts_remaining(failed)
            self._logger.warning(
                "Wrong PIN (%d failed, %d remaining)", failed, remaining
            )
            return Failure(WrongPinError(remaining))
        self._logger.warning(
            "Wrong PIN (%d failed), locked out for %d seconds",
            failed, int(duration.total_seconds()),
        )
        return Failure(LockedOutError(duration))

    def lock(self) -> AuthState:
        """Discard the master key (explicit lock, idle timeout, suspension).

        No-op unless ``Unlocked``.
        """
        if isinstance(self._state, Unlocked):
            self._transition(Locked(failed_attempts=0))
            self._logger.info("Vault locked")
        return self._state

    async def reset(self) -> AuthState:
        """Forget local vault credentials and return to ``NotConfigured``."""
        async with self._lock:
            try:
                await self._credentials.clear_all()
            except Exception as err:
                self._fail(StorageError(str(err)))
                return self._state
            self._logger.info("Vault credentials reset")
            self._transition(NotConfigured())
            return self._state
