import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

LOGGER = logging.getLogger(__name__)


class ConfigurationError(RuntimeError):
    pass


@dataclass
class Credential:
    name: str
    key: str
    last_used: Optional[datetime] = None
    success_count: int = 0
    error_count: int = 0
    is_active: bool = True

    @property
    def attempts(self) -> int:
        return self.success_count + self.error_count

    def __repr__(self) -> str:
        # Keep the secret out of logs and tracebacks.
        return (
            f"Credential(name={self.name!r}, success_count={self.success_count}, "
            f"error_count={self.error_count}, is_active={self.is_active})"
        )


class CredentialPool:
    """Round-robin pool of API credentials shared by concurrent dispatches.

    The cursor walks the full pool while ``current()`` indexes into the active
    subset. Errors are counted but never deactivate a credential; if every
    credential has been switched off by an operator, the next lookup switches
    them all back on instead of leaving the pool unusable.
    """

    def __init__(self, credentials: Sequence[Credential]) -> None:
        if not credentials:
            raise ConfigurationError("No OpenRouter API keys configured.")
        self._credentials: List[Credential] = list(credentials)
        self._cursor = 0
        self._lock = threading.Lock()
        LOGGER.info("Initialized %s API keys for rotation", len(self._credentials))

    def __len__(self) -> int:
        return len(self._credentials)

    def current(self) -> Credential:
        with self._lock:
            return self._current_locked()

    def advance(self) -> Credential:
        with self._lock:
            self._cursor = (self._cursor + 1) % len(self._credentials)
            return self._current_locked()

    def active_count(self) -> int:
        with self._lock:
            return len(self._active_locked())

    def record_success(self, credential: Credential) -> None:
        with self._lock:
            credential.success_count += 1
            credential.last_used = _now_utc()

    def record_error(self, credential: Credential) -> None:
        with self._lock:
            credential.error_count += 1
            credential.last_used = _now_utc()

    def set_active(self, name: str, active: bool) -> bool:
        with self._lock:
            for credential in self._credentials:
                if credential.name == name:
                    credential.is_active = bool(active)
                    return True
        return False

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            total_success = sum(c.success_count for c in self._credentials)
            total_attempts = sum(c.attempts for c in self._credentials)
            return {
                "total_credentials": len(self._credentials),
                "active_credentials": sum(1 for c in self._credentials if c.is_active),
                "total_attempts": total_attempts,
                "success_rate": (total_success / total_attempts) if total_attempts else 0.0,
                "credentials": [
                    {
                        "name": c.name,
                        "success_count": c.success_count,
                        "error_count": c.error_count,
                        "is_active": c.is_active,
                        "last_used": c.last_used.isoformat() if c.last_used else None,
                    }
                    for c in self._credentials
                ],
            }

    def _current_locked(self) -> Credential:
        active = self._active_locked()
        return active[self._cursor % len(active)]

    def _active_locked(self) -> List[Credential]:
        active = [c for c in self._credentials if c.is_active]
        if active:
            return active
        LOGGER.warning("No active API keys left; re-enabling all %s keys", len(self._credentials))
        for credential in self._credentials:
            credential.is_active = True
        return list(self._credentials)


def _now_utc() -> datetime:
    return datetime.now(tz=timezone.utc)
