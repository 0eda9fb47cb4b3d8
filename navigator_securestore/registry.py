"""Registry of domains held by live Storage instances."""
import logging
import threading

from .exceptions import DomainInUseError

logger = logging.getLogger("navigator.securestore")


class DomainRegistry:
    """Tracks which domain hashes are held by a live Storage.

    A composition root may own its own registry; ``default_registry`` is
    used by every Storage constructed without one.
    """

    def __init__(self) -> None:
        self._active: dict[str, str] = {}
        self._lock = threading.Lock()

    def acquire(self, domain_id: str, name: str) -> None:
        """Mark ``domain_id`` as held.

        Raises:
            DomainInUseError: If another live Storage holds the domain.
        """
        with self._lock:
            if domain_id in self._active:
                raise DomainInUseError(
                    f"Storage already instantiated with this domain: {name}"
                )
            self._active[domain_id] = name
        logger.debug("Domain %s acquired", domain_id)

    def release(self, domain_id: str) -> None:
        with self._lock:
            if self._active.pop(domain_id, None) is not None:
                logger.debug("Domain %s released", domain_id)

    def active(self) -> list[str]:
        with self._lock:
            return sorted(self._active)

    def __contains__(self, domain_id: object) -> bool:
        with self._lock:
            return domain_id in self._active

    def __len__(self) -> int:
        with self._lock:
            return len(self._active)


default_registry = DomainRegistry()
