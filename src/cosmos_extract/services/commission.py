"""Run-scoped validator commission cache."""

import threading
from concurrent.futures import Future

import structlog

from cosmos_extract.services.gateway import RemoteGateway
from cosmos_extract.services.schemas.gateway import ValidatorCommission

logger = structlog.get_logger(__name__)


class CommissionCache:
    """Fetches each validator's commission at most once for the lifetime of a run.

    The first caller for a validator performs the remote lookup; concurrent
    callers for the same validator block on the in-flight result instead
    of issuing their own call. Failures are memoized as well and re-raised
    to every caller. Entries are never refreshed.
    """

    def __init__(self, gateway: RemoteGateway) -> None:
        self.gateway: RemoteGateway = gateway
        self._entries: dict[str, Future[ValidatorCommission]] = {}
        self._lock: threading.Lock = threading.Lock()

    def get(self, validator: str) -> ValidatorCommission:
        with self._lock:
            future: Future[ValidatorCommission] | None = self._entries.get(validator)
            owner: bool = future is None
            if future is None:
                future = Future()
                self._entries[validator] = future

        if owner:
            try:
                commission: ValidatorCommission = self.gateway.commission_of(validator)
            except BaseException as e:  # waiters must never block on an unresolved future
                future.set_exception(e)
            else:
                logger.debug(
                    "Fetched validator commission",
                    validator=validator,
                    rate=str(commission.rate),
                    last_changed=commission.last_changed.isoformat()
                    if commission.last_changed
                    else None,
                )
                future.set_result(commission)

        return future.result()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, validator: object) -> bool:
        with self._lock:
            return validator in self._entries
