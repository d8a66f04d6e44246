import logging
import threading
import uuid
from collections import OrderedDict
from typing import Optional

from .config import settings
from .models.schema import ComputedPrescriptionModel
from .services.acquisition import DeviceCapabilities, SingleEyeBuilder
from .services.rounding_policy import get_outlier_policy, get_rounding_policy

log = logging.getLogger(__name__)


class SessionNotFound(KeyError):
    pass


class SessionStore:
    """In-memory per-eye test sessions, oldest evicted first once full."""

    def __init__(self, max_sessions: int = settings.max_sessions):
        self.max_sessions = max_sessions
        self._sessions: "OrderedDict[str, SingleEyeBuilder]" = OrderedDict()
        self._lock = threading.Lock()

    def create(self, device: Optional[DeviceCapabilities] = None,
               rounding_policy: Optional[str] = None,
               outlier_policy: Optional[str] = None,
               state: Optional[ComputedPrescriptionModel] = None) -> SingleEyeBuilder:
        session_id = uuid.uuid4().hex
        if device is None:
            device = DeviceCapabilities(default_starting_power=settings.default_starting_power)

        builder = SingleEyeBuilder(
            device,
            prescription=state.to_domain() if state is not None else None,
            rounding_policy=get_rounding_policy(rounding_policy or settings.rounding_policy),
            outlier_policy=get_outlier_policy(outlier_policy or settings.outlier_policy),
            session_id=session_id,
        )

        with self._lock:
            self._sessions[session_id] = builder
            while len(self._sessions) > self.max_sessions:
                evicted, _ = self._sessions.popitem(last=False)
                log.info(f"Evicted session {evicted}")

        log.info("Session created", extra={"session_id": session_id})
        return builder

    def get(self, session_id: str) -> SingleEyeBuilder:
        with self._lock:
            builder = self._sessions.get(session_id)
        if builder is None:
            raise SessionNotFound(session_id)
        return builder

    def delete(self, session_id: str) -> None:
        with self._lock:
            if self._sessions.pop(session_id, None) is None:
                raise SessionNotFound(session_id)
        log.info("Session deleted", extra={"session_id": session_id})

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


SESSIONS = SessionStore()
