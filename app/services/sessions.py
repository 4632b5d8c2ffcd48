"""One store session per signed-in identity.

A session owns the IdentityService, the CartService and the
CheckoutOrchestrator of that identity. It is built on the first request of
the identity and dropped on sign-out.
"""
import logging
import threading
from typing import Dict

from ..profiles import ensure_profile
from .cart_service import CartService
from .checkout import CheckoutOrchestrator
from .identity import Identity, IdentityService

logger = logging.getLogger(__name__)


class StoreSession:
    def __init__(self, identity: Identity) -> None:
        self.identity = IdentityService()
        self.cart = CartService(self.identity)
        self.checkout = CheckoutOrchestrator(self.identity, self.cart)
        self.identity.sign_in(identity)
        self.cart.load()

    @property
    def user_id(self) -> str:
        return self.identity.require().id

    def close(self) -> None:
        self.identity.sign_out()


class SessionManager:
    def __init__(self) -> None:
        self._sessions: Dict[str, StoreSession] = {}
        self._lock = threading.Lock()

    def get(self, identity: Identity) -> StoreSession:
        with self._lock:
            session = self._sessions.get(identity.id)
            if session is None:
                ensure_profile(identity.id, identity.email, identity.full_name)
                session = StoreSession(identity)
                self._sessions[identity.id] = session
                logger.info(f"🆕 Session started for {identity.id}")
            return session

    def end(self, user_id: str) -> bool:
        with self._lock:
            session = self._sessions.pop(user_id, None)
        if session is None:
            return False
        session.close()
        logger.info(f"🔚 Session ended for {user_id}")
        return True

    def clear(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()


sessions = SessionManager()
