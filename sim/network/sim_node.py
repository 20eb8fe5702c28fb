"""Simulated participant wrapping the real protocol sessions.

Each SimNode holds:
- Long-term key (roster entry, channel keys, share signatures)
- The current DKG session and its resulting KeyPackage
- The current signing session and a NonceTracker shared across them

Sessions refuse messages for a later round. The node keeps those and
replays them after every state change, as a deployment's inbox would.
"""

import logging
import random as _random

from tdkg.dkg import DKGSession
from tdkg.dss import NonceTracker, SigningSession
from tdkg.errors import AuthenticationFailed, SessionStateError, ThresholdError
from tdkg.schnorr import LongTermKey

logger = logging.getLogger(__name__)


class SimNode:
    """A simulated participant with real protocol logic."""

    def __init__(self, node_id: int, rng=None):
        self.node_id = node_id
        self.rng = rng or _random.Random(node_id)
        self.long_term_key = LongTermKey.generate(self.rng)

        self.dkg: DKGSession = None
        self.key_package = None

        self.signing: SigningSession = None
        self.nonce_tracker = NonceTracker()

        self.inbox: list = []
        self.deferred: list = []  # refused by the session's current state
        self.rejected: list = []  # (message, error) pairs not accepted
        self.error: ThresholdError = None

    @property
    def public_key(self):
        return self.long_term_key.public

    @property
    def session(self):
        return self.signing if self.signing is not None else self.dkg

    def start_dkg(self, session_id: bytes, config, roster: dict) -> list:
        self.dkg = DKGSession(session_id, config, self.node_id, self.long_term_key,
                              roster, self.rng)
        self.key_package = None
        self.signing = None
        self.error = None
        self.deferred = []
        return self._run(self.dkg.start)

    def start_signing(self, session_id: bytes, message: bytes, quorum) -> list:
        if self.key_package is None:
            raise RuntimeError(f"Node {self.node_id} has no key package")
        self.signing = SigningSession(session_id, self.key_package, message, quorum,
                                      self.rng, self.nonce_tracker)
        self.error = None
        self.deferred = []
        return self._run(self.signing.start)

    def receive_message(self, message) -> list:
        """Bus handler: feed the active session, return its outbound messages."""
        self.inbox.append(message)
        session = self.session
        if session is None or session.finished:
            return []
        try:
            outbound = self._run(session.receive, message)
        except AuthenticationFailed as e:
            logger.debug("node %d rejected %s: %s", self.node_id, type(message).__name__, e)
            self.rejected.append((message, e))
            return []
        except SessionStateError as e:
            logger.debug("node %d deferred %s: %s", self.node_id, type(message).__name__, e)
            self.deferred.append(message)
            return []
        return outbound + self._replay()

    def expire(self) -> list:
        """Round deadline for the DKG session."""
        if self.dkg is None or self.dkg.finished:
            return []
        return self._run(self.dkg.expire) + self._replay()

    def retry_signing(self) -> list:
        return self._run(self.signing.retry) + self._replay()

    def _replay(self) -> list:
        """Offer deferred messages again until none is accepted."""
        outbound = []
        progress = True
        while progress and self.deferred:
            progress = False
            session = self.session
            if session.finished:
                break
            waiting, self.deferred = self.deferred, []
            for message in waiting:
                try:
                    outbound.extend(self._run(session.receive, message))
                    progress = True
                except SessionStateError:
                    self.deferred.append(message)
                except AuthenticationFailed as e:
                    self.rejected.append((message, e))
        return outbound

    def _run(self, fn, *args) -> list:
        try:
            step = fn(*args)
        except (AuthenticationFailed, SessionStateError):
            raise
        except ThresholdError as e:
            logger.info("node %d stopped: %s", self.node_id, e)
            self.error = e
            return []
        if self.signing is None and self.dkg is not None and self.dkg.key_package is not None:
            self.key_package = self.dkg.key_package
        return step.outbound

    @property
    def signature(self):
        return self.signing.signature if self.signing is not None else None
