"""Simulated threshold network orchestrator.

Creates n participants with long-term keys, runs the DKG among all of
them and signing sessions among a quorum, delivering messages over a
SimMessageBus. Missing messages are handled the way a deployment would:
once the bus goes idle, the deadline of the earliest unfinished round fires.
"""

import logging
import random as _random

from tdkg.config import ThresholdConfig
from tdkg.dss import SigningRound
from tdkg.transcript import derive_session_id
from sim.core.message_bus import SimMessageBus
from sim.network.sim_node import SimNode

logger = logging.getLogger(__name__)


class SimNetwork:
    """Orchestrates n participants through DKG and signing."""

    def __init__(self, n: int, t: int = None, seed: int = 42, wire: bool = True):
        self.config = (ThresholdConfig(n, t) if t is not None
                       else ThresholdConfig.with_default_threshold(n))
        self.seed = seed
        self.rng = _random.Random(seed)
        self.bus = SimMessageBus(wire=wire)

        self.nodes: dict[int, SimNode] = {}
        for i in self.config.participant_ids:
            self.nodes[i] = SimNode(i, _random.Random(seed + i))
        self.roster = {i: node.public_key for i, node in self.nodes.items()}
        self._sessions = 0

    @property
    def n(self) -> int:
        return self.config.n

    @property
    def t(self) -> int:
        return self.config.t

    def new_session_id(self, label: bytes) -> bytes:
        self._sessions += 1
        return derive_session_id(label, self.seed.to_bytes(8, 'big'),
                                 self._sessions.to_bytes(4, 'big'))

    def _register(self, ids):
        self.bus.clear_handlers()
        for i in ids:
            self.bus.register_handler(i, self.nodes[i].receive_message)

    def add_hook(self, hook):
        self.bus.add_hook(hook)

    # -- DKG ---------------------------------------------------------------

    def run_dkg(self, session_id: bytes = None, max_deadlines: int = 6) -> dict:
        """Run the DKG among all participants.

        Deadlines fire one round at a time: only the sessions in the
        earliest unfinished round expire, the others are still within
        their own round's window.

        Returns {participant id: KeyPackage} for those that completed.
        """
        session_id = session_id or self.new_session_id(b'sim-dkg')
        self._register(self.nodes)
        for i, node in self.nodes.items():
            self.bus.route(i, node.start_dkg(session_id, self.config, self.roster))
        self.bus.run_until_idle()

        for _ in range(max_deadlines):
            pending = [node for node in self.nodes.values() if not node.dkg.finished]
            if not pending:
                break
            earliest = min(node.dkg.state.value for node in pending)
            due = [node for node in pending if node.dkg.state.value == earliest]
            logger.info("dkg deadline: %d of %d unfinished sessions expire",
                        len(due), len(pending))
            for node in due:
                self.bus.route(node.node_id, node.expire())
            self.bus.run_until_idle()
        return {i: node.key_package for i, node in self.nodes.items()
                if node.key_package is not None}

    # -- signing -----------------------------------------------------------

    def run_signing(self, message: bytes, quorum, session_id: bytes = None,
                    max_attempts: int = 3) -> dict:
        """Sign message with the given quorum, retrying without flagged signers.

        Returns {signer id: FinalSignature} for signers that completed.
        """
        session_id = session_id or self.new_session_id(b'sim-sign')
        quorum = sorted(quorum)
        self._register(quorum)
        for i in quorum:
            self.bus.route(i, self.nodes[i].start_signing(session_id, message, quorum))
        self.bus.run_until_idle()

        for _ in range(max_attempts - 1):
            retrying = [self.nodes[i] for i in quorum
                        if self.nodes[i].signing.state == SigningRound.COMBINE]
            if not retrying:
                break
            outbound = [(node.node_id, node.retry_signing()) for node in retrying]
            for src, messages in outbound:
                self.bus.route(src, messages)
            self.bus.run_until_idle()
        return {i: self.nodes[i].signature for i in quorum
                if self.nodes[i].signature is not None}

    # -- queries -----------------------------------------------------------

    def excluded_by(self, node_id: int) -> dict:
        return dict(self.nodes[node_id].dkg.excluded)

    def group_public_keys(self) -> set:
        return {node.key_package.group_public_key.encode() for node in self.nodes.values()
                if node.key_package is not None}
