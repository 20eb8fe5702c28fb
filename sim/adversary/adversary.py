"""Adversary behaviours for DKG and signing runs.

Each adversary controls a set of corrupt participants and acts either
through a bus hook (rewriting or dropping messages in flight) or by
producing the corrupt participant's own messages.
"""

from dataclasses import replace

from tdkg import schnorr
from tdkg.dkg import COMPLAINT_ROUND, complaint_context
from tdkg.group import default_group
from tdkg.messages import (
    Complaint, ComplaintEvidence, EncryptedShare, EvidenceKind, Justification,
    PartialSignature, ShareResponse,
)
from sim.core.message_bus import AdversaryHook, Envelope


class Adversary:
    """Base adversary that controls a set of corrupt participants."""

    def __init__(self, corrupt_ids: list = None):
        self.corrupt_ids: set = set(corrupt_ids or [])
        self.observed_messages: list = []

    def add_corrupt(self, node_id: int):
        self.corrupt_ids.add(node_id)

    def is_corrupt(self, node_id: int) -> bool:
        return node_id in self.corrupt_ids

    def get_hook(self) -> 'AdversaryMessageHook':
        return AdversaryMessageHook(self)

    def tamper(self, env: Envelope) -> Envelope:
        """Rewrite a message sent by a corrupt participant. Default: pass through."""
        return env


class AdversaryMessageHook(AdversaryHook):
    """Records traffic touching corrupt participants and applies tamper()."""

    def __init__(self, adversary: Adversary):
        self.adversary = adversary

    def on_send(self, env: Envelope):
        if env.src in self.adversary.corrupt_ids or env.dst in self.adversary.corrupt_ids:
            self.adversary.observed_messages.append(env)
        if env.src in self.adversary.corrupt_ids:
            return self.adversary.tamper(env)
        return env


class SilentAdversary(Adversary):
    """Corrupt participants never get their messages out (crash or partition)."""

    def tamper(self, env: Envelope):
        return None


class BadShareDealer(Adversary):
    """Corrupt dealers send a validly sealed and signed but wrong share.

    Re-seals through the corrupt node's live DKG session; victims
    defaults to every receiver.
    """

    def __init__(self, corrupt_ids: list, nodes: dict, rng, victims: list = None):
        super().__init__(corrupt_ids)
        self.nodes = nodes
        self.rng = rng
        self.victims = set(victims) if victims is not None else None

    def tamper(self, env: Envelope):
        msg = env.message
        if not isinstance(msg, EncryptedShare):
            return env
        if self.victims is not None and msg.receiver_id not in self.victims:
            return env
        session = self.nodes[env.src].dkg
        wrong = session.group.random_scalar(self.rng)
        env.message = session._seal_share(msg.receiver_id, wrong)
        return env


class ShareWithholder(Adversary):
    """Corrupt dealers never send their share to the victims.

    With justify=False they also suppress the Justification that would
    reveal the withheld share.
    """

    def __init__(self, corrupt_ids: list, victims: list, justify: bool = True):
        super().__init__(corrupt_ids)
        self.victims = set(victims)
        self.justify = justify

    def tamper(self, env: Envelope):
        msg = env.message
        if isinstance(msg, EncryptedShare) and msg.receiver_id in self.victims:
            return None
        if isinstance(msg, Justification) and not self.justify:
            return None
        return env


class FalseAccuser(Adversary):
    """Corrupt participants accuse honest dealers of sending bad shares.

    The complaint carries the honest share exactly as received and a
    valid DH proof, so re-checking it shows the share was fine.
    """

    def __init__(self, corrupt_ids: list, nodes: dict, rng, accused: list):
        super().__init__(corrupt_ids)
        self.nodes = nodes
        self.rng = rng
        self.accused = list(accused)

    def tamper(self, env: Envelope):
        msg = env.message
        if not isinstance(msg, ShareResponse):
            return env
        session = self.nodes[env.src].dkg
        me = session.participant_id
        complaints = list(msg.complaints)
        for target in self.accused:
            es = session.encrypted_shares[target]
            shared, proof = schnorr.prove_dleq(
                session.long_term_key, session.roster[target], self.rng,
                context=complaint_context(session.session_id, target, me))
            evidence = ComplaintEvidence(EvidenceKind.VERIFICATION, es, shared, proof)
            complaints.append(Complaint(session.session_id, me, target, COMPLAINT_ROUND,
                                        evidence))
        env.message = replace(msg, complaints=tuple(complaints))
        return env


class PartialSignatureCorruptor(Adversary):
    """Corrupt signers publish z_i + delta instead of their real share."""

    def __init__(self, corrupt_ids: list, delta: int = 1):
        super().__init__(corrupt_ids)
        self.delta = delta
        self.group = default_group()

    def tamper(self, env: Envelope):
        msg = env.message
        if isinstance(msg, PartialSignature):
            env.message = replace(msg, z_i=self.group.add(msg.z_i, self.delta))
        return env
