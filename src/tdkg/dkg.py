"""Distributed Key Generation: one participant's state machine.

Feldman-verifiable DKG without a trusted dealer. Each participant runs
its own DKGSession and exchanges messages through a caller-supplied
authenticated channel:

1. Round 1: sample a polynomial, broadcast its commitments, send every
   peer an encrypted and signed share.
2. Round 2: decrypt and verify received shares; broadcast a ShareResponse
   carrying a Complaint (with re-checkable evidence) per bad share, and a
   MISSING complaint per share that never arrived with a valid signature.
   Every participant re-verifies every attributable complaint: a justified
   one excludes the accused, an unjustified one the accuser. A dealer
   named in a MISSING complaint broadcasts a Justification revealing that
   share, which everyone Feldman-checks; a bad or absent reveal excludes
   the dealer.
3. Round 3: the qualified participants' shares are summed into the
   aggregate secret share and their constant-term commitments into the
   group public key.

Peers are only ever excluded on broadcast data, so every honest
participant reaches the same qualified set.

The session never blocks and never does I/O: receive() consumes one
message and returns the messages to send.
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional

from tdkg import schnorr, shamir
from tdkg.channel import ChannelTable, derive_key, open_sealed, associated_data
from tdkg.codec import Reader, Writer
from tdkg.config import ThresholdConfig
from tdkg.errors import (
    AuthenticationFailed, InvalidEncoding, SessionStateError, ThresholdError,
    ThresholdNotMet,
)
from tdkg.group import Group, default_group
from tdkg.messages import (
    CommitmentBroadcast, Complaint, ComplaintEvidence, EncryptedShare,
    EvidenceKind, Justification, ShareResponse,
)
from tdkg.secret import SecretScalar, wipe_all

logger = logging.getLogger(__name__)

COMPLAINT_ROUND = 2


class DKGRound(Enum):
    INIT = 0
    ROUND1 = 1
    ROUND2 = 2
    JUSTIFY = 3
    ROUND3 = 4
    COMPLETE = 5
    ABORTED = 6


_TERMINAL = (DKGRound.COMPLETE, DKGRound.ABORTED)


@dataclass
class Step:
    """Outcome of feeding a session: its state, messages to send, result."""

    state: Enum
    outbound: list = field(default_factory=list)
    result: Optional[object] = None


def _short(session_id: bytes) -> str:
    return session_id[:4].hex()


def complaint_context(session_id: bytes, accused: int, accuser: int) -> bytes:
    return session_id + accused.to_bytes(4, 'big') + accuser.to_bytes(4, 'big')


class KeyPackage:
    """What a participant keeps after a successful DKG.

    secret_share never leaves the owning process; everything else is
    public and identical at every qualified participant.
    """

    def __init__(self, participant_id: int, config: ThresholdConfig,
                 secret_share: SecretScalar, group_public_key, commitments: dict,
                 verification_points: dict, qualified: tuple, group: Group = None):
        self.participant_id = participant_id
        self.config = config
        self.secret_share = secret_share
        self.group_public_key = group_public_key
        self.commitments = commitments
        self.verification_points = verification_points
        self.qualified = tuple(qualified)
        self.group = group or default_group()

    @property
    def threshold(self) -> int:
        return self.config.t

    @property
    def verification_point(self):
        return self.verification_points[self.participant_id]

    def wipe(self):
        self.secret_share.wipe()

    def _write(self, w: Writer):
        w.u32(self.participant_id).u32(self.config.n).u32(self.config.t)
        w.scalar(self.secret_share.value)
        w.point(self.group_public_key)
        w.u32_list(self.qualified)
        for pid in self.qualified:
            w.points(self.commitments[pid])
        for pid in self.qualified:
            w.point(self.verification_points[pid])

    @classmethod
    def _read(cls, r: Reader) -> 'KeyPackage':
        pid, n, t = r.u32(), r.u32(), r.u32()
        secret = SecretScalar(r.scalar())
        group_key = r.point()
        qualified = r.u32_list()
        commitments = {q: r.points() for q in qualified}
        points = {q: r.point() for q in qualified}
        try:
            config = ThresholdConfig(n, t)
        except ValueError as e:
            raise InvalidEncoding(str(e)) from None
        return cls(pid, config, secret, group_key, commitments, points, qualified, r.group)

    def to_bytes(self) -> bytes:
        w = Writer(self.group)
        self._write(w)
        return w.getvalue()

    @classmethod
    def from_bytes(cls, data: bytes, group: Group = None) -> 'KeyPackage':
        r = Reader(data, group)
        pkg = cls._read(r)
        r.finish()
        return pkg


def verify_complaint(complaint: Complaint, session_id: bytes, roster: dict,
                     commitments: dict, group: Group = None) -> bool:
    """Independently re-check a complaint. True means the accused cheated.

    The encrypted share must carry the accused's signature and the DH
    point must be proven against the accuser's long-term key; otherwise
    the complaint cannot be attributed and is unjustified.

    MISSING complaints carry no evidence; they are settled by the
    accused's Justification (see verify_justification) and raise
    ValueError here.
    """
    group = group or default_group()
    accuser, accused = complaint.accuser_id, complaint.accused_id
    ev = complaint.evidence
    es = ev.encrypted_share

    if ev.kind == EvidenceKind.MISSING:
        raise ValueError("MISSING complaints are settled by a Justification")
    if es is None or ev.shared_point is None or ev.proof is None:
        return False
    if accuser == accused or accuser not in roster or accused not in roster:
        return False
    if complaint.session_id != session_id or es.session_id != session_id:
        return False
    if es.sender_id != accused or es.receiver_id != accuser:
        return False
    if not schnorr.verify(roster[accused], es.signing_payload(), es.signature,
                          context=session_id, group=group):
        return False
    if not schnorr.verify_dleq(roster[accuser], roster[accused], ev.shared_point, ev.proof,
                               context=complaint_context(session_id, accused, accuser),
                               group=group):
        return False

    key = derive_key(ev.shared_point, session_id, accused, accuser, group)
    try:
        plaintext = open_sealed(key, es.nonce, es.ciphertext, es.tag,
                                associated_data(session_id, accused, accuser))
    except AuthenticationFailed:
        return True
    try:
        value = group.decode_scalar(plaintext)
    except InvalidEncoding:
        return True
    accused_commitments = commitments.get(accused)
    if accused_commitments is None:
        return True
    return not shamir.verify_share(value, accused_commitments, accuser, group)


def verify_justification(justification: Justification, commitments: dict,
                         group: Group = None) -> bool:
    """True when the revealed share matches the dealer's commitments."""
    dealer_commitments = commitments.get(justification.dealer_id)
    if dealer_commitments is None:
        return False
    return shamir.verify_share(justification.share_value, dealer_commitments,
                               justification.accuser_id, group or default_group())


class DKGSession:
    """One participant's view of a DKG run.

    Args:
        session_id: Caller-chosen id, identical at every participant.
        config: ThresholdConfig(n, t); participants are indexed 1..n.
        participant_id: This participant's index.
        long_term_key: This participant's tdkg.schnorr.LongTermKey.
        roster: {index: long-term public key} for all n participants.
        rng: Generator handle (getrandbits) for every sampling operation.
    """

    def __init__(self, session_id: bytes, config: ThresholdConfig, participant_id: int,
                 long_term_key, roster: dict, rng, group: Group = None):
        config.check_index(participant_id)
        if sorted(roster) != list(config.participant_ids):
            raise ValueError(f"Roster must list participants 1..{config.n}")
        if roster[participant_id] != long_term_key.public:
            raise ValueError("Roster entry does not match the long-term key")
        if any(pub.is_identity() for pub in roster.values()):
            raise ValueError("Roster contains the identity point")
        if not session_id:
            raise ValueError("Session id must be non-empty")

        self.session_id = bytes(session_id)
        self.config = config
        self.participant_id = participant_id
        self.long_term_key = long_term_key
        self.roster = dict(roster)
        self.rng = rng
        self.group = group or default_group()

        self.state = DKGRound.INIT
        self.commitments: dict[int, tuple] = {}
        self.encrypted_shares: dict[int, EncryptedShare] = {}
        self.missing_shares: set = set()
        self.responses: dict[int, ShareResponse] = {}
        self.disputes: list = []  # (dealer, accuser) pairs awaiting a Justification
        self.justifications: dict[tuple, Justification] = {}
        self.excluded: dict[int, str] = {}
        self.key_package: Optional[KeyPackage] = None
        self.abort_reason: Optional[str] = None

        self._polynomial = None
        self._shares: dict[int, SecretScalar] = {}
        self._dealt: dict[int, SecretScalar] = {}  # what we sent each peer
        self._channels = ChannelTable(self.session_id, participant_id, long_term_key,
                                      self.roster, self.group)

    # -- queries -----------------------------------------------------------

    @property
    def peers(self) -> list:
        return [i for i in self.config.participant_ids if i != self.participant_id]

    @property
    def alive(self) -> list:
        return [i for i in self.config.participant_ids if i not in self.excluded]

    @property
    def complaints(self) -> list:
        return [c for sid in sorted(self.responses) for c in self.responses[sid].complaints]

    @property
    def finished(self) -> bool:
        return self.state in _TERMINAL

    # -- round 1 -----------------------------------------------------------

    def start(self) -> Step:
        """Sample the polynomial, broadcast commitments, send encrypted shares."""
        if self.state != DKGRound.INIT:
            raise SessionStateError(f"start() called in state {self.state.name}")

        me = self.participant_id
        outbound = []
        with shamir.generate(self.config.t, self.rng, group=self.group) as poly:
            self._polynomial = poly
            commitments = shamir.commit(poly)
            self.commitments[me] = commitments
            outbound.append(CommitmentBroadcast(self.session_id, me, commitments))
            for peer in self.peers:
                self._dealt[peer] = SecretScalar(shamir.evaluate(poly, peer))
                outbound.append(self._seal_share(peer, self._dealt[peer].value))
            self._shares[me] = SecretScalar(shamir.evaluate(poly, me))
        self._polynomial = None

        self.state = DKGRound.ROUND1
        logger.debug("dkg %s: participant %d sent round 1", _short(self.session_id), me)
        outbound.extend(self._advance())
        return Step(self.state, outbound, self.key_package)

    def _seal_share(self, receiver: int, value: int) -> EncryptedShare:
        plaintext = self.group.encode_scalar(value)
        nonce, ciphertext, tag = self._channels.outbound(receiver).encrypt(plaintext, self.rng)
        share = EncryptedShare(self.session_id, self.participant_id, receiver,
                               nonce, ciphertext, tag)
        signature = schnorr.sign(self.long_term_key, share.signing_payload(), self.rng,
                                 context=self.session_id)
        return replace(share, signature=signature)

    # -- inbound -----------------------------------------------------------

    def receive(self, message) -> Step:
        """Consume one message; advance rounds when the current one is complete.

        Raises:
            SessionStateError: wrong session, wrong round, unknown or
                duplicate sender. The session is left unchanged.
            AuthenticationFailed: an encrypted share without a valid
                sender signature. It is treated as not delivered; if no
                valid share follows before expire(), the dealer is named
                in a MISSING complaint.
            ThresholdNotMet: exclusions left fewer than t participants.
        """
        if getattr(message, 'session_id', None) != self.session_id:
            raise SessionStateError("Message belongs to another session")
        if self.finished:
            raise SessionStateError(f"Session already {self.state.name}")

        if isinstance(message, CommitmentBroadcast):
            self._on_commitments(message)
        elif isinstance(message, EncryptedShare):
            self._on_encrypted_share(message)
        elif isinstance(message, ShareResponse):
            self._on_response(message)
        elif isinstance(message, Justification):
            self._on_justification(message)
        else:
            raise SessionStateError(f"Unexpected message {type(message).__name__}")
        outbound = self._advance()
        return Step(self.state, outbound, self.key_package)

    def _require_round(self, expected: DKGRound, message):
        if self.state != expected:
            raise SessionStateError(
                f"{type(message).__name__} arrived in {self.state.name}, "
                f"expected {expected.name}")

    def _require_peer(self, sender: int):
        if sender == self.participant_id or sender not in self.roster:
            raise SessionStateError(f"Unknown sender {sender}")

    def _on_commitments(self, msg: CommitmentBroadcast):
        self._require_round(DKGRound.ROUND1, msg)
        self._require_peer(msg.sender_id)
        if msg.sender_id in self.commitments:
            raise SessionStateError(f"Duplicate commitments from {msg.sender_id}")
        self.commitments[msg.sender_id] = tuple(msg.commitment_points)
        if len(msg.commitment_points) != self.config.t:
            self._exclude(msg.sender_id, "malformed commitment vector")

    def _on_encrypted_share(self, msg: EncryptedShare):
        self._require_round(DKGRound.ROUND1, msg)
        self._require_peer(msg.sender_id)
        if msg.receiver_id != self.participant_id:
            raise SessionStateError(f"Share addressed to {msg.receiver_id}")
        if msg.sender_id in self.encrypted_shares:
            raise SessionStateError(f"Duplicate share from {msg.sender_id}")
        if not schnorr.verify(self.roster[msg.sender_id], msg.signing_payload(),
                              msg.signature, context=self.session_id, group=self.group):
            raise AuthenticationFailed(f"Bad signature on share from {msg.sender_id}")
        self.encrypted_shares[msg.sender_id] = msg

    def _on_response(self, msg: ShareResponse):
        self._require_round(DKGRound.ROUND2, msg)
        self._require_peer(msg.sender_id)
        if msg.sender_id in self.responses:
            raise SessionStateError(f"Duplicate response from {msg.sender_id}")
        self.responses[msg.sender_id] = msg
        for c in msg.complaints:
            if (c.accuser_id != msg.sender_id or c.session_id != self.session_id
                    or c.accused_id == c.accuser_id or c.accused_id not in self.roster):
                self._exclude(msg.sender_id, "malformed complaint")
                break

    def _on_justification(self, msg: Justification):
        # A dealer answers as soon as it has every response, which may be
        # before this participant has seen the last of them.
        if self.state not in (DKGRound.ROUND2, DKGRound.JUSTIFY):
            raise SessionStateError(
                f"Justification arrived in {self.state.name}, expected JUSTIFY")
        self._require_peer(msg.dealer_id)
        key = (msg.dealer_id, msg.accuser_id)
        if key in self.justifications:
            raise SessionStateError(
                f"Duplicate justification from {msg.dealer_id} for {msg.accuser_id}")
        if self.state == DKGRound.JUSTIFY and key not in self.disputes:
            raise SessionStateError(
                f"No complaint by {msg.accuser_id} against {msg.dealer_id}")
        self.justifications[key] = msg

    # -- transitions -------------------------------------------------------

    def _advance(self) -> list:
        outbound = []
        while True:
            if self.state == DKGRound.ROUND1 and self._round1_complete():
                outbound.append(self._verify_shares())
                self.state = DKGRound.ROUND2
                logger.debug("dkg %s: participant %d entered round 2",
                             _short(self.session_id), self.participant_id)
            elif self.state == DKGRound.ROUND2 and self._round2_complete():
                self._resolve_complaints()
                outbound.extend(self._open_disputes())
                self.state = DKGRound.JUSTIFY
            elif self.state == DKGRound.JUSTIFY and self._justify_complete():
                self._settle_disputes()
                self.state = DKGRound.ROUND3
                self._finalize()
            else:
                return outbound

    def _round1_complete(self) -> bool:
        return all(p in self.commitments and
                   (p in self.encrypted_shares or p in self.missing_shares)
                   for p in self.alive if p != self.participant_id)

    def _round2_complete(self) -> bool:
        return all(p in self.responses for p in self.alive)

    def _justify_complete(self) -> bool:
        return all(key in self.justifications or key[0] in self.excluded
                   for key in self.disputes)

    def _verify_shares(self) -> ShareResponse:
        """Decrypt and Feldman-check every alive peer's share."""
        me = self.participant_id
        complaints = []
        for sender in self.alive:
            if sender == me:
                continue
            if sender in self.missing_shares:
                logger.warning("dkg %s: participant %d has no share from %d",
                               _short(self.session_id), me, sender)
                complaints.append(Complaint(self.session_id, me, sender, COMPLAINT_ROUND,
                                            ComplaintEvidence(EvidenceKind.MISSING)))
                continue
            es = self.encrypted_shares[sender]
            kind, value = None, None
            try:
                plaintext = self._channels.inbound(sender).decrypt(es.nonce, es.ciphertext, es.tag)
                value = self.group.decode_scalar(plaintext)
            except AuthenticationFailed:
                kind = EvidenceKind.AUTHENTICATION
            except InvalidEncoding:
                kind = EvidenceKind.VERIFICATION
            if kind is None and not shamir.verify_share(value, self.commitments[sender], me,
                                                       self.group):
                kind = EvidenceKind.VERIFICATION
            if kind is None:
                self._shares[sender] = SecretScalar(value)
                continue

            logger.warning("dkg %s: participant %d complains about %d (%s)",
                           _short(self.session_id), me, sender, kind.name)
            shared, proof = schnorr.prove_dleq(
                self.long_term_key, self.roster[sender], self.rng,
                context=complaint_context(self.session_id, sender, me))
            evidence = ComplaintEvidence(kind, es, shared, proof, value)
            complaints.append(Complaint(self.session_id, me, sender, COMPLAINT_ROUND, evidence))

        response = ShareResponse(self.session_id, me, tuple(complaints))
        self.responses[me] = response
        return response

    def _resolve_complaints(self):
        for complaint in self.complaints:
            if complaint.evidence.kind == EvidenceKind.MISSING:
                continue
            justified = verify_complaint(complaint, self.session_id, self.roster,
                                         self.commitments, self.group)
            if justified:
                self._exclude(complaint.accused_id,
                              f"justified complaint by {complaint.accuser_id}", check=False)
            else:
                self._exclude(complaint.accuser_id,
                              f"unjustified complaint against {complaint.accused_id}",
                              check=False)
        self._check_threshold()

    def _open_disputes(self) -> list:
        """Record MISSING complaints between alive peers; answer those against us."""
        me = self.participant_id
        self.disputes = sorted({
            (c.accused_id, c.accuser_id) for c in self.complaints
            if c.evidence.kind == EvidenceKind.MISSING
            and c.accused_id not in self.excluded and c.accuser_id not in self.excluded
        })
        outbound = []
        for dealer, accuser in self.disputes:
            if dealer != me:
                continue
            reveal = Justification(self.session_id, me, accuser, self._dealt[accuser].value)
            self.justifications[(dealer, accuser)] = reveal
            outbound.append(reveal)
            logger.info("dkg %s: participant %d reveals the share for %d",
                        _short(self.session_id), me, accuser)
        return outbound

    def _settle_disputes(self):
        """Feldman-check each revealed share; a failed or absent reveal excludes the dealer."""
        for dealer, accuser in self.disputes:
            if dealer in self.excluded:
                continue
            reveal = self.justifications.get((dealer, accuser))
            if reveal is None:
                self._exclude(dealer, f"no justification for {accuser}", check=False)
            elif not verify_justification(reveal, self.commitments, self.group):
                self._exclude(dealer, f"bad justification for {accuser}", check=False)
            elif accuser == self.participant_id:
                self._shares[dealer] = SecretScalar(reveal.share_value)
        self._check_threshold()

    def _finalize(self):
        me = self.participant_id
        qualified = tuple(self.alive)
        if me not in qualified:
            self._abort(f"excluded: {self.excluded[me]}")
            return

        total = 0
        for sender in qualified:
            total = self.group.add(total, self._shares[sender].value)
        group_key = self.group.identity()
        for sender in qualified:
            group_key = group_key + self.commitments[sender][0]
        combined = shamir.aggregate_commitments(
            [self.commitments[s] for s in qualified], self.group)
        verification_points = {
            i: shamir.evaluate_commitments(combined, i, self.group) for i in qualified
        }

        self.key_package = KeyPackage(
            me, self.config, SecretScalar(total), group_key,
            {s: self.commitments[s] for s in qualified}, verification_points,
            qualified, self.group)
        self._discard_transient()
        self.state = DKGRound.COMPLETE
        logger.debug("dkg %s: participant %d complete with %d qualified",
                     _short(self.session_id), me, len(qualified))

    # -- exclusion, timeout, abort -----------------------------------------

    def _exclude(self, pid: int, reason: str, check: bool = True):
        if pid in self.excluded:
            return
        self.excluded[pid] = reason
        logger.warning("dkg %s: participant %d excludes %d: %s",
                       _short(self.session_id), self.participant_id, pid, reason)
        if check:
            self._check_threshold()

    def _check_threshold(self):
        remaining = len(self.alive)
        if remaining < self.config.t:
            self._abort(f"{remaining} participants remain, need {self.config.t}")
            raise ThresholdNotMet(remaining, self.config.t)

    def expire(self) -> Step:
        """Round deadline passed.

        A missing broadcast (commitments, response, justification)
        excludes its sender. A missing private share only marks the dealer
        for a MISSING complaint, since nobody else can see it was withheld.
        """
        if self.state == DKGRound.ROUND1:
            me = self.participant_id
            missing = [p for p in self.alive if p != me and p not in self.commitments]
            self.missing_shares.update(
                p for p in self.alive if p != me and p in self.commitments
                and p not in self.encrypted_shares)
            for pid in missing:
                self._exclude(pid, "timed out", check=False)
        elif self.state == DKGRound.ROUND2:
            for pid in [p for p in self.alive if p not in self.responses]:
                self._exclude(pid, "timed out", check=False)
        elif self.state == DKGRound.JUSTIFY:
            for dealer, accuser in self.disputes:
                if (dealer, accuser) not in self.justifications:
                    self._exclude(dealer, f"no justification for {accuser}", check=False)
        else:
            raise SessionStateError(f"expire() called in state {self.state.name}")
        self._check_threshold()
        outbound = self._advance()
        return Step(self.state, outbound, self.key_package)

    def abort(self, reason: str = "aborted by caller") -> Step:
        """External cancellation; all sampled material is discarded."""
        if self.state != DKGRound.ABORTED:
            self._abort(reason)
        return Step(self.state)

    def _abort(self, reason: str):
        self.abort_reason = reason
        self.state = DKGRound.ABORTED
        if self._polynomial is not None:
            self._polynomial.wipe()
            self._polynomial = None
        if self.key_package is not None:
            self.key_package.wipe()
            self.key_package = None
        self._discard_transient()
        logger.warning("dkg %s: participant %d aborted: %s",
                       _short(self.session_id), self.participant_id, reason)

    def _discard_transient(self):
        wipe_all(self._shares.values())
        self._shares.clear()
        wipe_all(self._dealt.values())
        self._dealt.clear()
        self._channels.close()

    # -- persistence -------------------------------------------------------

    def to_bytes(self) -> bytes:
        """Session state in a fixed layout (long-term key and rng excluded)."""
        w = Writer(self.group)
        w.var_bytes(self.session_id).u32(self.config.n).u32(self.config.t)
        w.u32(self.participant_id).u8(self.state.value)
        for pid in self.config.participant_ids:
            w.point(self.roster[pid])
        w.u32_list(sorted(self.commitments))
        for pid in sorted(self.commitments):
            w.points(self.commitments[pid])
        w.u32(len(self.encrypted_shares))
        for pid in sorted(self.encrypted_shares):
            w.var_bytes(self.encrypted_shares[pid].to_bytes(self.group))
        w.u32_list(sorted(self.missing_shares))
        w.u32_list(sorted(self._shares))
        for pid in sorted(self._shares):
            w.scalar(self._shares[pid].value)
        w.u32_list(sorted(self._dealt))
        for pid in sorted(self._dealt):
            w.scalar(self._dealt[pid].value)
        w.u32(len(self.responses))
        for pid in sorted(self.responses):
            w.var_bytes(self.responses[pid].to_bytes(self.group))
        w.u32(len(self.disputes))
        for dealer, accuser in self.disputes:
            w.u32(dealer).u32(accuser)
        w.u32(len(self.justifications))
        for key in sorted(self.justifications):
            w.var_bytes(self.justifications[key].to_bytes(self.group))
        w.u32_list(sorted(self.excluded))
        for pid in sorted(self.excluded):
            w.var_bytes(self.excluded[pid].encode())
        w.boolean(self.key_package is not None)
        if self.key_package is not None:
            self.key_package._write(w)
        w.var_bytes((self.abort_reason or '').encode())
        return w.getvalue()

    @classmethod
    def from_bytes(cls, data: bytes, long_term_key, rng, group: Group = None) -> 'DKGSession':
        r = Reader(data, group)
        try:
            session_id, n, t, me = r.var_bytes(), r.u32(), r.u32(), r.u32()
            state = DKGRound(r.u8())
            config = ThresholdConfig(n, t)
            roster = {pid: r.point() for pid in config.participant_ids}
            session = cls(session_id, config, me, long_term_key, roster, rng, group)
        except ValueError as e:
            raise InvalidEncoding(str(e)) from None
        session.state = state
        for pid in r.u32_list():
            session.commitments[pid] = r.points()
        for _ in range(r.u32()):
            es = EncryptedShare.from_bytes(r.var_bytes(), r.group)
            session.encrypted_shares[es.sender_id] = es
        session.missing_shares.update(r.u32_list())
        for pid in r.u32_list():
            session._shares[pid] = SecretScalar(r.scalar())
        for pid in r.u32_list():
            session._dealt[pid] = SecretScalar(r.scalar())
        for _ in range(r.u32()):
            resp = ShareResponse.from_bytes(r.var_bytes(), r.group)
            session.responses[resp.sender_id] = resp
        count = r.u32()
        if 8 * count > r.remaining:
            raise InvalidEncoding(f"Declared {count} disputes exceed remaining input")
        session.disputes = [(r.u32(), r.u32()) for _ in range(count)]
        for _ in range(r.u32()):
            reveal = Justification.from_bytes(r.var_bytes(), r.group)
            session.justifications[(reveal.dealer_id, reveal.accuser_id)] = reveal
        for pid in r.u32_list():
            session.excluded[pid] = r.var_bytes().decode()
        if r.boolean():
            session.key_package = KeyPackage._read(r)
        session.abort_reason = r.var_bytes().decode() or None
        r.finish()
        return session


def step(session: DKGSession, inbound) -> tuple:
    """Functional entry point: (session, messages) -> (session, outbound, result).

    result is the KeyPackage on completion, the ThresholdError that
    stopped processing, or None while the protocol is still running.
    Messages after an error are not processed.
    """
    outbound = []
    try:
        if session.state == DKGRound.INIT:
            outbound.extend(session.start().outbound)
        for message in inbound:
            outbound.extend(session.receive(message).outbound)
    except ThresholdError as e:
        return session, outbound, e
    return session, outbound, session.key_package
