"""Distributed signing: FROST-style threshold Schnorr, one session per message.

Signers in a quorum S (|S| >= t) each hold an aggregate secret share s_i
from the DKG. Per message:

    NonceCommit  each signer samples (d_i, e_i), publishes D_i = d_i G, E_i = e_i G
    Aggregate    rho_i = H(i, m, sorted (j, D_j, E_j));  R = sum D_i + rho_i E_i
                 c = SHA-512(R || Y || m) mod L
    ShareSign    z_i = d_i + rho_i e_i + c lambda_i s_i
    Combine      every z_i is checked against D_i + rho_i E_i + c lambda_i Y_i;
                 z = sum z_i and (R, z) verifies as z G == R + c Y

The output is a standard Ed25519 signature over m under the group key.
Nonce pairs are single use: a NonceTracker rejects any commitment seen
before, and a NoncePair refuses to be consumed twice.
"""

import logging
from enum import Enum
from typing import Optional

from tdkg import shamir
from tdkg.codec import Reader, Writer
from tdkg.dkg import KeyPackage, Step
from tdkg.errors import (
    DuplicateIndex, InvalidEncoding, NonceReuse, SessionStateError, ThresholdError,
    ThresholdNotMet,
)
from tdkg.group import Group, default_group
from tdkg.messages import FinalSignature, NonceCommitment, PartialSignature
from tdkg.secret import SecretScalar
from tdkg.transcript import binding_factor, derive_session_id, signature_challenge

logger = logging.getLogger(__name__)


class SigningRound(Enum):
    INIT = 0
    NONCE_COMMIT = 1
    AGGREGATE = 2
    SHARE_SIGN = 3
    COMBINE = 4
    COMPLETE = 5
    ABORTED = 6


_TERMINAL = (SigningRound.COMPLETE, SigningRound.ABORTED)


class NoncePair:
    """Signing nonces (d, e) and their public commitments (D, E)."""

    def __init__(self, d: int, e: int, group: Group = None):
        self.group = group or default_group()
        self._d = SecretScalar(d % self.group.order)
        self._e = SecretScalar(e % self.group.order)
        self.D = self.group.mul_base(d)
        self.E = self.group.mul_base(e)
        self.consumed = False

    @classmethod
    def generate(cls, rng, group: Group = None) -> 'NoncePair':
        group = group or default_group()
        return cls(group.random_scalar(rng), group.random_scalar(rng), group)

    @property
    def commitments(self) -> tuple:
        return self.D, self.E

    @property
    def wiped(self) -> bool:
        return self._d.wiped and self._e.wiped

    def consume(self) -> tuple:
        """Return (d, e) exactly once."""
        if self.consumed or self.wiped:
            raise NonceReuse("Nonce pair already used")
        self.consumed = True
        return self._d.value, self._e.value

    def wipe(self):
        self._d.wipe()
        self._e.wipe()

    def __enter__(self) -> 'NoncePair':
        return self

    def __exit__(self, exc_type, exc, tb):
        self.wipe()
        return False


class NonceTracker:
    """Nonce commitments seen by one participant, across all its sessions.

    Any D or E point showing up a second time, from any signer in any
    session, is a reuse.
    """

    def __init__(self, group: Group = None):
        self.group = group or default_group()
        self._seen: dict[bytes, tuple] = {}

    def register(self, session_id: bytes, signer_id: int, D, E):
        keys = [self.group.encode_point(D), self.group.encode_point(E)]
        if keys[0] == keys[1]:
            raise NonceReuse(f"Signer {signer_id} committed the same point twice")
        for key in keys:
            if key in self._seen:
                prev_session, prev_signer = self._seen[key]
                raise NonceReuse(
                    f"Nonce commitment from signer {signer_id} was already used by "
                    f"signer {prev_signer} in session {prev_session[:4].hex()}")
        for key in keys:
            self._seen[key] = (session_id, signer_id)

    def __contains__(self, point) -> bool:
        return self.group.encode_point(point) in self._seen

    def __len__(self) -> int:
        return len(self._seen)


def compute_binding_factors(message: bytes, commitments: dict, group: Group = None) -> dict:
    """{signer: rho_signer} from {signer: (D, E)}."""
    entries = [(i, D, E) for i, (D, E) in commitments.items()]
    return {i: binding_factor(i, message, entries, group) for i in commitments}


def group_commitment(commitments: dict, binding_factors: dict, group: Group = None):
    """R = sum_i D_i + rho_i E_i."""
    group = group or default_group()
    R = group.identity()
    for i in sorted(commitments):
        D, E = commitments[i]
        R = R + D + E * binding_factors[i]
    return R


def verify_partial_signature(z_i: int, D, E, rho: int, challenge: int,
                             lagrange: int, verification_point, group: Group = None) -> bool:
    """z_i G == D_i + rho_i E_i + c lambda_i Y_i."""
    group = group or default_group()
    expected = D + E * rho + verification_point * group.mul(challenge, lagrange)
    return group.mul_base(z_i) == expected


def combine_signatures(R, partials, group: Group = None) -> FinalSignature:
    """Sum the z_i; partials is an iterable of scalars."""
    group = group or default_group()
    z = 0
    for z_i in partials:
        z = group.add(z, z_i)
    return FinalSignature(R, z)


def verify_signature(signature: FinalSignature, group_public_key, message: bytes,
                     group: Group = None) -> bool:
    """z G == R + c Y with c = SHA-512(R || Y || m) mod L."""
    group = group or default_group()
    c = signature_challenge(signature.R, group_public_key, message, group)
    return group.mul_base(signature.z) == signature.R + group_public_key * c


class SigningSession:
    """One signer's state for producing one signature.

    Args:
        session_id: Caller-chosen id shared by the quorum.
        key_package: This signer's DKG output.
        message: Bytes to sign.
        quorum: Indices of the signers; must include this signer and be
            a subset of the DKG's qualified set of size >= t.
        rng: Generator handle used to sample the nonce pair.
        nonce_tracker: Registry shared across this signer's sessions.
    """

    def __init__(self, session_id: bytes, key_package: KeyPackage, message: bytes,
                 quorum, rng, nonce_tracker: NonceTracker = None, group: Group = None):
        self.group = group or key_package.group
        quorum = list(quorum)
        seen = set()
        for i in quorum:
            if i in seen:
                raise DuplicateIndex(i)
            seen.add(i)
        me = key_package.participant_id
        if me not in seen:
            raise ValueError(f"Signer {me} is not in the quorum {sorted(seen)}")
        unknown = seen - set(key_package.qualified)
        if unknown:
            raise ValueError(f"Quorum members {sorted(unknown)} hold no key share")
        if len(quorum) < key_package.threshold:
            raise ThresholdNotMet(len(quorum), key_package.threshold)
        if not session_id:
            raise ValueError("Session id must be non-empty")

        self.base_session_id = bytes(session_id)
        self.session_id = self.base_session_id
        self.attempt = 0
        self.key_package = key_package
        self.message = bytes(message)
        self.quorum = tuple(sorted(quorum))
        self.rng = rng
        self.nonce_tracker = nonce_tracker if nonce_tracker is not None else NonceTracker(self.group)

        self.state = SigningRound.INIT
        self.nonce_commitments: dict[int, tuple] = {}
        self.partial_signatures: dict[int, PartialSignature] = {}
        self.binding_factors: dict[int, int] = {}
        self.R = None
        self.challenge: Optional[int] = None
        self.flagged: tuple = ()
        self.signature: Optional[FinalSignature] = None
        self.abort_reason: Optional[str] = None
        self._nonces: Optional[NoncePair] = None

    @property
    def participant_id(self) -> int:
        return self.key_package.participant_id

    @property
    def finished(self) -> bool:
        return self.state in _TERMINAL

    def _log_id(self) -> str:
        return f"{self.session_id[:4].hex()}/{self.attempt}"

    # -- NonceCommit -------------------------------------------------------

    def start(self, nonce_pair: NoncePair = None) -> Step:
        """Publish this signer's nonce commitments.

        nonce_pair: precomputed nonces; sampled from rng when omitted.
        """
        if self.state != SigningRound.INIT:
            raise SessionStateError(f"start() called in state {self.state.name}")
        nonces = nonce_pair or NoncePair.generate(self.rng, self.group)
        self._nonces = nonces
        if nonces.consumed or nonces.wiped:
            self._fatal(NonceReuse("Nonce pair already used"))
        try:
            self.nonce_tracker.register(self.session_id, self.participant_id, nonces.D, nonces.E)
        except NonceReuse as e:
            self._fatal(e)

        me = self.participant_id
        self.nonce_commitments[me] = (nonces.D, nonces.E)
        self.state = SigningRound.NONCE_COMMIT
        outbound = [NonceCommitment(self.session_id, me, nonces.D, nonces.E)]
        outbound.extend(self._advance())
        return Step(self.state, outbound, self.signature)

    # -- inbound -----------------------------------------------------------

    def receive(self, message) -> Step:
        """Consume one message; advance when the current round is complete.

        Raises:
            SessionStateError: wrong session or attempt, wrong round,
                signer outside the quorum, duplicate message.
            NonceReuse: a commitment seen before (session is aborted).
            ThresholdNotMet: too few valid signers remain (session is aborted).
        """
        if getattr(message, 'session_id', None) != self.session_id:
            raise SessionStateError("Message belongs to another session or attempt")
        if self.finished:
            raise SessionStateError(f"Session already {self.state.name}")

        if isinstance(message, NonceCommitment):
            self._on_nonce_commitment(message)
        elif isinstance(message, PartialSignature):
            self._on_partial_signature(message)
        else:
            raise SessionStateError(f"Unexpected message {type(message).__name__}")
        outbound = self._advance()
        return Step(self.state, outbound, self.signature)

    def _require_signer(self, signer: int):
        if signer not in self.quorum or signer == self.participant_id:
            raise SessionStateError(f"Signer {signer} is not a peer in this quorum")

    def _on_nonce_commitment(self, msg: NonceCommitment):
        if self.state != SigningRound.NONCE_COMMIT:
            raise SessionStateError(f"NonceCommitment arrived in {self.state.name}")
        self._require_signer(msg.signer_id)
        if msg.signer_id in self.nonce_commitments:
            raise SessionStateError(f"Duplicate nonce commitment from {msg.signer_id}")
        if msg.D.is_identity() or msg.E.is_identity():
            raise SessionStateError(f"Identity nonce commitment from {msg.signer_id}")
        try:
            self.nonce_tracker.register(self.session_id, msg.signer_id, msg.D, msg.E)
        except NonceReuse as e:
            self._fatal(e)
        self.nonce_commitments[msg.signer_id] = (msg.D, msg.E)

    def _on_partial_signature(self, msg: PartialSignature):
        if self.state != SigningRound.SHARE_SIGN:
            raise SessionStateError(f"PartialSignature arrived in {self.state.name}")
        self._require_signer(msg.signer_id)
        if msg.signer_id in self.partial_signatures:
            raise SessionStateError(f"Duplicate partial signature from {msg.signer_id}")
        self.partial_signatures[msg.signer_id] = msg

    # -- transitions -------------------------------------------------------

    def _advance(self) -> list:
        if (self.state == SigningRound.NONCE_COMMIT and
                all(i in self.nonce_commitments for i in self.quorum)):
            self.state = SigningRound.AGGREGATE
            self._aggregate()
            self.state = SigningRound.SHARE_SIGN
            partial = self._sign_share()
            self.partial_signatures[self.participant_id] = partial
            outbound = [partial]
            outbound.extend(self._advance())
            return outbound
        if (self.state == SigningRound.SHARE_SIGN and
                all(i in self.partial_signatures for i in self.quorum)):
            self.state = SigningRound.COMBINE
            self._combine()
        return []

    def _aggregate(self):
        self.binding_factors = compute_binding_factors(
            self.message, self.nonce_commitments, self.group)
        self.R = group_commitment(self.nonce_commitments, self.binding_factors, self.group)
        self.challenge = signature_challenge(
            self.R, self.key_package.group_public_key, self.message, self.group)

    def _sign_share(self) -> PartialSignature:
        g = self.group
        me = self.participant_id
        lam = shamir.lagrange_coefficient(me, self.quorum, g)
        rho = self.binding_factors[me]
        with self._nonces:
            d, e = self._nonces.consume()
            z_i = g.add(g.add(d, g.mul(rho, e)),
                        g.mul(g.mul(self.challenge, lam), self.key_package.secret_share.value))
        logger.debug("sign %s: signer %d produced its share", self._log_id(), me)
        return PartialSignature(self.session_id, me, z_i, self.key_package.verification_point)

    def check_partial(self, partial: PartialSignature) -> bool:
        """Verify one signer's z_i against its DKG verification point."""
        i = partial.signer_id
        expected_point = self.key_package.verification_points[i]
        if partial.verification_point != expected_point:
            return False
        D, E = self.nonce_commitments[i]
        lam = shamir.lagrange_coefficient(i, self.quorum, self.group)
        return verify_partial_signature(partial.z_i, D, E, self.binding_factors[i],
                                        self.challenge, lam, expected_point, self.group)

    def _combine(self):
        flagged = tuple(i for i in self.quorum if not self.check_partial(self.partial_signatures[i]))
        if not flagged:
            signature = combine_signatures(
                self.R, (self.partial_signatures[i].z_i for i in self.quorum), self.group)
            if not verify_signature(signature, self.key_package.group_public_key,
                                    self.message, self.group):
                self._abort("combined signature does not verify")
                return
            self.signature = signature
            self.state = SigningRound.COMPLETE
            logger.debug("sign %s: signature complete", self._log_id())
            return

        self.flagged = flagged
        remaining = len(self.quorum) - len(flagged)
        logger.warning("sign %s: invalid partial signatures from %s",
                       self._log_id(), list(flagged))
        if self.participant_id in flagged:
            self._abort("own partial signature flagged")
            return
        if remaining < self.key_package.threshold:
            self._fatal(ThresholdNotMet(remaining, self.key_package.threshold))

    # -- retry, abort ------------------------------------------------------

    def retry(self, nonce_pair: NoncePair = None) -> Step:
        """Restart with the flagged signers removed and fresh nonces."""
        if self.state != SigningRound.COMBINE or not self.flagged:
            raise SessionStateError(f"retry() called in state {self.state.name}")
        self.quorum = tuple(i for i in self.quorum if i not in self.flagged)
        self.attempt += 1
        self.session_id = derive_session_id(
            b'retry', self.base_session_id, self.attempt.to_bytes(4, 'big'))
        self.nonce_commitments = {}
        self.partial_signatures = {}
        self.binding_factors = {}
        self.R = None
        self.challenge = None
        self.flagged = ()
        self._nonces = None
        self.state = SigningRound.INIT
        logger.debug("sign %s: retrying with quorum %s", self._log_id(), list(self.quorum))
        return self.start(nonce_pair)

    def abort(self, reason: str = "aborted by caller") -> Step:
        if self.state != SigningRound.ABORTED:
            self._abort(reason)
        return Step(self.state)

    def _abort(self, reason: str):
        self.abort_reason = reason
        self.state = SigningRound.ABORTED
        if self._nonces is not None:
            self._nonces.wipe()
        logger.warning("sign %s: signer %d aborted: %s",
                       self._log_id(), self.participant_id, reason)

    def _fatal(self, error: ThresholdError):
        self._abort(str(error))
        raise error

    # -- persistence -------------------------------------------------------

    def to_bytes(self) -> bytes:
        """Session state in a fixed layout (key package, rng and tracker excluded).

        Nonces are never written. A session saved after publishing its
        commitments but before producing its share cannot be restored;
        from_bytes() refuses it with NonceReuse.
        """
        w = Writer(self.group)
        w.var_bytes(self.base_session_id).u32(self.attempt).u8(self.state.value)
        w.var_bytes(self.message).u32_list(self.quorum).u32_list(self.flagged)
        w.u32_list(sorted(self.nonce_commitments))
        for i in sorted(self.nonce_commitments):
            D, E = self.nonce_commitments[i]
            w.point(D).point(E)
        w.u32(len(self.partial_signatures))
        for i in sorted(self.partial_signatures):
            w.var_bytes(self.partial_signatures[i].to_bytes(self.group))
        w.boolean(self.signature is not None)
        if self.signature is not None:
            w.var_bytes(self.signature.to_bytes(self.group))
        w.var_bytes((self.abort_reason or '').encode())
        return w.getvalue()

    @classmethod
    def from_bytes(cls, data: bytes, key_package: KeyPackage, rng,
                   nonce_tracker: NonceTracker = None, group: Group = None) -> 'SigningSession':
        r = Reader(data, group or key_package.group)
        base_id, attempt = r.var_bytes(), r.u32()
        try:
            state = SigningRound(r.u8())
        except ValueError as e:
            raise InvalidEncoding(str(e)) from None
        message, quorum, flagged = r.var_bytes(), r.u32_list(), r.u32_list()
        try:
            session = cls(base_id, key_package, message, quorum, rng, nonce_tracker, group)
        except (ValueError, ThresholdError) as e:
            raise InvalidEncoding(str(e)) from None
        session.attempt = attempt
        if attempt:
            session.session_id = derive_session_id(b'retry', base_id, attempt.to_bytes(4, 'big'))
        session.state = state
        session.flagged = flagged
        for i in r.u32_list():
            session.nonce_commitments[i] = (r.point(), r.point())
        for _ in range(r.u32()):
            partial = PartialSignature.from_bytes(r.var_bytes(), r.group)
            session.partial_signatures[partial.signer_id] = partial
        if r.boolean():
            session.signature = FinalSignature.from_bytes(r.var_bytes(), r.group)
        session.abort_reason = r.var_bytes().decode() or None
        r.finish()
        if state in (SigningRound.NONCE_COMMIT, SigningRound.AGGREGATE):
            raise NonceReuse(f"Signer {session.participant_id} published nonce commitments "
                             "that were not persisted; start a new session")
        if len(session.nonce_commitments) == len(session.quorum) and state != SigningRound.INIT:
            session._aggregate()
        return session


def step(session: SigningSession, inbound) -> tuple:
    """Functional entry point: (session, messages) -> (session, outbound, result).

    result is the FinalSignature on completion, the ThresholdError that
    stopped processing, or None otherwise.
    """
    outbound = []
    try:
        if session.state == SigningRound.INIT:
            outbound.extend(session.start().outbound)
        for message in inbound:
            outbound.extend(session.receive(message).outbound)
    except ThresholdError as e:
        return session, outbound, e
    return session, outbound, session.signature
