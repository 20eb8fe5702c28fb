"""Protocol messages exchanged between DKG and signing participants.

Fields only; framing and delivery belong to the caller. Every message
encodes to a fixed layout: one type byte followed by its fields (see
tdkg.codec). decode_message() dispatches on the type byte.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Optional

from tdkg.codec import Reader, Writer
from tdkg.errors import InvalidEncoding
from tdkg.group import Group, default_group
from tdkg.schnorr import DLEQProof


class MessageType(IntEnum):
    COMMITMENT_BROADCAST = 1
    ENCRYPTED_SHARE = 2
    COMPLAINT = 3
    SHARE_RESPONSE = 4
    NONCE_COMMITMENT = 5
    PARTIAL_SIGNATURE = 6
    FINAL_SIGNATURE = 7
    JUSTIFICATION = 8


class EvidenceKind(IntEnum):
    AUTHENTICATION = 1  # AEAD tag did not verify
    VERIFICATION = 2    # plaintext is not a share matching the commitments
    MISSING = 3         # no validly signed share arrived before the deadline


class Message(ABC):
    """Base class: tagged to_bytes()/from_bytes() on top of _write/_read."""

    MESSAGE_TYPE: MessageType

    @abstractmethod
    def _write(self, w: Writer):
        ...

    @classmethod
    @abstractmethod
    def _read(cls, r: Reader):
        ...

    def to_bytes(self, group: Group = None) -> bytes:
        w = Writer(group)
        w.u8(self.MESSAGE_TYPE)
        self._write(w)
        return w.getvalue()

    @classmethod
    def from_bytes(cls, data: bytes, group: Group = None):
        r = Reader(data, group)
        tag = r.u8()
        if tag != cls.MESSAGE_TYPE:
            raise InvalidEncoding(f"Expected message type {int(cls.MESSAGE_TYPE)}, got {tag}")
        msg = cls._read(r)
        r.finish()
        return msg


@dataclass(frozen=True)
class CommitmentBroadcast(Message):
    MESSAGE_TYPE = MessageType.COMMITMENT_BROADCAST

    session_id: bytes
    sender_id: int
    commitment_points: tuple

    def _write(self, w: Writer):
        w.var_bytes(self.session_id).u32(self.sender_id).points(self.commitment_points)

    @classmethod
    def _read(cls, r: Reader):
        return cls(r.var_bytes(), r.u32(), r.points())


@dataclass(frozen=True)
class EncryptedShare(Message):
    """A share sealed for one receiver, signed by the sender's long-term key."""

    MESSAGE_TYPE = MessageType.ENCRYPTED_SHARE

    session_id: bytes
    sender_id: int
    receiver_id: int
    nonce: bytes
    ciphertext: bytes
    tag: bytes
    signature: bytes = b''

    def signing_payload(self) -> bytes:
        """Everything except the signature itself."""
        w = Writer()
        w.raw(b'tdkg/encrypted-share')
        self._write_body(w)
        return w.getvalue()

    def _write_body(self, w: Writer):
        (w.var_bytes(self.session_id).u32(self.sender_id).u32(self.receiver_id)
         .var_bytes(self.nonce).var_bytes(self.ciphertext).var_bytes(self.tag))

    def _write(self, w: Writer):
        self._write_body(w)
        w.var_bytes(self.signature)

    @classmethod
    def _read(cls, r: Reader):
        return cls(r.var_bytes(), r.u32(), r.u32(), r.var_bytes(), r.var_bytes(),
                   r.var_bytes(), r.var_bytes())


@dataclass(frozen=True)
class ComplaintEvidence:
    """Material that lets any observer re-check a complaint.

    encrypted_share is the signed ciphertext exactly as received;
    shared_point is the accuser's Diffie-Hellman value with the accused and
    proof shows it is consistent with the accuser's long-term public key.
    share_value is the decrypted value when it decoded to a scalar.

    MISSING evidence carries nothing: there is no attributable ciphertext,
    so the accused settles it by publishing a Justification.
    """

    kind: EvidenceKind
    encrypted_share: Optional[EncryptedShare] = None
    shared_point: object = None
    proof: Optional[DLEQProof] = None
    share_value: Optional[int] = None

    def _write(self, w: Writer):
        w.u8(self.kind)
        if self.kind == EvidenceKind.MISSING:
            return
        w.var_bytes(self.encrypted_share.to_bytes(w.group))
        w.point(self.shared_point)
        w.raw(self.proof.to_bytes(w.group))
        w.boolean(self.share_value is not None)
        if self.share_value is not None:
            w.scalar(self.share_value)

    @classmethod
    def _read(cls, r: Reader):
        try:
            kind = EvidenceKind(r.u8())
        except ValueError as e:
            raise InvalidEncoding(str(e)) from None
        if kind == EvidenceKind.MISSING:
            return cls(kind)
        share = EncryptedShare.from_bytes(r.var_bytes(), r.group)
        shared_point = r.point()
        proof = DLEQProof.from_bytes(r.raw(2 * r.group.scalar_size), r.group)
        value = r.scalar() if r.boolean() else None
        return cls(kind, share, shared_point, proof, value)


@dataclass(frozen=True)
class Complaint(Message):
    MESSAGE_TYPE = MessageType.COMPLAINT

    session_id: bytes
    accuser_id: int
    accused_id: int
    round: int
    evidence: ComplaintEvidence

    def _write(self, w: Writer):
        w.var_bytes(self.session_id).u32(self.accuser_id).u32(self.accused_id).u8(self.round)
        self.evidence._write(w)

    @classmethod
    def _read(cls, r: Reader):
        return cls(r.var_bytes(), r.u32(), r.u32(), r.u8(), ComplaintEvidence._read(r))


@dataclass(frozen=True)
class ShareResponse(Message):
    """Round-2 broadcast: the sender's complaints (empty = all shares approved)."""

    MESSAGE_TYPE = MessageType.SHARE_RESPONSE

    session_id: bytes
    sender_id: int
    complaints: tuple = field(default_factory=tuple)

    @property
    def approved(self) -> bool:
        return not self.complaints

    def _write(self, w: Writer):
        w.var_bytes(self.session_id).u32(self.sender_id).u32(len(self.complaints))
        for c in self.complaints:
            w.var_bytes(c.to_bytes(w.group))

    @classmethod
    def _read(cls, r: Reader):
        session_id, sender_id, count = r.var_bytes(), r.u32(), r.u32()
        if count > r.remaining:
            raise InvalidEncoding(f"Declared {count} complaints exceed remaining input")
        complaints = tuple(Complaint.from_bytes(r.var_bytes(), r.group) for _ in range(count))
        return cls(session_id, sender_id, complaints)


@dataclass(frozen=True)
class Justification(Message):
    """A dealer's broadcast answer to a MISSING complaint: the share in clear.

    Every participant checks share_value against the dealer's commitments
    at accuser_id. The accuser adopts it when the check passes.
    """

    MESSAGE_TYPE = MessageType.JUSTIFICATION

    session_id: bytes
    dealer_id: int
    accuser_id: int
    share_value: int

    def _write(self, w: Writer):
        w.var_bytes(self.session_id).u32(self.dealer_id).u32(self.accuser_id)
        w.scalar(self.share_value)

    @classmethod
    def _read(cls, r: Reader):
        return cls(r.var_bytes(), r.u32(), r.u32(), r.scalar())


@dataclass(frozen=True)
class NonceCommitment(Message):
    MESSAGE_TYPE = MessageType.NONCE_COMMITMENT

    session_id: bytes
    signer_id: int
    D: object
    E: object

    def _write(self, w: Writer):
        w.var_bytes(self.session_id).u32(self.signer_id).point(self.D).point(self.E)

    @classmethod
    def _read(cls, r: Reader):
        return cls(r.var_bytes(), r.u32(), r.point(), r.point())


@dataclass(frozen=True)
class PartialSignature(Message):
    MESSAGE_TYPE = MessageType.PARTIAL_SIGNATURE

    session_id: bytes
    signer_id: int
    z_i: int
    verification_point: object

    def _write(self, w: Writer):
        w.var_bytes(self.session_id).u32(self.signer_id).scalar(self.z_i).point(self.verification_point)

    @classmethod
    def _read(cls, r: Reader):
        return cls(r.var_bytes(), r.u32(), r.scalar(), r.point())


@dataclass(frozen=True)
class FinalSignature(Message):
    """(R, z). signature_bytes() is the 64-byte Ed25519 layout R || z."""

    MESSAGE_TYPE = MessageType.FINAL_SIGNATURE

    R: object
    z: int

    def _write(self, w: Writer):
        w.point(self.R).scalar(self.z)

    @classmethod
    def _read(cls, r: Reader):
        return cls(r.point(), r.scalar())

    def signature_bytes(self, group: Group = None) -> bytes:
        group = group or default_group()
        return group.encode_point(self.R) + group.encode_scalar(self.z)

    @classmethod
    def from_signature_bytes(cls, data: bytes, group: Group = None) -> 'FinalSignature':
        group = group or default_group()
        if len(data) != group.point_size + group.scalar_size:
            raise InvalidEncoding(f"Signature must be {group.point_size + group.scalar_size} bytes")
        return cls(group.decode_point(data[:group.point_size]),
                   group.decode_scalar(data[group.point_size:]))


_REGISTRY = {cls.MESSAGE_TYPE: cls for cls in (
    CommitmentBroadcast, EncryptedShare, Complaint, ShareResponse, Justification,
    NonceCommitment, PartialSignature, FinalSignature,
)}


def decode_message(data: bytes, group: Group = None) -> Message:
    """Decode any protocol message by its leading type byte."""
    if not data:
        raise InvalidEncoding("Empty message")
    cls = _REGISTRY.get(data[0])
    if cls is None:
        raise InvalidEncoding(f"Unknown message type {data[0]}")
    return cls.from_bytes(data, group)
