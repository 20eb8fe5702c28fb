"""Domain-separated hashing for Fiat-Shamir challenges and binding factors.

Every hash starts from a protocol domain tag and absorbs labeled,
length-prefixed fields, so no two contexts can produce colliding inputs.
The signature challenge is the exception: it follows RFC 8032
(SHA-512(R || A || M) mod L) so that combined signatures verify as plain
Ed25519 signatures.
"""

import hashlib
import struct

from tdkg.group import Group, default_group

DOMAIN_PREFIX = b'tdkg/v1/'

BINDING_DOMAIN = b'binding'
SCHNORR_DOMAIN = b'schnorr'
DLEQ_DOMAIN = b'dleq'
SESSION_DOMAIN = b'session'


def _frame(data: bytes) -> bytes:
    return struct.pack('>I', len(data)) + data


class Transcript:
    """SHA-512 transcript with labeled, length-prefixed absorption."""

    def __init__(self, domain: bytes, group: Group = None):
        self.group = group or default_group()
        self._h = hashlib.sha512()
        self._h.update(_frame(DOMAIN_PREFIX + domain))

    def append_bytes(self, label: bytes, data: bytes) -> 'Transcript':
        self._h.update(_frame(label))
        self._h.update(_frame(data))
        return self

    def append_u32(self, label: bytes, value: int) -> 'Transcript':
        return self.append_bytes(label, struct.pack('>I', value))

    def append_point(self, label: bytes, point) -> 'Transcript':
        return self.append_bytes(label, self.group.encode_point(point))

    def append_scalar(self, label: bytes, value: int) -> 'Transcript':
        return self.append_bytes(label, self.group.encode_scalar(value))

    def digest(self) -> bytes:
        return self._h.copy().digest()

    def challenge_scalar(self) -> int:
        """Reduce the 64-byte digest modulo the group order."""
        return self.group.scalar_from_digest(self.digest())


def binding_factor(index: int, message: bytes, commitment_list, group: Group = None) -> int:
    """rho_i = H(i, message, sorted [(j, D_j, E_j)]).

    commitment_list: iterable of (signer_id, D, E); sorted by signer_id here
    so every signer derives the same value regardless of arrival order.
    """
    t = Transcript(BINDING_DOMAIN, group)
    t.append_u32(b'signer', index)
    t.append_bytes(b'message', message)
    entries = sorted(commitment_list, key=lambda entry: entry[0])
    t.append_u32(b'count', len(entries))
    for signer_id, d_point, e_point in entries:
        t.append_u32(b'id', signer_id)
        t.append_point(b'D', d_point)
        t.append_point(b'E', e_point)
    return t.challenge_scalar()


def signature_challenge(R, group_public_key, message: bytes, group: Group = None) -> int:
    """c = SHA-512(R || Y || M) mod L."""
    group = group or default_group()
    h = hashlib.sha512()
    h.update(group.encode_point(R))
    h.update(group.encode_point(group_public_key))
    h.update(message)
    return group.scalar_from_digest(h.digest())


def derive_session_id(label: bytes, *parts: bytes) -> bytes:
    """32-byte session id from caller-chosen context (e.g. a retry counter)."""
    h = hashlib.sha512()
    h.update(_frame(DOMAIN_PREFIX + SESSION_DOMAIN))
    h.update(_frame(label))
    for part in parts:
        h.update(_frame(part))
    return h.digest()[:32]
