"""Single-signer Schnorr signatures and discrete-log equality proofs.

Used by the DKG to make encrypted shares attributable (the sender signs
each ciphertext with its long-term key) and to let an accuser prove the
pairwise Diffie-Hellman value it used, so any observer can re-check a
complaint without trusting the accuser.
"""

from dataclasses import dataclass

from tdkg.errors import InvalidEncoding
from tdkg.group import Group, default_group
from tdkg.secret import SecretScalar
from tdkg.transcript import DLEQ_DOMAIN, SCHNORR_DOMAIN, Transcript


class LongTermKey:
    """A participant's long-term keypair on the protocol group."""

    def __init__(self, secret: int, group: Group = None):
        self.group = group or default_group()
        secret %= self.group.order
        if secret == 0:
            raise ValueError("Long-term secret must be nonzero")
        self._secret = SecretScalar(secret)
        self.public = self.group.mul_base(secret)

    @classmethod
    def generate(cls, rng, group: Group = None) -> 'LongTermKey':
        group = group or default_group()
        return cls(group.random_scalar(rng), group)

    @property
    def secret(self) -> int:
        return self._secret.value

    def diffie_hellman(self, peer_public):
        """Shared point my_secret * peer_public."""
        return peer_public * self.secret

    def wipe(self):
        self._secret.wipe()


def _schnorr_challenge(group, public, R, message: bytes, context: bytes) -> int:
    t = Transcript(SCHNORR_DOMAIN, group)
    t.append_bytes(b'context', context)
    t.append_point(b'X', public)
    t.append_point(b'R', R)
    t.append_bytes(b'message', message)
    return t.challenge_scalar()


def sign(key: LongTermKey, message: bytes, rng, context: bytes = b'') -> bytes:
    """Schnorr signature (R || s) over message under key."""
    group = key.group
    with SecretScalar(group.random_scalar(rng)) as k:
        R = group.mul_base(k.value)
        c = _schnorr_challenge(group, key.public, R, message, context)
        s = group.add(k.value, group.mul(c, key.secret))
    return group.encode_point(R) + group.encode_scalar(s)


def verify(public, message: bytes, signature: bytes, context: bytes = b'',
           group: Group = None) -> bool:
    """Check s * G == R + c * X. Malformed signatures verify as False."""
    group = group or default_group()
    if len(signature) != group.point_size + group.scalar_size:
        return False
    try:
        R = group.decode_point(signature[:group.point_size])
        s = group.decode_scalar(signature[group.point_size:])
    except InvalidEncoding:
        return False
    c = _schnorr_challenge(group, public, R, message, context)
    return group.mul_base(s) == R + public * c


@dataclass(frozen=True)
class DLEQProof:
    """Proof that log_G(A) == log_B(S) without revealing the exponent."""

    challenge: int
    response: int

    def to_bytes(self, group: Group = None) -> bytes:
        group = group or default_group()
        return group.encode_scalar(self.challenge) + group.encode_scalar(self.response)

    @classmethod
    def from_bytes(cls, data: bytes, group: Group = None) -> 'DLEQProof':
        group = group or default_group()
        size = group.scalar_size
        if len(data) != 2 * size:
            raise InvalidEncoding(f"DLEQ proof must be {2 * size} bytes, got {len(data)}")
        return cls(group.decode_scalar(data[:size]), group.decode_scalar(data[size:]))


def _dleq_challenge(group, A, B, S, R1, R2, context: bytes) -> int:
    t = Transcript(DLEQ_DOMAIN, group)
    t.append_bytes(b'context', context)
    t.append_point(b'A', A)
    t.append_point(b'B', B)
    t.append_point(b'S', S)
    t.append_point(b'R1', R1)
    t.append_point(b'R2', R2)
    return t.challenge_scalar()


def prove_dleq(key: LongTermKey, base, rng, context: bytes = b'') -> tuple:
    """Return (S, proof) where S = secret * base and A = key.public.

    Chaum-Pedersen: R1 = kG, R2 = kB, c = H(A, B, S, R1, R2), s = k + c x.
    """
    group = key.group
    S = base * key.secret
    with SecretScalar(group.random_scalar(rng)) as k:
        R1 = group.mul_base(k.value)
        R2 = base * k.value
        c = _dleq_challenge(group, key.public, base, S, R1, R2, context)
        s = group.add(k.value, group.mul(c, key.secret))
    return S, DLEQProof(c, s)


def verify_dleq(A, base, S, proof: DLEQProof, context: bytes = b'',
                group: Group = None) -> bool:
    group = group or default_group()
    R1 = group.mul_base(proof.response) - A * proof.challenge
    R2 = base * proof.response - S * proof.challenge
    return proof.challenge == _dleq_challenge(group, A, base, S, R1, R2, context)
