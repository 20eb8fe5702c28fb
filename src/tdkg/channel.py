"""Authenticated pairwise channels for transporting DKG shares.

Each ordered pair (sender, receiver) derives its own AES-256-GCM key:

    shared = DH(sender, receiver)                (point on the protocol group)
    key    = HKDF-SHA256(ikm=shared, salt=session_id,
                         info=b"tdkg-share" || sender || receiver)

The associated data binds the session and both indices, so a ciphertext
cannot be replayed into another session or redirected to another pair.
"""

import logging
import struct

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from tdkg.errors import AuthenticationFailed
from tdkg.group import Group, default_group

logger = logging.getLogger(__name__)

HKDF_INFO_SHARE = b"tdkg-share"
KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16


def pair_info(sender_id: int, receiver_id: int) -> bytes:
    return HKDF_INFO_SHARE + struct.pack('>II', sender_id, receiver_id)


def associated_data(session_id: bytes, sender_id: int, receiver_id: int) -> bytes:
    return session_id + struct.pack('>II', sender_id, receiver_id)


def derive_key(shared_point, session_id: bytes, sender_id: int, receiver_id: int,
               group: Group = None) -> bytes:
    """HKDF-SHA256 over the encoded DH point."""
    group = group or default_group()
    return HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=session_id,
        info=pair_info(sender_id, receiver_id),
    ).derive(group.encode_point(shared_point))


def seal(key: bytes, nonce: bytes, plaintext: bytes, aad: bytes) -> tuple:
    """AES-256-GCM; returns (ciphertext, tag) with the 16-byte tag split off."""
    sealed = AESGCM(key).encrypt(nonce, plaintext, aad)
    return sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]


def open_sealed(key: bytes, nonce: bytes, ciphertext: bytes, tag: bytes, aad: bytes) -> bytes:
    """Inverse of seal(); raises AuthenticationFailed on any mismatch."""
    if len(nonce) != NONCE_SIZE or len(tag) != TAG_SIZE:
        raise AuthenticationFailed("Malformed nonce or tag")
    try:
        return AESGCM(key).decrypt(nonce, ciphertext + tag, aad)
    except InvalidTag:
        raise AuthenticationFailed("AEAD tag mismatch") from None


class SecureChannel:
    """One direction of a pairwise channel (sender -> receiver).

    Both ends build the same channel: the sender from its own key and the
    receiver's public key, the receiver from its own key and the sender's.
    """

    def __init__(self, session_id: bytes, sender_id: int, receiver_id: int,
                 shared_point, group: Group = None):
        self.session_id = session_id
        self.sender_id = sender_id
        self.receiver_id = receiver_id
        self.group = group or default_group()
        self._key = bytearray(derive_key(shared_point, session_id, sender_id,
                                         receiver_id, self.group))
        self._aad = associated_data(session_id, sender_id, receiver_id)

    def encrypt(self, plaintext: bytes, rng) -> tuple:
        """Returns (nonce, ciphertext, tag). The nonce comes from rng."""
        if not self._key:
            raise RuntimeError("Channel is closed")
        nonce = rng.getrandbits(8 * NONCE_SIZE).to_bytes(NONCE_SIZE, 'big')
        ciphertext, tag = seal(bytes(self._key), nonce, plaintext, self._aad)
        return nonce, ciphertext, tag

    def decrypt(self, nonce: bytes, ciphertext: bytes, tag: bytes) -> bytes:
        if not self._key:
            raise RuntimeError("Channel is closed")
        try:
            return open_sealed(bytes(self._key), nonce, ciphertext, tag, self._aad)
        except AuthenticationFailed:
            logger.warning("decryption failed on channel %d -> %d",
                           self.sender_id, self.receiver_id)
            raise

    def close(self):
        for i in range(len(self._key)):
            self._key[i] = 0
        self._key = bytearray()


class ChannelTable:
    """Pairwise channels of one participant, keyed by (sender, receiver)."""

    def __init__(self, session_id: bytes, own_id: int, own_key, roster: dict,
                 group: Group = None):
        self.session_id = session_id
        self.own_id = own_id
        self.own_key = own_key
        self.roster = roster  # participant id -> long-term public key
        self.group = group or default_group()
        self.channels: dict[tuple, SecureChannel] = {}

    def get(self, sender_id: int, receiver_id: int) -> SecureChannel:
        if self.own_id not in (sender_id, receiver_id):
            raise ValueError(f"Participant {self.own_id} is not an endpoint of "
                             f"{sender_id} -> {receiver_id}")
        key = (sender_id, receiver_id)
        ch = self.channels.get(key)
        if ch is None:
            peer = receiver_id if sender_id == self.own_id else sender_id
            shared = self.own_key.diffie_hellman(self.roster[peer])
            ch = SecureChannel(self.session_id, sender_id, receiver_id, shared, self.group)
            self.channels[key] = ch
        return ch

    def outbound(self, receiver_id: int) -> SecureChannel:
        return self.get(self.own_id, receiver_id)

    def inbound(self, sender_id: int) -> SecureChannel:
        return self.get(sender_id, self.own_id)

    def close(self):
        for ch in self.channels.values():
            ch.close()
        self.channels.clear()

    @property
    def count(self) -> int:
        return len(self.channels)
