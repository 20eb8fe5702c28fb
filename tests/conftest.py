"""Shared fixtures for tdkg tests."""

import random
import pytest

from tdkg.config import ThresholdConfig
from tdkg.dkg import DKGSession
from tdkg.errors import AuthenticationFailed, SessionStateError
from tdkg.schnorr import LongTermKey
from tdkg.transcript import derive_session_id


def pytest_configure(config):
    config.addinivalue_line("markers", "slow: marks tests as slow (large n)")


@pytest.fixture
def rng():
    """Deterministic RNG for reproducible tests."""
    return random.Random(42)


@pytest.fixture
def session_id():
    return derive_session_id(b'test', b'session-1')


def make_keys(n: int, rng) -> tuple:
    """({index: LongTermKey}, {index: public key}) for participants 1..n."""
    keys = {i: LongTermKey.generate(rng) for i in range(1, n + 1)}
    return keys, {i: k.public for i, k in keys.items()}


def make_sessions(n: int, t: int, rng, session_id: bytes) -> dict:
    keys, roster = make_keys(n, rng)
    config = ThresholdConfig(n, t)
    return {i: DKGSession(session_id, config, i, keys[i], roster,
                          random.Random(rng.getrandbits(64)))
            for i in config.participant_ids}


def pump(sessions: dict, queue: list, tamper=None) -> list:
    """Deliver (src, message) pairs until quiet.

    Addressed messages go to their receiver; the rest are broadcast to
    every other session. tamper(src, dst, message) may rewrite a message
    or return None to drop it. Returns the (dst, message, error) triples
    a session refused.
    """
    rejected = []
    while queue:
        src, msg = queue.pop(0)
        dst_id = getattr(msg, 'receiver_id', None)
        targets = [dst_id] if dst_id is not None else [i for i in sessions if i != src]
        for dst in targets:
            delivered = tamper(src, dst, msg) if tamper else msg
            if delivered is None or sessions[dst].finished:
                continue
            try:
                step = sessions[dst].receive(delivered)
            except (AuthenticationFailed, SessionStateError) as e:
                rejected.append((dst, delivered, e))
                continue
            queue.extend((dst, out) for out in step.outbound)
    return rejected


def start_all(sessions: dict) -> list:
    queue = []
    for i, s in sessions.items():
        queue.extend((i, m) for m in s.start().outbound)
    return queue


def run_dkg(n: int, t: int, rng, session_id: bytes, tamper=None) -> dict:
    sessions = make_sessions(n, t, rng, session_id)
    pump(sessions, start_all(sessions), tamper)
    return sessions


@pytest.fixture(scope='module')
def key_packages_5_3():
    """KeyPackages of an honest 3-of-5 DKG, shared by a module's tests."""
    r = random.Random(2024)
    sessions = run_dkg(5, 3, r, derive_session_id(b'test', b'dkg-5-3'))
    return {i: s.key_package for i, s in sessions.items()}
