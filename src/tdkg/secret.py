"""Wipe-on-exit containers for secret scalars.

Polynomial coefficients, aggregate secret shares and signing nonces are
held in a bytearray that is overwritten with zeros by wipe(). Use them as
context managers so every exit path (return, abort, exception) wipes.

Python ints are immutable: values returned by .value are transient copies
the interpreter may keep until garbage collection. Only the owned buffer
is guaranteed to be zeroed.
"""

SECRET_SIZE = 32


class SecretScalar:
    """A scalar stored in a zeroizable buffer."""

    __slots__ = ('_buf', '_wiped')

    def __init__(self, value: int):
        if value < 0:
            raise ValueError("Secret scalar must be non-negative")
        self._buf = bytearray(value.to_bytes(SECRET_SIZE, 'little'))
        self._wiped = False

    @property
    def value(self) -> int:
        if self._wiped:
            raise ValueError("Secret has been wiped")
        return int.from_bytes(self._buf, 'little')

    @property
    def wiped(self) -> bool:
        return self._wiped

    def wipe(self):
        for i in range(len(self._buf)):
            self._buf[i] = 0
        self._wiped = True

    def __enter__(self) -> 'SecretScalar':
        return self

    def __exit__(self, exc_type, exc, tb):
        self.wipe()
        return False

    def __del__(self):
        # Interpreter shutdown may have torn down the buffer already
        buf = getattr(self, '_buf', None)
        if buf is not None:
            for i in range(len(buf)):
                buf[i] = 0

    def __repr__(self) -> str:
        return 'SecretScalar(<wiped>)' if self._wiped else 'SecretScalar(<redacted>)'

    def __eq__(self, other) -> bool:
        if not isinstance(other, SecretScalar):
            return NotImplemented
        return self._wiped == other._wiped and self._buf == other._buf

    __hash__ = None


def wipe_all(secrets: list):
    """Wipe every SecretScalar in an iterable, skipping None."""
    for s in secrets:
        if s is not None:
            s.wipe()
