"""Group capability interface.

Protocol code (shamir, dkg, dss) only talks to a Group: scalar ops modulo
the group order, point ops, and fixed-size encodings. Ed25519Group is the
single concrete backend; default_group() selects it.
"""

from abc import ABC, abstractmethod

from tdkg import ed25519


class Group(ABC):
    """Prime-order group with scalar field Z_order."""

    name: str
    order: int
    scalar_size: int
    point_size: int

    # Scalars

    def add(self, a: int, b: int) -> int:
        return (a + b) % self.order

    def sub(self, a: int, b: int) -> int:
        return (a - b) % self.order

    def mul(self, a: int, b: int) -> int:
        return (a * b) % self.order

    def neg(self, a: int) -> int:
        return (-a) % self.order

    def inv(self, a: int) -> int:
        if a % self.order == 0:
            raise ZeroDivisionError("Cannot invert zero scalar")
        return pow(a, self.order - 2, self.order)

    @abstractmethod
    def random_scalar(self, rng) -> int:
        """Uniform nonzero scalar drawn from the supplied generator."""

    @abstractmethod
    def scalar_from_digest(self, digest: bytes) -> int:
        """Reduce a hash output to a scalar."""

    @abstractmethod
    def encode_scalar(self, a: int) -> bytes: ...

    @abstractmethod
    def decode_scalar(self, data: bytes) -> int: ...

    # Points

    @abstractmethod
    def identity(self): ...

    @abstractmethod
    def generator(self): ...

    @abstractmethod
    def mul_base(self, k: int): ...

    @abstractmethod
    def encode_point(self, point) -> bytes: ...

    @abstractmethod
    def decode_point(self, data: bytes):
        """Decode and validate; rejects off-curve and small-order input."""


class Ed25519Group(Group):
    """Prime-order subgroup of Edwards25519 (RFC 8032 encodings)."""

    name = 'edwards25519'
    order = ed25519.L
    scalar_size = ed25519.SCALAR_SIZE
    point_size = ed25519.POINT_SIZE

    def random_scalar(self, rng) -> int:
        if rng is None:
            raise ValueError("random_scalar needs a generator handle")
        return ed25519.rand_scalar(rng)

    def scalar_from_digest(self, digest: bytes) -> int:
        return ed25519.scalar_from_digest(digest)

    def encode_scalar(self, a: int) -> bytes:
        return ed25519.encode_scalar(a)

    def decode_scalar(self, data: bytes) -> int:
        return ed25519.decode_scalar(data)

    def identity(self):
        return ed25519.Point.identity()

    def generator(self):
        return ed25519.BASE

    def mul_base(self, k: int):
        return ed25519.mul_base(k)

    def encode_point(self, point) -> bytes:
        return point.encode()

    def decode_point(self, data: bytes):
        return ed25519.Point.decode(data)


_DEFAULT = Ed25519Group()


def default_group() -> Group:
    """The build-time selected backend."""
    return _DEFAULT
