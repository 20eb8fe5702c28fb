"""Edwards25519 arithmetic for tdkg.

Scalars are Python ints modulo the prime subgroup order L. Points live in
extended twisted Edwards coordinates (X:Y:Z:T) on -x^2 + y^2 = 1 + d x^2 y^2
over GF(2^255 - 19). Encodings follow RFC 8032: 32-byte little-endian
scalars and 32-byte compressed points.

Pure Python, not constant time.
"""

import secrets

from tdkg.errors import InvalidEncoding, NotInSubgroup, PointNotOnCurve

P = 2 ** 255 - 19
L = 2 ** 252 + 27742317777372353535851937790883648493  # subgroup order
D = (-121665 * pow(121666, P - 2, P)) % P
SQRT_M1 = pow(2, (P - 1) // 4, P)

SCALAR_SIZE = 32
POINT_SIZE = 32

_BASE_X = 15112221349535400772501151409588531511454012693041857206046113283949847762202
_BASE_Y = 46316835694926478169428394003475163141307993866256225615783033603165251855960


# ---------------------------------------------------------------------------
# Scalars mod L
# ---------------------------------------------------------------------------

def add(a: int, b: int) -> int:
    """(a + b) mod L."""
    return (a + b) % L


def sub(a: int, b: int) -> int:
    """(a - b) mod L."""
    return (a - b) % L


def mul(a: int, b: int) -> int:
    """(a * b) mod L."""
    return (a * b) % L


def neg(a: int) -> int:
    """(-a) mod L."""
    return (-a) % L


def inv(a: int) -> int:
    """Multiplicative inverse mod L via Fermat (L is prime)."""
    if a % L == 0:
        raise ZeroDivisionError("Cannot invert zero scalar")
    return pow(a, L - 2, L)


def scalar_from_digest(digest: bytes) -> int:
    """Reduce a hash output (little-endian) modulo L."""
    return int.from_bytes(digest, 'little') % L


def rand_scalar(rng=None) -> int:
    """Sample a uniform nonzero scalar using a 512-bit wide reduction.

    rng: object with getrandbits(k) (random.Random, secrets.SystemRandom).
    """
    while True:
        if rng is not None:
            r = rng.getrandbits(512)
        else:
            r = secrets.randbits(512)
        r %= L
        if r != 0:
            return r


def encode_scalar(a: int) -> bytes:
    if not (0 <= a < L):
        raise ValueError(f"Scalar out of range: {a}")
    return a.to_bytes(SCALAR_SIZE, 'little')


def decode_scalar(data: bytes) -> int:
    """Decode a canonical 32-byte scalar; values >= L are rejected."""
    if len(data) != SCALAR_SIZE:
        raise InvalidEncoding(f"Scalar must be {SCALAR_SIZE} bytes, got {len(data)}")
    a = int.from_bytes(data, 'little')
    if a >= L:
        raise InvalidEncoding("Non-canonical scalar encoding")
    return a


# ---------------------------------------------------------------------------
# Points
# ---------------------------------------------------------------------------

class Point:
    """A point of Edwards25519 in extended coordinates."""

    __slots__ = ('X', 'Y', 'Z', 'T')

    def __init__(self, X: int, Y: int, Z: int, T: int):
        self.X = X
        self.Y = Y
        self.Z = Z
        self.T = T

    @classmethod
    def from_affine(cls, x: int, y: int) -> 'Point':
        return cls(x % P, y % P, 1, (x * y) % P)

    @classmethod
    def identity(cls) -> 'Point':
        return cls(0, 1, 1, 0)

    def __add__(self, other: 'Point') -> 'Point':
        # Unified addition (complete for a = -1, d non-square)
        a = (self.Y - self.X) * (other.Y - other.X) % P
        b = (self.Y + self.X) * (other.Y + other.X) % P
        c = 2 * D * self.T * other.T % P
        d = 2 * self.Z * other.Z % P
        e, f, g, h = b - a, d - c, d + c, b + a
        return Point(e * f % P, g * h % P, f * g % P, e * h % P)

    def __neg__(self) -> 'Point':
        return Point((-self.X) % P, self.Y, self.Z, (-self.T) % P)

    def __sub__(self, other: 'Point') -> 'Point':
        return self + (-other)

    def __mul__(self, k: int) -> 'Point':
        return _scalar_mult(self, k % L)

    __rmul__ = __mul__

    def __eq__(self, other) -> bool:
        if not isinstance(other, Point):
            return NotImplemented
        return ((self.X * other.Z - other.X * self.Z) % P == 0 and
                (self.Y * other.Z - other.Y * self.Z) % P == 0)

    def __hash__(self) -> int:
        return hash(self.encode())

    def __repr__(self) -> str:
        return f"Point({self.encode().hex()})"

    def is_identity(self) -> bool:
        return self.X % P == 0 and (self.Y - self.Z) % P == 0

    def affine(self) -> tuple:
        zinv = pow(self.Z, P - 2, P)
        return (self.X * zinv % P, self.Y * zinv % P)

    def encode(self) -> bytes:
        """RFC 8032 compressed encoding: y little-endian, x parity in bit 255."""
        x, y = self.affine()
        return (y | ((x & 1) << 255)).to_bytes(POINT_SIZE, 'little')

    @classmethod
    def decode(cls, data: bytes) -> 'Point':
        """Decode and validate a compressed point.

        Raises InvalidEncoding, PointNotOnCurve or NotInSubgroup.
        """
        if len(data) != POINT_SIZE:
            raise InvalidEncoding(f"Point must be {POINT_SIZE} bytes, got {len(data)}")
        y = int.from_bytes(data, 'little')
        sign = y >> 255
        y &= (1 << 255) - 1
        if y >= P:
            raise InvalidEncoding("Non-canonical point encoding")

        x2 = (y * y - 1) * pow(D * y * y + 1, P - 2, P) % P
        if x2 == 0:
            if sign:
                raise InvalidEncoding("Invalid sign bit for x = 0")
            x = 0
        else:
            x = pow(x2, (P + 3) // 8, P)
            if (x * x - x2) % P != 0:
                x = x * SQRT_M1 % P
            if (x * x - x2) % P != 0:
                raise PointNotOnCurve("No square root for x^2")
            if (x & 1) != sign:
                x = P - x

        point = cls.from_affine(x, y)
        if not _scalar_mult(point, L).is_identity():
            raise NotInSubgroup("Point has a small-order component")
        return point


def _scalar_mult(point: Point, k: int) -> Point:
    """Double-and-add, k is used as given (no reduction)."""
    result = Point.identity()
    addend = point
    while k:
        if k & 1:
            result = result + addend
        addend = addend + addend
        k >>= 1
    return result


BASE = Point.from_affine(_BASE_X, _BASE_Y)

_base_table = []


def _powers_of_base() -> list:
    """Lazily computed [2^i * B for i in 0..252]."""
    if not _base_table:
        q = BASE
        for _ in range(L.bit_length()):
            _base_table.append(q)
            q = q + q
    return _base_table


def mul_base(k: int) -> Point:
    """k * B using the precomputed doubling table."""
    k %= L
    table = _powers_of_base()
    result = Point.identity()
    i = 0
    while k:
        if k & 1:
            result = result + table[i]
        k >>= 1
        i += 1
    return result
