"""Shamir secret sharing with Feldman commitments over the curve's scalar field.

A degree-(t-1) polynomial f hides its constant term f(0). Participant i
receives f(i) for i in 1..n; index 0 is reserved for the secret. The
commitment vector C_j = a_j * G lets anyone check a share without
learning it:  f(i) * G == sum_j C_j * i^j.
"""

from dataclasses import dataclass

from tdkg.errors import DuplicateIndex, InsufficientShares
from tdkg.group import Group, default_group
from tdkg.secret import SecretScalar, wipe_all


@dataclass(frozen=True)
class Share:
    """Evaluation of sender's polynomial at receiver's index."""

    sender: int
    receiver: int
    value: int


class Polynomial:
    """A secret sharing polynomial, coefficients lowest degree first.

    Coefficients are held in wipeable buffers. Use as a context manager
    or call wipe() once the shares have been produced.
    """

    def __init__(self, coeffs: list, group: Group = None):
        if not coeffs:
            raise ValueError("Polynomial needs at least one coefficient")
        self.group = group or default_group()
        self._coeffs = [SecretScalar(c % self.group.order) for c in coeffs]

    @property
    def threshold(self) -> int:
        return len(self._coeffs)

    @property
    def degree(self) -> int:
        return len(self._coeffs) - 1

    @property
    def secret(self) -> int:
        """The constant term f(0)."""
        return self._coeffs[0].value

    @property
    def coefficients(self) -> list:
        return [c.value for c in self._coeffs]

    @property
    def wiped(self) -> bool:
        return all(c.wiped for c in self._coeffs)

    def wipe(self):
        wipe_all(self._coeffs)

    def __enter__(self) -> 'Polynomial':
        return self

    def __exit__(self, exc_type, exc, tb):
        self.wipe()
        return False


def generate(t: int, rng, secret: int = None, group: Group = None) -> Polynomial:
    """Sample t uniformly random coefficients; the first is the secret.

    Args:
        t: Threshold (number of coefficients, degree t-1).
        rng: Generator handle with getrandbits().
        secret: Optional fixed constant term (dealer-style sharing).
    """
    group = group or default_group()
    if t < 1:
        raise ValueError(f"Threshold t must be >= 1, got {t}")
    first = group.random_scalar(rng) if secret is None else secret % group.order
    coeffs = [first] + [group.random_scalar(rng) for _ in range(t - 1)]
    return Polynomial(coeffs, group)


def evaluate(poly: Polynomial, x: int) -> int:
    """Horner evaluation of poly at a participant index x >= 1."""
    if x <= 0:
        raise ValueError(f"Index must be >= 1 (0 is the secret), got {x}")
    group = poly.group
    result = 0
    for c in reversed(poly.coefficients):
        result = group.add(group.mul(result, x), c)
    return result


def commit(poly: Polynomial) -> tuple:
    """Feldman commitment vector: (a_0 * G, ..., a_{t-1} * G)."""
    return tuple(poly.group.mul_base(c) for c in poly.coefficients)


def evaluate_commitments(commitments, index: int, group: Group = None):
    """Public share sum_j C_j * index^j, Horner in the point domain."""
    group = group or default_group()
    result = group.identity()
    for c in reversed(commitments):
        result = result * index + c
    return result


def verify_share(share_value: int, commitments, index: int, group: Group = None) -> bool:
    """Feldman check: share_value * G == sum_j commitments[j] * index^j."""
    group = group or default_group()
    if index <= 0 or not commitments:
        return False
    if not (0 <= share_value < group.order):
        return False
    return group.mul_base(share_value) == evaluate_commitments(commitments, index, group)


def aggregate_commitments(vectors, group: Group = None) -> tuple:
    """Coefficient-wise sum of commitment vectors of equal length."""
    group = group or default_group()
    vectors = list(vectors)
    if not vectors:
        raise ValueError("Need at least one commitment vector")
    size = len(vectors[0])
    if any(len(v) != size for v in vectors):
        raise ValueError("Commitment vectors differ in length")
    total = [group.identity() for _ in range(size)]
    for vec in vectors:
        total = [a + b for a, b in zip(total, vec)]
    return tuple(total)


def lagrange_coefficient(index: int, indices, group: Group = None) -> int:
    """L_index(0) over the given index set.

    Returns prod_{j != index} j / (j - index) mod order.
    """
    group = group or default_group()
    indices = list(indices)
    if len(set(indices)) != len(indices):
        seen = set()
        for j in indices:
            if j in seen:
                raise DuplicateIndex(j)
            seen.add(j)
    if index not in indices:
        raise ValueError(f"Index {index} not in {indices}")
    num = 1
    den = 1
    for j in indices:
        if j == index:
            continue
        num = group.mul(num, j)
        den = group.mul(den, group.sub(j, index))
    return group.mul(num, group.inv(den))


def reconstruct(shares, t: int, group: Group = None) -> int:
    """Interpolate the secret f(0) from at least t shares.

    Args:
        shares: Iterable of (index, value) pairs.
        t: Threshold.

    Raises:
        DuplicateIndex: two shares use the same index.
        InsufficientShares: fewer than t distinct indices.
    """
    group = group or default_group()
    shares = list(shares)
    seen = set()
    for x, _ in shares:
        if x in seen:
            raise DuplicateIndex(x)
        seen.add(x)
    if len(shares) < t:
        raise InsufficientShares(len(shares), t)
    for x, _ in shares:
        if x <= 0:
            raise ValueError(f"Share index must be >= 1, got {x}")

    xs = [x for x, _ in shares]
    result = 0
    for x, y in shares:
        result = group.add(result, group.mul(y, lagrange_coefficient(x, xs, group)))
    return result


def split(secret: int, n: int, t: int, rng, group: Group = None) -> list:
    """Dealer-style sharing of a known secret.

    Returns:
        List of (i, f(i)) for i in 1..n.
    """
    if n < t:
        raise ValueError(f"n must be >= t, got n={n}, t={t}")
    with generate(t, rng, secret=secret, group=group) as poly:
        return [(i, evaluate(poly, i)) for i in range(1, n + 1)]
