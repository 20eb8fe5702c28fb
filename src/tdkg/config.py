"""Threshold parameters shared by every participant of a session."""

from dataclasses import dataclass


def minimum_threshold(n: int) -> int:
    """Smallest t that keeps an honest majority needed to reconstruct.

    Lower values are accepted by ThresholdConfig but let a minority
    collude to recover the group secret.
    """
    return (n + 1) // 2


def default_threshold(n: int) -> int:
    """Two-thirds-plus-one threshold used when none is given."""
    return min(n, 2 * n // 3 + 1)


@dataclass(frozen=True)
class ThresholdConfig:
    """n participants indexed 1..n; any t of them can sign."""

    n: int
    t: int

    def __post_init__(self):
        if self.n < 1:
            raise ValueError(f"n must be >= 1, got {self.n}")
        if not (1 <= self.t <= self.n):
            raise ValueError(f"Threshold must satisfy 1 <= t <= n, got t={self.t}, n={self.n}")
        if self.n >= 2 ** 32:
            raise ValueError("Participant indices must fit in 32 bits")

    @classmethod
    def with_default_threshold(cls, n: int) -> 'ThresholdConfig':
        return cls(n, default_threshold(n))

    @property
    def participant_ids(self) -> tuple:
        return tuple(range(1, self.n + 1))

    def check_index(self, index: int):
        if not (1 <= index <= self.n):
            raise ValueError(f"Participant index must be in 1..{self.n}, got {index}")
