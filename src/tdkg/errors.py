"""Error taxonomy for the threshold key generation and signing engines.

Every decoding or verification failure surfaces as one of these types.
Complaints are not errors: they are protocol messages (see tdkg.messages)
that drive the exclusion policy.
"""


class ThresholdError(Exception):
    """Base class for all protocol errors."""


class InvalidEncoding(ThresholdError, ValueError):
    """Bytes do not decode to a well-formed value."""


class PointNotOnCurve(InvalidEncoding):
    """Encoded point has no valid x-coordinate on the curve."""


class NotInSubgroup(InvalidEncoding):
    """Point is on the curve but outside the prime-order subgroup."""


class ShareVerificationFailed(ThresholdError):
    """A share does not match its sender's Feldman commitments."""

    def __init__(self, sender: int, receiver: int):
        super().__init__(f"share from {sender} to {receiver} fails commitment check")
        self.sender = sender
        self.receiver = receiver


class AuthenticationFailed(ThresholdError):
    """AEAD tag mismatch or a bad signature on an encrypted share."""


class InsufficientShares(ThresholdError):
    """Fewer than t distinct shares were supplied."""

    def __init__(self, given: int, needed: int):
        super().__init__(f"need {needed} shares, got {given}")
        self.given = given
        self.needed = needed


class DuplicateIndex(ThresholdError):
    """Two shares (or quorum members) use the same index."""

    def __init__(self, index: int):
        super().__init__(f"duplicate index {index}")
        self.index = index


class SessionStateError(ThresholdError):
    """Message for the wrong round, wrong session, or unknown sender."""


class NonceReuse(ThresholdError):
    """A nonce pair (or its commitment) was seen in more than one session."""


class ThresholdNotMet(ThresholdError):
    """Fewer than t honest participants remain after exclusions."""

    def __init__(self, remaining: int, threshold: int):
        super().__init__(f"{remaining} participants remain, threshold is {threshold}")
        self.remaining = remaining
        self.threshold = threshold
