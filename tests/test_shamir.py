"""Tests for Shamir secret sharing with Feldman commitments."""

import itertools
import pytest

from tdkg import shamir
from tdkg.ed25519 import L
from tdkg.errors import DuplicateIndex, InsufficientShares
from tdkg.group import default_group

G = default_group()


class TestRoundTrip:
    """Secret sharing and reconstruction."""

    def test_basic_3_of_5(self, rng):
        secret = G.random_scalar(rng)
        shares = shamir.split(secret, 5, 3, rng)
        assert len(shares) == 5
        assert shamir.reconstruct(shares[:3], 3) == secret
        assert shamir.reconstruct(shares[1:4], 3) == secret
        assert shamir.reconstruct(shares[2:], 3) == secret

    def test_t_equals_1(self, rng):
        """t=1: constant polynomial, every share = secret."""
        secret = G.random_scalar(rng)
        shares = shamir.split(secret, 5, 1, rng)
        for _, y in shares:
            assert y == secret
        assert shamir.reconstruct([shares[0]], 1) == secret

    def test_t_equals_n(self, rng):
        secret = G.random_scalar(rng)
        shares = shamir.split(secret, 7, 7, rng)
        assert shamir.reconstruct(shares, 7) == secret

    @pytest.mark.parametrize("t", [2, 3, 5])
    def test_every_subset_reconstructs(self, rng, t):
        """Any t-subset of n <= 10 shares yields the same secret."""
        n = 7 if t < 5 else 8
        secret = G.random_scalar(rng)
        shares = shamir.split(secret, n, t, rng)
        results = {shamir.reconstruct(subset, t) for subset in itertools.combinations(shares, t)}
        assert results == {secret}

    def test_more_than_t_shares(self, rng):
        secret = G.random_scalar(rng)
        shares = shamir.split(secret, 10, 4, rng)
        assert shamir.reconstruct(shares, 4) == secret

    def test_zero_and_max_secret(self, rng):
        for secret in (0, L - 1):
            shares = shamir.split(secret, 5, 3, rng)
            assert shamir.reconstruct(shares[:3], 3) == secret

    def test_order_of_shares_irrelevant(self, rng):
        secret = G.random_scalar(rng)
        shares = shamir.split(secret, 5, 3, rng)
        assert shamir.reconstruct([shares[4], shares[0], shares[2]], 3) == secret


class TestErrors:

    def test_insufficient_shares(self, rng):
        shares = shamir.split(G.random_scalar(rng), 5, 3, rng)
        with pytest.raises(InsufficientShares) as exc:
            shamir.reconstruct(shares[:2], 3)
        assert exc.value.given == 2 and exc.value.needed == 3
        # Counts only, never share values
        assert str(shares[0][1]) not in str(exc.value)

    def test_duplicate_index(self, rng):
        shares = shamir.split(G.random_scalar(rng), 5, 3, rng)
        with pytest.raises(DuplicateIndex) as exc:
            shamir.reconstruct([shares[0], shares[1], shares[1]], 3)
        assert exc.value.index == shares[1][0]

    def test_duplicate_checked_before_count(self, rng):
        shares = shamir.split(G.random_scalar(rng), 5, 3, rng)
        with pytest.raises(DuplicateIndex):
            shamir.reconstruct([shares[0], shares[0]], 3)

    def test_evaluate_at_zero_rejected(self, rng):
        with shamir.generate(3, rng) as poly:
            with pytest.raises(ValueError):
                shamir.evaluate(poly, 0)

    def test_zero_threshold_rejected(self, rng):
        with pytest.raises(ValueError):
            shamir.generate(0, rng)

    def test_n_less_than_t(self, rng):
        with pytest.raises(ValueError):
            shamir.split(1, 2, 3, rng)


class TestPolynomial:

    def test_fixed_secret(self, rng):
        with shamir.generate(4, rng, secret=1234) as poly:
            assert poly.secret == 1234
            assert poly.threshold == 4
            assert poly.degree == 3

    def test_wiped_after_context(self, rng):
        with shamir.generate(3, rng) as poly:
            shamir.evaluate(poly, 1)
        assert poly.wiped
        with pytest.raises(ValueError):
            poly.secret

    def test_evaluate_matches_naive(self, rng):
        with shamir.generate(4, rng) as poly:
            coeffs = poly.coefficients
            for x in (1, 2, 9):
                naive = sum(c * x ** j for j, c in enumerate(coeffs)) % L
                assert shamir.evaluate(poly, x) == naive


class TestFeldman:

    def test_honest_shares_verify(self, rng):
        with shamir.generate(3, rng) as poly:
            commitments = shamir.commit(poly)
            for i in range(1, 6):
                assert shamir.verify_share(shamir.evaluate(poly, i), commitments, i)

    def test_tampered_share_fails(self, rng):
        with shamir.generate(3, rng) as poly:
            commitments = shamir.commit(poly)
            value = shamir.evaluate(poly, 2)
        assert not shamir.verify_share(G.add(value, 1), commitments, 2)
        assert not shamir.verify_share(value, commitments, 3)

    def test_tampered_commitment_fails(self, rng):
        with shamir.generate(3, rng) as poly:
            commitments = list(shamir.commit(poly))
            value = shamir.evaluate(poly, 4)
        commitments[1] = commitments[1] + G.generator()
        assert not shamir.verify_share(value, commitments, 4)

    def test_out_of_range_share_fails(self, rng):
        with shamir.generate(2, rng) as poly:
            commitments = shamir.commit(poly)
        assert not shamir.verify_share(L, commitments, 1)
        assert not shamir.verify_share(1, (), 1)

    def test_evaluate_commitments_is_public_share(self, rng):
        with shamir.generate(3, rng) as poly:
            commitments = shamir.commit(poly)
            value = shamir.evaluate(poly, 5)
        assert shamir.evaluate_commitments(commitments, 5) == G.mul_base(value)
        assert shamir.evaluate_commitments(commitments, 0) == commitments[0]

    def test_aggregate_commitments(self, rng):
        polys = [shamir.generate(3, rng) for _ in range(3)]
        vectors = [shamir.commit(p) for p in polys]
        total = shamir.aggregate_commitments(vectors)
        combined_value = 0
        for p in polys:
            combined_value = G.add(combined_value, shamir.evaluate(p, 2))
        assert shamir.verify_share(combined_value, total, 2)
        with pytest.raises(ValueError):
            shamir.aggregate_commitments([vectors[0], vectors[1][:2]])


class TestLagrange:

    def test_coefficients_sum_to_one(self):
        indices = [1, 3, 4]
        total = 0
        for i in indices:
            total = G.add(total, shamir.lagrange_coefficient(i, indices))
        assert total == 1

    def test_known_value(self):
        # lambda_1 over {1, 2} = 2 / (2 - 1) = 2
        assert shamir.lagrange_coefficient(1, [1, 2]) == 2

    def test_index_not_in_set(self):
        with pytest.raises(ValueError):
            shamir.lagrange_coefficient(5, [1, 2, 3])

    def test_duplicate_index(self):
        with pytest.raises(DuplicateIndex):
            shamir.lagrange_coefficient(1, [1, 2, 2])
