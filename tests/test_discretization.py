import numpy as np
import pytest

from so3_milp.discretization import (axis_breakpoints, ceil_log2, gray_codes, interpolation_weights,
                                     is_power_of_two, locate_interval)


class TestAxisBreakpoints:
    @pytest.mark.parametrize("N", [1, 2, 3, 4, 5, 7, 8])
    def test_symmetric_and_anchored(self, N):
        phi = axis_breakpoints(N)
        assert phi.shape == (2 * N + 1,)
        assert phi[0] == -1 and phi[N] == 0 and phi[2 * N] == 1
        for k in range(2 * N + 1):
            assert phi[k] == -phi[2 * N - k]
        assert np.all(np.diff(phi) > 0)

    def test_values(self):
        np.testing.assert_allclose(axis_breakpoints(2), [-1, -0.5, 0, 0.5, 1])

    @pytest.mark.parametrize("N", [0, -3])
    def test_rejects_non_positive(self, N):
        with pytest.raises(ValueError):
            axis_breakpoints(N)


class TestGrayCodes:
    def test_ceil_log2(self):
        assert [ceil_log2(n) for n in (1, 2, 3, 4, 5, 8, 9)] == [0, 1, 2, 2, 3, 3, 4]

    def test_power_of_two(self):
        assert [n for n in range(1, 17) if is_power_of_two(n)] == [1, 2, 4, 8, 16]

    @pytest.mark.parametrize("digits", [1, 2, 3, 4])
    def test_adjacent_rows_differ_in_one_bit(self, digits):
        codes = gray_codes(digits)
        assert codes.shape == (2 ** digits, digits)
        assert len({tuple(row) for row in codes}) == 2 ** digits
        assert np.all(np.abs(np.diff(codes, axis=0)).sum(axis=1) == 1)

    def test_reflected_order(self):
        np.testing.assert_array_equal(gray_codes(2), [[0, 0], [0, 1], [1, 1], [1, 0]])

    @pytest.mark.parametrize("N", [1, 2, 4, 8])
    def test_leading_digit_is_sign_for_powers_of_two(self, N):
        codes = gray_codes(ceil_log2(2 * N))
        for m in range(2 * N):
            assert codes[m, 0] == (1 if m >= N else 0)


class TestInterpolationWeights:
    @pytest.mark.parametrize("N", [1, 3, 4])
    def test_round_trip(self, N):
        phi = axis_breakpoints(N)
        rng = np.random.default_rng(0)
        for value in np.concatenate([rng.uniform(-1, 1, 50), phi]):
            m = locate_interval(phi, value)
            assert phi[m] <= value <= phi[m + 1]
            lam = interpolation_weights(phi, value, m)
            assert abs(phi @ lam - value) <= 1e-12
            assert abs(lam.sum() - 1) <= 1e-12
            assert np.all(lam >= 0)
            assert set(np.nonzero(lam)[0]) <= {m, m + 1}

    def test_zero_follows_sign_preference(self):
        phi = axis_breakpoints(3)
        assert locate_interval(phi, 0.0, prefer_positive=True) == 3
        assert locate_interval(phi, 0.0, prefer_positive=False) == 2

    def test_end_points(self):
        phi = axis_breakpoints(2)
        assert locate_interval(phi, 1.0) == 3
        assert locate_interval(phi, -1.0) == 0

    def test_outside_range(self):
        with pytest.raises(ValueError):
            locate_interval(axis_breakpoints(2), 1.5)
