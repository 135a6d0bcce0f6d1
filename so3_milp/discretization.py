import numpy as np
from sympy.combinatorics.graycode import GrayCode

# ==============================================================================
# AXIS DISCRETIZATION
# ==============================================================================

def envelope_min_value(i, num_intervals_per_half_axis):
    """Breakpoint i of the positive half axis. Valid for any integer i."""
    return i / num_intervals_per_half_axis


def axis_breakpoints(num_intervals_per_half_axis):
    """
    phi(k) = k/N - 1, k = 0..2N. phi(0) = -1, phi(N) = 0, phi(2N) = 1.
    """
    N = num_intervals_per_half_axis
    if N < 1:
        raise ValueError(f"num_intervals_per_half_axis must be >= 1, got {N}.")
    phi = np.array([envelope_min_value(k, N) - 1 for k in range(2 * N + 1)])
    # Force exact symmetry, k/N - 1 can differ from 1 - (2N-k)/N in the last bit.
    return 0.5 * (phi - phi[::-1])


def ceil_log2(n):
    if n < 1:
        raise ValueError(f"ceil_log2 needs a positive integer, got {n}.")
    return int(n - 1).bit_length()


def is_power_of_two(n):
    return n >= 1 and n == 1 << ceil_log2(n)


def gray_codes(num_digits):
    """
    Reflected binary Gray code, shape (2**num_digits, num_digits).
    Column 0 holds the most significant bit; consecutive rows differ in one bit.
    """
    if num_digits == 0:
        return np.zeros((1, 0), dtype=int)
    codes = list(GrayCode(num_digits).generate_gray())
    return np.array([[int(c) for c in code] for code in codes], dtype=int)


# ==============================================================================
# SOS2 WEIGHTS FOR A KNOWN VALUE
# ==============================================================================

def locate_interval(phi, value, prefer_positive=True, tol=1e-12):
    """
    Index m of the interval [phi(m), phi(m+1)] containing `value`.
    A value sitting on the middle breakpoint (zero) is put on the side
    selected by `prefer_positive`; other interior breakpoints go to the
    interval above them.
    """
    num_intervals = len(phi) - 1
    if value < phi[0] - tol or value > phi[-1] + tol:
        raise ValueError(f"{value} outside [{phi[0]}, {phi[-1]}].")
    mid = num_intervals // 2
    if abs(value) <= tol and num_intervals % 2 == 0:
        return mid if prefer_positive else mid - 1
    m = int(np.searchsorted(phi, value, side="right")) - 1
    return min(max(m, 0), num_intervals - 1)


def interpolation_weights(phi, value, interval):
    """
    SOS2 weights lam with lam[interval], lam[interval + 1] the only nonzeros,
    sum(lam) = 1 and phi @ lam = value.
    """
    lo, hi = phi[interval], phi[interval + 1]
    t = (value - lo) / (hi - lo)
    t = min(max(t, 0.0), 1.0)
    lam = np.zeros(len(phi))
    lam[interval] = 1.0 - t
    lam[interval + 1] = t
    return lam
