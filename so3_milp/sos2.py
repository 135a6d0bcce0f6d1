import cvxpy as cp
import numpy as np

from so3_milp.discretization import ceil_log2, gray_codes

# ==============================================================================
# LOGARITHMIC SOS2 (Gray-code encoding)
# ==============================================================================

def _breakpoints_with_uniform_bit(codes, num_lambda, digit, bit):
    """
    Breakpoints k whose adjacent intervals (k-1 and k) all carry `bit` in
    column `digit` of the Gray-code table.
    """
    ret = []
    for k in range(num_lambda):
        adjacent = [i for i in (k - 1, k) if 0 <= i < num_lambda - 1]
        if all(codes[i, digit] == bit for i in adjacent):
            ret.append(k)
    return ret


def add_logarithmic_sos2_constraint(prog, lam, binary=None, name="y"):
    """
    Constrain `lam` to be an SOS2 vector (nonnegative, sums to one, at most two
    adjacent nonzeros) using ceil(log2(len(lam) - 1)) binary variables.

    Interval i = [phi(i), phi(i+1)] is selected when the binaries equal row i of
    the reflected Gray code table. For every digit j:
        sum_{k in L_j} lam(k) <= y(j)
        sum_{k in R_j} lam(k) <= 1 - y(j)
    where L_j (R_j) are breakpoints whose adjacent intervals all have bit j
    equal to 1 (0).

    Args:
        lam: cvxpy vector expression of length >= 2.
        binary: optional pre-allocated binary vector of length num_digits.
    Returns:
        The binary vector y.
    """
    num_lambda = lam.shape[0]
    if num_lambda < 2:
        raise ValueError("SOS2 constraint needs at least two weights.")
    num_digits = ceil_log2(num_lambda - 1)
    codes = gray_codes(num_digits)

    if binary is None:
        binary = prog.new_binary_variables(num_digits, name)
    elif binary.shape[0] != num_digits:
        raise ValueError(f"Expected {num_digits} binary variables, got {binary.shape[0]}.")

    prog.add_linear_constraint([cp.sum(lam) == 1, lam >= 0])
    for j in range(num_digits):
        ones = _breakpoints_with_uniform_bit(codes, num_lambda, j, 1)
        zeros = _breakpoints_with_uniform_bit(codes, num_lambda, j, 0)
        if ones:
            prog.add_linear_constraint(cp.sum(lam[ones]) <= binary[j])
        if zeros:
            prog.add_linear_constraint(cp.sum(lam[zeros]) <= 1 - binary[j])
    return binary


def interval_binary_expression(interval, codes, b):
    """
    sum_j (1 - b(j) if code(j) else b(j)) for the code of `interval`.

    Zero when the binary assignment b equals the code, >= 1 for any other 0/1
    assignment. `b` may be a numpy array or a cvxpy vector; the arithmetic is
    the same for both.
    """
    if not 0 <= interval < codes.shape[0]:
        raise ValueError(f"Interval {interval} outside [0, {codes.shape[0]}).")
    if b.shape[0] != codes.shape[1]:
        raise ValueError(f"Expected {codes.shape[1]} binaries, got {b.shape[0]}.")
    code = codes[interval]
    return int(np.sum(code)) + (1 - 2 * code) @ b


# ==============================================================================
# BILINEAR PRODUCT ENVELOPE
# ==============================================================================

def add_bilinear_product_mccormick_sos2(prog, x, y, phi_x, phi_y, name="w"):
    """
    Returns (w, Bx, By), w being a relaxation of x * y.

    A weight grid Lambda(i, j) >= 0 over the breakpoints of phi_x and phi_y
    is added, with its row sums SOS2 on phi_x and its column sums SOS2 on phi_y.
    Then x = sum phi_x(i) Lambda(i, j), y = sum phi_y(j) Lambda(i, j) and
    w = sum phi_x(i) phi_y(j) Lambda(i, j). Inside the active cell
    [phi_x(i), phi_x(i+1)] x [phi_y(j), phi_y(j+1)] this is the convex hull of
    the four corner products, i.e. the McCormick envelope of that cell; at a
    grid vertex w = x * y exactly.
    """
    phi_x = np.asarray(phi_x, dtype=float)
    phi_y = np.asarray(phi_y, dtype=float)
    if np.any(np.diff(phi_x) <= 0) or np.any(np.diff(phi_y) <= 0):
        raise ValueError("Breakpoints must be strictly increasing.")

    Lam = prog.new_continuous_variables((len(phi_x), len(phi_y)), f"{name}_lambda", nonneg=True)
    lam_x = cp.sum(Lam, axis=1)
    lam_y = cp.sum(Lam, axis=0)
    Bx = add_logarithmic_sos2_constraint(prog, lam_x, name=f"{name}_Bx")
    By = add_logarithmic_sos2_constraint(prog, lam_y, name=f"{name}_By")

    w = prog.new_continuous_variables((), name)
    prog.add_linear_constraint([
        x == phi_x @ lam_x,
        y == phi_y @ lam_y,
        w == cp.sum(cp.multiply(np.outer(phi_x, phi_y), Lam)),
    ])
    return w, Bx, By
