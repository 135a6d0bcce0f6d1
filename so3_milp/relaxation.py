import itertools
from collections import namedtuple

import cvxpy as cp
import numpy as np
from scipy.spatial.transform import Rotation
from tqdm import tqdm

from so3_milp.discretization import (axis_breakpoints, ceil_log2, gray_codes, interpolation_weights,
                                     is_power_of_two, locate_interval)
from so3_milp.geometry import CellKind, box_sphere_relaxation, flip_vector, orthant_axis_mask, skew
from so3_milp.rpy import (RollPitchYawLimits, add_bounding_box_constraints_implied_by_rpy_limits,
                          add_bounding_box_constraints_implied_by_rpy_limits_to_binary)
from so3_milp.sos2 import add_logarithmic_sos2_constraint, interval_binary_expression

# ==============================================================================
# ROTATION MATRIX VARIABLES
# ==============================================================================

def new_rotation_matrix_variables(prog, name="R"):
    """
    3x3 continuous variables with -1 <= R(i,j) <= 1 and -1 <= trace(R) <= 3.

    The eigenvalues of a rotation are {1, e^{ia}, e^{-ia}}, so
    trace(R) = 1 + 2 cos(a) lies in [-1, 3].
    """
    R = prog.new_continuous_variables((3, 3), name)
    prog.add_bounding_box_constraint(-1, 1, R)
    prog.add_linear_constraint([cp.trace(R) >= -1, cp.trace(R) <= 3])
    return R


# ==============================================================================
# ACTIVATION OF A (CELL, ORTHANT) PAIR
# ==============================================================================

class BoxActivation(namedtuple("BoxActivation", ["cell", "orthant"])):
    """
    Grid cell (xi, yi, zi) of the first orthant, reflected into `orthant`.

    cost() is a nonnegative expression of the binaries that is 0 exactly when
    the vector sits in this reflected cell and >= 1 otherwise, so
        g(v) <= cost * M
    holds trivially for an inactive cell and becomes g(v) <= 0 for the active one.
    """
    __slots__ = ()

    def full_axis_intervals(self, num_intervals_per_half_axis):
        # Half axis (0, 1/N, ..., 1) -> full axis (-1, ..., 0, ..., 1).
        N = num_intervals_per_half_axis
        mask = orthant_axis_mask(self.orthant)
        return [idx + N if m > 0 else N - 1 - idx for idx, m in zip(self.cell, mask)]

    def axis_costs(self, codes, axis_bits, num_intervals_per_half_axis):
        intervals = self.full_axis_intervals(num_intervals_per_half_axis)
        return [interval_binary_expression(k, codes, b) for k, b in zip(intervals, axis_bits)]

    def cost(self, codes, axis_bits, num_intervals_per_half_axis):
        c = self.axis_costs(codes, axis_bits, num_intervals_per_half_axis)
        return c[0] + c[1] + c[2]


# ==============================================================================
# PER-BOX CONSTRAINTS ON ONE VECTOR
# ==============================================================================

def orthant_activation_costs(cell, codes, axis_bits, num_intervals_per_half_axis):
    """
    Activation costs of `cell` reflected into each of the 8 orthants, stacked
    into one affine vector (entry o equals BoxActivation(cell, o).cost(...)).
    """
    rows, consts = [], []
    for o in range(8):
        code = codes[BoxActivation(cell, o).full_axis_intervals(num_intervals_per_half_axis)]
        consts.append(int(np.sum(code)))
        rows.append((1 - 2 * code).ravel())
    return np.array(rows) @ cp.hstack(list(axis_bits)) + np.array(consts)


# Row 3*o + k of a (24, .) stack belongs to orthant o, coordinate k.
_TILE_3 = np.tile(np.eye(3), (8, 1))
_REPEAT_3 = np.repeat(np.eye(8), 3, axis=0)


def add_mccormick_vector_constraints(prog, v, axis_bits, v1, v2, num_intervals_per_half_axis, codes,
                                     progress=False):
    """
    For a unit vector v with v1, v2 completing a right-handed orthonormal
    basis (v x v1 = v2), add per-cell constraints gated by the cell activation.

    axis_bits[i] is the Gray-code binary vector of v(i). The 8 reflections of
    a cell share one binding whose relations are stacked over orthants.
    """
    N = num_intervals_per_half_axis
    cells = list(itertools.product(range(N), repeat=3))
    for cell in tqdm(cells, disable=not progress, leave=False):
        box = box_sphere_relaxation(N, *cell)
        c = orthant_activation_costs(cell, codes, axis_bits, N)

        if box.kind is CellKind.EMPTY:
            prog.add_linear_constraint(c >= 1)

        elif box.kind is CellKind.POINT:
            # Active => v = u, u.v1 = 0, u.v2 = 0, u x v1 = v2.
            U = np.array([flip_vector(box.point, o) for o in range(8)])
            U_cross = np.vstack([skew(u) for u in U])
            c3 = _REPEAT_3 @ c
            prog.add_linear_constraint([
                _TILE_3 @ v - U.ravel() <= 2 * c3, _TILE_3 @ v - U.ravel() >= -2 * c3,
                U @ v1 <= c, U @ v1 >= -c,
                U @ v2 <= c, U @ v2 >= -c,
                U_cross @ v1 - _TILE_3 @ v2 <= 2 * c3, U_cross @ v1 - _TILE_3 @ v2 >= -2 * c3,
            ])

        else:
            sin_theta = float(np.sin(box.theta))
            cross_bound = float(2 * np.sin(box.theta / 2))
            normals = np.array([flip_vector(box.normal, o) for o in range(8)])
            constraints = []

            # Inner facets of the hull: A v <= b when active. Row 8*f + o is
            # facet f in orthant o.
            if len(box.b):
                A = np.vstack([[flip_vector(a, o) for o in range(8)] for a in box.A])
                b = np.repeat(np.asarray(box.b, dtype=float), 8)
                c_facets = np.tile(np.eye(8), (len(box.b), 1)) @ c
                constraints.append(A @ v - b <= cp.multiply(1 - b, c_facets))

            # |normal.v| <= |v| <= 1, ungated. normal(7-o) = -normal(o).
            constraints += [normals[:4] @ v >= -1, normals[:4] @ v <= 1]

            # v within theta of normal => v1, v2 within theta of the plane
            # orthogonal to normal: |normal.vi| <= sin(theta).
            constraints += [
                normals @ v1 <= sin_theta + c, normals @ v1 >= -sin_theta - c,
                normals @ v2 <= sin_theta + c, normals @ v2 >= -sin_theta - c,
            ]

            # |v2 - normal x v1|^2 <= 2 - 2 cos(theta) = (2 sin(theta/2))^2,
            # imposed elementwise.
            residual = _TILE_3 @ v2 - np.vstack([skew(n) for n in normals]) @ v1
            c3 = _REPEAT_3 @ c
            constraints += [
                residual <= cross_bound + 2 * c3,
                residual >= -cross_bound - 2 * c3,
            ]
            prog.add_linear_constraint(constraints)


# ==============================================================================
# UNIT LENGTH AND ORTHANT CUTS
# ==============================================================================

def add_unit_length_constraint(prog, phi, lam0, lam1, lam2):
    """
    x(i)^2 <= sum_k lam_i(k) phi(k)^2 on the active interval, so
        sum_i sum_k lam_i(k) phi(k)^2 >= 1
    is a relaxation of |x| = 1 that keeps x off the interior of the ball.
    """
    phi = np.asarray(phi, dtype=float)
    for lam in (lam0, lam1, lam2):
        if lam.shape[0] != phi.shape[0]:
            raise ValueError(f"Expected {phi.shape[0]} weights, got {lam.shape[0]}.")
    prog.add_linear_constraint((lam0 + lam1 + lam2) @ (phi ** 2) >= 1)


def add_not_in_same_or_opposite_orthant_constraint(prog, B, num_intervals_per_half_axis):
    """
    Columns of R cannot share an orthant or sit in opposite orthants (their
    inner product would be nonzero unless they lie on orthant boundaries, and
    then another orthant can be chosen).

    B is the 3x3 sign-bit matrix: B(i, j) = 0 => R(i, j) <= 0, 1 => R(i, j) >= 0.
    With t(i) >= |B(i,c0) + B(i,c1) - 1| (1 iff same sign) and
    s(i) >= |B(i,c0) - B(i,c1)| (1 iff opposite sign), sum(t) <= 2 rules out
    the same orthant and sum(s) <= 2 rules out the opposite one.

    The most significant Gray digit is a sign bit only when N is a power of two;
    otherwise nothing is added.
    """
    if not is_power_of_two(num_intervals_per_half_axis):
        return
    for c0, c1 in [(0, 1), (0, 2), (1, 2)]:
        t = prog.new_continuous_variables(3, "t", nonneg=True)
        s = prog.new_continuous_variables(3, "s", nonneg=True)
        same = B[:, c0] + B[:, c1] - 1
        diff = B[:, c0] - B[:, c1]
        prog.add_linear_constraint([
            cp.sum(t) <= 2, cp.sum(s) <= 2,
            t >= same, same >= -t,
            s >= diff, diff >= -s,
        ])


# ==============================================================================
# ORCHESTRATOR
# ==============================================================================

def add_rotation_matrix_mccormick_envelope_milp_constraints(prog, R, num_intervals_per_half_axis,
                                                            limits=RollPitchYawLimits.NO_LIMITS,
                                                            verbose=False):
    """
    Mixed-integer outer approximation of R in SO(3).

    Each R(i, j) = sum_k phi(k) lam_ij(k) with lam_ij SOS2 over the breakpoints
    phi = (-1, ..., 0, ..., 1) and encoded by Gray-code binaries.

    Returns:
        B: list of num_digits 3x3 cvxpy expressions. B[0](i, j) is the sign
        bit of R(i, j) when N is a power of two.
    """
    N = num_intervals_per_half_axis
    if N < 1:
        raise ValueError(f"num_intervals_per_half_axis must be >= 1, got {N}.")
    if R.shape != (3, 3):
        raise ValueError(f"R must be 3x3, got {R.shape}.")

    phi = axis_breakpoints(N)
    num_lambda = 2 * N + 1
    num_digits = ceil_log2(num_lambda - 1)
    codes = gray_codes(num_digits)
    if verbose:
        print(f"\n>>> SETUP: McCormick envelope MILP (N={N}, {num_digits} binaries per entry)...")

    # B_flat[k, 3*i + j] is digit k of entry (i, j).
    B_flat = prog.new_binary_variables((num_digits, 9), "B")
    lam = [[None] * 3 for _ in range(3)]
    for i in range(3):
        for j in range(3):
            lam[i][j] = prog.new_continuous_variables(num_lambda, f"lambda[{i}][{j}]")
            add_logarithmic_sos2_constraint(prog, lam[i][j], binary=B_flat[:, 3 * i + j])
            prog.add_linear_constraint(R[i, j] == phi @ lam[i][j])
    B = [cp.reshape(B_flat[k], (3, 3), order='C') for k in range(num_digits)]

    add_not_in_same_or_opposite_orthant_constraint(prog, B[0], N)
    add_not_in_same_or_opposite_orthant_constraint(prog, B[0].T, N)

    # Sign cuts go on the sign bit when there is one, on R otherwise.
    if is_power_of_two(N):
        add_bounding_box_constraints_implied_by_rpy_limits_to_binary(prog, B[0], limits)
    else:
        add_bounding_box_constraints_implied_by_rpy_limits(prog, R, limits)

    for i in range(3):
        add_unit_length_constraint(prog, phi, lam[0][i], lam[1][i], lam[2][i])
        add_unit_length_constraint(prog, phi, lam[i][0], lam[i][1], lam[i][2])

    if verbose:
        print(f"Building box constraints for {N ** 3} cells x 8 orthants x 6 vectors...")
    for i in range(3):
        col_bits = [B_flat[:, 3 * j + i] for j in range(3)]
        add_mccormick_vector_constraints(prog, R[:, i], col_bits, R[:, (i + 1) % 3], R[:, (i + 2) % 3],
                                         N, codes, progress=verbose)
        row_bits = [B_flat[:, 3 * i + j] for j in range(3)]
        add_mccormick_vector_constraints(prog, R[i, :], row_bits, R[(i + 1) % 3, :], R[(i + 2) % 3, :],
                                         N, codes, progress=verbose)

    if verbose:
        print(f"Done. {len(prog.constraints)} constraints, {len(prog.variables)} variable blocks.")
    return B


# ==============================================================================
# ASSIGNMENT FOR A KNOWN ROTATION (warm start)
# ==============================================================================

RotationAssignment = namedtuple("RotationAssignment", ["R", "lam", "B", "intervals"])


def _orthants_distinct(S):
    """No two columns of the sign matrix S are equal or opposite."""
    for c0, c1 in [(0, 1), (0, 2), (1, 2)]:
        if np.all(S[:, c0] == S[:, c1]) or np.all(S[:, c0] == -S[:, c1]):
            return False
    return True


def rotation_sos2_assignment(R0, num_intervals_per_half_axis, tol=1e-12):
    """
    SOS2 weights and Gray-code binaries representing the rotation closest to R0.

    Entries within `tol` of a breakpoint are snapped onto it. Zero entries may
    be encoded on either side of zero; their signs are chosen so no two rows
    or columns fall in the same or opposite orthant.
    """
    N = num_intervals_per_half_axis
    phi = axis_breakpoints(N)
    num_digits = ceil_log2(2 * N)
    codes = gray_codes(num_digits)

    R = Rotation.from_matrix(np.asarray(R0, dtype=float)).as_matrix()
    nearest = phi[np.abs(R[..., None] - phi).argmin(axis=-1)]
    R = np.where(np.abs(R - nearest) < tol, nearest, R)

    zeros = list(zip(*np.nonzero(R == 0)))
    S = np.where(R > 0, 1, -1)
    for choice in itertools.product([1, -1], repeat=len(zeros)):
        for (i, j), sign in zip(zeros, choice):
            S[i, j] = sign
        if _orthants_distinct(S) and _orthants_distinct(S.T):
            break
    else:
        raise ValueError("No sign assignment keeps rows and columns in distinct orthants.")

    lam = np.zeros((3, 3, len(phi)))
    intervals = np.zeros((3, 3), dtype=int)
    B = [np.zeros((3, 3), dtype=int) for _ in range(num_digits)]
    for i in range(3):
        for j in range(3):
            m = locate_interval(phi, R[i, j], prefer_positive=S[i, j] > 0, tol=tol)
            intervals[i, j] = m
            lam[i, j] = interpolation_weights(phi, R[i, j], m)
            for k in range(num_digits):
                B[k][i, j] = codes[m, k]
    return RotationAssignment(R, lam, B, intervals)
