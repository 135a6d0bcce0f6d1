import functools
import itertools
from collections import namedtuple
from enum import Enum

import cvxpy as cp
import numpy as np

from so3_milp.discretization import envelope_min_value
from so3_milp.program import RotationProgram

# ==============================================================================
# TOLERANCES
# ==============================================================================

# Three points whose triangle has |cross| below this are treated as colinear.
COLINEAR_TOLERANCE = 1e-3
COPLANAR_TOLERANCE = 1e-10
# |x| == 1 and y(i) = x(i) + eps  =>  |y| <= 1 + 2 * eps.
SPHERE_TOLERANCE = 2 * np.finfo(float).eps
HALFSPACE_SOLVER = cp.CLARABEL


# ==============================================================================
# VECTOR HELPERS
# ==============================================================================

def skew(v): return np.array([[0,-v[2],v[1]],[v[2],0,-v[0]],[-v[1],v[0],0]])


def orthant_axis_mask(orthant):
    """
    +1/-1 per axis for an orthant index in 0..7.
    Bit 2 flips x, bit 1 flips y, bit 0 flips z.
    """
    if not 0 <= orthant <= 7:
        raise ValueError(f"Orthant index must be in [0, 7], got {orthant}.")
    return np.array([-1 if orthant & (1 << (2 - axis)) else 1 for axis in range(3)])


def flip_vector(v, orthant):
    """Reflect a first-orthant vector into `orthant`."""
    return np.asarray(v, dtype=float) * orthant_axis_mask(orthant)


# ==============================================================================
# PLANE FITS (explicit result instead of an exception)
# ==============================================================================

class GeometryError(Enum):
    DEGENERATE = "degenerate"


class GeometryDegenerateError(ValueError):
    pass


class PlaneFit(namedtuple("PlaneFit", ["normal", "offset", "error"])):
    """Plane normal.dot(x) = offset, or an error kind when no plane could be fit."""
    __slots__ = ()

    @property
    def ok(self):
        return self.error is None

    def unwrap(self):
        if self.error is GeometryError.DEGENERATE:
            raise GeometryDegenerateError("The points are almost colinear.")
        return self.normal, self.offset


def compute_triangle_outward_normal(p0, p1, p2):
    """
    Unit normal of the triangle (p0, p1, p2), oriented so that its coordinates
    sum to a nonnegative number (pointing away from the origin for first
    orthant points), together with the offset d = normal.dot(p0).
    """
    p0, p1, p2 = (np.asarray(p, dtype=float) for p in (p0, p1, p2))
    if np.any(p0 < 0) or np.any(p1 < 0) or np.any(p2 < 0):
        raise ValueError("Triangle vertices must lie in the first orthant.")
    n = np.cross(p2 - p0, p1 - p0)
    n_norm = np.linalg.norm(n)
    if n_norm < COLINEAR_TOLERANCE:
        return PlaneFit(np.zeros(3), 0.0, GeometryError.DEGENERATE)
    n = n / n_norm
    if n.sum() < 0:
        n = -n
    return PlaneFit(n, float(p0 @ n), None)


def are_all_vertices_coplanar(pts):
    """
    Returns (coplanar, fit). `fit` is the plane through the first three
    points; all of `pts` lie on it iff `coplanar` is True.
    """
    if len(pts) < 3:
        raise ValueError(f"Need at least 3 points, got {len(pts)}.")
    fit = compute_triangle_outward_normal(pts[0], pts[1], pts[2])
    if not fit.ok:
        return False, fit
    for pt in pts[3:]:
        if abs(fit.normal @ pt - fit.offset) > COPLANAR_TOLERANCE:
            return False, fit
    return True, fit


# ==============================================================================
# BOX / SPHERE INTERSECTION
# ==============================================================================

def _intercept(x, y):
    """Positive third coordinate on the unit sphere given the other two."""
    return np.sqrt(1 - x * x - y * y)


def _on_sphere(pt):
    return abs(np.linalg.norm(pt) - 1) <= SPHERE_TOLERANCE


def compute_box_edges_and_sphere_intersection(box_min, box_max):
    """
    Points where the edges of the first-orthant box [box_min, box_max] cross
    the unit sphere. Each of the 12 edges crosses at most once. A corner
    within SPHERE_TOLERANCE of the sphere counts as a crossing of its own and
    is not reported again by the edges meeting there.
    """
    box_min = np.asarray(box_min, dtype=float)
    box_max = np.asarray(box_max, dtype=float)
    if np.any(box_min < 0) or np.any(box_max <= box_min):
        raise ValueError("Expected 0 <= box_min < box_max elementwise.")
    if np.linalg.norm(box_min) > 1 + SPHERE_TOLERANCE or np.linalg.norm(box_max) < 1 - SPHERE_TOLERANCE:
        raise ValueError("The box does not straddle the unit sphere.")

    # Only one corner touches the sphere.
    if _on_sphere(box_min):
        return [box_min.copy()]
    if _on_sphere(box_max):
        return [box_max.copy()]

    intersections = []

    # 1. Box vertices lying on the sphere
    for i in range(8):
        vertex = np.array([box_min[axis] if i & (1 << axis) else box_max[axis] for axis in range(3)])
        if _on_sphere(vertex):
            intersections.append(vertex)

    # 2. Strictly interior crossing of each edge
    for axis in range(3):
        fixed1, fixed2 = (axis + 1) % 3, (axis + 2) % 3
        for val1 in (box_min[fixed1], box_max[fixed1]):
            for val2 in (box_min[fixed2], box_max[fixed2]):
                pt_closer = np.zeros(3); pt_closer[[fixed1, fixed2]] = val1, val2
                pt_farther = pt_closer.copy()
                pt_closer[axis] = box_min[axis]
                pt_farther[axis] = box_max[axis]
                if np.linalg.norm(pt_closer) < 1 - SPHERE_TOLERANCE and \
                        np.linalg.norm(pt_farther) > 1 + SPHERE_TOLERANCE:
                    pt = pt_closer.copy()
                    pt[axis] = _intercept(val1, val2)
                    intersections.append(pt)
    return intersections


def compute_halfspace_relaxation(pts):
    """
    Tightest half space normal.dot(v) >= d containing the intersection region
    whose vertices are `pts`.

    For a fixed n in the same orthant as the box, min n.dot(v) over the curved
    region is attained at one of the vertices: along any arc with one
    coordinate fixed, n.dot(v) = n(0) t + s (n(1) cos(a) + n(2) sin(a)), whose
    minimum sits at the boundary of a. Hence
        max d  s.t.  n.dot(pts[i]) >= d,  |n| <= 1
    gives the best cut.
    """
    coplanar, fit = are_all_vertices_coplanar(pts)
    if coplanar:
        return fit.normal, fit.offset

    P = np.array(pts)
    prog = RotationProgram()
    n = prog.new_continuous_variables(3, "n")
    d = prog.new_continuous_variables((), "d")
    prog.add_linear_constraint(P @ n >= d)
    prog.add_lorentz_cone_constraint(cp.hstack([np.ones(1), n]))
    status = prog.solve(cp.Maximize(d), solver=HALFSPACE_SOLVER)
    if not prog.is_feasible():
        raise RuntimeError(f"Half-space relaxation solve failed with status '{status}'.")

    # Recompute d from the vertices so solver tolerance cannot cut one off.
    normal = n.value / np.linalg.norm(n.value)
    offset = float(np.min(P @ normal))
    if np.any(normal < -1e-9) or not 0 < offset < 1:
        raise RuntimeError(f"Unexpected half space n={normal}, d={offset}.")
    return normal, offset


def compute_inner_facets(pts):
    """
    Planar facets of the convex hull of `pts` facing the origin, as A x <= b.

    Every triangle of vertices is tried; its plane c.dot(x) >= d is kept when
    all other vertices satisfy it, which by the vertex-minimum property above
    means the whole region does. Rows of A are unit length. Triangles that are
    too thin to define a plane are skipped.
    """
    for pt in pts:
        if np.any(np.asarray(pt) < 0):
            raise ValueError("Intersection points must lie in the first orthant.")
    A, b = [], []
    for i, j, k in itertools.combinations(range(len(pts)), 3):
        fit = compute_triangle_outward_normal(pts[i], pts[j], pts[k])
        if not fit.ok:
            continue
        others = (pts[l] for l in range(len(pts)) if l not in (i, j, k))
        if all(fit.normal @ pt >= fit.offset - COPLANAR_TOLERANCE for pt in others):
            row, rhs = -fit.normal, -fit.offset
            # Coplanar vertices yield the same facet from several triangles.
            if any(np.allclose(row, a) and np.isclose(rhs, c) for a, c in zip(A, b)):
                continue
            A.append(row); b.append(rhs)
    return np.array(A).reshape(-1, 3), np.array(b)


# ==============================================================================
# GRID CELL CLASSIFICATION
# ==============================================================================

class CellKind(Enum):
    EMPTY = "empty"     # the cell misses the sphere
    POINT = "point"     # a single corner touches the sphere
    REGION = "region"   # a curved patch of the sphere


BoxSphereRelaxation = namedtuple(
    "BoxSphereRelaxation",
    ["kind", "box_min", "box_max", "point", "normal", "d", "theta", "A", "b"])


def _frozen(a):
    a = np.asarray(a, dtype=float)
    a.setflags(write=False)
    return a


@functools.lru_cache(maxsize=None)
def box_sphere_relaxation(num_intervals_per_half_axis, xi, yi, zi):
    """
    Geometry of grid cell (xi, yi, zi) in the first orthant. Only depends on
    the grid, so results are cached and shared by every rotation matrix relaxed
    at the same resolution. Returned arrays are read-only.
    """
    N = num_intervals_per_half_axis
    if not all(0 <= idx < N for idx in (xi, yi, zi)):
        raise ValueError(f"Cell ({xi}, {yi}, {zi}) outside a {N}^3 grid.")
    box_min = _frozen([envelope_min_value(idx, N) for idx in (xi, yi, zi)])
    box_max = _frozen([envelope_min_value(idx + 1, N) for idx in (xi, yi, zi)])
    min_norm, max_norm = np.linalg.norm(box_min), np.linalg.norm(box_max)

    if min_norm > 1 + SPHERE_TOLERANCE or max_norm < 1 - SPHERE_TOLERANCE:
        return BoxSphereRelaxation(CellKind.EMPTY, box_min, box_max, None, None, None, None, None, None)

    if abs(min_norm - 1) <= SPHERE_TOLERANCE or abs(max_norm - 1) <= SPHERE_TOLERANCE:
        u = box_min / min_norm if abs(min_norm - 1) <= SPHERE_TOLERANCE else box_max / max_norm
        return BoxSphereRelaxation(CellKind.POINT, box_min, box_max, _frozen(u), None, None, None, None, None)

    pts = compute_box_edges_and_sphere_intersection(box_min, box_max)
    if len(pts) < 3:
        raise RuntimeError(f"Cell ({xi}, {yi}, {zi}) meets the sphere in only {len(pts)} points.")
    normal, d = compute_halfspace_relaxation(pts)
    A, b = compute_inner_facets(pts)
    # theta: largest angle between the normal and any point of the patch.
    theta = float(np.arccos(min(d, 1.0)))
    return BoxSphereRelaxation(CellKind.REGION, box_min, box_max, None,
                               _frozen(normal), d, theta, _frozen(A), _frozen(b))
