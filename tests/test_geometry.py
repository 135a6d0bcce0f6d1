import itertools

import numpy as np
import pytest

from so3_milp.discretization import envelope_min_value
from so3_milp.geometry import (SPHERE_TOLERANCE, CellKind, GeometryDegenerateError, GeometryError,
                               are_all_vertices_coplanar, box_sphere_relaxation, compute_box_edges_and_sphere_intersection,
                               compute_halfspace_relaxation, compute_inner_facets,
                               compute_triangle_outward_normal, flip_vector, orthant_axis_mask)


def _sphere_points_in_box(box_min, box_max, n=4000, seed=0):
    """Unit vectors in the first orthant that fall inside the box."""
    rng = np.random.default_rng(seed)
    v = np.abs(rng.normal(size=(n, 3)))
    v /= np.linalg.norm(v, axis=1, keepdims=True)
    inside = np.all((v >= box_min) & (v <= box_max), axis=1)
    return v[inside]


class TestBoxSphereIntersection:
    def test_unit_box_hits_axes(self):
        pts = compute_box_edges_and_sphere_intersection(np.zeros(3), np.ones(3))
        assert len(pts) == 3
        assert {tuple(p) for p in pts} == {(1.0, 0.0, 0.0), (0.0, 1.0, 0.0), (0.0, 0.0, 1.0)}

    def test_single_corner(self):
        pts = compute_box_edges_and_sphere_intersection([1, 0, 0], [2, 1, 1])
        assert len(pts) == 1
        np.testing.assert_array_equal(pts[0], [1, 0, 0])

    def test_edge_crossings(self):
        box_min, box_max = np.array([0.5, 0, 0]), np.array([1, 0.5, 0.5])
        pts = compute_box_edges_and_sphere_intersection(box_min, box_max)
        assert len(pts) == 4
        for p in pts:
            assert np.linalg.norm(p) == pytest.approx(1, abs=1e-12)
            assert np.all(p >= box_min) and np.all(p <= box_max)

    def test_corner_near_sphere_reported_once(self):
        # (1/3, 2/3, 2/3) lies on the sphere only up to rounding.
        box_min = np.array([0, 2, 2]) / 3
        box_max = np.array([1, 3, 3]) / 3
        pts = compute_box_edges_and_sphere_intersection(box_min, box_max)
        assert len(pts) == 3
        assert any(np.allclose(p, [1 / 3, 2 / 3, 2 / 3]) for p in pts)

    @pytest.mark.parametrize("N", range(1, 7))
    def test_no_duplicate_points(self, N):
        for cell in itertools.product(range(N), repeat=3):
            box_min = np.array([envelope_min_value(i, N) for i in cell])
            box_max = np.array([envelope_min_value(i + 1, N) for i in cell])
            if np.linalg.norm(box_min) >= 1 - SPHERE_TOLERANCE or np.linalg.norm(box_max) <= 1 + SPHERE_TOLERANCE:
                continue
            pts = compute_box_edges_and_sphere_intersection(box_min, box_max)
            for p, q in itertools.combinations(pts, 2):
                assert np.linalg.norm(p - q) > 1e-9, (cell, pts)

    def test_box_must_straddle_sphere(self):
        with pytest.raises(ValueError):
            compute_box_edges_and_sphere_intersection([0, 0, 0], [0.5, 0.5, 0.5])
        with pytest.raises(ValueError):
            compute_box_edges_and_sphere_intersection([1, 1, 1], [2, 2, 2])


class TestPlaneFit:
    def test_unit_triangle(self):
        pts = [np.array([1.0, 0, 0]), np.array([0, 1.0, 0]), np.array([0, 0, 1.0])]
        coplanar, fit = are_all_vertices_coplanar(pts)
        assert coplanar
        np.testing.assert_allclose(fit.normal, np.ones(3) / np.sqrt(3))
        assert fit.offset == pytest.approx(1 / np.sqrt(3))

    def test_normal_points_away_from_origin(self):
        fit = compute_triangle_outward_normal([0, 0, 1], [1, 0, 0], [0, 1, 0])
        assert fit.ok
        assert fit.normal.sum() > 0

    def test_near_colinear_is_degenerate(self):
        fit = compute_triangle_outward_normal([1, 0, 0], [1, 1e-5, 0], [1, 2e-5, 0])
        assert fit.error is GeometryError.DEGENERATE
        assert not fit.ok
        with pytest.raises(GeometryDegenerateError):
            fit.unwrap()

    def test_degenerate_is_a_value_error(self):
        assert issubclass(GeometryDegenerateError, ValueError)

    def test_rejects_points_outside_first_orthant(self):
        with pytest.raises(ValueError):
            compute_triangle_outward_normal([-1, 0, 0], [0, 1, 0], [0, 0, 1])

    def test_not_coplanar(self):
        pts = compute_box_edges_and_sphere_intersection([0.5, 0, 0], [1, 0.5, 0.5])
        coplanar, _ = are_all_vertices_coplanar(pts)
        assert not coplanar


class TestHalfSpaceRelaxation:
    box_min = np.array([0.5, 0.0, 0.0])
    box_max = np.array([1.0, 0.5, 0.5])

    def test_coplanar_shortcut(self):
        pts = compute_box_edges_and_sphere_intersection(np.zeros(3), np.ones(3))
        normal, d = compute_halfspace_relaxation(pts)
        np.testing.assert_allclose(normal, np.ones(3) / np.sqrt(3))
        assert d == pytest.approx(1 / np.sqrt(3))

    def test_valid_over_curved_region(self):
        pts = compute_box_edges_and_sphere_intersection(self.box_min, self.box_max)
        normal, d = compute_halfspace_relaxation(pts)
        assert np.linalg.norm(normal) == pytest.approx(1)
        assert 0 < d < 1
        assert min(normal @ p for p in pts) == pytest.approx(d, abs=1e-12)
        samples = _sphere_points_in_box(self.box_min, self.box_max)
        assert len(samples) > 0
        assert np.all(samples @ normal >= d - 1e-9)

    def test_tightest_among_sampled_normals(self):
        pts = np.array(compute_box_edges_and_sphere_intersection(self.box_min, self.box_max))
        _, d = compute_halfspace_relaxation(pts)
        rng = np.random.default_rng(1)
        for n in np.abs(rng.normal(size=(500, 3))):
            n /= np.linalg.norm(n)
            assert np.min(pts @ n) <= d + 1e-6


class TestInnerFacets:
    def test_single_facet_for_unit_box(self):
        pts = compute_box_edges_and_sphere_intersection(np.zeros(3), np.ones(3))
        A, b = compute_inner_facets(pts)
        assert A.shape == (1, 3)
        np.testing.assert_allclose(A[0], -np.ones(3) / np.sqrt(3))
        assert b[0] == pytest.approx(-1 / np.sqrt(3))

    def test_facets_hold_on_region(self):
        box_min, box_max = np.array([0.5, 0.0, 0.0]), np.array([1.0, 0.5, 0.5])
        pts = compute_box_edges_and_sphere_intersection(box_min, box_max)
        A, b = compute_inner_facets(pts)
        assert A.shape[0] >= 1
        np.testing.assert_allclose(np.linalg.norm(A, axis=1), 1)
        samples = _sphere_points_in_box(box_min, box_max)
        assert np.all(samples @ A.T <= b + 1e-9)


class TestOrthants:
    def test_mask(self):
        np.testing.assert_array_equal(orthant_axis_mask(0), [1, 1, 1])
        np.testing.assert_array_equal(orthant_axis_mask(4), [-1, 1, 1])
        np.testing.assert_array_equal(orthant_axis_mask(1), [1, 1, -1])
        np.testing.assert_array_equal(orthant_axis_mask(7), [-1, -1, -1])

    def test_flip(self):
        np.testing.assert_array_equal(flip_vector([1, 2, 3], 6), [-1, -2, 3])

    def test_out_of_range(self):
        with pytest.raises(ValueError):
            flip_vector([1, 2, 3], 8)


class TestCellClassification:
    def test_kinds(self):
        assert box_sphere_relaxation(2, 0, 0, 0).kind is CellKind.EMPTY
        assert box_sphere_relaxation(2, 1, 0, 0).kind is CellKind.REGION
        assert box_sphere_relaxation(1, 0, 0, 0).kind is CellKind.REGION

    def test_corner_on_sphere(self):
        box = box_sphere_relaxation(5, 3, 4, 0)
        assert box.kind is CellKind.POINT
        np.testing.assert_allclose(box.point, [0.6, 0.8, 0.0])

    def test_region_angle(self):
        box = box_sphere_relaxation(1, 0, 0, 0)
        assert box.d == pytest.approx(1 / np.sqrt(3))
        assert box.theta == pytest.approx(np.arccos(1 / np.sqrt(3)))

    def test_cached_and_read_only(self):
        first = box_sphere_relaxation(2, 1, 1, 0)
        assert box_sphere_relaxation(2, 1, 1, 0) is first
        with pytest.raises(ValueError):
            first.normal[0] = 0.0

    def test_cell_out_of_range(self):
        with pytest.raises(ValueError):
            box_sphere_relaxation(2, 2, 0, 0)
