from so3_milp.program import Binding, RotationProgram
from so3_milp.discretization import (axis_breakpoints, ceil_log2, envelope_min_value, gray_codes,
                                     interpolation_weights, is_power_of_two, locate_interval)
from so3_milp.sos2 import (add_bilinear_product_mccormick_sos2, add_logarithmic_sos2_constraint,
                           interval_binary_expression)
from so3_milp.geometry import (BoxSphereRelaxation, CellKind, GeometryDegenerateError, GeometryError, PlaneFit,
                               are_all_vertices_coplanar, box_sphere_relaxation,
                               compute_box_edges_and_sphere_intersection, compute_halfspace_relaxation,
                               compute_inner_facets, compute_triangle_outward_normal, flip_vector)
from so3_milp.rpy import (RollPitchYawLimits, add_bounding_box_constraints_implied_by_rpy_limits,
                          add_bounding_box_constraints_implied_by_rpy_limits_to_binary, rpy_sign_cuts)
from so3_milp.relaxation import (BoxActivation, RotationAssignment, add_mccormick_vector_constraints,
                                 add_not_in_same_or_opposite_orthant_constraint,
                                 add_rotation_matrix_mccormick_envelope_milp_constraints,
                                 add_unit_length_constraint, new_rotation_matrix_variables, orthant_activation_costs,
                                 rotation_sos2_assignment)

__version__ = "0.1.0"
