import cvxpy as cp
from collections import namedtuple

# ==============================================================================
# MODEL BUILDER
# ==============================================================================

# One record per add_* call. `constraints` holds the cvxpy objects it produced.
Binding = namedtuple("Binding", ["kind", "expr", "constraints"])

DEFAULT_SOLVER = cp.CLARABEL


class RotationProgram:
    """
    Explicit model builder that every relaxation routine appends into.

    Variables and constraints are plain cvxpy objects; the builder only keeps
    track of what was emitted so the caller can assemble (and audit) a
    cp.Problem afterwards.
    """
    def __init__(self, relax_integrality=False):
        self.relax_integrality = relax_integrality
        self.variables = []   # [(name, cp.Variable)]
        self.bindings = []    # [Binding]
        self.problem = None

    # --- Variables ---
    def new_continuous_variables(self, shape, name, nonneg=False):
        var = cp.Variable(shape, name=name, nonneg=nonneg)
        self.variables.append((name, var))
        return var

    def new_binary_variables(self, shape, name):
        if self.relax_integrality:
            var = cp.Variable(shape, name=name, nonneg=True)
            self._append("bounding_box", var, [var <= 1])
        else:
            var = cp.Variable(shape, name=name, boolean=True)
        self.variables.append((name, var))
        return var

    # --- Constraints ---
    def _append(self, kind, expr, constraints):
        binding = Binding(kind, expr, list(constraints))
        self.bindings.append(binding)
        return binding

    def add_bounding_box_constraint(self, lb, ub, expr):
        return self._append("bounding_box", expr, [expr >= lb, expr <= ub])

    def add_linear_constraint(self, constraint):
        """Accepts a single cvxpy relation or a list of them."""
        if isinstance(constraint, (list, tuple)):
            return self._append("linear", None, constraint)
        return self._append("linear", None, [constraint])

    def add_lorentz_cone_constraint(self, z):
        """z[0] >= ||z[1:]||_2 for an affine vector z."""
        if z.shape[0] < 2:
            raise ValueError("Lorentz cone needs at least two entries.")
        return self._append("lorentz_cone", z, [cp.SOC(z[0], z[1:])])

    @property
    def constraints(self):
        return [c for b in self.bindings for c in b.constraints]

    def bindings_of_kind(self, kind):
        return [b for b in self.bindings if b.kind == kind]

    # --- Solve ---
    def solve(self, objective=None, solver=None, verbose=False, **kwargs):
        """
        Assemble and solve the problem. Falls back to SCS when the requested
        solver is unavailable or fails. Returns the cvxpy status string.
        """
        if objective is None:
            objective = cp.Minimize(0)
        self.problem = cp.Problem(objective, self.constraints)
        solver = DEFAULT_SOLVER if solver is None else solver
        try:
            self.problem.solve(solver=solver, verbose=verbose, **kwargs)
        except cp.error.SolverError:
            if verbose:
                print(f">>> {solver} failed, retrying with SCS...")
            self.problem.solve(solver=cp.SCS, verbose=verbose, **kwargs)
        return self.problem.status

    def is_feasible(self):
        return self.problem is not None and \
            self.problem.status in [cp.OPTIMAL, cp.OPTIMAL_INACCURATE]
