from enum import IntFlag

# ==============================================================================
# ROLL-PITCH-YAW LIMITS
# ==============================================================================

class RollPitchYawLimits(IntFlag):
    NO_LIMITS = 0
    ROLL_NEG_PI_2_TO_PI_2 = 1 << 1    # cos(roll) >= 0
    ROLL_0_TO_PI = 1 << 2             # sin(roll) >= 0
    PITCH_NEG_PI_2_TO_PI_2 = 1 << 3   # cos(pitch) >= 0
    PITCH_0_TO_PI = 1 << 4            # sin(pitch) >= 0
    YAW_NEG_PI_2_TO_PI_2 = 1 << 5     # cos(yaw) >= 0
    YAW_0_TO_PI = 1 << 6              # sin(yaw) >= 0
    ROLL_0_TO_PI_2 = (1 << 1) | (1 << 2)
    PITCH_0_TO_PI_2 = (1 << 3) | (1 << 4)
    YAW_0_TO_PI_2 = (1 << 5) | (1 << 6)


def _has(limits, *flags):
    return all(limits & flag for flag in flags)


def rpy_sign_cuts(limits):
    """
    Entries of R whose sign is fixed by the limits, as (row, col, sign).

    R = Rz(yaw) Ry(pitch) Rx(roll) =
      [ cp*cy, cy*sp*sr - cr*sy, sr*sy + cr*cy*sp]
      [ cp*sy, cr*cy + sp*sr*sy, cr*sp*sy - cy*sr]
      [   -sp,            cp*sr,            cp*cr]
    """
    L = RollPitchYawLimits
    all_five = (L.ROLL_NEG_PI_2_TO_PI_2, L.ROLL_0_TO_PI, L.PITCH_0_TO_PI,
                L.YAW_NEG_PI_2_TO_PI_2, L.YAW_0_TO_PI)
    cuts = []
    if _has(limits, L.PITCH_NEG_PI_2_TO_PI_2, L.YAW_NEG_PI_2_TO_PI_2):
        cuts.append((0, 0, 1))
    if _has(limits, L.PITCH_NEG_PI_2_TO_PI_2, L.YAW_0_TO_PI):
        cuts.append((1, 0, 1))
    if _has(limits, L.PITCH_0_TO_PI):
        cuts.append((2, 0, -1))
    if _has(limits, *all_five):
        cuts.append((1, 1, 1))
    if _has(limits, L.PITCH_NEG_PI_2_TO_PI_2, L.ROLL_0_TO_PI):
        cuts.append((2, 1, 1))
    if _has(limits, *all_five):
        cuts.append((0, 2, 1))
    if _has(limits, L.PITCH_NEG_PI_2_TO_PI_2, L.ROLL_NEG_PI_2_TO_PI_2):
        cuts.append((2, 2, 1))
    return cuts


def add_bounding_box_constraints_implied_by_rpy_limits(prog, R, limits):
    """Bound the sign-fixed entries of R. Returns [(row, col, lb, ub)]."""
    applied = []
    for i, j, sign in rpy_sign_cuts(limits):
        lb, ub = (0, 1) if sign > 0 else (-1, 0)
        prog.add_bounding_box_constraint(lb, ub, R[i, j])
        applied.append((i, j, lb, ub))
    return applied


def add_bounding_box_constraints_implied_by_rpy_limits_to_binary(prog, B0, limits):
    """
    Same cuts on the sign bits B0 (B0 = 1 <=> R >= 0). Only valid when the
    most significant Gray digit is the sign bit.
    """
    applied = []
    for i, j, sign in rpy_sign_cuts(limits):
        val = 1 if sign > 0 else 0
        prog.add_bounding_box_constraint(val, val, B0[i, j])
        applied.append((i, j, val, val))
    return applied
