"""Displacement-scaled noise model for relative pose estimates."""
from dataclasses import dataclass
import math

import numpy as np

from .geometry import wrap_angle
from .models import Pose2D, PoseDeltaWithUncertainty


@dataclass(frozen=True)
class NoiseCoefficients:
    """Coefficients of the odometry-style noise model.

    ``sigma_*`` are standard deviations that floor the variance for a zero
    motion; ``k_*`` add variance proportional to the motion magnitude
    (translation for ``k_disp_disp``, rotation for ``k_rot_rot`` and the
    cross term ``k_rot_disp`` in both directions).
    """
    k_disp_disp: float = 0.001
    k_rot_disp: float = 0.001
    k_rot_rot: float = 0.001
    sigma_xy: float = 0.002
    sigma_th: float = 0.001

    def __post_init__(self):
        for name in ("k_disp_disp", "k_rot_disp", "k_rot_rot", "sigma_xy", "sigma_th"):
            if getattr(self, name) < 0:
                raise ValueError(f"Noise coefficient {name} must be non-negative")

    @classmethod
    def from_config(cls, cfg) -> "NoiseCoefficients":
        return cls(
            k_disp_disp=cfg.k_disp_disp,
            k_rot_disp=cfg.k_rot_disp,
            k_rot_rot=cfg.k_rot_rot,
            sigma_xy=cfg.sigma_xy,
            sigma_th=cfg.sigma_th,
        )


def compute_covariance(delta: Pose2D, coeffs: NoiseCoefficients) -> np.ndarray:
    """Return a diagonal 3x3 covariance over (x, y, theta) for ``delta``."""
    d = math.hypot(delta.x, delta.y)
    r = abs(wrap_angle(delta.theta))
    var_xy = coeffs.sigma_xy ** 2 + coeffs.k_disp_disp * d + coeffs.k_rot_disp * r
    var_th = coeffs.sigma_th ** 2 + coeffs.k_rot_rot * r + coeffs.k_rot_disp * d
    return np.diag([var_xy, var_xy, var_th])


def with_uncertainty(delta: Pose2D, coeffs: NoiseCoefficients) -> PoseDeltaWithUncertainty:
    return PoseDeltaWithUncertainty(pose=delta, covariance=compute_covariance(delta, coeffs))
