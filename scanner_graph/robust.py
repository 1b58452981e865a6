from typing import Optional
import numpy as np

try:
    import gtsam
except Exception:
    gtsam = None

# Default tuning constants of the supported M-estimators
ROBUST_DEFAULT_K = {"huber": 1.345, "cauchy": 1.0}


def make_spd(cov: np.ndarray, eps: float = 1e-9) -> np.ndarray:
    """Symmetrise a square covariance and add diagonal jitter until it is SPD.

    Jitter starts at ``eps`` and grows tenfold per failed Cholesky attempt.
    """
    cov = np.array(cov, dtype=float)
    if cov.ndim != 2 or cov.shape[0] != cov.shape[1]:
        raise ValueError(f"Covariance must be square; got shape {cov.shape}")
    eye = np.eye(cov.shape[0])
    cov = 0.5 * (cov + cov.T)
    jitter = eps
    for _ in range(8):
        candidate = cov + eye * jitter
        try:
            np.linalg.cholesky(candidate)
        except np.linalg.LinAlgError:
            jitter *= 10.0
            continue
        return candidate
    return cov + eye * jitter


def gaussian_from_covariance(cov: np.ndarray):
    """Noise model for a 3x3 (x, y, theta) covariance.

    Diagonal covariances (what the front-end produces) map onto
    ``noiseModel.Diagonal``; anything else becomes a full Gaussian.
    """
    if gtsam is None:
        raise RuntimeError("GTSAM not available; cannot build noise model")
    cov = np.array(make_spd(cov), dtype=np.float64, order="C")
    if cov.shape != (3, 3):
        raise ValueError(f"Pose2 covariance must be 3x3; got shape {cov.shape}")
    if np.count_nonzero(cov - np.diag(np.diag(cov))) == 0:
        return gtsam.noiseModel.Diagonal.Variances(np.diag(cov).copy())
    return gtsam.noiseModel.Gaussian.Covariance(cov)


def robustify(base, kind: Optional[str] = None, k: Optional[float] = None):
    """Wrap a loop-closure noise model with a robust kernel.

    kind: 'huber' | 'cauchy' | None (no kernel)
    k: tuning constant, defaults from ``ROBUST_DEFAULT_K``
    """
    if not kind:
        return base
    kind = kind.lower()
    if kind not in ROBUST_DEFAULT_K:
        raise ValueError(f"Unsupported robust kernel: {kind}")
    if gtsam is None:
        raise RuntimeError("GTSAM not available; cannot build robust model")
    k = ROBUST_DEFAULT_K[kind] if k is None else float(k)
    if kind == "huber":
        loss = gtsam.noiseModel.mEstimator.Huber(k)
    else:
        loss = gtsam.noiseModel.mEstimator.Cauchy(k)
    return gtsam.noiseModel.Robust.Create(loss, base)
