"""
Between-Subject Variability

Expansion of a compressed lower-triangular omega vector into a full
covariance matrix, sampling of per-individual deviations (etas), and
their application to the population parameter table:

    exponential:  theta_i = theta_pop * exp(eta_i)
    additive:     theta_i = theta_pop + eta_i

Only the first n parameters (declaration order) are perturbed, where n
is the dimension of the omega matrix.
"""

from __future__ import annotations

import logging
import math
from enum import Enum
from typing import Optional, Sequence, Union

import numpy as np

logger = logging.getLogger(__name__)


class OmegaType(str, Enum):
    """Transform used to apply etas to parameters."""
    EXPONENTIAL = "exponential"
    ADDITIVE = "additive"


def omega_type(value: Union[str, OmegaType]) -> OmegaType:
    if isinstance(value, OmegaType):
        return value
    v = str(value).lower()
    if v == "normal":
        return OmegaType.ADDITIVE
    try:
        return OmegaType(v)
    except ValueError:
        raise ValueError(f"Unknown omega_type: {value}") from None


def triangle_dimension(length: int) -> int:
    """
    Dimension n for a lower-triangular vector of length n(n+1)/2.

    Raises:
        ValueError: if length is not a triangular number
    """
    n = int(round((math.sqrt(8 * length + 1) - 1) / 2))
    if n < 1 or n * (n + 1) // 2 != length:
        raise ValueError(
            f"omega must have length n(n+1)/2 (got {length})"
        )
    return n


def omega_to_matrix(omega: Sequence[float]) -> np.ndarray:
    """
    Expand a lower-triangular omega vector into a symmetric matrix.

    Entry (i, j), i >= j, is omega[i*(i+1)/2 + j] (0-based, row-major).

    Example:
        >>> omega_to_matrix([0.1, 0.05, 0.2])
        array([[0.1 , 0.05],
               [0.05, 0.2 ]])
    """
    omega = np.asarray(omega, dtype=float)
    n = triangle_dimension(len(omega))
    mat = np.zeros((n, n), dtype=float)
    for i in range(n):
        for j in range(i + 1):
            mat[i, j] = mat[j, i] = omega[i * (i + 1) // 2 + j]
    return mat


def sample_etas(
    omega: Sequence[float],
    n_ind: int,
    rng: Optional[np.random.Generator] = None,
    seed: Optional[int] = None,
) -> np.ndarray:
    """
    Draw n_ind independent zero-mean multivariate-normal deviation vectors.

    Args:
        omega: Compressed lower-triangular covariance vector
        n_ind: Number of individuals
        rng: Optional numpy Generator (takes precedence over seed)
        seed: Random seed for reproducibility

    Returns:
        Array of shape (n_ind, n)

    Example:
        >>> etas = sample_etas([0.09, 0.0, 0.04], n_ind=100, seed=42)
        >>> etas.shape
        (100, 2)
    """
    mat = omega_to_matrix(omega)
    n = mat.shape[0]

    if not np.any(mat):
        return np.zeros((n_ind, n), dtype=float)

    if np.min(np.linalg.eigvalsh(mat)) < -1e-10:
        logger.warning("omega matrix is not positive semi-definite; sampling may be distorted")

    rng = rng or np.random.default_rng(seed)
    return rng.multivariate_normal(np.zeros(n), mat, size=n_ind)


def apply_etas(
    values: np.ndarray,
    eta: np.ndarray,
    kind: Union[str, OmegaType] = OmegaType.EXPONENTIAL,
) -> np.ndarray:
    """
    Perturb the first len(eta) entries of an ordered parameter vector.

    Example:
        >>> apply_etas(np.array([10.0, 50.0, 1.0]), np.array([0.0, 0.1]))
        array([10.        , 55.25854245,  1.        ])
    """
    kind = omega_type(kind)
    eta = np.asarray(eta, dtype=float)
    n = len(eta)
    if n > len(values):
        raise ValueError(
            f"omega describes {n} parameters but the model declares only {len(values)}"
        )
    out = np.array(values, dtype=float, copy=True)
    if kind is OmegaType.EXPONENTIAL:
        out[:n] = out[:n] * np.exp(eta)
    else:
        out[:n] = out[:n] + eta
    return out
