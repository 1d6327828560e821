# -*- coding: utf-8 -*-
"""
Mapping of continuous wavevectors onto the discrete lattice wavevectors m/L.
"""
import logging
from enum import Enum
from typing import Hashable, List, Sequence, Tuple, Union

import numpy as np
import numpy.typing as npt

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

# Corner offsets of the enclosing cell, x varying fastest
_CORNERS = np.array(
    [[0, 0, 0], [1, 0, 0], [0, 1, 0], [1, 1, 0], [0, 0, 1], [1, 0, 1], [0, 1, 1], [1, 1, 1]]
)


class Interpolation(str, Enum):
    NONE = "none"
    LINEAR = "linear"

    @classmethod
    def parse(cls, value: Union[str, "Interpolation", None]) -> "Interpolation":
        if value is None:
            return cls.NONE
        if isinstance(value, cls):
            return value
        key = str(value).lower()
        if key == "multilinear":
            return cls.LINEAR
        try:
            return cls(key)
        except ValueError:
            raise ConfigurationError(
                f"Unknown interpolation '{value}'. Expected 'none' or 'linear'."
            ) from None


def stencil(
    q_rlu: npt.NDArray[np.float64],
    latsize: Sequence[int],
    interp: Interpolation,
) -> Tuple[npt.NDArray[np.int_], npt.NDArray[np.float64]]:
    """
    Lattice indices and weights used to evaluate each wavevector.

    Args:
        q_rlu: Wavevectors, shape (n, 3).
        latsize: Linear lattice extents (L1, L2, L3).
        interp: ``NONE`` picks the nearest m/L (ties go to the lower index);
            ``LINEAR`` uses the eight corners of the enclosing cell with
            trilinear weights.

    Returns:
        Tuple ``(ms, weights)`` of shapes (n, k, 3) and (n, k), with k = 1 or 8.
        The weights of each row are non-negative and sum to 1.
    """
    Ls = np.asarray(latsize)
    scaled = np.asarray(q_rlu, dtype=float) * Ls
    if interp == Interpolation.NONE:
        ms = np.ceil(scaled - 0.5).astype(int)[:, None, :]
        return ms, np.ones(ms.shape[:2])

    base = np.floor(scaled).astype(int)
    t = (scaled - base)[:, None, :]
    ms = base[:, None, :] + _CORNERS[None, :, :]
    weights = np.prod(np.where(_CORNERS[None, :, :] == 1, t, 1.0 - t), axis=-1)
    return ms, weights


def stencil_keys(ms: npt.NDArray[np.int_]) -> List[Hashable]:
    """One hashable key per query identifying its stencil."""
    return [tuple(int(v) for v in m.ravel()) for m in ms]
