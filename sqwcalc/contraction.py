# -*- coding: utf-8 -*-
"""
Contractions of the correlation tensor S^{ab}(q, w) over spin components.

Each variant is a small immutable object built once per query by
`contraction_for`; its ``contract`` method processes a whole stencil at once.
"""
import logging
from dataclasses import dataclass
from typing import Tuple, Union

import numpy as np
import numpy.typing as npt

from .errors import ConfigurationError
from .structure_factor import ComponentPairIndex

logger = logging.getLogger(__name__)

# --- Numerical Constants ---
SQW_IMAG_PART_THRESHOLD: float = 1e-4
Q_ZERO_THRESHOLD: float = 1e-10

Mode = Union[str, Tuple[int, int], "Contraction"]


def _real_part(values: npt.NDArray[np.complex128], label: str) -> npt.NDArray[np.float64]:
    scale = max(float(np.max(np.abs(values.real), initial=0.0)), 1.0)
    max_imag = float(np.max(np.abs(values.imag), initial=0.0))
    if max_imag > SQW_IMAG_PART_THRESHOLD * scale:
        logger.warning(f"Significant imaginary part in {label} contraction: {max_imag:.3e}")
    return values.real


class Contraction:
    """Base class. ``contract(elems, q_cart)`` maps (nk, npairs, nw) to (nk, nw, *extra_shape)."""
    dtype = np.float64
    extra_shape: Tuple[int, ...] = ()

    def contract(self, elems: npt.NDArray[np.complex128], q_cart: npt.NDArray[np.float64]) -> npt.NDArray:
        raise NotImplementedError


@dataclass(frozen=True)
class Trace(Contraction):
    """Sum of the diagonal elements S^{aa}."""
    slots: Tuple[int, ...]

    def contract(self, elems, q_cart):
        return _real_part(np.sum(elems[:, list(self.slots), :], axis=1), "trace")


@dataclass(frozen=True)
class Depolarize(Contraction):
    """
    Neutron polarization factor: sum_ab (delta_ab - q_a q_b / q^2) S^{ab}.

    At q = 0 this reduces to the trace.
    """
    slots: Tuple[Tuple[Tuple[int, bool], ...], ...]  # 3x3 of (slot, conjugate)

    def contract(self, elems, q_cart):
        nk, _, nw = elems.shape
        tensor = np.empty((nk, 3, 3, nw), dtype=np.complex128)
        for a in range(3):
            for b in range(3):
                slot, conj = self.slots[a][b]
                tensor[:, a, b, :] = elems[:, slot, :].conj() if conj else elems[:, slot, :]
        q_norm = np.linalg.norm(q_cart, axis=-1, keepdims=True)
        q_hat = np.where(q_norm > Q_ZERO_THRESHOLD, q_cart / np.maximum(q_norm, Q_ZERO_THRESHOLD), 0.0)
        factor = np.eye(3)[None] - q_hat[:, :, None] * q_hat[:, None, :]
        return _real_part(np.einsum("kab,kabw->kw", factor, tensor), "depolarization")


@dataclass(frozen=True)
class Element(Contraction):
    """A single complex matrix element S^{ab}."""
    slot: int
    conjugate: bool
    dtype = np.complex128

    def contract(self, elems, q_cart):
        values = elems[:, self.slot, :]
        return values.conj() if self.conjugate else values


@dataclass(frozen=True)
class FullTensor(Contraction):
    """Every stored element, appended as a trailing axis in slot order."""
    npairs: int
    dtype = np.complex128

    @property
    def extra_shape(self) -> Tuple[int, ...]:
        return (self.npairs,)

    def contract(self, elems, q_cart):
        return np.moveaxis(elems, 1, -1)


def contraction_for(mode: Mode, pair_index: ComponentPairIndex, dipole_mode: bool) -> Contraction:
    """
    Build the contraction for ``mode``.

    Args:
        mode: ``"trace"``, ``"perp"`` (alias ``"depolarize"``), ``"full"``, a
            pair ``(a, b)`` of observable indices, or a `Contraction` instance.
        pair_index: The stored matrix elements.
        dipole_mode: Whether the observables are the three dipole components.

    Raises:
        ConfigurationError: For unknown modes or elements that were not stored.
    """
    if isinstance(mode, Contraction):
        return mode
    if isinstance(mode, str):
        key = mode.lower()
        if key == "trace":
            return Trace(tuple(pair_index.lookup(a, a)[0] for a in range(pair_index.nobs)))
        if key in ("perp", "depolarize"):
            if not dipole_mode:
                raise ConfigurationError(
                    "The depolarization contraction needs dipole observables; use 'trace', 'full' or an element."
                )
            return Depolarize(tuple(tuple(pair_index.lookup(a, b) for b in range(3)) for a in range(3)))
        if key == "full":
            return FullTensor(len(pair_index))
        raise ConfigurationError(
            f"Unknown contraction mode '{mode}'. Expected 'trace', 'perp', 'full' or a pair (a, b)."
        )
    try:
        a, b = (int(i) for i in mode)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid contraction mode {mode!r}.") from None
    slot, conj = pair_index.lookup(a, b)
    return Element(slot, conj)
