"""
Zone codes for condition pairs.

The sign pattern of the differences between two conditions across all
variables is packed into one balanced base-3 integer, the zone code:

    zone = sum_k sign(x[k, row] - x[k, column]) * 3**(nvar - k - 1)

A pair is an inversion when |zone| is one of the problem's infeasible zones.
Among all inversions the one with the largest volume, the product of the
signed differences, is reported. Preferring volume over a single difference
picks pairs that are clearly out of order in several variables at once.
"""

from __future__ import annotations

from typing import NamedTuple

import numpy as np

ZERO_TOL = 1e-5
POW_3 = [3**i for i in range(40)]


class Inversion(NamedTuple):
    row: int
    column: int
    zone: int


def zone_encode(signs) -> int:
    signs = np.asarray(signs, dtype=int)
    nvar = signs.shape[0]
    return int(sum(int(s) * POW_3[nvar - k - 1] for k, s in enumerate(signs)))


def zone_decode(zone: int, nvar: int) -> np.ndarray:
    """Inverse of zone_encode, one sign per variable."""
    signs = np.zeros(nvar, dtype=int)
    z = int(zone)
    for k in range(nvar - 1, -1, -1):
        r = z % 3
        if r == 1:
            signs[k] = 1
            z = (z - 1) // 3
        elif r == 2:
            signs[k] = -1
            z = (z + 1) // 3
        else:
            z //= 3
    if z != 0:
        raise ValueError(f"Zone {zone} does not fit in {nvar} variables.")
    return signs


class ZoneEncoder:
    """
    Feasibility checks against a fixed set of infeasible zones.

    The zone and volume grids are allocated once for ncond conditions and
    reused by every call to check. Decoded sign vectors are memoized, so one
    encoder should be used per solve.
    """

    def __init__(self, nvar, ncond, infeasible_zones, zero_tol=ZERO_TOL):
        self.nvar = nvar
        self.ncond = ncond
        self.zero_tol = zero_tol
        self.infeasible_zones = np.array(sorted(infeasible_zones), dtype=np.int64)
        self._powers = np.array([POW_3[nvar - k - 1] for k in range(nvar)], dtype=np.int64)
        self._zones = np.zeros((ncond, ncond), dtype=np.int64)
        self._volumes = np.ones((ncond, ncond))
        self._upper = np.triu(np.ones((ncond, ncond), dtype=bool), k=1)
        self._decoded = {}

    def check(self, x) -> Inversion | None:
        """Return None if x is feasible, else the most significant inversion."""
        if self.infeasible_zones.size == 0:
            return None
        x = np.asarray(x, dtype=float)
        if x.shape != (self.nvar, self.ncond):
            raise ValueError(
                f"Expected a ({self.nvar}, {self.ncond}) matrix, got {x.shape}."
            )

        self._zones.fill(0)
        self._volumes.fill(1.0)
        for k in range(self.nvar):
            diff = x[k][:, None] - x[k][None, :]
            significant = np.abs(diff) > self.zero_tol
            self._volumes[significant] *= diff[significant]
            self._zones += np.sign(diff).astype(np.int64) * significant * self._powers[k]

        inverted = self._upper & np.isin(np.abs(self._zones), self.infeasible_zones)
        if not inverted.any():
            return None

        significance = np.where(inverted, np.abs(self._volumes), -1.0)
        row, column = np.unravel_index(np.argmax(significance), significance.shape)
        return Inversion(int(row), int(column), int(self._zones[row, column]))

    def decode(self, zone: int) -> np.ndarray:
        signs = self._decoded.get(zone)
        if signs is None:
            signs = zone_decode(zone, self.nvar)
            self._decoded[zone] = signs
        return signs

    @property
    def cache_size(self) -> int:
        return len(self._decoded)


def is_feasible(x, infeasible_zones) -> bool:
    x = np.asarray(x, dtype=float)
    encoder = ZoneEncoder(x.shape[0], x.shape[1], infeasible_zones)
    return encoder.check(x) is None
