"""
Named colour lookup tables for rendering scalar fields.

The palette set is closed: PALETTES lists every accepted name. viridis,
inferno, plasma and magma are the 256-entry maps shipped with matplotlib;
rocket and mako come from seaborn.

Usage:
    from tools.colormaps import Colormap

    cmap = Colormap.by_name("mako")
    cmap.set_vrange(field.min(), field.max())
    rgb = cmap(field)            # field.shape + (3,), floats in [0, 1]
"""

import numpy as np
from matplotlib import colormaps
from seaborn import cm as sns_cm


PALETTES = ("viridis", "inferno", "plasma", "magma", "rocket", "mako")

_SEABORN_PALETTES = ("rocket", "mako")

_TABLES = {}


def palette_table(name: str) -> np.ndarray:
    """(L, 3) float array of RGB entries for a named palette."""
    if name not in PALETTES:
        raise ValueError(f"Unknown palette: {name!r} "
                         f"(available: {', '.join(PALETTES)})")
    if name not in _TABLES:
        if name in _SEABORN_PALETTES:
            cmap = getattr(sns_cm, name)
        else:
            cmap = colormaps[name]
        table = np.asarray(cmap.colors, dtype=np.float64)[:, :3]
        table.setflags(write=False)
        _TABLES[name] = table
    return _TABLES[name]


class Colormap:
    """Linear interpolation over an RGB lookup table.

    Values are clamped into [vmin, vmax], scaled onto [0, L-1] and blended
    between the two bracketing entries. vmin and vmax land exactly on the
    first and last entries. A degenerate range (vmin == vmax) maps every
    value to the first entry.
    """

    def __init__(self, table, vmin=0.0, vmax=1.0):
        table = np.asarray(table, dtype=np.float64)
        if table.ndim != 2 or table.shape[1] != 3 or len(table) < 1:
            raise ValueError(f"colour table must have shape (L, 3), got {table.shape}")
        self.table = table
        self.vmin = float(vmin)
        self.vmax = float(vmax)

    @classmethod
    def by_name(cls, name: str) -> "Colormap":
        return cls(palette_table(name))

    def set_vrange(self, vmin, vmax):
        self.vmin = float(vmin)
        self.vmax = float(vmax)

    def __call__(self, v) -> np.ndarray:
        v = np.asarray(v, dtype=np.float64)
        last = len(self.table) - 1

        if self.vmax > self.vmin:
            t = np.clip((v - self.vmin) / (self.vmax - self.vmin), 0.0, 1.0)
        else:
            t = np.zeros_like(v)

        scaled = t * last
        left = np.floor(scaled).astype(np.intp)
        right = np.minimum(left + 1, last)
        frac = (scaled - left)[..., np.newaxis]

        lo = self.table[left]
        hi = self.table[right]
        return lo + (hi - lo) * frac
