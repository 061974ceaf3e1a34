"""
Plain-text PPM (P3) writer.

Header 'P3', width and height, max value 255, then one integer per channel,
one image row per line. No compression, no alpha.
"""

import numpy as np


def to_int_rgb(rgb) -> np.ndarray:
    """Float channels in [0, 1] -> ints in [0, 255] (int(256 * v), clipped)."""
    rgb = np.asarray(rgb, dtype=np.float64)
    return np.clip((256.0 * rgb).astype(np.int64), 0, 255)


def write_ppm(path, width: int, height: int, rgb):
    """Write a row-major sequence of RGB triples as a P3 image.

    Parameters
    ----------
    path : str or Path
    width, height : int
    rgb : array-like
        width * height triples of floats in [0, 1]; an (height, width, 3)
        array works as well.
    """
    rgb = np.asarray(rgb, dtype=np.float64)
    if rgb.size != width * height * 3:
        raise ValueError(f"expected {width * height} RGB triples for a "
                         f"{width}x{height} image, got {rgb.size / 3:g}")

    rows = to_int_rgb(rgb).reshape(height, width * 3)
    with open(path, "w") as f:
        f.write(f"P3\n{width} {height}\n255\n")
        np.savetxt(f, rows, fmt="%d")
    return path
