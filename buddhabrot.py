"""
Buddhabrot Density Sampler

Computes a Buddhabrot density map: a histogram, over an N x N pixel grid of
the square [-2, 2] x [-2, 2], of the points visited by escaping Mandelbrot
trajectories z -> z^2 + c.

PIPELINE:

  Boundary location (deterministic morphology on a jittered mask):
    - binary_mandelbrot: occupancy grid, one jittered sample per pixel
    - im_edge / im_invert / im_or / im_dilate: 4-neighbour binary morphology
    - find_good_points: inner edge + outer edge + dilated outer edges,
      collected as plane coordinates near the boundary

  Sampling (parallel Monte Carlo):
    - BuddhabrotWorker: one thread each, private RNG and histogram,
      importance sampling around good points, mirror-symmetric accumulation
    - ProgressMonitor: polls the per-worker counters without locking
    - merge_results: elementwise sum after all workers are joined

  Output contract:
    - log_scale: log(max(1, count)) field for the colour mapper

Usage:
    from buddhabrot import find_good_points, sample_buddhabrot, log_scale

    good_points = find_good_points(512, max_iter=1000, n_dilations=2)
    counts = sample_buddhabrot(512, n_points=200_000, n_threads=4,
                               good_points=good_points, p_uniform=0.2)
    field = log_scale(counts)

Rendering to an image lives in tools/render.py (colour maps in
tools/colormaps.py, PPM output in tools/ppm.py).
"""

import math
import sys
import threading
import time
import numpy as np
from scipy import ndimage
from typing import List, Optional, Sequence


# ==============================================================
# CONFIG
# ==============================================================
SIZE = 1024
MASK_MAX_ITER = 1000
N_DILATIONS = 2
N_THREADS = 12
MAX_ITER = 20
P_UNIFORM = 1.0
POINTS_PER_THREAD = 1_000_000
BATCH_SIZE = 1000

ESCAPE_NORM = 4.0
EARLY_EXIT_NORM = 8.0

PROGRESS_INTERVAL = 0.1
PROGRESS_WIDTH = 32
ETA_MIN_ELAPSED = 2.0

# 4-connected structuring element (centre + N/S/E/W)
_CROSS = ndimage.generate_binary_structure(2, 1)


# ==============================================================
# GRID MAPPING
# ==============================================================
def _norm(z):
    """Squared modulus |z|^2."""
    return z.real * z.real + z.imag * z.imag


def plane_axis(size: int) -> np.ndarray:
    """Plane coordinate of each pixel index: lerp(-2, 2, i / size)."""
    return -2.0 + 4.0 * np.arange(size, dtype=np.float64) / size


def plane_to_pixel(v, size: int) -> np.ndarray:
    """Map plane values to pixel indices in [0, size-1].

    The value is clamped to [-2, 2] before scaling, so no index can fall
    outside the grid. Fractional indices are truncated.
    """
    t = np.clip((np.asarray(v, dtype=np.float64) + 2.0) / 4.0, 0.0, 1.0)
    return (t * (size - 1)).astype(np.intp)


def _check_size(size):
    if size < 1:
        raise ValueError(f"grid size must be positive, got {size}")


# ==============================================================
# BOUNDARY MASK
# ==============================================================
def binary_mandelbrot(size: int, max_iter: int,
                      rng: Optional[np.random.Generator] = None) -> np.ndarray:
    """Jittered membership mask of the Mandelbrot set.

    Each pixel is tested once, at its plane coordinate plus an independent
    uniform offset of at most a quarter pixel on each axis. The pixel is
    True if |z|^2 stays below 4 for max_iter iterations.

    This is a cheap antialiasing proxy rather than a converged estimate; it
    is only used to locate the edge of the set.

    Parameters
    ----------
    size : int
        Side length N of the grid.
    max_iter : int
        Iteration budget of the membership test.
    rng : np.random.Generator or seed, optional
        Source of the jitter (anything with a Generator-style `uniform`).
        A fresh OS-seeded generator when omitted.

    Returns
    -------
    np.ndarray of bool, shape (size, size), indexed [y, x]
    """
    _check_size(size)
    if not hasattr(rng, "uniform"):
        rng = np.random.default_rng(rng)
    delta = 4.0 / size
    axis = plane_axis(size)

    re = axis[np.newaxis, :] + rng.uniform(-0.25 * delta, 0.25 * delta, (size, size))
    im = axis[:, np.newaxis] + rng.uniform(-0.25 * delta, 0.25 * delta, (size, size))
    C = re + 1j * im
    Z = np.zeros_like(C)
    inside = np.ones(C.shape, dtype=bool)

    for _ in range(max_iter):
        if not inside.any():
            break
        Z[inside] = Z[inside] ** 2 + C[inside]
        inside[inside] = _norm(Z[inside]) < ESCAPE_NORM

    return inside


# ==============================================================
# BOUNDARY EXTRACTION
# ==============================================================
def im_edge(im: np.ndarray) -> np.ndarray:
    """Occupied pixels with at least one unoccupied 4-neighbour.

    Neighbours outside the grid count as occupied, so the border is never
    flagged just for touching the edge of the image.
    """
    im = np.asarray(im, dtype=bool)
    interior = ndimage.binary_erosion(im, structure=_CROSS, border_value=1)
    return im & ~interior


def im_invert(im: np.ndarray) -> np.ndarray:
    return ~np.asarray(im, dtype=bool)


def im_or(im1: np.ndarray, im2: np.ndarray) -> np.ndarray:
    im1 = np.asarray(im1, dtype=bool)
    im2 = np.asarray(im2, dtype=bool)
    if im1.shape != im2.shape:
        raise ValueError(f"shape mismatch: {im1.shape} vs {im2.shape}")
    return im1 | im2


def im_dilate(im: np.ndarray) -> np.ndarray:
    """One step of 4-neighbour dilation (the pixel itself included)."""
    return ndimage.binary_dilation(np.asarray(im, dtype=bool), structure=_CROSS)


def im_collect_points(im: np.ndarray) -> np.ndarray:
    """Plane coordinates (re, im) of every True pixel, in row-major order."""
    im = np.asarray(im, dtype=bool)
    size = im.shape[0]
    axis = plane_axis(size)
    ys, xs = np.nonzero(im)
    return np.column_stack((axis[xs], axis[ys]))


def find_good_points(size: int, max_iter: int, n_dilations: int,
                     rng: Optional[np.random.Generator] = None,
                     verbose: bool = True) -> np.ndarray:
    """Plane coordinates near the Mandelbrot boundary.

    The inner edge of the mask and the outer edge (edge of the inverted
    mask) are combined, then the mask is dilated n_dilations times and the
    outer edge of each dilated mask is added. This thickens the boundary
    outward, picking up filaments a single edge pass misses.

    Returns
    -------
    np.ndarray of float64, shape (M, 2)
        Rows of (re, im); the order is fixed for the lifetime of the array.
    """
    if n_dilations < 0:
        raise ValueError(f"n_dilations must be >= 0, got {n_dilations}")

    with _Timer("Rendering binary mandelbrot", verbose):
        im = binary_mandelbrot(size, max_iter, rng)

    with _Timer("Collecting edge points", verbose):
        result = im_or(im_edge(im), im_edge(im_invert(im)))
        for _ in range(n_dilations):
            im = im_dilate(im)
            result = im_or(result, im_edge(im_invert(im)))
        good_points = im_collect_points(result)

    if verbose:
        print(f"  {len(good_points)} good points", flush=True)
    return good_points


# ==============================================================
# TRAJECTORY SAMPLING
# ==============================================================
class BuddhabrotWorker:
    """Monte Carlo sampler owning one private histogram.

    Every piece of mutable state (histogram, trajectory buffers, RNG) is
    owned by the worker. Only `progress` is read from another thread, by
    the progress monitor, and only advisorily: that read is not
    synchronised and may lag by up to one batch.

    Parameters
    ----------
    size : int
        Side length N of the histogram.
    max_iter : int
        Iteration cap per trajectory.
    good_points : np.ndarray, shape (M, 2), optional
        Shared, read-only centres for biased sampling.
    p_uniform : float
        Probability of drawing c uniformly from [-2, 2]^2 instead of
        around a good point.
    point_radius : float, optional
        Half-width of the square window around a good point.
        Defaults to 2 / size (half a pixel).
    rng : seed, SeedSequence or np.random.Generator, optional
        Seed material for this worker's private generator.
    batch_size : int
        Samples iterated together; also the progress update granularity.
    stop_event : threading.Event, optional
        When set, sampling stops at the next batch boundary.
    """

    def __init__(self, size: int, max_iter: int,
                 good_points: Optional[np.ndarray] = None,
                 p_uniform: float = P_UNIFORM,
                 point_radius: Optional[float] = None,
                 rng=None, batch_size: int = BATCH_SIZE,
                 stop_event: Optional[threading.Event] = None):
        _check_size(size)
        if max_iter < 1:
            raise ValueError(f"max_iter must be >= 1, got {max_iter}")
        if not 0.0 <= p_uniform <= 1.0:
            raise ValueError(f"p_uniform must lie in [0, 1], got {p_uniform}")
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")

        if good_points is None:
            good_points = np.empty((0, 2))
        good_points = np.asarray(good_points, dtype=np.float64).reshape(-1, 2)
        if p_uniform < 1.0 and len(good_points) == 0:
            raise ValueError("biased sampling (p_uniform < 1) needs at least one good point")

        self.size = size
        self.max_iter = max_iter
        self.good_points = good_points
        self.p_uniform = p_uniform
        self.point_radius = 2.0 / size if point_radius is None else point_radius
        self.batch_size = batch_size
        self.stop_event = stop_event
        self.rng = np.random.default_rng(rng)

        self.counts = np.zeros((size, size), dtype=np.uint64)
        self.progress = 0

        self._flat_counts = self.counts.reshape(-1)
        self._trajectory = np.empty((max_iter, batch_size), dtype=np.complex128)
        self._recorded = np.empty((max_iter, batch_size), dtype=bool)

    def draw(self, n: int) -> np.ndarray:
        """Draw n starting points c, uniform or biased toward good points."""
        rng = self.rng
        use_uniform = rng.random(n) < self.p_uniform
        pts = rng.uniform(-2.0, 2.0, size=(n, 2))

        biased = ~use_uniform
        n_biased = int(biased.sum())
        if n_biased:
            r = self.point_radius
            centres = self.good_points[rng.integers(0, len(self.good_points), n_biased)]
            pts[biased] = centres + rng.uniform(-r, r, size=(n_biased, 2))

        return pts[:, 0] + 1j * pts[:, 1]

    def accumulate(self, c: np.ndarray) -> int:
        """Iterate every c in the batch and add escaping orbits to the histogram.

        Returns the number of histogram increments made.
        """
        n = len(c)
        if n > self._trajectory.shape[1]:
            self._trajectory = np.empty((self.max_iter, n), dtype=np.complex128)
            self._recorded = np.empty((self.max_iter, n), dtype=bool)
        Z = np.zeros(n, dtype=np.complex128)
        trajectory = self._trajectory[:, :n]
        recorded = self._recorded[:, :n]
        recorded[:] = False
        active = np.ones(n, dtype=bool)

        for i in range(self.max_iter):
            idx = np.flatnonzero(active)
            if idx.size == 0:
                break
            Z[idx] = Z[idx] ** 2 + c[idx]
            trajectory[i, idx] = Z[idx]
            recorded[i, idx] = True
            active[idx] = _norm(Z[idx]) < EARLY_EXIT_NORM

        # early exit at |z|^2 >= 8, but only |z|^2 >= 4 counts as escaped
        escaped = _norm(Z) >= ESCAPE_NORM
        points = trajectory[recorded & escaped[np.newaxis, :]]
        points = points[(np.abs(points.real) <= 2.0) & (np.abs(points.imag) <= 2.0)]
        if points.size == 0:
            return 0

        size = self.size
        x = plane_to_pixel(points.real, size)
        y = plane_to_pixel(points.imag, size)
        flat = np.concatenate((y * size + x, (size - 1 - y) * size + x))
        np.add.at(self._flat_counts, flat, np.uint64(1))
        return len(flat)

    def sample(self, n_points: int) -> int:
        """Run n_points samples; returns the final progress value."""
        done = 0
        while done < n_points:
            if self.stop_event is not None and self.stop_event.is_set():
                return self.progress
            n = min(self.batch_size, n_points - done)
            self.accumulate(self.draw(n))
            done += n
            self.progress = done

        self.progress = n_points
        return self.progress


# ==============================================================
# PROGRESS MONITOR
# ==============================================================
_EIGHTHS = " ▏▎▍▌▋▊▉█"
_CSI = "\033["


def format_duration(secs: float) -> str:
    """MM:SS, rounded to the nearest second."""
    whole = int(math.floor(secs + 0.5))
    return f"{whole // 60:02d}:{whole % 60:02d}"


def format_progress(progress: int, max_progress: int, elapsed: float,
                    width: int = PROGRESS_WIDTH) -> str:
    """One-line progress bar with eighth-cell resolution and an ETA.

    The estimate is elapsed / fraction done and reads '--:--' until
    ETA_MIN_ELAPSED seconds have passed.
    """
    if max_progress <= 0:
        raise ValueError(f"max_progress must be positive, got {max_progress}")
    progress = max(0, min(progress, max_progress))

    whole = (width * progress) // max_progress
    part = (8 * width * progress) // max_progress - 8 * whole
    bar = _EIGHTHS[-1] * whole
    if whole < width:
        bar += _EIGHTHS[part] + " " * (width - whole - 1)

    ratio = progress / max_progress
    if elapsed < ETA_MIN_ELAPSED or ratio == 0:
        estimate = "--:--"
    else:
        estimate = format_duration(elapsed / ratio)
    return f"[{bar}] {100.0 * ratio:.1f}% ({format_duration(elapsed)}/{estimate})"


class ProgressMonitor:
    """Polls worker progress counters and redraws a progress bar.

    The counters are summed with plain attribute reads. Workers never wait
    on the monitor and the monitor never waits on the workers; a sum that
    is a batch or two behind is acceptable for display.
    """

    def __init__(self, workers: Sequence[BuddhabrotWorker], target: int,
                 interval: float = PROGRESS_INTERVAL,
                 threads: Optional[Sequence[threading.Thread]] = None,
                 stream=None, width: int = PROGRESS_WIDTH):
        self.workers = list(workers)
        self.target = target
        self.interval = interval
        self.threads = list(threads) if threads is not None else None
        self.stream = stream if stream is not None else sys.stdout
        self.width = width

    def total(self) -> int:
        return sum(w.progress for w in self.workers)

    def render(self, progress: int, elapsed: float):
        line = format_progress(progress, self.target, elapsed, self.width)
        self.stream.write(f"{_CSI}1K{_CSI}G{line}")
        self.stream.flush()

    def _any_alive(self) -> bool:
        if self.threads is None:
            return True
        return any(t.is_alive() for t in self.threads)

    def run(self) -> int:
        """Poll until the summed progress reaches the target.

        Also returns once every watched thread has exited, so a worker that
        dies early cannot leave the monitor spinning. Returns the last sum.
        """
        start = time.monotonic()
        while True:
            # liveness first: once no thread is alive, the sum below is final
            alive = self._any_alive()
            total = self.total()
            self.render(total, time.monotonic() - start)
            if total >= self.target or not alive:
                break
            time.sleep(self.interval)
        self.stream.write("\n")
        self.stream.flush()
        return total


# ==============================================================
# MERGE + PIPELINE
# ==============================================================
def merge_results(histograms) -> np.ndarray:
    """Elementwise sum of worker histograms.

    Accepts arrays or workers (anything with a `counts` attribute). Only
    call this after every worker thread has been joined.
    """
    arrays = [np.asarray(getattr(h, "counts", h)) for h in histograms]
    if not arrays:
        raise ValueError("no histograms to merge")

    result = np.zeros(arrays[0].shape, dtype=np.uint64)
    for a in arrays:
        if a.shape != result.shape:
            raise ValueError(f"histogram shape mismatch: {a.shape} vs {result.shape}")
        result += a.astype(np.uint64, copy=False)
    return result


def log_scale(counts: np.ndarray) -> np.ndarray:
    """log(max(1, count)) as float64."""
    counts = np.asarray(counts)
    return np.log(np.maximum(counts, 1).astype(np.float64))


def sample_buddhabrot(size: int, n_points: int, n_threads: int = N_THREADS,
                      max_iter: int = MAX_ITER,
                      good_points: Optional[np.ndarray] = None,
                      p_uniform: float = P_UNIFORM,
                      point_radius: Optional[float] = None,
                      seed=None, batch_size: int = BATCH_SIZE,
                      progress: bool = True, stream=None,
                      verbose: bool = True) -> np.ndarray:
    """Sample n_points per thread on n_threads threads and merge the result.

    Parameters
    ----------
    seed : int, SeedSequence or None
        Root of the SeedSequence spawned once per worker. None draws OS
        entropy; a fixed seed reproduces the histogram exactly.
    progress : bool
        Draw the progress bar on `stream` (stdout by default) while waiting.

    Returns
    -------
    np.ndarray of uint64, shape (size, size)
    """
    if n_threads < 1:
        raise ValueError(f"n_threads must be >= 1, got {n_threads}")
    if n_points < 0:
        raise ValueError(f"n_points must be >= 0, got {n_points}")

    stop = threading.Event()
    if isinstance(seed, np.random.SeedSequence):
        seq = seed
    else:
        seq = np.random.SeedSequence(seed)
    seeds = seq.spawn(n_threads)
    workers: List[BuddhabrotWorker] = [
        BuddhabrotWorker(size, max_iter, good_points, p_uniform, point_radius,
                         rng=s, batch_size=batch_size, stop_event=stop)
        for s in seeds
    ]
    threads = [
        threading.Thread(target=w.sample, args=(n_points,),
                         name=f"buddhabrot-{i}", daemon=True)
        for i, w in enumerate(workers)
    ]

    if verbose:
        print("Sampling Buddhabrot data...", flush=True)
    for t in threads:
        t.start()

    try:
        if progress and n_points > 0:
            ProgressMonitor(workers, n_points * n_threads,
                            threads=threads, stream=stream).run()
        for t in threads:
            t.join()
    except KeyboardInterrupt:
        stop.set()
        for t in threads:
            t.join()
        raise

    unfinished = [t.name for t, w in zip(threads, workers) if w.progress != n_points]
    if unfinished:
        raise RuntimeError(f"workers did not complete: {', '.join(unfinished)}")

    with _Timer("Merging thread results", verbose):
        return merge_results(workers)


def timed(label, verbose=True):
    """Context manager for timing a pipeline phase."""
    return _Timer(label, verbose)


class _Timer:
    """Simple timing context manager: prints "  <label>... 1.2s"."""

    def __init__(self, label, verbose=True):
        self.label = label
        self.verbose = verbose

    def __enter__(self):
        self.t0 = time.time()
        if self.verbose:
            print(f"  {self.label}...", end=" ", flush=True)
        return self

    def __exit__(self, *args):
        self.elapsed = time.time() - self.t0
        if self.verbose:
            print(f"{self.elapsed:.1f}s", flush=True)
