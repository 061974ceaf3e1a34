#!/usr/bin/env python3
"""
CLI for rendering a Buddhabrot image.

Usage:
    python tools/render.py run                          # defaults from buddhabrot.py CONFIG
    python tools/render.py run --size 512 --threads 4 --points 200000 -o out.ppm
    python tools/render.py run --p-uniform 0.3 --seed 7 # bias 70% of samples to the boundary
    python tools/render.py palettes                     # list colour maps
"""

import argparse
import os
import sys

ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, ROOT)

import numpy as np

import buddhabrot as bb
from tools.colormaps import PALETTES, Colormap
from tools.ppm import write_ppm

# ==============================================================
# CONFIG
# ==============================================================
PALETTE = "mako"
OUTPUT = "buddhabrot.ppm"


def render(size=bb.SIZE, n_threads=bb.N_THREADS, n_points=bb.POINTS_PER_THREAD,
           max_iter=bb.MAX_ITER, mask_max_iter=bb.MASK_MAX_ITER,
           n_dilations=bb.N_DILATIONS, p_uniform=bb.P_UNIFORM,
           point_radius=None, palette=PALETTE, output=OUTPUT,
           seed=None, progress=True, verbose=True):
    """Full pipeline: good points -> threaded sampling -> log scale -> PPM.

    The palette is resolved before any sampling so a bad name fails fast.
    Returns the merged histogram.
    """
    cmap = Colormap.by_name(palette)
    mask_rng, sample_seed = _split_seed(seed)

    if p_uniform < 1.0:
        good_points = bb.find_good_points(size, mask_max_iter, n_dilations,
                                          rng=mask_rng, verbose=verbose)
    else:
        good_points = None

    counts = bb.sample_buddhabrot(
        size, n_points, n_threads=n_threads, max_iter=max_iter,
        good_points=good_points, p_uniform=p_uniform,
        point_radius=point_radius, seed=sample_seed,
        progress=progress, verbose=verbose)

    with bb.timed("Writing image", verbose):
        field = bb.log_scale(counts)
        cmap.set_vrange(field.min(), field.max())
        write_ppm(output, size, size, cmap(field))

    if verbose:
        print(f"Image saved: {output}")
    return counts


def _split_seed(seed):
    """Independent streams for the mask jitter and the samplers."""
    if seed is None:
        return None, None
    mask_seq, sample_seq = np.random.SeedSequence(seed).spawn(2)
    return mask_seq, sample_seq


def cmd_run(args):
    render(size=args.size, n_threads=args.threads, n_points=args.points,
           max_iter=args.max_iter, mask_max_iter=args.mask_iter,
           n_dilations=args.dilations, p_uniform=args.p_uniform,
           point_radius=args.radius, palette=args.palette,
           output=args.output, seed=args.seed,
           progress=not args.no_progress)
    return 0


def cmd_palettes(args):
    for name in PALETTES:
        marker = " (default)" if name == PALETTE else ""
        print(f"  {name}{marker}")
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Buddhabrot renderer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    sub = parser.add_subparsers(dest='command')

    p_run = sub.add_parser('run', help='Sample and write an image')
    p_run.add_argument('--size', type=int, default=bb.SIZE,
                       help=f'Grid side length (default: {bb.SIZE})')
    p_run.add_argument('--threads', type=int, default=bb.N_THREADS,
                       help=f'Worker threads (default: {bb.N_THREADS})')
    p_run.add_argument('--points', type=int, default=bb.POINTS_PER_THREAD,
                       help=f'Samples per thread (default: {bb.POINTS_PER_THREAD})')
    p_run.add_argument('--max-iter', type=int, default=bb.MAX_ITER,
                       help=f'Trajectory iteration cap (default: {bb.MAX_ITER})')
    p_run.add_argument('--mask-iter', type=int, default=bb.MASK_MAX_ITER,
                       help=f'Boundary mask iterations (default: {bb.MASK_MAX_ITER})')
    p_run.add_argument('--dilations', type=int, default=bb.N_DILATIONS,
                       help=f'Boundary dilation passes (default: {bb.N_DILATIONS})')
    p_run.add_argument('--p-uniform', type=float, default=bb.P_UNIFORM,
                       help=f'Probability of a uniform sample (default: {bb.P_UNIFORM})')
    p_run.add_argument('--radius', type=float, default=None,
                       help='Biased sampling half-width (default: 2 / size)')
    p_run.add_argument('--palette', default=PALETTE, choices=PALETTES,
                       help=f'Colour map (default: {PALETTE})')
    p_run.add_argument('-o', '--output', default=OUTPUT,
                       help=f'Output PPM path (default: {OUTPUT})')
    p_run.add_argument('--seed', type=int, default=None,
                       help='Fixed seed for a reproducible run')
    p_run.add_argument('--no-progress', action='store_true',
                       help='Do not draw the progress bar')

    sub.add_parser('palettes', help='List colour maps')

    args = parser.parse_args(argv)

    try:
        if args.command == 'run':
            return cmd_run(args)
        elif args.command == 'palettes':
            return cmd_palettes(args)
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 130

    parser.print_help()
    return 0


if __name__ == '__main__':
    sys.exit(main())
