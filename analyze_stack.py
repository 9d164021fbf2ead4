#!/usr/bin/env python3
"""
Measure binary image stacks saved as NumPy arrays.

The stack is split into independent spatial subspaces along its time and
channel axes, each subspace is measured, and the results are collected
into one table.

Usage:
    # Volume fraction and fractal dimension of a 3D stack
    python analyze_stack.py bone.npy --axes XYZ --scale 0.05 --unit mm

    # A time series of 3D stacks, automatic box counting parameters
    python analyze_stack.py series.npy --axes TZYX --metrics fractal --auto

    # Surface area and STL export of each subspace
    python analyze_stack.py bone.npy --axes XYZ --metrics surface --stl meshes/bone

    # Fit an ellipsoid to point ROIs (CSV with x, y, slice columns)
    python analyze_stack.py bone.npy --axes XYZ --metrics ellipsoid --points rois.csv

    # Save results to CSV
    python analyze_stack.py bone.npy --axes XYZ --output results.csv
"""

import argparse
import csv
import logging
import os
import sys
import time
from typing import List, Tuple

import numpy as np

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from stackmetrics import (
    AxisType,
    BoxCountSettings,
    CalibratedAxis,
    Image,
    DuplicateCellError,
    ResultsTable,
    measure_element_fraction,
    measure_ellipsoid,
    measure_fractal_dimension,
    measure_surface_area,
)
from stackmetrics.mesh_io import format_export_errors, split_export_path

AXIS_CODES = {
    'X': AxisType.X,
    'Y': AxisType.Y,
    'Z': AxisType.Z,
    'T': AxisType.TIME,
    'C': AxisType.CHANNEL,
}

METRICS = ('fraction', 'fractal', 'surface', 'ellipsoid')


def parse_axes(codes: str, scale: float, z_scale: float, unit: str) -> List[CalibratedAxis]:
    """Build calibrated axes from a code string such as "XYZT"."""
    axes = []
    for code in codes.upper():
        if code not in AXIS_CODES:
            raise ValueError(f"Unknown axis code {code!r}, use one of {''.join(AXIS_CODES)}")
        axis_type = AXIS_CODES[code]
        if axis_type == AxisType.Z:
            axes.append(CalibratedAxis(axis_type, z_scale, unit))
        elif axis_type.is_spatial:
            axes.append(CalibratedAxis(axis_type, scale, unit))
        else:
            axes.append(CalibratedAxis(axis_type))
    return axes


def read_points(path: str) -> List[Tuple[float, float, float]]:
    """
    Read (x, y, slice) point ROIs from a CSV file with a header row.

    Raises:
        ValueError: If a coordinate isn't a number
    """
    points = []
    with open(path, newline='') as f:
        reader = csv.reader(f)
        next(reader, None)
        for row in reader:
            if len(row) < 3:
                continue
            try:
                points.append((float(row[0]), float(row[1]), float(row[2])))
            except ValueError as e:
                raise ValueError(f"{path}, line {reader.line_num}: {e}") from e
    return points


def print_summary(table: ResultsTable) -> None:
    """Print summary table of results."""
    snapshot = table.get_table()
    if snapshot is None:
        print("No results")
        return

    label_width = max(len(h) for h in [snapshot.headers[0]] +
                      [str(r[0]) for r in snapshot.rows])
    print()
    print("=" * 80)
    print("SUMMARY")
    print("=" * 80)
    print(f"{snapshot.headers[0]:<{label_width}} " +
          " ".join(f"{h:>22}" for h in snapshot.headers[1:]))
    print("-" * 80)

    for row in snapshot.rows:
        cells = []
        for value in row[1:]:
            if value is None:
                cells.append(f"{'':>22}")
            elif isinstance(value, float):
                cells.append(f"{value:>22.6g}")
            else:
                cells.append(f"{value!s:>22}")
        print(f"{row[0]:<{label_width}} " + " ".join(cells))

    print("=" * 80)


def run_metric(metric: str, image: Image, table: ResultsTable, args):
    """Run one metric on the image, adding its results to the table."""
    if metric == 'fraction':
        return measure_element_fraction(image, table)
    if metric == 'fractal':
        settings = BoxCountSettings(
            start_box_size=args.start_box_size,
            smallest_box_size=args.smallest_box_size,
            scale_factor=args.scale_factor,
            translations=args.translations,
            auto_parameters=args.auto,
            show_points=args.show_points,
        ).enforce_valid_sizes()
        return measure_fractal_dimension(image, settings, table)
    if metric == 'surface':
        base, extension = split_export_path(args.stl) if args.stl else (None, '.stl')
        return measure_surface_area(image, table, export_path=base,
                                    extension=extension)
    if metric == 'ellipsoid':
        return measure_ellipsoid(image, read_points(args.points), table)
    raise ValueError(f"Unknown metric {metric!r}")


def main():
    parser = argparse.ArgumentParser(
        description='Measure binary image stacks subspace by subspace.',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__
    )

    parser.add_argument('path', help='Path to a .npy file with the image stack')
    parser.add_argument('--axes', required=True,
                        help='Axis order of the array, e.g. XYZ, XYZT, TCZYX')
    parser.add_argument('--name', default=None,
                        help='Image name used in row labels (default: file name)')
    parser.add_argument('--scale', type=float, default=1.0,
                        help='Pixel width and height (default: 1.0)')
    parser.add_argument('--z-scale', type=float, default=None,
                        help='Pixel depth (default: same as --scale)')
    parser.add_argument('--unit', default='',
                        help='Unit of the calibration, e.g. mm')
    parser.add_argument('--metrics', nargs='+', choices=METRICS,
                        default=['fraction', 'fractal'],
                        help='Measurements to run (default: fraction fractal)')
    parser.add_argument('--start-box-size', type=int, default=48,
                        help='Starting box size in pixels (default: 48)')
    parser.add_argument('--smallest-box-size', type=int, default=6,
                        help='Smallest box size in pixels (default: 6)')
    parser.add_argument('--scale-factor', type=float, default=1.2,
                        help='Box scaling factor (default: 1.2)')
    parser.add_argument('--translations', type=int, default=0,
                        help='Grid translations per box size (default: 0)')
    parser.add_argument('--auto', action='store_true',
                        help='Choose box counting parameters automatically')
    parser.add_argument('--show-points', action='store_true',
                        help='Print the box counting points of each subspace')
    parser.add_argument('--points', default=None,
                        help='CSV of (x, y, slice) point ROIs for ellipsoid fitting')
    parser.add_argument('--stl', default=None,
                        help='Export a binary STL per subspace to this path')
    parser.add_argument('--output', '-o', type=str, default=None,
                        help='Output CSV file for results')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Log progress of each step')

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    z_scale = args.scale if args.z_scale is None else args.z_scale
    try:
        axes = parse_axes(args.axes, args.scale, z_scale, args.unit)
        data = np.load(args.path)
        name = args.name or os.path.splitext(os.path.basename(args.path))[0]
        image = Image(data, axes, name=name)
    except (OSError, ValueError) as e:
        print(f"Cannot read image: {e}")
        return 1

    print("=" * 80)
    print("STACK MEASUREMENTS")
    print("=" * 80)
    print(f"Image: {image.name} {image.shape} ({args.axes.upper()})")
    print()

    table = ResultsTable()
    status = 0

    # Each metric writes its own columns once
    for metric in dict.fromkeys(args.metrics):
        t0 = time.time()
        print(f"  {metric}...", end=" ", flush=True)

        if metric == 'ellipsoid' and args.points is None:
            print("skipped (no --points file)")
            continue
        try:
            result = run_metric(metric, image, table, args)
        except (DuplicateCellError, OSError, ValueError) as e:
            print(f"failed: {e}")
            status = 1
            continue

        if result.cancelled:
            print(f"cancelled: {result.cancel_reason}")
            status = 1
            continue
        print(f"({time.time() - t0:.1f}s)")

        for warning in result.warnings:
            print(f"    warning: {warning}")
        if result.export_errors:
            print(format_export_errors(result.export_errors))
            status = 1
        for label, points in result.subspace_points.items():
            print(f"    {label}")
            for x, y in points:
                print(f"      -log(size) = {x:9.4f}  log(count) = {y:9.4f}")

    print_summary(table)

    if args.output and table.to_csv(args.output):
        print(f"Results saved to {args.output}")

    return status


if __name__ == '__main__':
    sys.exit(main())
