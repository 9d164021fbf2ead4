"""
Tests for axis classification, calibration and image validation.
"""

import math
import os
import sys

import numpy as np
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from stackmetrics.axes import (
    NO_IMAGE_OPEN,
    NOT_3D_IMAGE,
    NOT_BINARY,
    WEIRD_SPATIAL,
    AxisType,
    CalibratedAxis,
    Image,
    calibrated_element_size,
    check_image,
    classify_axes,
    convert_length,
    has_matching_spatial_calibration,
    is_binary,
    spatial_unit,
    unit_header,
    xyz_indices,
)


def axes_of(*types, scale=1.0, unit=""):
    return [CalibratedAxis(t, scale, unit) for t in types]


def test_classify_hyperstack():
    summary = classify_axes(axes_of(AxisType.X, AxisType.Y, AxisType.Z,
                                    AxisType.CHANNEL, AxisType.TIME))
    assert summary.spatial == 3
    assert summary.has_time
    assert summary.has_channel
    assert summary.supported


def test_classify_unsupported():
    assert not classify_axes(axes_of(AxisType.X)).supported
    assert not classify_axes(axes_of(AxisType.X, AxisType.Y, AxisType.Z,
                                     AxisType.Z)).supported
    assert not classify_axes(axes_of(AxisType.TIME)).has_channel


def test_element_size_mixed_units():
    """Scales are converted to the unit of the first spatial axis."""
    axes = [
        CalibratedAxis(AxisType.X, 1.0, "mm"),
        CalibratedAxis(AxisType.Y, 1000.0, "µm"),
        CalibratedAxis(AxisType.Z, 0.5, "mm"),
        CalibratedAxis(AxisType.TIME, 3.0, "s"),
    ]
    assert spatial_unit(axes) == "mm"
    assert math.isclose(calibrated_element_size(axes), 0.5, rel_tol=1e-9)


def test_element_size_uncalibrated():
    axes = axes_of(AxisType.X, AxisType.Y)
    assert spatial_unit(axes) == ""
    assert calibrated_element_size(axes) == 1.0

    axes = [CalibratedAxis(AxisType.X, 2.0, "pixel"),
            CalibratedAxis(AxisType.Y, 3.0, "pixel")]
    assert calibrated_element_size(axes) == 6.0


def test_element_size_unconvertible():
    axes = [CalibratedAxis(AxisType.X, 1.0, "mm"),
            CalibratedAxis(AxisType.Y, 1.0, "furlong")]
    assert spatial_unit(axes) is None
    assert math.isnan(calibrated_element_size(axes))

    # Calibrated and uncalibrated axes can't be combined either
    axes = [CalibratedAxis(AxisType.X, 1.0, "mm"),
            CalibratedAxis(AxisType.Y, 1.0, "")]
    assert math.isnan(calibrated_element_size(axes))


def test_convert_length():
    assert math.isclose(convert_length(2.5, "cm", "mm"), 25.0)
    assert math.isclose(convert_length(1.0, "micron", "nm"), 1000.0)
    with pytest.raises(ValueError):
        convert_length(1.0, "mm", "parsec")


def test_unit_header():
    calibrated = axes_of(AxisType.X, AxisType.Y, AxisType.Z, scale=0.1, unit="mm")
    assert unit_header(calibrated, "³") == "(mm³)"
    assert unit_header(calibrated) == "(mm)"
    assert unit_header(axes_of(AxisType.X, AxisType.Y), "²") == ""
    assert unit_header(axes_of(AxisType.X, AxisType.Y, unit="pixels"), "²") == ""


def test_matching_calibration():
    assert has_matching_spatial_calibration(
        axes_of(AxisType.X, AxisType.Y, AxisType.Z, scale=0.5, unit="um"))
    axes = [CalibratedAxis(AxisType.X, 0.5, "um"),
            CalibratedAxis(AxisType.Y, 0.5, "um"),
            CalibratedAxis(AxisType.Z, 2.0, "um")]
    assert not has_matching_spatial_calibration(axes)


def test_is_binary():
    assert is_binary(np.zeros((3, 3), dtype=bool))
    assert is_binary(np.array([[0, 255], [255, 0]], dtype=np.uint8))
    assert is_binary(np.full((2, 2), 7))
    assert not is_binary(np.array([0, 1, 2]))
    assert not is_binary(np.empty((0, 4)))


def test_image_is_read_only():
    source = np.zeros((4, 4), dtype=np.uint8)
    image = Image(source, axes_of(AxisType.X, AxisType.Y), name="plate")

    assert not image.data.flags.writeable
    with pytest.raises(ValueError):
        image.data[0, 0] = 1
    # The caller's array isn't affected
    source[0, 0] = 1
    assert image.data[0, 0] == 1


def test_image_axes_must_match_dimensions():
    with pytest.raises(ValueError):
        Image(np.zeros((4, 4, 4)), axes_of(AxisType.X, AxisType.Y))


def test_axis_index():
    image = Image(np.zeros((2, 3, 4)), axes_of(AxisType.TIME, AxisType.Y, AxisType.X))
    assert image.axis_index(AxisType.X) == 2
    assert image.axis_index(AxisType.Z) is None


def test_check_image_reasons():
    assert check_image(None).error.reason == NO_IMAGE_OPEN

    line = Image(np.zeros(5, dtype=bool), axes_of(AxisType.X))
    assert check_image(line).error.reason == WEIRD_SPATIAL

    plane = Image(np.zeros((5, 5), dtype=bool), axes_of(AxisType.X, AxisType.Y))
    assert check_image(plane).ok
    assert check_image(plane, spatial_range=(3, 3)).error.reason == NOT_3D_IMAGE

    grey = Image(np.arange(25).reshape(5, 5), axes_of(AxisType.X, AxisType.Y))
    assert check_image(grey).error.reason == NOT_BINARY
    assert check_image(grey, binary=False).image is grey


def test_xyz_indices():
    assert xyz_indices(axes_of(AxisType.X, AxisType.Y, AxisType.Z)) == (0, 1, 2)
    assert xyz_indices(axes_of(AxisType.TIME, AxisType.Z, AxisType.Y,
                               AxisType.X)) == (3, 2, 1)
    assert xyz_indices(axes_of(AxisType.X, AxisType.X, AxisType.Y)) is None
    assert xyz_indices(axes_of(AxisType.X, AxisType.Y)) is None
