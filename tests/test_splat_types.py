import math

import pytest
from hypothesis import given
from hypothesis import strategies as st

from spzkit.splat_types import (
    CoordinateConverter,
    CoordinateSystem,
    GaussianCloud,
    added,
    axes_match,
    axis_angle_quat,
    coordinate_converter,
    dot,
    float_to_half,
    half_to_float,
    multiply_elementwise,
    multiply_quats,
    norm,
    normalized,
    rotate_vector,
    scaled,
    squared_norm,
)

finite = st.floats(min_value=-100.0, max_value=100.0, allow_nan=False)
vec3 = st.tuples(finite, finite, finite)
systems = st.sampled_from(list(CoordinateSystem))


def _make_cloud(num_points=2, sh_degree=1):
    coeffs = {0: 0, 1: 3, 2: 8, 3: 15}[sh_degree]
    return GaussianCloud(
        num_points=num_points,
        sh_degree=sh_degree,
        positions=[float(i + 1) for i in range(num_points * 3)],
        scales=[float(i) * 0.1 for i in range(num_points * 3)],
        rotations=[float(i + 1) * 0.2 for i in range(num_points * 4)],
        alphas=[0.5] * num_points,
        colors=[0.25] * (num_points * 3),
        sh=[float(i + 1) * 0.01 for i in range(num_points * coeffs * 3)],
    )


# Half precision


@given(st.integers(min_value=0, max_value=0xFFFF))
def test_half_round_trip_for_finite_values(h):
    if (h >> 10) & 0x1F == 31:
        assert math.isinf(half_to_float(h)) or math.isnan(half_to_float(h))
    else:
        assert float_to_half(half_to_float(h)) == h


@pytest.mark.parametrize("value", [0.5, 1.0, -2.0, 65504.0, 2.0**-20, -(2.0**-24)])
def test_representable_floats_survive_half_round_trip(value):
    assert half_to_float(float_to_half(value)) == value


def test_half_infinity_and_nan():
    assert half_to_float(float_to_half(math.inf)) == math.inf
    assert half_to_float(float_to_half(-math.inf)) == -math.inf
    assert math.isnan(half_to_float(float_to_half(math.nan)))


def test_float_too_large_for_half_becomes_infinity():
    assert half_to_float(float_to_half(1.0e6)) == math.inf
    assert half_to_float(float_to_half(-1.0e6)) == -math.inf
    assert half_to_float(float_to_half(1.0e300)) == math.inf


def test_negative_zero_keeps_sign():
    result = half_to_float(float_to_half(-0.0))
    assert result == 0.0
    assert math.copysign(1.0, result) == -1.0


# Coordinate systems


def test_unspecified_matches_everything():
    for system in CoordinateSystem:
        assert axes_match(CoordinateSystem.UNSPECIFIED, system) == (True, True, True)
        assert axes_match(system, CoordinateSystem.UNSPECIFIED) == (True, True, True)


def test_rub_and_rdf_differ_in_y_and_z():
    assert axes_match(CoordinateSystem.RUB, CoordinateSystem.RDF) == (True, False, False)


@given(systems)
def test_converter_to_same_system_is_identity(system):
    assert coordinate_converter(system, system) == CoordinateConverter()


@given(systems, systems)
def test_converter_is_symmetric(a, b):
    assert coordinate_converter(a, b) == coordinate_converter(b, a)


@given(systems, systems)
def test_converter_flips_are_unit_signs(a, b):
    c = coordinate_converter(a, b)
    assert len(c.flip_p) == 3 and len(c.flip_q) == 3 and len(c.flip_sh) == 15
    assert all(v in (1.0, -1.0) for v in (*c.flip_p, *c.flip_q, *c.flip_sh))


# GaussianCloud


def test_rotate_180_negates_y_and_z():
    cloud = _make_cloud()
    original = list(cloud.positions)
    cloud.rotate_180_deg_about_x()
    assert cloud.positions[0::3] == original[0::3]
    assert cloud.positions[1::3] == [-v for v in original[1::3]]
    assert cloud.positions[2::3] == [-v for v in original[2::3]]


def test_rotate_180_flips_quaternion_xy_and_keeps_w():
    cloud = _make_cloud()
    original = list(cloud.rotations)
    cloud.rotate_180_deg_about_x()
    # flip_q = (y*z, x*z, x*y) with y = z = -1 keeps qx and flips qy, qz.
    assert cloud.rotations[0::4] == original[0::4]
    assert cloud.rotations[1::4] == [-v for v in original[1::4]]
    assert cloud.rotations[2::4] == [-v for v in original[2::4]]
    assert cloud.rotations[3::4] == original[3::4]


def test_rotate_180_flips_degree_one_sh():
    cloud = _make_cloud(num_points=2, sh_degree=1)
    original = list(cloud.sh)
    cloud.rotate_180_deg_about_x()
    for point in range(2):
        base = point * 9
        assert cloud.sh[base : base + 3] == [-v for v in original[base : base + 3]]
        assert cloud.sh[base + 3 : base + 6] == [-v for v in original[base + 3 : base + 6]]
        assert cloud.sh[base + 6 : base + 9] == original[base + 6 : base + 9]


@pytest.mark.parametrize("degree", [0, 1, 2, 3])
def test_rotate_twice_restores_cloud(degree):
    cloud = _make_cloud(num_points=3, sh_degree=degree)
    expected = _make_cloud(num_points=3, sh_degree=degree)
    cloud.rotate_180_deg_about_x()
    cloud.rotate_180_deg_about_x()
    assert cloud == expected


@given(systems, systems)
def test_convert_there_and_back_restores(a, b):
    cloud = _make_cloud(num_points=2, sh_degree=3)
    expected = _make_cloud(num_points=2, sh_degree=3)
    cloud.convert_coordinates(a, b)
    cloud.convert_coordinates(b, a)
    assert cloud == expected


def test_convert_empty_cloud_is_harmless():
    cloud = GaussianCloud()
    cloud.convert_coordinates(CoordinateSystem.RDF, CoordinateSystem.RUB)
    assert cloud == GaussianCloud()


def test_median_volume_of_empty_cloud():
    assert GaussianCloud().median_volume() == 0.01


def test_median_volume_of_unit_sphere():
    cloud = GaussianCloud(num_points=1, scales=[0.0, 0.0, 0.0])
    assert cloud.median_volume() == pytest.approx(math.pi * 4 / 3)


def test_median_volume_picks_middle_point():
    cloud = GaussianCloud(
        num_points=3,
        scales=[3.0, 0.0, 0.0, -1.0, -1.0, -1.0, 0.5, 0.0, 0.0],
    )
    middle = GaussianCloud(num_points=1, scales=[0.5, 0.0, 0.0])
    assert cloud.median_volume() == pytest.approx(middle.median_volume())


# Vector math


@given(vec3, vec3)
def test_dot_is_symmetric(a, b):
    assert dot(a, b) == pytest.approx(dot(b, a))


@given(vec3)
def test_squared_norm_matches_norm(v):
    assert squared_norm(v) == dot(v, v)
    assert norm(v) ** 2 == pytest.approx(squared_norm(v), rel=1e-9, abs=1e-9)


@given(vec3.filter(lambda v: norm(v) > 1e-3))
def test_normalized_has_unit_length(v):
    assert norm(normalized(v)) == pytest.approx(1.0)


def test_normalized_quaternion_has_unit_length():
    assert norm(normalized((1.0, 2.0, 3.0, 4.0))) == pytest.approx(1.0)


def test_normalized_zero_vector_is_nan():
    result = tuple(normalized((0.0, 0.0, 0.0)))
    assert len(result) == 3
    assert math.isnan(result[0])
    assert math.isnan(result[1])
    assert math.isnan(result[2])


@given(vec3, vec3)
def test_added_is_commutative_and_inverse(a, b):
    assert added(a, b) == added(b, a)
    assert added(a, scaled(a, -1.0)) == tuple(0.0 for _ in a)


@given(vec3)
def test_scaled_and_elementwise_identity(v):
    assert scaled(v, 1.0) == v
    assert multiply_elementwise(v, (1.0, 1.0, 1.0)) == v
    assert multiply_elementwise(v, (-1.0, -1.0, -1.0)) == scaled(v, -1.0)


def test_zero_axis_gives_identity_quaternion():
    assert axis_angle_quat((0.0, 0.0, 0.0)) == (1.0, 0.0, 0.0, 0.0)


def test_half_turn_about_x_flips_y():
    q = axis_angle_quat((math.pi, 0.0, 0.0))
    result = rotate_vector(q, (0.0, 1.0, 0.0))
    assert result == pytest.approx((0.0, -1.0, 0.0), abs=1e-9)


@given(vec3, vec3)
def test_rotation_preserves_length(axis, v):
    q = axis_angle_quat(scaled(axis, 0.05))
    assert norm(rotate_vector(q, v)) == pytest.approx(norm(v), rel=1e-6, abs=1e-6)


@given(vec3, vec3, vec3)
def test_quaternion_product_composes_rotations(axis_a, axis_b, v):
    a = axis_angle_quat(scaled(axis_a, 0.03))
    b = axis_angle_quat(scaled(axis_b, 0.03))
    combined = rotate_vector(multiply_quats(a, b), v)
    sequential = rotate_vector(a, rotate_vector(b, v))
    assert combined == pytest.approx(sequential, rel=1e-6, abs=1e-6)


@given(vec3)
def test_quaternion_times_conjugate_is_identity(axis):
    q = axis_angle_quat(scaled(axis, 0.03))
    conjugate = (q[0], -q[1], -q[2], -q[3])
    assert multiply_quats(q, conjugate) == pytest.approx((1.0, 0.0, 0.0, 0.0), abs=1e-9)