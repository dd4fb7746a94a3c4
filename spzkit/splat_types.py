"""Core Gaussian splat types, coordinate-system conversion and small vector math helpers."""

from __future__ import annotations

import math
import struct
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import IntEnum

Vec3 = tuple[float, float, float]
Quat4 = tuple[float, float, float, float]

_ONES_15 = (1.0,) * 15


class CoordinateSystem(IntEnum):
    """Axis conventions a splat's coordinates may be expressed in."""

    UNSPECIFIED = 0
    LDB = 1  # Left Down Back
    RDB = 2  # Right Down Back
    LUB = 3  # Left Up Back
    RUB = 4  # Right Up Back, Three.js coordinate system
    LDF = 5  # Left Down Front
    RDF = 6  # Right Down Front, PLY coordinate system
    LUF = 7  # Left Up Front, GLB coordinate system
    RUF = 8  # Right Up Front, Unity coordinate system


@dataclass(frozen=True)
class CoordinateConverter:
    """Sign flips that take data from one coordinate system to another."""

    flip_p: tuple[float, ...] = (1.0, 1.0, 1.0)  # x, y, z position flips
    flip_q: tuple[float, ...] = (1.0, 1.0, 1.0)  # x, y, z quaternion flips; w never flips
    flip_sh: tuple[float, ...] = _ONES_15  # flips for the 15 SH coefficients


def axes_match(a: CoordinateSystem, b: CoordinateSystem) -> tuple[bool, bool, bool]:
    """Return, per axis, whether the two systems agree on its direction."""
    a_num = int(a) - 1
    b_num = int(b) - 1
    if a_num < 0 or b_num < 0:
        return (True, True, True)
    return tuple(((a_num >> bit) & 1) == ((b_num >> bit) & 1) for bit in range(3))  # type: ignore[return-value]


def coordinate_converter(
    from_system: CoordinateSystem, to_system: CoordinateSystem
) -> CoordinateConverter:
    """Build the converter that maps ``from_system`` coordinates to ``to_system``."""
    x, y, z = (1.0 if match else -1.0 for match in axes_match(from_system, to_system))
    return CoordinateConverter(
        flip_p=(x, y, z),
        flip_q=(y * z, x * z, x * y),
        flip_sh=(
            y,
            z,
            x,
            x * y,
            y * z,
            1.0,
            x * z,
            1.0,
            y,
            x * y * z,
            y,
            z,
            x,
            z,
            x,
        ),
    )


@dataclass
class GaussianCloud:
    """A point cloud of Gaussians stored as flat per-attribute float lists.

    Each Gaussian has an xyz position, log-scale xyz scales, an xyzw quaternion,
    a pre-sigmoid alpha, an SH DC rgb colour and 0 to 45 spherical harmonics
    coefficients. In ``sh`` the colour channel varies fastest and the
    coefficient slowest.
    """

    num_points: int = 0
    sh_degree: int = 0
    antialiased: bool = False
    positions: list[float] = field(default_factory=list)
    scales: list[float] = field(default_factory=list)
    rotations: list[float] = field(default_factory=list)
    alphas: list[float] = field(default_factory=list)
    colors: list[float] = field(default_factory=list)
    sh: list[float] = field(default_factory=list)

    def convert_coordinates(
        self, from_system: CoordinateSystem, to_system: CoordinateSystem
    ) -> None:
        """Convert this cloud between coordinate systems, in place."""
        c = coordinate_converter(from_system, to_system)
        self.positions[:] = [
            value * c.flip_p[i % 3] for i, value in enumerate(self.positions)
        ]
        q_flips = (*c.flip_q, 1.0)
        self.rotations[:] = [
            value * q_flips[i % 4] for i, value in enumerate(self.rotations)
        ]
        num_coeffs = len(self.sh) // 3
        if num_coeffs == 0 or self.num_points <= 0:
            return
        per_point = num_coeffs // self.num_points
        if per_point == 0:
            return
        self.sh[:] = [
            value * c.flip_sh[(i // 3) % per_point] for i, value in enumerate(self.sh)
        ]

    def rotate_180_deg_about_x(self) -> None:
        """Rotate by 180 degrees about x (RUB <-> RDF), in place."""
        self.convert_coordinates(CoordinateSystem.RUB, CoordinateSystem.RDF)

    def median_volume(self) -> float:
        """Return the median ellipsoid volume of the Gaussians."""
        if self.num_points == 0:
            return 0.01
        # Scales are logarithmic, so sorting by their sum sorts by volume.
        sums = sorted(
            sum(self.scales[i : i + 3]) for i in range(0, len(self.scales), 3)
        )
        median = sums[len(sums) // 2]
        return (math.pi * 4 / 3) * math.exp(median)


def half_to_float(h: int) -> float:
    """Decode an IEEE 754 half-precision bit pattern."""
    sign = (h >> 15) & 0x1
    exponent = (h >> 10) & 0x1F
    mantissa = h & 0x3FF
    sign_mul = -1.0 if sign == 1 else 1.0
    if exponent == 0:
        return sign_mul * 2.0**-14 * float(mantissa) / 1024.0
    if exponent == 31:
        return math.nan if mantissa != 0 else sign_mul * math.inf
    return sign_mul * 2.0 ** (exponent - 15) * (1.0 + mantissa / 1024.0)


def float_to_half(f: float) -> int:
    """Encode a float as a half-precision bit pattern, truncating the mantissa."""
    try:
        (bits,) = struct.unpack("<I", struct.pack("<f", f))
    except OverflowError:
        return (0x8000 if f < 0 else 0) | 0x7C00
    sign = (bits >> 31) & 0x01
    exponent = (bits >> 23) & 0xFF
    mantissa = bits & 0x7FFFFF

    if exponent == 0xFF:
        return (sign << 15) | (0x7C00 if mantissa == 0 else 0x7C01)

    centered_exp = exponent - 127
    if centered_exp > 15:
        return (sign << 15) | 0x7C00
    if centered_exp > -15:
        return (sign << 15) | ((centered_exp + 15) << 10) | (mantissa >> 13)

    full_mantissa = 0x800000 | mantissa
    shift = -(centered_exp + 14)
    return (sign << 15) | ((full_mantissa >> shift) >> 13)


def dot(a: Sequence[float], b: Sequence[float]) -> float:
    """Dot product of two vectors."""
    return sum(x * y for x, y in zip(a, b))


def squared_norm(v: Sequence[float]) -> float:
    """Squared Euclidean length."""
    return dot(v, v)


def norm(v: Sequence[float]) -> float:
    """Euclidean length of a vector or quaternion."""
    return math.sqrt(squared_norm(v))


def normalized(v: Sequence[float]) -> tuple[float, ...]:
    """Scale a vector or quaternion to unit length (NaNs for the zero vector)."""
    n = norm(v)
    if n == 0.0:
        return tuple(math.nan for _ in v)
    return tuple(x / n for x in v)


def axis_angle_quat(scaled_axis: Sequence[float]) -> Quat4:
    """Convert an axis scaled by its angle to a unit quaternion (w, x, y, z)."""
    a0, a1, a2 = scaled_axis
    theta_squared = a0 * a0 + a1 * a1 + a2 * a2
    if theta_squared > 0.0:
        theta = math.sqrt(theta_squared)
        half_theta = theta * 0.5
        k = math.sin(half_theta) / theta
        return normalized((math.cos(half_theta), a0 * k, a1 * k, a2 * k))  # type: ignore[return-value]
    # First-order Taylor approximation avoids dividing by a zero angle.
    k = 0.5
    return normalized((1.0, a0 * k, a1 * k, a2 * k))  # type: ignore[return-value]


def rotate_vector(q: Sequence[float], p: Sequence[float]) -> Vec3:
    """Rotate point ``p`` by unit quaternion ``q`` given as (w, x, y, z)."""
    w, x, y, z = q
    vx, vy, vz = p
    x2, y2, z2 = x + x, y + y, z + z
    wx2, wy2, wz2 = w * x2, w * y2, w * z2
    xx2, xy2, xz2 = x * x2, x * y2, x * z2
    yy2, yz2, zz2 = y * y2, y * z2, z * z2
    return (
        vx * (1.0 - (yy2 + zz2)) + vy * (xy2 - wz2) + vz * (xz2 + wy2),
        vx * (xy2 + wz2) + vy * (1.0 - (xx2 + zz2)) + vz * (yz2 - wx2),
        vx * (xz2 - wy2) + vy * (yz2 + wx2) + vz * (1.0 - (xx2 + yy2)),
    )


def multiply_quats(a: Sequence[float], b: Sequence[float]) -> Quat4:
    """Hamilton product of two (w, x, y, z) quaternions, normalized."""
    w, x, y, z = a
    qw, qx, qy, qz = b
    return normalized(  # type: ignore[return-value]
        (
            w * qw - x * qx - y * qy - z * qz,
            w * qx + x * qw + y * qz - z * qy,
            w * qy - x * qz + y * qw + z * qx,
            w * qz + x * qy - y * qx + z * qw,
        )
    )


def scaled(v: Sequence[float], s: float) -> tuple[float, ...]:
    """Multiply every component by ``s``."""
    return tuple(x * s for x in v)


def added(a: Sequence[float], b: Sequence[float]) -> tuple[float, ...]:
    """Component-wise sum."""
    return tuple(x + y for x, y in zip(a, b))


def multiply_elementwise(a: Sequence[float], b: Sequence[float]) -> tuple[float, ...]:
    """Component-wise product."""
    return tuple(x * y for x, y in zip(a, b))