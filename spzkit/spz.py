"""Packing, serialization and compression of Gaussian splats in the SPZ format."""

from __future__ import annotations

import math
import struct
import zlib
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from os import PathLike
from typing import Union

from .splat_types import (
    CoordinateConverter,
    CoordinateSystem,
    GaussianCloud,
    coordinate_converter,
    half_to_float,
    normalized,
    squared_norm,
)

PathType = Union[str, "PathLike[str]"]

# Scale factor for DC colour components. Converting to RGB would use 0.282, but a smaller value
# leaves room for base colours that the higher SH bands bring back into range.
_COLOR_SCALE = 0.15

_MAGIC = 0x5053474E  # "NGSP"
_VERSION = 2
_HEADER = struct.Struct("<IIIBBBB")
_FLAG_ANTIALIASED = 0x1
_MAX_POINTS_TO_READ = 10_000_000
_FRACTIONAL_BITS = 12
_SH1_BITS = 5
_SH_REST_BITS = 4
_NUM_SH_COEFFS = 15


class SpzError(ValueError):
    """Raised when splat data cannot be packed, unpacked, read or written."""


@dataclass
class PackOptions:
    """Options for packing: the coordinate system the input cloud is in."""

    from_system: CoordinateSystem = CoordinateSystem.UNSPECIFIED


@dataclass
class UnpackOptions:
    """Options for unpacking: the coordinate system to produce."""

    to_system: CoordinateSystem = CoordinateSystem.UNSPECIFIED


@dataclass
class UnpackedGaussian:
    """A single inflated Gaussian."""

    position: tuple[float, float, float]
    rotation: tuple[float, float, float, float]  # x, y, z, w
    scale: tuple[float, float, float]  # log scale
    color: tuple[float, float, float]  # SH DC encoding
    alpha: float  # inverse logistic
    sh_r: tuple[float, ...]
    sh_g: tuple[float, ...]
    sh_b: tuple[float, ...]


@dataclass
class PackedGaussian:
    """A single low-precision Gaussian with all 15 SH coefficients per channel."""

    position: bytes = bytes(9)
    rotation: bytes = bytes(3)
    scale: bytes = bytes(3)
    color: bytes = bytes(3)
    alpha: int = 0
    sh_r: tuple[int, ...] = (0,) * _NUM_SH_COEFFS
    sh_g: tuple[int, ...] = (0,) * _NUM_SH_COEFFS
    sh_b: tuple[int, ...] = (0,) * _NUM_SH_COEFFS

    def unpack(
        self, uses_float16: bool, fractional_bits: int, converter: CoordinateConverter
    ) -> UnpackedGaussian:
        """Inflate this Gaussian, applying the flips of ``converter``."""
        c = converter
        raw = _decode_positions(
            self.position[:6] if uses_float16 else self.position[:9],
            uses_float16,
            fractional_bits,
        )
        position = tuple(flip * value for flip, value in zip(c.flip_p, raw))
        xyz = tuple(
            (value / 127.5 - 1.0) * flip for value, flip in zip(self.rotation, c.flip_q)
        )
        w = math.sqrt(max(0.0, 1.0 - squared_norm(xyz)))
        return UnpackedGaussian(
            position=position,  # type: ignore[arg-type]
            rotation=(*xyz, w),  # type: ignore[arg-type]
            scale=tuple(s / 16.0 - 10.0 for s in self.scale),  # type: ignore[arg-type]
            color=tuple(_unpack_color(v) for v in self.color),  # type: ignore[arg-type]
            alpha=_inv_sigmoid(self.alpha / 255.0),
            sh_r=tuple(f * unquantize_sh(v) for f, v in zip(c.flip_sh, self.sh_r)),
            sh_g=tuple(f * unquantize_sh(v) for f, v in zip(c.flip_sh, self.sh_g)),
            sh_b=tuple(f * unquantize_sh(v) for f, v in zip(c.flip_sh, self.sh_b)),
        )


@dataclass
class PackedGaussians:
    """A whole splat in low precision, stored attribute by attribute."""

    num_points: int = 0
    sh_degree: int = 0
    fractional_bits: int = 0
    antialiased: bool = False
    positions: bytes = b""
    scales: bytes = b""
    rotations: bytes = b""
    alphas: bytes = b""
    colors: bytes = b""
    sh: bytes = field(default=b"")

    def uses_float16(self) -> bool:
        """Whether positions are in the legacy float16 encoding."""
        return len(self.positions) == self.num_points * 3 * 2

    def at(self, i: int) -> PackedGaussian:
        """Return the packed Gaussian at index ``i``."""
        if not 0 <= i < self.num_points:
            raise IndexError(f"gaussian index out of range: {i}")
        width = 6 if self.uses_float16() else 9
        start3 = i * 3
        sh_dim = dim_for_degree(self.sh_degree)
        coeffs = self.sh[i * sh_dim * 3 : (i + 1) * sh_dim * 3]
        pad = (128,) * (_NUM_SH_COEFFS - sh_dim)
        return PackedGaussian(
            position=bytes(self.positions[i * width : (i + 1) * width]).ljust(9, b"\0"),
            rotation=bytes(self.rotations[start3 : start3 + 3]),
            scale=bytes(self.scales[start3 : start3 + 3]),
            color=bytes(self.colors[start3 : start3 + 3]),
            alpha=self.alphas[i],
            sh_r=tuple(coeffs[0::3]) + pad,
            sh_g=tuple(coeffs[1::3]) + pad,
            sh_b=tuple(coeffs[2::3]) + pad,
        )

    def unpack(
        self, i: int, converter: CoordinateConverter | None = None
    ) -> UnpackedGaussian:
        """Inflate the Gaussian at index ``i``."""
        return self.at(i).unpack(
            self.uses_float16(), self.fractional_bits, converter or CoordinateConverter()
        )


def degree_for_dim(dim: int) -> int:
    """Spherical harmonics degree for a number of coefficients per channel."""
    if dim < 3:
        return 0
    if dim < 8:
        return 1
    if dim < 15:
        return 2
    return 3


def dim_for_degree(degree: int) -> int:
    """Number of SH coefficients per channel for a degree from 0 to 3."""
    dims = {0: 0, 1: 3, 2: 8, 3: 15}
    try:
        return dims[degree]
    except KeyError:
        raise SpzError(f"Unsupported SH degree: {degree}") from None


def _round(x: float) -> float:
    """Round half away from zero."""
    return math.floor(x + 0.5) if x >= 0 else -math.floor(-x + 0.5)


def _to_uint8(x: float) -> int:
    if math.isnan(x):
        return 0
    return int(_round(min(max(x, 0.0), 255.0)))


def _trunc_div(a: int, b: int) -> int:
    return -((-a) // b) if a < 0 else a // b


def quantize_sh(x: float, bucket_size: int) -> int:
    """Quantize to 8 bits, rounding to the nearest bucket centre; 0 maps to a centre."""
    scaled_value = x * 128.0
    if math.isnan(scaled_value):
        scaled_value = 0.0
    scaled_value = min(max(scaled_value, -1024.0), 1024.0)
    q = int(_round(scaled_value) + 128.0)
    q = _trunc_div(q + bucket_size // 2, bucket_size) * bucket_size
    return min(max(q, 0), 255)


def unquantize_sh(x: int) -> float:
    """Inverse of :func:`quantize_sh`."""
    return (float(x) - 128.0) / 128.0


def _sigmoid(x: float) -> float:
    if x >= 0:
        return 1.0 / (1.0 + math.exp(-x))
    e = math.exp(x)
    return e / (1.0 + e)


def _inv_sigmoid(x: float) -> float:
    if x <= 0.0:
        return -math.inf
    if x >= 1.0:
        return math.inf
    return math.log(x / (1.0 - x))


def _unpack_color(value: int) -> float:
    return ((value / 255.0) - 0.5) / _COLOR_SCALE


def _chunks(seq: Sequence, size: int) -> Iterator[Sequence]:
    for start in range(0, len(seq), size):
        yield seq[start : start + size]


def _decode_positions(data: bytes, uses_float16: bool, fractional_bits: int) -> list[float]:
    if uses_float16:
        halves = struct.unpack(f"<{len(data) // 2}H", data)
        return [half_to_float(h) for h in halves]
    scale = 1.0 / (1 << fractional_bits)
    return [
        int.from_bytes(chunk, "little", signed=True) * scale for chunk in _chunks(data, 3)
    ]


def _check_cloud_sizes(g: GaussianCloud) -> None:
    checks = [
        (g.num_points >= 0, "num_points >= 0"),
        (0 <= g.sh_degree <= 3, "0 <= sh_degree <= 3"),
    ]
    for ok, text in checks:
        if not ok:
            raise SpzError(f"Check failed: {text}")
    n = g.num_points
    expected = {
        "positions": (g.positions, n * 3),
        "scales": (g.scales, n * 3),
        "rotations": (g.rotations, n * 4),
        "alphas": (g.alphas, n),
        "colors": (g.colors, n * 3),
        "sh": (g.sh, n * dim_for_degree(g.sh_degree) * 3),
    }
    for name, (values, size) in expected.items():
        if len(values) != size:
            raise SpzError(f"Check failed: len({name}) == {size}, got {len(values)}")


def _check_packed_sizes(
    packed: PackedGaussians, num_points: int, sh_dim: int, uses_float16: bool
) -> None:
    expected = {
        "positions": (packed.positions, num_points * 3 * (2 if uses_float16 else 3)),
        "scales": (packed.scales, num_points * 3),
        "rotations": (packed.rotations, num_points * 3),
        "alphas": (packed.alphas, num_points),
        "colors": (packed.colors, num_points * 3),
        "sh": (packed.sh, num_points * sh_dim * 3),
    }
    for name, (values, size) in expected.items():
        if len(values) != size:
            raise SpzError(f"Check failed: len({name}) == {size}, got {len(values)}")


def pack_gaussians(
    cloud: GaussianCloud, options: PackOptions | None = None
) -> PackedGaussians:
    """Quantize a cloud into the packed representation (RUB coordinates)."""
    options = options or PackOptions()
    _check_cloud_sizes(cloud)
    c = coordinate_converter(options.from_system, CoordinateSystem.RUB)

    # 24-bit fixed point with 12 fractional bits (~0.25 mm resolution).
    scale = float(1 << _FRACTIONAL_BITS)
    positions = bytearray()
    for i, value in enumerate(cloud.positions):
        raw = c.flip_p[i % 3] * value * scale
        if not math.isfinite(raw):
            raise SpzError(f"Non-finite position value: {value}")
        fixed = int(_round(raw))
        positions += (fixed & 0xFFFFFF).to_bytes(3, "little")

    scales = bytes(_to_uint8((s + 10.0) * 16.0) for s in cloud.scales)

    rotations = bytearray()
    for quat in _chunks(cloud.rotations, 4):
        # Normalize, make w non-negative, then keep xyz; w is derived on load.
        x, y, z, w = normalized(quat)
        xyz = (x * c.flip_q[0], y * c.flip_q[1], z * c.flip_q[2])
        factor = -127.5 if w < 0 else 127.5
        rotations += bytes(_to_uint8(v * factor + 127.5) for v in xyz)

    alphas = bytes(_to_uint8(_sigmoid(a) * 255.0) for a in cloud.alphas)
    colors = bytes(
        _to_uint8(v * (_COLOR_SCALE * 255.0) + (0.5 * 255.0)) for v in cloud.colors
    )

    sh = bytearray()
    if cloud.sh_degree > 0:
        sh_per_point = dim_for_degree(cloud.sh_degree) * 3
        sh1_bucket = 1 << (8 - _SH1_BITS)
        rest_bucket = 1 << (8 - _SH_REST_BITS)
        for i, value in enumerate(cloud.sh):
            k = (i % sh_per_point) // 3
            bucket = sh1_bucket if k < 3 else rest_bucket
            sh.append(quantize_sh(c.flip_sh[k] * value, bucket))

    return PackedGaussians(
        num_points=cloud.num_points,
        sh_degree=cloud.sh_degree,
        fractional_bits=_FRACTIONAL_BITS,
        antialiased=cloud.antialiased,
        positions=bytes(positions),
        scales=scales,
        rotations=bytes(rotations),
        alphas=alphas,
        colors=colors,
        sh=bytes(sh),
    )


def unpack_gaussians(
    packed: PackedGaussians, options: UnpackOptions | None = None
) -> GaussianCloud:
    """Inflate packed data into a cloud in the requested coordinate system."""
    options = options or UnpackOptions()
    num_points = packed.num_points
    sh_dim = dim_for_degree(packed.sh_degree)
    uses_float16 = packed.uses_float16()
    _check_packed_sizes(packed, num_points, sh_dim, uses_float16)

    rotations: list[float] = []
    for r in _chunks(packed.rotations, 3):
        xyz = tuple(v / 127.5 - 1.0 for v in r)
        rotations.extend(xyz)
        rotations.append(math.sqrt(max(0.0, 1.0 - squared_norm(xyz))))

    cloud = GaussianCloud(
        num_points=num_points,
        sh_degree=packed.sh_degree,
        antialiased=packed.antialiased,
        positions=_decode_positions(
            bytes(packed.positions), uses_float16, packed.fractional_bits
        ),
        scales=[s / 16.0 - 10.0 for s in packed.scales],
        rotations=rotations,
        alphas=[_inv_sigmoid(a / 255.0) for a in packed.alphas],
        colors=[_unpack_color(v) for v in packed.colors],
        sh=[unquantize_sh(v) for v in packed.sh],
    )
    cloud.convert_coordinates(CoordinateSystem.RUB, options.to_system)
    return cloud


def serialize_packed_gaussians(packed: PackedGaussians) -> bytes:
    """Serialize packed data: header followed by the attribute arrays."""
    try:
        header = _HEADER.pack(
            _MAGIC,
            _VERSION,
            packed.num_points,
            packed.sh_degree,
            packed.fractional_bits,
            _FLAG_ANTIALIASED if packed.antialiased else 0,
            0,
        )
    except struct.error as exc:
        raise SpzError(f"Header field out of range: {exc}") from exc
    return b"".join(
        (
            header,
            bytes(packed.positions),
            bytes(packed.alphas),
            bytes(packed.colors),
            bytes(packed.scales),
            bytes(packed.rotations),
            bytes(packed.sh),
        )
    )


def deserialize_packed_gaussians(data: bytes) -> PackedGaussians:
    """Parse uncompressed SPZ data into packed Gaussians."""
    view = memoryview(bytes(data))
    if len(view) < _HEADER.size:
        raise SpzError("deserializePackedGaussians: header not found")
    magic, version, num_points, sh_degree, fractional_bits, flags, _ = _HEADER.unpack_from(
        view
    )
    if magic != _MAGIC:
        raise SpzError("deserializePackedGaussians: header not found")
    if version < 1 or version > 2:
        raise SpzError(f"deserializePackedGaussians: version not supported: {version}")
    if num_points > _MAX_POINTS_TO_READ:
        raise SpzError(f"deserializePackedGaussians: Too many points: {num_points}")
    if sh_degree > 3:
        raise SpzError(f"deserializePackedGaussians: Unsupported SH degree: {sh_degree}")

    sh_dim = dim_for_degree(sh_degree)
    uses_float16 = version == 1
    sizes = (
        num_points * 3 * (2 if uses_float16 else 3),
        num_points,
        num_points * 3,
        num_points * 3,
        num_points * 3,
        num_points * sh_dim * 3,
    )
    sections = []
    offset = _HEADER.size
    for size in sizes:
        chunk = bytes(view[offset : offset + size])
        if len(chunk) < size:
            raise SpzError("deserializePackedGaussians: read error")
        sections.append(chunk)
        offset += size
    positions, alphas, colors, scales, rotations, sh = sections
    return PackedGaussians(
        num_points=num_points,
        sh_degree=sh_degree,
        fractional_bits=fractional_bits,
        antialiased=(flags & _FLAG_ANTIALIASED) != 0,
        positions=positions,
        scales=scales,
        rotations=rotations,
        alphas=alphas,
        colors=colors,
        sh=sh,
    )


def compress_gzipped(data: bytes) -> bytes:
    """Compress bytes into a gzip stream."""
    compressor = zlib.compressobj(
        zlib.Z_DEFAULT_COMPRESSION, zlib.DEFLATED, 16 + zlib.MAX_WBITS, 9
    )
    return compressor.compress(bytes(data)) + compressor.flush()


def decompress_gzipped(data: bytes) -> bytes:
    """Decompress a complete gzip stream."""
    decompressor = zlib.decompressobj(16 + zlib.MAX_WBITS)
    try:
        out = decompressor.decompress(bytes(data)) + decompressor.flush()
    except zlib.error as exc:
        raise SpzError(f"Failed to decompress: {exc}") from exc
    if not decompressor.eof:
        raise SpzError("Failed to decompress: truncated gzip stream")
    return out


def save_spz(cloud: GaussianCloud, options: PackOptions | None = None) -> bytes:
    """Pack, serialize and compress a cloud into SPZ bytes."""
    return compress_gzipped(serialize_packed_gaussians(pack_gaussians(cloud, options)))


def load_spz_packed(data: bytes) -> PackedGaussians:
    """Decompress and parse SPZ bytes without inflating them."""
    return deserialize_packed_gaussians(decompress_gzipped(data))


def load_spz(data: bytes, options: UnpackOptions | None = None) -> GaussianCloud:
    """Load a cloud from SPZ bytes."""
    return unpack_gaussians(load_spz_packed(data), options)


def _read_file(path: PathType) -> bytes:
    try:
        with open(path, "rb") as handle:
            return handle.read()
    except OSError as exc:
        raise SpzError(f"Unable to open: {path}") from exc


def load_spz_packed_file(path: PathType) -> PackedGaussians:
    """Load packed Gaussians from an SPZ file."""
    return load_spz_packed(_read_file(path))


def save_spz_file(
    cloud: GaussianCloud, options: PackOptions | None, path: PathType
) -> None:
    """Write a cloud to an SPZ file."""
    data = save_spz(cloud, options)
    try:
        with open(path, "wb") as handle:
            handle.write(data)
    except OSError as exc:
        raise SpzError(f"Unable to write: {path}") from exc


def load_spz_file(path: PathType, options: UnpackOptions | None = None) -> GaussianCloud:
    """Load a cloud from an SPZ file."""
    return load_spz(_read_file(path), options)