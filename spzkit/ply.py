"""Reading and writing Gaussian splats in binary little-endian PLY files."""

from __future__ import annotations

import logging
import re
import struct
from collections.abc import Sequence
from typing import BinaryIO

from .splat_types import CoordinateSystem, GaussianCloud, coordinate_converter
from .spz import PackOptions, PathType, SpzError, UnpackOptions, degree_for_dim

_LOG = logging.getLogger(__name__)

_MAX_VERTICES = 10 * 1024 * 1024
_MAX_SH_FIELDS = 45
_MAX_SH_DIM = 15
_VERTEX_PREFIX = "element vertex "
_PROPERTY_PREFIX = "property float "
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")


class PlyError(SpzError):
    """Raised when a PLY file cannot be read or written."""


def _read_line(handle: BinaryIO) -> str:
    raw = handle.readline()
    if raw.endswith(b"\n"):
        raw = raw[:-1]
    return raw.decode("latin-1")


def _read_ply(handle: BinaryIO, name: str) -> GaussianCloud:
    if _read_line(handle) != "ply":
        raise PlyError(f"{name}: not a .ply file")
    if _read_line(handle) != "format binary_little_endian 1.0":
        raise PlyError(f"{name}: unsupported .ply format")
    line = _read_line(handle)
    if not line.startswith(_VERTEX_PREFIX):
        raise PlyError(f"{name}: missing vertex count")
    match = _LEADING_INT.match(line[len(_VERTEX_PREFIX):])
    if match is None:
        raise PlyError(f"{name}: invalid vertex count: {line[len(_VERTEX_PREFIX):]}")
    num_points = int(match.group(1))
    if not 0 < num_points <= _MAX_VERTICES:
        raise PlyError(f"{name}: invalid vertex count: {num_points}")

    _LOG.debug("Loading %d points", num_points)
    fields: dict[str, int] = {}
    position = 0
    while True:
        line = _read_line(handle)
        if line == "end_header":
            break
        if not line.startswith(_PROPERTY_PREFIX):
            raise PlyError(f"{name}: unsupported property data type: {line}")
        fields[line[len(_PROPERTY_PREFIX):]] = position
        position += 1

    def index(field_name: str) -> int:
        try:
            return fields[field_name]
        except KeyError:
            raise PlyError(f"Missing field: {field_name}") from None

    position_idx = [index(n) for n in ("x", "y", "z")]
    scale_idx = [index(n) for n in ("scale_0", "scale_1", "scale_2")]
    rot_idx = [index(n) for n in ("rot_1", "rot_2", "rot_3", "rot_0")]
    alpha_idx = index("opacity")
    color_idx = [index(n) for n in ("f_dc_0", "f_dc_1", "f_dc_2")]

    # Spherical harmonics are optional and their count depends on the degree.
    sh_idx: list[int] = []
    for k in range(_MAX_SH_FIELDS):
        found = fields.get(f"f_rest_{k}")
        if found is None:
            break
        sh_idx.append(found)
    sh_dim = len(sh_idx) // 3
    # Reorder from [channel, coeff] to [coeff, channel].
    sh_order = [
        sh_idx[j + channel * sh_dim] for j in range(sh_dim) for channel in range(3)
    ]

    width = len(fields)
    count = num_points * width
    data = handle.read(count * 4)
    if len(data) < count * 4:
        raise PlyError(f"Unable to load data from: {name}")
    values = struct.unpack(f"<{count}f", data)

    cloud = GaussianCloud(num_points=num_points, sh_degree=degree_for_dim(sh_dim))
    for start in range(0, count, width):
        row = values[start : start + width]
        cloud.positions.extend(row[i] for i in position_idx)
        cloud.scales.extend(row[i] for i in scale_idx)
        cloud.rotations.extend(row[i] for i in rot_idx)
        cloud.alphas.append(row[alpha_idx])
        cloud.colors.extend(row[i] for i in color_idx)
        cloud.sh.extend(row[i] for i in sh_order)
    return cloud


def load_splat_from_ply(
    path: PathType, options: UnpackOptions | None = None
) -> GaussianCloud:
    """Load a Gaussian cloud from a binary PLY file."""
    options = options or UnpackOptions()
    _LOG.debug("Loading: %s", path)
    try:
        with open(path, "rb") as handle:
            cloud = _read_ply(handle, str(path))
    except OSError as exc:
        raise PlyError(f"Unable to open: {path}") from exc
    cloud.convert_coordinates(CoordinateSystem.RDF, options.to_system)
    return cloud


def _groups(seq: Sequence[float], size: int, count: int) -> list[Sequence[float]]:
    return [seq[k * size : (k + 1) * size] for k in range(count)]


def _check(ok: bool, text: str) -> None:
    if not ok:
        raise PlyError(f"Check failed: {text}")


def save_splat_to_ply(
    cloud: GaussianCloud, options: PackOptions | None, path: PathType
) -> None:
    """Write a Gaussian cloud to a binary PLY file."""
    options = options or PackOptions()
    n = cloud.num_points
    _check(len(cloud.positions) == n * 3, f"len(positions) == {n * 3}")
    _check(len(cloud.scales) == n * 3, f"len(scales) == {n * 3}")
    _check(len(cloud.rotations) == n * 4, f"len(rotations) == {n * 4}")
    _check(len(cloud.alphas) == n, f"len(alphas) == {n}")
    _check(len(cloud.colors) == n * 3, f"len(colors) == {n * 3}")
    sh_dim = len(cloud.sh) // n // 3 if n > 0 else 0
    _check(sh_dim <= _MAX_SH_DIM, f"sh_dim <= {_MAX_SH_DIM}")

    c = coordinate_converter(options.from_system, CoordinateSystem.RDF)
    values: list[float] = []
    rows = zip(
        _groups(cloud.positions, 3, n),
        _groups(cloud.colors, 3, n),
        _groups(cloud.sh, sh_dim * 3, n),
        cloud.alphas,
        _groups(cloud.scales, 3, n),
        _groups(cloud.rotations, 4, n),
    )
    for pos, color, coeffs, alpha, scale, rot in rows:
        values.extend(f * v for f, v in zip(c.flip_p, pos))
        # Normals are always zero, but some viewers expect them.
        values.extend((0.0, 0.0, 0.0))
        values.extend(color)
        # Coefficients vary fastest, the channel slowest.
        for channel in range(3):
            values.extend(f * v for f, v in zip(c.flip_sh, coeffs[channel::3]))
        values.append(alpha)
        values.extend(scale)
        values.append(rot[3])
        values.extend(f * v for f, v in zip(c.flip_q, rot[:3]))
    _check(len(values) == n * (17 + sh_dim * 3), "values fully written")

    try:
        payload = struct.pack(f"<{len(values)}f", *values)
    except (OverflowError, struct.error) as exc:
        raise PlyError(f"Value out of float range: {exc}") from exc

    header_lines = [
        "ply",
        "format binary_little_endian 1.0",
        f"element vertex {n}",
        *(f"property float {p}" for p in ("x", "y", "z", "nx", "ny", "nz")),
        *(f"property float f_dc_{k}" for k in range(3)),
        *(f"property float f_rest_{k}" for k in range(sh_dim * 3)),
        "property float opacity",
        *(f"property float scale_{k}" for k in range(3)),
        *(f"property float rot_{k}" for k in range(4)),
        "end_header",
    ]
    header = "".join(line + "\n" for line in header_lines).encode("ascii")
    try:
        with open(path, "wb") as handle:
            handle.write(header)
            handle.write(payload)
    except OSError as exc:
        raise PlyError(f"Unable to open for writing: {path}") from exc