# spzkit

spzkit reads and writes 3D Gaussian splats in two formats:

- **SPZ** is a compact, gzip-compressed format. Positions are stored as 24-bit
  fixed point with 12 fractional bits. Scales, rotations, opacity, colour and
  spherical harmonics are quantized to 8 bits. The first band of spherical
  harmonics is rounded to 5 significant bits and the higher bands to 4.
- **PLY** is the binary little-endian layout that Gaussian splatting training
  tools produce. Every vertex property must be `float`.

It depends only on the Python standard library.

## Installation

```
pip install spzkit
```

## Command-line tools

Convert a PLY splat to SPZ:

```
ply_to_spz input.ply output.spz
```

Convert an SPZ splat back to PLY:

```
spz_to_ply input.spz output.ply
```

Print the number of points in an SPZ file and, if it has any, the bounding box
of their positions:

```
spz_info input.spz
```

If a tool gets too few arguments, it prints a usage line to standard error and
exits with status 1. If reading or writing fails, it prints `Error: ...` to
standard error and exits with status 1. On success it exits with status 0.

## Library use

```python
from spzkit.ply import load_splat_from_ply, save_splat_to_ply
from spzkit.spz import PackOptions, UnpackOptions, load_spz_file, save_spz_file
from spzkit.splat_types import CoordinateSystem

cloud = load_splat_from_ply("scene.ply", UnpackOptions())
save_spz_file(cloud, PackOptions(), "scene.spz")

restored = load_spz_file("scene.spz", UnpackOptions(to_system=CoordinateSystem.RUB))
print(restored.num_points, restored.sh_degree, restored.median_volume())
```

### Modules

- `spzkit.splat_types` holds `GaussianCloud`, `CoordinateSystem`,
  `CoordinateConverter` and `coordinate_converter`. It also has half-precision
  helpers (`half_to_float`, `float_to_half`) and small vector and quaternion
  helpers (`dot`, `norm`, `normalized`, `axis_angle_quat`, `rotate_vector`,
  `multiply_quats` and others).
- `spzkit.spz` packs, serializes and compresses clouds:
  - `save_spz(cloud, options)` returns SPZ bytes, and `load_spz(data, options)`
    decodes them.
  - `save_spz_file` and `load_spz_file` do the same with files.
  - `load_spz_packed` and `load_spz_packed_file` return the quantized
    `PackedGaussians` without inflating them. Its `at(i)` method returns a
    single `PackedGaussian`, and `unpack(i, converter)` returns an
    `UnpackedGaussian`.
  - The lower-level steps are also available: `pack_gaussians`,
    `unpack_gaussians`, `serialize_packed_gaussians`,
    `deserialize_packed_gaussians`, `compress_gzipped` and
    `decompress_gzipped`.
- `spzkit.ply` provides `load_splat_from_ply(path, options)` and
  `save_splat_to_ply(cloud, options, path)`.
- `spzkit.cli` holds the entry points of the three commands and
  `format_cloud_info(cloud)`.

### GaussianCloud

A `GaussianCloud` stores each attribute as a flat list of floats:

- `positions`: xyz
- `scales`: log scale, xyz
- `rotations`: quaternions in xyzw order
- `alphas`: opacity before the sigmoid
- `colors`: the SH DC component
- `sh`: 0, 9, 24 or 45 coefficients per point for degrees 0 to 3. The colour
  channel varies fastest.

`median_volume()` returns the median ellipsoid volume, or 0.01 for an empty
cloud.

### Coordinate systems

`CoordinateSystem` names the axis directions: left/right, up/down and
back/front. SPZ data is stored as RUB, the Three.js convention. PLY files are
taken to be RDF.

- `PackOptions.from_system` gives the system your data is in when saving.
- `UnpackOptions.to_system` gives the system you want when loading.
- With `UNSPECIFIED`, no axes are flipped.

`GaussianCloud.convert_coordinates(from_system, to_system)` converts a cloud in
place. `rotate_180_deg_about_x()` swaps between RUB and RDF.

### Format limits

- SPZ files of version 1 (float16 positions) and version 2 are read. Files are
  always written as version 2.
- An SPZ file may hold at most 10,000,000 points.
- A PLY file must have between 1 and 10,485,760 vertices.
- A PLY file must contain `x`, `y`, `z`, `scale_0..2`, `rot_0..3`, `opacity` and
  `f_dc_0..2`. The `f_rest_*` fields are optional.
- PLY output always includes zero normals (`nx`, `ny`, `nz`).

### Errors

Malformed or unsupported SPZ data, and clouds whose lists have inconsistent
lengths, raise `SpzError`, a subclass of `ValueError`. Problems with PLY input
or output raise `PlyError`, a subclass of `SpzError`.

## What it does not do

spzkit only converts and inspects splat data. It does not render or display
splats.