"""Command-line tools for converting and inspecting Gaussian splat files."""

from __future__ import annotations

import sys
from collections.abc import Callable, Sequence

from .ply import load_splat_from_ply, save_splat_to_ply
from .splat_types import GaussianCloud
from .spz import PackOptions, UnpackOptions, load_spz_file, save_spz_file


def format_cloud_info(cloud: GaussianCloud) -> str:
    """Describe a cloud: point count and, if non-empty, its bounding box."""
    lines = [f"Number of points: {len(cloud.positions) // 3}"]
    if cloud.positions:
        lines.append("Bounding box:")
        for label, axis in zip("XYZ", range(3)):
            values = cloud.positions[axis::3]
            lines.append(f"  {label}: {min(values):g} to {max(values):g}")
    return "\n".join(lines)


def _run(
    argv: Sequence[str] | None, needed: int, usage: str, action: Callable[[list[str]], None]
) -> int:
    args = list(sys.argv[1:] if argv is None else argv)
    if len(args) < needed:
        print(usage, file=sys.stderr)
        return 1
    try:
        action(args)
    except (ValueError, OSError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


def ply_to_spz_main(argv: Sequence[str] | None = None) -> int:
    """Convert a PLY file to an SPZ file."""

    def action(args: list[str]) -> None:
        cloud = load_splat_from_ply(args[0], UnpackOptions())
        save_spz_file(cloud, PackOptions(), args[1])

    return _run(argv, 2, "Usage: ply_to_spz <input.ply> <output.spz>", action)


def spz_to_ply_main(argv: Sequence[str] | None = None) -> int:
    """Convert an SPZ file to a PLY file."""

    def action(args: list[str]) -> None:
        cloud = load_spz_file(args[0], UnpackOptions())
        save_splat_to_ply(cloud, PackOptions(), args[1])

    return _run(argv, 2, "Usage: spz_to_ply <input.spz> <output.ply>", action)


def spz_info_main(argv: Sequence[str] | None = None) -> int:
    """Print summary information about an SPZ file."""

    def action(args: list[str]) -> None:
        print(format_cloud_info(load_spz_file(args[0], UnpackOptions())))

    return _run(argv, 1, "Usage: spz_info <input.spz>", action)


if __name__ == "__main__":
    sys.exit(spz_info_main())