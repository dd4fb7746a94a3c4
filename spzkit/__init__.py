"""Reading, writing and converting 3D Gaussian splats in the SPZ and PLY formats."""

__version__ = "1.1.0"
__all__ = ["splat_types", "spz", "ply", "cli"]