"""HTTP surface and shared runtime wiring."""

from .runtime import RadarRuntime, build_runtime, get_runtime, set_runtime

__all__ = ["RadarRuntime", "build_runtime", "get_runtime", "set_runtime"]
