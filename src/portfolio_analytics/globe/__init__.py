"""
Visitor globe: map surface ownership, marker lifecycle and auto-rotation.
"""

from .renderer import MAP_CONFIG_ERROR, MAP_INIT_ERROR, GlobeRenderer, GlobeSurface, RenderStatus
from .spin import SpinAutomaton, SpinPhase, wrap_longitude

__all__ = [
    "GlobeRenderer", "GlobeSurface", "RenderStatus", "MAP_CONFIG_ERROR", "MAP_INIT_ERROR",
    "SpinAutomaton", "SpinPhase", "wrap_longitude",
]
