"""Bazel rendering of planned builds."""

from .layouts import RemoteLayout, VendoredLayout, layout_for
from .renderer import BazelRenderer

__all__ = ["BazelRenderer", "RemoteLayout", "VendoredLayout", "layout_for"]
