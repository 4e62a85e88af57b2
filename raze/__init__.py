"""Generate Bazel BUILD files from resolved Cargo metadata."""

__version__ = "0.1.0"
