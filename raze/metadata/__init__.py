"""Cargo metadata ingestion."""

from .fetcher import CargoMetadataFetcher, load_lockfile_checksums
from .graph import build_graph

__all__ = ["CargoMetadataFetcher", "build_graph", "load_lockfile_checksums"]
