"""Write rendered files to disk, or print them in dry-run mode."""

from __future__ import annotations

import os
import shutil
import sys
import tempfile
from pathlib import Path
from typing import List, Sequence, TextIO

from .logging import get_logger
from .models import FileOutput


class OutputSink:
    """Publishes FileOutputs all-or-nothing.

    Every file is first written into a staging directory next to the outputs;
    only when all of them are staged are they moved into place.
    """

    def __init__(self, *, dry_run: bool = False, stream: TextIO | None = None) -> None:
        self.dry_run = dry_run
        self.stream = stream
        self.logger = get_logger("sink")

    def publish(self, outputs: Sequence[FileOutput]) -> List[Path]:
        if self.dry_run:
            stream = self.stream or sys.stdout
            for output in outputs:
                stream.write(f"{output.path}:\n{output.contents}\n")
            return []
        if not outputs:
            return []

        targets = [Path(output.path).resolve() for output in outputs]
        base = Path(os.path.commonpath([str(target.parent) for target in targets]))
        base.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=".raze-staging-", dir=base))
        try:
            staged: List[Path] = []
            for output, target in zip(outputs, targets):
                path = staging / target.relative_to(base)
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(output.contents, encoding="utf-8")
                staged.append(path)
            for path, target in zip(staged, targets):
                target.parent.mkdir(parents=True, exist_ok=True)
                os.replace(path, target)
                self.logger.info("Generated %s successfully", _relativize(target))
        finally:
            shutil.rmtree(staging, ignore_errors=True)
        return targets


def _relativize(path: Path) -> str:
    try:
        return str(path.relative_to(Path.cwd()))
    except ValueError:
        return str(path)


__all__ = ["OutputSink"]
