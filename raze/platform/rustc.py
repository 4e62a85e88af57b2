"""Query rustc for the cfg values of target triples."""

from __future__ import annotations

import subprocess
from typing import Callable, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from ..errors import MetadataFetchError
from ..logging import get_logger
from ..models import PlatformDetails, TargetPlatform


def parse_cfg_output(text: str) -> FrozenSet[Tuple[str, Optional[str]]]:
    """Parse ``rustc --print cfg`` output (``unix``, ``target_os="linux"``)."""
    values = set()
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        if "=" in stripped:
            key, value = stripped.split("=", 1)
            values.add((key.strip(), value.strip().strip('"')))
        else:
            values.add((stripped, None))
    return frozenset(values)


class RustcPlatformProbe:
    """Builds PlatformDetails by asking rustc about each target triple."""

    def __init__(self, rustc: str = "rustc", runner: Callable[[Sequence[str]], str] | None = None) -> None:
        self.rustc = rustc
        self._runner = runner or self._default_runner
        self.logger = get_logger("platform")

    def details(self, targets: Iterable[str]) -> PlatformDetails:
        platforms: List[TargetPlatform] = []
        for triple in targets:
            output = self._runner([self.rustc, "--print", "cfg", "--target", triple])
            cfg = parse_cfg_output(output)
            self.logger.debug("rustc reported %d cfg values for %s", len(cfg), triple)
            platforms.append(TargetPlatform(triple=triple, cfg=cfg))
        return PlatformDetails(tuple(platforms))

    @staticmethod
    def _default_runner(command: Sequence[str]) -> str:
        try:
            completed = subprocess.run(
                list(command),
                check=True,
                capture_output=True,
                text=True,
            )
        except FileNotFoundError as exc:
            raise MetadataFetchError(f"Unable to run {command[0]}: {exc}") from exc
        except subprocess.CalledProcessError as exc:
            stderr = (exc.stderr or "").strip()
            raise MetadataFetchError(f"{' '.join(command)} failed: {stderr}") from exc
        return completed.stdout


__all__ = ["RustcPlatformProbe", "parse_cfg_output"]
