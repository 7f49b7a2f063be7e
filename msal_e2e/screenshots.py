"""Per-scenario screenshot trail."""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import List

from msal_e2e.surface import Surface

logger = logging.getLogger(__name__)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]+")


def sanitize_label(label: str) -> str:
    cleaned = _UNSAFE_CHARS.sub("_", label.strip()).strip("_")
    return cleaned or "checkpoint"


class ScreenshotRecorder:
    """Numbered checkpoint screenshots for one scenario.

    Files land in ``<base_dir>/<scenario_name>/<NN>_<label>.png``. The
    sequence starts at 1 after :meth:`reset` and grows by one per written file.
    """

    def __init__(self, base_dir: Path, scenario_name: str) -> None:
        self.base_dir = Path(base_dir)
        self.scenario_name = scenario_name
        self._sequence = 0
        self.captured: List[Path] = []

    @property
    def directory(self) -> Path:
        return self.base_dir / sanitize_label(self.scenario_name)

    @property
    def sequence(self) -> int:
        return self._sequence

    def reset(self) -> None:
        self._sequence = 0
        self.captured = []

    async def capture(self, surface: Surface, label: str) -> Path:
        """Screenshot ``surface`` under the next sequence number.

        A failed capture propagates as CaptureError and writes no file, so
        the number is handed to the next capture and the trail has no gaps.
        """
        self.directory.mkdir(parents=True, exist_ok=True)
        sequence = self._sequence + 1
        filename = f"{sequence:02d}_{sanitize_label(label)}.png"
        path = await surface.screenshot(self.directory / filename)
        self._sequence = sequence
        self.captured.append(path)
        logger.info("📸 %s/%s", self.directory.name, filename)
        return path
