"""Connector names and EDID serials from wlr-randr, and device correlation."""

import asyncio
import logging
import re
from collections import Counter
from dataclasses import dataclass
from typing import Iterable, Optional, Sequence

from extbright.errors import CorrelationUnavailable

logger = logging.getLogger(__name__)

# Words dropped before comparing model names ("Apple Inc. Studio Display"
# vs "StudioDisplay")
_VENDOR_WORDS = {
    "apple", "inc", "inc.", "computer", "corp", "corp.", "ltd", "ltd.",
    "lg", "electronics", "dell", "samsung", "electric", "company",
}


@dataclass
class OutputInfo:
    """Represents a wlr-randr output."""

    name: str  # e.g., "HDMI-A-1", "DP-1"
    enabled: bool = False
    make: Optional[str] = None  # e.g., "Samsung Electric Company"
    model: Optional[str] = None  # e.g., "LU28R55"
    serial: Optional[str] = None  # e.g., "HNMNB00590"
    current_mode: Optional[str] = None  # e.g., "1920x1080@60Hz"


@dataclass(frozen=True)
class Candidate:
    """What a probed device offers for matching against outputs."""

    key: str  # raw device path
    serials: tuple[str, ...] = ()
    model: Optional[str] = None


def normalize_model(model: Optional[str]) -> str:
    """Lowercase model name without vendor words or whitespace."""
    if not model:
        return ""
    words = [w for w in model.lower().split() if w not in _VENDOR_WORDS]
    return "".join(words)


class WlrRandr:
    """Read-only client of the compositor's output list via wlr-randr."""

    def __init__(self, command: str = "wlr-randr", timeout: float = 5.0):
        self.command = command
        self.timeout = timeout

    async def list_outputs(self) -> list[OutputInfo]:
        """Run wlr-randr and parse its outputs.

        Raises:
            CorrelationUnavailable: if the command is missing, fails or hangs
        """
        try:
            proc = await asyncio.create_subprocess_exec(
                self.command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise CorrelationUnavailable(f"{self.command} not available: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise CorrelationUnavailable(f"{self.command} timed out") from e

        if proc.returncode != 0:
            raise CorrelationUnavailable(
                f"{self.command} failed ({proc.returncode}): {stderr.decode().strip()}"
            )

        return parse_wlr_randr_output(stdout.decode())


def parse_wlr_randr_output(output: str) -> list[OutputInfo]:
    """Parse wlr-randr output text into OutputInfo objects.

    Example wlr-randr output:
    HDMI-A-1 "Samsung Electric Company LU28R55 HNMNB00590 (HDMI-A-1)"
      Enabled: yes
      Make: Samsung Electric Company
      Model: LU28R55
      Serial: HNMNB00590
      Physical size: 620x340 mm
      Modes:
        3840x2160@59.997002 Hz (preferred, current)
    """
    outputs = []
    current_output: Optional[OutputInfo] = None

    for line in output.split("\n"):
        # New output starts with non-whitespace
        if line and not line[0].isspace():
            if current_output:
                outputs.append(current_output)

            match = re.match(r"^(\S+)", line)
            if match:
                current_output = OutputInfo(name=match.group(1))
        elif current_output and line.strip():
            line = line.strip()

            if line.startswith("Enabled:"):
                current_output.enabled = "yes" in line.lower()
            elif line.startswith("Make:"):
                current_output.make = line.split(":", 1)[1].strip()
            elif line.startswith("Model:"):
                current_output.model = line.split(":", 1)[1].strip()
            elif line.startswith("Serial:"):
                current_output.serial = line.split(":", 1)[1].strip() or None
            elif "current" in line.lower() and "x" in line:
                mode_match = re.match(r"(\d+x\d+@[\d.]+)\s*Hz", line)
                if mode_match:
                    current_output.current_mode = mode_match.group(1) + "Hz"

    if current_output:
        outputs.append(current_output)

    return outputs


def correlate(
    candidates: Sequence[Candidate],
    outputs: Iterable[OutputInfo],
    claimed: Iterable[str] = (),
) -> dict[str, OutputInfo]:
    """Match probed devices to enabled outputs.

    Strategies, in order:
      1. exact EDID serial match
      2. model name match, only when exactly one unmatched device and exactly
         one available output have that model
      3. no match

    Args:
        candidates: Probed devices
        outputs: Outputs reported by the naming service
        claimed: Connector names already owned by live displays

    Returns:
        Mapping of candidate key to its matched output
    """
    claimed_names = set(claimed)
    available = [o for o in outputs if o.enabled and o.name not in claimed_names]
    matches: dict[str, OutputInfo] = {}
    used: set[str] = set()

    # Strategy 1: Exact serial number match
    for candidate in candidates:
        if not candidate.serials:
            continue
        for output in available:
            if output.serial and output.serial in candidate.serials and output.name not in used:
                matches[candidate.key] = output
                used.add(output.name)
                logger.info(f"Serial match: {candidate.key} -> {output.name}")
                break

    # Strategy 2: Model name match, unambiguous only
    unmatched_models = Counter(
        normalize_model(c.model) for c in candidates if c.key not in matches
    )
    for candidate in candidates:
        if candidate.key in matches:
            continue
        model = normalize_model(candidate.model)
        if not model:
            continue
        if unmatched_models[model] > 1:
            logger.info(
                f"{unmatched_models[model]} devices share model {candidate.model!r}, "
                f"not correlating {candidate.key}"
            )
            continue
        same_model = [
            o for o in available
            if o.name not in used and normalize_model(o.model) == model
        ]
        if len(same_model) == 1:
            output = same_model[0]
            matches[candidate.key] = output
            used.add(output.name)
            logger.info(f"Model match: {candidate.key} -> {output.name}")
        elif len(same_model) > 1:
            logger.info(
                f"Model {candidate.model!r} matches {len(same_model)} outputs, "
                f"not correlating {candidate.key}"
            )

    for candidate in candidates:
        if candidate.key not in matches:
            logger.debug(f"No output match for {candidate.key}")

    return matches
