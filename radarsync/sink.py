from dataclasses import dataclass
from typing import Any, Protocol

from radarsync.bounds import BoundsRect
from radarsync.catalog import CaptureRecord
from radarsync.log import log


@dataclass(frozen=True)
class RenderInstruction:
    """Show a radar overlay stretched over bounds, or hide it when record is None."""

    radar_id: str
    record: CaptureRecord | None = None
    address: str | None = None
    bounds: BoundsRect | None = None
    z_order: int = 0
    opacity: float = 0.0
    handle: Any = None

    @property
    def visible(self) -> bool:
        return self.record is not None


class RenderSink(Protocol):
    def render(self, instructions: list[RenderInstruction]) -> None: ...

    def clear(self) -> None: ...


class RecordingSink:
    """Keeps every batch it receives; the current overlay state is the last batch per radar."""

    def __init__(self):
        self.batches: list[list[RenderInstruction]] = []
        self.layers: dict[str, RenderInstruction] = {}
        self.clears = 0

    def render(self, instructions: list[RenderInstruction]) -> None:
        self.batches.append(list(instructions))
        for instruction in instructions:
            if instruction.visible:
                self.layers[instruction.radar_id] = instruction
            else:
                self.layers.pop(instruction.radar_id, None)

    def clear(self) -> None:
        self.clears += 1
        self.layers.clear()


class LogSink:
    def render(self, instructions: list[RenderInstruction]) -> None:
        for instruction in instructions:
            if not instruction.visible:
                log(f"Overlay {instruction.radar_id}: hidden")
                continue
            log(
                f"Overlay {instruction.radar_id}: {instruction.address} "
                f"bounds={instruction.bounds.as_corners()} opacity={instruction.opacity:.2f}"
            )

    def clear(self) -> None:
        log("Overlay: cleared all layers")
