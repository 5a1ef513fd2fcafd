# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, ClassVar


if TYPE_CHECKING:
    from ..streaming.wire import SessionHandshake


class CaptureSource(ABC):
    """Produces raw RGB888 frames of a fixed geometry for the sender session.

    ``capture_frame`` is called once per tick from a worker thread. It may return
    a stale buffer when grabbing fails, but must not block indefinitely.
    """

    def __init__(self, width: int, height: int):
        self.width = width
        self.height = height

    @property
    def frame_size(self) -> int:
        return self.width * self.height * 3

    @abstractmethod
    def capture_frame(self) -> bytes:
        """Return exactly ``width * height * 3`` bytes."""
        pass

    def close(self) -> None:
        """Release any resources held by the source."""
        pass


class FrameSink(ABC):
    """Consumes frames received by the receiver session."""

    def open(self, handshake: "SessionHandshake") -> None:
        """Called once per session, before the first frame, with the declared geometry."""
        pass

    @abstractmethod
    def render_frame(self, data: bytes, width: int, height: int) -> None:
        """Draw one complete frame. Must not block on the network."""
        pass

    def close(self) -> None:
        """Called once when the session ends, on every path."""
        pass


class CaptureFactory:
    """Factory for capture sources keyed by source name."""

    _sources: ClassVar[dict[str, type[CaptureSource]]] = {}

    @classmethod
    def register(cls, name: str, source_class: type[CaptureSource]) -> None:
        cls._sources[name] = source_class

    @classmethod
    def create(cls, source: str, width: int, height: int, **options: Any) -> CaptureSource:
        """Create a capture source.

        ``source`` is a registered name ("screen", "pattern") or a path to an image file.
        """
        _ensure_collaborators_registered()
        source_class = cls._sources.get(source)
        if source_class is not None:
            return source_class(width, height, **options)

        image_class = cls._sources.get("image")
        if image_class is None:
            raise ValueError(f"Unknown capture source: {source}")
        return image_class(width, height, path=source, **options)  # type: ignore[call-arg]  # image source takes a path

    @classmethod
    def list_sources(cls) -> list[str]:
        _ensure_collaborators_registered()
        return list(cls._sources.keys())


class DisplayFactory:
    """Factory for frame sinks keyed by display kind."""

    _displays: ClassVar[dict[str, type[FrameSink]]] = {}

    @classmethod
    def register(cls, name: str, display_class: type[FrameSink]) -> None:
        cls._displays[name] = display_class

    @classmethod
    def create(cls, kind: str, **options: Any) -> FrameSink:
        _ensure_collaborators_registered()
        display_class = cls._displays.get(kind)
        if not display_class:
            raise ValueError(f"Unknown display kind: {kind}")
        return display_class(**options)

    @classmethod
    def list_displays(cls) -> list[str]:
        _ensure_collaborators_registered()
        return list(cls._displays.keys())


# Lazy registration (done when a factory is first used)
def _ensure_collaborators_registered() -> None:
    if CaptureFactory._sources and DisplayFactory._displays:
        return

    from .capture import ImageCapture, PatternCapture, ScreenCapture
    from .display import NullDisplay, SnapshotDisplay

    CaptureFactory.register("screen", ScreenCapture)
    CaptureFactory.register("pattern", PatternCapture)
    CaptureFactory.register("image", ImageCapture)
    DisplayFactory.register("null", NullDisplay)
    DisplayFactory.register("snapshot", SnapshotDisplay)
