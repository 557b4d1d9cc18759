"""
Frame model, message fragmentation and reassembly.

Outbound messages are split into fixed-size frames before they reach the
transport; inbound frames are stitched back together into one text message.
Both directions use the same chunk size (``DEFAULT_CHUNK_SIZE`` unless
configured otherwise).

Text payloads are UTF-8 encoded before they are split, so a chunk boundary may
fall inside a multi-byte character. The assembler therefore decodes with an
incremental decoder that carries partial characters over to the next frame.
"""

import codecs
import math
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator, List, Optional

from proxy2asr.config.constants import DEFAULT_CHUNK_SIZE


class Opcode(Enum):
    """Frame types handled by the connection."""

    TEXT = "text"
    BINARY = "binary"
    CLOSE = "close"


@dataclass(frozen=True)
class Frame:
    """One wire-level unit of a WebSocket message."""

    payload: bytes
    fin: bool = True
    opcode: Opcode = Opcode.TEXT
    close_code: Optional[int] = None
    close_reason: str = ""

    @classmethod
    def close(cls, code: Optional[int] = None, reason: str = "") -> "Frame":
        """Build a close frame carrying the peer's status code and reason."""
        return cls(b"", True, Opcode.CLOSE, code, reason)

    @property
    def is_close(self) -> bool:
        return self.opcode is Opcode.CLOSE


def frame_count(length: int, chunk_size: int = DEFAULT_CHUNK_SIZE) -> int:
    """Number of frames needed for a payload of ``length`` bytes.

    An empty payload needs none: nothing is put on the wire for it.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be greater than 0")
    return math.ceil(length / chunk_size)


def fragment(
    data: bytes,
    opcode: Opcode = Opcode.BINARY,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> Iterator[Frame]:
    """
    Split a payload into ordered frames of at most ``chunk_size`` bytes.

    Every frame carries ``chunk_size`` bytes except the last, which carries the
    remainder (or a full chunk when the length is an exact multiple). Only the
    last frame is marked final. An empty payload yields no frames.

    Args:
        data: Encoded payload (UTF-8 bytes for text messages)
        opcode: TEXT or BINARY
        chunk_size: Maximum payload bytes per frame

    Yields:
        Frame: The frames of one logical message, in transmission order
    """
    if opcode is Opcode.CLOSE:
        raise ValueError("close frames cannot be fragmented")

    count = frame_count(len(data), chunk_size)
    for index in range(count):
        offset = index * chunk_size
        yield Frame(
            payload=bytes(data[offset : offset + chunk_size]),
            fin=index == count - 1,
            opcode=opcode,
        )


def fragment_text(message: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> List[Frame]:
    """UTF-8 encode a text message and split it into frames."""
    return list(fragment(message.encode("utf-8"), Opcode.TEXT, chunk_size))


class MessageAssembler:
    """
    Reassembles one logical message at a time from data frames.

    Feed frames in arrival order; ``feed`` returns the completed message when a
    final frame arrives and ``None`` otherwise. Payloads are decoded as UTF-8
    whatever their opcode; invalid sequences are replaced rather than raised.
    """

    def __init__(self, errors: str = "replace"):
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors=errors)
        self._parts: List[str] = []
        self.frames = 0
        self.size = 0
        self.opcode: Optional[Opcode] = None

    @property
    def in_progress(self) -> bool:
        """True while a message has started but its final frame has not arrived."""
        return self.frames > 0

    def feed(self, frame: Frame) -> Optional[str]:
        if frame.is_close:
            raise ValueError("close frames end the stream, not a message")

        if self.opcode is None:
            self.opcode = frame.opcode
        self._parts.append(self._decoder.decode(frame.payload, final=frame.fin))
        self.frames += 1
        self.size += len(frame.payload)

        if not frame.fin:
            return None

        message = "".join(self._parts)
        self.reset()
        return message

    def reset(self) -> None:
        """Discard any partially assembled message."""
        self._decoder.reset()
        self._parts = []
        self.frames = 0
        self.size = 0
        self.opcode = None


def reassemble(frames: Iterable[Frame]) -> List[str]:
    """Reassemble every complete message in a frame sequence."""
    assembler = MessageAssembler()
    messages = []
    for frame in frames:
        message = assembler.feed(frame)
        if message is not None:
            messages.append(message)
    return messages
