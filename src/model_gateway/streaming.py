"""Provider-agnostic framing for streamed completions.

Most providers send server-sent events: newline-delimited lines prefixed with
``data:`` carrying one JSON object each, terminated by a sentinel line such as
``data: [DONE]``. Others (Ollama) send bare newline-delimited JSON and simply
close the connection. Network chunks can split a line, or a multi-byte UTF-8
character, anywhere.

``StreamDecoder`` handles only the framing. Pulling the token text out of a
frame is provider-specific and lives in the adapters.

Example:
    >>> decoder = StreamDecoder()
    >>> decoder.feed(b'data: {"a": 1}\\ndata: {"a"')
    [Frame(data={'a': 1}, raw='{"a": 1}')]
    >>> decoder.feed(b': 2}\\ndata: [DONE]\\n')
    [Frame(data={'a': 2}, raw='{"a": 2}')]
    >>> decoder.done
    True
"""

import codecs
import json
import logging
from dataclasses import dataclass
from typing import Any, Iterator, List, Optional

logger = logging.getLogger(__name__)

SSE_DATA_PREFIX = "data:"
SSE_DONE_SENTINEL = "[DONE]"


@dataclass
class Frame:
    """One decoded event before provider-specific field extraction."""

    data: Any
    raw: str


class StreamDecoder:
    """Stateful line framer for one streaming connection.

    Args:
        prefix: Line prefix marking a data frame. ``None`` treats every
            non-blank line as a frame (newline-delimited JSON).
        sentinel: Payload that ends the stream. ``None`` means the stream
            only ends when the connection closes (call ``flush()``).
    """

    def __init__(
        self,
        prefix: Optional[str] = SSE_DATA_PREFIX,
        sentinel: Optional[str] = SSE_DONE_SENTINEL,
    ):
        self._prefix = prefix
        self._sentinel = sentinel
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._done = False
        self.skipped_frames = 0

    @property
    def done(self) -> bool:
        """True once the end of the logical stream has been seen.

        False means more data may still arrive.
        """
        return self._done

    def feed(self, data: bytes) -> List[Frame]:
        """Append a network chunk and return every frame it completes.

        The trailing, not yet newline-terminated fragment stays buffered
        for the next call.
        """
        if self._done:
            return []

        self._buffer += self._decoder.decode(data)
        *lines, self._buffer = self._buffer.split("\n")
        return list(self._parse_lines(lines))

    def flush(self) -> List[Frame]:
        """Signal connection close and return the final buffered frame, if any."""
        if self._done:
            return []

        self._buffer += self._decoder.decode(b"", final=True)
        remainder, self._buffer = self._buffer, ""
        frames = list(self._parse_lines([remainder]))
        self._done = True
        return frames

    def _parse_lines(self, lines: List[str]) -> Iterator[Frame]:
        for line in lines:
            if self._done:
                return
            payload = self._extract_payload(line.rstrip("\r"))
            if payload is None:
                continue
            if self._sentinel is not None and payload == self._sentinel:
                self._done = True
                return
            try:
                yield Frame(data=json.loads(payload), raw=payload)
            except ValueError:
                # One bad frame must not cost the rest of the stream
                self.skipped_frames += 1
                logger.debug("Skipping malformed stream frame: %.80s", payload)

    def _extract_payload(self, line: str) -> Optional[str]:
        if self._prefix is None:
            stripped = line.strip()
            return stripped or None
        if not line.startswith(self._prefix):
            return None
        payload = line[len(self._prefix):]
        if payload.startswith(" "):
            payload = payload[1:]
        return payload.strip() or None


def chunk_words(text: str) -> List[str]:
    """Split a full response into word fragments for simulated streaming."""
    if not text:
        return []
    return [word + " " for word in text.split(" ")]
