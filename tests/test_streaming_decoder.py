"""Tests for stream framing (SSE and newline-delimited JSON)."""

import pytest

from model_gateway.streaming import StreamDecoder, chunk_words

SSE_BODY = (
    'data: {"choices": [{"delta": {"content": "Hel"}}]}\n'
    "\n"
    ": keep-alive comment\n"
    'data: {"choices": [{"delta": {"content": "lo"}}]}\n'
    "data: [DONE]\n"
).encode("utf-8")


def _decode_in_chunks(body: bytes, split_points):
    decoder = StreamDecoder()
    frames = []
    start = 0
    for point in list(split_points) + [len(body)]:
        frames.extend(decoder.feed(body[start:point]))
        start = point
    frames.extend(decoder.flush())
    return [f.data for f in frames], decoder


class TestStreamDecoderSSE:
    """SSE framing with a [DONE] sentinel."""

    def test_whole_body_yields_all_frames(self):
        """A body delivered in one chunk decodes to every data frame."""
        decoder = StreamDecoder()
        frames = decoder.feed(SSE_BODY)

        assert [f.data["choices"][0]["delta"]["content"] for f in frames] == ["Hel", "lo"]
        assert decoder.done is True

    def test_split_at_every_offset_matches_whole(self):
        """Chunk boundaries never change the decoded frames."""
        expected, _ = _decode_in_chunks(SSE_BODY, [])

        for offset in range(1, len(SSE_BODY)):
            frames, decoder = _decode_in_chunks(SSE_BODY, [offset])
            assert frames == expected, f"split at {offset}"
            assert decoder.done

    def test_byte_by_byte_feed(self):
        """Feeding one byte at a time still decodes every frame."""
        frames, decoder = _decode_in_chunks(SSE_BODY, range(1, len(SSE_BODY)))

        assert len(frames) == 2
        assert decoder.done

    def test_partial_line_is_buffered(self):
        """An unterminated line yields nothing until its newline arrives."""
        decoder = StreamDecoder()

        assert decoder.feed(b'data: {"a": ') == []
        assert decoder.done is False
        frames = decoder.feed(b"1}\n")

        assert [f.data for f in frames] == [{"a": 1}]
        assert frames[0].raw == '{"a": 1}'

    def test_malformed_frame_is_skipped(self):
        """Invalid JSON drops that frame only."""
        decoder = StreamDecoder()
        frames = decoder.feed(b'data: {"a": 1}\ndata: {not json\ndata: {"a": 2}\n')

        assert [f.data for f in frames] == [{"a": 1}, {"a": 2}]
        assert decoder.skipped_frames == 1

    def test_no_frames_after_sentinel(self):
        """Data after [DONE] is ignored."""
        decoder = StreamDecoder()
        frames = decoder.feed(b'data: [DONE]\ndata: {"a": 1}\n')

        assert frames == []
        assert decoder.done
        assert decoder.feed(b'data: {"a": 2}\n') == []

    def test_crlf_line_endings(self):
        """Carriage returns are stripped from lines."""
        decoder = StreamDecoder()
        frames = decoder.feed(b'data: {"a": 1}\r\ndata: [DONE]\r\n')

        assert [f.data for f in frames] == [{"a": 1}]
        assert decoder.done

    def test_prefix_without_space(self):
        """``data:`` without a following space is accepted."""
        decoder = StreamDecoder()
        frames = decoder.feed(b'data:{"a": 1}\n')

        assert [f.data for f in frames] == [{"a": 1}]

    def test_event_lines_are_ignored(self):
        """Lines without the data prefix are not frames."""
        decoder = StreamDecoder(sentinel=None)
        frames = decoder.feed(b'event: content_block_delta\ndata: {"type": "x"}\n\n')

        assert [f.data for f in frames] == [{"type": "x"}]
        assert decoder.done is False

    def test_multibyte_character_split_across_chunks(self):
        """A UTF-8 character split between chunks is reassembled."""
        body = 'data: {"t": "héllo 😀"}\n'.encode("utf-8")
        split = body.index("😀".encode("utf-8")) + 2

        decoder = StreamDecoder()
        frames = decoder.feed(body[:split]) + decoder.feed(body[split:])

        assert [f.data for f in frames] == [{"t": "héllo 😀"}]


class TestStreamDecoderNDJSON:
    """Newline-delimited JSON framing used by Ollama."""

    def test_every_line_is_a_frame(self):
        decoder = StreamDecoder(prefix=None, sentinel=None)
        frames = decoder.feed(b'{"message": {"content": "a"}}\n{"message": {"content": "b"}}\n')

        assert [f.data["message"]["content"] for f in frames] == ["a", "b"]
        assert decoder.done is False

    def test_flush_returns_unterminated_final_line(self):
        """The last object may arrive without a trailing newline."""
        decoder = StreamDecoder(prefix=None, sentinel=None)

        assert decoder.feed(b'{"done": true}') == []
        frames = decoder.flush()

        assert [f.data for f in frames] == [{"done": True}]
        assert decoder.done is True
        assert decoder.flush() == []

    def test_blank_lines_are_ignored(self):
        decoder = StreamDecoder(prefix=None, sentinel=None)
        frames = decoder.feed(b'\n\n{"a": 1}\n\n')

        assert [f.data for f in frames] == [{"a": 1}]


class TestChunkWords:
    """Word chunking used for simulated streaming."""

    def test_words_keep_trailing_space(self):
        assert chunk_words("hello big world") == ["hello ", "big ", "world "]

    def test_empty_text_yields_nothing(self):
        assert chunk_words("") == []

    @pytest.mark.parametrize("text", ["one", "a b", "multi  space"])
    def test_concatenation_restores_text(self, text):
        assert "".join(chunk_words(text)).rstrip(" ") == text.rstrip(" ")
