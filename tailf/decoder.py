"""Incremental bytes -> text -> bytes transcoding that never splits a multi-byte character.

Each pass reads the source in fixed-size chunks. Chunks are decoded with
``final=False`` so a character whose bytes straddle two reads is held in the
decoder until the rest arrives; the pass ends with a ``final=True`` decode so
nothing buffered is silently dropped. Decoding and encoding are separate stages
because source and destination charsets may differ in width and shift state
(e.g. ISO-2022-JP).
"""

import codecs
import locale
import logging

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SIZE = 1024 * 1024

# Charset names as other tools spell them, mapped to Python codec names
CHARSET_ALIASES = {
    "windows-31j": "cp932",
    "ms932": "cp932",
    "x-sjis": "shift_jis",
    "x-euc-jp-linux": "euc_jp",
}


def platform_charset() -> str:
    return locale.getpreferredencoding(False)


def resolve_charset(name: str | None) -> str:
    """Return the canonical codec name for a charset, or the platform default for None.

    Raises:
        ValueError: If the charset is unknown.
    """
    if not name:
        name = platform_charset()
    key = name.strip()
    key = CHARSET_ALIASES.get(key.lower(), key)
    try:
        return codecs.lookup(key).name
    except LookupError:
        raise ValueError(f"Unsupported charset: {name}") from None


class StreamDecoder:
    """Transcodes everything currently readable from a source into a sink."""

    def __init__(
        self,
        source_charset: str | None = None,
        dest_charset: str | None = None,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
    ):
        if buffer_size <= 0:
            raise ValueError(f"buffer_size must be positive, got {buffer_size}")
        self.source_charset = resolve_charset(source_charset)
        self.dest_charset = resolve_charset(dest_charset)
        self._buffer_size = buffer_size
        # Malformed input and unmappable output become replacement characters
        self._decoder = codecs.getincrementaldecoder(self.source_charset)(errors="replace")
        self._encoder = codecs.getincrementalencoder(self.dest_charset)(errors="replace")

    def pump(self, source, sink) -> int:
        """Run one pass: read until the source has no more bytes. Returns bytes consumed.

        I/O errors propagate to the caller; codec state is reset either way.
        """
        consumed = 0
        try:
            while True:
                chunk = source.read(self._buffer_size)
                if not chunk:
                    break
                consumed += len(chunk)
                self._emit(sink, self._decoder.decode(chunk, False), False)
            self._emit(sink, self._decoder.decode(b"", True), True)
            sink.flush()
        finally:
            self.reset()
        return consumed

    def _emit(self, sink, text: str, final: bool):
        data = self._encoder.encode(text, final)
        if data:
            sink.write(data)

    def reset(self):
        self._decoder.reset()
        self._encoder.reset()
