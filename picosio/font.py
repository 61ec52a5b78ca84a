"""Bitmap fonts for the status display: the Atari character set and symbols."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class BitmapFont:
    """A fixed-height bitmap font; each glyph is a sequence of column bytes."""

    height: int
    max_width: int
    glyphs: tuple[bytes, ...]
    widths: tuple[int, ...]
    first_code: int = 0
    accents: dict[str, tuple[int, int, bytes]] = field(default_factory=dict)

    def _index(self, code: int | str) -> int:
        if isinstance(code, str):
            if len(code) != 1:
                raise KeyError(code)
            code = ord(code)
        index = code - self.first_code
        if not 0 <= index < len(self.glyphs):
            raise KeyError(code)
        return index

    def glyph(self, code: int | str) -> bytes:
        """Return the column bytes of the glyph for ``code``."""
        return self.glyphs[self._index(code)]

    def width(self, code: int | str) -> int:
        """Return the pixel width of the glyph for ``code``."""
        return self.widths[self._index(code)]


def _glyphs(rows: str) -> tuple[bytes, ...]:
    return tuple(bytes.fromhex(row) for row in rows.strip().splitlines())


_ATARI_ROWS = """
00 00 00 00 00 00 00 00
00 00 00 5E 5E 00 00 00
00 0E 0E 00 00 0E 0E 00
24 7E 7E 24 24 7E 7E 24
00 24 2E 6B 6B 3A 12 00
00 66 36 18 0C 66 62 00
00 30 7A 4F 5D 37 72 50
00 00 00 0E 0E 00 00 00
00 00 00 3C 7E 66 42 00
00 42 66 7E 3C 00 00 00
08 2A 3E 1C 1C 3E 2A 08
00 08 08 3E 3E 08 08 00
00 00 80 E0 60 00 00 00
00 08 08 08 08 08 08 00
00 00 00 60 60 00 00 00
00 60 30 18 0C 06 02 00
00 3C 7E 52 4A 7E 3C 00
00 40 44 7E 7E 40 40 00
00 44 66 72 5A 4E 44 00
00 22 62 4A 5E 76 22 00
00 30 38 2C 7E 7E 20 00
00 2E 6E 4A 4A 7A 32 00
00 3C 7E 4A 4A 7A 30 00
00 02 62 72 1A 0E 06 00
00 34 7E 4A 4A 7E 34 00
00 04 4E 4A 6A 3E 1C 00
00 00 00 6C 6C 00 00 00
00 00 80 EC 6C 00 00 00
00 00 08 1C 36 63 41 00
00 24 24 24 24 24 24 00
00 41 63 36 1C 08 00 00
00 04 06 52 5A 0E 04 00
00 3C 7E 42 5A 5E 5C 00
00 78 7C 26 26 7C 78 00
00 7E 7E 4A 4A 7E 34 00
00 3C 7E 42 42 66 24 00
00 7E 7E 42 66 3C 18 00
00 7E 7E 4A 4A 4A 42 00
00 7E 7E 0A 0A 0A 02 00
00 3C 7E 42 52 72 72 00
00 7E 7E 08 08 7E 7E 00
00 42 42 7E 7E 42 42 00
00 20 60 40 40 7E 3E 00
00 7E 7E 18 3C 66 42 00
00 7E 7E 40 40 40 40 00
00 7E 7E 0C 18 0C 7E 7E
00 7E 7E 1C 38 7E 7E 00
00 3C 7E 42 42 7E 3C 00
00 7E 7E 12 12 1E 0C 00
00 3C 7E 42 22 7E 5C 00
00 7E 7E 12 32 7E 4C 00
00 04 4E 4A 4A 7A 30 00
00 02 02 7E 7E 02 02 00
00 7E 7E 40 40 7E 7E 00
00 1E 3E 60 60 3E 1E 00
00 7E 7E 30 18 30 7E 7E
00 66 7E 18 18 7E 66 00
00 06 0E 78 78 0E 06 00
00 62 72 5A 4E 46 42 00
00 00 00 7E 7E 42 42 00
00 06 0C 18 30 60 40 00
00 42 42 7E 7E 00 00 00
00 10 18 0C 06 0C 18 10
40 40 40 40 40 40 40 40
00 00 02 06 0C 08 00 00
00 20 74 54 54 7C 78 00
00 7E 7E 48 48 78 30 00
00 38 7C 44 44 44 00 00
00 30 78 48 48 7E 7E 00
00 38 7C 54 54 5C 18 00
00 00 08 7C 7E 0A 0A 00
00 98 BC A4 A4 FC 7C 00
00 7E 7E 08 08 78 70 00
00 00 48 7A 7A 40 00 00
00 00 80 80 80 FA 7A 00
00 7E 7E 10 38 68 40 00
00 00 42 7E 7E 40 00 00
00 7C 7C 18 38 1C 7C 78
00 7C 7C 04 04 7C 78 00
00 38 7C 44 44 7C 38 00
00 FC FC 24 24 3C 18 00
00 18 3C 24 24 FC FC 00
00 7C 7C 04 04 0C 08 00
00 48 5C 54 54 74 24 00
00 04 04 3E 7E 44 44 00
00 3C 7C 40 40 7C 7C 00
00 1C 3C 60 60 3C 1C 00
00 1C 7C 70 38 70 7C 1C
00 44 6C 38 38 6C 44 00
00 9C BC A0 E0 7C 3C 00
00 44 64 74 5C 4C 44 00
00 08 08 3E 77 41 41 00
00 00 00 7F 7F 00 00 00
00 41 41 77 3E 08 08 00
00 08 04 08 08 10 08 00
00 00 00 00 00 00 00 00
70 18 14 7E 7E 4A 42 00
00 7E 7E 24 24 3C 18 00
00 FC FE 02 4A 7E 34 00
20 74 5C 38 74 5C 48 00
00 7E 7E 18 24 24 18 00
00 48 7E 7F 49 41 40 00
00 2A 2C 78 78 2C 2A 00
1C 22 49 55 55 41 22 1C
00 00 04 0A 0A 04 00 00
"""

_SYMBOL_ROWS = """
00 00 00 00 00 00 00 00
08 0C FE FF FF FE 0C 08
10 30 7F FF FF 7F 30 10
C3 E7 7E 3C 3C 7E E7 C3
04 8E DF FE FC F8 FC FE
C1 C3 C7 CF CF C7 C3 C1
C8 CC CE CF CF CE CC C8
00 7E 7E 3C 3C 18 18 00
00 7E 7E 7E 7E 7E 7E 00
00 C0 F0 F8 FC FC FE FE
FE FE FC FC F8 F0 C0 00
00 03 0F 1F 3F 3F 7F 7F
7F 7F 3F 3F 1F 0F 03 00
00 04 0E 1C 38 70 E0 C0
C0 E0 70 38 1C 0E 04 00
00 20 70 38 1C 0E 07 03
03 07 0E 1C 38 70 20 00
"""

_ACCENTS = {
    "grave": (7, 6, bytes.fromhex("00 00 00 01 03 02 00 00")),
    "acute": (7, 6, bytes.fromhex("00 00 00 02 03 01 00 00")),
    "circumflex": (7, 6, bytes.fromhex("00 02 03 01 01 03 02 00")),
    "tilde": (7, 6, bytes.fromhex("00 01 03 02 01 03 02 00")),
    "diaeresis": (7, 6, bytes.fromhex("00 03 03 00 00 03 03 00")),
    "ring_above": (6, 5, bytes.fromhex("00 00 02 05 05 02 00 00")),
    "stroke": (7, 6, bytes.fromhex("00 00 80 C0 40 00 00 00")),
    "cedilla": (10, 10, bytes.fromhex("00 00 80 A0 E0 40 00 00")),
}

_atari_glyphs = _glyphs(_ATARI_ROWS)
_symbol_glyphs = _glyphs(_SYMBOL_ROWS)

ATARI_FONT = BitmapFont(
    height=8,
    max_width=8,
    glyphs=_atari_glyphs,
    widths=(8,) * len(_atari_glyphs),
    first_code=0x20,
    accents=_ACCENTS,
)

SYMBOL_FONT = BitmapFont(
    height=8,
    max_width=8,
    glyphs=_symbol_glyphs,
    widths=(8,) * len(_symbol_glyphs),
    first_code=0,
)