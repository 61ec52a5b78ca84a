import pytest

from picosio.font import ATARI_FONT, SYMBOL_FONT, BitmapFont


def test_atari_font_glyph_count():
    first = ATARI_FONT.first_code
    glyphs = [ATARI_FONT.glyph(code) for code in range(first, first + 105)]
    assert len(glyphs) == 105
    assert [ATARI_FONT.width(code) for code in range(first, first + 105)] == [8] * 105
    with pytest.raises(KeyError):
        ATARI_FONT.glyph(first + 105)


def test_space_glyph_is_blank():
    assert ATARI_FONT.glyph(" ") == bytes(8)
    assert ATARI_FONT.glyph(0x20) == bytes(8)


def test_letter_glyph_from_table():
    assert ATARI_FONT.glyph("A") == bytes([0x00, 0x78, 0x7C, 0x26, 0x26, 0x7C, 0x78, 0x00])
    assert ATARI_FONT.glyph("!") == bytes([0x00, 0x00, 0x00, 0x5E, 0x5E, 0x00, 0x00, 0x00])


def test_string_and_code_agree():
    for code in range(0x20, 0x7F):
        assert ATARI_FONT.glyph(chr(code)) == ATARI_FONT.glyph(code)


@pytest.mark.parametrize("font, count", [(ATARI_FONT, 105), (SYMBOL_FONT, 17)])
def test_every_glyph_has_font_height(font, count):
    codes = range(font.first_code, font.first_code + count)
    assert all(len(font.glyph(code)) == font.height for code in codes)
    assert all(font.width(code) <= font.max_width for code in codes)


def test_widths_are_eight():
    assert ATARI_FONT.width("W") == 8
    assert SYMBOL_FONT.width(3) == 8


def test_last_extra_glyph():
    last = ATARI_FONT.first_code + len(ATARI_FONT.glyphs) - 1
    assert ATARI_FONT.glyph(last) == bytes([0x00, 0x00, 0x04, 0x0A, 0x0A, 0x04, 0x00, 0x00])


@pytest.mark.parametrize("code", [0x1F, 0x20 + 105, -1, "ab"])
def test_out_of_range_atari_code(code):
    with pytest.raises(KeyError):
        ATARI_FONT.glyph(code)


def test_symbol_font_range():
    assert len(SYMBOL_FONT.glyphs) == 17
    assert SYMBOL_FONT.glyph(0) == bytes(8)
    assert SYMBOL_FONT.glyph(3) == bytes([0xC3, 0xE7, 0x7E, 0x3C, 0x3C, 0x7E, 0xE7, 0xC3])
    with pytest.raises(KeyError):
        SYMBOL_FONT.width(17)


def test_accents():
    assert set(ATARI_FONT.accents) >= {"grave", "acute", "cedilla", "ring_above"}
    assert ATARI_FONT.accents["cedilla"][:2] == (10, 10)
    assert ATARI_FONT.accents["ring_above"][:2] == (6, 5)
    assert all(len(data) == 8 for _, _, data in ATARI_FONT.accents.values())


def test_custom_font():
    font = BitmapFont(height=2, max_width=3, glyphs=(b"\x01\x02",), widths=(3,), first_code=65)
    assert font.glyph("A") == b"\x01\x02"
    assert font.width(65) == 3
    with pytest.raises(KeyError):
        font.glyph("B")