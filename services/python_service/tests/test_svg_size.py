import pytest

from models import ImageSize
from svg_size import (
    is_svg_markup,
    is_svg_reference,
    size_from_attributes,
    size_from_viewbox,
    svg_dimensions,
)


def test_attributes_win_over_viewbox():
    svg = '<svg width="120" height="80" viewBox="0 0 300 150"></svg>'
    assert svg_dimensions(svg) == ImageSize(width=120, height=80)


def test_viewbox_only():
    assert svg_dimensions('<svg viewBox="0 0 300 150"><g/></svg>') == ImageSize(width=300, height=150)


def test_neither_gives_unknown_size():
    size = svg_dimensions("<svg><circle r='4'/></svg>")
    assert (size.width, size.height) == (0, 0)
    assert not size.known


@pytest.mark.parametrize("markup", ["", None, "not svg at all", "<svg width=", b"\xff\xfe<svg", "<svg width='abc' height='x'>"])
def test_malformed_markup_never_raises(markup):
    assert isinstance(svg_dimensions(markup), ImageSize)


def test_units_are_ignored():
    assert size_from_attributes('<svg width="64px" height="32.5pt">') == ImageSize(width=64, height=32.5)


def test_percent_width_falls_through_to_viewbox():
    svg = '<svg width="100%" height="100%" viewBox="0 0 40 20">'
    assert size_from_attributes(svg) is None
    assert svg_dimensions(svg) == ImageSize(width=40, height=20)


def test_only_one_attribute_falls_through():
    svg = '<svg width="50" viewBox="0,0,10,5">'
    assert svg_dimensions(svg) == ImageSize(width=10, height=5)


def test_stroke_width_is_not_a_width():
    svg = '<svg stroke-width="3" viewBox="0 0 300 150">'
    assert size_from_attributes(svg) is None
    assert svg_dimensions(svg).width == 300


def test_child_element_sizes_are_ignored():
    svg = '<svg viewBox="0 0 24 24"><rect width="500" height="500"/></svg>'
    assert svg_dimensions(svg) == ImageSize(width=24, height=24)


def test_viewbox_from_bytes():
    assert size_from_viewbox(b'<?xml version="1.0"?><svg viewBox="-5 -5 75 14"/>') == ImageSize(width=75, height=14)


@pytest.mark.parametrize("ref,expected", [
    ("https://cdn.example.com/logo.svg", True),
    ("https://cdn.example.com/logo.SVG?v=3", True),
    ("/tmp/logos/acme.svg", True),
    ("https://cdn.example.com/logo.png", False),
    ("https://cdn.example.com/svg/logo.png", False),
    ("<svg viewBox='0 0 1 1'/>", True),
    ("<!DOCTYPE svg PUBLIC '-//W3C//DTD SVG 1.1//EN'><svg/>", True),
    ("<!-- logo --><svg/>", True),
    ("<html/>", False),
    ("", False),
])
def test_is_svg_reference(ref, expected):
    assert is_svg_reference(ref) is expected


def test_is_svg_markup_sniffs_content():
    assert is_svg_markup(b"\xef\xbb\xbf  <svg xmlns='http://www.w3.org/2000/svg'/>")
    assert is_svg_markup(b"<?xml version='1.0'?>\n<svg/>")
    assert is_svg_markup("<!DOCTYPE svg PUBLIC '-//W3C//DTD SVG 1.1//EN'><svg/>")
    assert not is_svg_markup(b"\x89PNG\r\n\x1a\n")
    assert not is_svg_markup(b"<?xml version='1.0'?><html/>")
    assert not is_svg_markup(b"")
