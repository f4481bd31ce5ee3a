"""
Unit tests for the pydeck rendering of live layers.
"""

import pytest

from port_day.deck import build_deck, hex_to_rgba, layer_rows
from port_day.models import Coordinate
from port_day.surface import RecordedLayer, RecordingSurface

UFFIZI = Coordinate(43.7678, 11.2553)
PONTE = Coordinate(43.7680, 11.2531)


def populated_surface():
    surface = RecordingSurface(center=UFFIZI, zoom=15)
    surface.add_polyline("track", [UFFIZI, PONTE], style={"color": "#1e3a8a", "weight": 4, "opacity": 0.5})
    surface.add_circle_marker(
        "poi:0", PONTE, style={"radius": 6, "fill_color": "#BE123C", "color": "#ffffff"}, popup="<b>Ponte</b>"
    )
    surface.add_marker("activity:uffizi", UFFIZI, style={"color": "#10b981"}, popup="<b>Uffizi</b>")
    return surface


class TestHexToRgba:
    """Tests for color conversion."""

    @pytest.mark.unit
    def test_hex(self):
        assert hex_to_rgba("#1e3a8a") == [30, 58, 138, 255]

    @pytest.mark.unit
    def test_without_hash_and_opacity(self):
        assert hex_to_rgba("ffffff", 0.5) == [255, 255, 255, 128]

    @pytest.mark.unit
    @pytest.mark.parametrize("color", ["red", "", "#fff"])
    def test_unknown_format_is_grey(self, color):
        assert hex_to_rgba(color) == [128, 128, 128, 255]

    @pytest.mark.unit
    def test_opacity_clamped(self):
        assert hex_to_rgba("#000000", 3.0)[3] == 255
        assert hex_to_rgba("#000000", -1.0)[3] == 0


class TestLayerRows:
    """Tests for grouping surface layers into pydeck rows."""

    @pytest.mark.unit
    def test_grouped_by_shape(self):
        rows = layer_rows(populated_surface().layers())
        assert [r["key"] for r in rows["paths"]] == ["track"]
        assert [r["key"] for r in rows["circles"]] == ["poi:0"]
        assert [r["key"] for r in rows["markers"]] == ["activity:uffizi"]

    @pytest.mark.unit
    def test_positions_are_lng_lat(self):
        rows = layer_rows(populated_surface().layers())
        assert rows["paths"][0]["path"] == [[11.2553, 43.7678], [11.2531, 43.7680]]
        assert rows["markers"][0]["position"] == [11.2553, 43.7678]

    @pytest.mark.unit
    def test_labels_strip_markup(self):
        rows = layer_rows(populated_surface().layers())
        assert rows["markers"][0]["label"] == "Uffizi"
        assert rows["circles"][0]["label"] == "Ponte"
        assert rows["circles"][0]["fill"] == [190, 18, 60, 255]

    @pytest.mark.unit
    def test_popup_line_breaks(self):
        layer = RecordedLayer(key="waypoint:w1", shape="marker", points=(UFFIZI,), style={}, popup="Gelato<br>pistachio")
        assert layer_rows([layer])["markers"][0]["label"] == "Gelato\npistachio"


class TestBuildDeck:
    """Tests for the Deck itself."""

    @pytest.mark.unit
    def test_layers_and_view(self):
        deck = build_deck(populated_surface())
        assert [layer.id for layer in deck.layers] == ["track", "route_points", "markers"]
        assert deck.initial_view_state.latitude == UFFIZI.lat
        assert deck.initial_view_state.longitude == UFFIZI.lng
        assert deck.initial_view_state.zoom == 15

    @pytest.mark.unit
    def test_empty_surface(self):
        deck = build_deck(RecordingSurface(center=UFFIZI))
        assert len(deck.layers) == 3
