from __future__ import annotations

from offerpipe.workflow.params import MISSING, lookup, resolve_params, resolve_value

CONTEXT = {
    "sessionId": "abc123",
    "maxPrice": 120,
    "offers": [{"title": "Air Max", "price": 99.0}],
    "currentProxy": {"id": "http://a:80", "country": "DE"},
}


def test_lookup_walks_mappings_and_indices() -> None:
    assert lookup(CONTEXT, "currentProxy.country") == "DE"
    assert lookup(CONTEXT, "offers.0.title") == "Air Max"
    assert lookup(CONTEXT, "offers.5.title") is MISSING
    assert lookup(CONTEXT, "nothing.here") is MISSING


def test_whole_placeholder_keeps_type() -> None:
    assert resolve_value("${maxPrice}", CONTEXT) == 120
    assert resolve_value("${ offers }", CONTEXT) is CONTEXT["offers"]


def test_embedded_placeholders_are_interpolated() -> None:
    assert resolve_value("session=${sessionId}; max=${maxPrice}", CONTEXT) == "session=abc123; max=120"


def test_unknown_placeholders_stay_literal() -> None:
    assert resolve_value("${unknown}", CONTEXT) == "${unknown}"
    assert resolve_value("id-${unknown}-${sessionId}", CONTEXT) == "id-${unknown}-abc123"


def test_resolve_params_recurses_into_containers() -> None:
    params = {
        "url": "https://shop.example/?s=${sessionId}",
        "options": {"proxy": "${currentProxy.id}", "pages": [1, "${maxPrice}"]},
        "retries": 2,
    }
    assert resolve_params(params, CONTEXT) == {
        "url": "https://shop.example/?s=abc123",
        "options": {"proxy": "http://a:80", "pages": [1, 120]},
        "retries": 2,
    }


def test_lookup_does_not_walk_object_attributes() -> None:
    assert lookup(CONTEXT, "offers.__class__") is MISSING
    assert lookup(CONTEXT, "sessionId.upper") is MISSING
    assert resolve_value("${maxPrice.__class__.__name__}", CONTEXT) == "${maxPrice.__class__.__name__}"
