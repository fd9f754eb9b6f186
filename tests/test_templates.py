from __future__ import annotations

import pytest

from januscope.templates import (
    SERVICE_DOWN_TEMPLATE,
    SSL_EXPIRY_TEMPLATE,
    default_template,
    format_duration,
    render,
)


def test_render_substitutes_known_variables() -> None:
    out = render("{{service_name}} down: {{error_message}}", {"service_name": "web", "error_message": "HTTP 500"})
    assert out == "web down: HTTP 500"


def test_render_leaves_unknown_placeholder_verbatim() -> None:
    assert render("Hello {{name}}, {{missing}}!", {"name": "ops"}) == "Hello ops, {{missing}}!"


def test_render_leaves_none_value_verbatim() -> None:
    assert render("code={{http_code}}", {"http_code": None}) == "code={{http_code}}"


def test_render_tolerates_whitespace_in_placeholder() -> None:
    assert render("{{ days_remaining }} days", {"days_remaining": 7}) == "7 days"


def test_render_without_variables_returns_template() -> None:
    assert render("{{a}}", {}) == "{{a}}"
    assert render(None, {"a": 1}) is None


def test_default_templates_by_event() -> None:
    assert default_template("SERVICE_DOWN") is SERVICE_DOWN_TEMPLATE
    assert default_template("SSL_EXPIRY_14") is SSL_EXPIRY_TEMPLATE
    other = default_template("CUSTOM_EVENT")
    assert render(other.subject, {"service_name": "web"}) == "web: CUSTOM_EVENT"


@pytest.mark.parametrize(
    ("seconds", "text"),
    [(None, "n/a"), (0, "0s"), (45, "45s"), (90, "1m 30s"), (3_725, "1h 2m 5s"), (90_061, "1d 1h 1m")],
)
def test_format_duration(seconds, text) -> None:
    assert format_duration(seconds) == text
