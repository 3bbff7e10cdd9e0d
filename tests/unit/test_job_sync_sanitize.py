from __future__ import annotations

import pytest

from shared.job_sync.sanitize import sanitize_html


def test_sanitize_strips_scripts_attributes_and_links() -> None:
    html = '<div><p class="lead" onclick="steal()">Hello <a href="https://evil.test">link</a></p><script>alert(1)</script></div>'
    assert sanitize_html(html) == "<p>Hello link</p>"


def test_sanitize_drops_forms_iframes_and_styles() -> None:
    html = "<p>Keep</p><style>p{}</style><iframe src='x'></iframe><form><input name='q'></form>"
    assert sanitize_html(html) == "<p>Keep</p>"


def test_sanitize_turns_leaf_divs_into_paragraphs() -> None:
    assert sanitize_html("<div>First</div><div>Second</div><div>  </div>") == "<p>First</p><p>Second</p>"


def test_sanitize_converts_fake_bullets_into_a_list() -> None:
    html = "<p>• First</p><p>• Second</p><p>Closing words</p>"
    assert sanitize_html(html) == "<ul><li>First</li><li>Second</li></ul><p>Closing words</p>"


def test_sanitize_converts_bullet_isolated_in_span() -> None:
    html = "<p><span>•</span><span>Alpha</span></p><p><span>·</span> Beta</p>"
    assert sanitize_html(html) == "<ul><li>Alpha</li><li>Beta</li></ul>"


def test_sanitize_keeps_real_lists_and_headings() -> None:
    html = "<h2 id='x'>Benefits</h2><ul><li>Equity</li><li></li></ul><p><strong>Apply</strong> now</p>"
    assert sanitize_html(html) == "<h2>Benefits</h2><ul><li>Equity</li></ul><p><strong>Apply</strong> now</p>"


def test_sanitize_wraps_plain_text_into_paragraphs_and_headings() -> None:
    text = "Responsibilities:\nBuild things\n\nTeam player"
    assert sanitize_html(text) == "<h3>Responsibilities:</h3><p>Build things</p><p>Team player</p>"


def test_sanitize_collapses_repeated_breaks_and_whitespace() -> None:
    assert sanitize_html("<p>One<br><br><br>Two   and\n three</p>") == "<p>One<br/>Two and three</p>"


@pytest.mark.parametrize(
    "html",
    [
        "<div><p>Intro</p><p>• a</p><p>• b</p></div>",
        "<p><span>-</span> <em>dash</em> bullet</p><p>after</p>",
        "Heading:\nline one\nline two",
        "<p>Caf&eacute; &amp; bar&nbsp;menu</p>",
        "<ol><li><b>x</b></li></ol><p>   </p>",
    ],
)
def test_sanitize_is_idempotent(html: str) -> None:
    once = sanitize_html(html)
    assert sanitize_html(once) == once


def test_sanitize_empty_input() -> None:
    assert sanitize_html("") == ""
    assert sanitize_html("   ") == ""
    assert sanitize_html(None) == ""
