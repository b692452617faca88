import re
from pathlib import Path

CSS_PATH = Path(__file__).resolve().parent.parent / "static" / "css" / "main.css"


def test_filter_bar_pills_do_not_wrap() -> None:
    css = CSS_PATH.read_text(encoding="utf-8")

    rule = re.search(r"\.filter-bar\s+\.pill\s*\{[^}]*\}", css, re.DOTALL)
    assert rule, "Expected a `.filter-bar .pill { ... }` rule in static/css/main.css"
    assert "white-space: nowrap;" in rule.group(0)


def test_over_budget_bar_uses_negative_color() -> None:
    css = CSS_PATH.read_text(encoding="utf-8")

    rule = re.search(r"\.budget\.over\s+\.progress\s+\.bar\s*\{[^}]*\}", css, re.DOTALL)
    assert rule, "Expected a `.budget.over .progress .bar { ... }` rule"
    assert "var(--negative)" in rule.group(0)
