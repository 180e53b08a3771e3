"""Legacy plan keys translate to per-service selections."""
import pytest

from services.legacy_plans import is_legacy_plan_key, selection_from_legacy_plan


@pytest.mark.parametrize("plan_key,expected", [
    ("launch", {"website": True, "ads": False, "voice": False}),
    ("launch-traffic", {"website": True, "ads": True, "voice": False}),
    ("Full-Funnel", {"website": True, "ads": True, "voice": True}),
])
def test_known_plans(plan_key, expected):
    assert selection_from_legacy_plan(plan_key) == expected


def test_unknown_plan_is_empty_selection():
    assert selection_from_legacy_plan("enterprise") == {"website": False, "ads": False, "voice": False}
    assert selection_from_legacy_plan(None) == {"website": False, "ads": False, "voice": False}


def test_unknown_table_version_raises():
    with pytest.raises(ValueError):
        selection_from_legacy_plan("launch", version="v0")


def test_is_legacy_plan_key():
    assert is_legacy_plan_key(" launch ")
    assert not is_legacy_plan_key("website")
    assert not is_legacy_plan_key(["launch"])
