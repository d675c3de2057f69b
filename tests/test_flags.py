import pytest

from flags import SimulationFlags
from models import ExpenseCategory


def test_initial_flags_are_empty():
    flags = SimulationFlags.initial()
    assert not flags.survivor_mode
    assert not flags.refill_mode
    assert not flags.has_active_contingency()
    assert dict(flags.custom) == {}


def test_with_methods_return_same_instance_when_unchanged():
    flags = SimulationFlags.initial()
    assert flags.with_survivor_mode(False) is flags
    assert flags.with_refill_mode(False) is flags
    assert flags.with_contingency_active(ExpenseCategory.HOME_REPAIRS, False) is flags
    assert flags.with_contingency_active(None, True) is flags
    assert flags.with_custom_flag("missing", None) is flags

    flagged = flags.with_custom_flag("mode", "conservative")
    assert flagged.with_custom_flag("mode", "conservative") is flagged


def test_with_methods_copy_on_write():
    flags = SimulationFlags.initial()
    survivor = flags.with_survivor_mode(True)
    assert survivor is not flags
    assert survivor.survivor_mode
    assert not flags.survivor_mode

    active = survivor.with_contingency_active(ExpenseCategory.HOME_REPAIRS, True)
    assert active.is_contingency_active(ExpenseCategory.HOME_REPAIRS)
    assert active.survivor_mode
    assert not survivor.has_active_contingency()

    cleared = active.with_contingency_active(ExpenseCategory.HOME_REPAIRS, False)
    assert not cleared.has_active_contingency()
    assert cleared == survivor


def test_custom_flags_set_and_remove():
    flags = SimulationFlags.initial().with_custom_flag("note", 3)
    assert flags.get_custom_flag("note") == 3
    removed = flags.with_custom_flag("note", None)
    assert removed.get_custom_flag("note", "default") == "default"


def test_flags_are_immutable():
    flags = SimulationFlags.initial()
    with pytest.raises(AttributeError):
        flags.survivor_mode = True
    with pytest.raises(TypeError):
        flags.custom["x"] = 1
    with pytest.raises(AttributeError):
        flags.contingency_active.add(ExpenseCategory.GIFTS)
