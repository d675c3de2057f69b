import datetime as _dt

from config import PersonProfile
from models import SimulationPhase
from phases import determine_phase, first_withdrawal_month, is_alive, person_phase


def _person(pid, retirement, withdrawal_start=None, death="2060-06-01", dob="1965-03-10"):
    return PersonProfile(
        id=pid,
        date_of_birth=dob,
        retirement_date=retirement,
        withdrawal_start_date=withdrawal_start,
        death_date=death,
    )


def test_single_person_phase_sequence():
    person = _person("a", "2030-01-01", withdrawal_start="2032-01-01")
    assert determine_phase(_dt.date(2029, 12, 1), [person]) == SimulationPhase.ACCUMULATION
    assert determine_phase(_dt.date(2030, 1, 1), [person]) == SimulationPhase.TRANSITION
    assert determine_phase(_dt.date(2032, 1, 1), [person]) == SimulationPhase.DISTRIBUTION


def test_staggered_household_is_in_distribution():
    working = _person("a", "2035-01-01")
    retired = _person("b", "2028-01-01")
    assert determine_phase(_dt.date(2030, 1, 1), [working, retired]) == SimulationPhase.DISTRIBUTION
    assert person_phase(working, _dt.date(2030, 1, 1)) == SimulationPhase.ACCUMULATION


def test_survivor_phase_after_first_death():
    first = _person("a", "2028-01-01", death="2040-05-20")
    second = _person("b", "2028-01-01")
    assert is_alive(first, _dt.date(2040, 5, 1))
    assert determine_phase(_dt.date(2040, 5, 1), [first, second]) == SimulationPhase.DISTRIBUTION
    assert determine_phase(_dt.date(2040, 6, 1), [first, second]) == SimulationPhase.SURVIVOR
    assert person_phase(first, _dt.date(2040, 6, 1)) is None


def test_phase_is_pure_function_of_dates():
    household = [_person("a", "2030-01-01"), _person("b", "2033-01-01", death="2045-01-01")]
    months = [_dt.date(2046, 1, 1), _dt.date(2029, 1, 1), _dt.date(2031, 1, 1), _dt.date(2029, 1, 1)]
    first = [determine_phase(m, household) for m in months]
    second = [determine_phase(m, household) for m in reversed(months)][::-1]
    assert first == second
    assert first[1] == first[3] == SimulationPhase.ACCUMULATION


def test_first_withdrawal_month_is_earliest_start():
    household = [_person("a", "2030-05-17"), _person("b", "2028-01-01", withdrawal_start="2029-02-01")]
    assert first_withdrawal_month(household) == _dt.date(2029, 2, 1)
