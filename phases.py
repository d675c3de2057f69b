"""
Life-cycle phase derivation.

Phases are recomputed from calendar dates on every call and never stored, so
households where one spouse still works while the other draws down need no
special handling.
"""

import datetime as _dt
from typing import Iterable, List, Optional, Sequence

from config import PersonProfile
from models import SimulationPhase


def is_alive(person: PersonProfile, month: _dt.date) -> bool:
    """A person counts as alive through the month of death."""
    return month <= person.death_month


def person_phase(person: PersonProfile, month: _dt.date) -> Optional[SimulationPhase]:
    """Phase of one living person, or None once they have died."""
    if not is_alive(person, month):
        return None
    if month < person.retirement_month:
        return SimulationPhase.ACCUMULATION
    if month < person.withdrawal_start_month:
        return SimulationPhase.TRANSITION
    return SimulationPhase.DISTRIBUTION


def living_persons(persons: Iterable[PersonProfile], month: _dt.date) -> List[PersonProfile]:
    return [p for p in persons if is_alive(p, month)]


def deceased_persons(persons: Iterable[PersonProfile], month: _dt.date) -> List[PersonProfile]:
    return [p for p in persons if not is_alive(p, month)]


def determine_phase(month: _dt.date, persons: Sequence[PersonProfile]) -> SimulationPhase:
    """
    Household phase for ``month``.

    SURVIVOR once someone has died while someone else lives; otherwise
    DISTRIBUTION if any living person has reached their withdrawal start,
    ACCUMULATION if anyone still works, and TRANSITION for a fully retired
    household that has not started withdrawals.
    """
    living = living_persons(persons, month)
    if not living:
        return SimulationPhase.DISTRIBUTION
    if len(living) < len(persons):
        return SimulationPhase.SURVIVOR

    phases = {person_phase(p, month) for p in living}
    if SimulationPhase.DISTRIBUTION in phases:
        return SimulationPhase.DISTRIBUTION
    if SimulationPhase.ACCUMULATION in phases:
        return SimulationPhase.ACCUMULATION
    return SimulationPhase.TRANSITION


def first_withdrawal_month(persons: Sequence[PersonProfile]) -> _dt.date:
    """Earliest month in which any person may start withdrawals."""
    return min(p.withdrawal_start_month for p in persons)
