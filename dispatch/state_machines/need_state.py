from vacancies.models import NeedStatus, VacancyNeed

from ..errors import InvalidTransition

# Allowed need lifecycle moves. COMPLETED -> ACTIVE happens when quantity is raised.
_TRANSITIONS = {
    NeedStatus.CREATED: {NeedStatus.ACTIVE, NeedStatus.ARCHIVED},
    NeedStatus.ACTIVE: {NeedStatus.PAUSED, NeedStatus.COMPLETED, NeedStatus.ARCHIVED},
    NeedStatus.PAUSED: {NeedStatus.ACTIVE, NeedStatus.COMPLETED, NeedStatus.ARCHIVED},
    NeedStatus.COMPLETED: {NeedStatus.ACTIVE, NeedStatus.ARCHIVED},
    NeedStatus.ARCHIVED: set(),
}


def transition_need(need: VacancyNeed, target: NeedStatus) -> VacancyNeed:
    if target == need.status:
        return need
    if target not in _TRANSITIONS[need.status]:
        raise InvalidTransition(f"Cannot move need {need.id} from {need.status.value} to {target.value}")
    need.status = target
    return need


def activate_need(need: VacancyNeed) -> VacancyNeed:
    """Open for dispatch (also used for resume and re-open after a quantity increase)."""
    return transition_need(need, NeedStatus.ACTIVE)


def pause_need(need: VacancyNeed) -> VacancyNeed:
    return transition_need(need, NeedStatus.PAUSED)


def complete_need(need: VacancyNeed) -> VacancyNeed:
    return transition_need(need, NeedStatus.COMPLETED)


def archive_need(need: VacancyNeed) -> VacancyNeed:
    return transition_need(need, NeedStatus.ARCHIVED)
