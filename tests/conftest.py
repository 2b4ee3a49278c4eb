import pytest
from concurrent.futures import Future
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Iterable, List

from candidates.models import Candidate
from dispatch.dispatcher import DispatchStrategyEngine
from dispatch.reminders import ReminderScheduler
from dispatch.tokens import ResponseTokenService
from notifications.batcher import NotificationBatcher
from storage.memory import InMemoryStore
from vacancies.models import DispatchStrategy, NeedStatus, Position, Ranking, RankingList, VacancyNeed
from vacancies.policy import DispatchPolicy

START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

VIOLIN = Position(id=1, name="Violin 1", category="Strings", hierarchy_level=1)


class FakeClock:
    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now += timedelta(**delta)
        return self.now


class RecordingTransport:
    """
    Collects every send; candidate ids in `failing` get a False result.
    """
    def __init__(self):
        self.sent = []
        self.failing = set()

    def send(self, recipient, channel, template_kind, variables):
        if recipient.candidate_id in self.failing:
            return False
        self.sent.append((recipient, channel, template_kind, dict(variables)))
        return True

    def recipients_of(self, kind) -> List[int]:
        return [recipient.candidate_id for recipient, _, sent_kind, _ in self.sent if sent_kind == kind]


class InlineExecutor:
    """
    Runs submitted work on the calling thread, so background sends finish
    before the engine call that queued them returns.
    """
    def submit(self, fn, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:
            future.set_exception(exc)
        return future

    def shutdown(self, wait=True):
        pass


class MutableSettings:
    """
    Settings provider whose policy a test can change between cycles.
    """
    def __init__(self):
        self.policy = DispatchPolicy(batch_delay_seconds=0)

    def __call__(self) -> DispatchPolicy:
        return self.policy

    def set(self, **changes) -> None:
        self.policy = replace(self.policy, **changes)


def add_candidates(store, ids: Iterable[int], positions=(VIOLIN.id,), **fields) -> List[Candidate]:
    created = []
    for candidate_id in ids:
        candidate = Candidate.new(
            candidate_id,
            f"First{candidate_id}",
            f"Last{candidate_id}",
            f"c{candidate_id}@example.org",
            qualified_position_ids=positions,
            **fields,
        )
        store.add_candidate(candidate)
        created.append(candidate)
    return created


def add_ranking_list(store, list_id: int, position: Position, candidate_ids: Iterable[int],
                     list_type: str = "A") -> RankingList:
    """Ranks follow the order of candidate_ids, starting at 1."""
    store.add_position(position)
    return store.add_ranking_list(
        RankingList(id=list_id, position_id=position.id, list_type=list_type),
        [Ranking(list_id=list_id, candidate_id=cid, rank=rank) for rank, cid in enumerate(candidate_ids, start=1)],
    )


def new_need(store, strategy=DispatchStrategy.SEQUENTIAL, quantity=1, *, max_offers=None, project_id=None,
             position_id=VIOLIN.id, list_id=1, window_hours=48, local=False,
             status=NeedStatus.CREATED) -> VacancyNeed:
    return store.add_need(VacancyNeed(
        id=None,
        position_id=position_id,
        ranking_list_id=list_id,
        quantity=quantity,
        dispatch_strategy=DispatchStrategy(strategy),
        response_window_hours=window_hours,
        max_offers=max_offers,
        project_id=project_id,
        require_local_residence=local,
        status=status,
        created_at=START,
    ))


def offer_for(store, need_id: int, candidate_id: int):
    matches = [o for o in store.offers_for_need(need_id) if o.candidate_id == candidate_id]
    return matches[0] if matches else None


def token_for(store, need_id: int, candidate_id: int) -> str:
    offer = offer_for(store, need_id, candidate_id)
    return store.tokens_for_offer(offer.id)[-1].token


def offered_candidates(store, need_id: int) -> List[int]:
    return [o.candidate_id for o in store.offers_for_need(need_id)]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings_provider():
    return MutableSettings()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def batcher(transport, settings_provider, sleeps):
    batcher = NotificationBatcher(transport, settings_provider=settings_provider, executor=InlineExecutor(),
                                  sleep=sleeps.append)
    yield batcher
    batcher.shutdown()


@pytest.fixture
def store():
    """
    Five active violinists ranked 1..5 on list 1 ("A").
    """
    store = InMemoryStore()
    add_candidates(store, range(1, 6))
    add_ranking_list(store, 1, VIOLIN, [1, 2, 3, 4, 5])
    return store


@pytest.fixture
def engine(store, batcher, settings_provider, clock):
    return DispatchStrategyEngine(store, notifier=batcher, settings_provider=settings_provider, clock=clock)


@pytest.fixture
def tokens(store, engine, clock):
    return ResponseTokenService(store, engine, clock=clock)


@pytest.fixture
def scheduler(store, engine, settings_provider, clock):
    return ReminderScheduler(store, engine, settings_provider=settings_provider, clock=clock)
