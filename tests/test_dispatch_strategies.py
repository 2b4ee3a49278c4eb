import pytest

from candidates.models import Candidate
from dispatch.dispatcher import CLAIMED_ELSEWHERE, DispatchStrategyEngine
from dispatch.errors import InvalidTransition, NeedNotFound, QuantityBelowAccepted, StorageError
from dispatch.tokens import ConsumeOutcome
from notifications.models import TemplateKind
from storage.memory import InMemoryStore
from vacancies.models import DispatchStrategy, NeedStatus, OfferStatus, Ranking

from conftest import VIOLIN, add_candidates, add_ranking_list, new_need, offer_for, offered_candidates, token_for


def _statuses(store, need_id):
    return {o.candidate_id: o.status for o in store.offers_for_need(need_id)}


# --- sequential ---

def test_sequential_decline_then_accept(store, engine, tokens, transport):
    """
    quantity=1, candidate 1 declines, candidate 2 accepts:
    exactly two offers, need completed, candidate 3 never offered.
    """
    need = new_need(store, DispatchStrategy.SEQUENTIAL, 1)
    engine.open_need(need.id)
    assert offered_candidates(store, need.id) == [1]

    assert tokens.consume(token_for(store, need.id, 1), "declined").outcome == ConsumeOutcome.DECLINED
    assert offered_candidates(store, need.id) == [1, 2]

    assert tokens.consume(token_for(store, need.id, 2), "accepted").outcome == ConsumeOutcome.ACCEPTED

    assert len(store.offers_for_need(need.id)) == 2
    assert store.get_need(need.id).status == NeedStatus.COMPLETED
    assert 3 not in offered_candidates(store, need.id)
    assert transport.recipients_of(TemplateKind.REQUEST) == [1, 2]
    assert transport.recipients_of(TemplateKind.CONFIRMATION) == [2]


def test_sequential_keeps_one_pending_offer(store, engine):
    need = new_need(store, DispatchStrategy.SEQUENTIAL, 3)
    engine.open_need(need.id)
    engine.dispatch(need.id)

    assert offered_candidates(store, need.id) == [1]


def test_sequential_accept_offers_the_next_candidate(store, engine, tokens, transport):
    """
    quantity=2: each accept below quantity moves the cursor to the next rank;
    the second accept completes the need and candidate 3 is never offered.
    """
    need = new_need(store, DispatchStrategy.SEQUENTIAL, 2)
    engine.open_need(need.id)

    tokens.consume(token_for(store, need.id, 1), "accepted")
    assert offered_candidates(store, need.id) == [1, 2]
    assert store.get_need(need.id).status == NeedStatus.ACTIVE

    tokens.consume(token_for(store, need.id, 2), "accepted")

    assert store.get_need(need.id).status == NeedStatus.COMPLETED
    assert offered_candidates(store, need.id) == [1, 2]
    assert transport.recipients_of(TemplateKind.REQUEST) == [1, 2]
    assert transport.recipients_of(TemplateKind.CONFIRMATION) == [1, 2]


# --- parallel ---

def test_parallel_offers_quantity_and_tops_up(store, engine, tokens):
    need = new_need(store, DispatchStrategy.PARALLEL, 2)
    result = engine.open_need(need.id)
    assert [o.candidate_id for o in result.issued] == [1, 2]

    tokens.consume(token_for(store, need.id, 1), "declined")
    assert offered_candidates(store, need.id) == [1, 2, 3]

    tokens.consume(token_for(store, need.id, 2), "accepted")
    # one accepted, one outstanding: no top-up needed
    assert offered_candidates(store, need.id) == [1, 2, 3]

    tokens.consume(token_for(store, need.id, 3), "accepted")
    assert store.get_need(need.id).status == NeedStatus.COMPLETED
    assert offered_candidates(store, need.id) == [1, 2, 3]


def test_lowering_quantity_to_accepted_completes_and_supersedes(store, engine, tokens, transport):
    need = new_need(store, DispatchStrategy.PARALLEL, 3)
    engine.open_need(need.id)
    tokens.consume(token_for(store, need.id, 1), "accepted")
    tokens.consume(token_for(store, need.id, 2), "accepted")

    engine.update_quantity(need.id, 2)

    assert store.get_need(need.id).status == NeedStatus.COMPLETED
    assert _statuses(store, need.id)[3] == OfferStatus.SUPERSEDED
    assert transport.recipients_of(TemplateKind.POSITION_FILLED) == [3]


def test_raising_quantity_tops_up_active_need(store, engine):
    need = new_need(store, DispatchStrategy.PARALLEL, 1)
    engine.open_need(need.id)

    result = engine.update_quantity(need.id, 3)

    assert [o.candidate_id for o in result.issued] == [2, 3]
    assert store.get_need(need.id).quantity == 3


def test_raising_quantity_reopens_completed_need(store, engine, tokens):
    need = new_need(store, DispatchStrategy.SEQUENTIAL, 1)
    engine.open_need(need.id)
    tokens.consume(token_for(store, need.id, 1), "accepted")
    assert store.get_need(need.id).status == NeedStatus.COMPLETED

    engine.update_quantity(need.id, 2)

    assert store.get_need(need.id).status == NeedStatus.ACTIVE
    assert offered_candidates(store, need.id) == [1, 2]


# --- first_come ---

def test_first_come_first_two_accepts_fill_the_need(store, engine, tokens, transport):
    """
    quantity=2, max_offers=5: candidates 1-5 offered at once; 3 and 4 accept first,
    offers to 1, 2 and 5 are superseded and those candidates hear the position is filled.
    """
    add_candidates(store, [6])
    store.add_ranking(Ranking(1, 6, 6))
    need = new_need(store, DispatchStrategy.FIRST_COME, 2, max_offers=5)

    engine.open_need(need.id)
    assert offered_candidates(store, need.id) == [1, 2, 3, 4, 5]

    tokens.consume(token_for(store, need.id, 3), "accepted")
    tokens.consume(token_for(store, need.id, 4), "accepted")

    statuses = _statuses(store, need.id)
    assert store.get_need(need.id).status == NeedStatus.COMPLETED
    assert statuses[3] == statuses[4] == OfferStatus.ACCEPTED
    assert [cid for cid in (1, 2, 5) if statuses[cid] == OfferStatus.SUPERSEDED] == [1, 2, 5]
    assert sorted(transport.recipients_of(TemplateKind.POSITION_FILLED)) == [1, 2, 5]
    assert 6 not in statuses

    # a late accept cannot push the need past its quantity
    late = tokens.consume(token_for(store, need.id, 1), "accepted")
    assert late.outcome == ConsumeOutcome.NO_LONGER_AVAILABLE
    assert sum(1 for s in _statuses(store, need.id).values() if s == OfferStatus.ACCEPTED) == 2


def test_first_come_decline_does_not_top_up(store, engine, tokens):
    need = new_need(store, DispatchStrategy.FIRST_COME, 1, max_offers=2)
    engine.open_need(need.id)

    tokens.consume(token_for(store, need.id, 1), "declined")

    assert offered_candidates(store, need.id) == [1, 2]


def test_first_come_without_cap_offers_everyone(store, engine):
    need = new_need(store, DispatchStrategy.FIRST_COME, 1)

    engine.open_need(need.id)

    assert offered_candidates(store, need.id) == [1, 2, 3, 4, 5]


# --- quantity guard ---

def test_quantity_below_accepted_is_rejected_without_changes(store, engine, tokens):
    need = new_need(store, DispatchStrategy.PARALLEL, 3)
    engine.open_need(need.id)
    tokens.consume(token_for(store, need.id, 1), "accepted")
    tokens.consume(token_for(store, need.id, 2), "accepted")
    before = (store.get_need(need.id), store.offers_for_need(need.id))

    with pytest.raises(QuantityBelowAccepted) as excinfo:
        engine.update_quantity(need.id, 1)

    assert excinfo.value.accepted == 2
    assert (store.get_need(need.id), store.offers_for_need(need.id)) == before


# --- warnings, close, pause ---

def test_exhausted_list_warns_and_need_stays_active(store, engine):
    for cid in range(1, 6):
        store.update_candidate(Candidate.new(cid, "F", "L", f"{cid}@x.org", [VIOLIN.id], status="inactive"))
    need = new_need(store, DispatchStrategy.SEQUENTIAL, 1)

    result = engine.open_need(need.id)

    assert result.issued == []
    assert result.warnings[0].need_id == need.id
    assert result.warnings[0].missing == 1
    assert store.get_need(need.id).status == NeedStatus.ACTIVE

    # roster grows, the next cycle picks it up
    store.update_candidate(Candidate.new(4, "F", "L", "4@x.org", [VIOLIN.id]))
    assert [o.candidate_id for o in engine.dispatch(need.id).issued] == [4]


def test_close_supersedes_pending_and_revokes_links(store, engine, tokens, transport):
    need = new_need(store, DispatchStrategy.PARALLEL, 2)
    engine.open_need(need.id)
    link = token_for(store, need.id, 1)

    closed = engine.close_need(need.id)

    assert closed.status == NeedStatus.ARCHIVED
    assert set(_statuses(store, need.id).values()) == {OfferStatus.SUPERSEDED}
    assert tokens.consume(link, "accepted").outcome == ConsumeOutcome.NO_LONGER_AVAILABLE
    assert transport.recipients_of(TemplateKind.POSITION_FILLED) == []


def test_close_without_offers_deletes_need(store, engine):
    need = new_need(store)

    assert engine.close_need(need.id) is None
    with pytest.raises(NeedNotFound):
        store.get_need(need.id)


def test_paused_need_takes_answers_but_sends_nothing_new(store, engine, tokens):
    need = new_need(store, DispatchStrategy.PARALLEL, 2)
    engine.open_need(need.id)
    engine.pause_need(need.id)

    tokens.consume(token_for(store, need.id, 1), "declined")
    tokens.consume(token_for(store, need.id, 2), "accepted")
    assert offered_candidates(store, need.id) == [1, 2]

    engine.resume_need(need.id)
    assert offered_candidates(store, need.id) == [1, 2, 3]


def test_resume_requires_paused_need(store, engine):
    need = new_need(store)
    engine.open_need(need.id)

    with pytest.raises(InvalidTransition):
        engine.resume_need(need.id)


# --- read-only views ---

def test_preview_has_no_side_effects(store, engine):
    store.update_candidate(Candidate.new(1, "F", "L", "1@x.org", [VIOLIN.id], status="inactive"))
    need = new_need(store, DispatchStrategy.PARALLEL, 2)

    preview = engine.preview(need.id)

    assert [rc.candidate_id for rc in preview.would_offer] == [2, 3]
    assert [rc.candidate_id for rc in preview.queue] == [4, 5]
    assert [(e.candidate_id, e.reason) for e in preview.excluded] == [(1, "inactive")]
    assert store.offers_for_need(need.id) == []
    assert store.get_need(need.id).status == NeedStatus.CREATED


def test_summary_counts_offers_by_status(store, engine, tokens):
    need = new_need(store, DispatchStrategy.PARALLEL, 2)
    engine.open_need(need.id)
    tokens.consume(token_for(store, need.id, 1), "declined")
    tokens.consume(token_for(store, need.id, 2), "accepted")

    summary = engine.summary(need.id)

    assert summary.accepted == 1
    assert summary.pending == 1
    assert summary.remaining == 1
    assert summary.as_dict()["declined"] == 1
    assert summary.as_dict()["total"] == 3


# --- delivery and storage failures ---

def test_notification_failure_does_not_undo_the_offer(store, engine, transport, batcher):
    transport.failing.add(1)
    need = new_need(store, DispatchStrategy.PARALLEL, 2)

    result = engine.open_need(need.id)

    assert offered_candidates(store, need.id) == [1, 2]
    report = batcher.wait(result.session_id)
    assert report.sent == 1
    assert report.failed == 1
    assert batcher.progress(result.session_id).failed == 1


class FlakyStore(InMemoryStore):
    """Fails the second token write."""
    writes = 0

    def add_token(self, token):
        self.writes += 1
        if self.writes == 2:
            raise StorageError("disk full")
        return super().add_token(token)


def test_storage_failure_rolls_back_the_whole_cycle(batcher, settings_provider, clock):
    store = FlakyStore()
    add_candidates(store, range(1, 4))
    add_ranking_list(store, 1, VIOLIN, [1, 2, 3])
    need = new_need(store, DispatchStrategy.PARALLEL, 2, status=NeedStatus.ACTIVE)
    engine = DispatchStrategyEngine(store, notifier=batcher, settings_provider=settings_provider, clock=clock)

    with pytest.raises(StorageError):
        engine.dispatch(need.id)

    assert store.offers_for_need(need.id) == []
    assert offer_for(store, need.id, 1) is None


class ContendedStore(InMemoryStore):
    """Candidate rows in `held` are locked by another need's open transaction."""
    held = frozenset({2})

    def lock_candidate(self, candidate_id):
        return candidate_id not in self.held


def test_candidate_held_by_another_cycle_is_skipped_not_fatal(batcher, settings_provider, clock):
    store = ContendedStore()
    add_candidates(store, range(1, 4))
    add_ranking_list(store, 1, VIOLIN, [1, 2, 3])
    need = new_need(store, DispatchStrategy.PARALLEL, 2, status=NeedStatus.ACTIVE)
    engine = DispatchStrategyEngine(store, notifier=batcher, settings_provider=settings_provider, clock=clock)

    result = engine.dispatch(need.id)

    assert [o.candidate_id for o in result.issued] == [1, 3]
    assert [(r.candidate_id, r.reason) for r in result.skipped] == [(2, CLAIMED_ELSEWHERE)]
    assert result.warnings == []
