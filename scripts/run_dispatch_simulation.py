import csv
import os
import random
from datetime import datetime, timedelta, timezone

from candidates.models import Candidate
from dispatch.dispatcher import DispatchStrategyEngine
from dispatch.reminders import ReminderScheduler
from dispatch.tokens import ResponseTokenService
from notifications.batcher import NotificationBatcher
from notifications.transport import LoggingTransport
from storage.memory import InMemoryStore
from vacancies.models import (
    DispatchStrategy,
    NeedStatus,
    OfferStatus,
    Position,
    Project,
    Ranking,
    RankingList,
    VacancyNeed,
)
from vacancies.policy import ConflictStrategy, DispatchPolicy


class SimulationClock:
    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now


POSITIONS = [
    Position(id=1, name="Concertmaster", category="Strings", hierarchy_level=0),
    Position(id=2, name="Violin 1", category="Strings", hierarchy_level=1),
    Position(id=3, name="Viola", category="Strings", hierarchy_level=2),
]


def build_roster(store, num_candidates=40):
    """
    Random orchestra roster: every candidate plays one or two positions and is
    ranked on an "A" list for each of them.
    """
    for position in POSITIONS:
        store.add_position(position)

    lists = {position.id: [] for position in POSITIONS}
    for candidate_id in range(1, num_candidates + 1):
        positions = random.sample([p.id for p in POSITIONS], k=random.choice([1, 1, 2]))
        store.add_candidate(Candidate.new(
            candidate_id,
            f"Player{candidate_id}",
            "Sim",
            f"player{candidate_id}@example.org",
            qualified_position_ids=positions,
            status=random.choices(["active", "inactive"], weights=[9, 1])[0],
            local_residence=random.random() < 0.7,
        ))
        for position_id in positions:
            lists[position_id].append(candidate_id)

    for list_id, (position_id, candidate_ids) in enumerate(lists.items(), start=1):
        random.shuffle(candidate_ids)
        store.add_ranking_list(
            RankingList(id=list_id, position_id=position_id, list_type="A"),
            [Ranking(list_id=list_id, candidate_id=cid, rank=rank) for rank, cid in enumerate(candidate_ids, start=1)],
        )


def run_simulation(accept_probability=0.4, reply_probability=0.6, hours=96):
    print("=== STARTING END-TO-END DISPATCH SIMULATION ===")

    # 1. Load Data
    random.seed(7)
    store = InMemoryStore()
    build_roster(store)
    store.add_project(Project(id=1, name="Spring Season"))

    needs = [
        store.add_need(VacancyNeed(
            id=None, position_id=1, ranking_list_id=1, quantity=1, project_id=1,
            dispatch_strategy=DispatchStrategy.SEQUENTIAL, response_window_hours=12,
        )),
        store.add_need(VacancyNeed(
            id=None, position_id=2, ranking_list_id=2, quantity=4, project_id=1,
            dispatch_strategy=DispatchStrategy.PARALLEL, response_window_hours=24,
        )),
        store.add_need(VacancyNeed(
            id=None, position_id=3, ranking_list_id=3, quantity=2, project_id=1,
            dispatch_strategy=DispatchStrategy.FIRST_COME, max_offers=6, response_window_hours=24,
        )),
    ]
    print(f"Loaded {len(needs)} Needs for project 'Spring Season'.\n")

    # 2. Configure System
    clock = SimulationClock(datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc))
    policy = DispatchPolicy(conflict_strategy=ConflictStrategy.SMART, batch_delay_seconds=0)
    settings_provider = lambda: policy  # noqa: E731
    batcher = NotificationBatcher(LoggingTransport(), settings_provider=settings_provider)
    engine = DispatchStrategyEngine(store, notifier=batcher, settings_provider=settings_provider, clock=clock)
    tokens = ResponseTokenService(store, engine, clock=clock)
    scheduler = ReminderScheduler(store, engine, settings_provider=settings_provider, clock=clock)

    # 3. Open every need
    for need in needs:
        result = engine.open_need(need.id)
        print(f"Need {need.id} ({need.dispatch_strategy.value}) -> offered {[o.candidate_id for o in result.issued]}")
        for skipped in result.skipped:
            print(f"  skipped candidate {skipped.candidate_id}: {skipped.reason}")
        for warning in result.warnings:
            print(f"  [WARNING] {warning}")

    # 4. Hour by hour: some candidates answer, the scheduler expires and reminds
    for _ in range(hours):
        clock.now += timedelta(hours=1)
        for offer in store.pending_offers():
            if random.random() > reply_probability / 12:
                continue
            live = [t for t in store.tokens_for_offer(offer.id) if t.is_live(clock.now)]
            if not live:
                continue
            answer = "accepted" if random.random() < accept_probability else "declined"
            outcome = tokens.consume(live[-1].token, answer)
            print(f"[{clock.now:%a %H:%M}] candidate {offer.candidate_id} -> need {offer.need_id}: {outcome.outcome.value}")

        report = scheduler.run_tick()
        if report.expired or report.reminded:
            print(f"[{clock.now:%a %H:%M}] tick: {len(report.expired)} expired, {len(report.reminded)} reminded")

        if all(store.get_need(n.id).status == NeedStatus.COMPLETED for n in needs):
            break

    # Save next to the script
    base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    output_path = os.path.join(base_dir, "dispatch_results.csv")

    with open(output_path, "w", newline='') as file:
        writer = csv.writer(file)
        writer.writerow(["need_id", "strategy", "candidate_id", "status", "sent_at", "responded_at", "reminded"])
        for need in needs:
            for offer in store.offers_for_need(need.id):
                writer.writerow([
                    need.id,
                    need.dispatch_strategy.value,
                    offer.candidate_id,
                    offer.status.value,
                    offer.sent_at.isoformat(),
                    offer.responded_at.isoformat() if offer.responded_at else "",
                    "yes" if offer.reminder_sent_at else "no",
                ])

    batcher.shutdown()

    print("\n=== SIMULATION COMPLETE ===")
    for need in needs:
        summary = engine.summary(need.id)
        accepted = [o.candidate_id for o in store.offers_for_need(need.id) if o.status == OfferStatus.ACCEPTED]
        print(f"Need {need.id}: {summary.status.value}, filled {summary.accepted}/{summary.quantity} -> {accepted}")
    print(f"Results written to '{output_path}'.")


if __name__ == "__main__":
    run_simulation()
