import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from staffing import models
from staffing.services import get_batcher, reset_services
from staffing.store import DjangoStore
from staffing.settings_provider import load_policy
from vacancies.policy import ConflictStrategy

pytestmark = pytest.mark.django_db


@pytest.fixture(autouse=True)
def engine_services(settings):
    settings.NOTIFY_BASE_URL = None
    settings.CRON_SECRET = "tick-secret"
    reset_services()
    yield
    reset_services()


@pytest.fixture
def admin_client():
    user = get_user_model().objects.create_superuser("admin", "admin@example.org", "pw")
    client = APIClient()
    client.force_authenticate(user=user)
    return client


@pytest.fixture
def need():
    """
    Parallel need for two violinists; four ranked candidates.
    """
    violin = models.Position.objects.create(name="Violin 1", category="Strings", hierarchy_level=1)
    ranking_list = models.RankingList.objects.create(position=violin, list_type="A")
    for rank in range(1, 5):
        candidate = models.Candidate.objects.create(
            first_name=f"First{rank}", last_name=f"Last{rank}", email=f"c{rank}@example.org",
        )
        candidate.qualifications.add(violin)
        models.Ranking.objects.create(ranking_list=ranking_list, candidate=candidate, rank=rank)
    return models.VacancyNeed.objects.create(
        position=violin,
        ranking_list=ranking_list,
        quantity=2,
        dispatch_strategy=models.VacancyNeed.Strategy.PARALLEL,
        response_window_hours=8,
    )


def _token(need, rank):
    offer = models.Offer.objects.get(need=need, candidate__rankings__rank=rank)
    return offer.tokens.order_by('id').last().token


def test_admin_endpoints_require_staff(need):
    response = APIClient().post(f"/api/v1/needs/{need.id}/open/")

    assert response.status_code in (401, 403)
    assert not models.Offer.objects.exists()


def test_open_creates_offers_and_tokens(admin_client, need):
    response = admin_client.post(f"/api/v1/needs/{need.id}/open/")

    assert response.status_code == 200
    assert response.data["issued"] == [c.id for c in models.Candidate.objects.order_by('id')[:2]]
    assert models.Offer.objects.filter(need=need, status="pending").count() == 2
    assert models.ResponseToken.objects.filter(offer__need=need).count() == 2
    need.refresh_from_db()
    assert need.status == "active"


def test_respond_flow(admin_client, need):
    admin_client.post(f"/api/v1/needs/{need.id}/open/")
    token = _token(need, 1)
    public = APIClient()

    page = public.get("/api/v1/respond", {"token": token})
    assert page.status_code == 200
    assert page.data["valid"] is True
    assert page.data["offer"]["positionName"] == "Violin 1"

    answer = public.post("/api/v1/respond", {"token": token, "response": "accepted"}, format="json")
    assert answer.status_code == 200
    assert answer.data["outcome"] == "accepted"
    assert answer.data["success"] is True

    replay = public.post("/api/v1/respond", {"token": token, "response": "declined"}, format="json")
    assert replay.status_code == 200
    assert replay.data["outcome"] == "already_responded"
    assert models.Offer.objects.get(tokens__token=token).status == "accepted"


def test_respond_without_token():
    response = APIClient().get("/api/v1/respond")

    assert response.status_code == 400
    assert response.data["valid"] is False


def test_respond_rejects_unknown_answer(admin_client, need):
    admin_client.post(f"/api/v1/needs/{need.id}/open/")

    response = APIClient().post("/api/v1/respond", {"token": _token(need, 1), "response": "maybe"}, format="json")

    assert response.status_code == 400


def test_quantity_below_accepted_is_a_conflict(admin_client, need):
    admin_client.post(f"/api/v1/needs/{need.id}/open/")
    client = APIClient()
    client.post("/api/v1/respond", {"token": _token(need, 1), "response": "accepted"}, format="json")
    client.post("/api/v1/respond", {"token": _token(need, 2), "response": "accepted"}, format="json")

    response = admin_client.patch(f"/api/v1/needs/{need.id}/quantity/", {"quantity": 1}, format="json")

    assert response.status_code == 409
    assert response.data["accepted"] == 2
    need.refresh_from_db()
    assert need.quantity == 2


def test_summary_and_missing_need(admin_client, need):
    admin_client.post(f"/api/v1/needs/{need.id}/open/")

    summary = admin_client.get(f"/api/v1/needs/{need.id}/summary/")
    missing = admin_client.get("/api/v1/needs/9999/summary/")

    assert summary.data["pending"] == 2
    assert summary.data["remaining"] == 2
    assert missing.status_code == 404


def test_preview_does_not_send(admin_client, need):
    response = admin_client.get(f"/api/v1/needs/{need.id}/preview/")

    assert response.status_code == 200
    assert len(response.data["wouldOffer"]) == 2
    assert not models.Offer.objects.exists()


def test_cron_tick_requires_secret(need):
    client = APIClient()

    assert client.post("/api/v1/cron/tick").status_code == 401
    assert client.post("/api/v1/cron/tick", HTTP_AUTHORIZATION="Bearer wrong").status_code == 401

    response = client.post("/api/v1/cron/tick", HTTP_AUTHORIZATION="Bearer tick-secret")
    assert response.status_code == 200
    assert response.data["expired"] == 0


def test_send_progress(admin_client, need):
    opened = admin_client.post(f"/api/v1/needs/{need.id}/open/")
    get_batcher().wait(opened.data["sessionId"], timeout=5)

    unknown = admin_client.get("/api/v1/send-progress", {"sessionId": "nope"})
    known = admin_client.get("/api/v1/send-progress", {"sessionId": opened.data["sessionId"]})

    assert unknown.data["status"] == "idle"
    assert known.data["status"] == "completed"
    assert known.data["sent"] == 2
    assert admin_client.get("/api/v1/send-progress").status_code == 400


def test_engine_settings_are_read_each_cycle():
    assert load_policy().conflict_strategy == ConflictStrategy.SIMPLE

    models.EngineSetting.objects.create(key="ranking_conflict_strategy", value="smart")
    models.EngineSetting.objects.create(key="reminder_percentage", value="500")

    policy = load_policy()
    assert policy.conflict_strategy == ConflictStrategy.SMART
    assert policy.reminder_percentage == 75


def test_candidate_lock_is_taken_without_waiting(need):
    store = DjangoStore()
    candidate = models.Candidate.objects.order_by('id').first()

    with store.atomic(need.id):
        assert store.lock_candidate(candidate.id) is True
        assert store.lock_candidate(candidate.id + 1000) is False
