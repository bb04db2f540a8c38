"""
test_challenges.py — Community challenges and community stats.

Covers:
  - create / list running challenges, soonest ending first
  - join: once per user, only while running, 404 for unknown ids
  - complete: pays points through the ledger exactly once
  - community totals and top savers
  - /api/v1/community routes
"""

from datetime import datetime, timedelta, timezone

import pytest
from pymongo.errors import PyMongoError

from hydrozen.core.errors import ConflictError, NotFoundError
from hydrozen.models.leakage import ImageVerdict
from hydrozen.models.ledger import ACTION_CHALLENGE_COMPLETED, ChallengeCreate
from hydrozen.services.challenges import CommunityBoard

USER = "user-1"
VERDICT = ImageVerdict(is_leakage=True, confidence=0.95, description="dripping pipe")
BASE = "/api/v1/community"


def _challenge(title="Shorter showers", days=7, points=100, started_days_ago=1):
    start = datetime.now(tz=timezone.utc) - timedelta(days=started_days_ago)
    return ChallengeCreate(
        title=title,
        description="Keep every shower under five minutes",
        start_date=start,
        end_date=start + timedelta(days=days),
        points=points,
    )


@pytest.fixture()
def board(fake_db, ledger):
    return CommunityBoard(fake_db, ledger)


class TestChallengeModel:
    def test_end_must_follow_start(self):
        now = datetime.now(tz=timezone.utc)
        with pytest.raises(ValueError):
            ChallengeCreate(title="Backwards", start_date=now, end_date=now - timedelta(days=1), points=10)

    def test_points_must_be_positive(self):
        now = datetime.now(tz=timezone.utc)
        with pytest.raises(ValueError):
            ChallengeCreate(title="Free", start_date=now, end_date=now + timedelta(days=1), points=0)


class TestListAndJoin:
    @pytest.mark.asyncio
    async def test_created_challenge_is_listed(self, board):
        created = await board.create_challenge(_challenge())
        running = await board.get_active_challenges()
        assert [c.id for c in running] == [created.id]
        assert running[0].participants == 0

    @pytest.mark.asyncio
    async def test_soonest_ending_first(self, board):
        await board.create_challenge(_challenge("Month long", days=30))
        await board.create_challenge(_challenge("Weekend", days=3))
        titles = [c.title for c in await board.get_active_challenges()]
        assert titles == ["Weekend", "Month long"]

    @pytest.mark.asyncio
    async def test_ended_challenge_is_not_listed(self, board):
        await board.create_challenge(_challenge("Last month", days=5, started_days_ago=40))
        assert await board.get_active_challenges() == []

    @pytest.mark.asyncio
    async def test_join_counts_participant(self, board):
        created = await board.create_challenge(_challenge())
        participant = await board.join_challenge(USER, created.id)
        assert participant.user_id == USER
        assert participant.completed_at is None
        assert (await board.get_active_challenges())[0].participants == 1

    @pytest.mark.asyncio
    async def test_second_join_conflicts(self, board):
        created = await board.create_challenge(_challenge())
        await board.join_challenge(USER, created.id)
        with pytest.raises(ConflictError):
            await board.join_challenge(USER, created.id)

    @pytest.mark.asyncio
    async def test_join_ended_challenge_conflicts(self, board):
        created = await board.create_challenge(_challenge(days=5, started_days_ago=40))
        with pytest.raises(ConflictError):
            await board.join_challenge(USER, created.id)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("challenge_id", ["0123456789abcdef01234567", "not-an-object-id"])
    async def test_join_unknown_challenge_is_not_found(self, board, challenge_id):
        with pytest.raises(NotFoundError):
            await board.join_challenge(USER, challenge_id)


class TestComplete:
    @pytest.mark.asyncio
    async def test_completion_pays_points(self, board, ledger):
        created = await board.create_challenge(_challenge(points=150))
        await board.join_challenge(USER, created.id)
        participant = await board.complete_challenge(USER, created.id)

        assert participant.points_earned == 150
        assert participant.completed_at is not None
        assert (await ledger.get_stats(USER)).points == 150
        history = await ledger.get_points_history(USER)
        assert [(h.action, h.points) for h in history] == [(ACTION_CHALLENGE_COMPLETED, 150)]
        assert history[0].description == "Completed challenge: Shorter showers"

    @pytest.mark.asyncio
    async def test_completion_unlocks_achievements(self, board, ledger):
        created = await board.create_challenge(_challenge(points=200))
        await board.join_challenge(USER, created.id)
        await board.complete_challenge(USER, created.id)
        unlocked = {row.achievement_id for row in await ledger.get_user_achievements(USER)}
        assert unlocked == {"novice-reporter", "active-citizen"}

    @pytest.mark.asyncio
    async def test_second_completion_conflicts(self, board, ledger):
        created = await board.create_challenge(_challenge())
        await board.join_challenge(USER, created.id)
        await board.complete_challenge(USER, created.id)
        with pytest.raises(ConflictError):
            await board.complete_challenge(USER, created.id)
        assert (await ledger.get_stats(USER)).points == 100

    @pytest.mark.asyncio
    async def test_complete_without_joining_is_not_found(self, board):
        created = await board.create_challenge(_challenge())
        with pytest.raises(NotFoundError):
            await board.complete_challenge(USER, created.id)

    @pytest.mark.asyncio
    async def test_failed_award_undoes_completion(self, board, fake_db):
        created = await board.create_challenge(_challenge())
        await board.join_challenge(USER, created.id)
        fake_db["user_stats"].fail_on.add("find_one_and_update")

        with pytest.raises(PyMongoError):
            await board.complete_challenge(USER, created.id)

        row = fake_db["challenge_participants"].docs[0]
        assert row["completed_at"] is None
        assert row["points_earned"] == 0

        fake_db["user_stats"].fail_on.clear()
        participant = await board.complete_challenge(USER, created.id)
        assert participant.points_earned == 100

    @pytest.mark.asyncio
    async def test_top_performers_listed(self, board):
        created = await board.create_challenge(_challenge())
        for user in ("user-1", "user-2"):
            await board.join_challenge(user, created.id)
        await board.complete_challenge("user-2", created.id)
        listed = (await board.get_active_challenges())[0]
        assert listed.participants == 2
        assert [p.user_id for p in listed.top_performers] == ["user-2"]


class TestCommunityStats:
    @pytest.mark.asyncio
    async def test_empty_community(self, board):
        stats = await board.get_community_stats()
        assert (stats.total_users, stats.total_water_saved, stats.total_leaks_reported) == (0, 0.0, 0)
        assert stats.top_savers == []

    @pytest.mark.asyncio
    async def test_totals_across_users(self, board, ledger):
        await ledger.apply_leak_reward("user-1", VERDICT, "mock://a.jpg")
        await ledger.apply_leak_reward("user-2", VERDICT, "mock://b.jpg")
        await ledger.apply_usage_delta("user-2", 200, 300)
        await ledger.apply_usage_delta("user-3", 250, 300)
        created = await board.create_challenge(_challenge())
        await board.join_challenge("user-1", created.id)
        await board.complete_challenge("user-1", created.id)

        stats = await board.get_community_stats()
        assert stats.total_users == 3
        assert stats.total_water_saved == 150
        assert stats.total_leaks_reported == 2
        assert stats.total_challenges_completed == 1
        assert [(s.user_id, s.water_saved_litres) for s in stats.top_savers] == [("user-2", 100), ("user-3", 50)]


class TestCommunityRoutes:
    @pytest.mark.asyncio
    async def test_list_is_public(self, client, board):
        await board.create_challenge(_challenge())
        r = await client.get(f"{BASE}/challenges")
        assert r.status_code == 200
        assert r.json()[0]["title"] == "Shorter showers"

    @pytest.mark.asyncio
    async def test_join_requires_auth(self, client, board):
        created = await board.create_challenge(_challenge())
        r = await client.post(f"{BASE}/challenges/{created.id}/join")
        assert r.status_code == 401

    @pytest.mark.asyncio
    async def test_join_returns_201_then_409(self, client, auth, board):
        created = await board.create_challenge(_challenge())
        first = await client.post(f"{BASE}/challenges/{created.id}/join", headers=auth)
        assert first.status_code == 201
        assert first.json()["challenge_id"] == created.id
        second = await client.post(f"{BASE}/challenges/{created.id}/join", headers=auth)
        assert second.status_code == 409
        assert second.json()["error"] == "ConflictError"

    @pytest.mark.asyncio
    async def test_join_unknown_is_404(self, client, auth):
        r = await client.post(f"{BASE}/challenges/0123456789abcdef01234567/join", headers=auth)
        assert r.status_code == 404

    @pytest.mark.asyncio
    async def test_stats(self, client, ledger):
        await ledger.apply_usage_delta(USER, 250, 300)
        r = await client.get(f"{BASE}/stats")
        assert r.status_code == 200
        data = r.json()
        assert data["total_water_saved"] == 50
        assert data["top_savers"] == [{"user_id": USER, "water_saved_litres": 50.0}]
