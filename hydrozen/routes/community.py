"""
community.py — Community challenges and community-wide totals.

Routes:
  GET  /api/v1/community/challenges                     — running challenges (public)
  POST /api/v1/community/challenges/{challenge_id}/join — join as the token's user
  GET  /api/v1/community/stats                          — users, water saved, leaks, completions (public)

Creating challenges and marking completions are operator actions, done with
scripts/challenge_admin.py rather than over the API.
"""

from fastapi import APIRouter, Depends, status

from hydrozen.core.security import CurrentUserId
from hydrozen.models.ledger import Challenge, ChallengeParticipant, CommunityStats
from hydrozen.routes.deps import get_community_board
from hydrozen.services.challenges import CommunityBoard

router = APIRouter(prefix="/api/v1/community", tags=["community"])

BoardDep = Depends(get_community_board)


@router.get("/challenges", response_model=list[Challenge])
async def list_challenges(board: CommunityBoard = BoardDep):
    return await board.get_active_challenges()


@router.post(
    "/challenges/{challenge_id}/join",
    response_model=ChallengeParticipant,
    status_code=status.HTTP_201_CREATED,
)
async def join_challenge(challenge_id: str, user_id: CurrentUserId, board: CommunityBoard = BoardDep):
    """404 for an unknown challenge, 409 when it has ended or was already joined."""
    return await board.join_challenge(user_id, challenge_id)


@router.get("/stats", response_model=CommunityStats)
async def community_stats(board: CommunityBoard = BoardDep):
    return await board.get_community_stats()
