"""
Room listing and server stats API.

Provides public read-only endpoints for the lobby screen:
- /api/rooms - Rooms and whether they can be joined
- /api/stats - Room and player counts
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["rooms"])


# =============================================================================
# Response Models
# =============================================================================


class RoomListingResponse(BaseModel):
    """Single room in the lobby listing."""
    room_id: str = Field(alias="roomId")
    player_count: int = Field(alias="playerCount")
    max_players: int = Field(alias="maxPlayers")
    game_state: str = Field(alias="gameState")
    can_join: bool = Field(alias="canJoin")


class StatsResponse(BaseModel):
    """Server-wide counts."""
    total_rooms: int = Field(alias="totalRooms")
    total_players: int = Field(alias="totalPlayers")
    active_games: int = Field(alias="activeGames")
    waiting_rooms: int = Field(alias="waitingRooms")
    finished_games: int = Field(alias="finishedGames")
    connected_sockets: int = Field(alias="connectedSockets")


# =============================================================================
# Dependencies
# =============================================================================

# Set by main.py during startup
_room_manager = None


def set_room_manager(room_manager) -> None:
    """Set the room manager instance (called from main.py)."""
    global _room_manager
    _room_manager = room_manager


def get_room_manager_dep():
    """Dependency to get the room manager."""
    if _room_manager is None:
        raise HTTPException(status_code=503, detail="Room manager not initialized")
    return _room_manager


# =============================================================================
# Endpoints
# =============================================================================


@router.get("/rooms", response_model=list[RoomListingResponse])
async def list_rooms(
    joinable: Optional[bool] = Query(None),
    room_manager=Depends(get_room_manager_dep),
):
    """
    List live rooms.

    Pass ``joinable=true`` to only get rooms that are waiting and not full.
    """
    rooms = room_manager.room_list()
    if joinable is not None:
        rooms = [r for r in rooms if r["canJoin"] == joinable]
    return rooms


@router.get("/stats", response_model=StatsResponse)
async def get_stats(room_manager=Depends(get_room_manager_dep)):
    """Room and player counts across the server."""
    return room_manager.get_stats()
