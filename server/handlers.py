"""WebSocket message handlers for the Exploding Kittens server.

Each handler corresponds to a single message type from the client.
Handlers are dispatched via the HANDLERS dict; ``dispatch`` turns a rejected
command into an ``error`` message for the originating connection only.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from typing import Optional

from fastapi import WebSocket

import errors
from constants import MAX_CHAT_MESSAGE_LENGTH, MAX_PLAYER_NAME_LENGTH
from errors import GameError, raise_error

logger = logging.getLogger(__name__)


@dataclass
class ConnectionContext:
    """State tracked per WebSocket connection."""

    websocket: WebSocket
    connection_id: str
    player_id: Optional[str] = None
    player_name: Optional[str] = None


def _require_lobby(ctx: ConnectionContext) -> None:
    if not ctx.player_id or not ctx.player_name:
        raise_error(errors.NOT_IDENTIFIED, "Must set player name first")


def _field(data: dict, key: str, kind: type = str):
    """Read an optional payload field, rejecting values of the wrong JSON type."""
    value = data.get(key)
    if value is not None and not isinstance(value, kind):
        raise_error(errors.INVALID_REQUEST, f"{key} has the wrong type")
    return value


# ---------------------------------------------------------------------------
# Lobby / Room handlers
# ---------------------------------------------------------------------------

async def handle_join_lobby(data: dict, ctx: ConnectionContext, *, room_manager, **kw) -> None:
    name = (_field(data, "playerName") or "").strip()[:MAX_PLAYER_NAME_LENGTH]
    if not name:
        raise_error(errors.INVALID_REQUEST, "Player name is required")

    player_id = _field(data, "playerId")
    if not player_id or player_id == ctx.connection_id:
        player_id = str(uuid.uuid4())
        logger.debug(f"New player joined: {name}", extra={"player_id": player_id})
    else:
        logger.debug(f"Player returning: {name}", extra={"player_id": player_id})

    ctx.player_id = player_id
    ctx.player_name = name
    room_manager.bind_connection(ctx.connection_id, player_id)

    await ctx.websocket.send_json({
        "type": "lobby-joined",
        "success": True,
        "playerId": player_id,
        "playerName": name,
    })


async def handle_create_room(data: dict, ctx: ConnectionContext, *, room_manager, **kw) -> None:
    _require_lobby(ctx)
    room = await room_manager.create_room(ctx.connection_id, ctx.player_name)

    await ctx.websocket.send_json({
        "type": "room-created",
        "success": True,
        "roomId": room.code,
        "gameState": room.game.get_state(ctx.player_id),
    })


async def handle_join_room(data: dict, ctx: ConnectionContext, *, room_manager, **kw) -> None:
    _require_lobby(ctx)
    result = await room_manager.join_room(ctx.connection_id, _field(data, "roomId"), ctx.player_name)

    await ctx.websocket.send_json({
        "type": "room-joined-success",
        "success": True,
        "roomId": result.room.code,
        "gameState": result.room.game.get_state(ctx.player_id),
        "reconnected": result.reconnected,
    })


async def handle_leave_room(data: dict, ctx: ConnectionContext, *, room_manager, **kw) -> None:
    room_code = await room_manager.leave_room(ctx.connection_id)
    await ctx.websocket.send_json({"type": "left-room", "roomId": room_code})


async def handle_reconnect_attempt(data: dict, ctx: ConnectionContext, *, room_manager, **kw) -> None:
    player_id = _field(data, "playerId")
    player_name = _field(data, "playerName")
    if not player_id:
        await ctx.websocket.send_json({
            "type": "reconnected",
            "success": False,
            "message": "No player ID provided",
        })
        return

    room = await room_manager.reconnect(ctx.connection_id, player_id, player_name)
    if room is None:
        await ctx.websocket.send_json({
            "type": "reconnected",
            "success": False,
            "message": "Could not reconnect to previous game",
        })
        return

    player = room.game.get_player(player_id)
    ctx.player_id = player_id
    ctx.player_name = player.name if player else player_name
    await ctx.websocket.send_json({
        "type": "reconnected",
        "success": True,
        "roomId": room.code,
        "gameState": room.game.get_state(player_id),
    })


async def handle_get_game_state(data: dict, ctx: ConnectionContext, *, room_manager, **kw) -> None:
    _require_lobby(ctx)
    room = room_manager.get_player_room(ctx.player_id)
    if room is None:
        raise_error(errors.NOT_IN_ROOM, "Not in a game")

    await ctx.websocket.send_json({
        "type": "game-state",
        "gameState": room.game.get_state(ctx.player_id),
    })


async def handle_chat_message(data: dict, ctx: ConnectionContext, *, room_manager, **kw) -> None:
    if not ctx.player_id or not ctx.player_name:
        return
    room = room_manager.get_player_room(ctx.player_id)
    text = (_field(data, "message") or "").strip()[:MAX_CHAT_MESSAGE_LENGTH]
    if room is None or not text:
        return

    await room_manager.broadcast(room, {
        "type": "chat-message",
        "playerName": ctx.player_name,
        "message": text,
        "timestamp": int(time.time() * 1000),
    }, exclude_player_id=ctx.player_id)


# ---------------------------------------------------------------------------
# Game action handlers
# ---------------------------------------------------------------------------

async def handle_start_game(data: dict, ctx: ConnectionContext, *, room_manager, **kw) -> None:
    await room_manager.start_game(ctx.connection_id)


async def handle_play_card(data: dict, ctx: ConnectionContext, *, room_manager, **kw) -> None:
    result = await room_manager.play_card(
        ctx.connection_id,
        _field(data, "cardId"),
        _field(data, "targetPlayerId"),
        _field(data, "additionalData", dict),
    )

    # See Future: only the player who played it gets the cards
    if "topCards" in result.data:
        await ctx.websocket.send_json({
            "type": "see-future",
            "topCards": result.data["topCards"],
        })


async def handle_play_multiple_cards(data: dict, ctx: ConnectionContext, *, room_manager, **kw) -> None:
    card_ids = data.get("cardIds")
    if not isinstance(card_ids, list) or not all(isinstance(c, str) for c in card_ids):
        raise_error(errors.INVALID_REQUEST, "cardIds must be a list of card ids")

    result = await room_manager.play_multiple_cards(
        ctx.connection_id,
        card_ids,
        _field(data, "primaryCardId"),
        _field(data, "targetPlayerId"),
        _field(data, "additionalData", dict),
    )

    if "topCards" in result.data:
        await ctx.websocket.send_json({
            "type": "see-future",
            "topCards": result.data["topCards"],
        })


async def handle_draw_card(data: dict, ctx: ConnectionContext, *, room_manager, **kw) -> None:
    result = await room_manager.draw_card(ctx.connection_id)

    if result.data.get("exploded"):
        await ctx.websocket.send_json({
            "type": "player-exploded",
            "message": result.message,
            "gameEnded": result.data["gameEnded"],
        })


async def handle_respond_to_action(data: dict, ctx: ConnectionContext, *, room_manager, **kw) -> None:
    _field(data, "cardId")
    if not isinstance(data.get("position"), (int, str, type(None))):
        raise_error(errors.INVALID_REQUEST, "position has the wrong type")
    await room_manager.respond_to_pending_action(ctx.connection_id, data)


async def handle_reset_game(data: dict, ctx: ConnectionContext, *, room_manager, **kw) -> None:
    await room_manager.reset_game(ctx.connection_id)


# ---------------------------------------------------------------------------
# Handler dispatch table
# ---------------------------------------------------------------------------

HANDLERS = {
    "join-lobby": handle_join_lobby,
    "create-room": handle_create_room,
    "join-room": handle_join_room,
    "leave-room": handle_leave_room,
    "reconnect-attempt": handle_reconnect_attempt,
    "get-game-state": handle_get_game_state,
    "chat-message": handle_chat_message,
    "start-game": handle_start_game,
    "play-card": handle_play_card,
    "play-multiple-cards": handle_play_multiple_cards,
    "draw-card": handle_draw_card,
    "respond-to-action": handle_respond_to_action,
    "reset-game": handle_reset_game,
}


async def dispatch(data: dict, ctx: ConnectionContext, **deps) -> None:
    """Route one inbound message, reporting failures to the sender only."""
    message_type = data.get("type") if isinstance(data, dict) else None
    handler = HANDLERS.get(message_type)
    if handler is None:
        await ctx.websocket.send_json(
            GameError(errors.UNKNOWN_MESSAGE, f"Unknown message type: {message_type}").to_dict()
        )
        return

    try:
        await handler(data, ctx, **deps)
    except GameError as e:
        if e.code == errors.INTERNAL_ERROR:
            logger.error(f"{message_type} failed: {e}", extra={"player_id": ctx.player_id})
        else:
            logger.debug(f"{message_type} rejected: {e}", extra={"player_id": ctx.player_id})
        await ctx.websocket.send_json(e.to_dict())
