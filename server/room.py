"""
Room management for multiplayer Exploding Kittens games.

This module owns the room registry, the mapping between persistent player
identity and transient WebSocket connections, reconnection, and the
per-player state broadcasts after every change.

A Room contains:
    - A unique 6-character code for joining
    - A Game instance with the actual game state
    - A lock serializing every mutation of that game

Identity model:
    connection_id ──IdentityMap──> player_id ──player_rooms──> room code
    The player id is canonical; reconnecting only rebinds the connection.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from fastapi import WebSocket

import errors
from constants import FINISHED_ROOM_RETENTION_SECONDS, ROOM_CODE_ALPHABET, ROOM_CODE_LENGTH
from errors import raise_error
from game import ActionResult, Game, GameState, TimerFactory
from models.events import GameEvent

logger = logging.getLogger(__name__)


@dataclass
class Room:
    """
    A game room that hosts one Exploding Kittens game.

    Attributes:
        code: 6-character room code for joining (e.g., "K3TZ9Q").
        game: The Game instance containing actual game state.
        game_lock: asyncio.Lock for serializing game mutations.
        created_at: Unix timestamp of room creation.
    """

    code: str
    game: Game
    game_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    created_at: float = field(default_factory=time.time)

    def player_ids(self) -> list[str]:
        return [p.id for p in self.game.players]

    def is_empty(self) -> bool:
        """Check if the room has no players."""
        return not self.game.players

    def living_player_count(self) -> int:
        return len(self.game.living_players())

    def to_listing(self) -> dict:
        game = self.game
        return {
            "roomId": self.code,
            "playerCount": len(game.players),
            "maxPlayers": game.max_players,
            "gameState": game.state.value,
            "canJoin": game.state == GameState.WAITING and len(game.players) < game.max_players,
        }


class IdentityMap:
    """
    Bidirectional index between connection ids and persistent player ids.

    A player is reachable through at most one connection; binding a new
    connection replaces the old one.
    """

    def __init__(self) -> None:
        self._player_by_connection: dict[str, str] = {}
        self._connection_by_player: dict[str, str] = {}

    def bind(self, connection_id: str, player_id: str) -> Optional[str]:
        """
        Map ``connection_id`` to ``player_id``.

        Returns:
            The connection previously bound to the player, if any.
        """
        self.unbind_connection(connection_id)
        previous = self.unbind_player(player_id)
        self._player_by_connection[connection_id] = player_id
        self._connection_by_player[player_id] = connection_id
        return previous

    def unbind_connection(self, connection_id: str) -> Optional[str]:
        player_id = self._player_by_connection.pop(connection_id, None)
        if player_id is not None:
            self._connection_by_player.pop(player_id, None)
        return player_id

    def unbind_player(self, player_id: str) -> Optional[str]:
        connection_id = self._connection_by_player.pop(player_id, None)
        if connection_id is not None:
            self._player_by_connection.pop(connection_id, None)
        return connection_id

    def player_for(self, connection_id: str) -> Optional[str]:
        return self._player_by_connection.get(connection_id)

    def connection_for(self, player_id: str) -> Optional[str]:
        return self._connection_by_player.get(player_id)

    def __len__(self) -> int:
        return len(self._player_by_connection)


@dataclass
class JoinResult:
    """Outcome of RoomManager.join_room."""

    room: Room
    reconnected: bool = False
    previous_room_code: Optional[str] = None


class RoomManager:
    """
    Manages all active game rooms and the players connected to them.

    Every operation that takes a ``connection_id`` translates it to the
    persistent player id first. Mutations run under the room's lock and
    finish by pushing a ``game-updated`` projection to each connected
    player of that room.
    """

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        timer_factory: Optional[TimerFactory] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.rooms: dict[str, Room] = {}
        self.player_rooms: dict[str, str] = {}
        self.identities = IdentityMap()
        self.connections: dict[str, WebSocket] = {}
        self._rng = rng or random.Random()
        self._timer_factory = timer_factory
        self._clock = clock
        self._tasks: set[asyncio.Task] = set()

    # -------------------------------------------------------------------------
    # Connections & identity
    # -------------------------------------------------------------------------

    def register_connection(self, connection_id: str, websocket: WebSocket) -> None:
        self.connections[connection_id] = websocket

    def bind_connection(self, connection_id: str, player_id: str) -> None:
        """Associate a connection with a persistent player id."""
        previous = self.identities.bind(connection_id, player_id)
        if previous and previous != connection_id:
            logger.debug(
                f"Player rebound from connection {previous} to {connection_id}",
                extra={"player_id": player_id},
            )

    def player_id_for(self, connection_id: str) -> Optional[str]:
        return self.identities.player_for(connection_id)

    async def handle_disconnect(self, connection_id: str) -> Optional[str]:
        """
        Forget a closed connection but keep its player seated for reconnection.

        Returns:
            The player id that was bound to the connection, if any.
        """
        self.connections.pop(connection_id, None)
        player_id = self.identities.unbind_connection(connection_id)
        if player_id is None:
            return None

        room = self.get_player_room(player_id)
        if room is not None:
            player = room.game.get_player(player_id)
            await self.broadcast(room, {
                "type": "player-disconnected",
                "playerName": player.name if player else None,
                "playerId": player_id,
            }, exclude_player_id=player_id)
            logger.info(
                "Player disconnected",
                extra={"room_code": room.code, "player_id": player_id},
            )
        return player_id

    async def reconnect(
        self,
        connection_id: str,
        player_id: str,
        player_name: Optional[str] = None,
    ) -> Optional[Room]:
        """
        Rebind a returning player's new connection to their room.

        Returns:
            The player's room, or None if they are no longer in one.
        """
        room = self.get_player_room(player_id)
        if room is None:
            return None

        self.bind_connection(connection_id, player_id)
        player = room.game.get_player(player_id)
        await self.broadcast(room, {
            "type": "player-reconnected",
            "playerName": player.name if player else player_name,
            "playerId": player_id,
        }, exclude_player_id=player_id)
        logger.info("Player reconnected", extra={"room_code": room.code, "player_id": player_id})
        return room

    def _require_identity(self, connection_id: str) -> str:
        player_id = self.identities.player_for(connection_id)
        if player_id is None:
            raise_error(errors.NOT_IDENTIFIED, "Must set player name first")
        return player_id

    def _resolve(self, connection_id: str) -> tuple[str, Room]:
        player_id = self._require_identity(connection_id)
        room = self.get_player_room(player_id)
        if room is None:
            raise_error(errors.NOT_IN_ROOM, "Player not in any room")
        return player_id, room

    # -------------------------------------------------------------------------
    # Room registry
    # -------------------------------------------------------------------------

    def _generate_code(self, max_attempts: int = 100) -> str:
        """Generate a unique room code."""
        for _ in range(max_attempts):
            code = "".join(self._rng.choices(ROOM_CODE_ALPHABET, k=ROOM_CODE_LENGTH))
            if code not in self.rooms:
                return code
        raise RuntimeError("Could not generate unique room code")

    def get_room(self, code: Optional[str]) -> Optional[Room]:
        """Get a room by its code (case-insensitive)."""
        if not code or not isinstance(code, str):
            return None
        return self.rooms.get(code.upper())

    def get_player_room(self, player_id: str) -> Optional[Room]:
        code = self.player_rooms.get(player_id)
        if code is None:
            return None
        room = self.rooms.get(code)
        if room is None:
            self.player_rooms.pop(player_id, None)
        return room

    def _new_game(self, code: str) -> Game:
        game = Game(
            room_id=code,
            rng=random.Random(self._rng.random()),
            timer_factory=self._timer_factory or self._locked_timer(code),
        )
        game.set_event_emitter(self._make_emitter(code))
        return game

    def _destroy_room(self, room: Room) -> list[str]:
        """Drop a room, cancel its timers and return the players it held."""
        room.game.shutdown()
        self.rooms.pop(room.code, None)
        affected = []
        for player_id in room.player_ids():
            if self.player_rooms.get(player_id) == room.code:
                del self.player_rooms[player_id]
                affected.append(player_id)
        return affected

    async def create_room(self, connection_id: str, player_name: str) -> Room:
        """
        Create a new room with the caller as its first player.

        A caller already seated elsewhere leaves that room first.
        """
        player_id = self._require_identity(connection_id)
        if player_id in self.player_rooms:
            await self._leave(player_id)

        code = self._generate_code()
        room = Room(code=code, game=self._new_game(code))
        room.game.add_player(player_id, player_name)
        self.rooms[code] = room
        self.player_rooms[player_id] = code

        logger.info(f"Room created by {player_name}", extra={"room_code": code, "player_id": player_id})
        return room

    async def join_room(self, connection_id: str, room_code: Optional[str], player_name: str) -> JoinResult:
        """
        Seat the caller in an existing room.

        Joining the room the player already belongs to is a reconnect and
        leaves the game untouched. Joining a different room leaves the
        previous one, but only once the new room has accepted the player.
        """
        player_id = self._require_identity(connection_id)
        room = self.get_room(room_code)
        if room is None:
            raise_error(errors.ROOM_NOT_FOUND, "Room not found")

        if self.player_rooms.get(player_id) == room.code:
            return JoinResult(room=room, reconnected=True)

        room.game.check_can_join(player_id)
        previous_code = self.player_rooms.get(player_id)
        if previous_code is not None:
            await self._leave(player_id)

        async with room.game_lock:
            if self.rooms.get(room.code) is not room:
                raise_error(errors.ROOM_NOT_FOUND, "Room not found")
            room.game.add_player(player_id, player_name)
            self.player_rooms[player_id] = room.code
            logger.info(f"{player_name} joined", extra={"room_code": room.code, "player_id": player_id})
            await self.broadcast_state(room, {
                "type": "player-joined",
                "player": player_name,
                "message": f"{player_name} joined the game",
            })

        return JoinResult(room=room, previous_room_code=previous_code)

    async def leave_room(self, connection_id: str) -> Optional[str]:
        """
        Leave the caller's room.

        Returns:
            Code of the room that was left.
        """
        player_id = self._require_identity(connection_id)
        if player_id not in self.player_rooms:
            raise_error(errors.NOT_IN_ROOM, "Player not in any room")
        return await self._leave(player_id)

    async def _leave(self, player_id: str) -> Optional[str]:
        code = self.player_rooms.pop(player_id, None)
        room = self.rooms.get(code) if code else None
        if room is None:
            return None

        async with room.game_lock:
            player = room.game.get_player(player_id)
            name = player.name if player else player_id
            room.game.remove_player(player_id)

            if room.is_empty():
                self._destroy_room(room)
                logger.info("Room removed - no players remaining", extra={"room_code": code})
            else:
                await self.broadcast_state(room, {
                    "type": "player-left",
                    "player": name,
                    "message": f"{name} left the game",
                })
        return code

    # -------------------------------------------------------------------------
    # Game commands
    # -------------------------------------------------------------------------

    async def start_game(self, connection_id: str) -> Room:
        player_id, room = self._resolve(connection_id)
        async with room.game_lock:
            room.game.start_game()
            logger.info("Game started", extra={"room_code": room.code, "player_id": player_id})
            await self.broadcast_state(room, {
                "type": "game-started",
                "playerId": player_id,
                "message": "Game started!",
            })
        return room

    async def play_card(
        self,
        connection_id: str,
        card_id: str,
        target_player_id: Optional[str] = None,
        additional_data: Optional[dict] = None,
    ) -> ActionResult:
        player_id, room = self._resolve(connection_id)
        async with room.game_lock:
            result = room.game.play_card(player_id, card_id, target_player_id, additional_data)
            await self.broadcast_state(room, self._action(player_id, "card-played", result.message))
        return result

    async def play_multiple_cards(
        self,
        connection_id: str,
        card_ids: list[str],
        primary_card_id: Optional[str] = None,
        target_player_id: Optional[str] = None,
        additional_data: Optional[dict] = None,
    ) -> ActionResult:
        player_id, room = self._resolve(connection_id)
        async with room.game_lock:
            result = room.game.play_multiple_cards(
                player_id, card_ids, primary_card_id, target_player_id, additional_data
            )
            await self.broadcast_state(room, self._action(player_id, "cards-played", result.message))
        return result

    async def draw_card(self, connection_id: str) -> ActionResult:
        player_id, room = self._resolve(connection_id)
        async with room.game_lock:
            player = room.game.get_player(player_id)
            name = player.name if player else player_id
            result = room.game.draw_card(player_id)
            if result.data.get("exploded"):
                message = f"{name} exploded!"
            elif result.data.get("defused"):
                message = f"{name} defused an Exploding Kitten!"
            else:
                message = f"{name} drew a card"
            await self.broadcast_state(room, self._action(player_id, "card-drawn", message))
        return result

    async def respond_to_pending_action(self, connection_id: str, response: Optional[dict]) -> ActionResult:
        player_id, room = self._resolve(connection_id)
        async with room.game_lock:
            result = room.game.respond_to_pending_action(player_id, response)
            await self.broadcast_state(room, self._action(player_id, "action-response", result.message))
        return result

    async def reset_game(self, connection_id: str) -> Room:
        player_id, room = self._resolve(connection_id)
        async with room.game_lock:
            room.game.reset_game()
            await self.broadcast_state(room, self._action(player_id, "game-reset", "Game has been reset"))
        return room

    @staticmethod
    def _action(player_id: str, action_type: str, message: str) -> dict:
        return {"type": action_type, "playerId": player_id, "message": message}

    # -------------------------------------------------------------------------
    # Timers & game events
    # -------------------------------------------------------------------------

    def _locked_timer(self, room_code: str) -> TimerFactory:
        """Timer factory that fires callbacks under the room's lock."""

        def factory(delay: float, callback: Callable[[], None]) -> asyncio.Task:
            async def fire() -> None:
                await asyncio.sleep(delay)
                room = self.rooms.get(room_code)
                if room is None:
                    return
                async with room.game_lock:
                    callback()

            return asyncio.get_running_loop().create_task(fire())

        return factory

    def _make_emitter(self, room_code: str) -> Callable[[GameEvent], None]:
        def emit(event: GameEvent) -> None:
            if event.is_timer_event:
                self._spawn(self._broadcast_timer_event(room_code, event))

        return emit

    def _spawn(self, coro: Any) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _broadcast_timer_event(self, room_code: str, event: GameEvent) -> None:
        room = self.rooms.get(room_code)
        if room is None:
            logger.debug(f"Dropping {event.event_type.value} for closed room", extra={"room_code": room_code})
            return
        async with room.game_lock:
            if self.rooms.get(room_code) is room:
                await self.broadcast_state(room, event.to_action())

    # -------------------------------------------------------------------------
    # Messaging
    # -------------------------------------------------------------------------

    def _socket_for(self, player_id: str) -> Optional[WebSocket]:
        connection_id = self.identities.connection_for(player_id)
        if connection_id is None:
            return None
        return self.connections.get(connection_id)

    async def _send(self, websocket: WebSocket, message: dict) -> None:
        try:
            await websocket.send_json(message)
        except Exception as e:
            logger.debug(f"Failed to send {message.get('type')}: {e}")

    async def send_to_player(self, player_id: str, message: dict) -> bool:
        websocket = self._socket_for(player_id)
        if websocket is None:
            return False
        await self._send(websocket, message)
        return True

    async def broadcast(self, room: Room, message: dict, exclude_player_id: Optional[str] = None) -> None:
        """Send the same message to every connected player in the room."""
        for player_id in room.player_ids():
            if player_id != exclude_player_id:
                await self.send_to_player(player_id, message)

    async def broadcast_state(self, room: Room, action: Optional[dict] = None) -> None:
        """Push each connected player their own view of the game."""
        for player_id in room.player_ids():
            websocket = self._socket_for(player_id)
            if websocket is None:
                continue
            await self._send(websocket, {
                "type": "game-updated",
                "gameState": room.game.get_state(player_id),
                "action": action,
            })

    # -------------------------------------------------------------------------
    # Housekeeping
    # -------------------------------------------------------------------------

    def _is_stale(self, room: Room, now: float) -> bool:
        game = room.game
        if not game.living_players():
            return True
        if game.state != GameState.FINISHED:
            return False
        last_activity = game.last_activity or room.created_at
        return now - last_activity > FINISHED_ROOM_RETENTION_SECONDS

    async def cleanup_empty_rooms(self, now: Optional[float] = None) -> int:
        """
        Remove rooms with no living players, or finished rooms left idle
        past the retention window, telling their players the room closed.

        Returns:
            Number of rooms removed.
        """
        now = self._clock() if now is None else now
        stale = [room for room in self.rooms.values() if self._is_stale(room, now)]

        for room in stale:
            affected = self._destroy_room(room)
            for player_id in affected:
                await self.send_to_player(player_id, {
                    "type": "room-closed",
                    "message": "The room has been closed due to inactivity.",
                })

        if stale:
            logger.info(f"Cleaned up {len(stale)} empty rooms")
        return len(stale)

    def room_list(self) -> list[dict]:
        return [room.to_listing() for room in self.rooms.values()]

    def get_stats(self) -> dict:
        states = [room.game.state for room in self.rooms.values()]
        return {
            "totalRooms": len(self.rooms),
            "totalPlayers": len(self.player_rooms),
            "activeGames": states.count(GameState.PLAYING),
            "waitingRooms": states.count(GameState.WAITING),
            "finishedGames": states.count(GameState.FINISHED),
            "connectedSockets": len(self.identities),
        }

    async def shutdown(self) -> None:
        """Cancel every room's timers and any in-flight broadcasts."""
        for room in list(self.rooms.values()):
            room.game.shutdown()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
