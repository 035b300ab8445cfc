"""
Game Routes
"""

import logging
from typing import List, Optional

from pydantic import BaseModel, Field

from gamedeals.database import Game
from gamedeals.models.authorization_models import (
    AuthorizationRequest,
    GameAction,
    ResourceKind,
    ResourceURI,
)
from gamedeals.routes.base import QUERY_LIMIT, Endpoint, EndpointRequest
from gamedeals.utils.logging_security import sanitize_id_for_log

logger = logging.getLogger(__name__)


class CreateGameRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    image_url: Optional[str] = None


class ListGamesQuery(BaseModel):
    offset: int = Field(default=0, ge=0)


class CreateGame(Endpoint):
    method = "POST"
    path = "/api/v1/game"
    body_model = CreateGameRequest

    async def authorization(self, req: EndpointRequest[CreateGameRequest]) -> List[AuthorizationRequest]:
        return [AuthorizationRequest.of(ResourceURI(ResourceKind.GAME), GameAction.CREATE)]

    async def handle(self, req: EndpointRequest[CreateGameRequest]) -> dict:
        body = req.body()

        def insert() -> Game:
            game = Game(name=body.name, image_url=body.image_url)
            req.db.add(game)
            req.db.commit()
            req.db.refresh(game)
            return game

        game = await req.run_sync(insert)
        logger.info(f"Game {sanitize_id_for_log(game.id)} created by {req.subject}")
        return {"game": game.to_dict()}


class ListGames(Endpoint):
    method = "GET"
    path = "/api/v1/game"

    async def authorization(self, req: EndpointRequest) -> List[AuthorizationRequest]:
        req.state["params"] = req.query(ListGamesQuery)
        return [AuthorizationRequest.of(ResourceURI(ResourceKind.GAME, "*"), GameAction.RETRIEVE)]

    async def handle(self, req: EndpointRequest) -> dict:
        params: ListGamesQuery = req.state["params"]

        def fetch() -> List[Game]:
            return req.db.query(Game).order_by(Game.id).offset(params.offset).limit(QUERY_LIMIT).all()

        games = await req.run_sync(fetch)
        next_offset = -1 if len(games) < QUERY_LIMIT else params.offset + QUERY_LIMIT
        return {"games": [game.to_dict() for game in games], "next_offset": next_offset}
