"""
Deal Routes
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import status
from pydantic import BaseModel, Field, model_validator

from gamedeals.database import Deal, Game
from gamedeals.middleware.error_handling import EndpointError
from gamedeals.models.authorization_models import (
    AuthorizationRequest,
    DealAction,
    ResourceKind,
    ResourceURI,
)
from gamedeals.routes.base import QUERY_LIMIT, Endpoint, EndpointRequest
from gamedeals.utils.logging_security import sanitize_id_for_log

logger = logging.getLogger(__name__)


class DealFields(BaseModel):
    game_id: int
    image_url: Optional[str] = None
    link: str = Field(min_length=1)
    price: int = Field(ge=0, description="Price in cents")
    start_date: datetime
    end_date: datetime

    @model_validator(mode="after")
    def end_after_start(self) -> "DealFields":
        # Stored as naive UTC
        for name in ("start_date", "end_date"):
            value = getattr(self, name)
            if value.tzinfo is not None:
                setattr(self, name, value.astimezone(timezone.utc).replace(tzinfo=None))
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class CreateDealRequest(BaseModel):
    deal: DealFields


class ListDealsQuery(BaseModel):
    # Index of the first deal, ordered by start date
    offset: int = Field(default=0, ge=0)
    # Include deals which have not started yet
    before_start: bool = False
    # Include deals which have already ended
    expired: bool = False


class CreateDeal(Endpoint):
    """Post a new deal for an existing game"""

    method = "POST"
    path = "/api/v1/deal"
    body_model = CreateDealRequest

    async def authorization(self, req: EndpointRequest[CreateDealRequest]) -> List[AuthorizationRequest]:
        return [AuthorizationRequest.of(ResourceURI(ResourceKind.DEAL), DealAction.CREATE)]

    async def handle(self, req: EndpointRequest[CreateDealRequest]) -> dict:
        if req.user is None:
            # Deals need an author
            raise EndpointError.unauthenticated()

        fields = req.body().deal

        def insert() -> Deal:
            game = req.db.query(Game).filter(Game.id == fields.game_id).first()
            if game is None:
                raise EndpointError(status.HTTP_404_NOT_FOUND, f"Game with ID {fields.game_id} does not exist")

            deal = Deal(
                author_id=req.user.id,
                game_id=game.id,
                image_url=fields.image_url,
                link=fields.link,
                price=fields.price,
                start_date=fields.start_date,
                end_date=fields.end_date,
            )
            req.db.add(deal)
            req.db.commit()
            req.db.refresh(deal)
            return deal

        deal = await req.run_sync(insert)
        logger.info(f"Deal {sanitize_id_for_log(deal.id)} created by user {sanitize_id_for_log(req.user.id)}")
        return {"deal": deal.to_dict()}


class ListDeals(Endpoint):
    """Page through deals ordered by start date"""

    method = "GET"
    path = "/api/v1/deal"

    async def authorization(self, req: EndpointRequest) -> List[AuthorizationRequest]:
        req.state["params"] = req.query(ListDealsQuery)
        return [AuthorizationRequest.of(ResourceURI(ResourceKind.DEAL, "*"), DealAction.RETRIEVE)]

    async def handle(self, req: EndpointRequest) -> dict:
        params: ListDealsQuery = req.state["params"]
        now = datetime.utcnow()

        def fetch() -> List[Deal]:
            query = req.db.query(Deal)
            if not params.before_start:
                query = query.filter(Deal.start_date <= now)
            if not params.expired:
                query = query.filter(Deal.end_date > now)
            return query.order_by(Deal.start_date, Deal.id).offset(params.offset).limit(QUERY_LIMIT).all()

        deals = await req.run_sync(fetch)
        next_offset = -1 if len(deals) < QUERY_LIMIT else params.offset + QUERY_LIMIT
        return {"deals": [deal.to_dict() for deal in deals], "next_offset": next_offset}
