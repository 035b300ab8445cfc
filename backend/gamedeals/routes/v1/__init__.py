"""
Version 1 of the Game Deals API
"""

from typing import List

from gamedeals.routes.base import Endpoint

from .admin import CreateAdmin
from .auth import Login
from .authorization import AddPolicies, ListPolicies
from .deal import CreateDeal, ListDeals
from .game import CreateGame, ListGames
from .health import Health
from .user import CreateUser, ListUsersNonSecure


def endpoints() -> List[Endpoint]:
    """Every v1 endpoint, one instance each"""
    return [
        Health(),
        Login(),
        CreateUser(),
        ListUsersNonSecure(),
        CreateAdmin(),
        CreateGame(),
        ListGames(),
        CreateDeal(),
        ListDeals(),
        AddPolicies(),
        ListPolicies(),
    ]
