"""
Game Deals Models Package
Resource naming and action vocabulary shared by the API and the authorization engine
"""
