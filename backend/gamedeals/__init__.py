"""
Game Deals backend
Game deal listing API with policy-based authorization
"""

__version__ = "1.0.0"
