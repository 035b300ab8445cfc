"""
Game Deals Utility Functions
"""
