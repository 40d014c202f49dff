"""Core application logic on top of the document store.

Modules:
- accounts: signup, PIN login, active user
- classes: class creation, join codes, teacher deletes
- leaderboard: star/score ranking of students
"""

__all__ = [
    "accounts",
    "classes",
    "leaderboard",
]
