"""
Сессия: жизненный цикл конвейера и каналы к наблюдателю.
"""
from petsound.session.channel import ErrorStream, ResultChannel
from petsound.session.controller import SessionController, SessionState, SessionStats

__all__ = [
    "ResultChannel",
    "ErrorStream",
    "SessionController",
    "SessionState",
    "SessionStats",
]
