# context.py
"""
Who is acting on the current request.

The file manager never authenticates anybody. The host application records
the client IP and user id here once per request so that audit and security
log lines can name them.
"""
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional, Union

from pydantic import BaseModel


class Actor(BaseModel):
    ip: Optional[str] = None
    user_id: Optional[Union[int, str]] = None


_current_actor: ContextVar[Actor] = ContextVar("filemanager_actor", default=Actor())


def get_actor() -> Actor:
    return _current_actor.get()


def set_actor(ip: Optional[str] = None, user_id: Optional[Union[int, str]] = None):
    """Sets the actor for the current context and returns the reset token."""
    return _current_actor.set(Actor(ip=ip, user_id=user_id))


@contextmanager
def actor_scope(ip: Optional[str] = None, user_id: Optional[Union[int, str]] = None) -> Iterator[Actor]:
    token = set_actor(ip=ip, user_id=user_id)
    try:
        yield get_actor()
    finally:
        _current_actor.reset(token)
