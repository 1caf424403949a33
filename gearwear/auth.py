"""Authorization capability consumed by the mutation coordinator."""

from typing import Protocol, runtime_checkable


@runtime_checkable
class Actor(Protocol):
    """Anything that can answer whether it may modify an owner's records."""

    id: str

    def may_modify(self, owner: str) -> bool:
        ...


class User:
    """A person acting on their own records; admins may act on anyone's."""

    def __init__(self, id: str, is_admin: bool = False):
        self.id = id
        self.is_admin = is_admin

    def may_modify(self, owner: str) -> bool:
        return self.is_admin or owner == self.id

    def __repr__(self) -> str:
        return f"User({self.id!r}, is_admin={self.is_admin})"
