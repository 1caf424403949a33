"""Part and Gear classes for equipment identification."""

from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Union

Positions = Union[Iterable[str], Mapping[str, Optional[Iterable[str]]]]


class Host:
    """
    Something parts are mounted on: a gear, or a part carrying subparts.

    ``positions`` is either a list of names or a mapping of name to the part
    types allowed there; an empty or missing type list allows any type.
    """

    def __init__(self, positions: Positions = ()):
        self.position_types: Dict[str, Tuple[str, ...]] = {}
        if isinstance(positions, Mapping):
            for name, types in positions.items():
                self.position_types[name] = tuple(types or ())
        else:
            for name in positions:
                self.position_types[name] = ()

    @property
    def positions(self) -> List[str]:
        return list(self.position_types)

    @property
    def is_restricted(self) -> bool:
        return any(self.position_types.values())

    def has_position(self, position: str) -> bool:
        return position in self.position_types

    def accepts(self, position: str, part_type: str) -> bool:
        """True if a part of ``part_type`` may be mounted at ``position``."""
        types = self.position_types.get(position)
        if types is None:
            return False
        return not types or part_type in types


class Part(Host):
    """
    A trackable component with its own usage history.

    A part with positions is an assembly, e.g. a wheel carrying a tire and
    a cassette; its subparts travel with it.
    """

    def __init__(
        self,
        id: str,
        part_type: str,
        owner: str,
        created: datetime,
        name: Optional[str] = None,
        retired: Optional[datetime] = None,
        positions: Positions = (),
    ):
        super().__init__(positions)
        self.id = id
        self.part_type = part_type
        self.owner = owner
        self.created = created
        self.name = name
        self.retired = retired

    @property
    def display_name(self) -> str:
        """Human-readable part name."""
        return f"{self.name} ({self.part_type})" if self.name else self.id

    @property
    def is_assembly(self) -> bool:
        return bool(self.position_types)

    def is_retired_at(self, time: datetime) -> bool:
        return self.retired is not None and time >= self.retired


class Gear(Host):
    """A host assembly, e.g. a bicycle, with named mount positions."""

    def __init__(
        self,
        id: str,
        owner: str,
        positions: Positions,
        name: Optional[str] = None,
    ):
        super().__init__(positions)
        self.id = id
        self.owner = owner
        self.name = name

    @property
    def display_name(self) -> str:
        return self.name or self.id
