from dataclasses import dataclass
from typing import Optional, List

from hexbytes import HexBytes

from ..core.entities import Entity
from ..core.types import Address


@dataclass(frozen=True)
class TransferRecord:
    """A decoded ownership transfer event as handed to the indexing pipeline"""

    id: str
    block_number: int
    timestamp: int
    transaction_hash: HexBytes
    from_: Address
    to_: Address
    token_index: int


@dataclass(frozen=True)
class Attribute:
    trait_type: str
    value: str


@dataclass
class Owner(Entity):
    id: str


@dataclass
class Token(Entity):
    id: str
    index: int
    owner: Optional[Owner] = None
    uri: Optional[str] = None
    image: Optional[str] = None
    attributes: Optional[List[Attribute]] = None


@dataclass(frozen=True)
class Transfer(Entity):
    id: str
    block_number: int
    timestamp: int
    transaction_hash: HexBytes
    from_: Owner
    to_: Owner
    token: Token
