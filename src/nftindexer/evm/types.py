from dataclasses import dataclass
from typing import List, Optional

from hexbytes import HexBytes

from nftindexer.core.types import Address, HexInt


@dataclass(frozen=True)
class EvmLog:
    removed: bool
    log_index: HexInt
    transaction_index: HexInt
    transaction_hash: HexBytes
    block_hash: HexBytes
    block_number: HexInt
    data: HexBytes
    topics: List[HexBytes]
    address: Optional[Address] = None

    def __hash__(self) -> int:
        return (
            self.__class__.__name__
            + self.block_number.hex_value
            + self.transaction_index.hex_value
            + self.log_index.hex_value
        ).__hash__()


@dataclass(frozen=True)
class Function:
    function_signature_hash: HexBytes
    description: str
    param_types: List[str]
    return_types: List[str]
    is_view: bool


@dataclass(frozen=True)
class Event:
    event_signature_hash: HexBytes
    description: str
    indexed_param_types: List[str]
    non_indexed_param_types: List[str]


class Erc721MetadataFunctions:
    TOKEN_URI = Function(
        HexBytes("0xc87b56dd"),
        "tokenURI(uint256)->(string)",
        ["uint256"],
        ["string"],
        True,
    )


class Multicall2Functions:
    # noinspection SpellCheckingInspection
    TRY_AGGREGATE = Function(
        HexBytes("0xbce38bd7"),
        "tryAggregate(bool,(address,bytes)[])->((bool,bytes)[])",
        ["bool", "(address,bytes)[]"],
        ["(bool,bytes)[]"],
        True,
    )


class Erc721Events:  # pragma: no cover
    TRANSFER = Event(
        HexBytes("0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"),
        "Transfer(address indexed, address indexed, uint256 indexed)",
        ["address", "address", "uint256"],
        [],
    )
