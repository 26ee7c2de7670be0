from hexbytes import HexBytes

from nftindexer.core.types import Address
from nftindexer.nft.entities import TransferRecord

ZERO_ADDRESS = Address("0x0000000000000000000000000000000000000000")
ALICE = Address("0x000000000000000000000000000000000000000a")
BOB = Address("0x000000000000000000000000000000000000000b")
CAROL = Address("0x000000000000000000000000000000000000000c")


def transfer_record(
    from_: Address, to_: Address, token_index: int, block_number: int = 1, log_index: int = 0
) -> TransferRecord:
    return TransferRecord(
        id=f"{block_number:010}-{0:06}-{log_index:06}",
        block_number=block_number,
        timestamp=1_600_000_000 + block_number,
        transaction_hash=HexBytes(f"0x{block_number:064x}"),
        from_=from_,
        to_=to_,
        token_index=token_index,
    )
