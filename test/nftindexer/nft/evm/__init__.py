from eth_abi import encode
from hexbytes import HexBytes

from nftindexer.core.types import HexInt, Address
from nftindexer.evm.types import EvmLog, Erc721Events


def transfer_log(
    from_: str,
    to_: str,
    token_index: int,
    block_number: int = 1,
    transaction_index: int = 0,
    log_index: int = 0,
    removed: bool = False,
) -> EvmLog:
    return EvmLog(
        removed=removed,
        log_index=HexInt(log_index),
        transaction_index=HexInt(transaction_index),
        transaction_hash=HexBytes(f"0x{block_number:064x}"),
        block_hash=HexBytes(f"0x{block_number + 1:064x}"),
        block_number=HexInt(block_number),
        data=HexBytes(b""),
        topics=[
            Erc721Events.TRANSFER.event_signature_hash,
            HexBytes(encode(["address"], [from_])),
            HexBytes(encode(["address"], [to_])),
            HexBytes(encode(["uint256"], [token_index])),
        ],
        address=Address("0xcontract"),
    )
