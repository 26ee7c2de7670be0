import asyncio
from typing import AsyncIterator, Dict, List, Tuple

from .transformers import TransferLogDecoder
from ..entities import TransferRecord
from ...core.types import Address, HexInt
from ...evm.rpc import EvmRpcClient
from ...evm.types import Erc721Events, EvmLog


class TransferLogProducer:
    """
    Produces the ERC-721 transfers of a collection as one ordered list per block chunk.
    Each list is meant to be processed as one batch.

    :param rpc_client: Client for logs and block timestamps
    :param contract_address: Address of the ERC-721 collection contract
    :param decoder: Decoder for the Transfer logs
    :param block_chunk_size: Number of blocks in each chunk
    """

    def __init__(
        self,
        rpc_client: EvmRpcClient,
        contract_address: Address,
        decoder: TransferLogDecoder,
        block_chunk_size: int,
    ) -> None:
        if block_chunk_size < 1:
            raise ValueError("block_chunk_size must be at least 1")
        self.__rpc_client = rpc_client
        self.__contract_address = contract_address
        self.__decoder = decoder
        self.__block_chunk_size = block_chunk_size

    async def produce(
        self, starting_block: HexInt, ending_block: HexInt
    ) -> AsyncIterator[Tuple[HexInt, List[TransferRecord]]]:
        """
        Iterate the block range in chunks.

        :returns: Asynchronous iterator of the last block in the chunk and the chunk's
            transfers in block and log order. Chunks without transfers are included so
            callers can track progress.
        """
        current_block = starting_block
        while current_block <= ending_block:
            end_block = current_block + self.__block_chunk_size - 1
            if end_block > ending_block:
                end_block = ending_block

            logs: List[EvmLog] = []
            async for log in self.__rpc_client.get_logs(
                ["0x" + bytes(Erc721Events.TRANSFER.event_signature_hash).hex()],
                current_block,
                end_block,
                self.__contract_address,
            ):
                if not log.removed:
                    logs.append(log)
            logs.sort(key=lambda item: (item.block_number.int_value, item.log_index.int_value))

            timestamps = await self.__get_block_timestamps(logs)
            yield end_block, [
                self.__decoder.decode(log, timestamps[log.block_number.int_value])
                for log in logs
            ]
            current_block = end_block + 1

    async def __get_block_timestamps(self, logs: List[EvmLog]) -> Dict[int, int]:
        block_numbers = list(dict.fromkeys(log.block_number for log in logs))
        timestamps = await asyncio.gather(
            *[self.__rpc_client.get_block_timestamp(block_number) for block_number in block_numbers]
        )
        return {
            block_number.int_value: timestamp.int_value
            for block_number, timestamp in zip(block_numbers, timestamps)
        }
