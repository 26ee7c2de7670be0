"""Aggregation of many contract reads into few eth_call round-trips"""
import logging
from typing import Any, List, Optional, Sequence

from .rpc import EvmRpcClient, EthCall, BlockParameter, encode_call_data, decode_return_data
from .types import Function, Multicall2Functions
from .. import LOGGER_NAME
from ..core.batching import split_into_batches
from ..core.rpc import RpcDecodeError
from ..core.stats import StatsService
from ..core.types import Address

MULTICALL2_ADDRESS = Address("0x5ba1e12693dc8f9c48aad8770482f4739beed696")
"""Multicall2 deployment address on Ethereum mainnet"""


class Multicall:
    """
    Call Aggregator backed by a Multicall2 contract. Each chunk of calls is sent as one
    ``tryAggregate`` eth_call at the configured block.

    :param rpc_client: Client used to send the aggregated eth_call
    :param stats_service: Stats service for chunk counts and timings
    :param address: Address of the Multicall2 contract
    :param block: Block at which every chunk is executed. Using a fixed block keeps all
        chunks consistent with each other.
    :param require_success: When False, a call which reverts, returns nothing, or can
        not be decoded produces None in its position. When True, any such call fails the
        entire aggregate.
    """

    STAT_CHUNK = "multicall.chunk"
    STAT_CHUNK_MS = "multicall.chunk-ms"
    STAT_CALL_FAILED = "multicall.call-failed"

    def __init__(
        self,
        rpc_client: EvmRpcClient,
        stats_service: StatsService,
        address: Address = MULTICALL2_ADDRESS,
        block: BlockParameter = "latest",
        require_success: bool = False,
    ) -> None:
        self.__rpc_client = rpc_client
        self.__stats_service = stats_service
        self.__address = address
        self.__block = block
        self.__require_success = require_success
        self.__logger = logging.getLogger(LOGGER_NAME)

    async def aggregate(
        self,
        function: Function,
        target: Address,
        arguments_per_call: Sequence[Sequence[Any]],
        max_batch_size: int,
    ) -> List[Optional[tuple]]:
        """
        Call `function` on the `target` contract once per item in `arguments_per_call`.

        Calls are partitioned into consecutive chunks of at most `max_batch_size` and one
        aggregated request is sent per chunk. Chunking changes only the number of
        requests, never the results.

        :returns: Decoded results where ``results[i]`` belongs to
            ``arguments_per_call[i]``. Failed calls are None unless `require_success` is set.
        :raises: RpcError when a chunk's aggregated call fails. No partial result is
            returned.
        """
        results: List[Optional[tuple]] = []
        for chunk in split_into_batches(arguments_per_call, max_batch_size):
            results.extend(await self.__aggregate_chunk(function, target, chunk))
        return results

    async def __aggregate_chunk(
        self, function: Function, target: Address, chunk: List[Sequence[Any]]
    ) -> List[Optional[tuple]]:
        calls = [(target, encode_call_data(function, list(arguments))) for arguments in chunk]
        with self.__stats_service.ms_counter(self.STAT_CHUNK_MS):
            (call_results,) = await self.__rpc_client.call(
                EthCall(
                    None,
                    self.__address,
                    Multicall2Functions.TRY_AGGREGATE,
                    [self.__require_success, calls],
                    self.__block,
                )
            )
        self.__stats_service.increment(self.STAT_CHUNK)

        if len(call_results) != len(chunk):
            raise RpcDecodeError(
                f"Expected {len(chunk)} results from aggregate but received {len(call_results)}"
            )

        decoded: List[Optional[tuple]] = []
        for (success, return_data), arguments in zip(call_results, chunk):
            result = None
            if success and return_data:
                try:
                    result = decode_return_data(function, return_data)
                except RpcDecodeError:
                    if self.__require_success:
                        raise
            elif self.__require_success:
                raise RpcDecodeError(f"{function.description} returned no data for {arguments}")

            if result is None:
                self.__stats_service.increment(self.STAT_CALL_FAILED)
                self.__logger.debug(
                    f"Call {function.description} on {target} failed for arguments {arguments}"
                )
            decoded.append(result)
        return decoded
