"""EVM specific RPC Clients"""

import math
from typing import Optional, Union, List, Any, AsyncIterable, Literal

from eth_abi import decode, encode
from eth_utils import decode_hex
from hexbytes import HexBytes

from .types import EvmLog, Function
from ..core.rpc import RpcClient, RpcServerError, RpcDecodeError, RpcClientError
from ..core.types import Address, HexInt

BlockParameter = Union[HexInt, Literal["latest"], Literal["earliest"], Literal["pending"]]


def encode_call_data(function: Function, parameters: Optional[list] = None) -> bytes:
    """
    ABI encode the call data for a contract function: the four byte function selector
    followed by the encoded parameters.
    """
    if not parameters:
        return bytes(function.function_signature_hash)
    return bytes(function.function_signature_hash) + encode(function.param_types, parameters)


def decode_return_data(function: Function, data: bytes) -> Optional[tuple]:
    """
    ABI decode the data returned from a contract function. Returns None when the function
    has no return types and ``(None,)`` when no data was returned.

    :raises: RpcDecodeError
    """
    if len(function.return_types) == 0:
        return None
    if data == b"":
        return (None,)
    try:
        return decode(function.return_types, data)
    except Exception as e:
        raise RpcDecodeError("Response Decode Error", e)


class EthCall:
    """
    Python representation of the properties of an eth_call to execute a function for a
    smart contract on an Ethereum Virtual Machine (EVM)

    :param from_: Address from which a transaction would originate. This is optional for
        view function calls.
    :param to:  Address of the contract whose function you will be calling.
    :param function: The function class representation of the contract function
    :param parameters: The list of ordered function parameters to send
    :param block: The block height at which to execute the function
    """

    def __init__(
        self,
        from_: Optional[str],
        to: str,
        function: Function,
        parameters: Optional[list] = None,
        block: BlockParameter = "latest",
    ):
        self.__from = from_
        self.__to = to
        self.__function = function
        self.__parameters = [] if parameters is None else parameters.copy()
        self.__block = block.hex_value if isinstance(block, HexInt) else block

    def __repr__(self) -> str:  # pragma: no cover
        return (
            str(self.__class__)
            + {
                "from": self.__from,
                "to": self.__to,
                "function": self.__function,
                "parameters": self.__parameters,
                "block": self.__block,
            }.__repr__()
        )

    def __eq__(self, other):
        return (
            isinstance(other, self.__class__)
            and self.from_ == other.from_
            and self.to == other.to
            and self.function == other.function
            and self.parameters == other.parameters
            and self.block == other.block
        )

    @property
    def from_(self):
        return self.__from

    @property
    def to(self):
        return self.__to

    @property
    def function(self) -> Function:
        return self.__function

    @property
    def parameters(self):
        return self.__parameters.copy()

    @property
    def block(self):
        return self.__block


class EvmRpcClient(RpcClient):
    """RPC Client for EVM RPC calls"""

    async def get_block_number(self) -> HexInt:
        """Get the current block height via
        `eth_blockNumber <https://ethereum.org/en/developers/docs/apis/json-rpc/#eth_blocknumber>`_
        """

        result = await self.send("eth_blockNumber")
        return HexInt(result)

    async def get_block_timestamp(self, block_num: HexInt) -> HexInt:
        """Get the timestamp of a block via
        `eth_getBlockByNumber <https://ethereum.org/en/developers/docs/apis/json-rpc/#eth_getblockbynumber>`_
        without transactions.

        :param block_num: The block number for the block you wish to get.
        """  # noqa: E501

        result = await self.send("eth_getBlockByNumber", block_num.hex_value, False)
        if result is None:
            raise RpcClientError(f"Error retrieving block {block_num.int_value}: no block")
        return HexInt(result["timestamp"])

    async def call(self, request: EthCall) -> Any:
        """
        Call a function on a smart contract via
        `eth_call <https://ethereum.org/en/developers/docs/apis/json-rpc/#eth_call>`_

        :param request: Object representation of the call

        :returns: Decoded values returned by the smart contract function.
            If there is no return type for the function, the result will be None.
            Otherwise, it will be a tuple of response types as functions can return
            multiple values. For example::

                (result,) = rpc_client.call(request)

        :raises: RpcServerError, RpcDecodeError
        """

        call_data = encode_call_data(request.function, request.parameters)
        result = await self.send(
            "eth_call",
            {"from": request.from_, "to": request.to, "data": "0x" + call_data.hex()},
            request.block,
        )
        try:
            encoded_response = decode_hex(result)
        except (TypeError, ValueError) as e:
            raise RpcDecodeError("Response Decode Error", e)
        return decode_return_data(request.function, encoded_response)

    async def get_logs(
        self,
        topics: List[Union[str, List[str]]],
        from_block: HexInt,
        to_block: HexInt,
        address: Address,
        starting_block_range_size: Optional[int] = None,
    ) -> AsyncIterable[EvmLog]:
        """
        Get logs for the provided topics from one block to another for an address via
        `eth_getLogs <https://ethereum.org/en/developers/docs/apis/json-rpc/#eth_getlogs>`_.

        Providers reject ranges that are too large or return too many results. When that
        happens, the block range is reduced by a factor of ten and the request is retried
        for as many calls as is necessary to return all the logs.

        :param topics: List of ABI encoded topics to filter by.
        :param from_block: The lowest block from which to search for logs
        :param to_block: The highest block from which to search for logs
        :param address: The log address to filter.
        :param starting_block_range_size: The starting size for the block range to
            query for the logs. The default size is the entire range.

        :returns: An asynchronous iterator of logs in block and log order.
        """
        if not starting_block_range_size:
            starting_block_range_size = to_block.int_value - from_block.int_value + 1
        current_block = from_block
        block_range_size = starting_block_range_size
        while current_block <= to_block:
            end_block = current_block + block_range_size - 1
            if end_block > to_block:
                end_block = to_block
            try:
                logs = await self.send(
                    "eth_getLogs",
                    {
                        "topics": topics,
                        "fromBlock": current_block.hex_value,
                        "toBlock": end_block.hex_value,
                        "address": str(address),
                    },
                )
            except RpcServerError as e:
                if e.error_code in (
                    -32005,  # Infura
                    -32602,  # Alchemy
                    -32000,  # Alchemy generic server error which means timeout in the context
                ) and block_range_size > 1:
                    block_range_size = max(1, math.floor(block_range_size / 10))
                    continue
                raise

            for log in logs or []:
                yield EvmLog(
                    removed=log.get("removed", False),
                    log_index=HexInt(log["logIndex"]),
                    transaction_index=HexInt(log["transactionIndex"]),
                    transaction_hash=HexBytes(log["transactionHash"]),
                    block_hash=HexBytes(log["blockHash"]),
                    block_number=HexInt(log["blockNumber"]),
                    address=Address(log["address"]),
                    data=HexBytes(log["data"]),
                    topics=[HexBytes(topic) for topic in log["topics"]],
                )
            current_block = end_block + 1
