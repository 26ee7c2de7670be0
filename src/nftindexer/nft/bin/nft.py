import logging
import pathlib
from logging import StreamHandler
from logging.handlers import TimedRotatingFileHandler
from typing import Optional, List

import click
from click import Context
from dotenv import load_dotenv

from nftindexer import LOGGER_NAME
from nftindexer.core.click import AddressParamType
from nftindexer.core.stats import StatsService
from nftindexer.core.types import Address
from nftindexer.evm.multicall import MULTICALL2_ADDRESS
from nftindexer.evm.rpc import EvmRpcClient
from nftindexer.nft.bin.index import index
from nftindexer.nft.bin.shared import Config

load_dotenv()


@click.group
@click.option(
    "--evm-rpc-node",
    envvar="EVM_RPC_NODE",
    help="Websocket URI of the EVM RPC node",
    required=True,
)
@click.option(
    "--rpc-requests-per-second",
    envvar="RPC_REQUESTS_PER_SECOND",
    help="The maximum number of RPC requests to send per second",
    default=None,
    type=int,
)
@click.option(
    "--rpc-timeout",
    envvar="RPC_TIMEOUT",
    default=30.0,
    show_default=True,
    help="Maximum time in seconds to wait for an RPC response",
)
@click.option(
    "--contract-address",
    envvar="CONTRACT_ADDRESS",
    help="Address of the ERC-721 collection to index",
    required=True,
    type=AddressParamType(),
)
@click.option(
    "--multicall-address",
    envvar="MULTICALL_ADDRESS",
    help="Address of the Multicall2 contract",
    default=MULTICALL2_ADDRESS,
    show_default=True,
    type=AddressParamType(),
)
@click.option(
    "--multicall-batch-size",
    envvar="MULTICALL_BATCH_SIZE",
    default=50,
    show_default=True,
    type=click.IntRange(min=1),
    help="Maximum number of token URI reads in one aggregated call",
)
@click.option(
    "--ipfs-gateway",
    envvar="IPFS_GATEWAY",
    default="https://ipfs.io/ipfs/",
    show_default=True,
    help="Base URL of the IPFS gateway. Use a private gateway to avoid rate limits.",
)
@click.option(
    "--arweave-gateway",
    envvar="ARWEAVE_GATEWAY",
    default="https://arweave.net/",
    show_default=True,
    help="Base URL of the Arweave gateway",
)
@click.option(
    "--metadata-requests-per-second",
    envvar="METADATA_REQUESTS_PER_SECOND",
    default=25,
    show_default=True,
    type=click.IntRange(min=1),
    help="The maximum number of metadata requests to start per second",
)
@click.option(
    "--metadata-timeout",
    envvar="METADATA_TIMEOUT",
    default=10.0,
    show_default=True,
    help="Maximum time in seconds for a metadata request",
)
@click.option(
    "--dynamodb-endpoint-url",
    envvar="AWS_DYNAMODB_ENDPOINT_URL",
    help="Override URL for connecting to Amazon DynamoDB",
)
@click.option(
    "--dynamodb-timeout",
    envvar="DYNAMODB_TIMEOUT",
    default=5.0,
    show_default=True,
    help="Maximum time in seconds to wait for connect or response from DynamoDB",
)
@click.option(
    "--dynamodb-table-prefix",
    envvar="AWS_DYNAMODB_TABLE_PREFIX",
    help="Prefix for table names",
    show_default=True,
    default="",
)
@click.option(
    "--log-file",
    envvar="LOG_FILE",
    type=click.Path(file_okay=True, dir_okay=False, allow_dash=False, path_type=pathlib.Path),
    multiple=True,
    help="Location and filename for a log.",
)
@click.option(
    "--debug/--no-debug",
    envvar="DEBUG",
    default=False,
    show_default=True,
    help="Show debug messages in the console.",
)
@click.pass_context
def nft(
    ctx: Context,
    evm_rpc_node: str,
    rpc_requests_per_second: Optional[int],
    rpc_timeout: float,
    contract_address: Address,
    multicall_address: Address,
    multicall_batch_size: int,
    ipfs_gateway: str,
    arweave_gateway: str,
    metadata_requests_per_second: int,
    metadata_timeout: float,
    dynamodb_endpoint_url: Optional[str],
    dynamodb_timeout: float,
    dynamodb_table_prefix: str,
    log_file: List[pathlib.Path],
    debug: bool,
):
    """
    Indexing ERC-721 collections
    """
    logger = logging.getLogger(LOGGER_NAME)
    handlers: List[logging.Handler] = [StreamHandler()]
    for filename in log_file:
        handlers.append(TimedRotatingFileHandler(filename, when="D"))
    logger.setLevel(logging.DEBUG if debug else logging.INFO)
    logging.basicConfig(format="%(asctime)s %(message)s", handlers=handlers)

    stats_service = StatsService()
    evm_rpc_client = EvmRpcClient(
        evm_rpc_node,
        stats_service,
        requests_per_second=rpc_requests_per_second,
        request_timeout=rpc_timeout,
    )

    ctx.obj = Config(
        evm_rpc_client=evm_rpc_client,
        stats_service=stats_service,
        contract_address=contract_address,
        multicall_address=multicall_address,
        multicall_batch_size=multicall_batch_size,
        ipfs_gateway=ipfs_gateway,
        arweave_gateway=arweave_gateway,
        metadata_requests_per_second=metadata_requests_per_second,
        metadata_timeout=metadata_timeout,
        dynamodb_timeout=dynamodb_timeout,
        dynamodb_endpoint_url=dynamodb_endpoint_url,
        table_prefix=dynamodb_table_prefix,
        logger=logger,
    )


nft.add_command(index)

if __name__ == "__main__":
    nft()
