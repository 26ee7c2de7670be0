import asyncio
import math
import time
from typing import Dict, Optional, Union

import aioboto3
import aiohttp
import click
from botocore.config import Config as BotoConfig

from nftindexer.core.click import HexIntParamType
from nftindexer.core.stats import StatsWriter
from nftindexer.core.types import HexInt
from nftindexer.nft.bin.shared import Config, get_index_stat_line, get_pipeline
from nftindexer.nft.data_services.dynamodb import DynamoDbDataService
from nftindexer.nft.evm.producers import TransferLogProducer
from nftindexer.nft.evm.transformers import TransferLogDecoder


@click.command()
@click.argument("STARTING_BLOCK", type=HexIntParamType())
@click.argument("ENDING_BLOCK", type=HexIntParamType(), required=False)
@click.option(
    "--block-chunk-size",
    envvar="BLOCK_CHUNK_SIZE",
    default=1_000,
    show_default=True,
    type=click.IntRange(min=1),
    help="The number of blocks whose transfers are processed as one batch.",
)
@click.option(
    "--stats-interval",
    envvar="STATS_INTERVAL",
    default=60,
    show_default=True,
    help="Interval in seconds between statistics log lines.",
)
@click.pass_obj
def index(
    config: Config,
    starting_block: HexInt,
    ending_block: Optional[HexInt],
    block_chunk_size: int,
    stats_interval: int,
):
    """
    Index the collection's transfers.

    Process the transfers of the collection from the STARTING_BLOCK to the ENDING_BLOCK,
    or the current block when no ENDING_BLOCK is given, and store the owners, tokens, and
    transfers. A failed run can be restarted from the last block logged as indexed.
    """
    stats_writer = StatsWriter(config.stats_service, get_index_stat_line)
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    start = time.perf_counter()
    stats_task = loop.create_task(stats_writer.write_at_interval(stats_interval))
    try:
        loop.run_until_complete(
            run_index(
                config=config,
                boto3_session=aioboto3.Session(),
                starting_block=starting_block,
                ending_block=ending_block,
                block_chunk_size=block_chunk_size,
            )
        )
    except KeyboardInterrupt:
        config.logger.info("Processing interrupted by user!")
    except Exception as e:
        config.logger.exception(f"Indexing stopped due to error -- {e}")
        raise click.ClickException(str(e))
    finally:
        stats_task.cancel()
        loop.run_until_complete(asyncio.gather(stats_task, return_exceptions=True))
        loop.close()

        runtime = time.perf_counter() - start
        secs = runtime % 60
        all_mins = math.floor(runtime / 60)
        mins = all_mins % 60
        hours = math.floor(all_mins / 60)
        stats_writer.write_line()
        config.logger.info(f"Total Time: {hours}:{mins:02}:{secs:05.2F}")


async def run_index(
    config: Config,
    boto3_session: aioboto3.Session,
    starting_block: HexInt,
    ending_block: Optional[HexInt],
    block_chunk_size: int,
):
    boto_config = BotoConfig(
        connect_timeout=config.dynamodb_timeout, read_timeout=config.dynamodb_timeout
    )
    dynamodb_resource_kwargs: Dict[str, Union[str, BotoConfig]] = {"config": boto_config}
    if config.dynamodb_endpoint_url is not None:  # This would only be in non-deployed environments
        dynamodb_resource_kwargs["endpoint_url"] = config.dynamodb_endpoint_url

    async with boto3_session.resource(
        "dynamodb", **dynamodb_resource_kwargs
    ) as dynamodb:  # type: ignore
        async with config.evm_rpc_client as rpc_client, aiohttp.ClientSession(
            headers={"Content-Type": "application/json"}
        ) as http_session:
            if ending_block is None:
                ending_block = await rpc_client.get_block_number()
            config.logger.info(
                f"Indexing {config.contract_address} from block {starting_block.int_value:,}"
                f" to {ending_block.int_value:,}"
            )

            data_service = DynamoDbDataService(dynamodb, config.stats_service, config.table_prefix)
            pipeline = get_pipeline(config, rpc_client, data_service, http_session)
            producer = TransferLogProducer(
                rpc_client, config.contract_address, TransferLogDecoder(), block_chunk_size
            )
            async for end_block, transfer_records in producer.produce(
                starting_block, ending_block
            ):
                await pipeline.run_batch(transfer_records)
                config.logger.debug(f"Indexed through block {end_block.int_value:,}")
