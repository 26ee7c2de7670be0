import dataclasses
import logging
from typing import Optional

import aiohttp

from nftindexer.core.data_clients import (
    SchemeDispatchingDataClient,
    IpfsDataClient,
    ArweaveDataClient,
    HttpDataClient,
    DataUriDataClient,
)
from nftindexer.core.rpc import RpcClient
from nftindexer.core.stats import StatsService, _safe_average
from nftindexer.core.types import Address
from nftindexer.evm.multicall import Multicall
from nftindexer.evm.rpc import EvmRpcClient
from nftindexer.nft import data_services
from nftindexer.nft.metadata import MetadataFetcher
from nftindexer.nft.pipeline import TransferBatchPipeline


@dataclasses.dataclass
class Config:
    evm_rpc_client: EvmRpcClient
    stats_service: StatsService
    contract_address: Address
    multicall_address: Address
    multicall_batch_size: int
    ipfs_gateway: str
    arweave_gateway: str
    metadata_requests_per_second: int
    metadata_timeout: float
    dynamodb_timeout: float
    dynamodb_endpoint_url: Optional[str]
    table_prefix: str
    logger: logging.Logger


def get_metadata_data_client(
    session: aiohttp.ClientSession, config: Config
) -> SchemeDispatchingDataClient:
    http_data_client = HttpDataClient(session, config.metadata_timeout, config.stats_service)
    return SchemeDispatchingDataClient(
        {
            "ipfs://": IpfsDataClient(
                config.ipfs_gateway, session, config.metadata_timeout, config.stats_service
            ),
            "ar://": ArweaveDataClient(
                config.arweave_gateway, session, config.metadata_timeout, config.stats_service
            ),
            "http://": http_data_client,
            "https://": http_data_client,
            "data:": DataUriDataClient(config.stats_service),
        }
    )


def get_pipeline(
    config: Config,
    rpc_client: EvmRpcClient,
    data_service: data_services.DataService,
    session: aiohttp.ClientSession,
) -> TransferBatchPipeline:
    metadata_fetcher = MetadataFetcher(
        get_metadata_data_client(session, config),
        config.stats_service,
        config.metadata_requests_per_second,
    )
    return TransferBatchPipeline(
        data_service=data_service,
        rpc_client=rpc_client,
        metadata_fetcher=metadata_fetcher,
        stats_service=config.stats_service,
        contract_address=config.contract_address,
        multicall_address=config.multicall_address,
        multicall_batch_size=config.multicall_batch_size,
    )


def get_index_stat_line(stats_service: StatsService) -> str:
    rpc_sent = stats_service.get_count(RpcClient.STAT_REQUEST_SENT)
    rpc_delayed = stats_service.get_count(RpcClient.STAT_REQUEST_DELAYED)
    rpc_throttled = stats_service.get_count(RpcClient.STAT_RESPONSE_TOO_MANY_REQUESTS)
    rpc_received = stats_service.get_count(RpcClient.STAT_RESPONSE_RECEIVED)
    rpc_request_ms = stats_service.get_count(RpcClient.STAT_REQUEST_MS)
    rpc_request_ms_avg = _safe_average(rpc_received, rpc_request_ms)
    multicall_chunks = stats_service.get_count(Multicall.STAT_CHUNK)
    multicall_failed = stats_service.get_count(Multicall.STAT_CALL_FAILED)
    metadata_fetches = stats_service.get_count(MetadataFetcher.STAT_FETCH)
    metadata_ms = stats_service.get_count(MetadataFetcher.STAT_FETCH_MS)
    metadata_ms_avg = _safe_average(metadata_fetches, metadata_ms)
    metadata_failed = stats_service.get_count(MetadataFetcher.STAT_FETCH_FAILED)
    metadata_unsupported = stats_service.get_count(MetadataFetcher.STAT_UNSUPPORTED)
    batches = stats_service.get_count(TransferBatchPipeline.STAT_BATCH)
    transfers = stats_service.get_count(TransferBatchPipeline.STAT_TRANSFER)
    new_tokens = stats_service.get_count(TransferBatchPipeline.STAT_NEW_TOKEN)
    upserts = stats_service.get_count(data_services.STAT_UPSERT)
    upsert_ms = stats_service.get_count(data_services.STAT_UPSERT_MS)
    return (
        f"RPC ["
        f"S:{rpc_sent:,} "
        f"D:{rpc_delayed:,} "
        f"T:{rpc_throttled:,} "
        f"R:{rpc_received:,}/{rpc_request_ms_avg:,.0F}"
        f"]"
        f" Multicall ["
        f"C:{multicall_chunks:,} "
        f"F:{multicall_failed:,}"
        f"]"
        f" Metadata ["
        f"S:{metadata_fetches:,}/{metadata_ms_avg:,.0F} "
        f"F:{metadata_failed:,} "
        f"U:{metadata_unsupported:,}"
        f"]"
        f" -- "
        f"Batches:{batches:,} "
        f"Transfers:{transfers:,} "
        f"New Tokens:{new_tokens:,} "
        f"Upserts:{upserts:,}/{upsert_ms:,}ms"
    )
