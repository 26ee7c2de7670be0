"""Orchestration of a batch of transfers from resolution through to storage"""
import logging
from typing import Sequence, List

from .data_services import DataService
from .entities import TransferRecord, Owner, Token, Transfer
from .metadata import MetadataFetcher
from .resolver import EntityResolver
from .. import LOGGER_NAME
from ..core.stats import StatsService
from ..core.types import Address, HexInt
from ..evm.multicall import Multicall
from ..evm.rpc import EvmRpcClient
from ..evm.types import Erc721MetadataFunctions


class TransferBatchPipeline:
    """
    Processes batches of transfers for a single ERC-721 collection.

    For every batch, the referenced owners and tokens are resolved, tokens seen for the
    first time are enriched with their token URI and off-chain metadata, and then the
    owners, tokens, and transfers are upserted. Nothing is written unless every prior
    step succeeds, so a failed batch can be processed again from the start.

    :param data_service: Storage for the entities
    :param rpc_client: Client for the aggregated token URI reads
    :param metadata_fetcher: Fetcher for the off-chain metadata documents
    :param stats_service: Stats service for batch counts
    :param contract_address: Address of the ERC-721 collection contract
    :param multicall_address: Address of the Multicall2 contract
    :param multicall_batch_size: Maximum number of token URI reads in one aggregated call
    """

    STAT_BATCH = "pipeline.batch"
    STAT_BATCH_MS = "pipeline.batch-ms"
    STAT_TRANSFER = "pipeline.transfer"
    STAT_NEW_TOKEN = "pipeline.new-token"

    def __init__(
        self,
        data_service: DataService,
        rpc_client: EvmRpcClient,
        metadata_fetcher: MetadataFetcher,
        stats_service: StatsService,
        contract_address: Address,
        multicall_address: Address,
        multicall_batch_size: int,
    ) -> None:
        self.__data_service = data_service
        self.__rpc_client = rpc_client
        self.__metadata_fetcher = metadata_fetcher
        self.__stats_service = stats_service
        self.__contract_address = contract_address
        self.__multicall_address = multicall_address
        self.__multicall_batch_size = multicall_batch_size
        self.__entity_resolver = EntityResolver(data_service)
        self.__logger = logging.getLogger(LOGGER_NAME)

    async def run_batch(self, transfer_records: Sequence[TransferRecord]) -> None:
        if not transfer_records:
            return

        with self.__stats_service.ms_counter(self.STAT_BATCH_MS):
            resolved = await self.__entity_resolver.resolve(transfer_records)

            if resolved.new_tokens:
                block = HexInt(max(record.block_number for record in transfer_records))
                await self.__init_tokens(resolved.new_tokens, block)

            await self.__data_service.upsert(Owner, list(resolved.owners.values()))
            await self.__data_service.upsert(Token, list(resolved.tokens.values()))
            await self.__data_service.upsert(Transfer, resolved.transfers)

        self.__stats_service.increment(self.STAT_BATCH)
        self.__stats_service.increment(self.STAT_TRANSFER, len(resolved.transfers))
        self.__stats_service.increment(self.STAT_NEW_TOKEN, len(resolved.new_tokens))
        self.__logger.info(
            f"Processed {len(resolved.transfers)} transfers through block "
            f"{transfer_records[-1].block_number}: {len(resolved.owners)} owners, "
            f"{len(resolved.tokens)} tokens, {len(resolved.new_tokens)} new tokens"
        )

    async def __init_tokens(self, tokens: List[Token], block: HexInt) -> None:
        multicall = Multicall(
            self.__rpc_client,
            self.__stats_service,
            address=self.__multicall_address,
            block=block,
        )
        results = await multicall.aggregate(
            Erc721MetadataFunctions.TOKEN_URI,
            self.__contract_address,
            [[token.index] for token in tokens],
            self.__multicall_batch_size,
        )
        uris = [result[0] if result is not None else None for result in results]
        for token, uri in zip(tokens, uris):
            token.uri = uri

        await self.__metadata_fetcher.enrich(tokens, uris)
