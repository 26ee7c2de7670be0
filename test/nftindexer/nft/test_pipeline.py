from unittest import IsolatedAsyncioTestCase
from unittest.mock import AsyncMock

from eth_abi import encode

from nftindexer.core.data_clients import DataClient, ResourceNotFoundProtocolError
from nftindexer.core.rpc import RpcServerError
from nftindexer.core.stats import StatsService
from nftindexer.core.types import Address
from nftindexer.evm.multicall import MULTICALL2_ADDRESS
from nftindexer.evm.rpc import EvmRpcClient, EthCall
from nftindexer.nft.data_services import DataService
from nftindexer.nft.data_services.memory import MemoryDataService
from nftindexer.nft.entities import Owner, Token, Transfer, Attribute
from nftindexer.nft.metadata import MetadataFetcher
from nftindexer.nft.pipeline import TransferBatchPipeline
from . import transfer_record, ALICE, BOB, CAROL, ZERO_ADDRESS

CONTRACT = Address("0xbc4ca0eda7647a8ab7c2061c2e118a18a936f13d")


class TransferBatchPipelineTestCase(IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.__stats_service = StatsService()
        self.__data_service = MemoryDataService(self.__stats_service)
        self.__rpc_client = AsyncMock(EvmRpcClient)
        self.__rpc_client.call.side_effect = self.__try_aggregate
        self.__reverting_token_indexes = set()
        self.__data_client = AsyncMock(DataClient)
        self.__data_client.get.side_effect = self.__get_document
        self.__missing_documents = set()
        self.__pipeline = self.__create_pipeline(self.__data_service)

    def __create_pipeline(self, data_service: DataService) -> TransferBatchPipeline:
        return TransferBatchPipeline(
            data_service=data_service,
            rpc_client=self.__rpc_client,
            metadata_fetcher=MetadataFetcher(self.__data_client, self.__stats_service, 25),
            stats_service=self.__stats_service,
            contract_address=CONTRACT,
            multicall_address=MULTICALL2_ADDRESS,
            multicall_batch_size=50,
        )

    async def __try_aggregate(self, request: EthCall):
        _, calls = request.parameters
        results = []
        for _, call_data in calls:
            token_index = int.from_bytes(call_data[4:], "big")
            if token_index in self.__reverting_token_indexes:
                results.append((False, b""))
            else:
                results.append((True, encode(["string"], [f"ipfs://Qm{token_index}"])))
        return (results,)

    async def __get_document(self, uri: str):
        if uri in self.__missing_documents:
            raise ResourceNotFoundProtocolError("Not found")
        return {"image": f"{uri}/image", "attributes": [{"trait_type": "Uri", "value": uri}]}

    async def __get_token(self, token_id: str) -> Token:
        (token,) = await self.__data_service.find_by_ids(Token, [token_id])
        return token

    async def test_empty_batch_does_nothing(self):
        await self.__pipeline.run_batch([])
        self.__rpc_client.call.assert_not_awaited()
        self.assertEqual(0, self.__data_service.count(Owner))
        self.assertEqual(0, self.__stats_service.get_count(TransferBatchPipeline.STAT_BATCH))

    async def test_mint_stores_owner_token_and_transfer(self):
        record = transfer_record(ZERO_ADDRESS, ALICE, 7)
        await self.__pipeline.run_batch([record])

        self.assertEqual(2, self.__data_service.count(Owner))
        token = await self.__get_token("7")
        self.assertEqual(7, token.index)
        self.assertEqual(ALICE, token.owner.id)
        self.assertEqual("ipfs://Qm7", token.uri)
        self.assertEqual("ipfs://Qm7/image", token.image)
        self.assertEqual([Attribute(trait_type="Uri", value="ipfs://Qm7")], token.attributes)
        (transfer,) = await self.__data_service.find_by_ids(Transfer, [record.id])
        self.assertEqual(ZERO_ADDRESS, transfer.from_.id)
        self.assertEqual(ALICE, transfer.to_.id)
        self.assertEqual("7", transfer.token.id)
        self.assertEqual(record.timestamp, transfer.timestamp)

    async def test_token_uris_are_read_at_the_last_block_of_the_batch(self):
        await self.__pipeline.run_batch(
            [
                transfer_record(ZERO_ADDRESS, ALICE, 1, block_number=10),
                transfer_record(ZERO_ADDRESS, ALICE, 2, block_number=12),
            ]
        )
        self.__rpc_client.call.assert_awaited_once()
        self.assertEqual("0xc", self.__rpc_client.call.await_args.args[0].block)

    async def test_chained_transfers_in_one_batch_end_with_last_recipient(self):
        await self.__pipeline.run_batch(
            [
                transfer_record(ALICE, BOB, 1, log_index=0),
                transfer_record(BOB, CAROL, 1, log_index=1),
            ]
        )
        self.assertEqual(1, self.__data_service.count(Token))
        self.assertEqual(CAROL, (await self.__get_token("1")).owner.id)
        self.assertEqual(1, self.__data_client.get.await_count)
        self.assertEqual(2, self.__data_service.count(Transfer))

    async def test_processing_a_batch_again_changes_nothing(self):
        records = [
            transfer_record(ZERO_ADDRESS, ALICE, 1, log_index=0),
            transfer_record(ALICE, BOB, 1, log_index=1),
            transfer_record(ZERO_ADDRESS, CAROL, 2, log_index=2),
        ]
        await self.__pipeline.run_batch(records)
        first_tokens = await self.__data_service.find_by_ids(Token, ["1", "2"])
        first_transfers = await self.__data_service.find_by_ids(
            Transfer, [record.id for record in records]
        )

        await self.__pipeline.run_batch(records)

        self.assertEqual(1, self.__rpc_client.call.await_count)
        self.assertEqual(2, self.__data_client.get.await_count)
        self.assertEqual(first_tokens, await self.__data_service.find_by_ids(Token, ["1", "2"]))
        self.assertEqual(
            first_transfers,
            await self.__data_service.find_by_ids(Transfer, [record.id for record in records]),
        )
        self.assertEqual(4, self.__data_service.count(Owner))
        self.assertEqual(3, self.__data_service.count(Transfer))

    async def test_known_tokens_are_not_fetched_again(self):
        await self.__pipeline.run_batch([transfer_record(ZERO_ADDRESS, ALICE, 1)])
        await self.__pipeline.run_batch([transfer_record(ALICE, BOB, 1, block_number=2)])
        self.assertEqual(1, self.__rpc_client.call.await_count)
        self.assertEqual(1, self.__data_client.get.await_count)
        token = await self.__get_token("1")
        self.assertEqual(BOB, token.owner.id)
        self.assertEqual("ipfs://Qm1/image", token.image)

    async def test_failed_metadata_fetch_still_stores_token(self):
        self.__missing_documents.add("ipfs://Qm1")
        with self.assertLogs("nftindexer", "ERROR"):
            await self.__pipeline.run_batch(
                [
                    transfer_record(ZERO_ADDRESS, ALICE, 1, log_index=0),
                    transfer_record(ZERO_ADDRESS, ALICE, 2, log_index=1),
                ]
            )
        token_1 = await self.__get_token("1")
        self.assertEqual("ipfs://Qm1", token_1.uri)
        self.assertIsNone(token_1.image)
        self.assertEqual("ipfs://Qm2/image", (await self.__get_token("2")).image)

    async def test_failed_token_uri_read_stores_token_without_uri(self):
        self.__reverting_token_indexes.add(1)
        with self.assertLogs("nftindexer", "WARNING"):
            await self.__pipeline.run_batch([transfer_record(ZERO_ADDRESS, ALICE, 1)])
        token = await self.__get_token("1")
        self.assertIsNone(token.uri)
        self.assertIsNone(token.image)
        self.__data_client.get.assert_not_awaited()

    async def test_rpc_failure_writes_nothing(self):
        self.__rpc_client.call.side_effect = RpcServerError("2.0", "id", -1, "error")
        with self.assertRaises(RpcServerError):
            await self.__pipeline.run_batch([transfer_record(ZERO_ADDRESS, ALICE, 1)])
        self.assertEqual(0, self.__data_service.count(Owner))
        self.assertEqual(0, self.__data_service.count(Token))
        self.assertEqual(0, self.__data_service.count(Transfer))

    async def test_storage_failure_propagates(self):
        data_service = AsyncMock(DataService)
        data_service.find_by_ids.return_value = []
        data_service.upsert.side_effect = Exception("Burn")
        with self.assertRaises(Exception):
            await self.__create_pipeline(data_service).run_batch(
                [transfer_record(ZERO_ADDRESS, ALICE, 1)]
            )

    async def test_upserts_owners_then_tokens_then_transfers(self):
        data_service = AsyncMock(DataService)
        data_service.find_by_ids.return_value = []
        await self.__create_pipeline(data_service).run_batch(
            [transfer_record(ZERO_ADDRESS, ALICE, 1)]
        )
        self.assertEqual(
            [Owner, Token, Transfer],
            [awaited.args[0] for awaited in data_service.upsert.await_args_list],
        )

    async def test_updates_stats(self):
        await self.__pipeline.run_batch(
            [
                transfer_record(ZERO_ADDRESS, ALICE, 1, log_index=0),
                transfer_record(ALICE, BOB, 1, log_index=1),
            ]
        )
        self.assertEqual(1, self.__stats_service.get_count(TransferBatchPipeline.STAT_BATCH))
        self.assertEqual(2, self.__stats_service.get_count(TransferBatchPipeline.STAT_TRANSFER))
        self.assertEqual(1, self.__stats_service.get_count(TransferBatchPipeline.STAT_NEW_TOKEN))
