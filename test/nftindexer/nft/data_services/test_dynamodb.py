from unittest import IsolatedAsyncioTestCase, TestCase
from unittest.mock import AsyncMock, Mock, MagicMock, call
from decimal import Decimal

from boto3.dynamodb.types import TypeSerializer
from botocore.exceptions import ClientError
from hexbytes import HexBytes

from nftindexer.core.entities import Entity
from nftindexer.core.stats import StatsService
from nftindexer.nft import data_services
from nftindexer.nft.data_services import DataServiceException
from nftindexer.nft.data_services.dynamodb import (
    DynamoDbDataService,
    token_to_item,
    token_from_item,
    transfer_to_item,
    transfer_from_item,
)
from nftindexer.nft.entities import Owner, Token, Transfer, Attribute


class ItemTestCase(TestCase):
    def test_token_to_item_includes_set_fields(self):
        token = Token(
            id="1",
            index=1,
            owner=Owner("0xowner"),
            uri="ipfs://Qm1",
            image="ipfs://image",
            attributes=[Attribute(trait_type="Hat", value="Cap")],
        )
        self.assertEqual(
            {
                "id": "1",
                "token_index": "0x1",
                "owner_id": "0xowner",
                "uri": "ipfs://Qm1",
                "image": "ipfs://image",
                "attributes": [{"trait_type": "Hat", "value": "Cap"}],
            },
            token_to_item(token),
        )

    def test_token_to_item_omits_unset_fields(self):
        self.assertEqual({"id": "1", "token_index": "0x1"}, token_to_item(Token(id="1", index=1)))

    def test_token_from_item_reads_hex_index(self):
        token = token_from_item(
            {
                "id": "1",
                "token_index": "0x1",
                "owner_id": "0xowner",
                "attributes": [{"trait_type": "Hat", "value": "Cap"}],
            }
        )
        self.assertEqual(
            Token(
                id="1",
                index=1,
                owner=Owner("0xowner"),
                attributes=[Attribute(trait_type="Hat", value="Cap")],
            ),
            token,
        )

    def test_transfer_item_keeps_references_and_hash(self):
        transfer = Transfer(
            id="0000000001-000000-000000",
            block_number=1,
            timestamp=1_600_000_000,
            transaction_hash=HexBytes("0x" + "ab" * 32),
            from_=Owner("0xfrom"),
            to_=Owner("0xto"),
            token=Token(id="5", index=5),
        )
        item = transfer_to_item(transfer)
        self.assertEqual("0x" + "ab" * 32, item["transaction_hash"])
        self.assertEqual("5", item["token_id"])
        actual = transfer_from_item(
            {**item, "block_number": Decimal(1), "timestamp": Decimal(1_600_000_000)}
        )
        self.assertEqual(transfer, actual)

    def test_uint256_token_index_serializes_and_reads_back(self):
        index = 2**255 + 1
        token = Token(id=str(index), index=index)
        item = token_to_item(token)
        TypeSerializer().serialize(item)
        self.assertEqual(token, token_from_item(item))

    def test_uint256_transfer_token_index_serializes_and_reads_back(self):
        index = 2**256 - 1
        transfer = Transfer(
            id="0000000001-000000-000000",
            block_number=1,
            timestamp=1_600_000_000,
            transaction_hash=HexBytes("0x" + "ab" * 32),
            from_=Owner("0xfrom"),
            to_=Owner("0xto"),
            token=Token(id=str(index), index=index),
        )
        item = transfer_to_item(transfer)
        TypeSerializer().serialize(item)
        actual = transfer_from_item(
            {**item, "block_number": Decimal(1), "timestamp": Decimal(1_600_000_000)}
        )
        self.assertEqual(transfer, actual)


class DynamoDbDataServiceTestCase(IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.__dynamodb = AsyncMock()
        self.__dynamodb.batch_get_item.return_value = {"Responses": {}}
        self.__table_resource = self.__dynamodb.Table.return_value
        self.__table_resource.batch_writer = Mock(return_value=AsyncMock())
        self.__batch_writer = (
            self.__table_resource.batch_writer.return_value.__aenter__.return_value
        )
        self.__stats_service = MagicMock(StatsService)
        self.__data_service = DynamoDbDataService(self.__dynamodb, self.__stats_service, "pre-")

    async def test_upsert_uses_table_with_prefix_prepended(self):
        await self.__data_service.upsert(Owner, [Owner("0xowner")])
        self.__dynamodb.Table.assert_awaited_once_with("pre-owner")

    async def test_upsert_puts_each_item_overwriting_by_id(self):
        await self.__data_service.upsert(Owner, [Owner("0xa"), Owner("0xb")])
        self.__table_resource.batch_writer.assert_called_once_with(overwrite_by_pkeys=["id"])
        self.assertEqual(
            [call(Item={"id": "0xa"}), call(Item={"id": "0xb"})],
            self.__batch_writer.put_item.await_args_list,
        )
        self.__stats_service.increment.assert_called_once_with(data_services.STAT_UPSERT, 2)

    async def test_upsert_of_nothing_writes_nothing(self):
        await self.__data_service.upsert(Owner, [])
        self.__dynamodb.Table.assert_not_awaited()

    async def test_upsert_retries_client_errors(self):
        self.__batch_writer.put_item.side_effect = [
            ClientError({"Error": {"Code": "ProvisionedThroughputExceededException"}}, "Put"),
            None,
        ]
        await self.__data_service.upsert(Owner, [Owner("0xa")])
        self.assertEqual(2, self.__batch_writer.put_item.await_count)

    async def test_upsert_unknown_entity_type_raises_exception(self):
        class Unknown(Entity):
            pass

        with self.assertRaises(DataServiceException):
            await self.__data_service.upsert(Unknown, [Unknown()])

    async def test_find_by_ids_requests_keys_from_prefixed_table(self):
        await self.__data_service.find_by_ids(Owner, ["0xa", "0xb", "0xa"])
        self.__dynamodb.batch_get_item.assert_awaited_once_with(
            RequestItems={"pre-owner": {"Keys": [{"id": "0xa"}, {"id": "0xb"}]}}
        )

    async def test_find_by_ids_returns_entities_from_items(self):
        self.__dynamodb.batch_get_item.return_value = {
            "Responses": {"pre-token": [{"id": "1", "token_index": "0x1", "uri": "uri"}]}
        }
        actual = await self.__data_service.find_by_ids(Token, ["1", "2"])
        self.assertEqual([Token(id="1", index=1, uri="uri")], actual)

    async def test_find_by_ids_chunks_keys(self):
        await self.__data_service.find_by_ids(Owner, [f"0x{index}" for index in range(250)])
        self.assertEqual(3, self.__dynamodb.batch_get_item.await_count)

    async def test_find_by_ids_requests_unprocessed_keys_again(self):
        unprocessed = {"pre-owner": {"Keys": [{"id": "0xb"}]}}
        self.__dynamodb.batch_get_item.side_effect = [
            {"Responses": {"pre-owner": [{"id": "0xa"}]}, "UnprocessedKeys": unprocessed},
            {"Responses": {"pre-owner": [{"id": "0xb"}]}, "UnprocessedKeys": {}},
        ]
        actual = await self.__data_service.find_by_ids(Owner, ["0xa", "0xb"])
        self.assertEqual([Owner("0xa"), Owner("0xb")], actual)
        self.assertEqual(
            call(RequestItems=unprocessed), self.__dynamodb.batch_get_item.await_args_list[1]
        )

    async def test_find_by_ids_with_no_ids_requests_nothing(self):
        self.assertEqual([], await self.__data_service.find_by_ids(Owner, []))
        self.__dynamodb.batch_get_item.assert_not_awaited()
