import logging
from typing import Any, Callable, Dict, Iterable, List, Sequence, Type

import backoff
from boto3.dynamodb.table import TableResource
from botocore.exceptions import ClientError
from hexbytes import HexBytes

import nftindexer
from . import (
    DataService,
    DataServiceException,
    E,
    STAT_FIND,
    STAT_FIND_MS,
    STAT_UPSERT,
    STAT_UPSERT_MS,
)
from ..data.models import Owners, Tokens, Transfers
from ..entities import Owner, Token, Transfer, Attribute
from ...core.batching import split_into_batches
from ...core.entities import Entity
from ...core.stats import StatsService

MAX_BATCH_GET_KEYS = 100


def owner_to_item(owner: Owner) -> dict:
    return {"id": owner.id}


def owner_from_item(item: dict) -> Owner:
    return Owner(id=item["id"])


def token_to_item(token: Token) -> dict:
    # uint256 indexes exceed the 38 digits a DynamoDB number can hold
    item: Dict[str, Any] = {"id": token.id, "token_index": hex(token.index)}
    if token.owner is not None:
        item["owner_id"] = token.owner.id
    if token.uri is not None:
        item["uri"] = token.uri
    if token.image is not None:
        item["image"] = token.image
    if token.attributes is not None:
        item["attributes"] = [
            {"trait_type": attribute.trait_type, "value": attribute.value}
            for attribute in token.attributes
        ]
    return item


def token_from_item(item: dict) -> Token:
    return Token(
        id=item["id"],
        index=int(item["token_index"], 16),
        owner=Owner(id=item["owner_id"]) if "owner_id" in item else None,
        uri=item.get("uri"),
        image=item.get("image"),
        attributes=[
            Attribute(trait_type=attribute["trait_type"], value=attribute["value"])
            for attribute in item["attributes"]
        ]
        if "attributes" in item
        else None,
    )


def transfer_to_item(transfer: Transfer) -> dict:
    return {
        "id": transfer.id,
        "block_number": transfer.block_number,
        "timestamp": transfer.timestamp,
        "transaction_hash": "0x" + bytes(transfer.transaction_hash).hex(),
        "from_id": transfer.from_.id,
        "to_id": transfer.to_.id,
        "token_id": transfer.token.id,
        "token_index": hex(transfer.token.index),
    }


def transfer_from_item(item: dict) -> Transfer:
    return Transfer(
        id=item["id"],
        block_number=int(item["block_number"]),
        timestamp=int(item["timestamp"]),
        transaction_hash=HexBytes(item["transaction_hash"]),
        from_=Owner(id=item["from_id"]),
        to_=Owner(id=item["to_id"]),
        token=Token(id=item["token_id"], index=int(item["token_index"], 16)),
    )


class DynamoDbDataService(DataService):
    """
    Data service storing each entity type in its own DynamoDB table keyed by ``id``.

    :param dynamodb: aioboto3 DynamoDB service resource
    :param stats_service: Stats service for read and write counts and timings
    :param table_prefix: Prefix prepended to every table name
    """

    TABLES: Dict[Type[Entity], str] = {
        Owner: Owners.table_name,
        Token: Tokens.table_name,
        Transfer: Transfers.table_name,
    }
    TO_ITEM: Dict[Type[Entity], Callable[[Any], dict]] = {
        Owner: owner_to_item,
        Token: token_to_item,
        Transfer: transfer_to_item,
    }
    FROM_ITEM: Dict[Type[Entity], Callable[[dict], Any]] = {
        Owner: owner_from_item,
        Token: token_from_item,
        Transfer: transfer_from_item,
    }

    def __init__(self, dynamodb, stats_service: StatsService, table_prefix: str = "") -> None:
        self.__dynamodb = dynamodb
        self.__stats_service = stats_service
        self.__table_prefix = table_prefix
        self.__logger: logging.Logger = logging.getLogger(nftindexer.LOGGER_NAME)

    async def find_by_ids(self, entity_type: Type[E], ids: Iterable[str]) -> List[E]:
        table_name = self.__get_table_name(entity_type)
        from_item = self.FROM_ITEM[entity_type]
        unique_ids = list(dict.fromkeys(ids))
        found: List[E] = []
        with self.__stats_service.ms_counter(STAT_FIND_MS):
            for chunk in split_into_batches(unique_ids, MAX_BATCH_GET_KEYS):
                request_items: Dict[str, Any] = {
                    table_name: {"Keys": [{"id": id_} for id_ in chunk]}
                }
                while request_items:
                    response = await self.__dynamodb.batch_get_item(RequestItems=request_items)
                    for item in response.get("Responses", {}).get(table_name, []):
                        found.append(from_item(item))
                    request_items = response.get("UnprocessedKeys") or {}
        self.__stats_service.increment(STAT_FIND, len(found))
        return found

    async def upsert(self, entity_type: Type[E], entities: Sequence[E]) -> None:
        if not entities:
            return
        table = await self.__get_table(entity_type)
        to_item = self.TO_ITEM[entity_type]
        items = [to_item(entity) for entity in entities]
        with self.__stats_service.ms_counter(STAT_UPSERT_MS):
            await self.__write_items(table, items)
        self.__stats_service.increment(STAT_UPSERT, len(items))
        self.__logger.debug(f"Upserted {len(items)} {entity_type.__name__} items")

    @backoff.on_exception(backoff.expo, ClientError, max_tries=5)
    async def __write_items(self, table: TableResource, items: List[dict]):
        async with table.batch_writer(overwrite_by_pkeys=["id"]) as batch_writer:
            for item in items:
                await batch_writer.put_item(Item=item)

    def __get_table_name(self, entity_type: Type[Entity]) -> str:
        try:
            return f"{self.__table_prefix}{self.TABLES[entity_type]}"
        except KeyError:
            raise DataServiceException(f"No table for entity type {entity_type.__name__}")

    async def __get_table(self, entity_type: Type[Entity]) -> TableResource:
        return await self.__dynamodb.Table(self.__get_table_name(entity_type))
