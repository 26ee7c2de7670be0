"""Resolution of the owners and tokens referenced by a batch of transfers"""
import asyncio
from dataclasses import dataclass
from typing import Dict, List, Sequence

from .data_services import DataService
from .entities import Owner, Token, TransferRecord, Transfer


@dataclass
class ResolvedEntities:
    owners: Dict[str, Owner]
    """Every owner referenced by the batch keyed by address"""

    tokens: Dict[str, Token]
    """Every token referenced by the batch keyed by token id"""

    new_tokens: List[Token]
    """Tokens with no stored record, in order of their first transfer"""

    transfers: List[Transfer]
    """Transfer facts referencing the resolved owner and token objects, in arrival order"""


class EntityResolver:
    """
    Loads the owners and tokens referenced by a batch of transfers from storage and
    creates the ones which do not exist yet. Nothing is written to storage.
    """

    def __init__(self, data_service: DataService) -> None:
        self.__data_service = data_service

    async def resolve(self, transfer_records: Sequence[TransferRecord]) -> ResolvedEntities:
        """
        Resolve the entities for the transfer records.

        One batched lookup is issued per entity type. The records are then replayed in
        order so that each token's owner is the recipient of its last transfer.

        Storage errors are not handled and leave nothing resolved.
        """
        owner_ids: Dict[str, None] = {}
        token_ids: Dict[str, None] = {}
        for record in transfer_records:
            owner_ids[record.from_] = None
            owner_ids[record.to_] = None
            token_ids[str(record.token_index)] = None

        stored_owners, stored_tokens = await asyncio.gather(
            self.__data_service.find_by_ids(Owner, list(owner_ids)),
            self.__data_service.find_by_ids(Token, list(token_ids)),
        )
        owners: Dict[str, Owner] = {owner.id: owner for owner in stored_owners}
        tokens: Dict[str, Token] = {token.id: token for token in stored_tokens}

        new_tokens: List[Token] = []
        transfers: List[Transfer] = []
        for record in transfer_records:
            from_ = self.__get_or_create_owner(owners, record.from_)
            to_ = self.__get_or_create_owner(owners, record.to_)

            token_id = str(record.token_index)
            token = tokens.get(token_id)
            if token is None:
                token = Token(id=token_id, index=record.token_index)
                tokens[token_id] = token
                new_tokens.append(token)
            token.owner = to_

            transfers.append(
                Transfer(
                    id=record.id,
                    block_number=record.block_number,
                    timestamp=record.timestamp,
                    transaction_hash=record.transaction_hash,
                    from_=from_,
                    to_=to_,
                    token=token,
                )
            )

        return ResolvedEntities(
            owners=owners, tokens=tokens, new_tokens=new_tokens, transfers=transfers
        )

    @staticmethod
    def __get_or_create_owner(owners: Dict[str, Owner], owner_id: str) -> Owner:
        owner = owners.get(owner_id)
        if owner is None:
            owner = Owner(id=owner_id)
            owners[owner_id] = owner
        return owner
