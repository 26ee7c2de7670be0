import abc
from typing import Iterable, List, Sequence, Type, TypeVar

from nftindexer.core.entities import Entity

E = TypeVar("E", bound=Entity)


class DataServiceException(Exception):
    pass


class DataService(abc.ABC):
    """
    Storage for indexed entities. The kind of entity is identified by its class. Both
    operations work on batches and are never issued per entity.
    """

    @abc.abstractmethod
    async def find_by_ids(self, entity_type: Type[E], ids: Iterable[str]) -> List[E]:
        """
        Get the stored entities of `entity_type` for the ids which exist. Ids with no
        stored entity are absent from the result.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def upsert(self, entity_type: Type[E], entities: Sequence[E]) -> None:
        """Insert or replace the entities, keyed by id"""
        raise NotImplementedError


STAT_FIND = "data_find"
STAT_FIND_MS = "data_find_ms"
STAT_UPSERT = "data_upsert"
STAT_UPSERT_MS = "data_upsert_ms"
