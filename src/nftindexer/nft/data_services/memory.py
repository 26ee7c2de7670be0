import copy
from typing import Dict, Iterable, List, Sequence, Type

from . import DataService, E, STAT_FIND, STAT_UPSERT
from ...core.entities import Entity
from ...core.stats import StatsService


class MemoryDataService(DataService):
    """
    Data service keeping entities in memory. Entities are copied on the way in and out so
    that changes made by callers are only visible after they are upserted.
    """

    def __init__(self, stats_service: StatsService) -> None:
        self.__stats_service = stats_service
        self.__entities: Dict[Type[Entity], Dict[str, Entity]] = {}

    async def find_by_ids(self, entity_type: Type[E], ids: Iterable[str]) -> List[E]:
        stored = self.__entities.get(entity_type, {})
        found = [copy.deepcopy(stored[id_]) for id_ in dict.fromkeys(ids) if id_ in stored]
        self.__stats_service.increment(STAT_FIND, len(found))
        return found  # type: ignore

    async def upsert(self, entity_type: Type[E], entities: Sequence[E]) -> None:
        stored = self.__entities.setdefault(entity_type, {})
        for entity in entities:
            stored[entity.id] = copy.deepcopy(entity)
        self.__stats_service.increment(STAT_UPSERT, len(entities))

    def count(self, entity_type: Type[Entity]) -> int:
        return len(self.__entities.get(entity_type, {}))
