"""Class for tracking performance statistics"""
import asyncio
import logging
import time
from asyncio import CancelledError
from contextlib import contextmanager
from typing import Dict, Callable

from nftindexer import LOGGER_NAME


class StatsService:
    """Service for tracking and retrieving statistics stored in memory"""

    def __init__(self) -> None:
        self.__counters: Dict[str, int] = {}

    def increment(self, stat: str, quantity: int = 1) -> None:
        """
        Increment a counter `stat` statistic by a `quantity`

        :param stat: Counter stat name to be incremented
        :param quantity: Value for which the stat will be incremented
        """
        self.__counters[stat] = self.__counters.get(stat, 0) + quantity

    def get_count(self, stat: str) -> int:
        """
        Get the current count of a counter `stat`

        :param stat: Counter stat name to retrieve

        """
        return self.__counters.get(stat, 0)

    @contextmanager
    def ms_counter(self, stat: str):
        """
        Return a context manager that will determine the number of milliseconds
        spent within the context and add that value to the counter `stat`.

        :param stat: Counter stat name to which the number of milliseconds will be added

        Example::

            with stats_service.ms_counter("metadata_fetch_ms"):
                await fetch()
        """
        start = time.perf_counter_ns()
        try:
            yield None
        finally:
            end = time.perf_counter_ns()
            duration = int((end - start) / 1_000_000)
            self.increment(stat, duration)

    def reset(self) -> None:
        """
        Reset all counters
        """
        self.__counters.clear()


def _safe_average(count: int, total: int) -> float:
    return 0.0 if count == 0 else total / count


class StatsWriter:
    def __init__(
        self, stats_service: StatsService, get_line_function: Callable[[StatsService], str]
    ) -> None:
        self.__stats_service = stats_service
        self.__logger = logging.getLogger(LOGGER_NAME)
        self.__get_line_function = get_line_function

    def write_line(self):
        self.__logger.info(self.__get_line_function(self.__stats_service))

    async def write_at_interval(self, interval: int):
        try:
            while True:
                await asyncio.sleep(interval)
                self.write_line()
        except CancelledError:
            pass
