from unittest.mock import MagicMock


class AsyncContextManager:
    """
    Stand-in for objects used with ``async with``, such as aiohttp sessions, responses,
    and aioboto3 resources
    """

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        pass


def async_context_manager_mock() -> MagicMock:
    """
    Mock usable with ``async with``. The object bound by the ``async with`` statement is
    ``mock.__aenter__.return_value``.
    """
    return MagicMock(AsyncContextManager)
