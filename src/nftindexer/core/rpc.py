"""Websocket JSON-RPC client"""
import asyncio
import logging
import re
import time
import uuid
from asyncio import Future, Task, CancelledError
from re import Pattern
from typing import Dict, Optional, Any, Tuple, Set

import aiohttp
from aiohttp import ClientError
from math import floor

from nftindexer import LOGGER_NAME
from nftindexer.core.stats import StatsService

TOO_MANY_REQUESTS_ERROR_CODES: Dict[int, Pattern] = {
    429: re.compile(r""),  # Alchemy
    -32005: re.compile(r".*rate"),  # Infura also uses this code for oversized results
}


class RpcError(Exception):
    pass


class RpcTransportError(RpcError):
    pass


class RpcClientError(RpcError):
    pass


class RpcDecodeError(RpcError):
    pass


class RpcServerError(RpcError):
    def __init__(self, rpc_version, request_id, error_code, error_message) -> None:
        super().__init__(f"RPC {rpc_version} - Req {request_id} - {error_code}: {error_message}")
        self.__rpc_version = rpc_version
        self.__request_id = request_id
        self.__error_code = error_code
        self.__error_message = error_message

    @property
    def rpc_version(self):
        return self.__rpc_version

    @property
    def request_id(self):
        return self.__request_id

    @property
    def error_code(self):
        return self.__error_code

    @property
    def error_message(self):
        return self.__error_message


class RpcClient:
    """
    JSON-RPC client over a single websocket connection. Requests are multiplexed on the
    connection and matched to responses by id. Must be used as an asynchronous context
    manager.

    :param provider_url: Websocket URL of the RPC node
    :param stats_service: Stats service for request counters and timings
    :param requests_per_second: Optional ceiling for requests sent per second
    :param request_timeout: Optional number of seconds to wait for a response
    """

    STAT_CONNECT = "rpc.connect"
    STAT_REQUEST_SENT = "rpc.request-sent"
    STAT_REQUEST_MS = "rpc.request-ms"
    STAT_REQUEST_DELAYED = "rpc.request-delayed"
    STAT_RESPONSE_RECEIVED = "rpc.response-received"
    STAT_RESPONSE_TOO_MANY_REQUESTS = "rpc.response-too-many-requests"
    STAT_RESPONSE_UNKNOWN_ID = "rpc.response-unknown-id"
    STAT_ORPHANED_REQUESTS = "rpc.orphaned-requests"

    def __init__(
        self,
        provider_url: str,
        stats_service: StatsService,
        requests_per_second: Optional[int] = None,
        request_timeout: Optional[float] = None,
    ) -> None:
        self._stats_service = stats_service
        self.__provider_url = provider_url
        self.__requests_per_second = requests_per_second
        self.__request_timeout = request_timeout
        self.__logger = logging.getLogger(LOGGER_NAME)
        self.__instance = uuid.uuid1()
        self.__nonce = 0
        self.__session: Optional[aiohttp.ClientSession] = None
        self.__ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self.__inbound_loop_task: Optional[Task] = None
        self.__pending: Dict[str, Tuple[Future, Dict[str, Any], int]] = {}
        self.__replay_tasks: Set[Task] = set()
        self.__paused_until: float = 0.0
        self.__this_second: int = 0
        self.__requests_this_second: int = 0

    async def __aenter__(self):
        self._stats_service.increment(self.STAT_CONNECT)
        self.__session = aiohttp.ClientSession()
        try:
            self.__ws = await self.__session.ws_connect(self.__provider_url, max_msg_size=0)
        except ClientError as e:
            await self.__session.close()
            raise RpcTransportError(f"Unable to connect to {self.__provider_url}: {e}")
        self.__inbound_loop_task = asyncio.create_task(
            self.__inbound_loop(self.__ws), name="rpc-inbound"
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self.__session is not None:
            await self.__session.close()
        if self.__inbound_loop_task is not None and not self.__inbound_loop_task.done():
            self.__inbound_loop_task.cancel()
        replay_tasks = list(self.__replay_tasks)
        for task in replay_tasks:
            task.cancel()
        await asyncio.gather(*replay_tasks, return_exceptions=True)
        self.__ws = None

    async def __inbound_loop(self, ws: aiohttp.ClientWebSocketResponse):
        while not ws.closed:
            try:
                response = await ws.receive_json()
            except TypeError:  # The ws client raises this for close frames
                continue
            except CancelledError:
                raise
            except Exception as e:
                self.__log(logging.ERROR, f"Error receiving RPC response -- {repr(e)}")
                break
            self.__process_response(response)

        for future, _, _ in self.__pending.values():
            self._stats_service.increment(self.STAT_ORPHANED_REQUESTS)
            if not future.done():
                future.set_exception(RpcTransportError("Transport closed before response"))
        self.__pending.clear()

    def __process_response(self, response: Dict[str, Any]):
        if "id" not in response:
            self.__log(logging.ERROR, f'Response received without "id" -- {response}')
            return
        try:
            future, request, start_time = self.__pending.pop(response["id"])
        except KeyError:
            self._stats_service.increment(self.STAT_RESPONSE_UNKNOWN_ID)
            self.__log(logging.ERROR, f"Response received for unknown id -- {response}")
            return

        duration = int((time.perf_counter_ns() - start_time) / 1_000_000)
        self._stats_service.increment(self.STAT_REQUEST_MS, duration)
        self._stats_service.increment(self.STAT_RESPONSE_RECEIVED)
        if future.done():  # Caller timed out
            return

        if "result" in response:
            future.set_result(response["result"])
        elif "error" in response:
            error = response["error"]
            code = error.get("code")
            message = error.get("message", "")
            if code in TOO_MANY_REQUESTS_ERROR_CODES and TOO_MANY_REQUESTS_ERROR_CODES[
                code
            ].match(message):
                backoff_seconds = float(error.get("data", {}).get("backoff_seconds", 1.0))
                self._stats_service.increment(self.STAT_RESPONSE_TOO_MANY_REQUESTS)
                self.__log(
                    logging.DEBUG,
                    f"Too many requests for {self.__provider_url}. "
                    f"Retrying in {backoff_seconds} seconds.",
                )
                replay_task = asyncio.create_task(
                    self.__replay(backoff_seconds, future, request), name="rpc-replay"
                )
                self.__replay_tasks.add(replay_task)
                replay_task.add_done_callback(lambda task: self.__replay_done(task, future))
            else:
                future.set_exception(
                    RpcServerError(response.get("jsonrpc"), response["id"], code, message)
                )
        else:
            future.set_exception(RpcError(f"No result or error in response: {response}"))

    async def __replay(self, backoff_seconds: float, future: Future, request: Dict[str, Any]):
        loop = asyncio.get_running_loop()
        self.__paused_until = max(self.__paused_until, loop.time() + backoff_seconds)
        try:
            await self.__send_json(future, request)
        except RpcError as e:
            if not future.done():
                future.set_exception(e)

    def __replay_done(self, task: Task, future: Future):
        self.__replay_tasks.discard(task)
        if task.cancelled() and not future.done():
            future.set_exception(RpcTransportError("Client closed before request was replayed"))

    async def __send_json(self, future: Future, request: Dict[str, Any]) -> None:
        await self.__wait_for_ready_to_send()
        if self.__ws is None:
            raise RpcClientError("Requests must be sent using a context manager instance!")
        # Registered before sending as the response can arrive before send_json returns
        self.__pending[request["id"]] = (future, request, time.perf_counter_ns())
        try:
            await self.__ws.send_json(request)
        except (ClientError, ConnectionResetError, asyncio.TimeoutError) as e:
            self.__pending.pop(request["id"], None)
            raise RpcTransportError(e)
        self._stats_service.increment(self.STAT_REQUEST_SENT)

    async def __wait_for_ready_to_send(self):
        loop = asyncio.get_running_loop()
        delayed = False

        while loop.time() < self.__paused_until:
            delayed = True
            await asyncio.sleep(self.__paused_until - loop.time())

        if self.__requests_per_second:
            second = floor(loop.time())
            while (
                second == self.__this_second
                and self.__requests_this_second >= self.__requests_per_second
            ):
                delayed = True
                await asyncio.sleep(second + 1 - loop.time())
                second = floor(loop.time())

            if self.__this_second < second:
                self.__this_second = second
                self.__requests_this_second = 0
            self.__requests_this_second += 1

        if delayed:
            self._stats_service.increment(self.STAT_REQUEST_DELAYED)

    def __log(self, level, message):
        self.__logger.log(level, f"{self.__instance}:{message}")

    async def send(self, method, *params) -> Any:
        if self.__ws is None:
            raise RpcClientError("Requests must be sent using a context manager instance!")
        if self.__inbound_loop_task is None or self.__inbound_loop_task.done():
            raise RpcClientError("No inbound processing loop to react to response for request!")

        self.__nonce += 1
        request = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": f"{self.__instance}-{self.__nonce}",
        }
        future = asyncio.get_running_loop().create_future()
        await self.__send_json(future, request)
        self._stats_service.increment(f"{self.STAT_REQUEST_SENT}.{method}")
        try:
            return await asyncio.wait_for(future, self.__request_timeout)
        except asyncio.TimeoutError:
            self.__pending.pop(request["id"], None)
            raise RpcTransportError(
                f"No response for {method} after {self.__request_timeout} seconds"
            )
