"""Clients for retrieving JSON documents referenced by URIs of various schemes"""
import abc
import asyncio
import base64
import binascii
import json
import re
from re import Pattern
from typing import Any, Dict, cast
from urllib.parse import unquote_to_bytes

import aiohttp
from multidict import CIMultiDict

from nftindexer.core.stats import StatsService


class ProtocolError(Exception):
    pass


class UnsupportedProtocolError(ProtocolError):
    pass


class ProtocolTimeoutError(ProtocolError):
    pass


class ResourceNotFoundProtocolError(ProtocolError):
    pass


class InvalidRequestProtocolError(ProtocolError):
    pass


class InvalidDocumentProtocolError(ProtocolError):
    pass


class TooManyRequestsProtocolError(ProtocolError):
    def __init__(self, *args: object, retry_after: int) -> None:
        super().__init__(*args)
        self.__retry_after = retry_after

    @property
    def retry_after(self):
        return self.__retry_after


class DataClient(abc.ABC):
    @abc.abstractmethod
    async def get(self, uri: str) -> Any:
        """
        Get the document at the URI and return it decoded from JSON

        :raises: ProtocolError
        """
        raise NotImplementedError


class HttpDataClient(DataClient):
    """
    Data client for HTTP and HTTPS URIs. The session is supplied by the caller so that
    connections are pooled and kept alive across requests and so tests can replace it.

    :param session: aiohttp session used for every request
    :param request_timeout: Maximum number of seconds for a request, including reading
        the body
    :param stats_service: Stats service to record counts and timings
    """

    STAT_GET = "http_client_get"
    STAT_GET_MS = "http_client_get_ms"

    def __init__(
        self,
        session: aiohttp.ClientSession,
        request_timeout: float,
        stats_service: StatsService,
    ) -> None:
        self.__session = session
        self.__timeout = aiohttp.ClientTimeout(total=request_timeout)
        self.__stats_service = stats_service

    async def get(self, uri: str) -> Any:
        with self.__stats_service.ms_counter(self.STAT_GET_MS):
            try:
                async with self.__session.get(uri, timeout=self.__timeout) as response:
                    response.raise_for_status()
                    return await response.json(content_type=None)
            except asyncio.TimeoutError:
                raise ProtocolTimeoutError(
                    f"A timeout occurred for URI {uri} after {self.__timeout.total} seconds"
                )
            except aiohttp.ClientError as e:
                if isinstance(e, aiohttp.ClientResponseError) and e.status == 404:
                    raise ResourceNotFoundProtocolError(e)
                elif isinstance(e, aiohttp.ClientResponseError) and e.status == 400:
                    raise InvalidRequestProtocolError(e)
                elif isinstance(e, aiohttp.ClientResponseError) and e.status == 429:
                    try:
                        headers = cast(CIMultiDict, e.headers or CIMultiDict())
                        retry = int(headers.getone("Retry-After", 0))
                    except (KeyError, TypeError, ValueError):
                        retry = 0
                    raise TooManyRequestsProtocolError(e, retry_after=retry)
                raise ProtocolError(f"An error occurred getting data for URI {uri}: {e}")
            except ValueError as e:
                raise InvalidDocumentProtocolError(f"Response for URI {uri} is not JSON: {e}")
            finally:
                self.__stats_service.increment(self.STAT_GET)


class UriTranslatingDataClient(HttpDataClient):
    """
    HTTP data client for URIs which are translated to a gateway URL. The first group of
    the regular expression is appended to the base URI.
    """

    def __init__(
        self,
        base_uri: str,
        regex_pattern: Pattern,
        session: aiohttp.ClientSession,
        request_timeout: float,
        stats_service: StatsService,
    ) -> None:
        super().__init__(
            session=session, request_timeout=request_timeout, stats_service=stats_service
        )
        self.__base_uri: str = base_uri if base_uri.endswith("/") else f"{base_uri}/"
        self.__regex_pattern: Pattern = regex_pattern

    def translate(self, uri: str) -> str:
        match = self.__regex_pattern.fullmatch(uri)
        if not match:
            raise InvalidRequestProtocolError(f"URI {uri} is not valid for this client")
        return f"{self.__base_uri}{match.group(1)}"

    async def get(self, uri: str) -> Any:
        return await super().get(self.translate(uri))


class IpfsDataClient(UriTranslatingDataClient):
    """
    Data client for `ipfs://` URIs. Both ``ipfs://<cid>/<path>`` and the legacy
    ``ipfs://ipfs/<cid>/<path>`` forms are fetched from the gateway as
    ``<gateway_uri><cid>/<path>``. The gateway URI includes the ``/ipfs/`` path
    segment, for example ``https://ipfs.io/ipfs/``.
    """

    STAT_GET = "ipfs_client_get"
    STAT_GET_MS = "ipfs_client_get_ms"
    URI_REGEX = re.compile(r"^ipfs://(?:ipfs/)?(.+)$")

    def __init__(
        self,
        gateway_uri: str,
        session: aiohttp.ClientSession,
        request_timeout: float,
        stats_service: StatsService,
    ) -> None:
        super().__init__(
            base_uri=gateway_uri,
            regex_pattern=self.URI_REGEX,
            session=session,
            request_timeout=request_timeout,
            stats_service=stats_service,
        )


class ArweaveDataClient(UriTranslatingDataClient):
    STAT_GET = "arweave_client_get"
    STAT_GET_MS = "arweave_client_get_ms"
    URI_REGEX = re.compile(r"^ar://(.+)$")

    def __init__(
        self,
        gateway_uri: str,
        session: aiohttp.ClientSession,
        request_timeout: float,
        stats_service: StatsService,
    ) -> None:
        super().__init__(
            base_uri=gateway_uri,
            regex_pattern=self.URI_REGEX,
            session=session,
            request_timeout=request_timeout,
            stats_service=stats_service,
        )


class DataUriDataClient(DataClient):
    """Data client for RFC 2397 ``data:`` URIs which carry the document inline"""

    STAT_GET = "data_uri_client_get"
    URI_REGEX = re.compile(
        r"^data:(?P<mime_type>[^,;]+)?(?:;[^,;]+=[^,;]+)*(?:;(?P<encoding>base64))?,(?P<data>.*)$",
        re.DOTALL,
    )

    def __init__(self, stats_service: StatsService) -> None:
        self.__stats_service = stats_service

    async def get(self, uri: str) -> Any:
        match = self.URI_REGEX.match(uri)
        if not match:
            raise InvalidRequestProtocolError(f"Invalid Data URI: {uri}")
        self.__stats_service.increment(self.STAT_GET)
        data = match.group("data")
        try:
            if match.group("encoding") == "base64":
                raw = base64.b64decode(data, validate=True)
            else:
                raw = unquote_to_bytes(data)
            return json.loads(raw)
        except (binascii.Error, ValueError) as e:
            raise InvalidDocumentProtocolError(f"Data URI does not contain JSON: {e}")


class SchemeDispatchingDataClient(DataClient):
    """
    Data client which sends each URI to the client registered for its scheme prefix.

    :param clients: Mapping of URI prefix, such as ``"ipfs://"``, to the client which
        handles URIs with that prefix. Prefixes are matched case-insensitively in
        mapping order.
    """

    def __init__(self, clients: Dict[str, DataClient]) -> None:
        self.__clients = {prefix.lower(): client for prefix, client in clients.items()}

    def supports(self, uri: str) -> bool:
        lowered = uri.lower()
        return any(lowered.startswith(prefix) for prefix in self.__clients)

    async def get(self, uri: str) -> Any:
        lowered = uri.lower()
        for prefix, client in self.__clients.items():
            if lowered.startswith(prefix):
                return await client.get(uri)
        raise UnsupportedProtocolError(f"Unsupported protocol for URI: {uri}")
