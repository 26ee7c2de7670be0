"""Retrieval of off-chain token metadata documents"""
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence

from .entities import Attribute, Token
from .. import LOGGER_NAME
from ..core.batching import gather_rate_limited
from ..core.data_clients import (
    DataClient,
    ProtocolError,
    UnsupportedProtocolError,
    InvalidDocumentProtocolError,
)
from ..core.stats import StatsService


class MetadataFetchError(Exception):
    def __init__(self, uri: str, cause: Exception) -> None:
        super().__init__(f"failed to fetch metadata at {uri}. Error: {cause}")
        self.__uri = uri
        self.__cause = cause

    @property
    def uri(self) -> str:
        return self.__uri

    @property
    def cause(self) -> Exception:
        return self.__cause


@dataclass(frozen=True)
class TokenMetadata:
    image: Optional[str]
    attributes: Optional[List[Attribute]]


def parse_token_metadata(document: Any) -> TokenMetadata:
    """
    Extract the image and attributes from a metadata document. Documents come from
    untrusted sources, so a missing or mistyped ``image`` or ``attributes`` is left unset
    and attribute entries without a ``trait_type`` are skipped. A missing ``value`` is an
    empty string.

    :raises: InvalidDocumentProtocolError when the document is not a JSON object
    """
    if not isinstance(document, dict):
        raise InvalidDocumentProtocolError(
            f"Metadata document must be an object, not {type(document).__name__}"
        )

    image = document.get("image")
    if not isinstance(image, str):
        image = None

    raw_attributes = document.get("attributes")
    attributes: Optional[List[Attribute]] = None
    if isinstance(raw_attributes, list):
        attributes = [
            Attribute(
                trait_type=str(raw["trait_type"]),
                value="" if raw.get("value") is None else str(raw["value"]),
            )
            for raw in raw_attributes
            if isinstance(raw, dict) and raw.get("trait_type") is not None
        ]

    return TokenMetadata(image=image, attributes=attributes)


class MetadataFetcher:
    """
    Fetches token metadata documents while starting no more than `requests_per_second`
    requests in any one second.

    Each URI is handled independently. A URI with an unsupported scheme is skipped with a
    warning. A failed fetch is logged and leaves only its own token without metadata.

    :param data_client: Client to retrieve a document for any supported URI
    :param stats_service: Stats service for fetch counts
    :param requests_per_second: Ceiling for fetches started per second
    """

    STAT_FETCH = "metadata.fetch"
    STAT_FETCH_MS = "metadata.fetch-ms"
    STAT_FETCH_FAILED = "metadata.fetch-failed"
    STAT_UNSUPPORTED = "metadata.unsupported"

    def __init__(
        self, data_client: DataClient, stats_service: StatsService, requests_per_second: int
    ) -> None:
        if requests_per_second < 1:
            raise ValueError("requests_per_second must be at least 1")
        self.__data_client = data_client
        self.__stats_service = stats_service
        self.__requests_per_second = requests_per_second
        self.__logger = logging.getLogger(LOGGER_NAME)

    async def enrich(self, tokens: Sequence[Token], uris: Sequence[Optional[str]]) -> None:
        """
        Set the image and attributes of ``tokens[i]`` from the document at ``uris[i]``.
        Tokens whose document could not be retrieved are left unchanged.
        """
        if len(tokens) != len(uris):
            raise ValueError(f"Received {len(tokens)} tokens but {len(uris)} URIs")

        metadatas = await self.fetch_all(uris)
        for token, metadata in zip(tokens, metadatas):
            if metadata is None:
                continue
            token.image = metadata.image
            token.attributes = metadata.attributes

    async def fetch_all(self, uris: Sequence[Optional[str]]) -> List[Optional[TokenMetadata]]:
        """
        Fetch the metadata for each URI under the rate ceiling.

        :returns: One slot per URI in the same order. Slots for URIs which could not be
            fetched are None.
        """
        return await gather_rate_limited(uris, self.__requests_per_second, self.__fetch_isolated)

    async def fetch(self, uri: str) -> Optional[TokenMetadata]:
        """
        Fetch the metadata document at the URI.

        :returns: The metadata or None when the URI scheme is not supported
        :raises: MetadataFetchError
        """
        self.__stats_service.increment(self.STAT_FETCH)
        try:
            with self.__stats_service.ms_counter(self.STAT_FETCH_MS):
                document = await self.__data_client.get(uri)
            metadata = parse_token_metadata(document)
        except UnsupportedProtocolError:
            self.__stats_service.increment(self.STAT_UNSUPPORTED)
            self.__logger.warning(f"Unexpected metadata URL protocol: {uri}")
            return None
        except ProtocolError as e:
            raise MetadataFetchError(uri, e)
        self.__logger.info(f"Successfully fetched metadata from {uri}")
        return metadata

    async def __fetch_isolated(self, uri: Optional[str]) -> Optional[TokenMetadata]:
        if uri is None:
            self.__logger.warning("No metadata URL for token")
            return None
        try:
            return await self.fetch(uri)
        except MetadataFetchError as e:
            self.__stats_service.increment(self.STAT_FETCH_FAILED)
            self.__logger.error(str(e))
            return None
