from eth_abi import decode

from ...evm.types import EvmLog, Erc721Events
from ...core.types import Address
from ..entities import TransferRecord


class TransferLogDecoder:
    """Decodes ERC-721 Transfer logs into transfer records"""

    @staticmethod
    def log_id(log: EvmLog) -> str:
        return (
            f"{log.block_number.int_value:010}"
            f"-{log.transaction_index.int_value:06}"
            f"-{log.log_index.int_value:06}"
        )

    def decode(self, log: EvmLog, timestamp: int) -> TransferRecord:
        """
        Decode the log. All three parameters of an ERC-721 Transfer are indexed, so they
        are read from the topics. Addresses are lower-cased.

        :param log: ERC-721 Transfer log
        :param timestamp: Timestamp of the block containing the log
        :raises: ValueError when the log is not an ERC-721 Transfer
        """
        if len(log.topics) != 4 or log.topics[0] != Erc721Events.TRANSFER.event_signature_hash:
            raise ValueError(f"Log {self.log_id(log)} is not an ERC-721 Transfer")

        from_address, to_address, token_index = decode(
            Erc721Events.TRANSFER.indexed_param_types,
            b"".join(bytes(topic) for topic in log.topics[1:]),
        )
        return TransferRecord(
            id=self.log_id(log),
            block_number=log.block_number.int_value,
            timestamp=timestamp,
            transaction_hash=log.transaction_hash,
            from_=Address(from_address.lower()),
            to_=Address(to_address.lower()),
            token_index=token_index,
        )
