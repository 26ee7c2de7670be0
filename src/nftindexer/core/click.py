"""Classes to integrate with the click library"""

import typing as t

from click import ParamType, Parameter, Context

from nftindexer.core.types import Address, HexInt


class HexIntParamType(ParamType):
    """Click param type to parse input data and produce HexInt instances"""

    name = "HexInt"

    def convert(
        self, value: t.Any, param: t.Optional["Parameter"], ctx: t.Optional["Context"]
    ) -> t.Any:
        if isinstance(value, HexInt):
            return value
        try:
            if isinstance(value, str) and value.startswith("0x"):
                return HexInt(value)
            return HexInt(int(value))
        except (TypeError, ValueError):
            pass

        self.fail(f'Invalid value "{value}"! Must be either a hexadecimal string or integer')


class AddressParamType(ParamType):
    """Click param type to parse input data and produce lower-cased Address instances"""

    name = "Address"

    def convert(
        self, value: t.Any, param: t.Optional["Parameter"], ctx: t.Optional["Context"]
    ) -> t.Any:
        if isinstance(value, str) and value.startswith("0x") and len(value) == 42:
            try:
                lowered = value.lower()
                bytes.fromhex(lowered[2:])
                return Address(lowered)
            except ValueError:
                pass

        self.fail(f'Invalid value "{value}"! Must be a hexadecimal string of 20 bytes')
