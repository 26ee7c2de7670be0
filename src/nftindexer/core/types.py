"""Core types"""

from typing import NewType, Union

Address = NewType("Address", str)
"""A address type for explicitly identifying an address in usage"""


class HexInt:
    """
    A representation of an integer than can be easily translated between a hexadecimal
    string and an integer. Block numbers travel over JSON-RPC as hexadecimal strings and
    are compared and ranged as integers, so both forms are kept.
    """

    def __init__(self, value: Union[str, int]) -> None:
        if isinstance(value, str):
            self.__hex_str = value
            self.__int_value = int(value, 16)
        elif isinstance(value, int):
            self.__hex_str = hex(value)
            self.__int_value = value
        else:
            raise TypeError("parameter value must be str or int")

    def __eq__(self, o) -> bool:
        if isinstance(o, self.__class__):
            return o.int_value == self.int_value
        elif isinstance(o, int):
            return self.int_value == o
        else:
            return NotImplemented

    def __str__(self) -> str:
        return self.__hex_str

    def __hash__(self) -> int:
        return self.int_value.__hash__()

    def __repr__(self):
        return f"{self.__class__.__name__}('{self.__hex_str}')"

    def __lt__(self, other):
        return self.int_value < self.__other_int(other)

    def __le__(self, other):
        return self.int_value <= self.__other_int(other)

    def __gt__(self, other):
        return self.int_value > self.__other_int(other)

    def __ge__(self, other):
        return self.int_value >= self.__other_int(other)

    def __add__(self, other):
        return HexInt(self.int_value + self.__other_int(other))

    def __sub__(self, other):
        return HexInt(self.int_value - self.__other_int(other))

    def __other_int(self, other) -> int:
        if isinstance(other, self.__class__):
            return other.int_value
        elif isinstance(other, int):
            return other
        raise TypeError(f"unsupported operand type: {type(other).__name__}")

    @property
    def hex_value(self) -> str:
        """Get the hexadecimal string representation of the object"""
        return self.__hex_str

    @property
    def int_value(self) -> int:
        """Get the integer representation of the object"""
        return self.__int_value
