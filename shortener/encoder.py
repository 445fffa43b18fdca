"""Reversible base62 mapping between identifiers and short codes.

Identifiers are written as fixed-radix positional numbers, most significant
digit first, over the alphabet ``0-9A-Za-z``. The mapping is a bijection
between the allocatable identifiers (1 .. 2**64 - 1) and canonical codes,
which is why codes with a leading zero digit are rejected on decode: they
would alias the code without that digit.

Example:
    >>> encode(125)
    '21'
    >>> decode('21')
    125
"""

import string

from shortener.exceptions import InvalidCodeError, InvalidIdentifierError

__all__ = ["BASE62_ALPHABET", "MAX_IDENTIFIER", "Base62Encoder", "encode", "decode"]

BASE62_ALPHABET = string.digits + string.ascii_uppercase + string.ascii_lowercase
MAX_IDENTIFIER = 2**64 - 1


class Base62Encoder:
    """Stateless positional encoder over a fixed alphabet."""

    def __init__(self, alphabet: str = BASE62_ALPHABET, max_identifier: int = MAX_IDENTIFIER):
        if len(alphabet) < 2:
            raise ValueError("Alphabet must contain at least two symbols")
        if len(set(alphabet)) != len(alphabet):
            raise ValueError("Alphabet symbols must be unique")

        self.alphabet = alphabet
        self.base = len(alphabet)
        self.max_identifier = max_identifier
        self._index = {char: position for position, char in enumerate(alphabet)}

    def encode(self, identifier: int) -> str:
        if not isinstance(identifier, int) or isinstance(identifier, bool):
            raise InvalidIdentifierError(f"Identifier must be an integer (given type: {type(identifier)}).")
        if identifier < 0 or identifier > self.max_identifier:
            raise InvalidIdentifierError(f"Identifier out of range (given value: {identifier}).")

        if identifier == 0:
            return self.alphabet[0]

        digits: list[str] = []
        current = identifier
        while current > 0:
            current, remainder = divmod(current, self.base)
            digits.append(self.alphabet[remainder])
        digits.reverse()
        return "".join(digits)

    def decode(self, code: str) -> int:
        if not isinstance(code, str) or not code:
            raise InvalidCodeError("Short code must be a non-empty string")
        if code[0] == self.alphabet[0]:
            # Covers "0" itself, which maps to the reserved identifier.
            raise InvalidCodeError(f"Short code {code!r} is not canonical")

        value = 0
        for char in code:
            digit = self._index.get(char)
            if digit is None:
                raise InvalidCodeError(f"Short code {code!r} contains invalid character {char!r}")
            value = value * self.base + digit
            if value > self.max_identifier:
                raise InvalidCodeError(f"Short code {code!r} is out of range")
        return value


_default_encoder = Base62Encoder()


def encode(identifier: int) -> str:
    return _default_encoder.encode(identifier)


def decode(code: str) -> int:
    return _default_encoder.decode(code)
