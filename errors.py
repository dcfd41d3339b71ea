#!/usr/bin/env python3
"""Faults reported by the tally engine

Every fault is local to the request that raised it: a failed simulation
produces no report at all and a failed ballot decryption does not affect any
other decryption. The surrounding layers (command line, server) turn them into
structured results with `TallyError.to_dict()`.
"""


class TallyError(Exception):
    """Base class for all the faults of the tally engine"""

    def to_dict(self):
        """Structured representation, suitable for JSON"""
        return {'error': type(self).__name__, 'message': str(self)}


class InvalidParameter(TallyError, ValueError):
    """Raised when simulation parameters or configuration values are invalid"""


class InvalidDigit(TallyError, ValueError):
    """Raised when a vote count does not fit in one digit of the encoding base"""


class DigitOverflow(TallyError, ValueError):
    """Raised when a weight cannot be decoded without losing information"""


class KeyMismatch(TallyError):
    """Raised when a ciphertext is used with keys it was not produced for"""


class EmptyTally(TallyError):
    """Raised when aggregating an empty set of ciphertexts"""


class AuthenticationFailure(TallyError):
    """Raised when a symmetric ciphertext does not verify"""


class IndexOutOfRange(TallyError, IndexError):
    """Raised when requesting a ballot that does not exist"""


class ParameterMismatch(TallyError, LookupError):
    """Raised when no known simulation matches the given parameters"""


class NonceReuse(TallyError):
    """Raised when a nonce would encrypt two different plaintexts"""


_ERRORS = {
    cls.__name__: cls
    for cls in [
        TallyError, InvalidParameter, InvalidDigit, DigitOverflow,
        KeyMismatch, EmptyTally, AuthenticationFailure, IndexOutOfRange,
        ParameterMismatch, NonceReuse,
    ]
}


def from_dict(data):
    """Rebuild an exception from the output of `TallyError.to_dict()`

    Unknown error names are mapped to the base class `TallyError`.
    """
    cls = _ERRORS.get(data.get('error'), TallyError)
    return cls(data.get('message', ''))
