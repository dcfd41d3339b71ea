#!/usr/bin/env python3
"""Custody of the session key exposed in tally reports

Reports carry the session key in "released" form so that an auditor can open
ballots later. `ClearKeyEscrow` releases it as-is (demonstration only);
`WrappedKeyEscrow` wraps it under a separate authority key, so that only the
authority can recover it.
"""
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

import errors

_WRAP_CONTEXT = b'ballot-tally session key'


class KeyEscrow:
    """Interface of key escrows"""

    def release(self, session_key):
        """Form of the session key that can be published in a report (str)"""
        raise NotImplementedError

    def recover(self, released):
        """Session key (bytes) from its released form"""
        raise NotImplementedError


class ClearKeyEscrow(KeyEscrow):
    """Publish the session key in hexadecimal

    NOT FOR PRODUCTION: whoever reads the report can open every ballot.
    """
    def release(self, session_key):
        return session_key.hex()

    def recover(self, released):
        return bytes.fromhex(released)


class WrappedKeyEscrow(KeyEscrow):
    """Publish the session key encrypted under an authority key

    Attributes:
        authority_key (bytes): 256 bit AES-GCM key held by the authority
    """
    def __init__(self, authority_key=None):
        if authority_key is None:
            authority_key = AESGCM.generate_key(bit_length=256)
        self.authority_key = authority_key
        self._aead = AESGCM(authority_key)

    def release(self, session_key):
        nonce = os.urandom(12)
        return (nonce + self._aead.encrypt(nonce, session_key, _WRAP_CONTEXT)).hex()

    def recover(self, released):
        try:
            blob = bytes.fromhex(released)
            return self._aead.decrypt(blob[:12], blob[12:], _WRAP_CONTEXT)
        except InvalidTag as e:
            raise errors.AuthenticationFailure('wrapped session key does not verify') from e
        except (ValueError, TypeError) as e:
            raise errors.AuthenticationFailure('malformed wrapped session key: {}'.format(e)) from e


def generate_authority_key():
    """Fresh authority key, hex encoded as in `TallyConfig.authority_key`"""
    return AESGCM.generate_key(bit_length=256).hex()


def make_escrow(name, authority_key=None):
    """Key escrow for a `TallyConfig.escrow` value

    Arguments:
        name (str): `"clear"` or `"wrapped"`
        authority_key (str): hex encoded authority key, required by the
            wrapped escrow so that released keys can be recovered later
    """
    if name == 'clear':
        return ClearKeyEscrow()
    if name == 'wrapped':
        if authority_key is None:
            raise errors.InvalidParameter('the wrapped escrow requires an authority key')
        return WrappedKeyEscrow(bytes.fromhex(authority_key))
    raise errors.InvalidParameter('unknown key escrow {!r}'.format(name))
