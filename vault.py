#!/usr/bin/env python3
"""Symmetric encryption of the voters' identities

Each ballot's PII is sealed independently with AES-256-GCM under the session
key, so that any ballot can be opened alone and in any order. The nonce of a
ballot is its index written on 12 bytes: distinct ballots never share a nonce.
"""
import hashlib
import logging

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

import errors

logger = logging.getLogger(__name__)

KEY_SIZE = 32
NONCE_SIZE = 12


def generate_session_key():
    """Fresh random 256 bit session key"""
    return AESGCM.generate_key(bit_length=8*KEY_SIZE)


def derive_session_key(seed):
    """Session key derived from an integer seed with HKDF-SHA256

    Anyone knowing the seed knows the key; only for reproducible simulations.
    """
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_SIZE,
        salt=None,
        info=b'ballot-vault session key',
    )
    return hkdf.derive(seed.to_bytes(32, 'big'))


def nonce_for_index(index):
    """Nonce of the ballot at `index`"""
    if not 0 <= index < 2**(8*NONCE_SIZE):
        raise errors.IndexOutOfRange('no nonce for ballot index {}'.format(index))
    return index.to_bytes(NONCE_SIZE, 'big')


def index_for_nonce(nonce):
    """Inverse of `nonce_for_index()`"""
    if len(nonce) != NONCE_SIZE:
        raise ValueError('nonce must be {} bytes long'.format(NONCE_SIZE))
    return int.from_bytes(nonce, 'big')


class SymmetricBallotVault:
    """Authenticated encryption of PII under one session key

    The vault remembers a digest of what it sealed under each nonce and
    refuses to seal a different plaintext under a nonce already used, since
    reusing a GCM nonce under the same key breaks both confidentiality and
    authenticity. Sealing the same plaintext again yields the same ciphertext
    and is allowed.
    """
    def __init__(self, session_key):
        if len(session_key) != KEY_SIZE:
            raise ValueError('session key must be {} bytes long'.format(KEY_SIZE))
        self._aead = AESGCM(session_key)
        self._sealed = {}

    def encrypt_pii(self, pii, index):
        """Seal the PII of the ballot at `index`

        Returns:
            tuple: `(ciphertext, nonce)`, both bytes

        Raises:
            errors.NonceReuse: another plaintext was sealed for this index
        """
        plaintext = pii.encode()
        nonce = nonce_for_index(index)
        digest = hashlib.sha256(plaintext).digest()
        if self._sealed.setdefault(nonce, digest) != digest:
            raise errors.NonceReuse('nonce of ballot {} already used for another plaintext'.format(index))
        return self._aead.encrypt(nonce, plaintext, None), nonce

    def decrypt_pii(self, ciphertext, nonce):
        """Open a sealed PII

        Raises:
            errors.AuthenticationFailure: the ciphertext, the nonce or the key
                do not match
        """
        try:
            plaintext = self._aead.decrypt(nonce, ciphertext, None)
        except InvalidTag as e:
            raise errors.AuthenticationFailure('PII ciphertext does not verify') from e
        except (ValueError, TypeError) as e:
            raise errors.AuthenticationFailure('malformed PII ciphertext: {}'.format(e)) from e
        logger.debug('opened PII sealed with nonce %s', nonce.hex())
        return plaintext.decode()
