#!/usr/bin/env python3
"""Mock implementation of a partially homomorphic cryptosystem

This is mostly useful for testing the correctness of the tally without
incurring the computational cost of actually using an implementation of
Paillier. Ciphertexts hold their plaintext in the clear.

The main entry point of this module is `generate_mock_keypair()`.
"""
import random

import errors


def generate_mock_keypair(*args, rng=None, **kwargs):
    """Generate a pair of mock keys

    Positional and keyword arguments other than `rng` are accepted for
    compatibility with `paillier.generate_paillier_keypair()` and ignored.

    Arguments:
        rng (random.Random, optional): source of the key identifier; a seeded
            generator makes the keypair reproducible

    Returns:
        tuple: pair of two elements, usually named respectively `pk`
            (`MockPaillierPublicKey`), and `sk` (`MockPaillierPrivateKey`)
    """
    if rng is None:
        rng = random.SystemRandom()
    sk = MockPaillierPrivateKey(rng.getrandbits(64))
    return sk.public_key, sk


class MockPaillierPublicKey:
    """Mock public key for the Paillier cryptosystem

    Attributes:
        key_id (int): identifies the keypair; two mock public keys are equal
            when their identifiers are
    """
    def __init__(self, key_id):
        self.key_id = key_id

    def __eq__(self, other):
        if not isinstance(other, MockPaillierPublicKey):
            return NotImplemented
        return self.key_id == other.key_id

    def __hash__(self):
        return hash(self.key_id)

    def __repr__(self):
        return '<MockPaillierPublicKey {:016x}>'.format(self.key_id)

    def can_represent(self, m):
        # unbounded plaintext space
        return m >= 0

    def encrypt(self, m):
        """Encrypt a message m into a ciphertext

        Arguments:
            m (int): the message to be encrypted

        Returns:
            MockPaillierCiphertext: a ciphertext for the given integer `m`
        """
        return MockPaillierCiphertext(self, m)


class MockPaillierPrivateKey:
    """Mock secret key for the Paillier cryptosystem

    Attributes:
        public_key (MockPaillierPublicKey): the corresponding public key
    """
    def __init__(self, key_id):
        self.public_key = MockPaillierPublicKey(key_id)

    def decrypt(self, ciphertext, relative=True):
        """Decrypt a ciphertext

        Arguments:
            ciphertext (MockPaillierCiphertext): the ciphertext to be decrypted
            relative (bool): ignored, mock plaintexts are never reduced

        Returns:
            int: the message represented in the ciphertext

        Raises:
            errors.KeyMismatch: the ciphertext was produced under another
                public key
        """
        if ciphertext.public_key != self.public_key:
            raise errors.KeyMismatch('ciphertext was not encrypted under this keypair')
        return ciphertext.raw_value


class MockPaillierCiphertext:
    """Mock ciphertext from the Paillier cryptosystem

    Attributes:
        public_key (MockPaillierPublicKey): the mock Paillier public key used
            to generate this ciphertext
        raw_value (int): the plaintext itself
    """
    def __init__(self, public_key, raw_value):
        self.public_key = public_key
        self.raw_value = raw_value

    def __repr__(self):
        return '<MockPaillierCiphertext {}>'.format(self.raw_value)

    def __add__(self, other):
        """Homomorphically add two mock Paillier ciphertexts together

        Arguments:
            other (MockPaillierCiphertext or int): right operand

        Returns:
            MockPaillierCiphertext: decrypting this ciphertext should yield the
                sum of the values obtained by decrypting both operands

        Raises:
            errors.KeyMismatch: the operands are under different public keys
        """
        pk = self.public_key
        if isinstance(other, MockPaillierCiphertext):
            if other.public_key != pk:
                raise errors.KeyMismatch('cannot sum values under different public keys')
            return MockPaillierCiphertext(pk, self.raw_value + other.raw_value)
        else:
            return MockPaillierCiphertext(pk, self.raw_value + other)

    def __radd__(self, other):
        return self + other
