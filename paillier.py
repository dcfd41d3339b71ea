#!/usr/bin/env python3
"""Paillier cryptosystem, restricted to what a tally needs

Paillier is additively homomorphic: multiplying two ciphertexts modulo `n²`
gives a ciphertext of the sum of their plaintexts. Ballot weights are
encrypted one by one, combined into a single ciphertext and only that
aggregate is decrypted.

With `g = n + 1`, encryption is `(1 + m·n) · r^n mod n²` and needs a single
modular exponentiation (the randomization). Decryption uses the factors of
`n` and the Chinese Remainder Theorem.

The main entry point of this module is `generate_paillier_keypair()`.
"""
import random

import util
import errors


def generate_paillier_keypair(n_bits=1024, safe_primes=False, rng=None):
    """Generate a Paillier keypair whose modulus has about `n_bits` bits

    Arguments:
        n_bits (int, optional): size of the modulus `n = p·q`; the tally
            must stay below `n`
        safe_primes (bool, optional): draw `p` and `q` as safe primes; much
            slower, DO NOT SET TO FALSE IN PRODUCTION
        rng (random.Random, optional): source of randomness for the primes; a
            seeded generator reproduces the same keypair, so anyone knowing the
            seed knows the secret key (simulations only)

    Returns:
        tuple: `(pk, sk)`, a `PaillierPublicKey` and its `PaillierSecretKey`
    """
    p = util.genprime(n_bits // 2, safe_primes, rng)
    q = util.genprime(n_bits - n_bits // 2, safe_primes, rng)
    while q == p:
        q = util.genprime(n_bits - n_bits // 2, safe_primes, rng)
    sk = PaillierSecretKey(p, q, p*q + 1)
    return sk.public_key, sk


class PaillierPublicKey:
    """Public half of a Paillier keypair

    Attributes:
        n (int): the modulus, product of two secret primes
        g (int): the generator, always `n + 1` here
        nsquare (int): `n²`, the modulus of ciphertexts
    """

    def __init__(self, n, g):
        self.n = n
        self.nsquare = n * n
        self.g = g

    def __eq__(self, other):
        if not isinstance(other, PaillierPublicKey):
            return NotImplemented
        return self.n == other.n and self.g == other.g

    def __hash__(self):
        return hash((self.n, self.g))

    def __repr__(self):
        return '<PaillierPublicKey {} bits>'.format(self.n.bit_length())

    def can_represent(self, m):
        """Whether `m` decrypts back to itself

        Plaintexts live in Z_n; a tally reaching `n` silently wraps around.
        """
        return 0 <= m < self.n

    def raw_encrypt(self, m, randomization=None):
        """Raw ciphertext of `m` (reduced modulo `n`)

        Arguments:
            m (int): the plaintext
            randomization (int, optional): the factor `r`; drawn from a
                secure generator if not provided; `1` gives a deterministic
                encoding, only suitable as an operand of an addition

        Returns:
            int: `(1 + m·n) · r^n mod n²`
        """
        n, n2 = self.n, self.nsquare
        raw_value = (1 + n * (m % n)) % n2
        if randomization is None:
            randomization = random.SystemRandom().randrange(1, n)
        if randomization != 1:
            raw_value = raw_value * util.powmod(randomization, n, n2) % n2
        return raw_value

    def encrypt(self, m):
        """Encrypt `m` with fresh randomness

        Returns:
            PaillierCiphertext: two encryptions of the same value differ
        """
        return PaillierCiphertext(self, self.raw_encrypt(m))

    @staticmethod
    def L(u, n):
        """The function `L(u) = (u - 1) / n` used by decryption"""
        return (u - 1) // n


class PaillierSecretKey:
    """Secret half of a Paillier keypair

    Attributes:
        p (int): first factor of `n`
        q (int): second factor of `n`
        public_key (PaillierPublicKey): the matching public key
        hp (int): `L(g^(p-1) mod p²)^-1 mod p`, precomputed for decryption
        hq (int): `L(g^(q-1) mod q²)^-1 mod q`, precomputed for decryption
    """
    def __init__(self, p, q, g):
        self.p = p
        self.q = q
        self.public_key = pk = PaillierPublicKey(p*q, g)

        self.hp = util.invert(pk.L(util.powmod(pk.g, p-1, p*p), p), p)
        self.hq = util.invert(pk.L(util.powmod(pk.g, q-1, q*q), q), q)

    def decrypt(self, ciphertext, relative=True):
        """Recover the plaintext of a ciphertext (or of an aggregate)

        Arguments:
            ciphertext (PaillierCiphertext): produced under `self.public_key`
            relative (bool): map the result to `[-n/2, n/2)` instead of
                `[0, n)`; tallies are non-negative and use `relative=False`

        Returns:
            int: the plaintext, or the sum of the plaintexts that were
            homomorphically added into `ciphertext`

        Raises:
            errors.KeyMismatch: the ciphertext was produced under another
                public key
            ValueError: the raw ciphertext is not an element of Z_n²
        """
        pk = self.public_key
        if ciphertext.public_key != pk:
            raise errors.KeyMismatch('ciphertext was not encrypted under this keypair')
        raw_value = ciphertext.raw_value
        if not 0 < raw_value < pk.nsquare:
            raise ValueError('raw ciphertext out of Z_n²')
        p, q = self.p, self.q
        m_p = pk.L(util.powmod(raw_value, p-1, p*p), p) * self.hp % p
        m_q = pk.L(util.powmod(raw_value, q-1, q*q), q) * self.hq % q
        plaintext = util.crt([m_p, m_q], [p, q])
        if relative and plaintext >= pk.n // 2:
            plaintext -= pk.n
        return plaintext


class PaillierCiphertext:
    """A Paillier ciphertext and the public key it belongs to

    Attributes:
        public_key (PaillierPublicKey): key used for encryption
        raw_value (int): element of Z_n²
    """
    def __init__(self, public_key, raw_value):
        self.public_key = public_key
        self.raw_value = raw_value

    def __repr__(self):
        return '<PaillierCiphertext {:x}...>'.format(self.raw_value >> max(0, self.raw_value.bit_length() - 32))

    def __add__(self, other):
        """Homomorphic addition

        Arguments:
            other (PaillierCiphertext or int): a ciphertext under the same key,
                or a plaintext integer

        Returns:
            PaillierCiphertext: encrypts the sum of both operands

        Raises:
            errors.KeyMismatch: the operands are under different public keys
        """
        pk = self.public_key
        if isinstance(other, PaillierCiphertext):
            if other.public_key != pk:
                raise errors.KeyMismatch('cannot sum values under different public keys')
            other = other.raw_value
        else:
            other = pk.raw_encrypt(other, randomization=1)
        return PaillierCiphertext(pk, self.raw_value * other % pk.nsquare)

    def __radd__(self, other):
        # lets sum() start from 0
        return self + other
