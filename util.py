#!/usr/bin/env python3
"""Some utilities (mostly arithmetic and seeding)"""
import random
import hashlib

import gmpy2


def powmod(x, y, m):
    """Computes `x^y mod m`

    The method `powmod()` from `gmpy2` is faster than Python's builtin
    `powmod()`. However, it does add some overhead which should be skipped for
    `x = 1`.

    Arguments:
        x (int): base of the exponentiation
        y (int): exponent
        m (int): modulus

    Returns:
        int: the result of `x^y mod m`
    """
    if x == 1:
        return 1
    elif y < 0:
        return invert(powmod(x, -y, m), m)
    else:
        return int(gmpy2.powmod(x, y, m))


def invert(x, m):
    """Computes the invert of `x` modulo `m`

    This is a wrapper for `invert() from `gmpy2`.

    Arguments:
        x (int): element to be inverted
        m (int): modulus

    Returns:
        int: y such that `x × y = 1 mod m`
    """
    return int(gmpy2.invert(x, m))


def is_prime(x):
    """Tests whether `x` is probably prime

    This is a wrapper for `is_prime() from `gmpy2`.
    """
    return bool(gmpy2.is_prime(x))


def genprime(n_bits, safe_prime=False, rng=None):
    """Generate a probable prime number of n_bits

    This method is based on `next_prime()` from `gmpy2` and adds the safe prime
    feature.

    Arguments:
        n_bits (int): the size of the prime to be generated, in bits
        safe_prime (bool): whether the returned value should be a safe prime a
            just a common prime
        rng (random.Random, optional): source of randomness; defaults to
            `random.SystemRandom()`; passing a seeded generator makes the
            result reproducible, which is only acceptable for simulations

    Returns:
        int: a probable prime `x` from `[2^(n_bits-1), 2^n_bits]`

        Is `safe_prime` is `True`, then `x` is also a probable safe prime
    """
    if rng is None:
        rng = random.SystemRandom()
    if safe_prime:
        # q of the form 2*p + 1 such that p is prime as well
        while True:
            p = genprime(n_bits - 1, rng=rng)
            q = 2*p + 1
            if is_prime(q):
                return q
    # just a random prime
    n = rng.randrange(2**(n_bits-1), 2**n_bits) | 1
    return int(gmpy2.next_prime(n))


def crt(residues, moduli):
    """Applies the Chinese Remainder Theorem on given residues

    Arguments:
        residues (list): the residues (int)
        moduli (list): the corresponding modulis (int) in the same order

    Returns:
        int: `x` such that `x < ∏ moduli` and `x % modulus = residue` for
        residue, modulus in `zip(moduli, residues)`
    """
    product = prod(moduli)
    r = 0
    for residue, modulus in zip(residues, moduli):
        NX = product // modulus
        r += residue * NX * invert(NX, modulus)
        r %= product
    return r


def prod(elements_iterable, modulus=None):
    """Computes the product of the given elements

    Arguments:
        elements_iterable (iterable): values (int) to be multiplied together
        modulus (int): if provided, the result will be given modulo this value

    Returns:
        int: the product of the elements from elements_iterable

        If modulus is not None, then the result is reduced modulo the provided
        value.
    """
    elements_iterator = iter(elements_iterable)
    product = next(elements_iterator)
    for element in elements_iterator:
        product *= element
        if modulus is not None:
            product %= modulus
    return product


def random_numbers_totaling(total, count, rng=None):
    """Generate random numbers of given sum

    Arguments:
        total (int): the value the random numbers should sum to
        count (int): the number of random numbers to generate
        rng (random.Random, optional): source of randomness; defaults to the
            module-level generator of `random`

    Returns:
        list: l, random numbers (int) such that `sum(l) == total` and `len(l)
        == count`
    """
    if rng is None:
        rng = random
    # divide [0, total] in count random subranges
    fenceposts = sorted(rng.choice(range(total+1)) for _ in range(count-1))
    # return the lengths of these subranges
    return [b - a for a, b in zip([0] + fenceposts, fenceposts + [total])]


def derive_seed(*parts):
    """Derive a 256 bit integer seed from the given values

    The derivation is a SHA-256 over the textual representation of the parts,
    separated by `|`; it is stable across processes and Python versions (unlike
    `hash()`).

    Arguments:
        parts: values (int, str or bytes) identifying the seed

    Returns:
        int: the seed
    """
    h = hashlib.sha256()
    for part in parts:
        if isinstance(part, bytes):
            part = part.hex()
        h.update(str(part).encode())
        h.update(b'|')
    return int.from_bytes(h.digest(), 'big')


def split_batches(elements, n_batches):
    """Split a list into at most `n_batches` contiguous sub-lists

    Arguments:
        elements (list): the values to split
        n_batches (int): the maximal number of batches

    Returns:
        list: the non-empty batches, in order
    """
    if not elements:
        return []
    batch_len = (len(elements)-1) // n_batches + 1
    return [
        elements[batch_len*i:batch_len*(i+1)]
        for i in range((len(elements)-1) // batch_len + 1)
    ]
