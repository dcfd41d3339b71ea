#!/usr/bin/env python3
"""Positional encoding of per-candidate vote counts into a single weight

A ballot casting `v[c]` votes for candidate `c` is encoded as the integer
`Σ_c v[c] · M^c`, where the base `M` is `max_voters + 1`. Adding encoded
weights adds the vote counts digit by digit, as long as no digit reaches `M`:
beyond that, the excess carries into the slot of the next candidate.
"""
import errors


def calc_weights(n_candidates, base):
    """The weight of one vote for each candidate

    Returns:
        list: `[M^0, M^1, ..., M^(n_candidates-1)]`
    """
    return [base**c for c in range(n_candidates)]


def capacity(base, n_candidates):
    """Smallest weight that cannot be represented with `n_candidates` digits"""
    return base**n_candidates


def encode(vote_counts, base):
    """Encode vote counts into a ballot weight

    Arguments:
        vote_counts (list): number of votes (int) for each candidate, in order
        base (int): the encoding base `M`

    Returns:
        int: `Σ_c vote_counts[c] · base^c`

    Raises:
        errors.InvalidDigit: a vote count is outside of `[0, base-1]`
    """
    weight = 0
    for count, digit_weight in zip(vote_counts, calc_weights(len(vote_counts), base)):
        if not 0 <= count < base:
            raise errors.InvalidDigit('vote count {} does not fit in base {}'.format(count, base))
        weight += count * digit_weight
    return weight


def decode(weight, base, n_candidates, strict=False):
    """Decode a (possibly aggregated) weight into vote counts

    Digits are extracted low to high. Without `strict`, a weight larger than
    what `n_candidates` digits can hold is decoded anyway and the excess is
    dropped; digits that overflowed during aggregation are corrupted in the
    same well-defined way.

    Arguments:
        weight (int): the weight to decode
        base (int): the encoding base `M`
        n_candidates (int): the number of digits to extract
        strict (bool): refuse weights of `base^n_candidates` or more

    Returns:
        list: the vote count (int) of each candidate

    Raises:
        errors.InvalidDigit: the weight is negative
        errors.DigitOverflow: `strict` is set and the weight does not fit
    """
    if weight < 0:
        raise errors.InvalidDigit('cannot decode negative weight {}'.format(weight))
    if strict and weight >= capacity(base, n_candidates):
        raise errors.DigitOverflow('weight {} does not fit in {} digits of base {}'.format(weight, n_candidates, base))
    counts = []
    for _ in range(n_candidates):
        weight, digit = divmod(weight, base)
        counts.append(digit)
    return counts
