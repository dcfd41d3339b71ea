#!/usr/bin/env python3
"""Generation of synthetic ballots

Each ballot is generated from its own pseudo-random generator, seeded from
the session seed and the ballot index: any ballot can be regenerated alone,
without generating the ones before it.
"""
import random
import collections

import util
import errors
import encoding


class Ballot(collections.namedtuple('Ballot', 'index pii vote_counts encoded_weight')):
    """A ballot in the clear

    Attributes:
        index (int): position of the ballot in the session, from 0
        pii (str): simulated identity of the voter
        vote_counts (tuple): number of votes (int) for each candidate
        encoded_weight (int): `Σ_c vote_counts[c] · M^c`
    """
    __slots__ = ()


class SealedBallot(collections.namedtuple('SealedBallot', 'index weight_ciphertext pii_ciphertext nonce')):
    """A ballot as kept by the engine: nothing in it is readable

    Attributes:
        index (int): position of the ballot in the session, from 0
        weight_ciphertext: homomorphic encryption of the encoded weight
        pii_ciphertext (bytes): AES-GCM encryption of the PII
        nonce (bytes): the nonce used for `pii_ciphertext`
    """
    __slots__ = ()


def pii_for(index):
    return 'FName_{0} LName_{0}'.format(index)


def ballot_rng(seed, index):
    """The generator dedicated to the ballot at `index`"""
    return random.Random(util.derive_seed(seed, 'ballot', index))


def generate_ballot(context, index, rng, votes_per_ballot=1):
    """Generate the ballot at `index`

    With a single vote per ballot, the candidate is chosen uniformly; with
    several, the votes are spread randomly among the candidates.

    Arguments:
        context (ParameterContext): the parameters of the session
        index (int): position of the ballot
        rng (random.Random): the generator dedicated to this ballot
        votes_per_ballot (int): number of votes cast by the ballot

    Returns:
        Ballot: the generated ballot
    """
    context.check_index(index)
    if not 1 <= votes_per_ballot <= context.max_voters:
        raise errors.InvalidParameter(
            'a ballot casts between 1 and {} votes, not {}'.format(context.max_voters, votes_per_ballot)
        )
    if votes_per_ballot == 1:
        vote_counts = [0] * context.n_candidates
        vote_counts[rng.randrange(context.n_candidates)] = 1
    else:
        vote_counts = util.random_numbers_totaling(votes_per_ballot, context.n_candidates, rng)
    weight = encoding.encode(vote_counts, context.base)
    return Ballot(index, pii_for(index), tuple(vote_counts), weight)


def generate(context, seed=None, votes_per_ballot=1, factory=generate_ballot):
    """Generate all the ballots of a session

    Arguments:
        context (ParameterContext): the parameters of the session
        seed (int, optional): the session seed; defaults to the seed derived
            from the parameters
        votes_per_ballot (int): number of votes cast by each ballot
        factory (callable): `factory(context, index, rng, votes_per_ballot)`
            returning a `Ballot`

    Returns:
        list: the `n_votes` ballots, in order
    """
    if seed is None:
        seed = context.seed
    return [
        factory(context, index, ballot_rng(seed, index), votes_per_ballot)
        for index in range(context.n_votes)
    ]


def expected_vote_counts(ballots, n_candidates):
    """Per-candidate totals computed in the clear (for verification)"""
    totals = [0] * n_candidates
    for ballot in ballots:
        for c, count in enumerate(ballot.vote_counts):
            totals[c] += count
    return totals


def seal(ballot, weight_ciphertext, vault):
    """Combine an encrypted weight with the sealed PII of `ballot`"""
    pii_ciphertext, nonce = vault.encrypt_pii(ballot.pii, ballot.index)
    return SealedBallot(ballot.index, weight_ciphertext, pii_ciphertext, nonce)
