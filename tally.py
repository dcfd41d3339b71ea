#!/usr/bin/env python3
"""Homomorphic tally of encrypted ballot weights

The engine encrypts each ballot weight under an additively homomorphic
scheme (Paillier, or its mock for tests), combines all the ciphertexts into a
single one and decrypts only that aggregate. `assemble_report()` turns a
session into the `TallyReport` returned by a simulation.
"""
import logging
import multiprocessing

import util
import mock
import errors
import encoding
import paillier

logger = logging.getLogger(__name__)


def _encrypt_weight(job):
    public_key, weight = job
    return public_key.encrypt(weight)


class TallyEngine:
    """Key generation, encryption, aggregation and decryption of weights

    Attributes:
        config (TallyConfig): key size, scheme and parallelism settings
    """
    def __init__(self, config):
        self.config = config

    def keygen(self, context, rng=None):
        """Generate the homomorphic keypair of a session

        The modulus is made large enough to hold the largest possible tally
        of the session (`context.worst_case_sum()`), even if this exceeds
        `config.n_bits`.

        Arguments:
            context (ParameterContext): the parameters of the session
            rng (random.Random, optional): makes the keypair reproducible

        Returns:
            tuple: `(public_key, secret_key)`
        """
        bound = context.worst_case_sum()
        if self.config.mock_crypto:
            pk, sk = mock.generate_mock_keypair(rng=rng)
        else:
            n_bits = max(self.config.n_bits, bound.bit_length() + 2)
            logger.info('generating Paillier keys (%d bits)', n_bits)
            pk, sk = paillier.generate_paillier_keypair(n_bits, self.config.safe_primes, rng)
        if not pk.can_represent(bound):
            raise errors.InvalidParameter('modulus too small for a tally of up to {}'.format(bound))
        return pk, sk

    def encrypt(self, weight, public_key):
        """Encrypt a single weight

        Raises:
            errors.InvalidParameter: the weight would wrap around the modulus
        """
        if not public_key.can_represent(weight):
            raise errors.InvalidParameter('weight {} outside of the plaintext space'.format(weight))
        return public_key.encrypt(weight)

    def encrypt_all(self, weights, public_key):
        """Encrypt many weights, in parallel when `config.workers > 1`

        Returns:
            list: the ciphertexts, in the order of `weights`
        """
        for weight in weights:
            if not public_key.can_represent(weight):
                raise errors.InvalidParameter('weight {} outside of the plaintext space'.format(weight))
        if self.config.workers > 1 and len(weights) > 1:
            jobs = [(public_key, weight) for weight in weights]
            with multiprocessing.Pool(self.config.workers) as pool:
                return pool.map(_encrypt_weight, jobs)
        return [public_key.encrypt(weight) for weight in weights]

    def aggregate(self, ciphertexts):
        """Homomorphically add ciphertexts together

        The operation is commutative and associative; the ciphertexts are
        summed by batches which are then combined.

        Raises:
            errors.EmptyTally: there is nothing to aggregate
            errors.KeyMismatch: the ciphertexts are under different keys
        """
        ciphertexts = list(ciphertexts)
        if not ciphertexts:
            raise errors.EmptyTally('cannot tally zero ballots')
        partial_sums = [
            _fold(batch)
            for batch in util.split_batches(ciphertexts, self.config.workers)
        ]
        return _fold(partial_sums)

    def decrypt(self, ciphertext, secret_key):
        """Decrypt a ciphertext (the aggregate, or a single ballot weight)

        Raises:
            errors.KeyMismatch: the ciphertext is not under this keypair
        """
        return secret_key.decrypt(ciphertext, relative=False)


def _fold(ciphertexts):
    total = ciphertexts[0]
    for ciphertext in ciphertexts[1:]:
        total = total + ciphertext
    return total


class TallyReport:
    """Result of a simulation

    Attributes:
        context (ParameterContext): the parameters of the simulation
        encrypted_sum: aggregate of all the weight ciphertexts
        decrypted_sum (int): plaintext of `encrypted_sum`
        per_candidate_weights (list): base-`M` digits of `decrypted_sum`
        per_candidate_vote_counts (list): votes of each candidate; equal to
            the weights as long as one vote weighs one unit
        total_votes_decoded (int): sum of `per_candidate_vote_counts`
        session_key (str): session key as released by the key escrow
        expected_vote_counts (list): per-candidate totals computed in the
            clear when the ballots were generated
        carry_safe (bool): whether the per-candidate totals were guaranteed
            to fit in one digit
    """
    def __init__(self, context, encrypted_sum, decrypted_sum, per_candidate_weights,
                 session_key, expected_vote_counts, carry_safe):
        self.context = context
        self.encrypted_sum = encrypted_sum
        self.decrypted_sum = decrypted_sum
        self.per_candidate_weights = list(per_candidate_weights)
        self.per_candidate_vote_counts = list(per_candidate_weights)
        self.total_votes_decoded = sum(self.per_candidate_vote_counts)
        self.session_key = session_key
        self.expected_vote_counts = list(expected_vote_counts)
        self.carry_safe = carry_safe

    @property
    def verified(self):
        """Whether the decoded tally matches the counts known in the clear"""
        return (
            self.per_candidate_vote_counts == self.expected_vote_counts
            and self.total_votes_decoded == sum(self.expected_vote_counts)
        )

    def to_dict(self):
        return {
            'n_candidates': self.context.n_candidates,
            'max_voters': self.context.max_voters,
            'n_votes': self.context.n_votes,
            'base': self.context.base,
            'encrypted_sum': self.encrypted_sum.raw_value,
            'decrypted_sum': self.decrypted_sum,
            'per_candidate_weights': self.per_candidate_weights,
            'per_candidate_vote_counts': self.per_candidate_vote_counts,
            'total_votes_decoded': self.total_votes_decoded,
            'session_key': self.session_key,
            'expected_vote_counts': self.expected_vote_counts,
            'carry_safe': self.carry_safe,
            'verified': self.verified,
        }


def assemble_report(engine, session, escrow):
    """Tally a session and build its report

    The ballots are only read: the aggregate is computed from their weight
    ciphertexts and decrypted once.

    Arguments:
        engine (TallyEngine): the homomorphic engine
        session (source.Session): the sealed ballots and keys of the session
        escrow (escrow.KeyEscrow): custody of the session key in the report

    Returns:
        TallyReport: the report
    """
    context = session.context
    carry_safe = context.carry_safe(session.votes_per_ballot)
    if not carry_safe:
        logger.warning(
            'per-candidate totals may reach %d but base is %d: decoded counts may be corrupted by carries',
            context.max_candidate_total(session.votes_per_ballot), context.base,
        )

    logger.info('tallying %d encrypted ballots', len(session.ballots))
    encrypted_sum = engine.aggregate(ballot.weight_ciphertext for ballot in session.ballots)
    decrypted_sum = engine.decrypt(encrypted_sum, session.keys.secret_key)
    logger.debug('decrypted total sum: %d', decrypted_sum)
    weights = encoding.decode(decrypted_sum, context.base, context.n_candidates)

    report = TallyReport(
        context, encrypted_sum, decrypted_sum, weights,
        escrow.release(session.keys.session_key),
        session.expected_vote_counts, carry_safe,
    )
    if not report.verified:
        logger.warning('decoded tally %s differs from expected %s', weights, report.expected_vote_counts)
    return report
