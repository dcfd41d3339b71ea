#!/usr/bin/env python3
"""Parameters and key material of a simulation session"""
import util
import errors


def _check_positive(name, value):
    if not isinstance(value, int) or isinstance(value, bool):
        raise errors.InvalidParameter('{} must be an integer, got {!r}'.format(name, value))
    if value < 1:
        raise errors.InvalidParameter('{} must be at least 1, got {}'.format(name, value))


class ParameterContext:
    """The three integers identifying a simulation

    Attributes:
        n_candidates (int): number of candidates (digits of a ballot weight)
        max_voters (int): maximal number of votes `k` a digit must hold
        n_votes (int): number of ballots in the simulation
    """
    def __init__(self, n_candidates, max_voters, n_votes):
        _check_positive('n_candidates', n_candidates)
        _check_positive('max_voters', max_voters)
        _check_positive('n_votes', n_votes)
        self.n_candidates = n_candidates
        self.max_voters = max_voters
        self.n_votes = n_votes

    @property
    def base(self):
        """The encoding base `M = k + 1`"""
        return self.max_voters + 1

    @property
    def seed(self):
        """Seed derived from the parameters alone (stable across processes)"""
        return util.derive_seed('ballot-tally', *self.key())

    def key(self):
        return self.n_candidates, self.max_voters, self.n_votes

    def __eq__(self, other):
        if not isinstance(other, ParameterContext):
            return NotImplemented
        return self.key() == other.key()

    def __hash__(self):
        return hash(self.key())

    def __repr__(self):
        return 'ParameterContext(n_candidates={}, max_voters={}, n_votes={})'.format(*self.key())

    def worst_case_sum(self):
        """Largest tally possible: every digit at `max_voters · n_votes`

        The Paillier modulus must exceed this value.
        """
        return sum(
            self.max_voters * self.n_votes * self.base**c
            for c in range(self.n_candidates)
        )

    def max_candidate_total(self, votes_per_ballot=1):
        """Largest aggregated count a single candidate can receive"""
        return votes_per_ballot * self.n_votes

    def carry_safe(self, votes_per_ballot=1):
        """Whether aggregated counts always fit in one digit of base `M`

        When this is false, a candidate receiving more than `M - 1` votes in
        total carries into the slot of the next candidate and the decoded
        tally is corrupted.
        """
        return self.max_candidate_total(votes_per_ballot) < self.base

    def check_index(self, index):
        """Raises `errors.IndexOutOfRange` unless `0 <= index < n_votes`"""
        if not isinstance(index, int) or isinstance(index, bool):
            raise errors.IndexOutOfRange('ballot index must be an integer, got {!r}'.format(index))
        if not 0 <= index < self.n_votes:
            raise errors.IndexOutOfRange('ballot index {} out of range [0, {})'.format(index, self.n_votes))


class SessionKeys:
    """Key material of a session

    Attributes:
        public_key: homomorphic public key, used to encrypt ballot weights
        secret_key: homomorphic secret key, used to decrypt the tally and
            selected ballots
        session_key (bytes): symmetric key protecting the voters' identities
    """
    def __init__(self, public_key, secret_key, session_key):
        self.public_key = public_key
        self.secret_key = secret_key
        self.session_key = session_key
