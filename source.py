#!/usr/bin/env python3
"""Where ballots come from, and how they are found again for decryption

A simulation and a later ballot decryption are separate requests; the
decryption only receives the three parameters and an index. Two strategies
reconcile them:

    SeededBallotSource: keys and ballots are derived from the parameters
        and the source settings, so a decryption regenerates the requested
        ballot; nothing is kept between requests, but anyone knowing the
        parameters can derive the keys (simulation only); the number of
        votes per ballot is part of the derivation, so a decryption must use
        the same setting as the simulation or it opens a ballot of another
        (never run) simulation
    SessionCacheSource: keys are random and the sealed ballots of each
        simulation are kept in memory, up to a bound; decrypting for
        parameters that were never simulated (or whose session was dropped)
        fails with `errors.ParameterMismatch`
"""
import random
import secrets
import logging
import threading
import collections

import util
import ballot
import errors
import vault
from context import SessionKeys

logger = logging.getLogger(__name__)


class Session:
    """Everything produced by a simulation

    Attributes:
        context (ParameterContext): the parameters of the session
        keys (SessionKeys): key material of the session
        ballots (list): the sealed ballots (ballot.SealedBallot), by index
        expected_vote_counts (list): per-candidate totals known in the clear
        votes_per_ballot (int): number of votes cast by each ballot
    """
    def __init__(self, context, keys, ballots, expected_vote_counts, votes_per_ballot):
        self.context = context
        self.keys = keys
        self.ballots = ballots
        self.expected_vote_counts = expected_vote_counts
        self.votes_per_ballot = votes_per_ballot


class BallotSource:
    """Interface of ballot sources

    Attributes:
        engine (tally.TallyEngine): the homomorphic engine
        votes_per_ballot (int): number of votes cast by each ballot
        factory (callable): ballot generator, see `ballot.generate()`
    """
    def __init__(self, engine, votes_per_ballot=1, factory=ballot.generate_ballot):
        self.engine = engine
        self.votes_per_ballot = votes_per_ballot
        self.factory = factory

    def open_session(self, context):
        """Generate keys and sealed ballots for a simulation

        Returns:
            Session: the new session
        """
        raise NotImplementedError

    def sealed_ballot(self, context, index):
        """Find the sealed ballot at `index` of the session of `context`

        Returns:
            tuple: `(SealedBallot, SessionKeys)`
        """
        raise NotImplementedError

    def _seal_all(self, context, keys, seed):
        ballots = ballot.generate(context, seed, self.votes_per_ballot, self.factory)
        logger.info('encrypting %d ballots', len(ballots))
        ciphertexts = self.engine.encrypt_all([b.encoded_weight for b in ballots], keys.public_key)
        ballot_vault = vault.SymmetricBallotVault(keys.session_key)
        sealed = [
            ballot.seal(b, ciphertext, ballot_vault)
            for b, ciphertext in zip(ballots, ciphertexts)
        ]
        expected = ballot.expected_vote_counts(ballots, context.n_candidates)
        return Session(context, keys, sealed, expected, self.votes_per_ballot)


class SeededBallotSource(BallotSource):
    """Derive everything from the parameters of the simulation"""

    def seed(self, context):
        """Seed of the session of `context` under this source's settings"""
        return util.derive_seed(context.seed, 'votes_per_ballot', self.votes_per_ballot)

    def session_keys(self, context):
        """The keys of the session, regenerated from the parameters"""
        seed = self.seed(context)
        rng = random.Random(util.derive_seed(seed, 'paillier'))
        public_key, secret_key = self.engine.keygen(context, rng)
        session_key = vault.derive_session_key(util.derive_seed(seed, 'vault'))
        return SessionKeys(public_key, secret_key, session_key)

    def open_session(self, context):
        return self._seal_all(context, self.session_keys(context), self.seed(context))

    def sealed_ballot(self, context, index):
        context.check_index(index)
        keys = self.session_keys(context)
        clear = self.factory(context, index, ballot.ballot_rng(self.seed(context), index), self.votes_per_ballot)
        weight_ciphertext = self.engine.encrypt(clear.encoded_weight, keys.public_key)
        sealed = ballot.seal(clear, weight_ciphertext, vault.SymmetricBallotVault(keys.session_key))
        return sealed, keys


class SessionCacheSource(BallotSource):
    """Keep the sessions of past simulations in memory

    Only the latest session of given parameters is kept, and at most
    `max_sessions` sessions overall: opening or reading a session marks it as
    recently used, and the least recently used one is dropped first.
    """
    def __init__(self, engine, votes_per_ballot=1, factory=ballot.generate_ballot, max_sessions=64):
        super().__init__(engine, votes_per_ballot, factory)
        self.max_sessions = max_sessions
        self._sessions = collections.OrderedDict()
        self._lock = threading.Lock()

    def open_session(self, context):
        public_key, secret_key = self.engine.keygen(context)
        keys = SessionKeys(public_key, secret_key, vault.generate_session_key())
        session = self._seal_all(context, keys, secrets.randbits(256))
        with self._lock:
            self._sessions[context.key()] = session
            self._sessions.move_to_end(context.key())
            while len(self._sessions) > self.max_sessions:
                dropped, _ = self._sessions.popitem(last=False)
                logger.info('dropping session %r', dropped)
        return session

    def sealed_ballot(self, context, index):
        context.check_index(index)
        with self._lock:
            session = self._sessions.get(context.key())
            if session is not None:
                self._sessions.move_to_end(context.key())
        if session is None:
            raise errors.ParameterMismatch('no simulation was run for {!r}'.format(context))
        return session.ballots[index], session.keys


def make_source(config, engine, factory=ballot.generate_ballot):
    """Ballot source for a `TallyConfig.source` value"""
    if config.source == 'seeded':
        return SeededBallotSource(engine, config.votes_per_ballot, factory)
    if config.source == 'session':
        return SessionCacheSource(engine, config.votes_per_ballot, factory, config.max_sessions)
    raise errors.InvalidParameter('unknown ballot source {!r}'.format(config.source))
