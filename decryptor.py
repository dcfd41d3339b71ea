#!/usr/bin/env python3
"""Decryption of a single ballot, on explicit request

Only the ballot asked for is opened: its PII with the session key and its
weight with the homomorphic secret key. No other ballot and no aggregate is
involved.
"""
import logging
import collections

import vault
import encoding

logger = logging.getLogger(__name__)


class DecryptedBallotView(collections.namedtuple('DecryptedBallotView', 'index pii raw_weight decoded_vote_counts')):
    """A ballot opened by `SelectiveDecryptor`

    Attributes:
        index (int): position of the ballot
        pii (str): identity of the voter
        raw_weight (int): the decrypted encoded weight
        decoded_vote_counts (list): votes of the ballot for each candidate
    """
    __slots__ = ()

    def to_dict(self):
        return {
            'index': self.index,
            'pii': self.pii,
            'raw_weight': self.raw_weight,
            'decoded_vote_counts': list(self.decoded_vote_counts),
        }


class SelectiveDecryptor:
    """Open ballots one at a time

    Attributes:
        engine (tally.TallyEngine): the homomorphic engine
        source (source.BallotSource): where to find the sealed ballots
    """
    def __init__(self, engine, source):
        self.engine = engine
        self.source = source

    def decrypt_ballot(self, context, index):
        """Open the ballot at `index`

        Raises:
            errors.IndexOutOfRange: there is no such ballot; raised before any
                key material is touched
            errors.ParameterMismatch: the source knows no such session
            errors.AuthenticationFailure: the sealed PII does not verify
            errors.DigitOverflow: the weight is not a valid ballot weight
        """
        context.check_index(index)
        sealed, keys = self.source.sealed_ballot(context, index)
        logger.info('decrypting ballot #%d', index)
        ballot_vault = vault.SymmetricBallotVault(keys.session_key)
        pii = ballot_vault.decrypt_pii(sealed.pii_ciphertext, sealed.nonce)
        weight = self.engine.decrypt(sealed.weight_ciphertext, keys.secret_key)
        vote_counts = encoding.decode(weight, context.base, context.n_candidates, strict=True)
        return DecryptedBallotView(index, pii, weight, tuple(vote_counts))
