#!/usr/bin/env python3
"""The two operations offered by the tally engine

    simulate(n_candidates, max_voters, n_votes) -> tally.TallyReport
    decrypt_ballot(n_candidates, max_voters, n_votes, index) -> decryptor.DecryptedBallotView

`TallyService` keeps the engine, the ballot source and the key escrow
together, so that the session cache (if used) is shared between requests.
The module-level functions use a fresh service for each call, which is only
meaningful with the seeded ballot source.
"""
import logging

import tally
import errors
import escrow
import source
from config import TallyConfig
from context import ParameterContext
from decryptor import SelectiveDecryptor

logger = logging.getLogger(__name__)


class TallyService:
    """Entry point of the engine

    Attributes:
        config (TallyConfig): the configuration
        engine (tally.TallyEngine): the homomorphic engine
        source (source.BallotSource): ballot source strategy
        escrow (escrow.KeyEscrow): custody of the session key in reports
        decryptor (SelectiveDecryptor): opens single ballots
    """
    def __init__(self, config=None, ballot_source=None, key_escrow=None):
        if config is None:
            config = TallyConfig()
        self.config = config
        if ballot_source is None:
            ballot_source = source.make_source(config, tally.TallyEngine(config))
        self.source = ballot_source
        self.engine = ballot_source.engine
        if key_escrow is None:
            key_escrow = escrow.make_escrow(config.escrow, config.authority_key)
        self.escrow = key_escrow
        self.decryptor = SelectiveDecryptor(self.engine, self.source)

    def simulate(self, n_candidates, max_voters, n_votes):
        """Generate, encrypt and tally a set of ballots

        Any failure aborts the whole simulation; no partial report is
        produced.

        Raises:
            errors.InvalidParameter: invalid parameters
            errors.DigitOverflow: `config.strict_digits` is set and the
                aggregated counts may overflow a digit
        """
        context = ParameterContext(n_candidates, max_voters, n_votes)
        if self.config.strict_digits and not context.carry_safe(self.source.votes_per_ballot):
            raise errors.DigitOverflow(
                'up to {} votes per candidate cannot be decoded in base {}'.format(
                    context.max_candidate_total(self.source.votes_per_ballot), context.base,
                )
            )
        logger.info('simulating %r', context)
        session = self.source.open_session(context)
        return tally.assemble_report(self.engine, session, self.escrow)

    def decrypt_ballot(self, n_candidates, max_voters, n_votes, index):
        """Open a single ballot of the simulation identified by the parameters"""
        context = ParameterContext(n_candidates, max_voters, n_votes)
        return self.decryptor.decrypt_ballot(context, index)

    def handle(self, request):
        """Answer a request given as a dictionary

        Requests are `{"op": "simulate", "n_candidates": ..., "max_voters":
        ..., "n_votes": ...}` and `{"op": "decrypt", ..., "index": ...}`.

        Returns:
            dict: `{"ok": True, "result": ...}` or `{"ok": False, "error":
            ..., "message": ...}`; engine faults never propagate
        """
        try:
            if not isinstance(request, dict):
                raise errors.InvalidParameter('request must be a JSON object')
            op = request.get('op')
            args = [request.get(name) for name in ('n_candidates', 'max_voters', 'n_votes')]
            if op == 'simulate':
                result = self.simulate(*args).to_dict()
            elif op == 'decrypt':
                result = self.decrypt_ballot(*args, request.get('index')).to_dict()
            else:
                raise errors.InvalidParameter('unknown operation {!r}'.format(op))
        except errors.TallyError as e:
            logger.info('request failed: %s', e)
            return dict(ok=False, **e.to_dict())
        return {'ok': True, 'result': result}


def simulate(n_candidates, max_voters, n_votes, config=None):
    return TallyService(config).simulate(n_candidates, max_voters, n_votes)


def decrypt_ballot(n_candidates, max_voters, n_votes, index, config=None):
    return TallyService(config).decrypt_ballot(n_candidates, max_voters, n_votes, index)
