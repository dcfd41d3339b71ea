#!/usr/bin/env python3
"""Configuration of the tally engine

Values come from the defaults below, optionally overridden by a JSON file
(`load_config()`) and then by command line options.
"""
import json

import errors

_SOURCES = ('seeded', 'session')
_ESCROWS = ('clear', 'wrapped')


class TallyConfig:
    """Settings shared by all the components of a simulation

    Attributes:
        n_bits (int): minimal size of the Paillier modulus, in bits; the engine
            uses a larger modulus if the parameters of a simulation require it
        safe_primes (bool): whether Paillier keys use safe primes; much slower,
            DO NOT SET TO FALSE IN PRODUCTION
        votes_per_ballot (int): number of votes each simulated ballot casts
        strict_digits (bool): abort simulations whose aggregated
            per-candidate totals may overflow a digit of the encoding base
        mock_crypto (bool): replace Paillier by the mock scheme (for tests)
        workers (int): number of processes used to encrypt ballots
        source (str): ballot source strategy, `"seeded"` or `"session"`
        escrow (str): custody of the session key in reports, `"clear"` or
            `"wrapped"`
        authority_key (str): hex encoded 256 bit key of the authority able to
            unwrap session keys; required by the `"wrapped"` escrow
        max_sessions (int): number of simulations kept in memory by the
            `"session"` source; the least recently used are dropped first
    """
    def __init__(self, n_bits=1024, safe_primes=False, votes_per_ballot=1,
                 strict_digits=False, mock_crypto=False, workers=1,
                 source='seeded', escrow='clear', authority_key=None,
                 max_sessions=64):
        self.n_bits = n_bits
        self.safe_primes = safe_primes
        self.votes_per_ballot = votes_per_ballot
        self.strict_digits = strict_digits
        self.mock_crypto = mock_crypto
        self.workers = workers
        self.source = source
        self.escrow = escrow
        self.authority_key = authority_key
        self.max_sessions = max_sessions
        self.validate()

    def validate(self):
        for name in ('n_bits', 'votes_per_ballot', 'workers', 'max_sessions'):
            value = getattr(self, name)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                raise errors.InvalidParameter('{} must be a positive integer, got {!r}'.format(name, value))
        if self.n_bits < 16:
            raise errors.InvalidParameter('n_bits must be at least 16')
        if self.source not in _SOURCES:
            raise errors.InvalidParameter('unknown ballot source {!r}'.format(self.source))
        if self.escrow not in _ESCROWS:
            raise errors.InvalidParameter('unknown key escrow {!r}'.format(self.escrow))
        if self.authority_key is not None:
            try:
                valid = len(bytes.fromhex(self.authority_key)) == 32
            except (TypeError, ValueError):
                valid = False
            if not valid:
                raise errors.InvalidParameter('authority_key must be 64 hexadecimal digits')
        elif self.escrow == 'wrapped':
            raise errors.InvalidParameter('the wrapped escrow requires an authority_key')

    def to_dict(self):
        return {
            'n_bits': self.n_bits,
            'safe_primes': self.safe_primes,
            'votes_per_ballot': self.votes_per_ballot,
            'strict_digits': self.strict_digits,
            'mock_crypto': self.mock_crypto,
            'workers': self.workers,
            'source': self.source,
            'escrow': self.escrow,
            'authority_key': self.authority_key,
            'max_sessions': self.max_sessions,
        }

    def replace(self, **overrides):
        """Copy of this configuration with some values changed

        `None` values are ignored, so that unset command line options do not
        override the configuration file.
        """
        values = self.to_dict()
        values.update({k: v for k, v in overrides.items() if v is not None})
        return TallyConfig(**values)

    def __repr__(self):
        return 'TallyConfig({})'.format(', '.join(
            '{}={!r}'.format(k, v) for k, v in self.to_dict().items()
        ))


def load_config(path=None):
    """Load the configuration from a JSON file

    Arguments:
        path (str, optional): the file to read; if not provided, or if the file
            does not exist, the default configuration is returned

    Returns:
        TallyConfig: the configuration
    """
    if path is None:
        return TallyConfig()
    try:
        with open(path) as f:
            data = json.load(f)
    except FileNotFoundError:
        return TallyConfig()
    except json.decoder.JSONDecodeError as e:
        raise errors.InvalidParameter('invalid configuration file {}: {}'.format(path, e)) from e

    if not isinstance(data, dict):
        raise errors.InvalidParameter('configuration must be a JSON object')
    unknown = set(data) - set(TallyConfig().to_dict())
    if unknown:
        raise errors.InvalidParameter('unknown configuration keys: {}'.format(', '.join(sorted(unknown))))
    return TallyConfig(**data)


def save_config(config, path):
    with open(path, 'w') as f:
        json.dump(config.to_dict(), f, indent=4, sort_keys=True)
