#!/usr/bin/env python3
import os
import json
import random
import tempfile
import unittest
import itertools
import threading

import util
import mock
import tally
import ballot
import config
import errors
import escrow
import source
import vault
import client
import server
import network
import election
import encoding
import paillier
from context import ParameterContext
from decryptor import SelectiveDecryptor
from election import TallyService

_N_BITS = 128


def fixed_factory(*vote_counts_list):
    """Ballot factory casting the given vote vectors, cycling through them"""
    def factory(context, index, rng, votes_per_ballot):
        vote_counts = vote_counts_list[index % len(vote_counts_list)]
        weight = encoding.encode(vote_counts, context.base)
        return ballot.Ballot(index, ballot.pii_for(index), tuple(vote_counts), weight)
    return factory


class TestUtil(unittest.TestCase):
    def test_derive_seed(self):
        self.assertEqual(util.derive_seed(1, 'a', b'\x00'), util.derive_seed(1, 'a', b'\x00'))
        self.assertNotEqual(util.derive_seed(1, 2), util.derive_seed(12))
        self.assertNotEqual(util.derive_seed(1, 2), util.derive_seed(2, 1))

    def test_random_numbers_totaling(self):
        rng = random.Random(42)
        for total, count in [(0, 3), (1, 1), (5, 4), (100, 7)]:
            numbers = util.random_numbers_totaling(total, count, rng)
            self.assertEqual(len(numbers), count)
            self.assertEqual(sum(numbers), total)
            self.assertTrue(all(x >= 0 for x in numbers))

    def test_split_batches(self):
        self.assertEqual(util.split_batches([], 3), [])
        self.assertEqual(util.split_batches([1, 2, 3, 4, 5], 2), [[1, 2, 3], [4, 5]])
        self.assertEqual(util.split_batches([1, 2], 5), [[1], [2]])
        self.assertEqual(util.split_batches([1, 2, 3], 1), [[1, 2, 3]])

    def test_crt(self):
        self.assertEqual(util.crt([2, 3], [5, 7]), 17)

    def test_genprime_seeded(self):
        p = util.genprime(64, rng=random.Random(7))
        self.assertEqual(p, util.genprime(64, rng=random.Random(7)))
        self.assertTrue(util.is_prime(p))


class PartiallyHomomorphicSchemeFixture:
    def test_encrypt(self):
        pk, sk = self.generate_keypair(_N_BITS)
        c = pk.encrypt(12)
        d = pk.encrypt(12)
        self.assertTrue(c is not d)
        self.assertEqual(sk.decrypt(c), sk.decrypt(d))

    def test_decrypt(self):
        pk, sk = self.generate_keypair(_N_BITS)
        self.assertEqual(sk.decrypt(pk.encrypt(-1)), -1)
        self.assertEqual(sk.decrypt(pk.encrypt(0)), 0)
        self.assertEqual(sk.decrypt(pk.encrypt(1)), 1)
        self.assertEqual(sk.decrypt(pk.encrypt(38), relative=False), 38)

    def test_additive(self):
        pk, sk = self.generate_keypair(_N_BITS)
        a = pk.encrypt(42)
        b = pk.encrypt(9)

        self.assertEqual(sk.decrypt(a + b), 51)
        self.assertEqual(sk.decrypt(a + 9), 51)
        self.assertEqual(sk.decrypt(42 + b), 51)
        self.assertEqual(sk.decrypt(sum([a, b, pk.encrypt(1)])), 52)

    def test_key_mismatch(self):
        pk, sk = self.generate_keypair(_N_BITS)
        other_pk, other_sk = self.generate_keypair(_N_BITS)
        c = other_pk.encrypt(5)
        self.assertRaises(errors.KeyMismatch, sk.decrypt, c)
        self.assertRaises(errors.KeyMismatch, pk.encrypt(1).__add__, c)

    def test_seeded_keygen(self):
        pk1, sk1 = self.generate_keypair(_N_BITS, rng=random.Random(1))
        pk2, sk2 = self.generate_keypair(_N_BITS, rng=random.Random(1))
        pk3, sk3 = self.generate_keypair(_N_BITS, rng=random.Random(2))
        self.assertEqual(pk1, pk2)
        self.assertNotEqual(pk1, pk3)

        # a regenerated keypair decrypts the ciphertexts of the original one
        self.assertEqual(sk2.decrypt(pk1.encrypt(17)), 17)


class TestMock(unittest.TestCase, PartiallyHomomorphicSchemeFixture):
    generate_keypair = staticmethod(mock.generate_mock_keypair)


class TestPaillier(unittest.TestCase, PartiallyHomomorphicSchemeFixture):
    generate_keypair = staticmethod(paillier.generate_paillier_keypair)

    def test_keygen(self):
        pk, sk = self.generate_keypair(_N_BITS)

        self.assertTrue(util.is_prime(sk.p))
        self.assertTrue(util.is_prime(sk.q))
        self.assertNotEqual(sk.p, sk.q)
        self.assertGreaterEqual(sk.p.bit_length(), _N_BITS // 2)
        self.assertGreaterEqual(sk.q.bit_length(), _N_BITS // 2)

        self.assertEqual(pk.n, sk.p * sk.q)
        self.assertEqual(pk.nsquare, pk.n**2)
        self.assertEqual(pk.g, pk.n + 1)

    def test_safe_primes(self):
        pk, sk = self.generate_keypair(64, safe_primes=True)
        self.assertTrue(util.is_prime((sk.p-1) // 2))
        self.assertTrue(util.is_prime((sk.q-1) // 2))

    def test_paillier_specific(self):
        pk, sk = self.generate_keypair(_N_BITS)

        # ciphertexts are randomized and in ℤ_n²
        c = pk.encrypt(12)
        self.assertNotEqual(c.raw_value, pk.encrypt(12).raw_value)
        self.assertGreater(c.raw_value, 0)
        self.assertLess(c.raw_value, pk.nsquare)

        # plaintext space
        self.assertTrue(pk.can_represent(0))
        self.assertTrue(pk.can_represent(pk.n - 1))
        self.assertFalse(pk.can_represent(pk.n))
        self.assertFalse(pk.can_represent(-1))

        # invalid raw value
        self.assertRaises(ValueError, sk.decrypt, paillier.PaillierCiphertext(pk, 0))


class TestEncoding(unittest.TestCase):
    def test_concrete(self):
        self.assertEqual(encoding.encode([2, 0, 1], 6), 38)
        self.assertEqual(encoding.decode(38, 6, 3), [2, 0, 1])

    def test_weights(self):
        self.assertEqual(encoding.calc_weights(4, 6), [1, 6, 36, 216])
        self.assertEqual(encoding.capacity(6, 3), 216)

    def test_round_trip(self):
        rng = random.Random(0)
        for base in [2, 3, 6, 11, 1001]:
            for n_candidates in [1, 2, 5]:
                vote_counts = [rng.randrange(base) for _ in range(n_candidates)]
                weight = encoding.encode(vote_counts, base)
                self.assertLess(weight, encoding.capacity(base, n_candidates))
                self.assertEqual(encoding.decode(weight, base, n_candidates), vote_counts)

    def test_invalid_digit(self):
        self.assertRaises(errors.InvalidDigit, encoding.encode, [6, 0, 0], 6)
        self.assertRaises(errors.InvalidDigit, encoding.encode, [0, -1], 6)
        self.assertRaises(errors.InvalidDigit, encoding.decode, -1, 6, 3)
        self.assertRaises(ValueError, encoding.encode, [7], 6)

    def test_overflow(self):
        # excess beyond the last digit is dropped
        self.assertEqual(encoding.decode(216 + 5, 6, 3), [5, 0, 0])
        self.assertRaises(errors.DigitOverflow, encoding.decode, 216 + 5, 6, 3, strict=True)
        self.assertEqual(encoding.decode(215, 6, 3, strict=True), [5, 5, 5])

        # two ballots of 5 votes for candidate 0 carry into candidate 1
        weight = encoding.encode([5, 0], 6) + encoding.encode([5, 0], 6)
        self.assertEqual(encoding.decode(weight, 6, 2), [4, 1])


class TestContext(unittest.TestCase):
    def test_parameters(self):
        context = ParameterContext(3, 5, 1)
        self.assertEqual(context.base, 6)
        self.assertEqual(context.key(), (3, 5, 1))
        self.assertEqual(context, ParameterContext(3, 5, 1))
        self.assertNotEqual(context, ParameterContext(3, 5, 2))
        self.assertEqual(context.seed, ParameterContext(3, 5, 1).seed)
        self.assertNotEqual(context.seed, ParameterContext(3, 5, 2).seed)

    def test_invalid(self):
        for args in [(0, 5, 1), (3, 0, 1), (3, 5, 0), (-1, 5, 1), (True, 5, 1), ('3', 5, 1), (3, 5, 1.0)]:
            self.assertRaises(errors.InvalidParameter, ParameterContext, *args)
        self.assertRaises(ValueError, ParameterContext, 3, 5, 0)

    def test_bounds(self):
        context = ParameterContext(3, 5, 1)
        self.assertEqual(context.worst_case_sum(), 5 * (1 + 6 + 36))
        self.assertTrue(context.carry_safe())
        self.assertTrue(context.carry_safe(5))

        context = ParameterContext(2, 2, 5)
        self.assertEqual(context.max_candidate_total(), 5)
        self.assertFalse(context.carry_safe())

    def test_check_index(self):
        context = ParameterContext(3, 5, 4)
        context.check_index(0)
        context.check_index(3)
        for index in [-1, 4, 100, None, '1']:
            self.assertRaises(errors.IndexOutOfRange, context.check_index, index)
        self.assertRaises(IndexError, context.check_index, 4)


class TestBallot(unittest.TestCase):
    def test_generate(self):
        context = ParameterContext(4, 10, 20)
        ballots = ballot.generate(context)
        self.assertEqual(len(ballots), 20)
        for index, b in enumerate(ballots):
            self.assertEqual(b.index, index)
            self.assertEqual(b.pii, 'FName_{0} LName_{0}'.format(index))
            self.assertEqual(len(b.vote_counts), 4)
            self.assertEqual(sum(b.vote_counts), 1)
            self.assertEqual(b.encoded_weight, encoding.encode(b.vote_counts, context.base))

    def test_deterministic(self):
        context = ParameterContext(4, 10, 20)
        ballots = ballot.generate(context)
        self.assertEqual(ballots, ballot.generate(context))

        # any ballot can be regenerated alone
        rng = ballot.ballot_rng(context.seed, 13)
        self.assertEqual(ballot.generate_ballot(context, 13, rng), ballots[13])

        # another seed gives other ballots
        others = ballot.generate(context, seed=12345)
        self.assertNotEqual([b.vote_counts for b in ballots], [b.vote_counts for b in others])

    def test_votes_per_ballot(self):
        context = ParameterContext(3, 5, 30)
        for b in ballot.generate(context, votes_per_ballot=5):
            self.assertEqual(sum(b.vote_counts), 5)
            self.assertTrue(all(0 <= count < context.base for count in b.vote_counts))
        self.assertRaises(errors.InvalidParameter, ballot.generate, context, votes_per_ballot=6)
        self.assertRaises(errors.InvalidParameter, ballot.generate, context, votes_per_ballot=0)

    def test_expected_vote_counts(self):
        context = ParameterContext(3, 5, 3)
        ballots = ballot.generate(context, factory=fixed_factory([2, 0, 1], [0, 1, 0]))
        # the factory cycles: [2, 0, 1] + [0, 1, 0] + [2, 0, 1]
        self.assertEqual(ballot.expected_vote_counts(ballots, 3), [4, 1, 2])
        self.assertEqual(ballot.expected_vote_counts(ballots[:2], 3), [2, 1, 1])

    def test_immutable(self):
        b = ballot.generate(ParameterContext(2, 2, 1))[0]
        self.assertRaises(AttributeError, setattr, b, 'pii', 'someone else')


class TestVault(unittest.TestCase):
    def setUp(self):
        self.key = vault.generate_session_key()
        self.vault = vault.SymmetricBallotVault(self.key)

    def test_round_trip(self):
        sealed = [self.vault.encrypt_pii(ballot.pii_for(i), i) for i in range(5)]
        # out of order
        for i in [3, 0, 4, 1, 2]:
            ciphertext, nonce = sealed[i]
            self.assertEqual(self.vault.decrypt_pii(ciphertext, nonce), ballot.pii_for(i))

    def test_nonces(self):
        nonces = [self.vault.encrypt_pii('x', i)[1] for i in range(100)]
        self.assertEqual(len(set(nonces)), 100)
        self.assertEqual([vault.index_for_nonce(n) for n in nonces], list(range(100)))
        self.assertTrue(all(len(n) == vault.NONCE_SIZE for n in nonces))
        self.assertRaises(errors.IndexOutOfRange, vault.nonce_for_index, -1)

    def test_nonce_reuse(self):
        first = self.vault.encrypt_pii('FName_0 LName_0', 0)
        self.assertEqual(self.vault.encrypt_pii('FName_0 LName_0', 0), first)
        self.assertRaises(errors.NonceReuse, self.vault.encrypt_pii, 'someone else', 0)

    def test_authentication(self):
        ciphertext, nonce = self.vault.encrypt_pii('FName_0 LName_0', 0)
        _, other_nonce = self.vault.encrypt_pii('FName_1 LName_1', 1)

        # wrong nonce
        self.assertRaises(errors.AuthenticationFailure, self.vault.decrypt_pii, ciphertext, other_nonce)
        # wrong key
        other_vault = vault.SymmetricBallotVault(vault.generate_session_key())
        self.assertRaises(errors.AuthenticationFailure, other_vault.decrypt_pii, ciphertext, nonce)
        # tampered ciphertext
        tampered = bytes([ciphertext[0] ^ 1]) + ciphertext[1:]
        self.assertRaises(errors.AuthenticationFailure, self.vault.decrypt_pii, tampered, nonce)
        # malformed nonce
        self.assertRaises(errors.AuthenticationFailure, self.vault.decrypt_pii, ciphertext, b'')

    def test_keys(self):
        self.assertEqual(len(self.key), vault.KEY_SIZE)
        self.assertEqual(vault.derive_session_key(42), vault.derive_session_key(42))
        self.assertNotEqual(vault.derive_session_key(42), vault.derive_session_key(43))
        self.assertEqual(len(vault.derive_session_key(42)), vault.KEY_SIZE)
        self.assertRaises(ValueError, vault.SymmetricBallotVault, b'short')


class TestEscrow(unittest.TestCase):
    def test_clear(self):
        key = vault.generate_session_key()
        key_escrow = escrow.ClearKeyEscrow()
        self.assertEqual(key_escrow.release(key), key.hex())
        self.assertEqual(key_escrow.recover(key_escrow.release(key)), key)

    def test_wrapped(self):
        key = vault.generate_session_key()
        key_escrow = escrow.WrappedKeyEscrow()
        released = key_escrow.release(key)
        self.assertNotIn(key.hex(), released)
        self.assertEqual(key_escrow.recover(released), key)

        # only the authority can unwrap
        other = escrow.WrappedKeyEscrow()
        self.assertRaises(errors.AuthenticationFailure, other.recover, released)

    def test_malformed_wrapped_key(self):
        key_escrow = escrow.WrappedKeyEscrow()
        released = key_escrow.release(vault.generate_session_key())
        for malformed in ['00', '', 'not hex', released[:30], None]:
            self.assertRaises(errors.AuthenticationFailure, key_escrow.recover, malformed)

    def test_make_escrow(self):
        authority_key = escrow.generate_authority_key()
        self.assertEqual(len(bytes.fromhex(authority_key)), 32)
        self.assertIsInstance(escrow.make_escrow('clear'), escrow.ClearKeyEscrow)
        self.assertIsInstance(escrow.make_escrow('wrapped', authority_key), escrow.WrappedKeyEscrow)
        self.assertRaises(errors.InvalidParameter, escrow.make_escrow, 'wrapped')
        self.assertRaises(errors.InvalidParameter, escrow.make_escrow, 'vault')

    def test_recover_from_configuration(self):
        settings = config.TallyConfig(escrow='wrapped', authority_key=escrow.generate_authority_key())
        key = vault.generate_session_key()
        released = escrow.make_escrow(settings.escrow, settings.authority_key).release(key)

        # an auditor holding the same configuration unwraps the key
        auditor = escrow.make_escrow(settings.escrow, settings.authority_key)
        self.assertEqual(auditor.recover(released), key)


class TallyEngineFixture:
    def make_config(self, **kwargs):
        return config.TallyConfig(n_bits=_N_BITS, mock_crypto=self.mock_crypto, **kwargs)

    def test_aggregation(self):
        engine = tally.TallyEngine(self.make_config())
        context = ParameterContext(3, 5, 4)
        pk, sk = engine.keygen(context)
        weights = [38, 1, 6, 36]
        ciphertexts = engine.encrypt_all(weights, pk)
        self.assertEqual(engine.decrypt(engine.aggregate(ciphertexts), sk), sum(weights))

        # single ballots decrypt to their own weight
        for weight, ciphertext in zip(weights, ciphertexts):
            self.assertEqual(engine.decrypt(ciphertext, sk), weight)

    def test_order_independence(self):
        engine = tally.TallyEngine(self.make_config(workers=2))
        pk, sk = engine.keygen(ParameterContext(3, 5, 4))
        ciphertexts = [engine.encrypt(weight, pk) for weight in [38, 1, 6, 36]]
        for permutation in itertools.permutations(ciphertexts):
            self.assertEqual(engine.decrypt(engine.aggregate(permutation), sk), 81)

    def test_failures(self):
        engine = tally.TallyEngine(self.make_config())
        context = ParameterContext(3, 5, 4)
        pk, sk = engine.keygen(context)
        other_pk, other_sk = engine.keygen(context)

        self.assertRaises(errors.EmptyTally, engine.aggregate, [])
        self.assertRaises(errors.KeyMismatch, engine.decrypt, engine.encrypt(1, pk), other_sk)
        self.assertRaises(errors.KeyMismatch, engine.aggregate, [engine.encrypt(1, pk), engine.encrypt(1, other_pk)])
        self.assertRaises(errors.InvalidParameter, engine.encrypt, -1, pk)

    def test_modulus_covers_tally(self):
        engine = tally.TallyEngine(self.make_config())
        context = ParameterContext(20, 1000, 1000)
        pk, sk = engine.keygen(context)
        self.assertTrue(pk.can_represent(context.worst_case_sum()))
        worst = engine.encrypt(context.worst_case_sum(), pk)
        self.assertEqual(engine.decrypt(worst, sk), context.worst_case_sum())

    def test_parallel_encryption(self):
        engine = tally.TallyEngine(self.make_config(workers=2))
        pk, sk = engine.keygen(ParameterContext(3, 5, 6))
        weights = [1, 6, 36, 38, 0, 5]
        ciphertexts = engine.encrypt_all(weights, pk)
        self.assertEqual([engine.decrypt(c, sk) for c in ciphertexts], weights)
        self.assertEqual(engine.decrypt(engine.aggregate(ciphertexts), sk), sum(weights))


class TestMockTallyEngine(unittest.TestCase, TallyEngineFixture):
    mock_crypto = True


class TestPaillierTallyEngine(unittest.TestCase, TallyEngineFixture):
    mock_crypto = False

    def test_wraparound_refused(self):
        engine = tally.TallyEngine(self.make_config())
        pk, sk = engine.keygen(ParameterContext(3, 5, 4))
        self.assertRaises(errors.InvalidParameter, engine.encrypt, pk.n, pk)


class SimulationFixture:
    def make_config(self, **kwargs):
        return config.TallyConfig(n_bits=_N_BITS, mock_crypto=self.mock_crypto, **kwargs)

    def make_service(self, factory=None, **kwargs):
        settings = self.make_config(**kwargs)
        if factory is None:
            return TallyService(settings)
        engine = tally.TallyEngine(settings)
        return TallyService(settings, source.make_source(settings, engine, factory))

    def test_concrete_scenario(self):
        service = self.make_service(fixed_factory([2, 0, 1]))
        report = service.simulate(3, 5, 1)
        self.assertEqual(report.decrypted_sum, 38)
        self.assertEqual(report.per_candidate_weights, [2, 0, 1])
        self.assertEqual(report.per_candidate_vote_counts, [2, 0, 1])
        self.assertEqual(report.total_votes_decoded, 3)
        self.assertTrue(report.verified)
        self.assertTrue(report.carry_safe)

        view = service.decrypt_ballot(3, 5, 1, 0)
        self.assertEqual(view.index, 0)
        self.assertEqual(view.pii, 'FName_0 LName_0')
        self.assertEqual(view.raw_weight, 38)
        self.assertEqual(list(view.decoded_vote_counts), [2, 0, 1])

    def test_simulate(self):
        service = self.make_service()
        report = service.simulate(3, 10, 8)
        self.assertEqual(report.total_votes_decoded, 8)
        self.assertEqual(report.per_candidate_vote_counts, report.expected_vote_counts)
        self.assertTrue(report.verified)
        self.assertEqual(len(bytes.fromhex(report.session_key)), vault.KEY_SIZE)

        data = json.loads(json.dumps(report.to_dict()))
        self.assertEqual(data['decrypted_sum'], report.decrypted_sum)
        self.assertEqual(data['base'], 11)
        self.assertTrue(data['verified'])

    def test_ballots_add_up_to_tally(self):
        service = self.make_service()
        report = service.simulate(4, 10, 6)
        views = [service.decrypt_ballot(4, 10, 6, i) for i in range(6)]
        self.assertEqual(sum(view.raw_weight for view in views), report.decrypted_sum)
        totals = [sum(counts) for counts in zip(*(view.decoded_vote_counts for view in views))]
        self.assertEqual(totals, report.per_candidate_vote_counts)

    def test_selective_decrypt_isolation(self):
        service = self.make_service()
        report = service.simulate(3, 10, 5)
        before = report.to_dict()

        first = service.decrypt_ballot(3, 10, 5, 2)
        service.decrypt_ballot(3, 10, 5, 4)
        self.assertEqual(service.decrypt_ballot(3, 10, 5, 2), first)
        self.assertEqual(service.decrypt_ballot(3, 10, 5, 4).pii, 'FName_4 LName_4')
        self.assertEqual(report.to_dict(), before)

        # a failed decryption does not affect the next ones
        self.assertRaises(errors.IndexOutOfRange, service.decrypt_ballot, 3, 10, 5, 5)
        self.assertEqual(service.decrypt_ballot(3, 10, 5, 2), first)

    def test_boundaries(self):
        service = self.make_service()
        service.simulate(3, 10, 5)
        self.assertRaises(errors.IndexOutOfRange, service.decrypt_ballot, 3, 10, 5, 5)
        self.assertRaises(errors.IndexOutOfRange, service.decrypt_ballot, 3, 10, 5, -1)
        self.assertRaises(errors.InvalidParameter, service.simulate, 0, 10, 5)
        self.assertRaises(errors.InvalidParameter, service.simulate, 3, 10, 0)

    def test_index_checked_before_keys(self):
        class UntouchableSource(source.BallotSource):
            def sealed_ballot(self, context, index):
                raise AssertionError('key material touched')

        engine = tally.TallyEngine(self.make_config())
        decryptor = SelectiveDecryptor(engine, UntouchableSource(engine))
        context = ParameterContext(3, 10, 5)
        self.assertRaises(errors.IndexOutOfRange, decryptor.decrypt_ballot, context, 5)
        self.assertRaises(errors.IndexOutOfRange, decryptor.decrypt_ballot, context, -1)

    def test_votes_per_ballot(self):
        service = self.make_service(votes_per_ballot=3)
        report = service.simulate(3, 5, 1)
        self.assertEqual(report.total_votes_decoded, 3)
        self.assertTrue(report.verified)
        self.assertEqual(sum(service.decrypt_ballot(3, 5, 1, 0).decoded_vote_counts), 3)

    def test_carry_flagged(self):
        # five votes for candidate 0 in base 3 carry into candidate 1
        service = self.make_service(fixed_factory([1, 0]))
        report = service.simulate(2, 2, 5)
        self.assertFalse(report.carry_safe)
        self.assertEqual(report.decrypted_sum, 5)
        self.assertEqual(report.per_candidate_vote_counts, [2, 1])
        self.assertEqual(report.expected_vote_counts, [5, 0])
        self.assertFalse(report.verified)

        strict = self.make_service(fixed_factory([1, 0]), strict_digits=True)
        self.assertRaises(errors.DigitOverflow, strict.simulate, 2, 2, 5)
        # safe parameters are not affected
        self.assertTrue(strict.simulate(2, 5, 5).verified)

    def test_wrapped_escrow(self):
        authority_key = escrow.generate_authority_key()
        service = self.make_service(escrow='wrapped', authority_key=authority_key)
        report = service.simulate(2, 4, 3)
        key = service.escrow.recover(report.session_key)
        self.assertEqual(len(key), vault.KEY_SIZE)
        self.assertNotEqual(report.session_key, key.hex())

        # recoverable outside of the service that produced the report
        auditor = escrow.make_escrow('wrapped', authority_key)
        self.assertEqual(auditor.recover(report.session_key), key)

    def test_invalid_ballot_weight(self):
        def overflowing_factory(context, index, rng, votes_per_ballot):
            weight = encoding.capacity(context.base, context.n_candidates)
            return ballot.Ballot(index, ballot.pii_for(index), (0, 0), weight)

        service = self.make_service(overflowing_factory)
        service.simulate(2, 2, 1)
        self.assertRaises(errors.DigitOverflow, service.decrypt_ballot, 2, 2, 1, 0)

    def test_handle(self):
        service = self.make_service()
        answer = service.handle({'op': 'simulate', 'n_candidates': 2, 'max_voters': 4, 'n_votes': 3})
        self.assertTrue(answer['ok'])
        self.assertEqual(answer['result']['total_votes_decoded'], 3)

        answer = service.handle({'op': 'decrypt', 'n_candidates': 2, 'max_voters': 4, 'n_votes': 3, 'index': 1})
        self.assertTrue(answer['ok'])
        self.assertEqual(answer['result']['pii'], 'FName_1 LName_1')

        answer = service.handle({'op': 'decrypt', 'n_candidates': 2, 'max_voters': 4, 'n_votes': 3, 'index': 3})
        self.assertFalse(answer['ok'])
        self.assertEqual(answer['error'], 'IndexOutOfRange')

        self.assertEqual(service.handle({'op': 'vote'})['error'], 'InvalidParameter')
        self.assertEqual(service.handle([1, 2])['error'], 'InvalidParameter')
        self.assertEqual(service.handle({'op': 'simulate', 'n_candidates': 2})['error'], 'InvalidParameter')


class TestMockSimulation(unittest.TestCase, SimulationFixture):
    mock_crypto = True

    def test_parallel_simulation(self):
        service = self.make_service(workers=2)
        report = service.simulate(3, 20, 12)
        self.assertTrue(report.verified)
        self.assertEqual(report.total_votes_decoded, 12)


class TestPaillierSimulation(unittest.TestCase, SimulationFixture):
    mock_crypto = False


class TestSeededSource(unittest.TestCase):
    def make_config(self):
        return config.TallyConfig(n_bits=_N_BITS, source='seeded')

    def test_reproducible_across_services(self):
        # a decryption in a fresh service (e.g. another process) finds the
        # same ballot as the simulation did
        report = TallyService(self.make_config()).simulate(3, 10, 4)
        other = TallyService(self.make_config())
        views = [other.decrypt_ballot(3, 10, 4, i) for i in range(4)]
        self.assertEqual(sum(view.raw_weight for view in views), report.decrypted_sum)
        self.assertEqual(TallyService(self.make_config()).simulate(3, 10, 4).session_key, report.session_key)

    def test_votes_per_ballot_in_derivation(self):
        single = TallyService(self.make_config())
        triple = TallyService(config.TallyConfig(n_bits=_N_BITS, source='seeded', votes_per_ballot=3))
        report = triple.simulate(4, 5, 2)
        self.assertNotEqual(single.simulate(4, 5, 2).session_key, report.session_key)

        # decryptions under the same setting find the ballots of the tally
        views = [triple.decrypt_ballot(4, 5, 2, i) for i in range(2)]
        self.assertEqual(sum(view.raw_weight for view in views), report.decrypted_sum)
        self.assertEqual([sum(view.decoded_vote_counts) for view in views], [3, 3])

    def test_module_functions(self):
        report = election.simulate(2, 3, 2, config=self.make_config())
        view = election.decrypt_ballot(2, 3, 2, 1, config=self.make_config())
        self.assertEqual(view.pii, 'FName_1 LName_1')
        self.assertLessEqual(view.raw_weight, report.decrypted_sum)


class TestSessionCacheSource(unittest.TestCase):
    def make_service(self, **kwargs):
        return TallyService(config.TallyConfig(n_bits=_N_BITS, source='session', **kwargs))

    def test_bounded_sessions(self):
        service = self.make_service(max_sessions=2, mock_crypto=True)
        service.simulate(2, 5, 1)
        service.simulate(2, 5, 2)
        # reading marks the first session as recently used
        service.decrypt_ballot(2, 5, 1, 0)
        service.simulate(2, 5, 3)

        self.assertRaises(errors.ParameterMismatch, service.decrypt_ballot, 2, 5, 2, 0)
        self.assertEqual(service.decrypt_ballot(2, 5, 1, 0).index, 0)
        self.assertEqual(service.decrypt_ballot(2, 5, 3, 2).index, 2)

    def test_session(self):
        service = self.make_service()
        report = service.simulate(3, 10, 6)
        views = [service.decrypt_ballot(3, 10, 6, i) for i in range(6)]
        self.assertEqual(sum(view.raw_weight for view in views), report.decrypted_sum)
        self.assertEqual([view.pii for view in views], [ballot.pii_for(i) for i in range(6)])

    def test_parameter_mismatch(self):
        service = self.make_service()
        self.assertRaises(errors.ParameterMismatch, service.decrypt_ballot, 3, 10, 6, 0)
        service.simulate(3, 10, 6)
        self.assertRaises(errors.ParameterMismatch, service.decrypt_ballot, 3, 10, 7, 0)
        # out of range is still reported as such
        self.assertRaises(errors.IndexOutOfRange, service.decrypt_ballot, 3, 10, 6, 6)

    def test_fresh_keys(self):
        service = self.make_service()
        first = service.simulate(2, 5, 3)
        second = service.simulate(2, 5, 3)
        self.assertNotEqual(first.session_key, second.session_key)
        # the latest session is the one decrypted
        views = [service.decrypt_ballot(2, 5, 3, i) for i in range(3)]
        self.assertEqual(sum(view.raw_weight for view in views), second.decrypted_sum)

    def test_concurrent_decryptions(self):
        service = self.make_service()
        service.simulate(3, 10, 8)
        expected = [service.decrypt_ballot(3, 10, 8, i) for i in range(8)]

        results = [None] * 8

        def worker(index):
            results[index] = service.decrypt_ballot(3, 10, 8, index)

        threads = [threading.Thread(target=worker, args=(i,)) for i in reversed(range(8))]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        self.assertEqual(results, expected)


class TestServer(unittest.TestCase):
    def test_requests(self):
        service = TallyService(config.TallyConfig(n_bits=_N_BITS, mock_crypto=True, source='session'))
        with network.MessageSocketListener(('127.0.0.1', 0)) as listener:
            thread = threading.Thread(target=server.serve, args=(listener, service, 4), daemon=True)
            thread.start()

            tally_client = client.TallyClient(listener.address[:2], timeout=10)
            report = tally_client.simulate(3, 5, 4)
            self.assertEqual(report['total_votes_decoded'], 4)
            self.assertTrue(report['verified'])

            view = tally_client.decrypt_ballot(3, 5, 4, 2)
            self.assertEqual(view['pii'], 'FName_2 LName_2')
            self.assertEqual(view['index'], 2)

            self.assertRaises(errors.IndexOutOfRange, tally_client.decrypt_ballot, 3, 5, 4, 4)
            self.assertRaises(errors.ParameterMismatch, tally_client.decrypt_ballot, 3, 5, 5, 0)

            thread.join(10)
            self.assertFalse(thread.is_alive())

    def test_malformed_request(self):
        service = TallyService(config.TallyConfig(n_bits=_N_BITS, mock_crypto=True))
        with network.MessageSocketListener(('127.0.0.1', 0)) as listener:
            thread = threading.Thread(target=server.serve, args=(listener, service, 1), daemon=True)
            thread.start()
            with network.MessageSocket.connect(listener.address[:2], 10) as connection:
                connection.send_message(b'{"op": ')
                answer = connection.receive_json()
            self.assertFalse(answer['ok'])
            self.assertEqual(answer['error'], 'InvalidParameter')
            thread.join(10)
            self.assertFalse(thread.is_alive())

    def test_silent_client(self):
        service = TallyService(config.TallyConfig(n_bits=_N_BITS, mock_crypto=True))
        with network.MessageSocketListener(('127.0.0.1', 0)) as listener:
            thread = threading.Thread(target=server.serve, args=(listener, service, 2, 0.5), daemon=True)
            thread.start()
            with network.MessageSocket.connect(listener.address[:2], 10):
                # the connection sends nothing; the next client is still served
                tally_client = client.TallyClient(listener.address[:2], timeout=10)
                self.assertEqual(tally_client.simulate(2, 3, 2)['total_votes_decoded'], 2)
            thread.join(10)
            self.assertFalse(thread.is_alive())


class TestConfig(unittest.TestCase):
    def test_defaults(self):
        settings = config.TallyConfig()
        self.assertEqual(settings.n_bits, 1024)
        self.assertEqual(settings.source, 'seeded')
        self.assertEqual(settings.escrow, 'clear')
        self.assertFalse(settings.mock_crypto)

    def test_invalid(self):
        self.assertRaises(errors.InvalidParameter, config.TallyConfig, n_bits=0)
        self.assertRaises(errors.InvalidParameter, config.TallyConfig, workers=0)
        self.assertRaises(errors.InvalidParameter, config.TallyConfig, votes_per_ballot='1')
        self.assertRaises(errors.InvalidParameter, config.TallyConfig, source='disk')
        self.assertRaises(errors.InvalidParameter, config.TallyConfig, escrow='nobody')
        self.assertRaises(errors.InvalidParameter, config.TallyConfig, max_sessions=0)
        # a wrapped key nobody could unwrap is refused
        self.assertRaises(errors.InvalidParameter, config.TallyConfig, escrow='wrapped')
        self.assertRaises(errors.InvalidParameter, config.TallyConfig, escrow='wrapped', authority_key='00' * 16)
        self.assertRaises(errors.InvalidParameter, config.TallyConfig, escrow='wrapped', authority_key='zz' * 32)

    def test_authority_key(self):
        authority_key = escrow.generate_authority_key()
        with tempfile.TemporaryDirectory() as directory:
            path = os.path.join(directory, 'tally.json')
            config.save_config(config.TallyConfig(escrow='wrapped', authority_key=authority_key), path)
            loaded = config.load_config(path)
        self.assertEqual(loaded.escrow, 'wrapped')
        self.assertEqual(loaded.authority_key, authority_key)

        # the key survives command line overrides
        settings = loaded.replace(escrow=None, authority_key=None, workers=2)
        self.assertEqual(settings.authority_key, authority_key)

    def test_replace(self):
        settings = config.TallyConfig(n_bits=256).replace(n_bits=None, workers=3)
        self.assertEqual(settings.n_bits, 256)
        self.assertEqual(settings.workers, 3)

    def test_load_save(self):
        with tempfile.TemporaryDirectory() as directory:
            path = os.path.join(directory, 'tally.json')
            self.assertEqual(config.load_config(path).to_dict(), config.TallyConfig().to_dict())

            config.save_config(config.TallyConfig(n_bits=512, source='session'), path)
            loaded = config.load_config(path)
            self.assertEqual(loaded.n_bits, 512)
            self.assertEqual(loaded.source, 'session')

            with open(path, 'w') as f:
                json.dump({'n_bits': 512, 'colour': 'blue'}, f)
            self.assertRaises(errors.InvalidParameter, config.load_config, path)

            with open(path, 'w') as f:
                f.write('{')
            self.assertRaises(errors.InvalidParameter, config.load_config, path)

        self.assertEqual(config.load_config().n_bits, 1024)


class TestErrors(unittest.TestCase):
    def test_structured(self):
        error = errors.IndexOutOfRange('ballot index 5 out of range [0, 5)')
        data = error.to_dict()
        self.assertEqual(data, {'error': 'IndexOutOfRange', 'message': 'ballot index 5 out of range [0, 5)'})
        rebuilt = errors.from_dict(data)
        self.assertIsInstance(rebuilt, errors.IndexOutOfRange)
        self.assertEqual(str(rebuilt), str(error))
        self.assertIs(type(errors.from_dict({'error': 'Unknown'})), errors.TallyError)


if __name__ == '__main__':
    unittest.main()
