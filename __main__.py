#!/usr/bin/env python3
import logging
import argparse
import datetime

import config
import errors
import escrow
import server
import network
from election import TallyService


def print_report(report):
    context = report.context
    print('Encoding base (M = k + 1): {}'.format(context.base))
    print('Decrypted total sum: {}'.format(report.decrypted_sum))
    print()
    print('--- Simulation Results ---')
    for c, (count, expected) in enumerate(zip(report.per_candidate_vote_counts, report.expected_vote_counts)):
        status = 'Passed' if count == expected else 'FAIL! Expected {}'.format(expected)
        print(' Candidate {}: {} votes (Verification: {})'.format(c, count, status))
    print(' Total votes decoded: {}'.format(report.total_votes_decoded))
    if not report.carry_safe:
        print(' WARNING: base {} may be too small for the aggregated counts'.format(context.base))
    print('Session key: {}'.format(report.session_key))
    if report.verified:
        print('SUCCESS: Paillier tally simulation verified.')
    else:
        print('FAILED: Discrepancy found in Paillier tally simulation.')


def print_ballot(view):
    print('--- Decrypting Ballot #{} ---'.format(view.index))
    print(' Decrypted PII: "{}"'.format(view.pii))
    print(' Decrypted Plaintext Vote Weight: {}'.format(view.raw_weight))
    print(' Decoded vote counts: {}'.format(list(view.decoded_vote_counts)))


def decrypt_and_print(service, args, index):
    try:
        view = service.decrypt_ballot(args.candidates, args.max_voters, args.votes, index)
    except errors.TallyError as e:
        # a failed decryption does not prevent the next ones
        print(' Error decrypting ballot #{}: {}: {}'.format(index, type(e).__name__, e))
        return False
    print_ballot(view)
    return True


def run_simulate(service, args):
    start = datetime.datetime.now()
    report = service.simulate(args.candidates, args.max_voters, args.votes)
    elapsed = datetime.datetime.now() - start
    print_report(report)
    if args.debug >= 1:
        print('Finished in {}'.format(elapsed))
    results = [decrypt_and_print(service, args, index) for index in args.decrypt or []]
    return report.verified and all(results)


def run_decrypt(service, args):
    return decrypt_and_print(service, args, args.index)


def run_serve(service, args):
    with network.MessageSocketListener((args.host, args.port)) as listener:
        print('Listening on {}:{}'.format(*listener.address[:2]))
        server.serve(listener, service, timeout=args.timeout)
    return True


def main():
    parser = argparse.ArgumentParser()
    parser.description = 'Ballot tally with Paillier and AES-GCM encryption'
    parser.add_argument('--debug', '-d', default=1, type=int)
    parser.add_argument('--config')
    parser.add_argument('--bits', type=int, dest='n_bits')
    parser.add_argument('--safe-primes', action='store_const', const=True)
    parser.add_argument('--votes-per-ballot', type=int)
    parser.add_argument('--strict-digits', action='store_const', const=True)
    parser.add_argument('--workers', type=int)
    parser.add_argument('--source', choices=['seeded', 'session'])
    parser.add_argument('--escrow', choices=['clear', 'wrapped'])
    parser.add_argument('--authority-key', metavar='HEX')
    parser.add_argument('--max-sessions', type=int)
    sub = parser.add_subparsers(dest='cmd')

    s = sub.add_parser('simulate')
    s.add_argument('candidates', type=int)
    s.add_argument('max_voters', type=int)
    s.add_argument('votes', type=int)
    s.add_argument('--decrypt', type=int, action='append', metavar='INDEX')

    d = sub.add_parser('decrypt')
    d.add_argument('candidates', type=int)
    d.add_argument('max_voters', type=int)
    d.add_argument('votes', type=int)
    d.add_argument('index', type=int)

    v = sub.add_parser('serve')
    v.add_argument('--host', default='127.0.0.1')
    v.add_argument('--port', default=4242, type=int)
    v.add_argument('--timeout', default=30, type=float)

    sub.add_parser('authority-key', help='print a fresh key for the wrapped escrow')

    args = parser.parse_args()
    if args.cmd == 'authority-key':
        print(escrow.generate_authority_key())
        return
    commands = {'simulate': run_simulate, 'decrypt': run_decrypt, 'serve': run_serve}
    if args.cmd not in commands:
        parser.print_help()
        return

    logging.basicConfig(level=logging.DEBUG if args.debug >= 2 else logging.INFO if args.debug >= 1 else logging.WARNING)
    try:
        settings = config.load_config(args.config).replace(
            n_bits=args.n_bits,
            safe_primes=args.safe_primes,
            votes_per_ballot=args.votes_per_ballot,
            strict_digits=args.strict_digits,
            workers=args.workers,
            source=args.source,
            escrow=args.escrow,
            authority_key=args.authority_key,
            max_sessions=args.max_sessions,
        )
        ok = commands[args.cmd](TallyService(settings), args)
    except errors.TallyError as e:
        print('Simulation aborted: {}: {}'.format(type(e).__name__, e))
        parser.exit(1)
    if not ok:
        parser.exit(1)


if __name__ == '__main__':
    main()
