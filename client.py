#!/usr/bin/env python3
"""Client for the tally server"""
import json
import argparse

import errors
import network


class TallyClient:
    """Send simulate/decrypt requests to a tally server

    Attributes:
        address (tuple): `(host, port)` of the server
        timeout (float): socket timeout, in seconds
    """
    def __init__(self, address, timeout=None):
        self.address = address
        self.timeout = timeout

    def request(self, request):
        """Send a request and return its result

        Raises:
            errors.TallyError: the server reported a fault (rebuilt with the
                same class as on the server)
        """
        with network.MessageSocket.connect(self.address, self.timeout) as server:
            answer = server.request(request)
        if not answer.get('ok'):
            raise errors.from_dict(answer)
        return answer['result']

    def simulate(self, n_candidates, max_voters, n_votes):
        return self.request({
            'op': 'simulate',
            'n_candidates': n_candidates,
            'max_voters': max_voters,
            'n_votes': n_votes,
        })

    def decrypt_ballot(self, n_candidates, max_voters, n_votes, index):
        return self.request({
            'op': 'decrypt',
            'n_candidates': n_candidates,
            'max_voters': max_voters,
            'n_votes': n_votes,
            'index': index,
        })


def main():
    parser = argparse.ArgumentParser()
    parser.description = 'Query a tally server'
    parser.add_argument('--host', default='127.0.0.1')
    parser.add_argument('--port', default=4242, type=int)
    parser.add_argument('candidates', type=int)
    parser.add_argument('max_voters', type=int)
    parser.add_argument('votes', type=int)
    parser.add_argument('index', type=int, nargs='?')
    args = parser.parse_args()

    client = TallyClient((args.host, args.port))
    try:
        if args.index is None:
            result = client.simulate(args.candidates, args.max_voters, args.votes)
        else:
            result = client.decrypt_ballot(args.candidates, args.max_voters, args.votes, args.index)
    except errors.TallyError as e:
        parser.exit(1, '{}: {}\n'.format(type(e).__name__, e))
    print(json.dumps(result, indent=4))


if __name__ == '__main__':
    main()
