#!/usr/bin/env python3
"""Answer simulate/decrypt requests over TCP

One request per connection; the answer is the structured result of
`election.TallyService.handle()`.
"""
import logging
import argparse

import network
import config
from election import TallyService

logger = logging.getLogger(__name__)


def handle_connection(connection, service):
    with connection:
        try:
            request = connection.receive_json()
        except ValueError as e:
            connection.send_json({'ok': False, 'error': 'InvalidParameter', 'message': 'malformed request: {}'.format(e)})
            return
        connection.send_json(service.handle(request))


def serve(listener, service, max_requests=None, timeout=30):
    """Serve requests until `max_requests` have been answered (or forever)

    Arguments:
        listener (network.MessageSocketListener): listening socket
        service (election.TallyService): the engine answering requests
        max_requests (int, optional): stop after this many connections
        timeout (float, optional): seconds a client has to send its request
            (and read the answer) before the connection is dropped; `None`
            waits forever
    """
    served = 0
    while max_requests is None or served < max_requests:
        connection, addr = listener.accept()
        connection.settimeout(timeout)
        logger.info('request from %s:%d', *addr[:2])
        try:
            handle_connection(connection, service)
        except (ConnectionError, OSError) as e:
            logger.warning('connection with %s:%d lost: %s', addr[0], addr[1], e)
        served += 1


def main():
    parser = argparse.ArgumentParser()
    parser.description = 'Serve homomorphic tally simulations'
    parser.add_argument('--host', default='127.0.0.1')
    parser.add_argument('--port', default=4242, type=int)
    parser.add_argument('--timeout', default=30, type=float)
    parser.add_argument('--config')
    parser.add_argument('--source', choices=['seeded', 'session'])
    parser.add_argument('--debug', '-d', default=1, type=int)
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.debug >= 2 else logging.INFO if args.debug else logging.WARNING)
    service = TallyService(config.load_config(args.config).replace(source=args.source))
    with network.MessageSocketListener((args.host, args.port)) as listener:
        print('Listening on {}:{}'.format(*listener.address[:2]))
        serve(listener, service, timeout=args.timeout)


if __name__ == '__main__':
    main()
