#!/usr/bin/env python3
"""Length-prefixed JSON messages over TCP

Each message is an 8-byte big-endian length followed by the UTF-8 encoded
JSON document.
"""
import json
import struct
import socket

_HEADER = struct.Struct('!Q')
_MAX_MESSAGE_SIZE = 2**26


class MessageSocket:
    def __init__(self, _socket=None):
        if _socket is None:
            _socket = socket.socket()
        self._socket = _socket
        self.buffer = b''

    @classmethod
    def connect(cls, address, timeout=None):
        self = cls(socket.create_connection(address, timeout))
        return self

    def __enter__(self):
        self._socket.__enter__()
        return self

    def __exit__(self, type, value, traceback):
        self._socket.__exit__(type, value, traceback)

    def close(self):
        self._socket.close()

    def settimeout(self, timeout):
        self._socket.settimeout(timeout)

    def receive_data(self, size):
        while len(self.buffer) < size:
            packet = self._socket.recv(2**20)
            if not packet:
                raise ConnectionResetError('connection closed by peer')
            self.buffer += packet
        data, self.buffer = self.buffer[:size], self.buffer[size:]
        return data

    def send_message(self, message):
        self._socket.sendall(_HEADER.pack(len(message)) + message)

    def receive_message(self):
        size, = _HEADER.unpack(self.receive_data(_HEADER.size))
        if size > _MAX_MESSAGE_SIZE:
            raise ValueError('message of {} bytes is too large'.format(size))
        return self.receive_data(size)

    def send_json(self, obj):
        self.send_message(json.dumps(obj).encode())

    def receive_json(self):
        return json.loads(self.receive_message().decode())

    def request(self, obj):
        """Send a JSON document and wait for the JSON answer"""
        self.send_json(obj)
        return self.receive_json()


class MessageSocketListener:
    def __init__(self, address):
        self._socket = socket.socket()
        self._socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._socket.bind(address)
        self._socket.listen()

    @property
    def address(self):
        """The address actually bound (useful when binding port 0)"""
        return self._socket.getsockname()

    def __enter__(self):
        self._socket.__enter__()
        return self

    def __exit__(self, type, value, traceback):
        self._socket.__exit__(type, value, traceback)

    def close(self):
        self._socket.close()

    def accept(self):
        client, addr = self._socket.accept()
        return MessageSocket(client), addr
