"""
Общие фикстуры.

PlainServerOracle / PlainClientOracle: оракул без криптографии: setup и
request содержат SHA-256 элементов в открытом виде. Контракт тот же, что у
openmined.psi, поэтому координаторы и транспорт проверяются целиком.
"""
import hashlib
import json

import httpx
import numpy as np
import pytest

from api import create_app
from errors import ProtocolError
from segmenter import segment_image, segment_text
from server_logic import BulkResponder, TileResponder
from transport import HttpTransport


def _digests(elements):
    return [hashlib.sha256(element).hexdigest() for element in elements]


def _load(blob, phase, role):
    try:
        return json.loads(blob)
    except ValueError as e:
        raise ProtocolError(f"Malformed blob: {e}", phase=phase, role=role)


class PlainServerOracle:
    def __init__(self):
        self.setups = []

    def create_setup(self, fpr, size_hint, elements):
        self.setups.append((fpr, size_hint))
        return json.dumps(sorted(set(_digests(elements)))).encode()

    def process_request(self, request):
        _load(request, "request", "responder")
        return request


class PlainClientOracle:
    def __init__(self):
        self.membership_calls = 0
        self.size_calls = 0

    def create_request(self, elements):
        return json.dumps(_digests(elements)).encode()

    def _matches(self, setup, response):
        server = set(_load(setup, "setup", "initiator"))
        client = _load(response, "response", "initiator")
        return [i for i, digest in enumerate(client) if digest in server]

    def intersection_size(self, setup, response):
        self.size_calls += 1
        return len(self._matches(setup, response))

    def intersection(self, setup, response):
        self.membership_calls += 1
        return self._matches(setup, response)


@pytest.fixture
def server_oracle():
    return PlainServerOracle()


@pytest.fixture
def client_oracle():
    return PlainClientOracle()


def solid_image(width, height, color):
    image = np.zeros((height, width, 4), dtype=np.uint8)
    image[:, :] = color
    return image


def text_app(content, mode='line', oracle=None, incremental=False):
    segmentation = segment_text(content, mode)
    if incremental:
        return create_app(tiles=TileResponder(segmentation))
    return create_app(bulk=BulkResponder(oracle or PlainServerOracle(), segmentation.elements, 0.001))


def image_app(pixels, tile_size, oracle=None, incremental=False):
    segmentation = segment_image(pixels, tile_size)
    if incremental:
        return create_app(tiles=TileResponder(segmentation))
    return create_app(bulk=BulkResponder(oracle or PlainServerOracle(), segmentation.elements, 0.001))


def asgi_transport(app, timeout=10.0):
    client = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")
    return HttpTransport("http://test", timeout, client=client)


class RecordingObserver:
    def __init__(self):
        self.progress_events = []
        self.errors = []
        self.results = []

    def progress(self, current, total):
        self.progress_events.append((current, total))

    def error(self, cause):
        self.errors.append(cause)

    def complete(self, result):
        self.results.append(result)
