"""
Контракт криптографического оракула PSI и адаптер к библиотеке openmined.psi.

Сам протокол (OPRF, сжатое кодирование множества) здесь не реализуется:
остальной код видит только непрозрачные блобы setup/request/response.
"""
import importlib
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Iterable, List, Protocol, Sequence

from errors import ConfigurationError, OracleContractViolation, ProtocolError

logger = logging.getLogger("psi.oracle")


class RevealMode(str, Enum):
    SIZE = 'size'
    MEMBERSHIP = 'membership'


@dataclass(frozen=True)
class SizeOnly:
    count: int


@dataclass(frozen=True)
class Membership:
    indices: FrozenSet[int]

    def __contains__(self, index):
        return index in self.indices

    def __len__(self):
        return len(self.indices)

    @classmethod
    def of(cls, indices: Iterable[int]) -> "Membership":
        return cls(frozenset(indices))


def check_result(result, element_count: int, role: str = "initiator"):
    """
    Проверяет ответ оракула: индексы в [0, N), размер не больше N.

    Нарушение означает несовместимость версий библиотеки, а не сетевой сбой.
    """
    if isinstance(result, SizeOnly):
        if not 0 <= result.count <= element_count:
            raise OracleContractViolation(
                f"Intersection size {result.count} exceeds {element_count} elements",
                phase="derive", role=role,
            )
        return result
    for index in result.indices:
        if not 0 <= index < element_count:
            raise OracleContractViolation(
                f"Index {index} outside [0, {element_count})", phase="derive", role=role
            )
    return result


@contextmanager
def engine_errors(phase: str, role: str):
    """
    Переводит отказ движка оракула в OracleContractViolation.

    Привязки openmined.psi сообщают о сбоях через RuntimeError/ValueError,
    например если сервер создан без раскрытия пересечения, а клиент его требует.
    """
    try:
        yield
    except (RuntimeError, ValueError) as e:
        raise OracleContractViolation(f"Oracle engine failure: {e}", phase=phase, role=role) from e


class ServerOracle(Protocol):
    def create_setup(self, fpr: float, size_hint: int, elements: Sequence[bytes]) -> bytes:
        ...

    def process_request(self, request: bytes) -> bytes:
        ...


class ClientOracle(Protocol):
    def create_request(self, elements: Sequence[bytes]) -> bytes:
        ...

    def intersection_size(self, setup: bytes, response: bytes) -> int:
        ...

    def intersection(self, setup: bytes, response: bytes) -> List[int]:
        ...


def _load_psi():
    # Начиная с 2.x модуль называется openmined_psi, раньше был private_set_intersection.python
    for name in ("openmined_psi", "private_set_intersection.python"):
        try:
            return importlib.import_module(name)
        except ImportError:
            continue
    raise ConfigurationError(
        "Библиотека openmined.psi не установлена (pip install 'psi-overlap[psi]')",
        phase="oracle",
    )


def _parse(message, blob: bytes, phase: str, role: str):
    from google.protobuf.message import DecodeError

    try:
        message.ParseFromString(blob)
    except DecodeError as e:
        raise ProtocolError(f"Не удалось разобрать блоб: {e}", phase=phase, role=role)
    return message


class OpenMinedServerOracle:
    """Серверная сторона openmined.psi: ключ создаётся один раз на процесс"""

    def __init__(self, reveal: RevealMode):
        self._psi = _load_psi()
        with engine_errors(phase="setup", role="responder"):
            self._server = self._psi.server.CreateWithNewKey(reveal is RevealMode.MEMBERSHIP)

    def create_setup(self, fpr, size_hint, elements):
        with engine_errors(phase="setup", role="responder"):
            setup = self._server.CreateSetupMessage(
                fpr, size_hint, list(elements), self._psi.DataStructure.GCS
            )
        return setup.SerializeToString()

    def process_request(self, request):
        message = _parse(self._psi.Request(), request, phase="request", role="responder")
        with engine_errors(phase="request", role="responder"):
            return self._server.ProcessRequest(message).SerializeToString()


class OpenMinedClientOracle:
    def __init__(self, reveal: RevealMode):
        self._psi = _load_psi()
        with engine_errors(phase="request", role="initiator"):
            self._client = self._psi.client.CreateWithNewKey(reveal is RevealMode.MEMBERSHIP)

    def create_request(self, elements):
        with engine_errors(phase="request", role="initiator"):
            return self._client.CreateRequest(list(elements)).SerializeToString()

    def _messages(self, setup, response):
        server_setup = _parse(self._psi.ServerSetup(), setup, phase="setup", role="initiator")
        server_response = _parse(self._psi.Response(), response, phase="response", role="initiator")
        return server_setup, server_response

    def intersection_size(self, setup, response):
        messages = self._messages(setup, response)
        with engine_errors(phase="derive", role="initiator"):
            return self._client.GetIntersectionSize(*messages)

    def intersection(self, setup, response):
        messages = self._messages(setup, response)
        with engine_errors(phase="derive", role="initiator"):
            return list(self._client.GetIntersection(*messages))
