"""
Сторона инициатора (клиента).

BulkInitiator: один обмен setup/request/response на весь набор элементов.
IncrementalInitiator: отдельный микрообмен на каждый элемент через
ограниченный пул асинхронных воркеров.
"""
import asyncio
import logging
from enum import Enum
from typing import Callable, Optional, Sequence, Set

from errors import ConfigurationError
from observer import ExchangeObserver
from oracle import ClientOracle, Membership, RevealMode, SizeOnly, check_result, engine_errors
from segmenter import Element
from transport import HttpTransport

logger = logging.getLogger("psi.initiator")


class InitiatorState(str, Enum):
    IDLE = 'idle'
    SETUP_REQUESTED = 'setup_requested'
    SETUP_RECEIVED = 'setup_received'
    REQUEST_SENT = 'request_sent'
    RESPONSE_RECEIVED = 'response_received'
    DERIVED = 'derived'
    DONE = 'done'
    ABORTED = 'aborted'


def derive_result(oracle: ClientOracle, setup: bytes, response: bytes, reveal: RevealMode):
    """
    Итог обмена по режиму раскрытия.

    В режиме SIZE вызывается только подсчёт размера: список индексов
    не строится и не запрашивается.
    """
    if reveal is RevealMode.SIZE:
        return SizeOnly(oracle.intersection_size(setup, response))
    return Membership.of(oracle.intersection(setup, response))


class BulkInitiator:
    """
    Один сеанс массового обмена. Экземпляр одноразовый: после сбоя
    сеанс запускается заново новым объектом, повторов нет.
    """

    def __init__(self, oracle: ClientOracle, transport: HttpTransport, reveal: RevealMode,
                 observer: Optional[ExchangeObserver] = None):
        self.oracle = oracle
        self.transport = transport
        self.reveal = reveal
        self.observer = observer or ExchangeObserver()
        self.state = InitiatorState.IDLE

    def _advance(self, state: InitiatorState, step: Optional[int] = None):
        logger.debug(f"Initiator state {self.state.value} -> {state.value}")
        self.state = state
        if step is not None:
            self.observer.progress(step, 5)

    async def run(self, elements: Sequence[Element]):
        if self.state is not InitiatorState.IDLE:
            raise ConfigurationError(
                f"Session already used (state {self.state.value}), start a new one",
                phase=self.state.value, role="initiator",
            )
        items = [element.canonical_bytes for element in elements]
        logger.info(f"Reveal intersection: {self.reveal is RevealMode.MEMBERSHIP}")

        try:
            # Сначала объявляем своё число элементов: от него зависит setup
            self._advance(InitiatorState.SETUP_REQUESTED)
            setup = await self.transport.fetch_setup(len(items))
            self._advance(InitiatorState.SETUP_RECEIVED, 1)

            with engine_errors(phase="request", role="initiator"):
                request = self.oracle.create_request(items)
            # Запрос собран, но ещё не доставлен
            self.observer.progress(2, 5)
            response = await self.transport.send_request(request)
            self._advance(InitiatorState.REQUEST_SENT)
            self._advance(InitiatorState.RESPONSE_RECEIVED, 3)

            with engine_errors(phase="derive", role="initiator"):
                result = derive_result(self.oracle, setup, response, self.reveal)
            check_result(result, len(items))
            self._advance(InitiatorState.DERIVED, 4)
        except BaseException as e:
            self._advance(InitiatorState.ABORTED)
            self.observer.error(e)
            raise

        self._advance(InitiatorState.DONE, 5)
        self.observer.complete(result)
        return result


class IncrementalInitiator:
    def __init__(self, transport: HttpTransport, concurrency: int = 10,
                 observer: Optional[ExchangeObserver] = None,
                 sink: Optional[Callable[[int, bytes], None]] = None):
        """
        :param transport: HTTP-транспорт к ответчику
        :param concurrency: число одновременных микрообменов
        :param observer: получает progress по мере завершения микрообменов
        :param sink: вызывается воркером для каждого совпавшего элемента (index, payload)
        """
        if concurrency < 1:
            raise ConfigurationError(f"Concurrency must be positive: {concurrency}",
                                     phase="incremental", role="initiator")
        self.transport = transport
        self.concurrency = concurrency
        self.observer = observer or ExchangeObserver()
        self.sink = sink

    async def run(self, elements: Sequence[Element]) -> Membership:
        """
        Прогоняет все микрообмены и возвращает объединение совпадений.

        Возврат происходит только после завершения всех воркеров. Первый же
        транспортный сбой отменяет остальные и пробрасывается наружу.
        """
        total = len(elements)
        pending: asyncio.Queue = asyncio.Queue()
        for element in elements:
            pending.put_nowait(element)
        results: asyncio.Queue = asyncio.Queue()

        async def worker():
            while True:
                try:
                    element = pending.get_nowait()
                except asyncio.QueueEmpty:
                    return
                payload = await self.transport.fetch_tile(element.index, element.canonical_bytes, total)
                if payload is not None and self.sink is not None:
                    # Каждый воркер пишет только в область своей плитки
                    self.sink(element.index, payload)
                await results.put((element.index, payload is not None))

        # Множество совпадений принадлежит только агрегатору
        async def aggregate() -> Set[int]:
            matched = set()
            for done in range(1, total + 1):
                index, is_member = await results.get()
                if is_member:
                    matched.add(index)
                self.observer.progress(done, total)
            return matched

        logger.info(f"Running {total} micro-exchanges with concurrency {self.concurrency}")
        workers = [asyncio.create_task(worker()) for _ in range(min(self.concurrency, total))]
        aggregator = asyncio.create_task(aggregate())
        try:
            await asyncio.gather(*workers)
            matched = await aggregator
        except BaseException as e:
            for task in workers + [aggregator]:
                task.cancel()
            await asyncio.gather(*workers, aggregator, return_exceptions=True)
            self.observer.error(e)
            raise

        result = Membership.of(matched)
        logger.info(f"Total intersection: {len(result)} elements out of {total}")
        self.observer.complete(result)
        return result
