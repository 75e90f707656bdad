"""
Сторона ответчика (сервера).

BulkResponder обслуживает один обмен setup/request/response через оракула.
TileResponder один раз предвычисляет своё множество и отвечает на
поэлементные запросы инкрементального режима.
"""
import logging
import threading
from enum import Enum
from typing import Dict, Optional, Sequence, Tuple

from errors import ProtocolError, PSIError
from oracle import ServerOracle, engine_errors
from segmenter import Element, ImageSegmentation

logger = logging.getLogger("psi.responder")


class ResponderState(str, Enum):
    IDLE = 'idle'
    SETUP_SERVED = 'setup_served'
    AWAITING_REQUEST = 'awaiting_request'
    REQUEST_PROCESSED = 'request_processed'
    DONE = 'done'


def parse_size_hint(raw: Optional[str], default: int) -> int:
    """
    Разбирает объявленное клиентом число элементов.

    Подсказка влияет только на FPR и размер структуры, поэтому отсутствие
    или мусор в заголовке не считается ошибкой: берётся значение по умолчанию.
    """
    if raw is None:
        logger.warning(f"Client did not announce its element count, assuming {default}")
        return default
    try:
        hint = int(raw)
    except ValueError:
        logger.warning(f"Unparsable element count {raw!r}, assuming {default}")
        return default
    if hint < 1:
        logger.warning(f"Non-positive element count {hint}, assuming {default}")
        return default
    return hint


class BulkResponder:
    def __init__(self, oracle: ServerOracle, elements: Sequence[Element], fpr: float,
                 default_size_hint: int = 100):
        """
        :param oracle: серверный оракул, созданный с нужным режимом раскрытия
        :param elements: собственные элементы сервера
        :param fpr: доля ложных срабатываний для setup-сообщения
        :param default_size_hint: оценка числа элементов клиента без заголовка
        """
        self.oracle = oracle
        self.items = [element.canonical_bytes for element in elements]
        self.fpr = fpr
        self.default_size_hint = default_size_hint
        self.state = ResponderState.IDLE
        # Обработчики FastAPI выполняются в пуле потоков
        self._lock = threading.Lock()

    def _advance(self, state: ResponderState):
        logger.debug(f"Responder state {self.state.value} -> {state.value}")
        self.state = state

    def serve_setup(self, raw_size_hint: Optional[str]) -> bytes:
        size_hint = parse_size_hint(raw_size_hint, self.default_size_hint)
        with self._lock:
            logger.info(f"Creating setup for client with {size_hint} elements (FPR: {self.fpr})")
            with engine_errors(phase="setup", role="responder"):
                setup = self.oracle.create_setup(self.fpr, size_hint, self.items)
            self._advance(ResponderState.SETUP_SERVED)
            self._advance(ResponderState.AWAITING_REQUEST)
        return setup

    def process_request(self, request: bytes) -> bytes:
        with self._lock:
            if self.state is not ResponderState.AWAITING_REQUEST:
                logger.warning(f"Request received in state {self.state.value}")
            try:
                with engine_errors(phase="request", role="responder"):
                    response = self.oracle.process_request(request)
            except PSIError:
                # Сессия прерывается целиком, следующий клиент начинает с IDLE
                self._advance(ResponderState.IDLE)
                raise
            self._advance(ResponderState.REQUEST_PROCESSED)
            self._advance(ResponderState.DONE)
            logger.info(f"Processed client request ({len(request)} bytes)")
            self._advance(ResponderState.IDLE)
        return response


class TileResponder:
    """
    Инкрементальный режим: ответ на запрос одного элемента.

    Полезная нагрузка совпавшего элемента: RGBA-байты плитки для
    изображений и сами байты элемента для текста.
    """

    def __init__(self, segmentation):
        self.count = len(segmentation.elements)
        self.payloads: Dict[bytes, bytes] = {}
        for element in segmentation.elements:
            if isinstance(segmentation, ImageSegmentation):
                payload = segmentation.tiles[element.index].pixel_buffer
            else:
                payload = element.canonical_bytes
            self.payloads.setdefault(element.canonical_bytes, payload)
        logger.info(f"Server precomputed {self.count} PSI elements")

    def lookup(self, tile_idx: int, element: bytes, element_count: Optional[int] = None) -> Optional[bytes]:
        """
        Членство определяется по каноническим байтам, а не по позиции: у
        сторон может быть разное число элементов, и ответ должен совпадать
        с массовым обменом.

        :param tile_idx: индекс элемента у клиента
        :param element_count: объявленное клиентом число элементов, задаёт диапазон индексов
        :return: полезная нагрузка, если элемент есть у сервера, иначе None
        :raises ProtocolError: индекс вне [0, element_count)
        """
        if tile_idx < 0 or (element_count is not None and tile_idx >= element_count):
            raise ProtocolError(f"Invalid tile index {tile_idx}", phase="tile", role="responder")
        return self.payloads.get(element)


def parse_tile_request(raw_idx: Optional[str], raw_count: Optional[str]) -> Tuple[int, Optional[int]]:
    """
    Разбирает tile_idx и заголовок X-Num-Elements запроса плитки.

    В отличие от подсказки размера для setup, здесь мусор означает
    неверный запрос.
    """
    try:
        tile_idx = int(raw_idx)
        element_count = int(raw_count) if raw_count is not None else None
    except (TypeError, ValueError):
        raise ProtocolError(f"Malformed tile request: tile_idx={raw_idx!r}, X-Num-Elements={raw_count!r}",
                            phase="tile", role="responder")
    return tile_idx, element_count
