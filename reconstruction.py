"""
Восстановление результата по членству элементов в пересечении.

Текст: подсветка, замена непересекающихся фрагментов псевдослучайным
заполнителем той же длины, выдача только общих фрагментов.
Изображение: непересекающиеся плитки заливаются средним цветом соседей
(или белым), либо обнуляются.
"""
import hashlib
import logging
from typing import Dict, Optional

import numpy as np
from PIL import Image

import config
from errors import ConfigurationError, OutputWriteError, ProtocolError
from oracle import Membership, SizeOnly, check_result
from segmenter import ImageSegmentation, TextSegmentation

logger = logging.getLogger("psi.reconstruction")

GREEN = '\x1b[32m'
RED = '\x1b[31m'
RESET = '\x1b[0m'

ALPHABET = 'abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789'

WHITE = (255, 255, 255, 255)
BLANK = (0, 0, 0, 0)

TEXT_MODES = ('highlight', 'redact', 'extract')
IMAGE_MODES = ('image-smooth', 'image-blank')


def make_filler(text: str, salt: str) -> str:
    """
    Детерминированный заполнитель той же длины, что и text.

    Символ i берётся из окна в два hex-символа SHA-256(text + salt),
    окна идут по кругу. Одинаковый текст с той же солью всегда даёт
    одинаковый заполнитель, так что угаданный открытый текст можно
    подтвердить сравнением.
    """
    digest = hashlib.sha256((text + salt).encode('utf-8')).hexdigest()
    window = len(digest) - 1
    return ''.join(
        ALPHABET[int(digest[i % window:i % window + 2], 16) % len(ALPHABET)]
        for i in range(len(text))
    )


class RedactionCache:
    """Заполнители одного запуска: original -> filler"""

    def __init__(self, salt: str):
        self.salt = salt
        self._fillers: Dict[str, str] = {}

    def __len__(self):
        return len(self._fillers)

    def filler(self, text: str) -> str:
        if text not in self._fillers:
            self._fillers[text] = make_filler(text, self.salt)
        return self._fillers[text]


def _round_half_up(total, count):
    # Целочисленный floor(total / count + 0.5) без ошибок плавающей точки
    return (2 * total + count) // (2 * count)


class ReconstructionEngine:
    def __init__(self, salt: Optional[str] = None):
        self.cache = RedactionCache(salt if salt is not None else config.redaction_salt)
        self.output: Optional[np.ndarray] = None
        self._image: Optional[ImageSegmentation] = None

    # ---------- текст ----------

    def render_text(self, segmentation: TextSegmentation, membership: Membership, mode: str) -> str:
        check_result(membership, len(segmentation), role="reconstruction")
        if mode == 'highlight':
            return self.highlight(segmentation, membership)
        if mode == 'redact':
            return self.redact(segmentation, membership)
        if mode == 'extract':
            return self.extract(segmentation, membership)
        raise ConfigurationError(f"Unknown text output mode: {mode}", phase="reconstruction")

    @staticmethod
    def _joiner(segmentation):
        return '\n' if segmentation.mode == 'line' else ''

    @staticmethod
    def _verbatim(segmentation, fragment, index):
        # Пустые строки, пробелы в режиме char и пробельные токены в режиме word не трогаем
        return index is None or (segmentation.mode == 'word' and fragment.isspace())

    def highlight(self, segmentation: TextSegmentation, membership: Membership) -> str:
        out = []
        for fragment, index in segmentation.walk():
            if self._verbatim(segmentation, fragment, index):
                out.append(fragment)
            else:
                color = GREEN if index in membership else RED
                out.append(f"{color}{fragment}{RESET}")
        return self._joiner(segmentation).join(out)

    def redact(self, segmentation: TextSegmentation, membership: Membership) -> str:
        out = []
        for fragment, index in segmentation.walk():
            if self._verbatim(segmentation, fragment, index) or index in membership:
                out.append(fragment)
            else:
                out.append(self.cache.filler(fragment))
        return self._joiner(segmentation).join(out)

    def extract(self, segmentation: TextSegmentation, membership: Membership) -> str:
        members = [segmentation.units[index] for index in sorted(membership.indices)]
        # Один элемент на строку во всех режимах разбиения
        return '\n'.join(members)

    @staticmethod
    def size_report(result: SizeOnly) -> str:
        return f"Intersection size: {result.count}"

    # ---------- изображение ----------

    def begin_image(self, segmentation: ImageSegmentation):
        """Создаёт собственный выходной буфер: плитки сегментации не трогаются"""
        self.output = segmentation.pixels.copy()
        self._image = segmentation

    def place_tile(self, index: int, payload: bytes):
        """
        Записывает полученную от сервера плитку в выходной буфер.

        Вызывается воркерами инкрементального режима, каждый пишет
        только в свою плитку, поэтому блокировка не нужна.
        """
        size = self._image.tile_size
        expected = size * size * config.channels
        if len(payload) != expected:
            raise ProtocolError(f"Malformed payload for tile {index}: {len(payload)} bytes, "
                                f"expected {expected}", phase="tile", role="initiator")
        rows, cols = self._image.region(index)
        self.output[rows, cols] = np.frombuffer(payload, dtype=np.uint8).reshape(size, size, config.channels)

    def render_image(self, segmentation: ImageSegmentation, membership: Membership, mode: str) -> np.ndarray:
        check_result(membership, len(segmentation), role="reconstruction")
        if mode not in IMAGE_MODES:
            raise ConfigurationError(f"Unknown image output mode: {mode}", phase="reconstruction")
        if self._image is not segmentation:
            self.begin_image(segmentation)

        across, down = segmentation.tiles_across, segmentation.tiles_down
        # Явная карта членства, а не маркер в альфа-канале
        bitmap = np.zeros((down, across), dtype=bool)
        for index in membership.indices:
            bitmap[divmod(index, across)] = True

        if mode == 'image-blank':
            fills = {(ty, tx): BLANK for ty, tx in zip(*np.nonzero(~bitmap))}
        else:
            fills = self._smooth_fills(bitmap)

        for (ty, tx), color in fills.items():
            rows, cols = segmentation.region(int(ty) * across + int(tx))
            self.output[rows, cols] = color

        logger.info(f"Filled {len(fills)} non-intersecting tiles ({mode})")
        return self.output

    def _tile_averages(self, down: int, across: int) -> np.ndarray:
        size = self._image.tile_size
        rgb = self.output[:down * size, :across * size, :3].astype(np.int64)
        sums = rgb.reshape(down, size, across, size, 3).sum(axis=(1, 3))
        return _round_half_up(sums, size * size)

    def _smooth_fills(self, bitmap: np.ndarray):
        """
        Цвета заливки для всех непересекающихся плиток.

        Средние и карта членства снимаются один раз до любой записи, так что
        результат не зависит от порядка обхода сетки.
        """
        down, across = bitmap.shape
        averages = self._tile_averages(down, across)

        fills = {}
        for ty, tx in zip(*np.nonzero(~bitmap)):
            colors = [
                averages[ny, nx]
                for ny, nx in ((ty, tx - 1), (ty, tx + 1), (ty - 1, tx), (ty + 1, tx))
                if 0 <= ny < down and 0 <= nx < across and bitmap[ny, nx]
            ]
            if colors:
                mean = _round_half_up(np.sum(colors, axis=0), len(colors))
                fills[(ty, tx)] = (int(mean[0]), int(mean[1]), int(mean[2]), 255)
            else:
                fills[(ty, tx)] = WHITE
        return fills

    def write_image(self, path: str):
        try:
            Image.fromarray(self.output).save(path, format="PNG")
        except OSError as e:
            raise OutputWriteError(f"Ошибка записи изображения {path}: {e}", phase="write",
                                   role="reconstruction")
        logger.info(f"Final image written to {path}")
