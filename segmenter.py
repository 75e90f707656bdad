"""
Разбиение содержимого на элементы для PSI.

Текст режется по строкам, словам или символам, изображение режется на плитки
tile_size × tile_size. Индексы элементов плотные: 0..N-1 в порядке обхода.
Обе стороны обязаны резать одинаково, иначе индексы разъедутся.
"""
import logging
import re
from dataclasses import dataclass
from typing import Iterator, List, Optional, Tuple

import numpy as np
from PIL import Image

from errors import ConfigurationError, SourceReadError

logger = logging.getLogger("psi.segmenter")

SPLIT_MODES = ('line', 'word', 'char')

LINE_BREAK = re.compile(r'\r?\n')
# Буквенно-цифровая последовательность или любой одиночный символ (включая пробельные)
WORD_TOKEN = re.compile(r'[A-Za-z0-9]+|.', re.DOTALL)

# Трёхзначная запись значения канала: 7 -> b'007'
_CHANNEL_DIGITS = [b'%03d' % value for value in range(256)]


@dataclass(frozen=True)
class Element:
    index: int
    canonical_bytes: bytes


@dataclass(frozen=True)
class Tile:
    tx: int
    ty: int
    size: int
    pixels: np.ndarray  # (size, size, 4) uint8, собственная копия

    @property
    def pixel_buffer(self) -> bytes:
        return self.pixels.tobytes()


class TextSegmentation:
    """
    Результат разбиения текста.

    Хранит исходный текст целиком: восстановление заново проходит по нему
    через walk() и вычисляет индексы на лету.
    """

    def __init__(self, content: str, mode: str):
        self.content = content
        self.mode = mode
        self.units = [unit for unit, index in self.walk() if index is not None]
        self.elements = [Element(i, unit.encode('utf-8')) for i, unit in enumerate(self.units)]

    def __len__(self):
        return len(self.elements)

    def walk(self) -> Iterator[Tuple[str, Optional[int]]]:
        """
        Обходит исходный текст по порядку.

        Возвращает пары (фрагмент, индекс элемента). Индекс равен None для
        фрагментов без элемента: пустых строк в режиме line и пробельных
        символов в режиме char.
        """
        index = 0
        if self.mode == 'line':
            for line in LINE_BREAK.split(self.content):
                if line.strip():
                    yield line, index
                    index += 1
                else:
                    yield line, None
        elif self.mode == 'word':
            for match in WORD_TOKEN.finditer(self.content):
                yield match.group(0), index
                index += 1
        else:
            for char in self.content:
                if char.isspace():
                    yield char, None
                else:
                    yield char, index
                    index += 1


class ImageSegmentation:
    """
    Результат разбиения изображения на плитки.

    Неполные плитки у правого и нижнего края отбрасываются.
    Индекс плитки: ty * tiles_across + tx.
    """

    def __init__(self, pixels: np.ndarray, tile_size: int):
        self.pixels = pixels
        self.height, self.width = pixels.shape[:2]
        self.tile_size = tile_size
        self.tiles_across = self.width // tile_size
        self.tiles_down = self.height // tile_size
        self.tiles: List[Tile] = []
        self.elements: List[Element] = []

    def __len__(self):
        return len(self.elements)

    def region(self, index: int) -> Tuple[slice, slice]:
        """Срез (строки, столбцы) плитки в координатах изображения"""
        ty, tx = divmod(index, self.tiles_across)
        size = self.tile_size
        return slice(ty * size, (ty + 1) * size), slice(tx * size, (tx + 1) * size)


def canonical_tile_bytes(tx: int, ty: int, tile: np.ndarray) -> bytes:
    """
    pad(tx,4) + pad(ty,4) + для каждого пикселя pad(R,3)+pad(G,3)+pad(B,3).

    Координаты входят в элемент, поэтому одинаковые по содержимому плитки
    в разных местах не совпадают.
    """
    rgb = tile[:, :, :3].reshape(-1).tolist()
    return b''.join([b'%04d%04d' % (tx, ty)] + [_CHANNEL_DIGITS[value] for value in rgb])


def segment_text(content: str, mode: str) -> TextSegmentation:
    if mode not in SPLIT_MODES:
        raise ConfigurationError(f"Неизвестный режим разбиения: {mode}", phase="segmentation")
    segmentation = TextSegmentation(content, mode)
    logger.info(f"Loaded {len(segmentation)} elements using '{mode}' split mode")
    return segmentation


def segment_image(pixels: np.ndarray, tile_size: int, observer=None) -> ImageSegmentation:
    """
    Режет RGBA-изображение (H, W, 4) на плитки.

    :param pixels: массив uint8
    :param tile_size: сторона плитки в пикселях
    :param observer: получает progress() по строкам плиток
    """
    if tile_size < 1:
        raise ConfigurationError(f"Размер плитки должен быть положительным: {tile_size}",
                                 phase="segmentation")
    segmentation = ImageSegmentation(pixels, tile_size)
    logger.info(
        f"Dividing image into {segmentation.tiles_across} tiles across and "
        f"{segmentation.tiles_down} tiles down "
        f"(total {segmentation.tiles_across * segmentation.tiles_down} tiles)"
    )

    index = 0
    for ty in range(segmentation.tiles_down):
        for tx in range(segmentation.tiles_across):
            rows, cols = segmentation.region(index)
            # Копия: выходной буфер реконструкции никогда не разделяет память с плитками
            tile = pixels[rows, cols].copy()
            segmentation.tiles.append(Tile(tx, ty, tile_size, tile))
            segmentation.elements.append(Element(index, canonical_tile_bytes(tx, ty, tile)))
            index += 1
        if observer is not None:
            observer.progress(ty + 1, segmentation.tiles_down)

    logger.info(f"Extracted {len(segmentation)} tile elements from image")
    return segmentation


def read_text(path: str) -> str:
    try:
        with open(path, 'r', encoding='utf-8', newline='') as f:
            return f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise SourceReadError(f"Ошибка чтения файла {path}: {e}", phase="read")


def read_image(path: str) -> np.ndarray:
    """Читает изображение и приводит его к RGBA"""
    try:
        with Image.open(path) as image:
            pixels = np.array(image.convert("RGBA"), dtype=np.uint8)
    except OSError as e:
        raise SourceReadError(f"Ошибка чтения изображения {path}: {e}", phase="read")
    logger.info(f"Loaded image {path} with dimensions {pixels.shape[1]}x{pixels.shape[0]}")
    return pixels
