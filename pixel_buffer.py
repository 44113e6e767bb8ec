"""
pixel_buffer.py
Неизменяемый RGBA-буфер и его кодек (decode -> PixelBuffer -> PNG).
"""
import io
from dataclasses import dataclass

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

from errors import DecodeError, EncodeError

# MPO - JPEG с камер телефонов, Pillow открывает его отдельным форматом
SUPPORTED_FORMATS = ("PNG", "JPEG", "MPO", "WEBP", "GIF")


# eq=False: сравнение по пикселям ниже, буфер не хешируется
@dataclass(frozen=True, eq=False)
class PixelBuffer:
    """RGBA, 8 бит на канал, форма (H, W, 4). Массив только для чтения."""
    data: np.ndarray

    def __post_init__(self):
        if self.data.ndim != 3 or self.data.shape[2] != 4 or self.data.dtype != np.uint8:
            raise ValueError(f"Ожидается uint8 (H, W, 4), получено {self.data.dtype} {self.data.shape}")
        self.data.flags.writeable = False

    @classmethod
    def from_array(cls, arr: np.ndarray) -> "PixelBuffer":
        # Всегда своя копия: стадии не делят память
        return cls(np.ascontiguousarray(arr, dtype=np.uint8).copy())

    @classmethod
    def blank(cls, width: int, height: int, value: int = 255) -> "PixelBuffer":
        arr = np.full((height, width, 4), value, dtype=np.uint8)
        arr[..., 3] = 255
        return cls(arr)

    @property
    def width(self) -> int:
        return self.data.shape[1]

    @property
    def height(self) -> int:
        return self.data.shape[0]

    @property
    def rgb(self) -> np.ndarray:
        return self.data[..., :3]

    def copy_array(self) -> np.ndarray:
        """Изменяемая копия пикселей для следующей стадии."""
        return self.data.copy()

    def __eq__(self, other):
        if not isinstance(other, PixelBuffer):
            return NotImplemented
        return np.array_equal(self.data, other.data)


def decode(raw: bytes) -> PixelBuffer:
    """
    Декодирует PNG/JPEG/WEBP/GIF в PixelBuffer.
    Прозрачность сводится на белый фон: дальше по конвейеру альфа всегда 255.
    """
    try:
        img = Image.open(io.BytesIO(raw))
        fmt = img.format
        img.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError,
            EOFError, ValueError) as exc:
        raise DecodeError(f"Не удалось декодировать изображение: {exc}") from exc

    if fmt not in SUPPORTED_FORMATS:
        raise DecodeError(f"Неподдерживаемый формат: {fmt}")

    rgba = img.convert("RGBA")
    white = Image.new("RGBA", rgba.size, (255, 255, 255, 255))
    flat = Image.alpha_composite(white, rgba)
    return PixelBuffer.from_array(np.asarray(flat))


def encode_png(buffer: PixelBuffer) -> bytes:
    """Кодирует буфер в PNG с полностью непрозрачной альфой."""
    arr = buffer.copy_array()
    arr[..., 3] = 255
    try:
        ok, encoded = cv2.imencode(".png", cv2.cvtColor(arr, cv2.COLOR_RGBA2BGRA))
    except cv2.error as exc:
        raise EncodeError(f"cv2.imencode: {exc}") from exc
    if not ok:
        raise EncodeError(f"Не удалось закодировать PNG {buffer.width}x{buffer.height}")
    return encoded.tobytes()


def prepare_upload(raw: bytes, max_side: int = 2048) -> bytes:
    """
    Приводит загруженное фото к PNG, уменьшая большие стороны до max_side.
    """
    buffer = decode(raw)
    w, h = buffer.width, buffer.height
    if w > max_side or h > max_side:
        k = min(max_side / w, max_side / h)
        w, h = max(1, round(w * k)), max(1, round(h * k))
        arr = cv2.resize(buffer.copy_array(), (w, h), interpolation=cv2.INTER_AREA)
        buffer = PixelBuffer.from_array(arr)
    return encode_png(buffer)
