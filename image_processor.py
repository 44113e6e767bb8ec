"""
image_processor.py
Примитивы обработки для вариантов сложности.
Каждый метод возвращает НОВЫЙ PixelBuffer и никогда не меняет входной.
Pipeline: Resample -> Blur -> Threshold -> Dilate -> Resample.
"""
import math
from typing import Tuple

import cv2
import numpy as np

from config import EngineConfig, Polarity, ResampleMode
from pixel_buffer import PixelBuffer

# BT.601 в целых тысячных: сравнение с порогом без ошибок округления float
_LUMA_WEIGHTS = np.array([299, 587, 114], dtype=np.int32)

_INTERPOLATION = {
    ResampleMode.SMOOTH: cv2.INTER_AREA,
    ResampleMode.BLOCKY: cv2.INTER_NEAREST,
}


def luminance_milli(buffer: PixelBuffer) -> np.ndarray:
    """Яркость 0.299R + 0.587G + 0.114B, умноженная на 1000 (int32, H x W)."""
    return buffer.rgb.astype(np.int32) @ _LUMA_WEIGHTS


def scaled_size(buffer: PixelBuffer, scale: float) -> Tuple[int, int]:
    """Размер после масштабирования: дробная часть отбрасывается, минимум 1 px."""
    return (max(1, math.floor(buffer.width * scale)),
            max(1, math.floor(buffer.height * scale)))


class ImageProcessor:
    def __init__(self, config: EngineConfig):
        self.cfg = config

    def resample(self, buffer: PixelBuffer, width: float, height: float,
                 mode: ResampleMode) -> PixelBuffer:
        """
        SMOOTH - для уменьшения (сливает мелкие детали),
        BLOCKY - nearest neighbour для обратного увеличения (жёсткие края блоков).
        """
        w, h = math.floor(width), math.floor(height)
        if w < 1 or h < 1:
            raise ValueError(f"Размер после ресемплинга должен быть >= 1: {width}x{height}")

        interpolation = _INTERPOLATION[mode]
        if mode is ResampleMode.SMOOTH and (w > buffer.width or h > buffer.height):
            # INTER_AREA при увеличении вырождается в nearest
            interpolation = cv2.INTER_LINEAR

        out = cv2.resize(buffer.copy_array(), (w, h), interpolation=interpolation)
        return PixelBuffer.from_array(out)

    def blur(self, buffer: PixelBuffer, radius: float) -> PixelBuffer:
        """Сепарабельный гауссов blur; radius - сигма в пикселях, 0 = копия."""
        if radius < 0:
            raise ValueError(f"radius < 0: {radius}")
        if radius == 0:
            return PixelBuffer.from_array(buffer.data)

        # Одно и то же ядро на всех каналах: серое остаётся серым
        out = cv2.GaussianBlur(buffer.copy_array(), (0, 0), sigmaX=radius, sigmaY=radius,
                               borderType=cv2.BORDER_REPLICATE)
        return PixelBuffer.from_array(out)

    def threshold(self, buffer: PixelBuffer, cutoff: int,
                  polarity: Polarity = Polarity.INK_ON_WHITE) -> PixelBuffer:
        """
        Бинаризация по яркости. Равенство порогу считается "не больше":
        INK_ON_WHITE -> чернила, INK_ON_BLACK -> фон.
        """
        bright = luminance_milli(buffer) > cutoff * 1000
        if polarity is Polarity.INK_ON_WHITE:
            white = bright
        else:
            white = ~bright

        out = np.empty_like(buffer.data)
        out[..., :3] = np.where(white, 255, 0).astype(np.uint8)[..., None]
        out[..., 3] = 255
        return PixelBuffer(out)

    def dilate(self, buffer: PixelBuffer, passes: int) -> PixelBuffer:
        """
        Каждый проход: внутренний чёрный пиксель красит чёрным всё своё окно 3x3.
        Пиксели на краю кадра сами не разрастаются.
        Проходы идут последовательно, каждый по результату предыдущего.
        """
        if passes < 0:
            raise ValueError(f"passes < 0: {passes}")

        ink = np.all(buffer.rgb == 0, axis=2)
        kernel = np.ones((3, 3), dtype=np.uint8)
        for _ in range(passes):
            seeds = ink.copy()
            seeds[0, :] = seeds[-1, :] = False
            seeds[:, 0] = seeds[:, -1] = False
            grown = cv2.dilate(seeds.astype(np.uint8), kernel, iterations=1)
            ink = ink | grown.astype(bool)

        out = buffer.copy_array()
        out[ink, :3] = 0
        return PixelBuffer(out)

    def invert(self, buffer: PixelBuffer) -> PixelBuffer:
        """Цветовая инверсия RGB, альфа без изменений."""
        out = buffer.copy_array()
        out[..., :3] = 255 - out[..., :3]
        return PixelBuffer(out)

    def normalize_polarity(self, buffer: PixelBuffer) -> PixelBuffer:
        """Белые линии на чёрном -> чёрные линии на белом (канон)."""
        return self.threshold(buffer, self.cfg.NORMALIZE_CUTOFF, Polarity.INK_ON_BLACK)

    def count_ink_regions(self, buffer: PixelBuffer, cutoff: int = 128) -> int:
        """Количество 8-связных областей чернил (мера детализации)."""
        ink = (luminance_milli(buffer) <= cutoff * 1000).astype(np.uint8)
        nb_components, _ = cv2.connectedComponents(ink, connectivity=8)
        # Метка 0 - фон
        return nb_components - 1
