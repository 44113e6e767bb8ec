"""
config.py
Централизованное хранилище настроек движка.
Единственная каноническая таблица уровней сложности (Quick & Easy / Beginner / Intermediate).
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple

from errors import InvalidConfig


class Polarity(str, Enum):
    INK_ON_WHITE = "ink-on-white"   # чёрные линии на белом (канон)
    INK_ON_BLACK = "ink-on-black"   # белые линии на чёрном (инвертированный мастер)


class ResampleMode(str, Enum):
    SMOOTH = "smooth"   # качественная интерполяция при уменьшении
    BLOCKY = "blocky"   # nearest neighbour, сохраняет жёсткие "кубики"


class DifficultyTier(str, Enum):
    QUICK_EASY = "quick-easy"
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"

    @classmethod
    def parse(cls, name: str) -> "DifficultyTier":
        """Принимает любое из исторических написаний уровня."""
        key = name.strip().lower()
        tier = _TIER_ALIASES.get(key)
        if tier is None:
            raise ValueError(f"Неизвестный уровень сложности: {name}")
        return tier


_TIER_ALIASES = {
    "quick-easy": DifficultyTier.QUICK_EASY,
    "quick_easy": DifficultyTier.QUICK_EASY,
    "quick": DifficultyTier.QUICK_EASY,
    "easy": DifficultyTier.QUICK_EASY,
    "beginner": DifficultyTier.BEGINNER,
    "intermediate": DifficultyTier.INTERMEDIATE,
    # Advanced = Intermediate без дополнительной обработки
    "advanced": DifficultyTier.INTERMEDIATE,
}


@dataclass(frozen=True)
class VariantConfig:
    scale: float
    blur_radius: float
    threshold: Optional[int]
    dilate_passes: int
    reupscale: bool
    polarity: Polarity = Polarity.INK_ON_WHITE

    def __post_init__(self):
        if not 0 < self.scale <= 1:
            raise InvalidConfig(f"scale вне (0, 1]: {self.scale}")
        if self.threshold is not None and not 0 <= self.threshold <= 255:
            raise InvalidConfig(f"threshold вне [0, 255]: {self.threshold}")
        if self.dilate_passes < 0:
            raise InvalidConfig(f"dilate_passes < 0: {self.dilate_passes}")
        if self.blur_radius < 0:
            raise InvalidConfig(f"blur_radius < 0: {self.blur_radius}")


# --- КАНОНИЧЕСКАЯ ТАБЛИЦА ---
# Три ручки (scale, threshold, dilate) подобраны совместно:
# меньше scale -> меньше деталей переживает порог,
# выше порог -> больше полутонов уходит в фон,
# больше проходов дилатации -> компенсирует утончение после blur + downscale.
TIER_CONFIGS: Dict[DifficultyTier, VariantConfig] = {
    # Мастер как есть (после нормализации полярности)
    DifficultyTier.INTERMEDIATE: VariantConfig(
        scale=1.0, blur_radius=0.0, threshold=None, dilate_passes=0, reupscale=False,
    ),
    DifficultyTier.BEGINNER: VariantConfig(
        scale=0.75, blur_radius=1.0, threshold=205, dilate_passes=1, reupscale=True,
    ),
    # Для малышей: крупные формы, жирные линии
    DifficultyTier.QUICK_EASY: VariantConfig(
        scale=0.45, blur_radius=2.0, threshold=230, dilate_passes=2, reupscale=True,
    ),
}


@dataclass
class EngineConfig:
    # --- 1. NORMALIZATION ---
    # Порог для переворота мастера "белые линии на чёрном" в канон.
    NORMALIZE_CUTOFF: int = 208

    # --- 2. CONCURRENCY ---
    # Уровни одного мастера считаются параллельно (OpenCV отпускает GIL).
    MAX_WORKERS: int = 3

    # --- 3. FETCHING ---
    FETCH_TIMEOUT: float = 20.0
    USER_AGENT: str = "coloring-variants/1.0"
    ACCEPTED_CONTENT_TYPES: Tuple[str, ...] = field(
        default=("image/png", "image/jpeg", "image/webp", "image/gif")
    )

    # --- 4. UPLOAD NORMALIZATION ---
    # Большие фото уменьшаются до этой стороны перед обработкой.
    UPLOAD_MAX_SIDE: int = 2048

    # Имя файла варианта в хранилище
    OUTPUT_TEMPLATE: str = "{page}-{tier}.png"

    def __post_init__(self):
        if not 0 <= self.NORMALIZE_CUTOFF <= 255:
            raise InvalidConfig(f"NORMALIZE_CUTOFF вне [0, 255]: {self.NORMALIZE_CUTOFF}")
        if self.MAX_WORKERS < 1:
            raise InvalidConfig(f"MAX_WORKERS < 1: {self.MAX_WORKERS}")
