"""
composer.py
Сборка вариантов сложности из мастер-изображения.
Fetching -> Decoding -> Normalizing -> Resampling-down -> Blurring ->
Thresholding -> Dilating -> Resampling-up -> Encoding -> Done.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from config import (DifficultyTier, EngineConfig, Polarity, ResampleMode,
                    TIER_CONFIGS, VariantConfig)
from errors import EncodeError, GenerationCancelled, VariantGenerationError
from fetcher import MasterFetcher
from image_processor import ImageProcessor, scaled_size
from pixel_buffer import PixelBuffer, decode, encode_png, prepare_upload
from storage import VariantSink

log = logging.getLogger("coloring.composer")

# Порядок по умолчанию: от простого к сложному
TIER_ORDER = (DifficultyTier.QUICK_EASY, DifficultyTier.BEGINNER, DifficultyTier.INTERMEDIATE)


class Stage(str, Enum):
    FETCHING = "fetching"
    DECODING = "decoding"
    NORMALIZING = "normalizing"
    RESAMPLING_DOWN = "resampling-down"
    BLURRING = "blurring"
    THRESHOLDING = "thresholding"
    DILATING = "dilating"
    RESAMPLING_UP = "resampling-up"
    ENCODING = "encoding"
    DONE = "done"
    PERSISTING = "persisting"


@dataclass(frozen=True)
class MasterImage:
    buffer: PixelBuffer
    polarity: Polarity
    source: str = ""

    # ndarray не хешируется
    __hash__ = None

    @classmethod
    def from_bytes(cls, raw: bytes, polarity: Polarity, source: str = "") -> "MasterImage":
        return cls(decode(raw), polarity, source)

    @property
    def width(self) -> int:
        return self.buffer.width

    @property
    def height(self) -> int:
        return self.buffer.height


@dataclass(frozen=True)
class VariantImage:
    tier: DifficultyTier
    width: int
    height: int
    png: bytes


Step = Tuple[Stage, Callable[[PixelBuffer], PixelBuffer]]
TierResult = Union[VariantImage, VariantGenerationError]


class VariantComposer:
    def __init__(self, config: EngineConfig, fetcher: Optional[MasterFetcher] = None,
                 tier_configs: Mapping[DifficultyTier, VariantConfig] = TIER_CONFIGS):
        self.cfg = config
        self.proc = ImageProcessor(config)
        self.fetcher = fetcher or MasterFetcher(config)
        self.tier_configs = tier_configs

    # ---- Master ----
    def load_master(self, src: str, polarity: Polarity, tier: DifficultyTier,
                    max_side: Optional[int] = None) -> MasterImage:
        """
        Fetching + Decoding; ошибки помечаются уровнем и стадией.
        max_side - предварительно уменьшить большое фото (см. prepare_upload).
        """
        try:
            raw = self.fetcher.fetch(src)
        except Exception as exc:
            log.error("%s: не удалось получить мастер %s: %s", tier.value, src, exc)
            raise VariantGenerationError(tier, Stage.FETCHING, exc) from exc
        try:
            if max_side:
                raw = prepare_upload(raw, max_side)
            return MasterImage.from_bytes(raw, polarity, source=src)
        except Exception as exc:
            log.error("%s: не удалось декодировать %s: %s", tier.value, src, exc)
            raise VariantGenerationError(tier, Stage.DECODING, exc) from exc

    def normalize_master(self, master: MasterImage) -> MasterImage:
        """Приводит мастер к канону "чернила на белом". Канонический мастер возвращается как есть."""
        if master.polarity is Polarity.INK_ON_WHITE:
            return master
        log.debug("Нормализация полярности %s", master.source or "<buffer>")
        return MasterImage(self.proc.normalize_polarity(master.buffer),
                           Polarity.INK_ON_WHITE, master.source)

    # ---- Single tier ----
    def _plan(self, master: MasterImage, vc: VariantConfig) -> List[Step]:
        steps: List[Step] = []
        if master.polarity is Polarity.INK_ON_BLACK:
            steps.append((Stage.NORMALIZING, self.proc.normalize_polarity))

        downscaled = vc.scale < 1
        if downscaled:
            w, h = scaled_size(master.buffer, vc.scale)
            steps.append((Stage.RESAMPLING_DOWN,
                          partial(self.proc.resample, width=w, height=h, mode=ResampleMode.SMOOTH)))
        if vc.blur_radius > 0:
            steps.append((Stage.BLURRING, partial(self.proc.blur, radius=vc.blur_radius)))
        if vc.threshold is not None:
            steps.append((Stage.THRESHOLDING,
                          partial(self.proc.threshold, cutoff=vc.threshold, polarity=vc.polarity)))
        if vc.dilate_passes > 0:
            steps.append((Stage.DILATING, partial(self.proc.dilate, passes=vc.dilate_passes)))
        if downscaled and vc.reupscale:
            steps.append((Stage.RESAMPLING_UP,
                          partial(self.proc.resample, width=master.width, height=master.height,
                                  mode=ResampleMode.BLOCKY)))
        return steps

    @staticmethod
    def _checkpoint(tier: DifficultyTier, stage: Stage, cancel: Optional[threading.Event]):
        if cancel is not None and cancel.is_set():
            exc = GenerationCancelled(f"запрос для {tier.value} вытеснен")
            raise VariantGenerationError(tier, stage, exc) from exc

    def generate(self, master: MasterImage, tier: DifficultyTier,
                 cancel: Optional[threading.Event] = None) -> VariantImage:
        """
        Строит один вариант. Мастер не меняется; каждая стадия создаёт новый буфер.
        Отмена проверяется на границах стадий, недоделанный буфер выбрасывается.
        """
        vc = self.tier_configs[tier]
        buf = master.buffer

        for stage, step in self._plan(master, vc):
            self._checkpoint(tier, stage, cancel)
            log.debug("%s: %s (%dx%d)", tier.value, stage.value, buf.width, buf.height)
            try:
                buf = step(buf)
            except Exception as exc:
                log.error("%s: сбой на стадии %s: %s", tier.value, stage.value, exc)
                raise VariantGenerationError(tier, stage, exc) from exc

        self._checkpoint(tier, Stage.ENCODING, cancel)
        try:
            png = encode_png(buf)
        except EncodeError as exc:
            log.exception("%s: не удалось закодировать %dx%d", tier.value, buf.width, buf.height)
            raise VariantGenerationError(tier, Stage.ENCODING, exc) from exc

        log.info("%s: готово %dx%d, %d байт", tier.value, buf.width, buf.height, len(png))
        return VariantImage(tier=tier, width=buf.width, height=buf.height, png=png)

    def generate_from_source(self, src: str, tier: DifficultyTier, polarity: Polarity,
                             cancel: Optional[threading.Event] = None) -> VariantImage:
        self._checkpoint(tier, Stage.FETCHING, cancel)
        master = self.load_master(src, polarity, tier)
        return self.generate(master, tier, cancel)

    # ---- All tiers ----
    def _generate_and_hand_off(self, master: MasterImage, tier: DifficultyTier,
                               sink: Optional[VariantSink],
                               cancel: Optional[threading.Event]) -> VariantImage:
        variant = self.generate(master, tier, cancel)
        if sink is None:
            return variant
        # Отменённый запрос ничего не пишет
        self._checkpoint(tier, Stage.PERSISTING, cancel)
        try:
            sink.produce_variant(tier, variant.png)
        except Exception as exc:
            log.error("%s: приёмник отклонил вариант: %s", tier.value, exc)
            raise VariantGenerationError(tier, Stage.PERSISTING, exc) from exc
        return variant

    def generate_all(self, master: MasterImage, tiers: Iterable[DifficultyTier] = TIER_ORDER,
                     sink: Optional[VariantSink] = None,
                     cancel: Optional[threading.Event] = None) -> Dict[DifficultyTier, TierResult]:
        """
        Параллельно строит уровни одного мастера.
        Результат по каждому уровню - VariantImage либо VariantGenerationError.
        """
        tiers = list(dict.fromkeys(tiers))
        if not tiers:
            return {}

        # Нормализация ровно один раз на мастер
        try:
            master = self.normalize_master(master)
        except Exception as exc:
            log.error("Сбой нормализации %s: %s", master.source or "<buffer>", exc)
            return {t: VariantGenerationError(t, Stage.NORMALIZING, exc) for t in tiers}

        results: Dict[DifficultyTier, TierResult] = {}
        workers = min(self.cfg.MAX_WORKERS, len(tiers))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {
                pool.submit(self._generate_and_hand_off, master, tier, sink, cancel): tier
                for tier in tiers
            }
            for fut in as_completed(futures):
                tier = futures[fut]
                try:
                    results[tier] = fut.result()
                except VariantGenerationError as err:
                    results[tier] = err

        return {t: results[t] for t in tiers}

    def run_page(self, src: str, polarity: Polarity, tiers: Iterable[DifficultyTier] = TIER_ORDER,
                 sink: Optional[VariantSink] = None,
                 cancel: Optional[threading.Event] = None,
                 max_side: Optional[int] = None) -> Dict[DifficultyTier, TierResult]:
        """Загружает мастер один раз и строит по нему все запрошенные уровни."""
        tiers = list(dict.fromkeys(tiers))
        if not tiers:
            return {}
        try:
            master = self.load_master(src, polarity, tiers[0], max_side=max_side)
        except VariantGenerationError as err:
            return {t: VariantGenerationError(t, err.stage, err.cause) for t in tiers}
        return self.generate_all(master, tiers, sink, cancel)


class RegenerationTracker:
    """
    Следит за актуальным запросом на каждую страницу.
    Новый запрос для страницы отменяет предыдущий на ближайшей границе стадий.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._active: Dict[str, threading.Event] = {}

    def begin(self, page: str) -> threading.Event:
        with self._lock:
            previous = self._active.get(page)
            if previous is not None:
                previous.set()
            event = threading.Event()
            self._active[page] = event
            return event

    def finish(self, page: str, event: threading.Event):
        with self._lock:
            if self._active.get(page) is event:
                del self._active[page]
