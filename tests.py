"""
tests.py
Модуль автоматического тестирования (Unit Tests).
Синтетические мастер-изображения рисуются через cv2, без сети и браузера.
"""
import argparse
import io
import tempfile
import threading
import unittest
from pathlib import Path
from unittest import mock

import cv2
import numpy as np
import requests
from PIL import Image

from cli import ConsoleApp, parse_tiers
from composer import (MasterImage, RegenerationTracker, Stage, TIER_ORDER, VariantComposer,
                      VariantImage)
from config import (DifficultyTier, EngineConfig, Polarity, ResampleMode, TIER_CONFIGS,
                    VariantConfig)
from errors import (DecodeError, EncodeError, FetchError, GenerationCancelled, InvalidConfig,
                    VariantGenerationError)
from fetcher import MasterFetcher
from image_processor import ImageProcessor, scaled_size
from pixel_buffer import PixelBuffer, decode, encode_png, prepare_upload
from storage import DirectorySink


def white_rgba(w, h):
    return np.full((h, w, 4), 255, dtype=np.uint8)


def to_png(arr: np.ndarray, fmt: str = "PNG") -> bytes:
    bio = io.BytesIO()
    Image.fromarray(arr).save(bio, fmt)
    return bio.getvalue()


def ink_mask(buffer: PixelBuffer) -> np.ndarray:
    return np.all(buffer.rgb == 0, axis=2)


class StaticFetcher:
    """Подставной fetcher: отдаёт заранее заданные байты или ошибку."""

    def __init__(self, raw=b"", error=None):
        self.raw = raw
        self.error = error

    def fetch(self, src):
        if self.error is not None:
            raise self.error
        return self.raw


class RecordingSink:
    def __init__(self):
        self.calls = []
        self._lock = threading.Lock()

    def produce_variant(self, tier, png):
        with self._lock:
            self.calls.append((tier, png))


class TestConfig(unittest.TestCase):

    def test_table_covers_every_tier(self):
        """Каждому уровню соответствует ровно одна конфигурация."""
        self.assertEqual(set(TIER_CONFIGS), set(DifficultyTier))

    def test_easier_tiers_are_coarser(self):
        qe = TIER_CONFIGS[DifficultyTier.QUICK_EASY]
        beg = TIER_CONFIGS[DifficultyTier.BEGINNER]
        inter = TIER_CONFIGS[DifficultyTier.INTERMEDIATE]
        self.assertLess(qe.scale, beg.scale)
        self.assertLess(beg.scale, inter.scale)
        self.assertGreater(qe.threshold, beg.threshold)
        self.assertGreater(qe.dilate_passes, beg.dilate_passes)
        self.assertGreater(qe.blur_radius, beg.blur_radius)
        self.assertIsNone(inter.threshold)
        self.assertFalse(inter.reupscale)

    def test_invalid_config_fails_loudly(self):
        with self.assertRaises(InvalidConfig):
            VariantConfig(scale=0, blur_radius=0, threshold=200, dilate_passes=0, reupscale=True)
        with self.assertRaises(InvalidConfig):
            VariantConfig(scale=1.5, blur_radius=0, threshold=200, dilate_passes=0, reupscale=True)
        with self.assertRaises(InvalidConfig):
            VariantConfig(scale=0.5, blur_radius=0, threshold=256, dilate_passes=0, reupscale=True)
        with self.assertRaises(InvalidConfig):
            VariantConfig(scale=0.5, blur_radius=0, threshold=-1, dilate_passes=0, reupscale=True)
        with self.assertRaises(InvalidConfig):
            EngineConfig(NORMALIZE_CUTOFF=300)

    def test_tier_aliases(self):
        self.assertIs(DifficultyTier.parse("advanced"), DifficultyTier.INTERMEDIATE)
        self.assertIs(DifficultyTier.parse("Quick_Easy"), DifficultyTier.QUICK_EASY)
        self.assertIs(DifficultyTier.parse("quick"), DifficultyTier.QUICK_EASY)
        self.assertIs(DifficultyTier.parse("easy"), DifficultyTier.QUICK_EASY)
        self.assertIs(DifficultyTier.parse(" beginner "), DifficultyTier.BEGINNER)
        with self.assertRaises(ValueError):
            DifficultyTier.parse("expert")


class TestPixelBuffer(unittest.TestCase):

    def setUp(self):
        self.arr = white_rgba(40, 30)
        cv2.line(self.arr, (5, 5), (35, 25), (0, 0, 0, 255), 2)

    def test_decode_png(self):
        buf = decode(to_png(self.arr))
        self.assertEqual((buf.width, buf.height), (40, 30))
        self.assertTrue(np.array_equal(buf.data, self.arr))

    def test_encode_png_is_lossless_and_opaque(self):
        arr = self.arr.copy()
        arr[0, 0, 3] = 10
        raw = encode_png(PixelBuffer.from_array(arr))
        self.assertTrue(raw.startswith(b"\x89PNG"))
        back = decode(raw)
        self.assertTrue(np.all(back.data[..., 3] == 255), "Альфа должна быть непрозрачной")
        self.assertTrue(np.array_equal(back.rgb, self.arr[..., :3]))

    def test_decode_other_formats(self):
        rgb = np.ascontiguousarray(self.arr[..., :3])
        for fmt in ("JPEG", "GIF", "WEBP"):
            buf = decode(to_png(rgb, fmt))
            self.assertEqual((buf.width, buf.height), (40, 30), fmt)

    def test_transparency_flattened_on_white(self):
        arr = np.zeros((8, 8, 4), dtype=np.uint8)  # чёрный, полностью прозрачный
        buf = decode(to_png(arr))
        self.assertTrue(np.all(buf.data == 255))

    def test_decode_rejects_garbage(self):
        with self.assertRaises(DecodeError):
            decode(b"definitely not an image")
        with self.assertRaises(DecodeError):
            decode(to_png(self.arr)[:40])

    def test_decode_rejects_unsupported_format(self):
        with self.assertRaises(DecodeError):
            decode(to_png(np.ascontiguousarray(self.arr[..., :3]), "BMP"))

    def test_buffer_is_read_only(self):
        buf = PixelBuffer.from_array(self.arr)
        with self.assertRaises(ValueError):
            buf.data[0, 0, 0] = 1
        # Изменение исходного массива не видно в буфере
        self.arr[0, 0, 0] = 1
        self.assertEqual(buf.data[0, 0, 0], 255)

    def test_buffer_is_not_hashable(self):
        buf = PixelBuffer.from_array(self.arr)
        with self.assertRaises(TypeError):
            hash(buf)
        master = MasterImage(buf, Polarity.INK_ON_WHITE)
        with self.assertRaises(TypeError):
            hash(master)
        self.assertEqual(master, MasterImage(PixelBuffer.from_array(self.arr), Polarity.INK_ON_WHITE))

    def test_decompression_bomb_is_decode_error(self):
        raw = to_png(white_rgba(20, 20))
        with mock.patch.object(Image, "MAX_IMAGE_PIXELS", 100):
            with self.assertRaises(DecodeError):
                decode(raw)

    def test_prepare_upload_limits_longer_side(self):
        big = white_rgba(300, 150)
        out = decode(prepare_upload(to_png(big), max_side=100))
        self.assertEqual((out.width, out.height), (100, 50))
        small = decode(prepare_upload(to_png(self.arr), max_side=100))
        self.assertEqual((small.width, small.height), (40, 30))


class TestImageProcessor(unittest.TestCase):

    def setUp(self):
        self.proc = ImageProcessor(EngineConfig())
        arr = white_rgba(100, 100)
        cv2.line(arr, (10, 10), (90, 90), (0, 0, 0, 255), 2)
        self.line = PixelBuffer.from_array(arr)
        rng = np.random.default_rng(42)
        self.noise = PixelBuffer(rng.integers(0, 256, size=(50, 60, 4), dtype=np.uint8))

    def test_resample_rounds_down(self):
        out = self.proc.resample(self.line, 45.9, 33.2, ResampleMode.SMOOTH)
        self.assertEqual((out.width, out.height), (45, 33))
        self.assertEqual(scaled_size(self.line, 0.45), (45, 45))
        self.assertEqual(scaled_size(PixelBuffer.from_array(white_rgba(1, 1)), 0.45), (1, 1))

    def test_resample_rejects_empty_target(self):
        with self.assertRaises(ValueError):
            self.proc.resample(self.line, 0.5, 10, ResampleMode.SMOOTH)

    def test_resample_does_not_mutate_input(self):
        before = self.line.copy_array()
        out = self.proc.resample(self.line, 50, 50, ResampleMode.SMOOTH)
        self.assertIsNot(out, self.line)
        self.assertTrue(np.array_equal(self.line.data, before))

    def test_blocky_upscale_keeps_binary_values(self):
        small = self.proc.threshold(self.proc.resample(self.line, 30, 30, ResampleMode.SMOOTH), 200)
        up = self.proc.resample(small, 100, 100, ResampleMode.BLOCKY)
        self.assertEqual((up.width, up.height), (100, 100))
        self.assertTrue(np.all(np.isin(up.rgb, [0, 255])), "Nearest не должен давать серого")

    def test_blur_zero_is_identity(self):
        out = self.proc.blur(self.line, 0)
        self.assertIsNot(out, self.line)
        self.assertEqual(out, self.line)

    def test_blur_keeps_grayscale(self):
        out = self.proc.blur(self.line, 2.0)
        self.assertTrue(np.array_equal(out.rgb[..., 0], out.rgb[..., 1]))
        self.assertTrue(np.array_equal(out.rgb[..., 1], out.rgb[..., 2]))
        # Серые полутона появились
        self.assertTrue(np.any((out.rgb > 0) & (out.rgb < 255)))

    def test_threshold_output_is_pure(self):
        for polarity in Polarity:
            out = self.proc.threshold(self.noise, 128, polarity)
            self.assertTrue(np.all(np.isin(out.rgb, [0, 255])))
            self.assertTrue(np.all(out.data[..., 3] == 255))
            self.assertTrue(np.array_equal(out.rgb[..., 0], out.rgb[..., 2]))

    def test_threshold_tie_goes_to_ink(self):
        arr = np.array([[[205, 205, 205, 255], [206, 206, 206, 255]]], dtype=np.uint8)
        buf = PixelBuffer(arr)
        on_white = self.proc.threshold(buf, 205, Polarity.INK_ON_WHITE)
        self.assertEqual(on_white.rgb[0, 0].tolist(), [0, 0, 0])
        self.assertEqual(on_white.rgb[0, 1].tolist(), [255, 255, 255])
        on_black = self.proc.threshold(buf, 205, Polarity.INK_ON_BLACK)
        self.assertEqual(on_black.rgb[0, 0].tolist(), [255, 255, 255])
        self.assertEqual(on_black.rgb[0, 1].tolist(), [0, 0, 0])

    def test_threshold_uses_bt601_weights(self):
        green = PixelBuffer(np.array([[[0, 255, 0, 255]]], dtype=np.uint8))  # L = 149.685
        self.assertEqual(self.proc.threshold(green, 149).rgb[0, 0, 0], 255)
        self.assertEqual(self.proc.threshold(green, 150).rgb[0, 0, 0], 0)

    def test_dilate_single_pixel(self):
        arr = white_rgba(7, 7)
        arr[3, 3, :3] = 0
        buf = PixelBuffer(arr)
        self.assertEqual(self.proc.dilate(buf, 0), buf)
        self.assertEqual(int(ink_mask(self.proc.dilate(buf, 1)).sum()), 9)
        self.assertEqual(int(ink_mask(self.proc.dilate(buf, 2)).sum()), 25)
        # Проходы складываются последовательно
        self.assertEqual(self.proc.dilate(self.proc.dilate(buf, 1), 1), self.proc.dilate(buf, 2))

    def test_dilate_border_pixels_do_not_grow(self):
        arr = white_rgba(7, 7)
        arr[0, 3, :3] = 0
        arr[6, 6, :3] = 0
        out = self.proc.dilate(PixelBuffer(arr), 1)
        self.assertEqual(int(ink_mask(out).sum()), 2)

    def test_dilate_is_monotonic(self):
        bw = self.proc.threshold(self.noise, 40)
        prev = ink_mask(bw)
        for n in range(1, 4):
            cur = ink_mask(self.proc.dilate(bw, n))
            self.assertTrue(np.all(cur[prev]), f"Чернила исчезли на проходе {n}")
            prev = cur

    def test_dilate_does_not_mutate_input(self):
        bw = self.proc.threshold(self.line, 128)
        before = bw.copy_array()
        self.proc.dilate(bw, 2)
        self.assertTrue(np.array_equal(bw.data, before))

    def test_polarity_round_trip(self):
        canonical = self.proc.threshold(self.line, 128)
        inverted = self.proc.invert(canonical)
        self.assertTrue(np.array_equal(inverted.rgb, 255 - canonical.rgb))
        self.assertEqual(self.proc.normalize_polarity(inverted), canonical)

    def test_count_ink_regions(self):
        arr = white_rgba(60, 60)
        cv2.line(arr, (5, 5), (50, 5), (0, 0, 0, 255), 1)
        cv2.line(arr, (5, 30), (50, 30), (0, 0, 0, 255), 1)
        # Касание по диагонали: 8-связность считает одной областью
        arr[40, 40, :3] = 0
        arr[41, 41, :3] = 0
        self.assertEqual(self.proc.count_ink_regions(PixelBuffer(arr)), 3)
        self.assertEqual(self.proc.count_ink_regions(PixelBuffer(white_rgba(5, 5))), 0)


class TestVariantComposer(unittest.TestCase):

    def setUp(self):
        self.config = EngineConfig()
        self.composer = VariantComposer(self.config, fetcher=StaticFetcher())

        # Рисунок: толстая рамка + сетка мелких точек (мелкая деталь)
        arr = white_rgba(400, 400)
        cv2.rectangle(arr, (50, 50), (350, 350), (0, 0, 0, 255), 6)
        for y in range(100, 320, 20):
            for x in range(100, 320, 20):
                arr[y, x, :3] = 0
        self.detailed = MasterImage(PixelBuffer.from_array(arr), Polarity.INK_ON_WHITE)

    def _decoded(self, variant: VariantImage) -> PixelBuffer:
        return decode(variant.png)

    def test_beginner_diagonal_scenario(self):
        arr = white_rgba(1000, 1000)
        cv2.line(arr, (100, 100), (900, 900), (0, 0, 0, 255), 2)
        master = MasterImage(PixelBuffer.from_array(arr), Polarity.INK_ON_WHITE)

        variant = self.composer.generate(master, DifficultyTier.BEGINNER)
        out = self._decoded(variant)

        self.assertEqual((variant.width, variant.height), (1000, 1000))
        self.assertEqual((out.width, out.height), (1000, 1000))
        self.assertTrue(np.all(np.isin(out.rgb, [0, 255])), "Не должно быть серых пикселей")
        ink = ink_mask(out)
        original_run = int(ink_mask(master.buffer)[500].sum())
        run = int(ink[500].sum())
        # Горизонтальный срез диагонали шире перпендикулярной толщины в sqrt(2) раз
        self.assertGreaterEqual(run, 5, "Линия должна утолщиться до >= 3 px")
        self.assertGreater(run, original_run)
        self.assertTrue(ink[500, 500])
        self.assertFalse(ink[100, 900], "Чернила не должны появляться вдали от линии")

    def test_blank_master_stays_blank(self):
        master = MasterImage(PixelBuffer.blank(120, 90), Polarity.INK_ON_WHITE)
        results = self.composer.generate_all(master)
        self.assertEqual(list(results), list(TIER_ORDER))
        for tier, variant in results.items():
            self.assertIsInstance(variant, VariantImage, tier)
            self.assertTrue(np.all(self._decoded(variant).data == 255), tier)

    def test_dimensions_preserved(self):
        arr = white_rgba(333, 217)
        cv2.circle(arr, (160, 100), 60, (0, 0, 0, 255), 4)
        master = MasterImage(PixelBuffer.from_array(arr), Polarity.INK_ON_WHITE)
        for tier in DifficultyTier:
            variant = self.composer.generate(master, tier)
            out = self._decoded(variant)
            self.assertEqual((variant.width, variant.height), (333, 217), tier)
            self.assertEqual((out.width, out.height), (333, 217), tier)

    def test_intermediate_is_master_as_is(self):
        variant = self.composer.generate(self.detailed, DifficultyTier.INTERMEDIATE)
        self.assertEqual(self._decoded(variant), self.detailed.buffer)

    def test_generation_is_idempotent(self):
        for tier in DifficultyTier:
            a = self.composer.generate(self.detailed, tier)
            b = self.composer.generate(self.detailed, tier)
            self.assertEqual(a.png, b.png, tier)

    def test_master_is_not_mutated(self):
        before = self.detailed.buffer.copy_array()
        self.composer.generate_all(self.detailed)
        self.assertTrue(np.array_equal(self.detailed.buffer.data, before))

    def test_thresholded_tiers_are_pure(self):
        for tier in (DifficultyTier.BEGINNER, DifficultyTier.QUICK_EASY):
            out = self._decoded(self.composer.generate(self.detailed, tier))
            self.assertTrue(np.all(np.isin(out.rgb, [0, 255])), tier)
            self.assertTrue(np.all(out.data[..., 3] == 255), tier)

    def test_easier_tiers_have_less_detail(self):
        proc = self.composer.proc
        regions = {
            tier: proc.count_ink_regions(self._decoded(self.composer.generate(self.detailed, tier)))
            for tier in DifficultyTier
        }
        self.assertLessEqual(regions[DifficultyTier.QUICK_EASY], regions[DifficultyTier.BEGINNER])
        self.assertLessEqual(regions[DifficultyTier.BEGINNER], regions[DifficultyTier.INTERMEDIATE])
        self.assertGreater(regions[DifficultyTier.QUICK_EASY], 0, "Рамка должна сохраниться")

    def test_concurrent_results_match_sequential(self):
        sequential = {t: self.composer.generate(self.detailed, t).png for t in DifficultyTier}
        results = self.composer.generate_all(self.detailed, reversed(TIER_ORDER))
        for tier, variant in results.items():
            self.assertEqual(variant.png, sequential[tier], tier)

    def test_inverted_master_is_normalized(self):
        canonical = self.composer.proc.threshold(self.detailed.buffer, 128)
        inverted = MasterImage(self.composer.proc.invert(canonical), Polarity.INK_ON_BLACK)
        variant = self.composer.generate(inverted, DifficultyTier.INTERMEDIATE)
        self.assertEqual(self._decoded(variant), canonical)
        # Через generate_all нормализация выполняется один раз до уровней
        results = self.composer.generate_all(inverted)
        expected = self.composer.generate(MasterImage(canonical, Polarity.INK_ON_WHITE),
                                          DifficultyTier.BEGINNER)
        self.assertEqual(results[DifficultyTier.BEGINNER].png, expected.png)

    def test_decode_failure_writes_nothing(self):
        composer = VariantComposer(self.config, fetcher=StaticFetcher(raw=b"<html>nope</html>"))
        sink = RecordingSink()
        results = composer.run_page("http://example.test/page.png", Polarity.INK_ON_WHITE, sink=sink)
        self.assertEqual(sink.calls, [])
        for tier, err in results.items():
            self.assertIsInstance(err, VariantGenerationError)
            self.assertIs(err.tier, tier)
            self.assertIs(err.stage, Stage.DECODING)
            self.assertIsInstance(err.cause, DecodeError)

        with self.assertRaises(VariantGenerationError) as ctx:
            composer.generate_from_source("x.png", DifficultyTier.BEGINNER, Polarity.INK_ON_WHITE)
        self.assertIsInstance(ctx.exception.cause, DecodeError)

    def test_fetch_failure_is_tagged(self):
        composer = VariantComposer(self.config, fetcher=StaticFetcher(error=FetchError("timeout")))
        results = composer.run_page("http://example.test/p.png", Polarity.INK_ON_WHITE,
                                    tiers=[DifficultyTier.BEGINNER])
        err = results[DifficultyTier.BEGINNER]
        self.assertIs(err.stage, Stage.FETCHING)
        self.assertIsInstance(err.cause, FetchError)

    def test_run_page_from_bytes(self):
        raw = to_png(self.detailed.buffer.copy_array())
        composer = VariantComposer(self.config, fetcher=StaticFetcher(raw=raw))
        sink = RecordingSink()
        results = composer.run_page("page.png", Polarity.INK_ON_WHITE, sink=sink)
        self.assertTrue(all(isinstance(v, VariantImage) for v in results.values()))
        self.assertEqual(sorted(t.value for t, _ in sink.calls),
                         sorted(t.value for t in DifficultyTier))

    def test_failed_tier_does_not_affect_siblings(self):
        original = self.composer.proc.dilate

        def flaky_dilate(buffer, passes):
            if passes == 2:
                raise RuntimeError("boom")
            return original(buffer, passes)

        sink = RecordingSink()
        with mock.patch.object(self.composer.proc, "dilate", side_effect=flaky_dilate):
            results = self.composer.generate_all(self.detailed, sink=sink)

        err = results[DifficultyTier.QUICK_EASY]
        self.assertIsInstance(err, VariantGenerationError)
        self.assertIs(err.stage, Stage.DILATING)
        self.assertIsInstance(results[DifficultyTier.BEGINNER], VariantImage)
        self.assertIsInstance(results[DifficultyTier.INTERMEDIATE], VariantImage)
        self.assertEqual({t for t, _ in sink.calls},
                         {DifficultyTier.BEGINNER, DifficultyTier.INTERMEDIATE})

    def test_encode_failure_is_tagged(self):
        with mock.patch("composer.encode_png", side_effect=EncodeError("disk full")):
            with self.assertRaises(VariantGenerationError) as ctx:
                self.composer.generate(self.detailed, DifficultyTier.BEGINNER)
        self.assertIs(ctx.exception.stage, Stage.ENCODING)
        self.assertIs(ctx.exception.tier, DifficultyTier.BEGINNER)

    def test_sink_failure_is_tagged(self):
        sink = mock.Mock()
        sink.produce_variant.side_effect = OSError("read-only")
        results = self.composer.generate_all(self.detailed, [DifficultyTier.BEGINNER], sink=sink)
        self.assertIs(results[DifficultyTier.BEGINNER].stage, Stage.PERSISTING)

    def test_cancelled_request_is_discarded(self):
        cancel = threading.Event()
        cancel.set()
        sink = RecordingSink()
        results = self.composer.generate_all(self.detailed, sink=sink, cancel=cancel)
        self.assertEqual(sink.calls, [])
        for err in results.values():
            self.assertIsInstance(err, VariantGenerationError)
            self.assertIsInstance(err.cause, GenerationCancelled)

    def test_cancel_between_stages_stops_at_next_stage(self):
        """Отмена во время размытия обрывает уровень на границе перед порогом."""
        cancel = threading.Event()
        original = self.composer.proc.blur

        def blur_then_cancel(buf, radius):
            out = original(buf, radius=radius)
            cancel.set()
            return out

        sink = RecordingSink()
        with mock.patch.object(self.composer.proc, "blur", side_effect=blur_then_cancel):
            results = self.composer.generate_all(self.detailed, [DifficultyTier.BEGINNER],
                                                 sink=sink, cancel=cancel)
        err = results[DifficultyTier.BEGINNER]
        self.assertIsInstance(err, VariantGenerationError)
        self.assertIs(err.stage, Stage.THRESHOLDING)
        self.assertIsInstance(err.cause, GenerationCancelled)
        self.assertEqual(sink.calls, [])

    def test_newer_request_cancels_older(self):
        tracker = RegenerationTracker()
        first = tracker.begin("page-1")
        other = tracker.begin("page-2")
        second = tracker.begin("page-1")
        self.assertTrue(first.is_set())
        self.assertFalse(second.is_set())
        self.assertFalse(other.is_set())
        tracker.finish("page-1", first)  # устаревший запрос не снимает актуальный
        third = tracker.begin("page-1")
        self.assertTrue(second.is_set())
        tracker.finish("page-1", third)
        self.assertFalse(third.is_set())

    def test_empty_tier_list(self):
        self.assertEqual(self.composer.generate_all(self.detailed, []), {})


class TestStorageAndFetcher(unittest.TestCase):

    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.tmp = Path(tmp.name)
        self.config = EngineConfig()

    def test_directory_sink_last_write_wins(self):
        sink = DirectorySink(self.tmp / "out", "page-7", self.config)
        sink.produce_variant(DifficultyTier.BEGINNER, b"first")
        sink.produce_variant(DifficultyTier.BEGINNER, b"second")
        target = self.tmp / "out" / "page-7-beginner.png"
        self.assertEqual(target.read_bytes(), b"second")
        self.assertEqual(list((self.tmp / "out").glob("*.tmp")), [])

    def test_fetch_local_file(self):
        path = self.tmp / "master.png"
        path.write_bytes(to_png(white_rgba(4, 4)))
        fetcher = MasterFetcher(self.config)
        self.assertEqual(fetcher.fetch(str(path)), path.read_bytes())
        self.assertEqual(fetcher.fetch(path.as_uri()), path.read_bytes())

    def test_fetch_errors(self):
        fetcher = MasterFetcher(self.config)
        with self.assertRaises(FetchError):
            fetcher.fetch(str(self.tmp / "missing.png"))
        text = self.tmp / "notes.txt"
        text.write_text("hello")
        with self.assertRaises(FetchError):
            fetcher.fetch(str(text))
        with self.assertRaises(FetchError):
            fetcher.fetch("ftp://example.test/master.png")

    def test_fetch_http(self):
        session = mock.Mock()
        session.headers = {}
        response = mock.Mock(content=b"png-bytes", headers={"Content-Type": "image/png; charset=binary"})
        session.get.return_value = response
        fetcher = MasterFetcher(self.config, session=session)

        self.assertEqual(fetcher.fetch("https://cdn.example.test/m.png"), b"png-bytes")
        session.get.assert_called_once_with("https://cdn.example.test/m.png",
                                            timeout=self.config.FETCH_TIMEOUT)
        self.assertEqual(session.headers["User-Agent"], self.config.USER_AGENT)

        response.headers = {"Content-Type": "text/html"}
        with self.assertRaises(FetchError):
            fetcher.fetch("https://cdn.example.test/m.png")

        session.get.side_effect = requests.ConnectionError("down")
        with self.assertRaises(FetchError):
            fetcher.fetch("https://cdn.example.test/m.png")


class TestConsoleApp(unittest.TestCase):

    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.tmp = Path(tmp.name)
        arr = white_rgba(120, 80)
        cv2.rectangle(arr, (20, 20), (100, 60), (0, 0, 0, 255), 3)
        (self.tmp / "in").mkdir()
        (self.tmp / "in" / "cat.png").write_bytes(to_png(arr))
        (self.tmp / "in" / "broken.jpg").write_bytes(b"garbage")

    def test_parse_tiers(self):
        self.assertEqual(parse_tiers("quick,advanced"),
                         [DifficultyTier.QUICK_EASY, DifficultyTier.INTERMEDIATE])
        with self.assertRaises(Exception):
            parse_tiers("expert")
        for empty in ("", " , "):
            with self.assertRaises(argparse.ArgumentTypeError):
                parse_tiers(empty)

    def test_page_names_are_unique(self):
        app = ConsoleApp()
        self.assertEqual(app.page_names(["a/cat.png", "b/cat.png", "dog.jpg"]),
                         ["a-cat", "b-cat", "dog"])
        self.assertEqual(app.page_names(["a/cat.png", "a/cat.png"]), ["a-cat-1", "a-cat-2"])
        self.assertEqual(app.page_names(["https://cdn.example.test/x/cat.png?v=2"]), ["cat"])

    def test_run_same_stem_in_different_folders(self):
        for folder in ("a", "b"):
            (self.tmp / folder).mkdir()
            (self.tmp / folder / "cat.png").write_bytes((self.tmp / "in" / "cat.png").read_bytes())
        out = self.tmp / "out"
        code = ConsoleApp().run([str(self.tmp / "a" / "cat.png"), str(self.tmp / "b" / "cat.png"),
                                 "--out", str(out), "--tiers", "beginner"])
        self.assertEqual(code, 0)
        self.assertEqual(sorted(p.name for p in out.iterdir()),
                         ["a-cat-beginner.png", "b-cat-beginner.png"])

    def test_run_writes_variants(self):
        out = self.tmp / "out"
        code = ConsoleApp().run([str(self.tmp / "in" / "cat.png"), "--out", str(out),
                                 "--tiers", "beginner,advanced", "--max-side", "100"])
        self.assertEqual(code, 0)
        self.assertEqual(sorted(p.name for p in out.iterdir()),
                         ["cat-beginner.png", "cat-intermediate.png"])
        out_img = decode((out / "cat-beginner.png").read_bytes())
        self.assertEqual((out_img.width, out_img.height), (100, 67))

    def test_run_reports_failures(self):
        out = self.tmp / "out"
        code = ConsoleApp().run([str(self.tmp / "in"), "--out", str(out)])
        self.assertEqual(code, 1)
        names = sorted(p.name for p in out.iterdir())
        self.assertEqual(names, ["cat-beginner.png", "cat-intermediate.png", "cat-quick-easy.png"])


if __name__ == '__main__':
    unittest.main()
