"""
storage.py
Приёмник готовых вариантов. Запись "один раз на (страница, уровень)",
при повторе побеждает последняя запись.
"""
import logging
import os
import tempfile
from pathlib import Path
from typing import Protocol

from config import DifficultyTier, EngineConfig

log = logging.getLogger("coloring.storage")


class VariantSink(Protocol):
    def produce_variant(self, tier: DifficultyTier, png: bytes) -> None:
        ...


class DirectorySink:
    """Складывает PNG в папку как <page>-<tier>.png."""

    def __init__(self, out_dir: Path, page: str, config: EngineConfig):
        self.out_dir = Path(out_dir)
        self.page = page
        self.cfg = config
        self.out_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, tier: DifficultyTier) -> Path:
        return self.out_dir / self.cfg.OUTPUT_TEMPLATE.format(page=self.page, tier=tier.value)

    def produce_variant(self, tier: DifficultyTier, png: bytes) -> None:
        target = self.path_for(tier)
        # Атомарная замена: читатель никогда не увидит недописанный файл
        fd, tmp = tempfile.mkstemp(dir=self.out_dir, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(png)
            os.replace(tmp, target)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
        log.info("Сохранён %s (%d байт)", target.name, len(png))
