"""
fetcher.py
Получение байтов мастер-изображения: http(s), file:// или локальный путь.
Повторов здесь нет: FetchError временная, повторяет вызывающий код.
"""
import logging
import mimetypes
import os
from pathlib import Path
from typing import Optional, Tuple
from urllib.parse import unquote, urlparse

import requests

from config import EngineConfig
from errors import FetchError

log = logging.getLogger("coloring.fetcher")


class MasterFetcher:
    def __init__(self, config: EngineConfig, session: Optional[requests.Session] = None):
        self.cfg = config
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": self.cfg.USER_AGENT})

    def fetch(self, src: str) -> bytes:
        raw, content_type = self._fetch_raw(src)
        self._check_content_type(src, content_type)
        log.debug("Получено %d байт из %s", len(raw), src)
        return raw

    def _fetch_raw(self, src: str) -> Tuple[bytes, Optional[str]]:
        parsed = urlparse(src)
        scheme = (parsed.scheme or "").lower()
        if scheme in ("http", "https"):
            return self._fetch_http(src)
        if scheme == "file":
            local_path = unquote(parsed.path)
            if os.name == "nt" and local_path.startswith("/"):
                local_path = local_path[1:]
            return self._fetch_local(local_path)
        if scheme == "" or (os.name == "nt" and len(scheme) == 1):
            return self._fetch_local(src)
        raise FetchError(f"Неподдерживаемая схема URL: {scheme}")

    def _fetch_http(self, url: str) -> Tuple[bytes, Optional[str]]:
        log.info("Загрузка мастера: %s", url)
        try:
            r = self._session.get(url, timeout=self.cfg.FETCH_TIMEOUT)
            r.raise_for_status()
        except requests.RequestException as exc:
            raise FetchError(f"Не удалось загрузить {url}: {exc}") from exc
        return r.content, r.headers.get("Content-Type")

    def _fetch_local(self, path_str: str) -> Tuple[bytes, Optional[str]]:
        p = Path(path_str)
        if not p.is_file():
            raise FetchError(f"Файл не найден: {p}")
        try:
            raw = p.read_bytes()
        except OSError as exc:
            raise FetchError(f"Не удалось прочитать {p}: {exc}") from exc
        return raw, mimetypes.guess_type(p.name)[0]

    def _check_content_type(self, src: str, content_type: Optional[str]):
        # Тип неизвестен - решит декодер
        if not content_type:
            return
        mime = content_type.split(";", 1)[0].strip().lower()
        if mime not in self.cfg.ACCEPTED_CONTENT_TYPES:
            raise FetchError(f"Неподдерживаемый Content-Type {mime} для {src}")
