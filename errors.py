"""
errors.py
Иерархия ошибок движка вариантов сложности.
"""


class VariantEngineError(Exception):
    """Базовая ошибка конвейера."""


class FetchError(VariantEngineError):
    """Не удалось получить байты мастер-изображения (временная, можно повторить)."""


class DecodeError(VariantEngineError):
    """Байты не являются поддерживаемым растровым изображением. Повтор бесполезен."""


class EncodeError(VariantEngineError):
    """Итоговый буфер не удалось сериализовать в PNG."""


class GenerationCancelled(VariantEngineError):
    """Запрос вытеснен более новым запросом для той же страницы."""


class InvalidConfig(AssertionError):
    # Ошибка статической таблицы, а не пользовательского ввода: не клампим.
    pass


class VariantGenerationError(VariantEngineError):
    """Сбой одного уровня сложности: какой уровень, на какой стадии и почему."""

    def __init__(self, tier, stage, cause: BaseException):
        self.tier = tier
        self.stage = stage
        self.cause = cause
        super().__init__(f"{tier.value}: сбой на стадии {stage.value}: {cause}")
