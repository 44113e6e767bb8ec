"""
cli.py
Обработка аргументов командной строки и UI.
"""
import argparse
import logging
import time
from collections import Counter
from pathlib import Path
from typing import List

from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from composer import TIER_ORDER, VariantComposer, VariantImage
from config import DifficultyTier, EngineConfig, Polarity
from pixel_buffer import decode
from storage import DirectorySink

console = Console()

EXTENSIONS = ("*.png", "*.jpg", "*.jpeg", "*.webp", "*.gif")


def setup_logging(verbosity: int = 0) -> None:
    level = [logging.WARNING, logging.INFO, logging.DEBUG][min(verbosity, 2)]
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="%H:%M:%S",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def parse_tiers(value: str) -> List[DifficultyTier]:
    try:
        tiers = [DifficultyTier.parse(v) for v in value.split(",") if v.strip()]
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc
    if not tiers:
        raise argparse.ArgumentTypeError("Не указан ни один уровень сложности")
    return tiers


class ConsoleApp:
    def __init__(self):
        self.config = EngineConfig()
        self.composer = VariantComposer(self.config)

    def parse_args(self, argv=None):
        parser = argparse.ArgumentParser(description="Coloring page difficulty variants")
        parser.add_argument("sources", nargs="+",
                            help="Папки, файлы или URL мастер-изображений")
        parser.add_argument("--out", type=str, default="output", help="Папка для сохранения")
        parser.add_argument("--tiers", type=parse_tiers, default=list(TIER_ORDER),
                            help="Уровни через запятую (quick-easy,beginner,intermediate,advanced)")
        parser.add_argument("--polarity", choices=[p.value for p in Polarity],
                            default=Polarity.INK_ON_WHITE.value,
                            help="Полярность мастера: ink-on-black для белых линий на чёрном")
        parser.add_argument("--max-side", type=int, default=None,
                            help=f"Уменьшить большие фото (обычно {self.config.UPLOAD_MAX_SIDE})")
        parser.add_argument("-v", "--verbose", action="count", default=0)
        return parser.parse_args(argv)

    def collect_sources(self, raw_sources: List[str]) -> List[str]:
        sources = []
        for src in raw_sources:
            path = Path(src)
            if path.is_dir():
                files = set()
                for ext in EXTENSIONS:
                    files.update(path.glob(ext.lower()))
                    files.update(path.glob(ext.upper()))
                sources.extend(str(f) for f in sorted(files))
            else:
                sources.append(src)
        return sources

    @staticmethod
    def page_name(src: str) -> str:
        name = Path(src.split("?", 1)[0].rstrip("/")).stem
        return name or "page"

    def page_names(self, sources: List[str]) -> List[str]:
        """
        Уникальные имена страниц. Одинаковые stem из разных папок получают
        префикс папки, оставшиеся совпадения - порядковый номер.
        """
        stems = [self.page_name(src) for src in sources]
        counts = Counter(stems)
        names = []
        for src, stem in zip(sources, stems):
            if counts[stem] > 1:
                parent = Path(src.split("?", 1)[0].rstrip("/")).parent.name
                if parent:
                    stem = f"{parent}-{stem}"
            names.append(stem)

        seen = Counter()
        totals = Counter(names)
        unique = []
        for name in names:
            seen[name] += 1
            unique.append(f"{name}-{seen[name]}" if totals[name] > 1 else name)
        return unique

    def run(self, argv=None) -> int:
        args = self.parse_args(argv)
        setup_logging(args.verbose)

        output_path = Path(args.out)
        polarity = Polarity(args.polarity)
        tiers = list(dict.fromkeys(args.tiers))
        sources = self.collect_sources(args.sources)

        if not sources:
            console.print("[bold red]Ошибка:[/bold red] Файлы не найдены.")
            return 1

        console.print(Panel.fit(
            f"Страниц: [bold cyan]{len(sources)}[/bold cyan]\n"
            f"Уровни: [bold green]{', '.join(t.value for t in tiers)}[/bold green]\n"
            f"Полярность: [bold]{polarity.value}[/bold]",
            title="Coloring Variants", border_style="blue"
        ))

        results = []
        failed = 0

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.percentage:>3.0f}%"),
            console=console,
        ) as progress:
            task = progress.add_task("[cyan]Обработка...", total=len(sources))

            for src, page in zip(sources, self.page_names(sources)):
                start_time = time.time()
                sink = DirectorySink(output_path, page, self.config)

                outcome = self.composer.run_page(src, polarity, tiers, sink=sink,
                                                 max_side=args.max_side)
                elapsed = time.time() - start_time

                for tier, result in outcome.items():
                    if isinstance(result, VariantImage):
                        regions = self.composer.proc.count_ink_regions(decode(result.png))
                        results.append((page, tier.value, f"{elapsed:.2f}s", str(regions), "OK"))
                    else:
                        failed += 1
                        console.print(f"\n[red]Сбой на {escape(page)} ({tier.value}): {escape(str(result))}[/red]")
                        results.append((page, tier.value, f"{elapsed:.2f}s", "-",
                                        f"ERROR: {result.stage.value}"))
                progress.advance(task)

        self.print_summary(results)
        return 1 if failed else 0

    def print_summary(self, data):
        table = Table(title="Результаты", box=box.ROUNDED)
        table.add_column("Страница", style="cyan")
        table.add_column("Уровень")
        table.add_column("Время", justify="right")
        table.add_column("Области", justify="right")
        table.add_column("Статус", justify="center")

        for row in data:
            status_style = "green" if row[4] == "OK" else "red"
            table.add_row(row[0], row[1], row[2], row[3], f"[{status_style}]{row[4]}[/{status_style}]")

        console.print(table)


def main():
    raise SystemExit(ConsoleApp().run())


if __name__ == "__main__":
    main()
