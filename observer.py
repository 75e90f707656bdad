"""
Наблюдатели за ходом обмена.

Координатор сообщает только три события: progress(current, total),
error(cause) и complete(result). Как их показывать, решает наблюдатель.
"""
import logging
import sys
from typing import Optional

from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, TaskProgressColumn, TextColumn

from oracle import Membership, SizeOnly

logger = logging.getLogger("psi.progress")


class ExchangeObserver:
    """Наблюдатель, который ничего не делает"""

    def progress(self, current: int, total: int):
        pass

    def error(self, cause: BaseException):
        pass

    def complete(self, result):
        pass


class ProgressBarObserver(ExchangeObserver):
    """
    Полоса прогресса rich в stderr.

    stdout остаётся за результатом, поэтому консоль по умолчанию пишет в stderr.
    Полоса создаётся при первом событии и закрывается при завершении, ошибке
    или достижении total.
    """

    def __init__(self, label: str, console: Optional[Console] = None):
        self.label = label
        self.console = console if console is not None else Console(file=sys.stderr)
        self.bar: Optional[Progress] = None
        self.task_id = None

    def _start(self, total: int):
        self.bar = Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            MofNCompleteColumn(),
            console=self.console,
            disable=not self.console.is_terminal,
        )
        self.bar.start()
        self.task_id = self.bar.add_task(self.label, total=total)

    def _stop(self):
        if self.bar is not None:
            self.bar.stop()
            self.bar = None

    def progress(self, current, total):
        if total <= 0:
            return
        if self.bar is None:
            self._start(total)
        self.bar.update(self.task_id, completed=current, total=total)
        if current >= total:
            self._stop()

    def error(self, cause):
        self._stop()
        logger.error(f"{self.label} aborted: {cause}")

    def complete(self, result):
        self._stop()
        if isinstance(result, Membership):
            logger.info(f"{self.label} complete: {len(result)} elements in the intersection")
        elif isinstance(result, SizeOnly):
            logger.info(f"{self.label} complete: intersection size {result.count}")
        else:
            logger.info(f"{self.label} complete")
