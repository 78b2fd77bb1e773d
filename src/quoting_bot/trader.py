from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import datetime, timedelta
import logging
import threading

from quoting_bot.config import TradingProperties
from quoting_bot.pipeline import Pipeline

LOGGER = logging.getLogger("quoting_bot")


class Trader:
    """
    Drives the trading cycle. Each cycle fans the pipeline out over every
    (site, instrument) target, joins, then sleeps on the current gate until the
    cycle's nominal time or until trigger()/close() releases the gate.

    The gate slot holds one Event while open and None once closed; it only changes
    through the compare-and-swap helpers below.
    """

    def __init__(self, properties: TradingProperties, pipeline: Pipeline, max_workers: int | None = None) -> None:
        self.properties = properties
        self.pipeline = pipeline
        self.max_workers = max(1, max_workers or properties.trading_threads())
        self._gate_lock = threading.Lock()
        self._gate: threading.Event | None = threading.Event()
        self._cycle_counter = 0

    def _current_gate(self) -> threading.Event | None:
        with self._gate_lock:
            return self._gate

    def trigger(self) -> None:
        with self._gate_lock:
            old = self._gate
            if old is None:
                LOGGER.debug("trigger_skipped reason=closed")
                return
            self._gate = threading.Event()
        LOGGER.info("Triggered.")
        old.set()

    def close(self) -> None:
        with self._gate_lock:
            old = self._gate
            self._gate = None
        if old is None:
            LOGGER.debug("close_skipped reason=already_closed")
            return
        LOGGER.info("Closed.")
        old.set()

    def is_closed(self) -> bool:
        return self._current_gate() is None

    def calculate_time(self) -> datetime:
        now = self.properties.now()
        interval = self.properties.trading_interval()
        return now if interval is None else now + interval

    def calculate_interval(self, target: datetime | None) -> timedelta:
        if target is None:
            return timedelta(0)
        now = self.properties.now()
        if now > target:
            return timedelta(0)
        return target - now

    def _process_safely(self, time: datetime, site: str, instrument: str) -> None:
        try:
            self.pipeline.process(time, site, instrument)
        except Exception:
            LOGGER.exception("pipeline_failed site=%s instrument=%s target=%s", site, instrument, time)

    def run_cycle(self, executor: ThreadPoolExecutor) -> datetime:
        self._cycle_counter += 1
        time = self.calculate_time()
        targets = [
            (site, instrument)
            for site, instruments in self.properties.trading_targets().items()
            for instrument in instruments
        ]
        LOGGER.debug("cycle=%s target=%s pairs=%s", self._cycle_counter, time.isoformat(), len(targets))
        futures: list[Future] = [
            executor.submit(self._process_safely, time, site, instrument) for site, instrument in targets
        ]
        wait(futures)
        return time

    def run(self) -> None:
        LOGGER.info("Trading started. workers=%s", self.max_workers)
        try:
            with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="pipeline") as executor:
                while True:
                    gate = self._current_gate()
                    if gate is None:
                        break
                    time = self.run_cycle(executor)
                    interval = self.calculate_interval(time)
                    LOGGER.debug("cycle=%s sleep=%.3fs", self._cycle_counter, interval.total_seconds())
                    gate.wait(interval.total_seconds())
        except Exception:
            LOGGER.warning("Aborting trade.", exc_info=True)
            self.close()
        LOGGER.info("Trading finished. cycles=%s", self._cycle_counter)
