"""Progress reporting for long branch-and-bound runs."""

from __future__ import annotations

import time

import tqdm


class ProgressListener:
    """
    Receives periodic status from the solver.

    update_status returns False to stop the search; the solver then returns
    the best solution found so far.
    """

    def message(self, text):
        pass

    def update_status(
        self, f_floor, f_bar, upper_floor, remaining, iteration, f_bar_reductions, cyclic_avoided
    ) -> bool:
        return True

    def set_finished(self):
        pass


class TqdmProgress(ProgressListener):
    """tqdm bar over iterations, optionally stopping after a time or iteration limit."""

    def __init__(self, time_limit=None, max_iterations=None, **tqdm_kwargs):
        self.time_limit = time_limit
        self.max_iterations = max_iterations
        self._tqdm_kwargs = dict(desc="CMRx", unit="it")
        self._tqdm_kwargs.update(tqdm_kwargs)
        self._bar = None
        self._start = None
        self._last_iteration = 0

    def _ensure_bar(self):
        if self._bar is None:
            self._bar = tqdm.tqdm(total=self.max_iterations, **self._tqdm_kwargs)
            self._start = time.time()
        return self._bar

    def message(self, text):
        self._ensure_bar().set_description(text)

    def update_status(
        self, f_floor, f_bar, upper_floor, remaining, iteration, f_bar_reductions, cyclic_avoided
    ) -> bool:
        bar = self._ensure_bar()
        bar.update(iteration - self._last_iteration)
        self._last_iteration = iteration
        bar.set_postfix(
            floor=f"{f_floor:.4g}",
            best=f"{f_bar:.4g}",
            open=remaining,
            improved=f_bar_reductions,
            cyclic=cyclic_avoided,
        )
        if self.time_limit is not None and time.time() - self._start >= self.time_limit:
            return False
        if self.max_iterations is not None and iteration >= self.max_iterations:
            return False
        return True

    def set_finished(self):
        if self._bar is not None:
            self._bar.close()
            self._bar = None
