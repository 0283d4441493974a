"""Progress reporting for long estimation runs."""

from tqdm import tqdm


class ProgressReporter:
    """
    Percentage progress bar.

    The loop reports the fraction of the data time span already processed;
    the bar only moves forward.

    Example:
        >>> with ProgressReporter(desc="Estimating") as progress:
        ...     for percent in (10.0, 50.0, 100.0):
        ...         progress.update(percent)
    """

    def __init__(self, desc: str = "Estimating", enabled: bool = True):
        self._bar = tqdm(total=100.0, desc=desc, unit="%", disable=not enabled,
                         bar_format="{l_bar}{bar}| {n:.0f}/{total:.0f}%")
        self.percent = 0.0

    def update(self, percent: float) -> None:
        percent = min(max(float(percent), 0.0), 100.0)
        if percent > self.percent:
            self._bar.update(percent - self.percent)
            self.percent = percent

    def close(self) -> None:
        self._bar.close()

    def __enter__(self) -> "ProgressReporter":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
