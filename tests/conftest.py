import httpx
import pytest


class StepClock:
    """Advances by *step* seconds on every call, so each timed send lasts step*1000 ms."""

    def __init__(self, step: float = 0.25):
        self.now = 0.0
        self.step = step

    def __call__(self):
        self.now += self.step
        return self.now


class ScriptedClock:
    """Returns the given readings in order."""

    def __init__(self, *readings: float):
        self.readings = list(readings)

    def __call__(self):
        return self.readings.pop(0)


class ManualClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self):
        return self.now


class BrokenStream(httpx.AsyncByteStream):
    async def __aiter__(self):
        raise httpx.ReadError("connection reset by peer")
        yield b""  # pragma: no cover


@pytest.fixture
def write_lines(tmp_path):
    def _write(name: str, *lines: str) -> str:
        path = tmp_path / name
        path.write_text("\n".join(lines) + ("\n" if lines else ""), encoding="utf-8")
        return str(path)
    return _write
