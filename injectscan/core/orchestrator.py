"""Scan orchestration: target selection, payload matrix and the paced scan loop."""

import asyncio
from typing import Dict, List, Optional, Tuple

import httpx

from injectscan.core.csrf import CsrfTokenProvider
from injectscan.core.engine import AnomalyScanner
from injectscan.core.errors import BaselineError, ConfigError, ScanError
from injectscan.core.models import (
    BodyFieldTarget, FailedTest, HeaderTarget, ScanConfig, ScanResult,
    ScanState, Target,
)
from injectscan.parsers.wordlist import read_lines
from injectscan.reporters.debug_log import RequestLogger


def resolve_targets(cfg: ScanConfig) -> List[Target]:
    """Turn the header/field wordlists into the list of injection targets."""
    if cfg.body_injection:
        if cfg.method.strip().upper() != "POST":
            raise ConfigError(
                f"Body injection requires --method POST (got {cfg.method})")
        fields = read_lines(cfg.fields_file) if cfg.fields_file else []
        if not fields:
            return [BodyFieldTarget(cfg.injection_field)]
        return [BodyFieldTarget(name) for name in fields]

    if not cfg.header_file:
        raise ConfigError("A header file is required unless body injection is enabled")
    return [HeaderTarget(name) for name in read_lines(cfg.header_file)]


class ScanOrchestrator:
    """
    Drives one scan: baseline, then every payload against every target,
    one request at a time with a fixed pause in between.

    Usage:
        async with ScanOrchestrator(cfg, logger=log) as scan:
            suspicious, timings = await scan.run_scan()
    """

    def __init__(
        self,
        cfg: ScanConfig,
        scanner: Optional[AnomalyScanner] = None,
        csrf_provider: Optional[CsrfTokenProvider] = None,
        logger=None,
    ):
        self.cfg = cfg
        self.logger = logger
        self.payloads: List[str] = read_lines(cfg.payload_file)
        self.targets: List[Target] = resolve_targets(cfg)

        if scanner is None:
            request_logger = None
            if cfg.debug:
                request_logger = RequestLogger(cfg.debug_file)
                request_logger.clear()
            scanner = AnomalyScanner(
                timeout_ms=cfg.timeout_ms, logger=logger,
                request_logger=request_logger)
        self.scanner = scanner

        if csrf_provider is None and cfg.csrf is not None and cfg.csrf_token is None:
            csrf_provider = CsrfTokenProvider(cfg.csrf, logger=logger)
        self.csrf_provider = csrf_provider

        self.state = ScanState.IDLE
        self.results: List[ScanResult] = []
        self.failures: List[FailedTest] = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def aclose(self):
        await self.scanner.aclose()
        if self.csrf_provider is not None:
            await self.csrf_provider.aclose()

    def total_tests(self) -> int:
        return len(self.targets) * len(self.payloads)

    async def establish_baseline(self):
        try:
            baseline = await self.scanner.establish_baseline(self.cfg.url)
        except BaselineError:
            self.state = ScanState.FAILED
            raise
        self.state = ScanState.BASELINE_ESTABLISHED
        if self.logger:
            self.logger.baseline(baseline)
        return baseline

    async def _csrf_token(self) -> Optional[str]:
        if self.cfg.csrf_token is not None:
            return self.cfg.csrf_token
        if self.csrf_provider is None:
            return None
        try:
            return await self.csrf_provider.get_token()
        except ScanError:
            self.state = ScanState.FAILED
            raise

    async def run_scan(self) -> Tuple[List[ScanResult], Dict[str, List[int]]]:
        """
        Run the whole matrix.
        Returns (suspicious results, per-target durations in ms).
        """
        # always re-established so the scan compares against a fresh reference
        await self.establish_baseline()

        self.results = []
        self.failures = []
        suspicious: List[ScanResult] = []
        timings: Dict[str, List[int]] = {}
        total = self.total_tests()
        done = 0

        # token is resolved before the first injection; later calls hit the cache
        token = await self._csrf_token()
        self.state = ScanState.SCANNING
        for target in self.targets:
            times = timings.setdefault(target.name, [])
            if self.logger:
                self.logger.target_start(target.name)

            for payload in self.payloads:
                done += 1
                if self.logger:
                    self.logger.progress(done, total, target.name, payload)

                if done > 1:
                    token = await self._csrf_token()
                try:
                    result = await self.scanner.test_injection(
                        self.cfg.url, target, payload,
                        method=self.cfg.method,
                        csrf_token=token,
                        csrf_field=self.cfg.csrf_field,
                        csrf_cookie_field=self.cfg.csrf_cookie_field,
                    )
                except (ScanError, httpx.HTTPError) as exc:
                    self.failures.append(FailedTest(target.name, payload, str(exc)))
                    if self.logger:
                        self.logger.error(f"Injection test failed ({target.name}): {exc}")
                else:
                    self.results.append(result)
                    times.append(result.duration_ms)
                    if result.suspicious:
                        suspicious.append(result)
                    if self.logger:
                        self.logger.result(result)

                await asyncio.sleep(self.cfg.delay)

        self.state = ScanState.COMPLETED
        return suspicious, timings
