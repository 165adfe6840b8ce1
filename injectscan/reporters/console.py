import sys
from datetime import datetime
from typing import List

from colorama import init as colorama_init, Fore, Style

from injectscan.core.models import Baseline, ScanConfig, ScanResult
colorama_init(autoreset=True)

BANNER = r"""
  _       _           _
 (_)_ __ (_) ___  ___| |_ ___  ___ __ _ _ __
 | | '_ \| |/ _ \/ __| __/ __|/ __/ _` | '_ \
 | | | | | |  __/ (__| |_\__ \ (_| (_| | | | |
 |_|_| |_/ |\___|\___|\__|___/\___\__,_|_| |_|
       |__/      SQL injection anomaly scanner
"""


class Log:
    def __init__(self, verbose: int = 1):
        self.verbose = verbose
        self.PAY = Fore.MAGENTA

    def _time(self):
        return datetime.now().strftime("[%H:%M:%S]")

    def _fmt(self, level: str, color: str):
        return f"{self._time()} {color}[{level}]{Style.RESET_ALL}"

    def info(self, msg: str):
        if self.verbose >= 1:
            print(f"{self._fmt('INFO', Fore.CYAN)} {msg}")

    def warn(self, msg: str):
        if self.verbose >= 0:
            print(f"{self._fmt('WARNING', Fore.YELLOW)} {msg}")

    def ok(self, msg: str):
        print(f"{self._fmt('SUCCESS', Fore.GREEN)} {msg}")

    def fail(self, msg: str):
        print(f"{self._fmt('FAIL', Fore.RED)} {msg}")

    def error(self, msg: str):
        print(f"{self._fmt('ERROR', Fore.RED)} {msg}", file=sys.stderr)

    def debug(self, msg: str):
        if self.verbose >= 2:
            print(f"{self._fmt('DEBUG', Fore.MAGENTA)} {msg}")

    # ── scan presentation ──────────────────────────────────────

    def banner(self):
        if self.verbose >= 1:
            print(f"{Fore.YELLOW}{BANNER}{Style.RESET_ALL}")

    def config(self, cfg: ScanConfig):
        if self.verbose < 1:
            return
        mode = "body fields" if cfg.body_injection else "headers"
        self.info(f"Target   : {cfg.url}")
        self.info(f"Method   : {cfg.method.upper()}  (injecting into {mode})")
        self.info(f"Payloads : {cfg.payload_file}")
        if cfg.body_injection:
            self.info(f"Fields   : {cfg.fields_file or '(default ' + cfg.injection_field + ')'}")
        else:
            self.info(f"Headers  : {cfg.header_file}")
        self.info(f"Timeout  : {cfg.timeout_ms} ms")
        if cfg.debug:
            self.info(f"Debug log: {cfg.debug_file}")

    def preparation(self, targets: List[str], payloads: List[str], total: int):
        self.info(f"{len(targets)} targets x {len(payloads)} payloads = {total} tests")
        self.debug(f"Targets : {', '.join(targets)}")
        for p in payloads:
            self.debug(f"Payload : {self.PAY}{p}{Style.RESET_ALL}")

    def baseline(self, base: Baseline):
        self.info(f"Baseline: HTTP {base.status}, {base.duration_ms} ms, "
                  f"{base.body_size} bytes")

    def target_start(self, target: str):
        self.info(f"Testing {Fore.CYAN}{target}{Style.RESET_ALL}")

    def progress(self, done: int, total: int, target: str, payload: str):
        if self.verbose != 1 or not total:
            return
        width = 25
        filled = int(done / total * width)
        bar = "█" * filled + "░" * (width - filled)
        line = f"\r{bar} {done}/{total} {target} {payload[:30]}"
        print(f"{line:<90}", end="" if done < total else "\n", flush=True)

    def result(self, res: ScanResult):
        if res.suspicious:
            if self.verbose == 1:
                print()
            print(f"{self._fmt('SUSPICIOUS', Fore.RED)} {res.target} = "
                  f"{self.PAY}{res.payload}{Style.RESET_ALL} "
                  f"{Style.DIM}(HTTP {res.status}, {res.duration_ms} ms, "
                  f"{res.body_size} B){Style.RESET_ALL}")
            print(f"    {Fore.YELLOW}{res.reason}{Style.RESET_ALL}")
        elif self.verbose >= 2:
            self.debug(str(res))

    def summary(self, url: str, total: int, suspicious: List[ScanResult], failed: int = 0):
        print()
        self.info(f"Scan of {url} finished: {total} tests, {failed} failed")
        if not suspicious:
            self.ok("No suspicious responses")
            return
        self.fail(f"{len(suspicious)} suspicious responses")
        for res in suspicious:
            print(f"  - {res.target} = {self.PAY}{res.payload}{Style.RESET_ALL}: {res.reason}")
