import argparse
import asyncio
import sys

from injectscan.core.errors import ScanError
from injectscan.core.models import CsrfConfig, EXTRACTION_METHODS, ScanConfig
from injectscan.core.orchestrator import ScanOrchestrator
from injectscan.reporters.console import Log


def _header_pair(value: str):
    name, sep, val = value.partition(":")
    if not sep or not name.strip():
        raise argparse.ArgumentTypeError(f"expected NAME:VALUE, got {value!r}")
    return name.strip(), val.strip()


class _ScanArgumentParser(argparse.ArgumentParser):
    def parse_known_args(self, args=None, namespace=None):
        ns, extras = super().parse_known_args(args, namespace)
        if getattr(ns, "body_injection", False) and not getattr(ns, "fields", None):
            self.error("--fields is required with --body-injection")
        return ns, extras


def build_parser() -> argparse.ArgumentParser:
    p = _ScanArgumentParser(
        prog="injectscan",
        description="SQL injection anomaly scanner for HTTP headers and form fields")
    p.add_argument("-u", "--url", required=True,
                   help="Endpoint the requests are sent to")
    p.add_argument("-p", "--payload", required=True,
                   help="File with payloads (one per line)")
    p.add_argument("-H", "--header",
                   help="File with header names to test (required unless --body-injection)")
    p.add_argument("-F", "--fields",
                   help="File with body fields to test (required with --body-injection)")
    p.add_argument("-t", "--timeout", type=int, default=3000,
                   help="Time threshold in ms (default: 3000)")
    p.add_argument("-m", "--method", default="GET",
                   help="HTTP method (default: GET)")
    p.add_argument("-v", "--verbose", action="count", default=1,
                   help="-v, -vv")

    csrf = p.add_argument_group("CSRF")
    csrf.add_argument("--csrf-field", default="csrf_token",
                      help="CSRF field name in forms (default: csrf_token)")
    csrf.add_argument("--csrf-cookie-field",
                      help="CSRF field name in the cookie (default: --csrf-field)")
    csrf.add_argument("--csrf-token", help="Known CSRF token value")
    csrf.add_argument("--csrf-url", help="Endpoint to fetch a fresh CSRF token from")
    csrf.add_argument("--csrf-extract", choices=EXTRACTION_METHODS, default="html",
                      help="How to extract the token (default: html)")
    csrf.add_argument("--csrf-selector", default="",
                      help="Regex (group 1) or CSS selector locating the token")
    csrf.add_argument("--csrf-json-pointer",
                      help="JSON pointer to the token (json extraction)")
    csrf.add_argument("--csrf-cache", type=int,
                      help="Seconds to reuse a fetched token (default: forever)")
    csrf.add_argument("--csrf-header", type=_header_pair, action="append", default=[],
                      metavar="NAME:VALUE", help="Extra header for the token request")

    body = p.add_argument_group("Body injection")
    body.add_argument("--body-injection", action="store_true",
                      help="Inject into form fields instead of headers")
    body.add_argument("--injection-field", default="id",
                      help="Field used when the fields file lists none (default: id)")

    dbg = p.add_argument_group("Debug")
    dbg.add_argument("--debug", action="store_true", help="Log every request to a file")
    dbg.add_argument("--debug-file", default="debug_requests_log.txt",
                     help="Debug log path (default: debug_requests_log.txt)")
    return p


def config_from_args(args: argparse.Namespace) -> ScanConfig:
    csrf = None
    if args.csrf_url:
        csrf = CsrfConfig(
            token_url=args.csrf_url,
            extraction_method=args.csrf_extract,
            token_selector=args.csrf_selector,
            json_pointer=args.csrf_json_pointer,
            headers=dict(args.csrf_header),
            cache_duration=args.csrf_cache,
        )
    return ScanConfig(
        url=args.url,
        payload_file=args.payload,
        header_file=args.header,
        fields_file=args.fields,
        method=args.method,
        timeout_ms=args.timeout,
        body_injection=args.body_injection,
        injection_field=args.injection_field,
        csrf_field=args.csrf_field,
        csrf_cookie_field=args.csrf_cookie_field,
        csrf_token=args.csrf_token,
        csrf=csrf,
        debug=args.debug,
        debug_file=args.debug_file,
        verbose=args.verbose,
    )


async def run(cfg: ScanConfig, log: Log) -> int:
    log.banner()
    log.config(cfg)

    async with ScanOrchestrator(cfg, logger=log) as scan:
        total = scan.total_tests()
        log.preparation([t.name for t in scan.targets], scan.payloads, total)
        suspicious, _ = await scan.run_scan()
        log.summary(cfg.url, total, suspicious, failed=len(scan.failures))
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    log = Log(verbose=args.verbose)
    try:
        cfg = config_from_args(args)
        return asyncio.run(run(cfg, log))
    except ScanError as exc:
        log.error(str(exc))
        return 1
    except KeyboardInterrupt:
        log.warn("Scan interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
