"""Command line front end: scan files and directories with an ICAP server.

Exit codes:
    0    No virus found
    1    Virus found
    2    Invalid command line arguments
    111  Connection refused
    255  ICAP server error
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Iterator, List, Optional

from .exception import IcapConnectionError, IcapException
from .icap import IcapClient, parse_icap_url
from .wire import trace_logger

logger = logging.getLogger(__name__)

EXIT_CLEAN = 0
EXIT_INFECTED = 1
EXIT_USAGE = 2
EXIT_CONNECTION_REFUSED = 111
EXIT_SERVER_ERROR = 255

DEFAULT_MAX_FILE_SIZE = 50_000_000


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="icapscan",
        description="Scan files for viruses by submitting them to an ICAP server. "
        "Directories are scanned recursively.",
    )
    parser.add_argument(
        "-p", "--preview", action="store_true", help="use preview mode if available"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="log protocol traffic")
    parser.add_argument(
        "-o", "--options-only", action="store_true", help="only query server OPTIONS"
    )
    parser.add_argument(
        "--max-file-size",
        type=int,
        default=DEFAULT_MAX_FILE_SIZE,
        metavar="BYTES",
        help=f"skip files of this size or larger (default: {DEFAULT_MAX_FILE_SIZE})",
    )
    parser.add_argument("url", help="icap://host[:port][/service]")
    parser.add_argument("paths", nargs="*", metavar="path", help="files or directories to scan")
    return parser


def configure_logging(verbose: bool) -> None:
    if not verbose:
        return
    logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    if not trace_logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter("%(message)s"))
        trace_logger.addHandler(handler)
    trace_logger.setLevel(logging.DEBUG)
    trace_logger.propagate = False


def iter_files(paths: List[str], max_file_size: int) -> Iterator[Path]:
    """Yield regular files under ``paths``, printing a notice for each skipped path."""
    for name in paths:
        path = Path(name)
        if path.is_dir():
            yield from iter_files(sorted(str(child) for child in path.iterdir()), max_file_size)
        elif path.is_file():
            size = path.stat().st_size
            if size < max_file_size:
                yield path
            else:
                print(f"Skipping {path} (size {size} exceeds limit of {max_file_size})")
        else:
            print(f"Skipping {path} (not a file or directory)")


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        endpoint, url = parse_icap_url(args.url)
    except ValueError as e:
        parser.error(str(e))
    if args.max_file_size <= 0:
        parser.error("--max-file-size must be a positive integer")

    configure_logging(args.verbose)
    logger.debug(f"Scanning {len(args.paths)} path(s) on {endpoint} (preview: {args.preview})")

    rc = EXIT_CLEAN
    client = IcapClient(endpoint.host, endpoint.port, service_url=url, trace=args.verbose)
    try:
        with client:
            capabilities = client.options()
            if args.options_only:
                methods = ", ".join(capabilities.methods) or "-"
                preview = capabilities.preview_size if capabilities.supports_preview else "none"
                print(f"Server {endpoint} supports methods: {methods}")
                print(f"Preview size: {preview}")
                for key, value in capabilities.headers.items():
                    print(f"{key}: {value}")
                return EXIT_CLEAN

            for path in iter_files(args.paths, args.max_file_size):
                verdict = client.scan_file(path, preview=args.preview)
                if verdict.infected:
                    rc = EXIT_INFECTED
                    print(f"{path} is infected")
                    for line in verdict.threat_info:
                        print(line)
                else:
                    print(f"{path} is OK")
    except IcapConnectionError as e:
        print(e, file=sys.stderr)
        return EXIT_CONNECTION_REFUSED
    except IcapException as e:
        print(e, file=sys.stderr)
        return EXIT_SERVER_ERROR
    except OSError as e:
        print(e, file=sys.stderr)
        return EXIT_SERVER_ERROR
    return rc
