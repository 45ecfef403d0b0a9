"""
Command-line interface for apiscope - per-tab API endpoint monitor.
"""
import argparse
import asyncio
import logging
from .monitor import ApiMonitor
from .settings import SettingsSource
from .storage import JsonFileStore, MemoryStore


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Attach an API traffic monitor to a running browser instance.',
        prog='apiscope'
    )

    parser.add_argument(
        '--port', '-p',
        type=int,
        required=True,
        help='The CDP port of the target browser instance.'
    )

    parser.add_argument(
        '--track-all-tabs',
        action='store_true',
        help='Track every tab and pop-up, including ones opened later.'
    )

    parser.add_argument(
        '--settings',
        metavar='PATH',
        help='JSON file holding capture settings (kept in memory when omitted).'
    )

    parser.add_argument(
        '--include-query-string',
        action=argparse.BooleanOptionalAction,
        default=None,
        help='Keep query strings as part of the endpoint identity.'
    )

    parser.add_argument(
        '--max-records',
        type=int,
        help='Maximum endpoints kept per tab.'
    )

    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable debug logging.'
    )
    return parser


def settings_overrides(args) -> dict:
    overrides = {}
    if args.include_query_string is not None:
        overrides['include_query_string'] = args.include_query_string
    if args.max_records is not None:
        overrides['max_records_per_tab'] = args.max_records
    return overrides


def main(argv=None):
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s %(name)s %(levelname)s %(message)s'
    )

    store = JsonFileStore(args.settings) if args.settings else MemoryStore()
    settings = SettingsSource(store)

    async def run():
        overrides = settings_overrides(args)
        if overrides:
            await settings.update(**overrides)
        monitor = ApiMonitor(cdp_port=args.port, track_all_tabs=args.track_all_tabs, settings=settings)
        await monitor.start()

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        print("\n[apiscope] User interrupted the process. Exiting.")
    except Exception as e:
        print(f"\n[apiscope] A critical error occurred: {e}")

if __name__ == "__main__":
    main()
