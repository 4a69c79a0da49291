import argparse
import asyncio
import logging
import os
import sys

# Allow running the file directly (e.g. `uv run stream_explorer`) by putting
# the project root on the path so the absolute imports below resolve.
if __package__ is None or __package__ == '':
    script_dir = os.path.dirname(os.path.abspath(__file__))
    sys.path.insert(0, os.path.dirname(script_dir))

from stream_explorer import config
from stream_explorer.backend_client import BackendClient
from stream_explorer.chart import ChartModel
from stream_explorer.exceptions import BackendError, DerivedAttributeError, ProfileError
from stream_explorer.explorer import Explorer
from stream_explorer.profile import AttributeCatalog, AttributeRef, Profile
from stream_explorer.tasks import cleanup_background_tasks, start_background_tasks
from stream_explorer.timekeys import Granularity

log = logging.getLogger("StreamExplorer")


def log_latest_row(chart: ChartModel):
    rows = chart.rows()
    if not rows:
        log.info("Chart is empty")
        return
    record_id, values = rows[-1]
    rendered = ", ".join(f"{name}={value}" for name, value in values.items())
    log.info(f"[{chart.point_count} points] {record_id}: {rendered}")


def notify(message: str):
    log.error(f"!! {message}")


def log_catalog(catalog: AttributeCatalog, host_filter: str | None = None):
    hosts = catalog.search_hosts(host_filter)
    log.info(f"Known hosts: {', '.join(hosts) or '-'}")
    log.info(f"Known attributes: {', '.join(sorted(catalog.attributes)) or '-'}")
    if catalog.functions:
        log.info(f"Derived attributes: {', '.join(sorted(catalog.functions))}")


def apply_attribute_edits(profile: Profile, defines, undefines):
    """Apply --define NAME=EXPR and --undefine NAME to the current topic."""
    for definition in defines or []:
        name, _, source = definition.partition('=')
        try:
            profile.define_attribute(name, source)
        except DerivedAttributeError as e:
            log.error(str(e))
    for name in undefines or []:
        if not profile.undefine_attribute(name):
            log.warning(f"Derived attribute '{name}' is not defined for topic {profile.topic}")


async def load_or_init_profile(backend: BackendClient, args) -> Profile | None:
    """Load the profile, falling back to the first-run flow when that fails."""
    if not args.init:
        try:
            return await backend.load_profile()
        except ProfileError as e:
            log.error(str(e))

    if not args.user:
        log.critical("No usable profile. Use --user NAME to initialize one.")
        return None
    try:
        await backend.init_profile(args.user, args.topic or '', args.id or '', args.attr or '')
        return await backend.load_profile()
    except ProfileError as e:
        log.critical(str(e))
        return None


async def run(args) -> int:
    backend = BackendClient(args.server)
    await backend.start()
    app = {"backend": backend}
    try:
        profile = await load_or_init_profile(backend, args)
        if profile is None:
            return 1

        explorer = Explorer(profile, backend.stream_transport(),
                            chart=ChartModel(on_redraw=log_latest_row), notifier=notify)
        app["explorer"] = explorer

        if args.topic and args.topic != profile.topic:
            try:
                topics = await backend.get_topics()
            except BackendError as e:
                log.warning(f"Could not load topic listing: {e}")
                topics = {}
            await explorer.select_topic(args.topic, topics)
        if args.id:
            ids = []
            try:
                ids = await backend.get_ids(explorer.context.topic)
            except BackendError as e:
                log.warning(f"Could not load ids for {explorer.context.topic}: {e}")
            if ids and args.id not in ids:
                log.warning(f"Id '{args.id}' is not listed for topic {explorer.context.topic}")
        apply_attribute_edits(profile, args.define, args.undefine)
        if args.list_hosts is not None:
            log_catalog(profile.catalog(), args.list_hosts)
            return 0
        await explorer.select(
            series_id=args.id or None,
            granularity=Granularity(args.unit) if args.unit else None,
            hosts=args.host or None,
            attributes=[AttributeRef(a.lstrip('@'), a.startswith('@')) for a in args.attr.split(',')]
            if args.attr else None,
        )

        app["on_discovery"] = lambda catalog: log_catalog(catalog, args.list_hosts)
        await start_background_tasks(app)
        await explorer.show(args.start or '', args.end or '')

        if args.follow or profile.autofresh:
            if await explorer.enable_autofresh():
                log.info("Following live data, press Ctrl-C to stop.")
                await asyncio.Event().wait()
        return 0
    finally:
        await cleanup_background_tasks(app)
        await backend.stop()


def main():
    parser = argparse.ArgumentParser(
        description="Stream Explorer - headless time-series explorer for streaming backends",
        epilog="""
Examples:
  # Last 30 minutes of second-level data for the profile's topic
  %(prog)s --server http://localhost:8080

  # A fixed range at minute granularity
  %(prog)s --unit m --start 2024-05-01T10:00 --end 2024-05-01T14:00

  # Show the default window and keep following live data
  %(prog)s --topic nginx --unit s --follow

  # Hosts seen so far for the topic whose name contains "web"
  %(prog)s --topic nginx --list-hosts web

  # First run: create a profile for a user
  %(prog)s --init --user alice --topic nginx --attr reqs
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument('--server', default=config.SERVER_URL, help="Backend base URL.")
    parser.add_argument('--topic', help="Topic to view.")
    parser.add_argument('--id', help="Series id within the topic.")
    parser.add_argument('--unit', choices=[g.value for g in Granularity],
                        help="Granularity: d, h, m, s or ss (subsecond).")
    parser.add_argument('--host', action='append', metavar='HOST',
                        help="Host to display, can be repeated. 'cluster' sums all hosts.")
    parser.add_argument('--attr', metavar='A[,B,@derived]',
                        help="Comma separated attributes, prefix derived attributes with '@'.")
    parser.add_argument('--define', action='append', metavar='NAME=EXPR',
                        help="Define a derived attribute, e.g. 'rate=lambda h: h[\"bytes\"] / 60'.")
    parser.add_argument('--undefine', action='append', metavar='NAME',
                        help="Remove a derived attribute from the current topic.")
    parser.add_argument('--list-hosts', nargs='?', const='', default=None, metavar='FILTER',
                        help="Log known hosts/attributes of the topic (optionally matching FILTER) and exit.")
    parser.add_argument('--start', help="Start time, e.g. 21, 04-21, 2024-04-21T16:30.")
    parser.add_argument('--end', help="End time, same formats as --start.")
    parser.add_argument('--follow', action='store_true', help="Enable auto-refresh after the first fetch.")
    parser.add_argument('--user', help="User name for first-run profile initialization.")
    parser.add_argument('--init', action='store_true', help="Force first-run profile initialization.")
    parser.add_argument('--debug', action='store_true', help="Enable debug logging.")
    args = parser.parse_args()

    log_level = logging.DEBUG if args.debug else logging.INFO
    logging.basicConfig(level=log_level, format='%(asctime)s [%(levelname)s] [%(name)s] %(message)s',
                        datefmt='%Y-%m-%d %H:%M:%S')

    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        log.info("Interrupted.")


if __name__ == "__main__":
    main()
