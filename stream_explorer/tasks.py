import asyncio
import logging

from .config import DISCOVERY_INTERVAL_SECONDS, PROFILE_SAVE_INTERVAL_SECONDS
from .exceptions import ProfileError

log = logging.getLogger("StreamExplorer.Tasks")


def discover_once(explorer) -> bool:
    """Fold the newest record of the current topic into the attribute catalog."""
    topic = explorer.context.topic
    record = explorer.reconciler.last_records.get(topic)
    if record is None:
        return False
    changed = explorer.profile.catalog(topic).discover(record)
    if changed:
        catalog = explorer.profile.catalog(topic)
        log.info(f"[{topic}] Discovered {len(catalog.hosts)} hosts, {len(catalog.attributes)} attributes")
    return changed


async def discovery_task(app):
    """Polls for newly seen hosts/attributes; never waits on a stream."""
    log.info("Host/attribute discovery task started.")
    explorer = app["explorer"]
    on_change = app.get("on_discovery")
    while True:
        await asyncio.sleep(DISCOVERY_INTERVAL_SECONDS)
        try:
            if discover_once(explorer) and on_change:
                on_change(explorer.profile.catalog())
        except Exception:
            log.error("Error in discovery task:", exc_info=True)


async def profile_saver_task(app):
    log.info("Profile saver task started.")
    while True:
        await asyncio.sleep(PROFILE_SAVE_INTERVAL_SECONDS)
        try:
            await app["backend"].save_profile(app["explorer"].profile)
        except ProfileError as e:
            log.error(f"Periodic profile save failed: {e}")


async def start_background_tasks(app):
    log.info("Starting background tasks...")
    app["tasks"] = [
        asyncio.create_task(discovery_task(app)),
        asyncio.create_task(profile_saver_task(app)),
    ]


async def cleanup_background_tasks(app):
    log.info("Background task cleanup started.")
    for task in app.get("tasks", []):
        task.cancel()
    if "tasks" in app:
        await asyncio.gather(*app["tasks"], return_exceptions=True)
    log.info("Background tasks cancelled.")

    explorer = app.get("explorer")
    if explorer is not None:
        await explorer.close()
        backend = app.get("backend")
        if backend is not None and backend.session is not None:
            # Final save, the periodic one may be up to an interval behind.
            try:
                await backend.save_profile(explorer.profile)
            except ProfileError as e:
                log.error(f"Final profile save failed: {e}")
