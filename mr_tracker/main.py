"""Main entry point for the merge request mention tracker."""

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass

import uvicorn

from .config import Config, load_config
from .scheduler import Scheduler
from .services import (
    DatabaseService,
    GitLabService,
    MentionEventRouter,
    MentionService,
    UnfurlService,
    UserService,
    init_db_service,
)
from .slack_client import SlackClient
from .tasks import TaskTracker
from .webhook_server import create_app

logger = logging.getLogger(__name__)


def setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    # Reduce noise from libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("slack_sdk").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


@dataclass
class Services:
    """Explicitly constructed collaborators shared by the server and the jobs."""

    db: DatabaseService
    slack: SlackClient
    gitlab: GitLabService
    mentions: MentionService
    users: UserService
    unfurls: UnfurlService
    router: MentionEventRouter
    tasks: TaskTracker

    async def close(self) -> None:
        await self.tasks.drain()
        await self.gitlab.close()
        await self.db.close()


async def build_services(config: Config) -> Services:
    """Wire up all services from configuration."""
    logger.info("Initializing database at %s", config.database.path)
    db = await init_db_service(config.database.path)

    slack = SlackClient(config.slack.bot_token.get_secret_value())
    gitlab = GitLabService(
        private_token=config.gitlab.private_token.get_secret_value(),
        api_url=config.gitlab.api_url,
        timeout=config.gitlab.timeout,
    )
    mentions = MentionService(db)
    users = UserService(db, slack, gitlab)
    unfurls = UnfurlService(
        slack, gitlab, mentions, reviewer_reaction=config.features.on_reaction_added.reaction
    )
    tasks = TaskTracker()
    router = MentionEventRouter(
        features=config.features,
        mention_service=mentions,
        user_service=users,
        gitlab_service=gitlab,
        unfurl_service=unfurls,
        slack_client=slack,
        tasks=tasks,
    )
    return Services(db, slack, gitlab, mentions, users, unfurls, router, tasks)


def _fail_fast(loop: asyncio.AbstractEventLoop, context: dict) -> None:
    """Stop the loop when a task or future failed unobserved.

    Everything else, e.g. transport errors, goes to the default handler.
    """
    exception = context.get("exception")
    if exception is None or ("task" not in context and "future" not in context):
        loop.default_exception_handler(context)
        return

    logger.critical(
        "Unhandled error in event loop: %s",
        context.get("message"),
        exc_info=exception,
    )
    loop.stop()


async def serve(args, config: Config, services: Services) -> int:
    """Run the HTTP server and the scheduled jobs concurrently."""
    asyncio.get_running_loop().set_exception_handler(_fail_fast)

    if config.gitlab.webhook_secret is not None:
        logger.info("Webhook secret is set for securing the GitLab webhooks endpoint")

    app = create_app(config, services.router)
    uvicorn_config = uvicorn.Config(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level="info" if args.verbose else "warning",
    )
    server = uvicorn.Server(uvicorn_config)
    scheduler = Scheduler(config.housekeeping, services.mentions, services.unfurls)

    logger.info("Starting server on %s:%d", config.server.host, config.server.port)
    server_task = asyncio.create_task(server.serve(), name="server")
    scheduler_task = asyncio.create_task(scheduler.run(), name="scheduler")

    # Wait for either task to complete (or fail)
    done, pending = await asyncio.wait(
        [server_task, scheduler_task], return_when=asyncio.FIRST_COMPLETED
    )

    for task in pending:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    for task in done:
        error = task.exception()
        if error is not None:
            logger.error("Task %s failed: %s", task.get_name(), error, exc_info=error)
            return 1
    return 0


async def async_main(args) -> int:
    """Async main function."""
    try:
        logger.info("Loading configuration from %s", args.config)
        config = load_config(args.config)
    except (FileNotFoundError, ValueError) as e:
        logger.error(str(e))
        return 1

    services = await build_services(config)
    try:
        if args.job == "housekeeping":
            await Scheduler(config.housekeeping, services.mentions, services.unfurls).purge()
            return 0
        if args.job == "refresh-unfurls":
            await Scheduler(config.housekeeping, services.mentions, services.unfurls).refresh()
            return 0
        return await serve(args, config, services)
    except Exception as e:
        logger.exception("Fatal error: %s", e)
        return 1
    finally:
        await services.close()
        logger.info("Database connection closed")


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Track GitLab merge request links in Slack and keep them in sync",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                              # Serve webhooks/events and run scheduled jobs
  %(prog)s -c myconfig.yaml             # Run with custom config
  %(prog)s -v                           # Run with verbose logging
  %(prog)s --job housekeeping           # Purge expired mentions once and exit
  %(prog)s --job refresh-unfurls        # Refresh all unfurls once and exit
        """,
    )

    parser.add_argument(
        "-c",
        "--config",
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose/debug logging",
    )
    parser.add_argument(
        "--job",
        choices=["serve", "housekeeping", "refresh-unfurls"],
        default="serve",
        help="What to run: serve (default) or a single scheduled job",
    )

    args = parser.parse_args()

    setup_logging(args.verbose)

    try:
        return asyncio.run(async_main(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0


if __name__ == "__main__":
    sys.exit(main())
