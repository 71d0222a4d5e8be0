"""
HTTP control surface for the Skimmer agent.

Start, stop, status and manual withdraw. Reporting only; nothing here
feeds the agent's trading decisions.
"""

from aiohttp import web
import logging

from skimmer.core.errors import ConfigurationInvalid
from skimmer.treasury.payouts import DispatchOutcome

logger = logging.getLogger(__name__)

AGENT_KEY = web.AppKey("agent", object)

# Withdraw outcome -> HTTP status
WITHDRAW_STATUS = {
    DispatchOutcome.COMPLETE: 200,
    DispatchOutcome.PARTIAL_FAILURE: 207,
    DispatchOutcome.FAILED: 502,
    DispatchOutcome.SKIPPED: 200,
    DispatchOutcome.NOTHING_PENDING: 200,
}


async def health_check(request):
    """Health check endpoint."""
    agent = request.app[AGENT_KEY]
    return web.json_response({
        "status": "healthy",
        "running": agent.running,
    })


async def status(request):
    return web.json_response(request.app[AGENT_KEY].status())


async def start(request):
    agent = request.app[AGENT_KEY]
    try:
        state = await agent.start()
    except ConfigurationInvalid as e:
        logger.error(f"Refusing to start: {e}")
        return web.json_response({"error": str(e)}, status=400)
    return web.json_response(state)


async def stop(request):
    state = await request.app[AGENT_KEY].stop()
    return web.json_response(state)


async def withdraw(request):
    """Dispatch pending profit now."""
    agent = request.app[AGENT_KEY]
    if not agent.running:
        return web.json_response({"error": "agent is not running"}, status=409)

    try:
        report = await agent.withdraw()
    except RuntimeError as e:
        # Stopped between the check above and the job running
        return web.json_response({"error": str(e)}, status=409)
    body = report.to_dict()
    if report.outcome in (DispatchOutcome.SKIPPED, DispatchOutcome.NOTHING_PENDING):
        body["skipped"] = True
    return web.json_response(body, status=WITHDRAW_STATUS[report.outcome])


def create_control_app(agent) -> web.Application:
    """
    Create the control application.

    Args:
        agent: SkimmerAgent instance

    Returns:
        aiohttp Application
    """
    app = web.Application()
    app[AGENT_KEY] = agent

    app.router.add_get("/health", health_check)
    app.router.add_get("/status", status)
    app.router.add_post("/start", start)
    app.router.add_post("/stop", stop)
    app.router.add_post("/withdraw", withdraw)
    app.router.add_get("/", health_check)

    return app


async def run_control_server(agent, port: int = 3000, host: str = "0.0.0.0") -> web.AppRunner:
    """
    Run the control server in the background.

    Returns:
        AppRunner; call ``cleanup()`` to shut down
    """
    app = create_control_app(agent)

    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, host, port)
    await site.start()

    logger.info(f"Control server running on port {port}")

    return runner
