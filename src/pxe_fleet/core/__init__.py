"""pxe-fleet core -- the deployment lifecycle, independent of any surface.

Manifesto:
    The dashboard pages, the REST API and the CLI are all thin shells over
    the same few primitives: a cron evaluator, a deployment store with an
    atomic claim, a status state machine, a polling scheduler and a
    non-blocking event broadcaster. ``pxe_fleet.core`` holds those
    primitives and nothing that knows about HTTP or terminals.

Architecture::

    Layer 1 -- Type System & Errors
        errors.py          Structured error hierarchy (FleetError, TransientError)
        protocols.py       Connection, ExecutionLauncher protocols
        timestamps.py      UTC helpers, relative time and ETA formatting

    Layer 2 -- Storage
        database.py        SQLite connection factory + schema loader
        schema/            SQL DDL files
        models/            Dataclass models for the schema tables

    Layer 3 -- Lifecycle
        scheduling/        Cron, state machine, repository, scheduler service
        events/            Typed events, broadcaster, reconnecting observer

    Layer 4 -- Cross-Cutting Concerns
        logging.py         Structured logging (structlog)
        settings.py        FleetSettings (pydantic-settings)

Tags:
    pxe-fleet, core, package-overview

Doc-Types:
    package-overview, module-index
"""
