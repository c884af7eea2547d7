"""
Launchpad — Background Sync & Scoring Pipeline for a DAO Launchpad
====================================================================
Reconciles three sources of truth into the persisted lifecycle state of
each DAO: on-chain token/DEX events, the source-hosting platform's
contributor API, and time.  Everything runs through durable, named job
queues so replays and retries never double-count value.

Package layout::

    launchpad/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Queue names, job types, retry policy
    ├── errors.py          # ErrorCode taxonomy + friendly messages
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + session/async helpers
    │   └── models.py      # All ORM models
    ├── engine/
    │   ├── events.py      # ChainEvent + JobEnvelope
    │   ├── proof.py       # Proof-of-Contribution calculator (pure)
    │   ├── lifecycle.py   # DAO status state machine
    │   └── content.py     # Tagged union of DAO content kinds
    ├── clients/
    │   ├── platform.py    # GitHub / GitLab client + credential pool
    │   └── chain.py       # Chain event reader (web3)
    ├── queue/
    │   ├── job_queue.py   # DB-backed job queue with leases + dead letters
    │   ├── worker.py      # Consumer threads (dequeue → handler → ack/fail)
    │   └── bootstrap.py   # Idempotent start_consumers() lifecycle call
    ├── services/
    │   ├── contributor_service.py  # Contributor sync + wallet bind
    │   ├── market_service.py       # Chain events → market data/status
    │   └── dao_service.py          # Status checks + scheduled maintenance
    ├── api/
    │   ├── main.py        # FastAPI ops API
    │   └── deps.py        # Dependency injection
    └── worker/
        └── __main__.py    # ``python -m launchpad.worker``
"""

__version__ = "0.1.0"
