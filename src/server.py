"""Job workers for the checkout domain.

Starts worker threads that claim and execute due jobs: payment initiation
retries, gateway event settlement, AwaitingGateway timeouts and customer
notifications. Workers can run in as many processes as needed; claiming is
exclusive per job.

Usage:
    python src/server.py                      # One worker thread
    python src/server.py --workers 4          # Four worker threads
    python src/server.py --poll-interval 0.5  # Poll twice a second when idle
"""

import argparse
import signal
import threading

import structlog

logger = structlog.get_logger(__name__)


def _worker(domain, stop_event, poll_interval):
    from checkout.settlement.orchestrator import SettlementOrchestrator
    from checkout.utils.logging import add_context, clear_context

    with domain.domain_context():
        # Each thread gets its own runner so every worker has its own lease identity
        orchestrator = SettlementOrchestrator()
        add_context(worker_id=orchestrator.runner.worker_id)
        try:
            orchestrator.runner.run_forever(stop_event, poll_interval=poll_interval)
        finally:
            clear_context()


def run(workers, poll_interval):
    from checkout.domain import checkout

    checkout.init()

    stop_event = threading.Event()

    def _stop(signum, _frame):
        logger.info("Shutdown requested", signal=signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _stop)
    signal.signal(signal.SIGTERM, _stop)

    threads = [
        threading.Thread(
            target=_worker,
            args=(checkout, stop_event, poll_interval),
            name=f"checkout-worker-{index}",
            daemon=True,
        )
        for index in range(workers)
    ]
    for thread in threads:
        thread.start()

    while any(thread.is_alive() for thread in threads):
        for thread in threads:
            thread.join(timeout=0.5)


def main():
    from checkout.utils.logging import configure_logging

    parser = argparse.ArgumentParser(description="Checkout job workers")
    parser.add_argument("--workers", type=int, default=1, help="Number of worker threads (default: 1)")
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=1.0,
        help="Seconds to wait between polls when no job is due (default: 1.0)",
    )
    args = parser.parse_args()

    configure_logging()
    run(max(1, args.workers), args.poll_interval)


if __name__ == "__main__":
    main()
