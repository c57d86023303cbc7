"""Mixed checkout workload scenario.

Combines the checkout journeys with weights that model realistic traffic:
most checkouts are paid, some are declined or abandoned, and a few clients
retry their submission.
"""

from locust import HttpUser, between

from loadtests.scenarios.checkout import (
    AbandonedCheckoutJourney,
    DeclinedCheckoutJourney,
    PaidCheckoutJourney,
    RetriedSubmissionJourney,
    seed_catalog,
)


class MixedWorkloadUser(HttpUser):
    """Realistic mixed checkout workload.

    Paid checkouts (60%) exercise reservation, settlement and duplicate
    callbacks; declines (15%) and cancellations (15%) exercise stock
    release; replays (10%) exercise idempotent submission.
    """

    wait_time = between(0.5, 3.0)
    tasks = {
        PaidCheckoutJourney: 12,
        DeclinedCheckoutJourney: 3,
        AbandonedCheckoutJourney: 3,
        RetriedSubmissionJourney: 2,
    }

    def on_start(self):
        seed_catalog(self.client)
