from .need_state import activate_need, archive_need, complete_need, pause_need, transition_need
from .offer_state import accept_offer, decline_offer, expire_offer, supersede_offer

__all__ = [
    "activate_need",
    "archive_need",
    "complete_need",
    "pause_need",
    "transition_need",
    "accept_offer",
    "decline_offer",
    "expire_offer",
    "supersede_offer",
]
