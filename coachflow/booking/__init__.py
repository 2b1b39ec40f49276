"""Guest and instant-connect booking."""

from coachflow.booking.bridge import BookingBridge, BookingResult, quote

__all__ = ["BookingBridge", "BookingResult", "quote"]
