"""
Bookings application.

The booking is the external collaborator of the escrow subsystem: a client
books a provider's service, pays for it through escrow, and the provider is
paid out once the work is confirmed. Booking CRUD lives elsewhere; this app
only models what escrow reads and writes.

Usage:
    from bookings.models import Booking, BookingStatus, CompletionProof
"""
