"""
Paystack webhook endpoint and event handlers.
"""
