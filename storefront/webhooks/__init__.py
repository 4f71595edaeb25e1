"""Webhook inbound system.

Receives acquiring payment notifications (signed assertions), verifies them,
and feeds them to the order reconciler. Always acknowledged with 200.
"""
