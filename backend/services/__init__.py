"""
Services package - Business logic layer.

This package contains all business logic services that operate on Django models
but are decoupled from the HTTP/WebSocket layer.

Modules:
    - booking_management: Booking lifecycle, offers, bargaining and escalation
    - matching: Driver discovery fan-out per matching window
"""
