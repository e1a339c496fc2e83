"""
Realtime app: WebSocket endpoints and server-to-client events.

Key Components:
    - consumers/: driver and customer WebSocket consumers
    - events.py: one DRF serializer per outgoing event name
    - notifications.py: validated publishing to user_<id> / driver_<id> rooms
    - sessions.py: live driver session registry used by matching
    - middleware.py: JWT authentication for WebSocket connections
"""
