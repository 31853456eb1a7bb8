"""Runtime side of the bridge.

The adapter here is the only code that touches the live media session. It
talks to the controller exclusively through a channel endpoint.
"""
