"""
Broker error taxonomy.

  BrokerTransientError   network / timeout / 5xx, raised after retries run out
  BrokerTerminalError    4xx and validation failures, never retried
  OrderRejectedError     order cancelled or rejected by the broker
  BrokerConfigError      credentials missing

The scheduler catches BrokerError per pair; one pair's failure never
stops the rest of the cycle.
"""

from typing import Optional


class BrokerError(Exception):

    def __init__(self, message: str, status_code: Optional[int] = None, endpoint: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.endpoint = endpoint


class BrokerTransientError(BrokerError):
    pass


class BrokerTerminalError(BrokerError):
    pass


class OrderRejectedError(BrokerTerminalError):

    def __init__(self, message: str, reason: str = "", endpoint: str = ""):
        super().__init__(message, endpoint=endpoint)
        self.reason = reason


class BrokerConfigError(BrokerError):
    pass
