"""
Transport — request/response delivery of payloads to named functions.
"""
from transport.dispatcher import Dispatcher, DispatchResult, LocalDispatcher
